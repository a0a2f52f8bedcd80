import zlib

import pytest

from gptboot.device import BlockDevice
from gptboot.layout import (
    GPT_SIGNATURE,
    HEADER_SIZE_OFFSET,
    PARTITION_COUNT_OFFSET,
    PARTITION_CRC_OFFSET,
    PARTITION_NAME_OFFSET,
    PENTRIES_OFFSET,
    PENTRY_SIZE_OFFSET,
    PTN_ENTRY_SIZE,
    BootChain,
    GptError,
    GptInstance,
    GptState,
    get_u32,
    put_u32,
)
from gptboot.table import pentry_seek, refresh_header_crcs

BS = 512
BLOCKS = 64
COUNT = 16
ENTRY_BLOCKS = COUNT * PTN_ENTRY_SIZE // BS
PRIMARY_ENTRIES_LBA = 2
SECONDARY_HEADER_LBA = BLOCKS - 1
SECONDARY_ENTRIES_LBA = SECONDARY_HEADER_LBA - ENTRY_BLOCKS

DEFAULT_PARTS = [("abl", 1), ("boot", 2), ("ablbak", 3), ("tz", 4), ("tzbak", 5)]


def make_entries(parts):
    entries = bytearray(COUNT * PTN_ENTRY_SIZE)
    for index, (name, tag) in enumerate(parts):
        base = index * PTN_ENTRY_SIZE
        entries[base] = tag
        encoded = name.encode("utf-16-le")
        start = base + PARTITION_NAME_OFFSET
        entries[start:start + len(encoded)] = encoded
    return entries


def make_header(entries_lba, entries):
    header = bytearray(BS)
    header[:len(GPT_SIGNATURE)] = GPT_SIGNATURE
    put_u32(header, HEADER_SIZE_OFFSET, 92)
    header[PENTRIES_OFFSET:PENTRIES_OFFSET + 8] = entries_lba.to_bytes(8, "little")
    put_u32(header, PARTITION_COUNT_OFFSET, COUNT)
    put_u32(header, PENTRY_SIZE_OFFSET, PTN_ENTRY_SIZE)
    refresh_header_crcs(header, entries)
    return header


def build_image(parts=DEFAULT_PARTS):
    image = bytearray(BS * BLOCKS)
    entries = make_entries(parts)
    primary = make_header(PRIMARY_ENTRIES_LBA, entries)
    secondary = make_header(SECONDARY_ENTRIES_LBA, entries)
    image[BS:2 * BS] = primary
    p = PRIMARY_ENTRIES_LBA * BS
    image[p:p + len(entries)] = entries
    s = SECONDARY_ENTRIES_LBA * BS
    image[s:s + len(entries)] = entries
    image[SECONDARY_HEADER_LBA * BS:] = secondary
    return image


@pytest.fixture
def image_path(tmp_path):
    path = tmp_path / "disk.img"
    path.write_bytes(bytes(build_image()))
    return path


def test_header_offsets(image_path):
    with BlockDevice(image_path, BS) as dev:
        assert dev.header_offset(GptInstance.PRIMARY) == BS
        assert dev.header_offset(GptInstance.SECONDARY) == BS * BLOCKS - BS


def test_read_write_round_trip(image_path):
    with BlockDevice(image_path, BS) as dev:
        dev.write(40 * BS, b"hello")
        assert dev.read(40 * BS, 5) == b"hello"
    assert image_path.read_bytes()[40 * BS:40 * BS + 5] == b"hello"


def test_short_read_raises(image_path):
    with BlockDevice(image_path, BS) as dev:
        with pytest.raises(GptError):
            dev.read(BS * BLOCKS - 4, 16)


def test_closed_device_raises(image_path):
    with BlockDevice(image_path, BS) as dev:
        pass
    with pytest.raises(GptError):
        dev.read(0, 1)


def test_missing_file_raises(tmp_path):
    with pytest.raises(GptError):
        BlockDevice(tmp_path / "absent.img", BS)


def test_invalid_block_size_raises(image_path):
    with pytest.raises(GptError):
        BlockDevice(image_path, 0)


def test_secondary_offset_on_tiny_file_raises(tmp_path):
    path = tmp_path / "tiny.img"
    path.write_bytes(b"\0" * 100)
    with BlockDevice(path, BS) as dev:
        with pytest.raises(GptError):
            dev.header_offset(GptInstance.SECONDARY)


def test_read_header_and_entries(image_path):
    with BlockDevice(image_path, BS) as dev:
        header = dev.read_header(GptInstance.PRIMARY)
        assert bytes(header[:8]) == GPT_SIGNATURE
        entries = dev.read_entries(header)
        assert len(entries) == COUNT * PTN_ENTRY_SIZE
        assert pentry_seek("boot", entries) == PTN_ENTRY_SIZE
        assert zlib.crc32(bytes(entries)) == get_u32(header, PARTITION_CRC_OFFSET)


def test_write_header_and_entries_round_trip(image_path):
    with BlockDevice(image_path, BS) as dev:
        header = dev.read_header(GptInstance.SECONDARY)
        entries = make_entries([("tz", 9)])
        refresh_header_crcs(header, entries)
        dev.write_header(header, GptInstance.SECONDARY)
        dev.write_entries(header, entries)
        assert dev.read_header(GptInstance.SECONDARY) == header
        assert dev.read_entries(header) == entries
        assert dev.get_state(GptInstance.SECONDARY) == GptState.OK


def test_initial_states_ok(image_path):
    with BlockDevice(image_path, BS) as dev:
        assert dev.get_state(GptInstance.PRIMARY) == GptState.OK
        assert dev.get_state(GptInstance.SECONDARY) == GptState.OK


def test_set_state_round_trip(image_path):
    with BlockDevice(image_path, BS) as dev:
        dev.set_state(GptInstance.PRIMARY, GptState.BAD_SIGNATURE)
        assert dev.get_state(GptInstance.PRIMARY) == GptState.BAD_SIGNATURE
        assert dev.get_state(GptInstance.SECONDARY) == GptState.OK
        dev.set_state(GptInstance.PRIMARY, GptState.OK)
        assert dev.get_state(GptInstance.PRIMARY) == GptState.OK


def test_set_state_bad_crc_rejected(image_path):
    with BlockDevice(image_path, BS) as dev:
        with pytest.raises(GptError):
            dev.set_state(GptInstance.SECONDARY, GptState.BAD_CRC)


def test_get_state_detects_bad_crc(image_path):
    data = bytearray(image_path.read_bytes())
    data[BS + 40] ^= 0xFF
    image_path.write_bytes(bytes(data))
    with BlockDevice(image_path, BS) as dev:
        assert dev.get_state(GptInstance.PRIMARY) == GptState.BAD_CRC


def test_set_boot_chain_backup_swaps_secondary(image_path):
    with BlockDevice(image_path, BS) as dev:
        primary_before = dev.read_entries(dev.read_header(GptInstance.PRIMARY))
        assert dev.set_boot_chain(BootChain.BACKUP) is True
        secondary = dev.read_header(GptInstance.SECONDARY)
        entries = dev.read_entries(secondary)
        assert entries[0] == 3
        assert entries[2 * PTN_ENTRY_SIZE] == 1
        assert entries[3 * PTN_ENTRY_SIZE] == 5
        assert entries[4 * PTN_ENTRY_SIZE] == 4
        assert entries[PTN_ENTRY_SIZE] == 2
        assert zlib.crc32(bytes(entries)) == get_u32(secondary, PARTITION_CRC_OFFSET)
        assert dev.get_state(GptInstance.SECONDARY) == GptState.OK
        assert dev.read_entries(dev.read_header(GptInstance.PRIMARY)) == primary_before


def test_set_boot_chain_normal_restores(image_path):
    with BlockDevice(image_path, BS) as dev:
        primary = dev.read_entries(dev.read_header(GptInstance.PRIMARY))
        dev.set_boot_chain(BootChain.BACKUP)
        assert dev.set_boot_chain(BootChain.NORMAL) is True
        secondary = dev.read_header(GptInstance.SECONDARY)
        assert dev.read_entries(secondary) == primary
        assert dev.get_state(GptInstance.SECONDARY) == GptState.OK


def test_set_boot_chain_without_backups_writes_nothing(tmp_path):
    path = tmp_path / "plain.img"
    path.write_bytes(bytes(build_image([("abl", 1), ("boot", 2)])))
    before = path.read_bytes()
    with BlockDevice(path, BS) as dev:
        assert dev.set_boot_chain(BootChain.BACKUP) is False
    assert path.read_bytes() == before


def test_set_boot_chain_rejects_bad_primary_entries_crc(image_path):
    data = bytearray(image_path.read_bytes())
    data[PRIMARY_ENTRIES_LBA * BS + 10 * PTN_ENTRY_SIZE] ^= 0x55
    image_path.write_bytes(bytes(data))
    with BlockDevice(image_path, BS) as dev:
        with pytest.raises(GptError):
            dev.set_boot_chain(BootChain.NORMAL)