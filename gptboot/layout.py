"""On-disk layout of GPT headers and partition entries, plus shared types."""

from __future__ import annotations

import enum
import zlib

GPT_SIGNATURE = b"EFI PART"

# GPT header field offsets
HEADER_SIZE_OFFSET = 12
HEADER_CRC_OFFSET = 16
PRIMARY_HEADER_OFFSET = 24
BACKUP_HEADER_OFFSET = 32
FIRST_USABLE_LBA_OFFSET = 40
LAST_USABLE_LBA_OFFSET = 48
PENTRIES_OFFSET = 72
PARTITION_COUNT_OFFSET = 80
PENTRY_SIZE_OFFSET = 84
PARTITION_CRC_OFFSET = 88

# Partition entry field offsets
TYPE_GUID_OFFSET = 0
TYPE_GUID_SIZE = 16
PTN_ENTRY_SIZE = 128
UNIQUE_GUID_OFFSET = 16
FIRST_LBA_OFFSET = 32
LAST_LBA_OFFSET = 40
ATTRIBUTE_FLAG_OFFSET = 48
PARTITION_NAME_OFFSET = 56
MAX_GPT_NAME_SIZE = 72

# A/B attributes live from bit 48 of the attribute field onwards.
AB_FLAG_OFFSET = ATTRIBUTE_FLAG_OFFSET + 6
GPT_DISK_INIT_MAGIC = 0xABCD
AB_PARTITION_ATTR_SLOT_ACTIVE = 0x1 << 2
AB_PARTITION_ATTR_BOOT_SUCCESSFUL = 0x1 << 6
AB_PARTITION_ATTR_UNBOOTABLE = 0x1 << 7
AB_SLOT_ACTIVE_VAL = 0xF
AB_SLOT_INACTIVE_VAL = 0x0
AB_SLOT_ACTIVE = 1
AB_SLOT_INACTIVE = 0
AB_SLOT_A_SUFFIX = "_a"
AB_SLOT_B_SUFFIX = "_b"

PTN_XBL = "xbl"
PTN_SWAP_LIST = (
    PTN_XBL,
    "abl",
    "aop",
    "devcfg",
    "dtbo",
    "hyp",
    "keymaster",
    "qupfw",
    "storsec",
    "tz",
    "uefisecapp",
    "vbmeta",
    "vbmeta_system",
    "xbl_config",
)
AB_PTN_LIST = PTN_SWAP_LIST + (
    "boot",
    "system",
    "vendor",
    "modem",
    "system_ext",
    "product",
)

BOOT_DEV_DIR = "/dev/block/bootdevice/by-name"
BAK_PTN_NAME_EXT = "bak"


class GptError(Exception):
    """Raised when a GPT operation cannot be completed."""


class BootUpdateStage(enum.IntEnum):
    MAIN = 1
    BACKUP = 2
    FINALIZE = 3


class GptInstance(enum.IntEnum):
    PRIMARY = 0
    SECONDARY = 1


class BootChain(enum.IntEnum):
    NORMAL = 0
    BACKUP = 1


class GptState(enum.IntEnum):
    OK = 0
    BAD_SIGNATURE = 1
    BAD_CRC = 2


def _check_range(buf, offset: int, width: int) -> None:
    if offset < 0 or offset + width > len(buf):
        raise GptError(
            f"field at offset {offset} of width {width} lies outside a "
            f"buffer of {len(buf)} bytes"
        )


def get_u32(buf, offset: int) -> int:
    """Read a little-endian 32-bit unsigned integer."""
    _check_range(buf, offset, 4)
    return int.from_bytes(bytes(buf[offset:offset + 4]), "little")


def get_u64(buf, offset: int) -> int:
    """Read a little-endian 64-bit unsigned integer."""
    _check_range(buf, offset, 8)
    return int.from_bytes(bytes(buf[offset:offset + 8]), "little")


def put_u32(buf: bytearray, offset: int, value: int) -> None:
    """Store the low 32 bits of value little-endian into buf."""
    _check_range(buf, offset, 4)
    buf[offset:offset + 4] = (value & 0xFFFFFFFF).to_bytes(4, "little")


def header_crc(header) -> int:
    """CRC32 of a GPT header, computed with its own CRC field cleared."""
    size = get_u32(header, HEADER_SIZE_OFFSET)
    if size > len(header):
        raise GptError(
            f"header size {size} exceeds buffer of {len(header)} bytes"
        )
    if size < HEADER_CRC_OFFSET + 4:
        raise GptError(f"header size {size} is too small")
    scratch = bytearray(header[:size])
    put_u32(scratch, HEADER_CRC_OFFSET, 0)
    return zlib.crc32(scratch) & 0xFFFFFFFF