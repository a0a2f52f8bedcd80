"""In-memory operations on GPT headers and partition entry arrays."""

from __future__ import annotations

import logging
import zlib
from typing import Optional

from .layout import (
    BAK_PTN_NAME_EXT,
    GPT_SIGNATURE,
    HEADER_CRC_OFFSET,
    MAX_GPT_NAME_SIZE,
    PARTITION_CRC_OFFSET,
    PARTITION_NAME_OFFSET,
    PTN_ENTRY_SIZE,
    PTN_SWAP_LIST,
    PTN_XBL,
    GptError,
    GptState,
    get_u32,
    header_crc,
    put_u32,
)

logger = logging.getLogger(__name__)

_NAME8_SIZE = MAX_GPT_NAME_SIZE // 2


def _c_string(raw: bytes) -> bytes:
    """Bytes up to, not including, the first NUL."""
    return raw.split(b"\0", 1)[0]


def _entry_name8(entries, offset: int) -> bytes:
    """Low bytes of the UTF-16 name of the entry at offset, zero padded."""
    start = offset + PARTITION_NAME_OFFSET
    raw = bytes(entries[start:start + MAX_GPT_NAME_SIZE])
    name8 = raw[::2]
    return name8.ljust(_NAME8_SIZE, b"\0")


def _name_matches(name: bytes, name8: bytes) -> bool:
    if name8[:len(name)] != name:
        return False
    rest = _c_string(name8[len(name):])
    return rest in (b"", BAK_PTN_NAME_EXT.encode("ascii"))


def pentry_seek(
    name: str, entries, start: int = 0, entry_size: int = PTN_ENTRY_SIZE
) -> Optional[int]:
    """Offset of the first entry at or after start named name or name+'bak'.

    Only the low byte of each UTF-16 name character is compared.
    Returns None when no entry matches.
    """
    if entry_size <= 0:
        raise GptError(f"invalid partition entry size {entry_size}")
    if start < 0:
        raise GptError(f"invalid start offset {start}")
    wanted = name.encode("ascii")
    offset = start
    while offset + PARTITION_NAME_OFFSET < len(entries):
        if _name_matches(wanted, _entry_name8(entries, offset)):
            return offset
        offset += entry_size
    return None


def boot_chain_swap(
    entries: bytearray, entry_size: int = PTN_ENTRY_SIZE, is_ufs: bool = False
) -> bool:
    """Swap each boot-critical entry with its backup twin, in place.

    On UFS devices partitions whose names start with 'xbl' are left alone;
    their switch is done through the boot LUN instead. Returns True if at
    least one pair was swapped.
    """
    if entry_size <= 0:
        raise GptError(f"invalid partition entry size {entry_size}")
    swapped = False
    for name in PTN_SWAP_LIST:
        if is_ufs and name.startswith(PTN_XBL):
            continue
        primary = pentry_seek(name, entries, 0, entry_size)
        if primary is None:
            continue
        backup = pentry_seek(name, entries, primary + entry_size, entry_size)
        if backup is None:
            logger.warning("'%s' partition not backup - skip safe update", name)
            continue
        first = bytes(entries[primary:primary + PTN_ENTRY_SIZE])
        second = bytes(entries[backup:backup + PTN_ENTRY_SIZE])
        entries[primary:primary + len(second)] = second
        entries[backup:backup + len(first)] = first
        swapped = True
    return swapped


def header_state(header) -> GptState:
    """Classify a GPT header by its signature and header CRC."""
    state = GptState.OK
    if bytes(header[:len(GPT_SIGNATURE)]) != GPT_SIGNATURE:
        state = GptState.BAD_SIGNATURE
    if header_crc(header) != get_u32(header, HEADER_CRC_OFFSET):
        state = GptState.BAD_CRC
    return state


def apply_header_state(header: bytearray, state: GptState) -> None:
    """Restore or corrupt the header signature, then refresh the header CRC."""
    if state == GptState.OK:
        header[:len(GPT_SIGNATURE)] = GPT_SIGNATURE
    elif state == GptState.BAD_SIGNATURE:
        header[0] = 0
    else:
        raise GptError(f"invalid header state {state!r}")
    put_u32(header, HEADER_CRC_OFFSET, header_crc(header))


def refresh_header_crcs(header: bytearray, entries) -> tuple[int, int]:
    """Store the entries CRC and the header CRC into header.

    Returns (entries_crc, header_crc).
    """
    entries_crc = zlib.crc32(bytes(entries)) & 0xFFFFFFFF
    put_u32(header, PARTITION_CRC_OFFSET, entries_crc)
    hdr_crc = header_crc(header)
    put_u32(header, HEADER_CRC_OFFSET, hdr_crc)
    return entries_crc, hdr_crc