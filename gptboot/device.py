"""Block-level access to the GPT structures stored on a disk or disk image."""

from __future__ import annotations

import os
import struct
from typing import Optional

from .layout import (
    PARTITION_COUNT_OFFSET,
    PARTITION_CRC_OFFSET,
    PENTRIES_OFFSET,
    PENTRY_SIZE_OFFSET,
    BootChain,
    GptError,
    GptInstance,
    GptState,
    get_u32,
    get_u64,
)
from .table import apply_header_state, boot_chain_swap, header_state, refresh_header_crcs

try:
    import fcntl
except ImportError:  # platforms without fcntl
    fcntl = None

import zlib

BLKSSZGET = 0x1268


class BlockDevice:
    """An open block device (or image file) holding a GPT."""

    def __init__(self, path, block_size: Optional[int] = None) -> None:
        self.path = os.fspath(path)
        try:
            self._file = open(self.path, "r+b", buffering=0)
        except OSError as exc:
            raise GptError(f"opening '{self.path}' failed: {exc}") from exc
        if block_size is None:
            try:
                block_size = self._query_block_size()
            except GptError:
                self._file.close()
                raise
        if block_size <= 0:
            self._file.close()
            raise GptError(f"invalid block size {block_size}")
        self.block_size = block_size

    def _query_block_size(self) -> int:
        if fcntl is None:
            raise GptError("block size query is not supported on this platform")
        try:
            raw = fcntl.ioctl(self._file.fileno(), BLKSSZGET, struct.pack("I", 0))
        except OSError as exc:
            raise GptError(f"failed to get GPT device block size: {exc}") from exc
        return struct.unpack("I", raw)[0]

    def _handle(self):
        if self._file is None:
            raise GptError(f"device '{self.path}' is closed")
        return self._file

    def close(self) -> None:
        """Flush and close the device; closing twice is harmless."""
        if self._file is None:
            return
        try:
            os.fsync(self._file.fileno())
        except OSError:
            pass
        finally:
            self._file.close()
            self._file = None

    def __enter__(self) -> "BlockDevice":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def size(self) -> int:
        """Size of the device in bytes."""
        handle = self._handle()
        try:
            return handle.seek(0, os.SEEK_END)
        except OSError as exc:
            raise GptError(f"seek to end of '{self.path}' failed: {exc}") from exc

    def read(self, offset: int, length: int) -> bytearray:
        """Read exactly length bytes starting at offset."""
        handle = self._handle()
        if offset < 0 or length < 0:
            raise GptError(f"invalid read of {length} bytes at {offset}")
        try:
            handle.seek(offset)
            data = bytearray()
            while len(data) < length:
                chunk = handle.read(length - len(data))
                if not chunk:
                    break
                data += chunk
        except OSError as exc:
            raise GptError(f"block dev read failed: {exc}") from exc
        if len(data) != length:
            raise GptError(
                f"short read at {offset}: wanted {length} bytes, got {len(data)}"
            )
        return data

    def write(self, offset: int, data) -> None:
        """Write data at offset and sync it to the device."""
        handle = self._handle()
        if offset < 0:
            raise GptError(f"invalid write offset {offset}")
        view = memoryview(bytes(data))
        try:
            handle.seek(offset)
            while view:
                written = handle.write(view)
                if not written:
                    raise GptError(f"block dev write at {offset} made no progress")
                view = view[written:]
            os.fsync(handle.fileno())
        except OSError as exc:
            raise GptError(f"block dev write failed: {exc}") from exc

    def header_offset(self, instance: GptInstance) -> int:
        """Byte offset of the primary or secondary GPT header."""
        if instance == GptInstance.PRIMARY:
            return self.block_size
        offset = self.size - self.block_size
        if offset < 0:
            raise GptError("getting secondary GPT header offset failed")
        return offset

    def read_header(self, instance: GptInstance) -> bytearray:
        """Read one block holding the requested GPT header."""
        return self.read(self.header_offset(instance), self.block_size)

    def write_header(self, header, instance: GptInstance) -> None:
        """Write a GPT header block back to its place on the device."""
        offset = self.header_offset(instance)
        if offset <= 0:
            raise GptError("failed to get gpt header offset")
        self.write(offset, bytes(header[:self.block_size]))

    def _entries_geometry(self, header) -> tuple[int, int]:
        start = get_u64(header, PENTRIES_OFFSET) * self.block_size
        size = get_u32(header, PARTITION_COUNT_OFFSET) * get_u32(
            header, PENTRY_SIZE_OFFSET
        )
        return start, size

    def read_entries(self, header) -> bytearray:
        """Read the partition entry array that header describes."""
        start, size = self._entries_geometry(header)
        return self.read(start, size)

    def write_entries(self, header, entries) -> None:
        """Write a partition entry array to the place header describes."""
        start, size = self._entries_geometry(header)
        self.write(start, bytes(entries[:size]))

    def get_state(self, instance: GptInstance) -> GptState:
        """Signature and CRC state of the requested GPT header."""
        return header_state(self.read_header(instance))

    def set_state(self, instance: GptInstance, state: GptState) -> None:
        """Restore or corrupt the signature of a header and write it back."""
        header = self.read_header(instance)
        apply_header_state(header, state)
        offset = self.header_offset(instance)
        self.write(offset, header)

    def set_boot_chain(self, boot: BootChain, is_ufs: bool = False) -> bool:
        """Point the secondary GPT at the normal or the backup boot chain.

        The secondary entries are rebuilt from the primary entry array.
        Returns False, writing nothing, when the backup chain is asked for
        but no backup partitions exist; True once the table is written.
        """
        primary = self.read_header(GptInstance.PRIMARY)
        entry_size = get_u32(primary, PENTRY_SIZE_OFFSET)
        entries = self.read_entries(primary)
        if zlib.crc32(bytes(entries)) & 0xFFFFFFFF != get_u32(
            primary, PARTITION_CRC_OFFSET
        ):
            raise GptError("primary GPT partition entries array CRC invalid")

        secondary_offset = self.header_offset(GptInstance.SECONDARY)
        secondary = self.read(secondary_offset, self.block_size)
        entries_start = get_u64(secondary, PENTRIES_OFFSET) * self.block_size

        if boot == BootChain.BACKUP:
            if not boot_chain_swap(entries, entry_size, is_ufs):
                return False

        refresh_header_crcs(secondary, entries)
        self.write(secondary_offset, secondary)
        self.write(entries_start, entries)
        return True