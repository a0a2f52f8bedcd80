"""A loaded GPT disk whose headers and entry arrays can be edited and written back."""

from __future__ import annotations

import logging
import zlib
from dataclasses import dataclass
from typing import Optional

from .device import BlockDevice
from .layout import (
    HEADER_SIZE_OFFSET,
    PARTITION_COUNT_OFFSET,
    PARTITION_CRC_OFFSET,
    PENTRY_SIZE_OFFSET,
    GptError,
    GptInstance,
    get_u32,
)
from .table import pentry_seek, refresh_header_crcs
from .update import DevicePaths, get_dev_path_from_partition_name

logger = logging.getLogger(__name__)


def _raw_header_crc(header) -> int:
    size = get_u32(header, HEADER_SIZE_OFFSET)
    if size > len(header):
        raise GptError(f"header size {size} exceeds buffer of {len(header)} bytes")
    return zlib.crc32(bytes(header[:size])) & 0xFFFFFFFF


@dataclass
class GptDisk:
    """Headers and partition entry arrays of the disk holding a partition."""

    hdr: bytearray
    hdr_crc: int
    hdr_bak: bytearray
    hdr_bak_crc: int
    pentry_arr: bytearray
    pentry_arr_bak: bytearray
    pentry_arr_size: int
    pentry_size: int
    pentry_arr_crc: int
    pentry_arr_bak_crc: int
    devpath: str
    block_size: int

    @classmethod
    def load(
        cls,
        partname: str,
        paths: Optional[DevicePaths] = None,
        is_ufs: bool = False,
        block_size: Optional[int] = None,
    ) -> "GptDisk":
        """Read the GPT of the disk that holds partition partname.

        The backup header copy is read from the primary header location,
        so both copies start out describing the primary table.
        """
        if not partname:
            raise GptError("invalid partition name")
        paths = paths or DevicePaths()
        devpath = get_dev_path_from_partition_name(partname, paths, is_ufs)
        with BlockDevice(devpath, block_size) as device:
            hdr = device.read_header(GptInstance.PRIMARY)
            hdr_crc = _raw_header_crc(hdr)
            hdr_bak = device.read_header(GptInstance.PRIMARY)
            hdr_bak_crc = _raw_header_crc(hdr_bak)
            pentry_arr = device.read_entries(hdr)
            pentry_arr_bak = device.read_entries(hdr_bak)
            pentry_size = get_u32(hdr, PENTRY_SIZE_OFFSET)
            pentry_arr_size = get_u32(hdr, PARTITION_COUNT_OFFSET) * pentry_size
            disk = cls(
                hdr=hdr,
                hdr_crc=hdr_crc,
                hdr_bak=hdr_bak,
                hdr_bak_crc=hdr_bak_crc,
                pentry_arr=pentry_arr,
                pentry_arr_bak=pentry_arr_bak,
                pentry_arr_size=pentry_arr_size,
                pentry_size=pentry_size,
                pentry_arr_crc=get_u32(hdr, PARTITION_CRC_OFFSET),
                pentry_arr_bak_crc=get_u32(hdr_bak, PARTITION_CRC_OFFSET),
                devpath=devpath,
                block_size=device.block_size,
            )
        return disk

    def get_pentry(
        self, partname: str, instance: GptInstance = GptInstance.PRIMARY
    ) -> Optional[memoryview]:
        """Writable view of the entry named partname (or its 'bak' twin).

        Returns None when no entry matches.
        """
        if not partname:
            raise GptError("invalid partition name")
        entries = (
            self.pentry_arr if instance == GptInstance.PRIMARY else self.pentry_arr_bak
        )
        offset = pentry_seek(partname, entries, 0, self.pentry_size)
        if offset is None:
            return None
        return memoryview(entries)[offset:offset + self.pentry_size]

    def update_crc(self) -> None:
        """Recompute entry-array and header CRCs after edits."""
        self.pentry_arr_crc, self.hdr_crc = refresh_header_crcs(
            self.hdr, self.pentry_arr[:self.pentry_arr_size]
        )
        self.pentry_arr_bak_crc, self.hdr_bak_crc = refresh_header_crcs(
            self.hdr_bak, self.pentry_arr_bak[:self.pentry_arr_size]
        )

    def commit(self) -> None:
        """Write the primary header and primary entry array back to disk."""
        with BlockDevice(self.devpath, self.block_size) as device:
            logger.info("Writing back primary GPT header")
            device.write_header(self.hdr, GptInstance.PRIMARY)
            logger.info("Writing back primary partition array")
            device.write_entries(self.hdr, self.pentry_arr)