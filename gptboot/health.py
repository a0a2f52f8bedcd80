"""Storage health and disk statistics read from sysfs."""

from __future__ import annotations

import logging
import os
import string
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

UFS_DIR = "/sys/devices/platform/soc/1d84000.ufshc"
DISK_STATS_FILE = "/sys/block/sda/stat"
UFS_NAME = "UFS0"


@dataclass
class StorageAttribute:
    is_internal: bool = True
    is_boot_device: bool = True
    name: str = UFS_NAME


@dataclass
class StorageInfo:
    attr: StorageAttribute = field(default_factory=StorageAttribute)
    version: str = ""
    eol: int = 0
    lifetime_a: int = 0
    lifetime_b: int = 0


@dataclass
class DiskStats:
    attr: StorageAttribute = field(default_factory=StorageAttribute)
    reads: int = 0
    read_merges: int = 0
    read_sectors: int = 0
    read_ticks: int = 0
    writes: int = 0
    write_merges: int = 0
    write_sectors: int = 0
    write_ticks: int = 0
    io_in_flight: int = 0
    io_ticks: int = 0
    io_in_queue: int = 0


_DISK_STAT_FIELDS = (
    "reads",
    "read_merges",
    "read_sectors",
    "read_ticks",
    "writes",
    "write_merges",
    "write_sectors",
    "write_ticks",
    "io_in_flight",
    "io_ticks",
    "io_in_queue",
)


def _leading_digits(text: str, digits: str) -> str:
    end = 0
    while end < len(text) and text[end] in digits:
        end += 1
    return text[:end]


def parse_integer(text: str) -> int:
    """Leading integer of text, base chosen by prefix: 0x hex, 0 octal, else decimal.

    Returns 0 when text does not start with a number.
    """
    text = text.lstrip()
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text[:2].lower() == "0x":
        digits = _leading_digits(text[2:], string.hexdigits)
        return sign * int(digits, 16) if digits else 0
    if text.startswith("0"):
        digits = _leading_digits(text, string.octdigits)
        return sign * int(digits, 8)
    digits = _leading_digits(text, string.digits)
    return sign * int(digits) if digits else 0


def _read_text(path: str) -> str:
    try:
        with open(path, encoding="ascii", errors="replace") as handle:
            return handle.read()
    except OSError:
        logger.warning("Cannot read %s", path)
        return ""


def _read_value(path: str) -> int:
    return parse_integer(_read_text(path))


def read_storage_info(ufs_dir: str = UFS_DIR) -> StorageInfo:
    """UFS version, end-of-life and lifetime estimates of the boot storage."""
    version = _read_value(os.path.join(ufs_dir, "version"))
    return StorageInfo(
        attr=StorageAttribute(),
        version=f"ufs {version:x}",
        eol=_read_value(os.path.join(ufs_dir, "health", "eol")),
        lifetime_a=_read_value(os.path.join(ufs_dir, "health", "lifetimeA")),
        lifetime_b=_read_value(os.path.join(ufs_dir, "health", "lifetimeB")),
    )


def read_disk_stats(stat_path: str = DISK_STATS_FILE) -> DiskStats:
    """Block-layer statistics of the boot disk.

    Parsing stops at the first field that is not a decimal number; that
    field and all after it are 0.
    """
    values = {}
    for name, token in zip(_DISK_STAT_FIELDS, _read_text(stat_path).split()):
        if not token.isdigit():
            break
        values[name] = int(token)
    return DiskStats(attr=StorageAttribute(), **values)