"""GPT partition table tools for fail-safe updates of boot-critical partitions."""

__version__ = "0.1.0"
__all__ = [
    "arraylist",
    "debug",
    "device",
    "disk",
    "health",
    "layout",
    "table",
    "update",
    "version",
]