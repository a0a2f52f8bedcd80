# gptboot

Tools for reading, checking and rewriting GUID Partition Tables (GPT) so
that boot-critical partitions can be updated without leaving a device
unbootable.

Every critical partition is kept twice (`tz` and `tzbak`, `abl` and
`ablbak`, ...). Before the primary copies are rewritten, the secondary GPT
is pointed at the backups and the primary GPT header's signature is
invalidated, so the boot loader falls back to the backup chain. The next
stages repair the primary header, invalidate the secondary one, and finally
restore the secondary table. On UFS storage the `xbl` loader lives on its
own boot LUN, which is switched separately.

## Installation

```
pip install gptboot
```

For the test suite:

```
pip install "gptboot[test]"
pytest
```

## Modules

- `gptboot.layout` — on-disk offsets, the boot-critical partition names
  (`PTN_SWAP_LIST`), little-endian field helpers (`get_u32`, `get_u64`,
  `put_u32`), `header_crc` (CRC32 of a header with its CRC field cleared),
  the `GptError` exception and the enums `BootUpdateStage`, `GptInstance`,
  `BootChain` and `GptState`.
- `gptboot.table` — functions over header and entry-array bytes:
  `pentry_seek` (find an entry by name or by name plus `bak`),
  `boot_chain_swap` (swap each critical entry with its backup, in place),
  `header_state`, `apply_header_state` and `refresh_header_crcs`.
- `gptboot.device` — `BlockDevice`, a context manager over a disk or disk
  image. It reads and writes headers and partition entry arrays, reports and
  sets header state, and with `set_boot_chain` rebuilds the secondary table
  from the primary entries, pointing it at the normal or the backup chain.
  When no block size is given it is queried from the device with the
  `BLKSSZGET` ioctl, so pass one explicitly for image files.
- `gptboot.update` — the staged procedure: `prepare_partitions` for one
  disk, `prepare_boot_update` for every disk holding critical images,
  `set_xbl_boot_partition`, `get_scsi_node_from_bootdevice`,
  `is_ufs_device`, `get_dev_path_from_partition_name` and
  `get_partition_map`. Device locations are held in `DevicePaths`; the set
  of affected LUNs in `LunList`.
- `gptboot.disk` — `GptDisk.load` reads the tables of the disk holding a
  named partition; `get_pentry` returns a writable view of an entry,
  `update_crc` recomputes all CRCs, and `commit` writes the primary header
  and primary entry array back. Both header copies are read from the
  primary header location.
- `gptboot.health` — readers for UFS storage health and block-device I/O
  counters: `read_storage_info`, `read_disk_stats`, `parse_integer`, and the
  `StorageAttribute`, `StorageInfo` and `DiskStats` records. Files that
  cannot be read are logged and give zero values.
- `gptboot.arraylist` — `ArrayList`, a sparse growable list that passes
  replaced and freed items to a release callback.
- `gptboot.debug` — `set_debug`, `get_debug`, `set_syslog`, and the
  printf-style writers `debug` (stdout, only when enabled), `error` and
  `info` (stderr), or syslog when that is switched on.
- `gptboot.version` — `version()` and `version_num()`.

## Examples

Check a GPT header read from an image:

```python
from gptboot.table import header_state

with open("disk.img", "rb") as image:
    image.seek(512)
    header = image.read(512)

print(header_state(header))
```

Inspect both headers of an image:

```python
from gptboot.device import BlockDevice
from gptboot.layout import GptInstance

with BlockDevice("disk.img", 512) as disk:
    for instance in GptInstance:
        print(instance, disk.get_state(instance))
```

Step an image through the update stages:

```python
from gptboot.layout import BootUpdateStage
from gptboot.update import prepare_partitions

for stage in BootUpdateStage:
    prepare_partitions(stage, "disk.img", block_size=512)
```

Read storage health figures:

```python
from gptboot.health import parse_integer, read_disk_stats

print(parse_integer("0x0A"))           # 10
print(read_disk_stats("/sys/block/sda/stat"))
```

Failures — an unopenable device, a header with a bad CRC, both headers
corrupted, an unexpected update stage — are raised as `GptError`.

## What the package does not do

- There is no command-line tool; everything is called from Python.
- It does not send the UFS query that changes the boot LUN. On UFS,
  `set_xbl_boot_partition` and the update functions take a `set_boot_lun`
  callable, given the SCSI generic node path and the LUN id, which must do
  that work; without one a `GptError` is raised.
- It does not detect the boot device by itself: `is_ufs_device` takes the
  boot device name, and the other functions take an `is_ufs` flag.
- `gptboot.health` reads storage figures only; it has nothing for battery
  or charger state.