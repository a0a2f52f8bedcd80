"""Fail-safe update preparation of boot-critical partitions and LUN discovery."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

from .device import BlockDevice
from .layout import (
    BOOT_DEV_DIR,
    PTN_SWAP_LIST,
    PTN_XBL,
    BootChain,
    BootUpdateStage,
    GptError,
    GptInstance,
    GptState,
)

logger = logging.getLogger(__name__)

MAX_LUNS = 26
BOOT_LUN_A_ID = 1
BOOT_LUN_B_ID = 2
UFS_SUFFIX = ".ufshc"

_UFS_BY_NAME = "/dev/block/platform/soc/1d84000.ufshc/by-name"

BootLunSetter = Callable[[str, int], None]


@dataclass(frozen=True)
class DevicePaths:
    """Filesystem locations consulted while preparing a boot update."""

    block_dir: str = "/dev/block"
    emmc_block_device: str = "/dev/block/mmcblk0"
    boot_dev_dir: str = BOOT_DEV_DIR
    xbl_primary: str = f"{_UFS_BY_NAME}/xbl"
    xbl_backup: str = f"{_UFS_BY_NAME}/xblbak"
    xbl_ab_primary: str = f"{_UFS_BY_NAME}/xbl_a"
    xbl_ab_secondary: str = f"{_UFS_BY_NAME}/xbl_b"
    sys_block_dir: str = "/sys/block"
    dev_dir: str = "/dev"

    @property
    def path_truncate_loc(self) -> int:
        """Length of a LUN path such as /dev/block/sda."""
        return len(self.block_dir + "/sda")

    @property
    def lun_name_start(self) -> int:
        """Index where the LUN name begins within a LUN path."""
        return len(self.block_dir + "/")


def _exists(path: str) -> bool:
    try:
        os.stat(path)
    except OSError:
        return False
    return True


@dataclass
class LunList:
    """Distinct LUN paths that hold boot-critical images."""

    entries: list = field(default_factory=list)

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def add(self, lun_path: str) -> bool:
        """Add lun_path unless an entry it starts with is already present.

        Returns True when the path was added, False when already listed.
        """
        if not _exists(lun_path):
            raise GptError(f"unable to access {lun_path}")
        if any(lun_path.startswith(existing) for existing in self.entries):
            return False
        if len(self.entries) >= MAX_LUNS:
            raise GptError(f"LUN list is full ({MAX_LUNS} entries)")
        logger.info("Copying %s into lun_list[%d]", lun_path, len(self.entries))
        self.entries.append(lun_path)
        return True


def is_ufs_device(bootdevice: Optional[str]) -> bool:
    """Whether the boot device name denotes a UFS host controller."""
    if not bootdevice or len(bootdevice) < len(UFS_SUFFIX) + 1:
        return False
    return bootdevice.endswith(UFS_SUFFIX)


def get_scsi_node_from_bootdevice(bootdev_path: str, paths: DevicePaths) -> str:
    """Path of the SCSI generic node for the LUN that bootdev_path links to."""
    try:
        real_path = os.readlink(bootdev_path)
    except OSError as exc:
        raise GptError(f"failed to resolve link for {bootdev_path}: {exc}") from exc
    if len(real_path) < paths.path_truncate_loc + 1:
        raise GptError(f"unrecognized path :{real_path}:")
    real_path = real_path[:paths.path_truncate_loc]
    if len(real_path) < paths.lun_name_start + 1:
        raise GptError(f"unrecognized truncated path :{real_path}:")
    lun_name = real_path[paths.lun_name_start:]
    sg_dir = os.path.join(paths.sys_block_dir, lun_name, "device", "scsi_generic")
    try:
        names = sorted(os.listdir(sg_dir))
    except OSError as exc:
        raise GptError(f"failed to open {sg_dir}: {exc}") from exc
    for name in names:
        if name.startswith("."):
            continue
        if name.startswith("sg"):
            node = os.path.join(paths.dev_dir, name)
            logger.info("scsi generic node is :%s:", node)
            return node
    raise GptError("unable to locate scsi generic node")


def set_xbl_boot_partition(
    chain: BootChain,
    paths: DevicePaths,
    set_boot_lun: Optional[BootLunSetter] = None,
) -> None:
    """Select the primary or backup XBL LUN as the UFS boot LUN."""
    if chain == BootChain.BACKUP:
        boot_lun_id = BOOT_LUN_B_ID
        candidates = (paths.xbl_backup, paths.xbl_ab_secondary)
        which = "secondary"
    elif chain == BootChain.NORMAL:
        boot_lun_id = BOOT_LUN_A_ID
        candidates = (paths.xbl_primary, paths.xbl_ab_primary)
        which = "primary"
    else:
        raise GptError(f"invalid boot chain id {chain!r}")

    boot_dev = next((path for path in candidates if _exists(path)), None)
    if boot_dev is None:
        raise GptError(f"failed to locate {which} xbl")

    legacy_pair = _exists(paths.xbl_primary) and _exists(paths.xbl_backup)
    ab_pair = _exists(paths.xbl_ab_primary) and _exists(paths.xbl_ab_secondary)
    if not legacy_pair and not ab_pair:
        raise GptError("primary/secondary XBL partitions not found")

    logger.info("setting %s lun as boot lun", boot_dev)
    node = get_scsi_node_from_bootdevice(boot_dev, paths)
    if set_boot_lun is None:
        raise GptError("no boot LUN switcher configured")
    try:
        set_boot_lun(node, boot_lun_id)
    except OSError as exc:
        raise GptError(f"failed to set boot LUN on {node}: {exc}") from exc


def _switch_xbl(chain: BootChain, paths: DevicePaths, set_boot_lun) -> None:
    if not (_exists(paths.xbl_primary) and _exists(paths.xbl_backup)):
        # Targets without XBL rely on sbl, updated by the normal methods.
        logger.warning("xbl partition not found, assuming sbl in use")
        return
    set_xbl_boot_partition(chain, paths, set_boot_lun)


def _internal_stage(primary: GptState, secondary: GptState) -> BootUpdateStage:
    if primary == GptState.BAD_CRC or secondary == GptState.BAD_CRC:
        raise GptError("GPT headers CRC corruption detected, aborting")
    if primary == GptState.BAD_SIGNATURE and secondary == GptState.BAD_SIGNATURE:
        raise GptError("both GPT headers corrupted, aborting")
    if primary == GptState.OK and secondary == GptState.OK:
        return BootUpdateStage.MAIN
    if primary == GptState.BAD_SIGNATURE:
        return BootUpdateStage.BACKUP
    return BootUpdateStage.FINALIZE


def prepare_partitions(
    stage: BootUpdateStage,
    dev_path: str,
    paths: Optional[DevicePaths] = None,
    is_ufs: bool = False,
    set_boot_lun: Optional[BootLunSetter] = None,
    block_size: Optional[int] = None,
) -> bool:
    """Move the GPT on dev_path into the given update stage.

    Returns True when the tables were changed, False when the disk was
    already prepared for the stage or has no backup partitions.
    """
    if not dev_path:
        raise GptError("invalid dev_path")
    paths = paths or DevicePaths()
    with BlockDevice(dev_path, block_size) as device:
        primary = device.get_state(GptInstance.PRIMARY)
        secondary = device.get_state(GptInstance.SECONDARY)
        internal = _internal_stage(primary, secondary)

        if int(stage) == int(internal) - 1:
            return False
        if stage != internal:
            raise GptError(
                f"unexpected stage {stage!r}, disk is ready for {internal!r}"
            )

        if stage == BootUpdateStage.MAIN:
            if is_ufs:
                _switch_xbl(BootChain.BACKUP, paths, set_boot_lun)
            logger.info("Preparing for primary partition update")
            if not device.set_boot_chain(BootChain.BACKUP, is_ufs):
                # No backup partitions: leave the GPT intact.
                return False
            device.set_state(GptInstance.PRIMARY, GptState.BAD_SIGNATURE)
        elif stage == BootUpdateStage.BACKUP:
            if is_ufs:
                _switch_xbl(BootChain.NORMAL, paths, set_boot_lun)
            logger.info("Preparing for backup partition update")
            device.set_state(GptInstance.PRIMARY, GptState.OK)
            device.set_state(GptInstance.SECONDARY, GptState.BAD_SIGNATURE)
        else:
            logger.info("Finalizing partitions")
            device.set_boot_chain(BootChain.NORMAL, is_ufs)
            device.set_state(GptInstance.SECONDARY, GptState.OK)
    return True


def _collect_luns(paths: DevicePaths) -> LunList:
    luns = LunList()
    for name in PTN_SWAP_LIST:
        # XBL on UFS is switched through the boot LUN instead.
        if name.startswith(PTN_XBL):
            continue
        link = f"{paths.boot_dev_dir}/{name}bak"
        if not _exists(link):
            continue
        try:
            real_path = os.readlink(link)
        except OSError as exc:
            logger.warning("readlink error, skipping %s: %s", link, exc)
            continue
        if len(real_path) < paths.path_truncate_loc + 1:
            logger.warning("unknown path, skipping :%s:", real_path)
            continue
        try:
            luns.add(real_path[:paths.path_truncate_loc])
        except GptError as exc:
            logger.warning("%s", exc)
    return luns


def prepare_boot_update(
    stage: BootUpdateStage,
    paths: Optional[DevicePaths] = None,
    is_ufs: bool = False,
    set_boot_lun: Optional[BootLunSetter] = None,
    block_size: Optional[int] = None,
) -> list:
    """Prepare every disk holding boot-critical images for the stage.

    Returns the list of device paths that were processed. All LUNs are
    attempted; a GptError is raised afterwards if any of them failed.
    """
    paths = paths or DevicePaths()
    if not is_ufs:
        prepare_partitions(
            stage, paths.emmc_block_device, paths, False, set_boot_lun, block_size
        )
        return [paths.emmc_block_device]

    logger.info("Running on a UFS device")
    luns = _collect_luns(paths)
    failed = []
    for lun in luns:
        logger.info("Preparing %s for update stage %d", lun, int(stage))
        try:
            prepare_partitions(stage, lun, paths, True, set_boot_lun, block_size)
        except GptError as exc:
            logger.error("Failed to prepare %s (%s), continuing", lun, exc)
            failed.append(lun)
    if failed:
        raise GptError(f"failed to prepare: {', '.join(failed)}")
    return list(luns)


def get_dev_path_from_partition_name(
    partname: str, paths: Optional[DevicePaths] = None, is_ufs: bool = False
) -> str:
    """Path of the disk holding the named partition."""
    if not partname:
        raise GptError("invalid partition name")
    paths = paths or DevicePaths()
    if not is_ufs:
        return paths.emmc_block_device
    link = f"{paths.boot_dev_dir}/{partname}"
    if not _exists(link):
        raise GptError(f"partition {partname} not found")
    try:
        real_path = os.readlink(link)
    except OSError as exc:
        raise GptError(f"failed to resolve link for {link}: {exc}") from exc
    return real_path[:paths.path_truncate_loc]


def get_partition_map(
    partition_names, paths: Optional[DevicePaths] = None, is_ufs: bool = False
) -> dict:
    """Map each disk path to the listed partitions that reside on it.

    Partitions that cannot be found are left out.
    """
    names = list(partition_names)
    if not names:
        raise GptError("invalid partition list")
    paths = paths or DevicePaths()
    partition_map: dict = {}
    for name in names:
        try:
            dev_path = get_dev_path_from_partition_name(name, paths, is_ufs)
        except GptError:
            continue
        partition_map.setdefault(dev_path, []).append(name)
    return partition_map