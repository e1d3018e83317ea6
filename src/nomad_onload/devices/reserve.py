"""
Reservation of fingerprinted devices.

Maps reserved device IDs to the device nodes, mounts and environment a
task needs. File lists follow the Onload container images: device nodes
from /dev, shared libraries and, optionally, the userspace tools.
"""

import logging
import posixpath
from typing import Dict, Sequence

from ..config import PluginConfig
from ..errors import ReservationError
from .models import DeviceSpec, DeviceType, FingerprintedDevice, Mount, ReservationSpec
from .store import InventoryStore

logger = logging.getLogger(__name__)


# Device files required to run Onload in a container
ONLOAD_DEVICE_FILES = [
    "onload",
    "onload_epoll",
    "sfc_char",
]

# Shared libraries required to run Onload in a container
ONLOAD_LIBRARY_FILES = [
    "libonload.so",
    "libonload_ext.so",
    # for onload_stackdump
    "libpcap.so.0.8",
    "libdbus-1.so.3",
]

# Binaries mounted when Onload is used as a wrapper script instead of LD_PRELOAD
ONLOAD_BINARY_FILES = [
    "onload",
    "onload_stackdump",
]

# Dependencies of the onload script, mounted at the same path
ONLOAD_DEPEND_FILES = [
    "/sbin/lsmod",
]

# Library used by LD_PRELOAD
ONLOAD_PRELOAD_FILE = "libonload.so"

# Device files required to run TCPDirect in a container
ZF_DEVICE_FILES = [
    "sfc_char",
]

ZF_LIBRARY_FILES = [
    "libonload_zf.so",
]

ZF_BINARY_FILES = [
    "zf_stackdump",
    "zf_debug",
]

CGROUP_PERMS = "mrw"


class _ReservationBuilder:
    """Accumulates a ReservationSpec, dropping repeated paths."""

    def __init__(self):
        self.devices: Dict[str, DeviceSpec] = {}
        self.mounts: Dict[str, Mount] = {}
        self.envs: Dict[str, str] = {}

    def add_device(self, task_path: str, host_path: str) -> None:
        self.devices.setdefault(
            task_path, DeviceSpec(task_path=task_path, host_path=host_path, cgroup_perms=CGROUP_PERMS)
        )

    def add_mount(self, task_path: str, host_path: str) -> None:
        self.mounts.setdefault(task_path, Mount(task_path=task_path, host_path=host_path, read_only=True))

    def add_files(self, task_root: str, host_root: str, names: Sequence[str], device: bool = False) -> None:
        for name in names:
            task_path = posixpath.join(task_root, name)
            host_path = posixpath.join(host_root, name)
            if device:
                self.add_device(task_path, host_path)
            else:
                self.add_mount(task_path, host_path)

    def build(self) -> ReservationSpec:
        return ReservationSpec(
            devices=list(self.devices.values()),
            mounts=list(self.mounts.values()),
            envs=dict(self.envs),
        )


def _both(task_path: str, host_path: str) -> bool:
    return bool(task_path) and bool(host_path)


class ReservationMapper:
    """
    Computes container reservations for fingerprinted devices.

    Reads the inventory but never modifies it.
    """

    def __init__(self, config: PluginConfig, store: InventoryStore):
        """
        Initialize reservation mapper.

        Args:
            config: Plugin configuration
            store: Inventory maintained by the fingerprinter
        """
        self.config = config
        self.store = store

    def reserve(self, device_ids: Sequence[str]) -> ReservationSpec:
        """
        Build the container reservation for the given devices.

        Validating against the inventory catches devices that disappeared
        after being scheduled but before the server saw the fingerprint
        update.

        Args:
            device_ids: Device IDs from a previous fingerprint

        Returns:
            Reservation spec

        Raises:
            ReservationError: If any ID is unknown; lists all of them
        """
        if not device_ids:
            logger.info("No onload devices to reserve")
            return ReservationSpec()

        devices, unknown_ids = self.store.lookup(device_ids)
        if unknown_ids:
            raise ReservationError(unknown_ids)

        builder = _ReservationBuilder()
        for device in devices:
            if device.device_type.is_onload_family:
                logger.info(f"Reserving onload device {device.id} ({device.device_type.value})")
                self._reserve_onload_device(builder, device.device_type)
            elif device.device_type.is_timekeeping:
                logger.info(f"Reserving timekeeping device {device.id} ({device.device_type.value})")
                self._reserve_timekeeping_device(builder, device)
            else:
                logger.warning(f"Reserving a device type not known: {device.device_type.value} ({device.id})")

        return builder.build()

    def _reserve_onload_device(self, builder: _ReservationBuilder, device_type: DeviceType) -> None:
        cfg = self.config

        # Device nodes
        if _both(cfg.task_device_path, cfg.host_device_path):
            device_files = ZF_DEVICE_FILES if device_type == DeviceType.ZF else ONLOAD_DEVICE_FILES
            builder.add_files(cfg.task_device_path, cfg.host_device_path, device_files, device=True)

        # Libraries
        if _both(cfg.task_onload_lib_path, cfg.host_onload_lib_path):
            builder.add_files(cfg.task_onload_lib_path, cfg.host_onload_lib_path, ONLOAD_LIBRARY_FILES)
        if device_type.uses_zf and _both(cfg.task_zf_lib_path, cfg.host_zf_lib_path):
            builder.add_files(cfg.task_zf_lib_path, cfg.host_zf_lib_path, ZF_LIBRARY_FILES)

        # Userspace executables and profiles
        if cfg.mount_onload:
            if _both(cfg.task_onload_bin_path, cfg.host_onload_bin_path):
                builder.add_files(cfg.task_onload_bin_path, cfg.host_onload_bin_path, ONLOAD_BINARY_FILES)
                for dep in ONLOAD_DEPEND_FILES:
                    builder.add_mount(dep, dep)
            if _both(cfg.task_profile_dir_path, cfg.host_profile_dir_path):
                builder.add_mount(cfg.task_profile_dir_path, cfg.host_profile_dir_path)
            if device_type.uses_zf and _both(cfg.task_zf_bin_path, cfg.host_zf_bin_path):
                builder.add_files(cfg.task_zf_bin_path, cfg.host_zf_bin_path, ZF_BINARY_FILES)

        # TCPDirect does not intercept sockets, so no LD_PRELOAD for "zf"
        if cfg.set_preload and device_type != DeviceType.ZF and cfg.task_onload_lib_path:
            builder.envs["LD_PRELOAD"] = posixpath.join(cfg.task_onload_lib_path, ONLOAD_PRELOAD_FILE)

    def _reserve_timekeeping_device(self, builder: _ReservationBuilder, device: FingerprintedDevice) -> None:
        # model holds the device node name, e.g. "ptp0"
        node = device.model or device.interface
        builder.add_device(
            posixpath.join(self.config.task_device_path, node),
            posixpath.join(self.config.host_device_path, node),
        )
