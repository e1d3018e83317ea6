"""
Device fingerprinting and change detection.

Each fingerprint response holds either an error or a list of device
groups. A device group is a list of devices that are identical for the
purpose of scheduling. Every "<vendor>/<device_type>/<model>" key is its
own group, and the model is the physical interface name, so all
pseudo-devices of one interface and device type land in the same group.
"""

import logging
from typing import Dict, Iterable, List, Optional

from ..config import PluginConfig
from ..errors import FingerprintError, ProbeError
from .models import (
    ATTR_ONLOAD_VERSION,
    ATTR_ZF_VERSION,
    DEVICE_NAME_NONE,
    VENDOR_NONE,
    DeviceGroup,
    DeviceType,
    FingerprintData,
    FingerprintedDevice,
    FingerprintResponse,
    NICInfo,
)
from .store import InventoryStore

logger = logging.getLogger(__name__)


def make_pseudo_devices(
    count: int, device_type: DeviceType, nic: NICInfo, start: int = 0
) -> List[FingerprintedDevice]:
    """
    Create pseudo-devices for non-exclusive access to one device.

    Device IDs are "<interface>-<n>", like "eth0-0", with n counting up
    from `start`.
    """
    return [
        FingerprintedDevice(
            id=f"{nic.interface}-{i}",
            interface=nic.interface,
            device_type=device_type,
            vendor=nic.vendor,
            model=nic.interface,  # the actual model is hard to know
            pci_bus_id=nic.pci_bus_id,
        )
        for i in range(start, start + count)
    ]


class _PseudoDeviceAllocator:
    """Hands out ordinals per interface so IDs stay unique across device types."""

    def __init__(self):
        self._next: Dict[str, int] = {}

    def expand(self, count: int, device_type: DeviceType, nic: NICInfo) -> List[FingerprintedDevice]:
        start = self._next.get(nic.interface, 0)
        self._next[nic.interface] = start + count
        return make_pseudo_devices(count, device_type, nic, start=start)


def _dedupe_nics(nics: Iterable[NICInfo]) -> List[NICInfo]:
    seen: Dict[str, NICInfo] = {}
    for nic in nics:
        seen.setdefault(nic.interface, nic)
    return list(seen.values())


def eligible_device_types(onload_version: str, zf_version: str) -> List[DeviceType]:
    """
    Device types that can be offered given the installed software.

    TCPDirect is only usable on top of an Onload install.
    """
    device_types: List[DeviceType] = []
    if onload_version:
        device_types.append(DeviceType.ONLOAD)
        if zf_version:
            device_types.extend([DeviceType.ZF, DeviceType.ONLOAD_ZF])
    return device_types


def filter_ignored(devices: Iterable[FingerprintedDevice], ignored: Iterable[str]) -> List[FingerprintedDevice]:
    """Drop devices whose interface (or device ID) is ignored."""
    ignored_set = set(ignored)
    return [d for d in devices if d.interface not in ignored_set and d.id not in ignored_set]


def group_devices(devices: Iterable[FingerprintedDevice], attributes: Dict[str, str]) -> List[DeviceGroup]:
    """
    Partition devices into device groups by group key.

    Groups come back sorted by key; devices keep their input order.
    """
    by_key: Dict[str, List[FingerprintedDevice]] = {}
    for device in devices:
        by_key.setdefault(device.group_key, []).append(device)

    groups: List[DeviceGroup] = []
    for key in sorted(by_key):
        group = build_device_group(by_key[key], attributes)
        if group is not None:
            groups.append(group)
    return groups


def build_device_group(devices: List[FingerprintedDevice], attributes: Dict[str, str]) -> Optional[DeviceGroup]:
    """Compose a DeviceGroup from devices sharing one group key."""
    # a group without devices makes no sense
    if not devices:
        return None

    first = devices[0]
    return DeviceGroup(
        vendor=first.vendor,
        device_type=first.device_type,
        name=first.model or first.interface,
        devices=list(devices),
        attributes=dict(attributes),
    )


class Fingerprinter:
    """
    Runs fingerprint passes and keeps the inventory current.

    A pass:
    1. Probes Onload / TCPDirect versions and accelerated NICs
    2. Expands them into pseudo-devices for every eligible device type
    3. Adds PPS / PTP timekeeping devices
    4. Drops ignored interfaces
    5. Replaces the inventory and reports whether the ID set changed
    """

    def __init__(self, config: PluginConfig, probes, store: InventoryStore):
        """
        Initialize fingerprinter.

        Args:
            config: Plugin configuration
            probes: System probes (see SystemProbes)
            store: Inventory owned by this fingerprinter
        """
        self.config = config
        self.probes = probes
        self.store = store
        self.ignored_interfaces = set(config.ignored_interfaces)

    def collect(self) -> FingerprintData:
        """
        Probe the system and build the full, unfiltered device list.

        Raises:
            FingerprintError: If `need_nic` is set and no NIC was found
        """
        # Onload may be installed while the agent is running, so probe every time
        onload_version = self._probe_version(
            "Onload", self.probes.probe_onload_version, self.config.host_onload_bin_path
        )
        zf_version = self._probe_version(
            "TCPDirect", self.probes.probe_zf_version, self.config.host_zf_bin_path
        )

        nics: List[NICInfo] = []
        if self.config.probe_sfc:
            nics.extend(self._probe("SFC NICs", self.probes.probe_sfc_nics))
        if self.config.probe_xdp:
            nics.extend(self._probe("XDP NICs", self.probes.probe_xdp_nics))
        nics = _dedupe_nics(nics)

        if not nics:
            if self.config.need_nic:
                raise FingerprintError("no compatible NICs found")
            # Onload can be used without an accelerated NIC, so publish a
            # placeholder to allow requests by "<device_type>" alone
            nics.append(NICInfo(interface=DEVICE_NAME_NONE, pci_bus_id="", vendor=VENDOR_NONE))

        allocator = _PseudoDeviceAllocator()
        devices: List[FingerprintedDevice] = []
        device_types = eligible_device_types(onload_version, zf_version)
        for nic in nics:
            for device_type in device_types:
                logger.info(f"Fingerprinted NIC device {nic.interface} ({device_type.value})")
                devices.extend(allocator.expand(self.config.num_pseudo_nic, device_type, nic))

        if self.config.probe_pps:
            for dev in self._probe("PPS devices", self.probes.probe_pps):
                logger.info(f"Fingerprinted PPS device {dev.interface}")
                devices.extend(allocator.expand(self.config.num_pseudo_pps, DeviceType.PPS, dev))
        if self.config.probe_ptp:
            for dev in self._probe("PTP devices", self.probes.probe_ptp):
                logger.info(f"Fingerprinted PTP device {dev.interface}")
                devices.extend(allocator.expand(self.config.num_pseudo_ptp, DeviceType.PTP, dev))

        return FingerprintData(
            nics=nics,
            devices=devices,
            onload_version=onload_version,
            zf_version=zf_version,
        )

    def _probe_version(self, what: str, probe, bin_path: str) -> str:
        try:
            return probe(bin_path)
        except ProbeError as e:
            logger.info(f"{what} not found: {e}")
        except Exception as e:
            logger.warning(f"Unexpected error probing {what} version: {e}", exc_info=True)
        return ""

    def _probe(self, what: str, probe) -> List[NICInfo]:
        try:
            return list(probe())
        except ProbeError as e:
            logger.info(f"Issue probing {what}: {e}")
        except Exception as e:
            logger.warning(f"Unexpected error probing {what}: {e}", exc_info=True)
        return []

    def fingerprint_changed(self, devices: List[FingerprintedDevice]) -> bool:
        """
        Replace the inventory and check whether any device appeared or disappeared.

        Only the ID set is compared; a changed record under a known ID is
        stored but does not count as a change.
        """
        new_devices = {d.id: d for d in devices}
        previous = self.store.replace(new_devices)
        return set(previous) != set(new_devices)

    def run_once(self) -> Optional[FingerprintResponse]:
        """
        Run one fingerprint pass.

        Returns:
            A response when the device set changed or fingerprinting
            failed, otherwise None
        """
        try:
            return self._run_pass()
        except Exception as e:
            logger.error(f"Failed to fingerprint onload devices: {e}", exc_info=True)
            return FingerprintResponse(error=str(e))

    def _run_pass(self) -> Optional[FingerprintResponse]:
        data = self.collect()
        logger.debug(
            f"Fingerprint results: {len(data.devices)} devices, "
            f"onload={data.onload_version!r}, zf={data.zf_version!r}"
        )

        devices = filter_ignored(data.devices, self.ignored_interfaces)
        if not self.fingerprint_changed(devices):
            return None

        attributes = {
            ATTR_ONLOAD_VERSION: data.onload_version,
            ATTR_ZF_VERSION: data.zf_version,
        }
        groups = group_devices(devices, attributes)
        logger.info(f"Device set changed: {len(devices)} devices in {len(groups)} groups")
        return FingerprintResponse(device_groups=groups)
