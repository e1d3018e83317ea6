"""
Device inventory data models.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# Vendors. SFC devices were created by Solarflare, which was acquired by
# Xilinx, which was acquired by AMD.
VENDOR_SFC = "amd"
VENDOR_XDP = "xdp"
VENDOR_TIMEKEEPING = "linux"
VENDOR_NONE = "none"

# Name of the placeholder NIC published when no accelerated NIC is found
DEVICE_NAME_NONE = "none"

# Group attribute names
ATTR_ONLOAD_VERSION = "onload_version"
ATTR_ZF_VERSION = "zf_version"


class DeviceType(str, Enum):
    """Device types published to Nomad."""

    ONLOAD = "onload"
    ZF = "zf"
    ONLOAD_ZF = "onloadzf"
    PPS = "pps"
    PTP = "ptp"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value):
        return cls.UNKNOWN

    @property
    def is_onload_family(self) -> bool:
        return self in (DeviceType.ONLOAD, DeviceType.ZF, DeviceType.ONLOAD_ZF)

    @property
    def is_timekeeping(self) -> bool:
        return self in (DeviceType.PPS, DeviceType.PTP)

    @property
    def uses_zf(self) -> bool:
        return self in (DeviceType.ZF, DeviceType.ONLOAD_ZF)


class NICInfo(BaseModel):
    """
    A single probed interface.

    Produced by the probes for NICs and timekeeping devices alike.
    """

    model_config = ConfigDict(frozen=True)

    interface: str
    pci_bus_id: str = ""
    vendor: str = VENDOR_NONE


class FingerprintedDevice(BaseModel):
    """
    A device record from fingerprinting.

    The `id` is what Nomad schedules; several pseudo-devices share one
    physical `interface`.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique device ID, '<interface>-<ordinal>'")
    interface: str = Field(..., description="Underlying physical interface")
    device_type: DeviceType
    vendor: str
    model: str = Field("", description="Device model, falls back to the interface name")
    pci_bus_id: str = Field("", description="PCI bus address, empty for non-PCI devices")

    @property
    def group_key(self) -> str:
        return f"{self.vendor}/{self.device_type.value}/{self.model or self.interface}"


class DeviceGroup(BaseModel):
    """
    Devices that are identical for the purpose of scheduling.

    Nomad matches task device requests as `<device_type>`,
    `<vendor>/<device_type>` or `<vendor>/<device_type>/<name>`.
    """

    model_config = ConfigDict(frozen=True)

    vendor: str
    device_type: DeviceType
    name: str
    devices: List[FingerprintedDevice]
    attributes: Dict[str, str] = Field(default_factory=dict)


class FingerprintData(BaseModel):
    """Result of one probing pass, before filtering."""

    nics: List[NICInfo] = Field(default_factory=list)
    devices: List[FingerprintedDevice] = Field(default_factory=list)
    onload_version: str = ""
    zf_version: str = ""


class FingerprintResponse(BaseModel):
    """
    One item of the fingerprint stream: device groups, or an error.
    """

    device_groups: List[DeviceGroup] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


class DeviceSpec(BaseModel):
    """A device node to expose in the task."""

    task_path: str
    host_path: str
    cgroup_perms: str = "mrw"


class Mount(BaseModel):
    """A host file or directory to mount into the task."""

    task_path: str
    host_path: str
    read_only: bool = True


class ReservationSpec(BaseModel):
    """
    Container resources granted for reserved devices.
    """

    devices: List[DeviceSpec] = Field(default_factory=list)
    mounts: List[Mount] = Field(default_factory=list)
    envs: Dict[str, str] = Field(default_factory=dict)

    class Config:
        json_schema_extra = {
            "example": {
                "devices": [
                    {"task_path": "/dev/onload", "host_path": "/dev/onload", "cgroup_perms": "mrw"},
                    {"task_path": "/dev/sfc_char", "host_path": "/dev/sfc_char", "cgroup_perms": "mrw"},
                ],
                "mounts": [
                    {
                        "task_path": "/usr/lib/x86_64-linux-gnu/libonload.so",
                        "host_path": "/usr/lib/x86_64-linux-gnu/libonload.so",
                        "read_only": True,
                    },
                ],
                "envs": {"LD_PRELOAD": "/usr/lib/x86_64-linux-gnu/libonload.so"},
            }
        }
