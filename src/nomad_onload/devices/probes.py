"""
System probes for Onload, TCPDirect, accelerated NICs and timekeeping devices.

Every probe either returns structured results or raises a ProbeError.
A missing driver or device class is an expected steady state, so callers
treat ProbeError as "not present" rather than as a failure.
"""

import logging
import re
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from ..errors import MalformedProbeOutput, ProbeError, ProbeNotFound
from .models import VENDOR_SFC, VENDOR_TIMEKEEPING, VENDOR_XDP, NICInfo

logger = logging.getLogger(__name__)


_ONLOAD_VERSION_RE = re.compile(r"^[Oo]nload ([0-9.]*)")
_ZF_VERSION_RE = re.compile(r"^TCPDirect Library version: ([0-9.]*)")

# Matches "0000:b1:00.0" style PCI function addresses
_PCI_ADDRESS_RE = re.compile(r"^[0-9a-f]{4}:[0-9a-f]{2}:[0-9a-f]{2}\.[0-7]$")

# Description marker of Solarflare NICs in lshw output
SFC_MARKER = "SFC"


def lshw_network_pattern(marker: str) -> "re.Pattern[str]":
    """
    Build the line pattern for `lshw -businfo -class network` output.

    Sample output:
        Bus info          Device     Class          Description
        =======================================================
        pci@0000:04:00.0  eth2       network        NetXtreme BCM5720 Gigabit Ethernet PCIe
        pci@0000:31:00.0             network        BCM57412 NetXtreme-E 10Gb RDMA Ethernet Controller
        pci@0000:b1:00.0  eth0       network        SFC9220 10/40G Ethernet Controller

    First group is the PCI bus address, second is the interface. Lines with
    no interface name never match.
    """
    return re.compile(
        r"^pci@(?P<bus>[0-9a-f:.]+)\s+(?P<iface>[\w.-]+)\s+network\s+.*" + re.escape(marker)
    )


def parse_lshw_network(output: str, marker: str, vendor: str) -> List[NICInfo]:
    """
    Extract interfaces from lshw output whose description contains `marker`.

    Non-matching lines are skipped.
    """
    pattern = lshw_network_pattern(marker)
    nics: List[NICInfo] = []
    for line in output.splitlines():
        m = pattern.match(line)
        if m:
            nics.append(NICInfo(interface=m.group("iface"), pci_bus_id=m.group("bus"), vendor=vendor))
    return nics


def parse_version(output: str, pattern: "re.Pattern[str]", tool: str) -> str:
    """
    Extract the version number from a tool's version output.

    Raises:
        MalformedProbeOutput: If the anchored pattern does not match
    """
    m = pattern.match(output)
    if not m:
        raise MalformedProbeOutput(f"{tool} output malformed: {output[:80]!r}")
    return m.group(1)


class SystemProbes:
    """
    Probes the host for accelerated networking and timekeeping hardware.

    Commands run through `run_command`, and sysfs is read below
    `sysfs_root`, so both can be redirected in tests.
    """

    def __init__(
        self,
        sysfs_root: str = "/sys",
        xdp_drivers: Optional[Iterable[str]] = None,
    ):
        """
        Initialize system probes.

        Args:
            sysfs_root: Mount point of sysfs
            xdp_drivers: Kernel drivers treated as XDP capable
        """
        self.sysfs_root = Path(sysfs_root)
        self.xdp_drivers = set(xdp_drivers or [])

    def run_command(self, argv: Sequence[str], merge_stderr: bool = False) -> str:
        """
        Run an external command and return its output.

        Raises:
            ProbeNotFound: If the executable does not exist
            ProbeError: If the command exits non-zero
        """
        try:
            result = subprocess.run(
                list(argv),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if merge_stderr else subprocess.PIPE,
                text=True,
                check=True,
            )
        except FileNotFoundError as e:
            raise ProbeNotFound(f"{argv[0]} not found") from e
        except subprocess.CalledProcessError as e:
            raise ProbeError(f"'{' '.join(argv)}' failed with exit code {e.returncode}") from e
        except OSError as e:
            raise ProbeError(f"Could not run {argv[0]}: {e}") from e
        return result.stdout

    # ------------------------------------------------------------------
    # Versions

    def probe_onload_version(self, bin_path: str) -> str:
        """
        Probe the Onload version using `onload --version`.

        Args:
            bin_path: Directory holding the `onload` executable

        Returns:
            Version string, e.g. "8.1.2.26"
        """
        onload_bin = Path(bin_path) / "onload"
        if not onload_bin.exists():
            raise ProbeNotFound(f"onload executable not found at '{onload_bin}'")

        output = self.run_command([str(onload_bin), "--version"])
        return parse_version(output, _ONLOAD_VERSION_RE, "onload")

    def probe_zf_version(self, bin_path: str) -> str:
        """
        Probe the TCPDirect version using `zf_stackdump version`.

        Args:
            bin_path: Directory holding the `zf_stackdump` executable

        Returns:
            Version string
        """
        zf_bin = Path(bin_path) / "zf_stackdump"
        if not zf_bin.exists():
            raise ProbeNotFound(f"zf_stackdump executable not found at '{zf_bin}'")

        output = self.run_command([str(zf_bin), "version"], merge_stderr=True)
        return parse_version(output, _ZF_VERSION_RE, "zf_stackdump")

    # ------------------------------------------------------------------
    # NICs

    def probe_sfc_nics(self) -> List[NICInfo]:
        """Return the Solarflare interfaces present on the node."""
        output = self.run_command(["lshw", "-businfo", "-class", "network"], merge_stderr=True)
        return parse_lshw_network(output, SFC_MARKER, VENDOR_SFC)

    def probe_xdp_nics(self) -> List[NICInfo]:
        """Return interfaces bound to an XDP capable driver."""
        net_path = self.sysfs_root / "class" / "net"
        if not net_path.is_dir():
            raise ProbeNotFound(f"{net_path} does not exist")

        nics: List[NICInfo] = []
        for iface in sorted(net_path.iterdir()):
            device_link = iface / "device"
            driver_link = device_link / "driver"
            if not driver_link.exists():
                continue

            driver = driver_link.resolve().name
            if driver not in self.xdp_drivers:
                logger.debug(f"Skipping {iface.name}: driver {driver} not XDP capable")
                continue

            nics.append(
                NICInfo(
                    interface=iface.name,
                    pci_bus_id=self._pci_bus_id(device_link),
                    vendor=VENDOR_XDP,
                )
            )
        return nics

    # ------------------------------------------------------------------
    # Timekeeping

    def probe_pps(self) -> List[NICInfo]:
        """Return PPS devices (/dev/ppsN)."""
        return self._probe_class_devices("pps")

    def probe_ptp(self) -> List[NICInfo]:
        """Return PTP hardware clocks (/dev/ptpN)."""
        return self._probe_class_devices("ptp")

    def _probe_class_devices(self, class_name: str) -> List[NICInfo]:
        class_path = self.sysfs_root / "class" / class_name
        if not class_path.is_dir():
            raise ProbeNotFound(f"{class_path} does not exist")

        devices: List[NICInfo] = []
        for entry in sorted(class_path.glob(f"{class_name}*")):
            devices.append(
                NICInfo(
                    interface=entry.name,
                    pci_bus_id=self._pci_bus_id(entry / "device"),
                    vendor=VENDOR_TIMEKEEPING,
                )
            )
        return devices

    @staticmethod
    def _pci_bus_id(device_link: Path) -> str:
        """PCI address a sysfs `device` link points at, or "" if it is not a PCI function."""
        if not device_link.exists():
            return ""
        name = device_link.resolve().name
        return name if _PCI_ADDRESS_RE.match(name) else ""
