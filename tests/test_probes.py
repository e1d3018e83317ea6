"""
Tests for system probes.
"""

import os

import pytest

from nomad_onload.devices.models import VENDOR_SFC, VENDOR_TIMEKEEPING, VENDOR_XDP
from nomad_onload.devices.probes import SFC_MARKER, SystemProbes, parse_lshw_network
from nomad_onload.errors import MalformedProbeOutput, ProbeError, ProbeNotFound


LSHW_OUTPUT = """\
Bus info          Device     Class          Description
=======================================================
pci@0000:04:00.0  eth2       network        NetXtreme BCM5720 Gigabit Ethernet PCIe
pci@0000:04:00.1  eth3       network        NetXtreme BCM5720 Gigabit Ethernet PCIe
pci@0000:31:00.0             network        BCM57412 NetXtreme-E 10Gb RDMA Ethernet Controller
pci@0000:98:00.0  eth4       network        BCM57412 NetXtreme-E 10Gb RDMA Ethernet Controller
pci@0000:b1:00.0  eth0       network        SFC9220 10/40G Ethernet Controller
pci@0000:b1:00.1  eth1       network        SFC9220 10/40G Ethernet Controller
pci@0000:c3:00.0             network        SFC9250 10/25/40/50/100G Ethernet Controller
"""


class CannedProbes(SystemProbes):
    """SystemProbes with canned command output."""

    def __init__(self, outputs, **kwargs):
        super().__init__(**kwargs)
        self.outputs = outputs
        self.commands = []

    def run_command(self, argv, merge_stderr=False):
        self.commands.append(list(argv))
        result = self.outputs[os.path.basename(argv[0])]
        if isinstance(result, Exception):
            raise result
        return result


def _make_executable(directory, name):
    path = directory / name
    path.write_text("#!/bin/sh\n")
    path.chmod(0o755)
    return path


def _pci_function(root, address, driver=None):
    """Create a fake PCI function directory, optionally bound to a driver."""
    func = root / "devices" / "pci0000:b0" / address
    func.mkdir(parents=True)
    if driver:
        drv = root / "bus" / "pci" / "drivers" / driver
        drv.mkdir(parents=True, exist_ok=True)
        (func / "driver").symlink_to(drv)
    return func


class TestLshwParsing:
    """Parsing `lshw -businfo -class network` output."""

    def test_extracts_sfc_interfaces(self):
        nics = parse_lshw_network(LSHW_OUTPUT, SFC_MARKER, VENDOR_SFC)
        assert [(n.interface, n.pci_bus_id) for n in nics] == [
            ("eth0", "0000:b1:00.0"),
            ("eth1", "0000:b1:00.1"),
        ]
        assert all(n.vendor == VENDOR_SFC for n in nics)

    def test_skips_unmatched_lines(self):
        assert parse_lshw_network("garbage\n\nBus info  Device\n", SFC_MARKER, VENDOR_SFC) == []

    def test_other_marker(self):
        nics = parse_lshw_network(LSHW_OUTPUT, "BCM5720", "broadcom")
        assert [n.interface for n in nics] == ["eth2", "eth3"]


class TestVersionProbes:
    """Onload and TCPDirect version probes."""

    def test_onload_version(self, tmp_path):
        _make_executable(tmp_path, "onload")
        probes = CannedProbes({"onload": "Onload 8.1.2.26\nCopyright 2019-2023 Advanced Micro Devices\n"})

        assert probes.probe_onload_version(str(tmp_path)) == "8.1.2.26"
        assert probes.commands == [[str(tmp_path / "onload"), "--version"]]

    def test_onload_lowercase_prefix(self, tmp_path):
        _make_executable(tmp_path, "onload")
        probes = CannedProbes({"onload": "onload 7.1.0\n"})
        assert probes.probe_onload_version(str(tmp_path)) == "7.1.0"

    def test_onload_missing_binary_not_invoked(self, tmp_path):
        probes = CannedProbes({})
        with pytest.raises(ProbeNotFound):
            probes.probe_onload_version(str(tmp_path))
        assert probes.commands == []

    def test_onload_malformed_output(self, tmp_path):
        _make_executable(tmp_path, "onload")
        probes = CannedProbes({"onload": "usage: onload [options] <command>\n"})
        with pytest.raises(MalformedProbeOutput):
            probes.probe_onload_version(str(tmp_path))

    def test_onload_command_failure(self, tmp_path):
        _make_executable(tmp_path, "onload")
        probes = CannedProbes({"onload": ProbeError("exit code 1")})
        with pytest.raises(ProbeError):
            probes.probe_onload_version(str(tmp_path))

    def test_zf_version(self, tmp_path):
        _make_executable(tmp_path, "zf_stackdump")
        probes = CannedProbes({"zf_stackdump": "TCPDirect Library version: 8.1.2.26\nbuilt from ...\n"})

        assert probes.probe_zf_version(str(tmp_path)) == "8.1.2.26"
        assert probes.commands == [[str(tmp_path / "zf_stackdump"), "version"]]

    def test_zf_malformed_output(self, tmp_path):
        _make_executable(tmp_path, "zf_stackdump")
        probes = CannedProbes({"zf_stackdump": "zf_stackdump: command not understood\n"})
        with pytest.raises(MalformedProbeOutput):
            probes.probe_zf_version(str(tmp_path))

    def test_zf_missing_binary(self, tmp_path):
        with pytest.raises(ProbeNotFound):
            CannedProbes({}).probe_zf_version(str(tmp_path))


class TestRunCommand:
    """The real command runner."""

    def test_missing_executable(self, tmp_path):
        with pytest.raises(ProbeNotFound):
            SystemProbes().run_command([str(tmp_path / "does-not-exist")])


class TestNicProbes:
    """NIC enumeration."""

    def test_sfc_nics(self):
        probes = CannedProbes({"lshw": LSHW_OUTPUT})
        nics = probes.probe_sfc_nics()
        assert [n.interface for n in nics] == ["eth0", "eth1"]
        assert probes.commands == [["lshw", "-businfo", "-class", "network"]]

    def test_xdp_nics(self, tmp_path):
        net = tmp_path / "class" / "net"
        net.mkdir(parents=True)

        for iface, address, driver in [
            ("eth0", "0000:b1:00.0", "ice"),
            ("eth1", "0000:b1:00.1", "r8169"),
        ]:
            (net / iface).mkdir()
            (net / iface / "device").symlink_to(_pci_function(tmp_path, address, driver))
        (net / "lo").mkdir()

        probes = SystemProbes(sysfs_root=str(tmp_path), xdp_drivers=["ice", "mlx5_core"])
        nics = probes.probe_xdp_nics()

        assert [(n.interface, n.pci_bus_id, n.vendor) for n in nics] == [
            ("eth0", "0000:b1:00.0", VENDOR_XDP)
        ]

    def test_xdp_without_sysfs(self, tmp_path):
        with pytest.raises(ProbeNotFound):
            SystemProbes(sysfs_root=str(tmp_path)).probe_xdp_nics()


class TestTimekeepingProbes:
    """PPS and PTP enumeration."""

    def test_ptp_devices(self, tmp_path):
        ptp = tmp_path / "class" / "ptp"
        ptp.mkdir(parents=True)
        (ptp / "ptp0").mkdir()
        (ptp / "ptp0" / "device").symlink_to(_pci_function(tmp_path, "0000:b1:00.0"))
        (ptp / "ptp1").mkdir()

        devices = SystemProbes(sysfs_root=str(tmp_path)).probe_ptp()

        assert [(d.interface, d.pci_bus_id, d.vendor) for d in devices] == [
            ("ptp0", "0000:b1:00.0", VENDOR_TIMEKEEPING),
            ("ptp1", "", VENDOR_TIMEKEEPING),
        ]

    def test_pps_non_pci_device(self, tmp_path):
        pps = tmp_path / "class" / "pps"
        pps.mkdir(parents=True)
        serial = tmp_path / "devices" / "platform" / "serial8250" / "tty" / "ttyS0"
        serial.mkdir(parents=True)
        (pps / "pps0").mkdir()
        (pps / "pps0" / "device").symlink_to(serial)

        devices = SystemProbes(sysfs_root=str(tmp_path)).probe_pps()

        assert [(d.interface, d.pci_bus_id) for d in devices] == [("pps0", "")]

    def test_missing_class_is_not_found(self, tmp_path):
        with pytest.raises(ProbeNotFound):
            SystemProbes(sysfs_root=str(tmp_path)).probe_pps()
