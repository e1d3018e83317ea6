"""
Shared fixtures for the Onload device plugin tests.
"""

from typing import List, Optional

import pytest

from nomad_onload.config import PluginConfig
from nomad_onload.devices.models import VENDOR_SFC, NICInfo
from nomad_onload.errors import ProbeNotFound


def nic(interface: str, pci_bus_id: str = "", vendor: str = VENDOR_SFC) -> NICInfo:
    return NICInfo(interface=interface, pci_bus_id=pci_bus_id, vendor=vendor)


class FakeProbes:
    """
    Stand-in for SystemProbes returning canned results.

    A value of None means "not found"; an exception instance is raised.
    """

    def __init__(
        self,
        onload_version: Optional[str] = "7.1.0",
        zf_version: Optional[str] = None,
        sfc_nics: Optional[List[NICInfo]] = None,
        xdp_nics: Optional[List[NICInfo]] = None,
        pps: Optional[List[NICInfo]] = None,
        ptp: Optional[List[NICInfo]] = None,
    ):
        self.onload_version = onload_version
        self.zf_version = zf_version
        self.sfc_nics = sfc_nics
        self.xdp_nics = xdp_nics
        self.pps = pps
        self.ptp = ptp

    @staticmethod
    def _result(value, what):
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise ProbeNotFound(f"{what} not found")
        return value

    def probe_onload_version(self, bin_path):
        return self._result(self.onload_version, "onload")

    def probe_zf_version(self, bin_path):
        return self._result(self.zf_version, "zf_stackdump")

    def probe_sfc_nics(self):
        return list(self._result(self.sfc_nics, "lshw"))

    def probe_xdp_nics(self):
        return list(self._result(self.xdp_nics, "class/net"))

    def probe_pps(self):
        return list(self._result(self.pps, "class/pps"))

    def probe_ptp(self):
        return list(self._result(self.ptp, "class/ptp"))


@pytest.fixture
def fake_probes():
    return FakeProbes(sfc_nics=[nic("eth0", "0000:b1:00.0")])


@pytest.fixture
def make_config():
    def _make(**overrides) -> PluginConfig:
        return PluginConfig(**overrides)

    return _make
