"""
Nomad Onload - Device plugin for kernel-bypass networking and timekeeping

This package discovers Onload / TCPDirect capable network interfaces and
PPS / PTP timekeeping devices on a node, publishes them to Nomad as
schedulable devices, and computes the container resources a task needs
to use a reserved device.

Main modules:
- config: Plugin configuration (environment, .env and YAML)
- errors: Exception taxonomy
- devices: Probing, fingerprinting, inventory and reservation
"""

__version__ = "0.1.0"
__author__ = "Nomad Onload Team"

from typing import Dict

# Plugin identity reported to the Nomad client
PLUGIN_NAME = "onload"
PLUGIN_VERSION = "v0.1.0"
PLUGIN_TYPE = "device"

PLUGIN_INFO: Dict[str, str] = {
    "name": PLUGIN_NAME,
    "version": PLUGIN_VERSION,
    "type": PLUGIN_TYPE,
}


__all__ = ["__version__", "__author__", "PLUGIN_NAME", "PLUGIN_VERSION", "PLUGIN_TYPE", "PLUGIN_INFO"]
