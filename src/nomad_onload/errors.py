"""
Error taxonomy for the Onload device plugin.

Probe errors describe a missing or misbehaving external tool; the
fingerprinter treats them as "not present". Fingerprint errors end up on
the update stream. Reservation and configuration errors are returned to
the caller.
"""

from typing import List, Sequence


class OnloadPluginError(Exception):
    """Base class for all plugin exceptions."""
    pass


class ProbeError(OnloadPluginError):
    """Raised when a probe cannot produce a result."""
    pass


class ProbeNotFound(ProbeError):
    """Raised when the probed tool or hardware class is not installed."""
    pass


class MalformedProbeOutput(ProbeError):
    """Raised when a probe tool ran but its output did not match the expected format."""
    pass


class FingerprintError(OnloadPluginError):
    """Raised when a fingerprint pass could not be assembled."""
    pass


class ReservationError(OnloadPluginError):
    """Raised when a reservation names devices unknown to the inventory."""

    def __init__(self, unknown_ids: Sequence[str]):
        self.unknown_ids: List[str] = list(unknown_ids)
        super().__init__(f"unknown device IDs: {','.join(self.unknown_ids)}")


class ConfigurationError(OnloadPluginError):
    """Raised when the plugin configuration is invalid."""
    pass
