"""
Device probing, fingerprinting and reservation.

This module discovers Onload capable NICs and timekeeping devices, keeps
the device inventory, and maps reserved devices to container resources.
"""

__all__ = ["models", "probes", "store", "fingerprint", "reserve", "plugin"]
