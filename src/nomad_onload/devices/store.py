"""
In-memory device inventory.

The fingerprint loop is the only writer and replaces the whole map on
every pass. Reservations read it concurrently, possibly from other
threads, so access goes through a read/write lock and callers only ever
receive copies.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Mapping, Sequence, Set, Tuple

from .models import FingerprintedDevice

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """
    Many readers or one writer.

    Waiting writers block new readers so a steady stream of reservations
    cannot starve the fingerprint loop.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class InventoryStore:
    """
    Fingerprinted devices keyed by device ID.

    Empty at startup; replaced wholesale by every fingerprint pass.
    """

    def __init__(self):
        """Initialize an empty inventory."""
        self._devices: Dict[str, FingerprintedDevice] = {}
        self._lock = ReadWriteLock()

    def snapshot(self) -> Dict[str, FingerprintedDevice]:
        """Return a copy of the current device map."""
        with self._lock.read_locked():
            return dict(self._devices)

    def ids(self) -> Set[str]:
        """Return the current set of device IDs."""
        with self._lock.read_locked():
            return set(self._devices)

    def replace(self, devices: Mapping[str, FingerprintedDevice]) -> Dict[str, FingerprintedDevice]:
        """
        Atomically replace the inventory.

        Args:
            devices: New device map

        Returns:
            The device map that was replaced
        """
        new_devices = dict(devices)
        with self._lock.write_locked():
            previous, self._devices = self._devices, new_devices
        logger.debug(f"Inventory replaced ({len(previous)} -> {len(new_devices)} devices)")
        return previous

    def lookup(self, device_ids: Sequence[str]) -> Tuple[List[FingerprintedDevice], List[str]]:
        """
        Look up several devices under a single read lock.

        Args:
            device_ids: IDs to look up, in order

        Returns:
            (found devices in request order, unknown IDs in request order)
        """
        found: List[FingerprintedDevice] = []
        missing: List[str] = []
        with self._lock.read_locked():
            for device_id in device_ids:
                device = self._devices.get(device_id)
                if device is None:
                    missing.append(device_id)
                else:
                    found.append(device)
        return found, missing

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._devices)
