"""
Onload device plugin: fingerprint loop and reservation entry point.

The fingerprint loop is the only writer of the inventory. Reservations
read it on demand and may run concurrently with a fingerprint pass.
"""

import asyncio
import logging
import signal
import sys
from typing import AsyncIterator, Dict, Optional, Sequence

from .. import PLUGIN_INFO
from ..config import PluginConfig, get_config, parse_duration
from ..errors import ConfigurationError, OnloadPluginError
from .fingerprint import Fingerprinter
from .models import FingerprintResponse, ReservationSpec
from .probes import SystemProbes
from .reserve import ReservationMapper
from .store import InventoryStore

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


class OnloadDevicePlugin:
    """
    Nomad device plugin exposing Onload, TCPDirect and timekeeping devices.

    Usage:
        plugin = OnloadDevicePlugin()
        plugin.set_config(load_config("onload.yaml"))

        async for response in plugin.fingerprint():
            ...

        spec = plugin.reserve(["eth0-0"])
    """

    def __init__(self, config: Optional[PluginConfig] = None, probes=None):
        """
        Initialize the plugin.

        Args:
            config: Configuration; may also be supplied later via set_config
            probes: System probes override (defaults to SystemProbes)
        """
        self.store = InventoryStore()
        self.config: Optional[PluginConfig] = None
        self.fingerprint_period: Optional[float] = None
        self.fingerprinter: Optional[Fingerprinter] = None
        self.mapper: Optional[ReservationMapper] = None

        self._probes = probes
        self._stop: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

        if config is not None:
            self.set_config(config)

    def plugin_info(self) -> Dict[str, str]:
        """Return information identifying the plugin."""
        return dict(PLUGIN_INFO)

    def set_config(self, config: PluginConfig) -> None:
        """
        Apply the plugin configuration.

        Raises:
            ConfigurationError: If the fingerprint period is invalid
        """
        try:
            period = parse_duration(config.fingerprint_period)
        except ValueError as e:
            raise ConfigurationError(
                f"failed to parse fingerprint period {config.fingerprint_period!r}: {e}"
            ) from e
        if period <= 0:
            raise ConfigurationError(f"fingerprint period must be positive, got {config.fingerprint_period!r}")

        probes = self._probes
        if probes is None:
            probes = SystemProbes(sysfs_root=config.sysfs_path, xdp_drivers=config.xdp_drivers)

        self.config = config
        self.fingerprint_period = period
        self.fingerprinter = Fingerprinter(config, probes, self.store)
        self.mapper = ReservationMapper(config, self.store)

        logger.info(f"Config set: {config.model_dump()}")

    def start(self) -> "asyncio.Queue[Optional[FingerprintResponse]]":
        """
        Start the fingerprint loop as a background task.

        Returns:
            Queue receiving responses; None marks the end of the stream

        Raises:
            ConfigurationError: If the plugin is not configured
            OnloadPluginError: If a fingerprint loop is already running
        """
        if self.fingerprinter is None:
            raise ConfigurationError("plugin is not configured")
        # the loop is the only inventory writer
        if self.running:
            raise OnloadPluginError("fingerprint loop is already running")

        queue: "asyncio.Queue[Optional[FingerprintResponse]]" = asyncio.Queue()
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._run(queue, self._stop))
        return queue

    async def fingerprint(self) -> AsyncIterator[FingerprintResponse]:
        """
        Stream fingerprint responses.

        A response is emitted whenever the device set changes or a
        fingerprint pass fails. The stream ends after stop(). Closing the
        stream early stops the loop.
        """
        queue = self.start()
        try:
            while True:
                response = await queue.get()
                if response is None:
                    return
                yield response
        finally:
            self.stop()

    @property
    def running(self) -> bool:
        """Whether a fingerprint loop task is active."""
        return self._task is not None and not self._task.done()

    def stop(self) -> None:
        """Stop the fingerprint loop at the next tick boundary."""
        logger.info("Stopping fingerprint loop")
        if self._stop is not None:
            self._stop.set()

    async def _run(self, queue: asyncio.Queue, stop: asyncio.Event) -> None:
        logger.info(f"Starting fingerprint loop (period: {self.fingerprint_period}s)")
        try:
            while not stop.is_set():
                response = await asyncio.to_thread(self.fingerprinter.run_once)
                if stop.is_set():
                    break
                if response is not None:
                    await queue.put(response)

                try:
                    await asyncio.wait_for(stop.wait(), timeout=self.fingerprint_period)
                except asyncio.TimeoutError:
                    pass
        finally:
            queue.put_nowait(None)

    def reserve(self, device_ids: Sequence[str]) -> ReservationSpec:
        """
        Return the container reservation for the given devices.

        Called in a pre-start hook on the client, before the workload starts.

        Raises:
            ReservationError: If any device ID is unknown
        """
        if self.mapper is None:
            raise ConfigurationError("plugin is not configured")
        return self.mapper.reserve(device_ids)


async def _log_fingerprints(plugin: OnloadDevicePlugin) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, plugin.stop)

    async for response in plugin.fingerprint():
        if response.is_error:
            logger.error(f"Fingerprint error: {response.error}")
            continue
        for group in response.device_groups:
            ids = [d.id for d in group.devices]
            logger.info(f"Device group {group.vendor}/{group.device_type.value}/{group.name}: {ids}")


def main() -> None:
    """Main entry point for the fingerprint service."""
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    try:
        config = get_config()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    logging.getLogger().setLevel(config.log_level)

    logger.info("=" * 60)
    logger.info(f"Nomad Onload - Device Plugin {PLUGIN_INFO['version']}")
    logger.info("=" * 60)
    logger.info(f"Fingerprint Period: {config.fingerprint_period}")
    logger.info(f"Ignored Interfaces: {config.ignored_interfaces}")
    logger.info("=" * 60)

    try:
        plugin = OnloadDevicePlugin(config)
        asyncio.run(_log_fingerprints(plugin))
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Received interrupt signal")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
