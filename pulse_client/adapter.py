"""Local Bluetooth radio: power state, filtered scanning and the adapter event feed."""

import asyncio
import logging
from collections.abc import AsyncIterator
from enum import Enum

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData

from .device import HR_SERVICE_UUID, DeviceRecord
from .errors import AdapterUnavailable
from .events import AdapterEvent, AdapterStateChanged, DeviceDisconnected, DeviceDiscovered
from .peripheral import HrsPeripheral

logger = logging.getLogger(__name__)

# Backend error texts that mean "radio present but switched off"
POWERED_OFF_HINTS = ("not powered", "no powered", "powered off", "turned off")


class AdapterState(Enum):
    UNKNOWN = "unknown"
    POWERED_OFF = "powered_off"
    POWERED_ON = "powered_on"


def is_powered_off_error(error: BaseException) -> bool:
    """Check whether a backend error reports a radio that is switched off."""
    reason = getattr(error, "reason", None)
    if getattr(reason, "name", "") == "POWERED_OFF":
        return True
    message = str(error).lower()
    return any(hint in message for hint in POWERED_OFF_HINTS)


class AdapterFacade:
    """Wraps the Bluetooth radio used for scanning and connecting.

    bleak reports no power events, so the power state is only refreshed by
    open() and by a scan start that fails because the radio is off. A radio
    switched off mid-scan or while connected shows up as a link loss, not as
    AdapterStateChanged(POWERED_OFF), until the next scan start.
    """

    def __init__(self, adapter: str | None = None, power_poll_interval: float = 5.0):
        self._adapter = adapter or None
        self._power_poll_interval = power_poll_interval
        self._state = AdapterState.UNKNOWN
        self._events: asyncio.Queue[AdapterEvent] = asyncio.Queue()
        self._scanner: BleakScanner | None = None
        self._scanning = False
        self._seen: set[str] = set()
        self._lock = asyncio.Lock()
        self._watcher: asyncio.Task | None = None

    @property
    def state(self) -> AdapterState:
        return self._state

    @property
    def is_scanning(self) -> bool:
        return self._scanning

    def _require_scanner(self) -> BleakScanner:
        if self._scanner is None:
            raise RuntimeError("AdapterFacade.open() has not been called")
        return self._scanner

    def _post(self, event: AdapterEvent) -> None:
        self._events.put_nowait(event)

    def _set_state(self, state: AdapterState) -> None:
        if state == self._state:
            return
        logger.info("Bluetooth adapter %s", state.value.replace("_", " "))
        self._state = state
        self._post(AdapterStateChanged(state))
        if state is AdapterState.POWERED_OFF and (self._watcher is None or self._watcher.done()):
            self._watcher = asyncio.create_task(self._watch_power())

    def _detection_callback(self, device: BLEDevice, adv: AdvertisementData) -> None:
        record = DeviceRecord.from_advertisement(device, adv)
        if record is None or record.address in self._seen:
            return
        self._seen.add(record.address)
        logger.debug("Discovered: %s (%s)", record, record.address)
        self._post(DeviceDiscovered(record))

    def _disconnect_handler(self, address: str) -> None:
        self._post(DeviceDisconnected(address))

    async def _probe(self) -> AdapterState:
        """Start and stop the scanner once to find out whether the radio is usable."""
        scanner = self._require_scanner()
        async with self._lock:
            try:
                await scanner.start()
                await scanner.stop()
            except Exception as e:
                if is_powered_off_error(e):
                    return AdapterState.POWERED_OFF
                raise
        return AdapterState.POWERED_ON

    async def _watch_power(self) -> None:
        """Re-probe a powered-off radio until it comes back."""
        while self._state is AdapterState.POWERED_OFF:
            await asyncio.sleep(self._power_poll_interval)
            try:
                state = await self._probe()
            except Exception as e:
                logger.debug("Adapter probe failed: %s", e)
                continue
            self._set_state(state)

    async def open(self) -> None:
        """Find the radio and read its power state.

        Raises:
            AdapterUnavailable: If no usable Bluetooth adapter exists
        """
        kwargs = {"adapter": self._adapter} if self._adapter else {}
        try:
            self._scanner = BleakScanner(
                detection_callback=self._detection_callback,
                service_uuids=[HR_SERVICE_UUID],
                **kwargs,
            )
            state = await self._probe()
        except Exception as e:
            raise AdapterUnavailable(f"No Bluetooth adapter available: {e}") from e
        self._set_state(state)

    async def start_scan(self) -> None:
        """Start scanning for HR devices. Does nothing if already scanning."""
        scanner = self._require_scanner()
        async with self._lock:
            # A rescan repopulates the registry, so forget what was already reported
            self._seen.clear()
            if self._scanning:
                return
            try:
                await scanner.start()
            except Exception as e:
                if is_powered_off_error(e):
                    self._set_state(AdapterState.POWERED_OFF)
                raise
            self._scanning = True
        logger.debug("Scanning for HR devices...")

    async def stop_scan(self) -> None:
        """Stop scanning. Does nothing if not scanning."""
        scanner = self._require_scanner()
        async with self._lock:
            if not self._scanning:
                return
            await scanner.stop()
            self._scanning = False
        logger.debug("Scan stopped")

    def peripheral(self, record: DeviceRecord) -> HrsPeripheral:
        """Create a connectable handle whose link loss shows up on the event feed."""
        return HrsPeripheral(record, on_disconnect=self._disconnect_handler, adapter=self._adapter)

    async def events(self) -> AsyncIterator[AdapterEvent]:
        """Yield adapter events in the order they happened, forever."""
        while True:
            yield await self._events.get()

    async def close(self) -> None:
        if self._watcher is not None:
            self._watcher.cancel()
            try:
                await self._watcher
            except asyncio.CancelledError:
                pass
            self._watcher = None
        if self._scanner is not None and self._scanning:
            try:
                await self.stop_scan()
            except Exception as e:
                logger.debug("Failed to stop scan on close: %s", e)
