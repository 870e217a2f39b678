"""Connection and HR notification subscription for one peripheral."""

import asyncio
import logging
from collections.abc import Callable

from bleak import BleakClient
from bleak.backends.characteristic import BleakGATTCharacteristic

from .device import HR_CHAR_UUID, HR_SERVICE_UUID, DeviceRecord
from .errors import SubscribeError
from .parser import HeartRateMeasurement, Rejected, decode_heart_rate

logger = logging.getLogger(__name__)

DisconnectCallback = Callable[[str], None]


class NotificationStream:
    """Decoded HR notifications from one subscription, in arrival order.

    Iteration ends when the device disconnects or close() is called.
    """

    def __init__(self, client: BleakClient, characteristic: BleakGATTCharacteristic):
        self._client = client
        self._characteristic = characteristic
        self._queue: asyncio.Queue[HeartRateMeasurement | Rejected | None] = asyncio.Queue()
        self._ended = False

    @property
    def ended(self) -> bool:
        return self._ended

    def _notify_handler(self, _: object, data: bytearray) -> None:
        """Handle incoming HR notifications."""
        if self._ended:
            return
        self._queue.put_nowait(decode_heart_rate(bytes(data)))

    def end(self) -> None:
        """Mark the stream finished; queued notifications are still delivered."""
        if not self._ended:
            self._ended = True
            self._queue.put_nowait(None)

    async def close(self) -> None:
        """End the stream and disable notifications if the link is still up."""
        if self._ended:
            return
        self.end()
        if not self._client.is_connected:
            return
        try:
            await self._client.stop_notify(self._characteristic)
        except Exception as e:
            logger.debug("Failed to disable HR notifications: %s", e)

    def __aiter__(self) -> "NotificationStream":
        return self

    async def __anext__(self) -> HeartRateMeasurement | Rejected:
        if self._ended and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item


class HrsPeripheral:
    """A connectable device that provides the Heart Rate Service."""

    def __init__(
        self,
        record: DeviceRecord,
        on_disconnect: DisconnectCallback | None = None,
        adapter: str | None = None,
    ):
        self.record = record
        self._on_disconnect = on_disconnect
        self._stream: NotificationStream | None = None
        kwargs = {"adapter": adapter} if adapter else {}
        self._client = BleakClient(
            record.device or record.address,
            disconnected_callback=self._disconnected_handler,
            **kwargs,
        )

    @property
    def address(self) -> str:
        return self.record.address

    @property
    def is_connected(self) -> bool:
        return self._client.is_connected

    def _disconnected_handler(self, _: BleakClient) -> None:
        logger.debug("Link to %s lost", self.address)
        if self._stream is not None:
            self._stream.end()
        if self._on_disconnect is not None:
            self._on_disconnect(self.address)

    async def connect(self) -> None:
        logger.debug("Connecting to %s...", self.address)
        await self._client.connect()

    async def disconnect(self) -> None:
        """Disconnect from the device. Does nothing if not connected."""
        if not self._client.is_connected:
            return
        await self._client.disconnect()

    async def subscribe(self) -> NotificationStream:
        """Enable HR measurement notifications and return their stream.

        Raises:
            SubscribeError: If the device lacks the HR service or characteristic
        """
        service = self._client.services.get_service(HR_SERVICE_UUID)
        if service is None:
            raise SubscribeError(f"{self.address} has no Heart Rate service")
        characteristic = service.get_characteristic(HR_CHAR_UUID)
        if characteristic is None:
            raise SubscribeError(f"{self.address} has no Heart Rate Measurement characteristic")

        stream = NotificationStream(self._client, characteristic)
        await self._client.start_notify(characteristic, stream._notify_handler)
        self._stream = stream
        logger.debug("Subscribed to HR notifications from %s", self.address)
        return stream
