"""Connection controller: runs the state machine against the real radio."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from .adapter import AdapterFacade
from .device import DeviceRegistry
from .errors import ContractViolation
from .events import (
    ConnectFailed,
    ConnectSucceeded,
    DisconnectFailed,
    ErrorKind,
    ErrorOccurred,
    Message,
    NotificationReceived,
    ScanStartFailed,
    ScanStopFailed,
    StreamClosed,
    SubscribeFailed,
    SubscribeSucceeded,
    UpwardEvent,
)
from .parser import HeartRateMeasurement
from .peripheral import HrsPeripheral, NotificationStream
from .state import (
    BeginScan,
    CloseConnection,
    CloseStream,
    ConnectionState,
    Effect,
    Emit,
    EndScan,
    OpenConnection,
    Session,
    StreamReadings,
    Subscribe,
    Unsubscribe,
    check_command,
    update,
)

logger = logging.getLogger(__name__)

EventCallback = Callable[[UpwardEvent], Awaitable[None]]


class ConnectionController:
    """Owns the connection state and serializes every change to it.

    Commands, adapter events and the outcomes of BLE operations all go through
    one queue and are applied one at a time, in arrival order.
    """

    def __init__(self, adapter: AdapterFacade, on_event: EventCallback):
        self.adapter = adapter
        self.on_event = on_event
        self._session = Session(adapter_state=adapter.state)
        self._inbox: asyncio.Queue[Message | None] = asyncio.Queue()
        self._peripheral: HrsPeripheral | None = None
        self._stream: NotificationStream | None = None
        self._stream_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._running = False

    @property
    def session(self) -> Session:
        return self._session

    @property
    def state(self) -> ConnectionState:
        return self._session.connection

    @property
    def devices(self) -> DeviceRegistry:
        return self._session.registry

    @property
    def selected(self) -> str | None:
        return self._session.selected

    @property
    def reading(self) -> HeartRateMeasurement | None:
        return self._session.reading

    def submit(self, command: Message) -> None:
        """Queue a command from the UI.

        Raises:
            ContractViolation: If the command is not allowed in the current state
        """
        check_command(self._session, command)
        self._inbox.put_nowait(command)

    def post(self, message: Message) -> None:
        self._inbox.put_nowait(message)

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _pump_adapter_events(self) -> None:
        async for event in self.adapter.events():
            self.post(event)

    async def process(self, message: Message) -> None:
        """Apply one message and carry out the resulting effects."""
        try:
            self._session, effects = update(self._session, message)
        except ContractViolation as e:
            # Queued before an earlier message changed the state
            logger.error("Rejected %s: %s", type(message).__name__, e)
            await self.on_event(ErrorOccurred(ErrorKind.CONTRACT_VIOLATION, str(e)))
            return
        for effect in effects:
            await self._apply(effect)

    async def _apply(self, effect: Effect) -> None:
        if isinstance(effect, Emit):
            await self._emit(effect.event)
        elif isinstance(effect, BeginScan):
            self._spawn(self._start_scan())
        elif isinstance(effect, EndScan):
            self._spawn(self._stop_scan())
        elif isinstance(effect, OpenConnection):
            peripheral = self.adapter.peripheral(effect.record)
            self._peripheral = peripheral
            self._spawn(self._connect(peripheral))
        elif isinstance(effect, CloseConnection):
            if self._peripheral is not None and self._peripheral.address == effect.address:
                self._spawn(self._disconnect(self._peripheral))
        elif isinstance(effect, Subscribe):
            if self._peripheral is not None:
                self._spawn(self._subscribe(self._peripheral))
        elif isinstance(effect, StreamReadings):
            self._stream = effect.stream
            self._stream_task = self._spawn(self._pump_notifications(effect.address, effect.stream))
        elif isinstance(effect, Unsubscribe):
            await self._unsubscribe()
        elif isinstance(effect, CloseStream):
            await effect.stream.close()
        else:
            raise TypeError(f"Unknown effect: {effect!r}")

    async def _emit(self, event: UpwardEvent) -> None:
        if isinstance(event, ErrorOccurred):
            logger.warning("%s", event.message)
        await self.on_event(event)

    async def _start_scan(self) -> None:
        try:
            await self.adapter.start_scan()
        except Exception as e:
            self.post(ScanStartFailed(str(e)))

    async def _stop_scan(self) -> None:
        try:
            await self.adapter.stop_scan()
        except Exception as e:
            self.post(ScanStopFailed(str(e)))

    async def _connect(self, peripheral: HrsPeripheral) -> None:
        try:
            await peripheral.connect()
        except Exception as e:
            self.post(ConnectFailed(peripheral.address, str(e)))
            return
        logger.info("Connected to %s", peripheral.record)
        self.post(ConnectSucceeded(peripheral.address))

    async def _disconnect(self, peripheral: HrsPeripheral) -> None:
        try:
            await peripheral.disconnect()
        except Exception as e:
            self.post(DisconnectFailed(peripheral.address, str(e)))
            return
        logger.info("Disconnected from %s", peripheral.record)

    async def _subscribe(self, peripheral: HrsPeripheral) -> None:
        try:
            stream = await peripheral.subscribe()
        except Exception as e:
            self.post(SubscribeFailed(peripheral.address, str(e)))
            return
        self.post(SubscribeSucceeded(peripheral.address, stream))

    async def _pump_notifications(self, address: str, stream: NotificationStream) -> None:
        async for result in stream:
            self.post(NotificationReceived(address, result))
        self.post(StreamClosed(address))

    async def _unsubscribe(self) -> None:
        """Tear down the active notification stream, if any."""
        task, stream = self._stream_task, self._stream
        self._stream_task = self._stream = None
        if task is not None:
            task.cancel()
        if stream is not None:
            await stream.close()

    async def run(self) -> None:
        """Process messages until shutdown() is called."""
        self._running = True
        feed = asyncio.create_task(self._pump_adapter_events())
        try:
            while self._running:
                message = await self._inbox.get()
                if message is None:
                    break
                await self.process(message)
        finally:
            feed.cancel()
            try:
                await feed
            except asyncio.CancelledError:
                pass

    async def shutdown(self) -> None:
        """Disconnect the active device (best effort) and stop processing."""
        logger.debug("Shutting down controller...")
        self._running = False
        self._inbox.put_nowait(None)
        await self._unsubscribe()
        if self._peripheral is not None:
            try:
                await self._peripheral.disconnect()
            except Exception as e:
                logger.debug("Disconnect on shutdown failed: %s", e)
            self._peripheral = None
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
