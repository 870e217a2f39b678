"""Connection state machine.

`update` is the only function that produces a new `Session`. It never performs
I/O; instead it returns the effects the controller has to carry out, in order.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from .adapter import AdapterState
from .device import DeviceRecord, DeviceRegistry
from .errors import ContractViolation
from .events import (
    AdapterStateChanged,
    Connect,
    ConnectFailed,
    ConnectionStateChanged,
    ConnectSucceeded,
    DeviceDisconnected,
    DeviceDiscovered,
    Disconnect,
    DisconnectFailed,
    ErrorKind,
    ErrorOccurred,
    Message,
    NotificationReceived,
    ReadingUpdated,
    ScanStartFailed,
    ScanStopFailed,
    SelectDevice,
    SelectionChanged,
    StartScan,
    StopScan,
    StreamClosed,
    SubscribeFailed,
    SubscribeSucceeded,
    UpwardEvent,
)
from .parser import HeartRateMeasurement, Rejected

if TYPE_CHECKING:
    from .peripheral import NotificationStream

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotConnected:
    def __str__(self) -> str:
        return "not connected"


@dataclass(frozen=True)
class Connecting:
    def __str__(self) -> str:
        return "connecting"


@dataclass(frozen=True)
class Connected:
    address: str

    def __str__(self) -> str:
        return f"connected to {self.address}"


ConnectionState = NotConnected | Connecting | Connected

NOT_CONNECTED = NotConnected()
CONNECTING = Connecting()


# Effects


@dataclass(frozen=True)
class Emit:
    event: UpwardEvent


@dataclass(frozen=True)
class BeginScan:
    pass


@dataclass(frozen=True)
class EndScan:
    pass


@dataclass(frozen=True)
class OpenConnection:
    record: DeviceRecord


@dataclass(frozen=True)
class CloseConnection:
    address: str


@dataclass(frozen=True)
class Subscribe:
    address: str


@dataclass(frozen=True)
class StreamReadings:
    address: str
    stream: "NotificationStream" = field(compare=False, repr=False)


@dataclass(frozen=True)
class Unsubscribe:
    pass


@dataclass(frozen=True)
class CloseStream:
    stream: "NotificationStream" = field(compare=False, repr=False)


Effect = (
    Emit
    | BeginScan
    | EndScan
    | OpenConnection
    | CloseConnection
    | Subscribe
    | StreamReadings
    | Unsubscribe
    | CloseStream
)


@dataclass(frozen=True)
class Session:
    """Everything the controller knows, as one immutable snapshot."""

    adapter_state: AdapterState = AdapterState.UNKNOWN
    connection: ConnectionState = NOT_CONNECTED
    registry: DeviceRegistry = DeviceRegistry()
    selected: str | None = None
    reading: HeartRateMeasurement | None = None
    scanning: bool = False

    @property
    def powered_on(self) -> bool:
        return self.adapter_state is AdapterState.POWERED_ON


Transition = tuple[Session, list[Effect]]


def check_command(session: Session, command: Message) -> None:
    """Reject commands the current session does not allow.

    Raises:
        ContractViolation: If a Connect is issued while not NotConnected, with
            no device selected, or with a selection missing from the registry
    """
    if not isinstance(command, Connect):
        return
    if session.connection != NOT_CONNECTED:
        raise ContractViolation(f"Connect issued while {session.connection}")
    if session.selected is None:
        raise ContractViolation("Connect issued with no device selected")
    if session.selected not in session.registry:
        raise ContractViolation(f"Connect issued for undiscovered device {session.selected}")


def _error(kind: ErrorKind, message: str) -> Emit:
    return Emit(ErrorOccurred(kind, message))


def _start_scanning(session: Session) -> Transition:
    effects: list[Effect] = [BeginScan()]
    if session.selected is not None:
        effects.append(Emit(SelectionChanged(None)))
    session = replace(session, registry=DeviceRegistry(), selected=None, scanning=True)
    return session, effects


def _drop_connection(session: Session) -> Transition:
    """Connected -> NotConnected, whatever the cause."""
    session = replace(session, connection=NOT_CONNECTED, reading=None)
    effects: list[Effect] = [Unsubscribe(), Emit(ConnectionStateChanged(NOT_CONNECTED))]
    if session.powered_on:
        session, scan_effects = _start_scanning(session)
        effects += scan_effects
    return session, effects


def _on_select(session: Session, msg: SelectDevice) -> Transition:
    address = msg.address.upper()
    return replace(session, selected=address), [Emit(SelectionChanged(address))]


def _on_connect(session: Session, msg: Connect) -> Transition:
    check_command(session, msg)
    record = session.registry.get(session.selected or "")
    if record is None:
        raise ContractViolation(f"Connect issued for undiscovered device {session.selected}")
    session = replace(session, connection=CONNECTING)
    return session, [Emit(ConnectionStateChanged(CONNECTING)), OpenConnection(record)]


def _on_disconnect(session: Session, msg: Disconnect) -> Transition:
    if not isinstance(session.connection, Connected):
        logger.debug("Disconnect while %s, nothing to do", session.connection)
        return session, []
    address = session.connection.address
    session, effects = _drop_connection(session)
    return session, [CloseConnection(address)] + effects


def _on_start_scan(session: Session, msg: StartScan) -> Transition:
    return _start_scanning(session)


def _on_stop_scan(session: Session, msg: StopScan) -> Transition:
    return replace(session, scanning=False), [EndScan()]


def _on_discovered(session: Session, msg: DeviceDiscovered) -> Transition:
    if not session.scanning or msg.record in session.registry.records:
        return session, []
    return replace(session, registry=session.registry.add(msg.record)), [Emit(msg)]


def _on_device_disconnected(session: Session, msg: DeviceDisconnected) -> Transition:
    if session.connection != Connected(msg.address.upper()):
        return session, []
    session, effects = _drop_connection(session)
    return session, [Emit(DeviceDisconnected(msg.address.upper()))] + effects


def _on_adapter_state(session: Session, msg: AdapterStateChanged) -> Transition:
    session = replace(session, adapter_state=msg.state)
    effects: list[Effect] = [Emit(msg)]
    if session.powered_on:
        if session.connection == NOT_CONNECTED:
            session, scan_effects = _start_scanning(session)
            effects += scan_effects
        return session, effects
    session = replace(session, scanning=False)
    if isinstance(session.connection, Connected):
        session, drop_effects = _drop_connection(session)
        effects += drop_effects
    return session, effects


def _on_connect_succeeded(session: Session, msg: ConnectSucceeded) -> Transition:
    if session.connection != CONNECTING:
        # The attempt was abandoned; don't keep a link nobody owns
        return session, [CloseConnection(msg.address)]
    connected = Connected(msg.address)
    session = replace(session, connection=connected, scanning=False)
    return session, [Emit(ConnectionStateChanged(connected)), EndScan(), Subscribe(msg.address)]


def _on_connect_failed(session: Session, msg: ConnectFailed) -> Transition:
    if session.connection != CONNECTING:
        return session, []
    session = replace(session, connection=NOT_CONNECTED)
    return session, [
        Emit(ConnectionStateChanged(NOT_CONNECTED)),
        _error(ErrorKind.CONNECT_FAILED, f"Failed to connect device: {msg.error}"),
    ]


def _on_disconnect_failed(session: Session, msg: DisconnectFailed) -> Transition:
    return session, [_error(ErrorKind.DISCONNECT_FAILED, f"Failed to disconnect device: {msg.error}")]


def _on_subscribe_succeeded(session: Session, msg: SubscribeSucceeded) -> Transition:
    if session.connection != Connected(msg.address):
        return session, [CloseStream(msg.stream)]
    return session, [StreamReadings(msg.address, msg.stream)]


def _on_subscribe_failed(session: Session, msg: SubscribeFailed) -> Transition:
    if session.connection != Connected(msg.address):
        return session, []
    session, effects = _drop_connection(session)
    return session, [
        _error(ErrorKind.SUBSCRIBE_FAILED, f"Failed to get heart rate data: {msg.error}"),
        CloseConnection(msg.address),
    ] + effects


def _on_notification(session: Session, msg: NotificationReceived) -> Transition:
    if session.connection != Connected(msg.address):
        return session, []
    if isinstance(msg.result, Rejected):
        return session, [_error(ErrorKind.INVALID_READING, f"Invalid heart rate data: {msg.result.reason}")]
    return replace(session, reading=msg.result), [Emit(ReadingUpdated(msg.result))]


def _on_stream_closed(session: Session, msg: StreamClosed) -> Transition:
    if session.connection != Connected(msg.address):
        return session, []
    return _drop_connection(session)


def _on_scan_start_failed(session: Session, msg: ScanStartFailed) -> Transition:
    session = replace(session, scanning=False)
    return session, [_error(ErrorKind.SCAN_START_FAILED, f"Failed to start scan: {msg.error}")]


def _on_scan_stop_failed(session: Session, msg: ScanStopFailed) -> Transition:
    return session, [_error(ErrorKind.SCAN_STOP_FAILED, f"Failed to stop scan: {msg.error}")]


_HANDLERS = {
    SelectDevice: _on_select,
    Connect: _on_connect,
    Disconnect: _on_disconnect,
    StartScan: _on_start_scan,
    StopScan: _on_stop_scan,
    DeviceDiscovered: _on_discovered,
    DeviceDisconnected: _on_device_disconnected,
    AdapterStateChanged: _on_adapter_state,
    ConnectSucceeded: _on_connect_succeeded,
    ConnectFailed: _on_connect_failed,
    DisconnectFailed: _on_disconnect_failed,
    SubscribeSucceeded: _on_subscribe_succeeded,
    SubscribeFailed: _on_subscribe_failed,
    NotificationReceived: _on_notification,
    StreamClosed: _on_stream_closed,
    ScanStartFailed: _on_scan_start_failed,
    ScanStopFailed: _on_scan_stop_failed,
}


def update(session: Session, message: Message) -> Transition:
    """Apply one message to the session.

    Returns:
        The next session and the effects to perform, in order

    Raises:
        ContractViolation: If message is a command the session does not allow
        TypeError: If message is not a known message type
    """
    handler = _HANDLERS.get(type(message))
    if handler is None:
        raise TypeError(f"Unknown message: {message!r}")
    next_session, effects = handler(session, message)
    if next_session.connection != session.connection:
        logger.debug("Connection state: %s -> %s", session.connection, next_session.connection)
    return next_session, effects
