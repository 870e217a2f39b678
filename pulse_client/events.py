"""Messages exchanged with the connection controller.

Commands come down from the UI, adapter events and operation outcomes come up
from the radio, and upward events are what the UI gets to see. The adapter
events are re-emitted upward unchanged, so they appear in both groups.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from .device import DeviceRecord
from .parser import HeartRateMeasurement, Rejected

if TYPE_CHECKING:
    from .adapter import AdapterState
    from .peripheral import NotificationStream
    from .state import ConnectionState


class ErrorKind(Enum):
    ADAPTER_UNAVAILABLE = "adapter_unavailable"
    CONNECT_FAILED = "connect_failed"
    DISCONNECT_FAILED = "disconnect_failed"
    SUBSCRIBE_FAILED = "subscribe_failed"
    SCAN_START_FAILED = "scan_start_failed"
    SCAN_STOP_FAILED = "scan_stop_failed"
    INVALID_READING = "invalid_reading"
    CONTRACT_VIOLATION = "contract_violation"


# Commands


@dataclass(frozen=True)
class SelectDevice:
    address: str


@dataclass(frozen=True)
class Connect:
    pass


@dataclass(frozen=True)
class Disconnect:
    pass


@dataclass(frozen=True)
class StartScan:
    pass


@dataclass(frozen=True)
class StopScan:
    pass


# Adapter events


@dataclass(frozen=True)
class DeviceDiscovered:
    record: DeviceRecord


@dataclass(frozen=True)
class DeviceDisconnected:
    address: str


@dataclass(frozen=True)
class AdapterStateChanged:
    state: "AdapterState"


# Operation outcomes


@dataclass(frozen=True)
class ConnectSucceeded:
    address: str


@dataclass(frozen=True)
class ConnectFailed:
    address: str
    error: str


@dataclass(frozen=True)
class DisconnectFailed:
    address: str
    error: str


@dataclass(frozen=True)
class SubscribeSucceeded:
    address: str
    stream: "NotificationStream" = field(compare=False, repr=False)


@dataclass(frozen=True)
class SubscribeFailed:
    address: str
    error: str


@dataclass(frozen=True)
class NotificationReceived:
    address: str
    result: HeartRateMeasurement | Rejected


@dataclass(frozen=True)
class StreamClosed:
    address: str


@dataclass(frozen=True)
class ScanStartFailed:
    error: str


@dataclass(frozen=True)
class ScanStopFailed:
    error: str


# Upward-only events


@dataclass(frozen=True)
class SelectionChanged:
    address: str | None


@dataclass(frozen=True)
class ConnectionStateChanged:
    state: "ConnectionState"


@dataclass(frozen=True)
class ReadingUpdated:
    reading: HeartRateMeasurement


@dataclass(frozen=True)
class ErrorOccurred:
    kind: ErrorKind
    message: str


Command = SelectDevice | Connect | Disconnect | StartScan | StopScan
AdapterEvent = DeviceDiscovered | DeviceDisconnected | AdapterStateChanged
UpwardEvent = (
    DeviceDiscovered
    | DeviceDisconnected
    | AdapterStateChanged
    | SelectionChanged
    | ConnectionStateChanged
    | ReadingUpdated
    | ErrorOccurred
)
Outcome = (
    ConnectSucceeded
    | ConnectFailed
    | DisconnectFailed
    | SubscribeSucceeded
    | SubscribeFailed
    | NotificationReceived
    | StreamClosed
    | ScanStartFailed
    | ScanStopFailed
)
Message = Command | AdapterEvent | Outcome
