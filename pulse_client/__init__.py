"""BLE Heart Rate Service client."""

from .adapter import AdapterFacade, AdapterState
from .config import Config, load_config
from .controller import ConnectionController
from .device import HR_CHAR_UUID, HR_SERVICE_UUID, AddressType, DeviceRecord, DeviceRegistry
from .errors import AdapterUnavailable, ContractViolation, PulseClientError, SubscribeError
from .log import setup_logging
from .parser import HeartRateMeasurement, Rejected, decode_heart_rate
from .server import PulseServer
from .state import Connected, Connecting, ConnectionState, NotConnected, Session, update

__all__ = [
    "decode_heart_rate",
    "HeartRateMeasurement",
    "Rejected",
    "DeviceRecord",
    "DeviceRegistry",
    "AddressType",
    "HR_SERVICE_UUID",
    "HR_CHAR_UUID",
    "AdapterFacade",
    "AdapterState",
    "ConnectionController",
    "ConnectionState",
    "NotConnected",
    "Connecting",
    "Connected",
    "Session",
    "update",
    "PulseClientError",
    "AdapterUnavailable",
    "ContractViolation",
    "SubscribeError",
    "Config",
    "load_config",
    "setup_logging",
    "PulseServer",
]
