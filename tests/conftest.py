"""Shared test fixtures for pulse_client tests."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from pulse_client.adapter import AdapterState
from pulse_client.controller import ConnectionController
from tests.helpers import FakeStream, make_hr_packet, make_record


@pytest.fixture
def hr_packet_simple() -> bytes:
    """Simple 8-bit BPM packet (72 bpm)."""
    return make_hr_packet(72)


@pytest.fixture
def hr_packet_16bit() -> bytes:
    """16-bit BPM packet (300 bpm)."""
    return make_hr_packet(300, is_16bit=True)


@pytest.fixture
def hr_packet_full() -> bytes:
    """Packet with all fields populated."""
    return make_hr_packet(
        150,
        is_16bit=True,
        sensor_contact=True,
        energy=1500,
        rr_interval=800,
    )


@pytest.fixture
def record():
    return make_record()


@pytest.fixture
def other_record():
    return make_record("11:22:33:44:55:66", "Other HR")


# Mock fixtures for BLE
@pytest.fixture
def mock_bleak_client():
    """Create a mock BleakClient with an HR service and measurement characteristic."""
    client = MagicMock()
    client.is_connected = True
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.start_notify = AsyncMock()
    client.stop_notify = AsyncMock()

    characteristic = MagicMock(name="hrm_characteristic")
    service = MagicMock(name="hr_service")
    service.get_characteristic.return_value = characteristic
    client.services.get_service.return_value = service

    return client


@pytest.fixture
def mock_ble_device():
    """Create a mock BLEDevice."""
    device = MagicMock()
    device.address = "aa:bb:cc:dd:ee:ff"
    device.name = "HR Monitor"
    device.details = {}
    return device


@pytest.fixture
def fake_stream():
    return FakeStream()


@pytest.fixture
def mock_peripheral(record, fake_stream):
    """Create a mock HrsPeripheral for the default record."""
    peripheral = MagicMock()
    peripheral.record = record
    peripheral.address = record.address
    peripheral.connect = AsyncMock()
    peripheral.disconnect = AsyncMock()
    peripheral.subscribe = AsyncMock(return_value=fake_stream)
    return peripheral


@pytest.fixture
def mock_adapter(mock_peripheral):
    """Create a powered-on mock AdapterFacade."""
    adapter = MagicMock()
    adapter.state = AdapterState.POWERED_ON
    adapter.start_scan = AsyncMock()
    adapter.stop_scan = AsyncMock()
    adapter.peripheral = MagicMock(return_value=mock_peripheral)
    return adapter


@pytest.fixture
def on_event():
    return AsyncMock()


@pytest.fixture
def controller(mock_adapter, on_event):
    return ConnectionController(mock_adapter, on_event)


# Mock fixtures for WebSocket
@pytest.fixture
def mock_websocket():
    """Create a mock WebSocket connection."""
    ws = AsyncMock()
    ws.send = AsyncMock()
    ws.close = AsyncMock()
    ws.remote_address = ("127.0.0.1", 50000)
    return ws


# Config fixtures
@pytest.fixture
def sample_config_dict() -> dict:
    """Sample config dict as would be parsed from TOML."""
    return {
        "server": {
            "host": "0.0.0.0",
            "port": 9000,
            "broadcast_timeout": 1.0,
            "log_level": "DEBUG",
        },
        "ble": {
            "adapter": "hci1",
            "power_poll_interval": 2.0,
        },
        "device": {
            "address": "11:22:33:44:55:66",
            "name_filter": "Polar",
        },
    }


@pytest.fixture
def partial_config_dict() -> dict:
    """Partial config dict with some values missing."""
    return {
        "server": {"port": 8080},
        "ble": {"adapter": "hci0"},
    }
