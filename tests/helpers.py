"""Shared test helper functions for pulse_client tests."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

from pulse_client.device import HR_SERVICE_UUID, DeviceRecord


def make_hr_packet(
    bpm: int,
    *,
    is_16bit: bool = False,
    sensor_contact: bool | None = None,
    energy: int | None = None,
    rr_interval: int | None = None,
    extra: bytes = b"",
) -> bytes:
    """Build a BLE HR measurement packet.

    Args:
        bpm: Heart rate in BPM
        is_16bit: If True, use 16-bit BPM format
        sensor_contact: None=not supported, True=detected, False=not detected
        energy: Energy expended in kJ (if supported)
        rr_interval: RR interval in 1/1024 second units
        extra: Bytes appended after the last field

    Returns:
        Raw bytes for HR measurement characteristic
    """
    flags = 0

    if is_16bit:
        flags |= 0b1

    if sensor_contact is not None:
        flags |= 0b100  # Sensor contact supported
        if sensor_contact:
            flags |= 0b10  # Sensor contact detected

    if energy is not None:
        flags |= 0b1000

    if rr_interval is not None:
        flags |= 0b10000

    data = bytearray([flags])

    if is_16bit:
        data.extend(bpm.to_bytes(2, "little"))
    else:
        data.append(bpm)

    if energy is not None:
        data.extend(energy.to_bytes(2, "little"))

    if rr_interval is not None:
        data.extend(rr_interval.to_bytes(2, "little"))

    return bytes(data + extra)


def make_record(address: str = "AA:BB:CC:DD:EE:FF", name: str | None = "HR Monitor") -> DeviceRecord:
    return DeviceRecord(address=address, name=name)


def make_advertisement(service_uuids: list[str] | None = None, local_name: str | None = None) -> MagicMock:
    adv = MagicMock()
    adv.service_uuids = [HR_SERVICE_UUID] if service_uuids is None else service_uuids
    adv.local_name = local_name
    return adv


class FakeStream:
    """Notification stream that yields canned results, then waits to be ended."""

    def __init__(self, items=()):
        self._items = list(items)
        self._ended = asyncio.Event()
        self.close_calls = 0

    def end(self) -> None:
        self._ended.set()

    async def close(self) -> None:
        self.close_calls += 1
        self._ended.set()

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._items:
            return self._items.pop(0)
        await self._ended.wait()
        raise StopAsyncIteration


async def drain(controller, rounds: int = 20) -> None:
    """Let spawned operations run and process every message they post."""
    for _ in range(rounds):
        await asyncio.sleep(0)
        while not controller._inbox.empty():
            message = controller._inbox.get_nowait()
            if message is not None:
                await controller.process(message)


def emitted(on_event) -> list:
    """Events passed to an AsyncMock on_event callback, in order."""
    return [call.args[0] for call in on_event.call_args_list]
