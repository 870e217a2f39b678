"""Decoder for the Heart Rate Measurement characteristic (0x2A37).

Only the first RR-interval field of a notification is read. Sensors may stack
several intervals in one packet; any bytes after the first one are ignored.
"""

from dataclasses import dataclass

HEART_RATE_16BIT = 0b1
SENSOR_CONTACT_STATUS = 0b10
SENSOR_CONTACT_SUPPORT = 0b100
ENERGY_EXPENDED_PRESENT = 0b1000
RR_INTERVAL_PRESENT = 0b10000


@dataclass(frozen=True)
class HeartRateMeasurement:
    """Decoded heart rate measurement."""

    heart_rate: int  # bpm
    sensor_contact: bool | None  # None if not supported
    energy_expended: int | None  # kJ
    rr_interval: int | None  # 1/1024 s, never 0

    @property
    def rr_interval_ms(self) -> int | None:
        """RR interval in whole milliseconds."""
        if self.rr_interval is None:
            return None
        return self.rr_interval * 1000 // 1024

    def __str__(self) -> str:
        def display_or_na(value: object, unit: str = "") -> str:
            return "N/A" if value is None else f"{value}{unit}"

        return "\n".join(
            [
                f"Heart rate: {self.heart_rate} bpm",
                f"Sensor contact: {display_or_na(self.sensor_contact)}",
                f"Energy expended: {display_or_na(self.energy_expended, ' kJ')}",
                f"RR-Interval: {display_or_na(self.rr_interval_ms, ' ms')}",
            ]
        )


@dataclass(frozen=True)
class Rejected:
    """A notification payload that could not be decoded."""

    reason: str


def _read_u16(data: bytes, offset: int, field: str) -> int:
    if offset + 2 > len(data):
        raise ValueError(f"HR data too short for {field}: {len(data)} bytes")
    return int.from_bytes(data[offset : offset + 2], "little")


def _parse(data: bytes) -> HeartRateMeasurement:
    if not data:
        raise ValueError("Empty HR data received")

    flags = data[0]

    # Parse heart rate value
    if flags & HEART_RATE_16BIT:
        heart_rate = _read_u16(data, 1, "heart rate")
        offset = 3
    else:
        if len(data) < 2:
            raise ValueError("HR data too short for heart rate: 1 bytes")
        heart_rate = data[1]
        offset = 2

    # Status bit only counts when the contact feature is supported
    sensor_contact = None
    if flags & SENSOR_CONTACT_SUPPORT:
        sensor_contact = bool(flags & SENSOR_CONTACT_STATUS)

    energy_expended = None
    if flags & ENERGY_EXPENDED_PRESENT:
        energy_expended = _read_u16(data, offset, "energy expended")
        offset += 2

    rr_interval = None
    if flags & RR_INTERVAL_PRESENT:
        # Zero is not a valid interval
        rr_interval = _read_u16(data, offset, "RR interval") or None

    return HeartRateMeasurement(
        heart_rate=heart_rate,
        sensor_contact=sensor_contact,
        energy_expended=energy_expended,
        rr_interval=rr_interval,
    )


def decode_heart_rate(data: bytes) -> HeartRateMeasurement | Rejected:
    """Decode BLE heart rate measurement characteristic data.

    Args:
        data: Raw bytes from HR measurement characteristic (0x2A37)

    Returns:
        HeartRateMeasurement with decoded values, or Rejected when the payload
        is empty or a flagged field is truncated
    """
    try:
        return _parse(bytes(data))
    except ValueError as e:
        return Rejected(str(e))
