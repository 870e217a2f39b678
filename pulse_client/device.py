"""Discovered heart rate devices."""

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum

from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.uuids import normalize_uuid_str

HR_SERVICE_UUID = normalize_uuid_str("180D")
HR_CHAR_UUID = normalize_uuid_str("2A37")


class AddressType(Enum):
    PUBLIC = "public"
    RANDOM = "random"


def _address_type(device: BLEDevice) -> AddressType | None:
    """Read the address type from backend details, where the backend reports one."""
    details = device.details
    if not isinstance(details, dict):
        return None
    props = details.get("props")
    raw = props.get("AddressType") if isinstance(props, dict) else None
    try:
        return AddressType(raw) if raw else None
    except ValueError:
        return None


@dataclass(frozen=True)
class DeviceRecord:
    """A peripheral advertising the Heart Rate Service.

    Two records are the same device when their addresses match.
    """

    address: str
    name: str | None = field(default=None, compare=False)
    address_type: AddressType | None = field(default=None, compare=False)
    device: BLEDevice | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", self.address.upper())

    @classmethod
    def from_advertisement(cls, device: BLEDevice, adv: AdvertisementData) -> "DeviceRecord | None":
        """Build a record, or None if the advertisement lacks the HR service."""
        service_uuids = adv.service_uuids or []
        if HR_SERVICE_UUID not in service_uuids:
            return None
        return cls(
            address=device.address,
            name=adv.local_name or device.name,
            address_type=_address_type(device),
            device=device,
        )

    def __str__(self) -> str:
        return self.name or self.address


@dataclass(frozen=True)
class DeviceRegistry:
    """Devices discovered during the current scan, in discovery order."""

    records: tuple[DeviceRecord, ...] = ()

    def add(self, record: DeviceRecord) -> "DeviceRegistry":
        """Return a registry including record; unchanged if already present."""
        if record in self.records:
            return self
        return DeviceRegistry(self.records + (record,))

    def get(self, address: str) -> DeviceRecord | None:
        address = address.upper()
        for record in self.records:
            if record.address == address:
                return record
        return None

    def addresses(self) -> list[str]:
        return [record.address for record in self.records]

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and self.get(address) is not None

    def __iter__(self) -> Iterator[DeviceRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)
