"""Core data models shared by the loader, controllers, service, and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

ID_MIN = 0
ID_MAX = 252
PROTOCOLS = ("1.0", "2.0")
DEFAULT_PROTOCOL = "2.0"
DEFAULT_BAUD_RATE = 57600
BAUD_RATE_OPTIONS = (9600, 57600, 115200, 1000000)
FIELD_SIZES = (1, 2, 4)
ENUM_MAX_ENTRIES = 20


class Access(str, Enum):
    R = "R"
    RW = "RW"


@dataclass(frozen=True)
class DeviceIdentity:
    id: int
    model_number: int


@dataclass(frozen=True)
class ConnectionConfig:
    port: str
    protocol: str
    baud_rate: int


@dataclass(frozen=True)
class FieldSchema:
    address: int
    size: int
    name: str
    access: Access
    range: tuple[int, int] | None = None
    value_map: dict[int, str] | None = None
    unit: str | None = None
    identity: bool = False

    @property
    def writable(self) -> bool:
        return self.access is Access.RW

    @property
    def is_enum(self) -> bool:
        """True when the value map is small enough to be offered as a closed choice."""
        if not self.value_map:
            return False
        if len(self.value_map) > ENUM_MAX_ENTRIES:
            return False
        return all(isinstance(label, str) for label in self.value_map.values())

    def label_for(self, value: int) -> str | None:
        if not self.value_map:
            return None
        return self.value_map.get(value)


@dataclass(frozen=True)
class DeviceModel:
    model_number: int
    name: str
    fields: tuple[FieldSchema, ...]

    def field_at(self, address: int) -> FieldSchema | None:
        for field in self.fields:
            if field.address == address:
                return field
        return None

    def field_named(self, name: str) -> FieldSchema | None:
        lowered = name.lower()
        for field in self.fields:
            if field.name.lower() == lowered:
                return field
        return None

    @property
    def identity_field(self) -> FieldSchema | None:
        for field in self.fields:
            if field.identity:
                return field
        return None


@dataclass(frozen=True)
class FieldState:
    """Cached state of one field: pending, a resolved value, or an error."""

    value: int | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if self.value is not None and self.error is not None:
            raise ValueError("FieldState cannot hold both a value and an error")

    @property
    def pending(self) -> bool:
        return self.value is None and self.error is None

    @property
    def resolved(self) -> bool:
        return self.value is not None


PENDING = FieldState()


@dataclass(frozen=True)
class ScanProgress:
    current: int
    total: int


# Scan stream events


@dataclass(frozen=True)
class Found:
    device: DeviceIdentity


@dataclass(frozen=True)
class Progress:
    current: int
    total: int


@dataclass(frozen=True)
class Finished:
    cancelled: bool = False


ScanEvent = Found | Progress | Finished


# Read stream events


@dataclass(frozen=True)
class Value:
    address: int
    value: int


@dataclass(frozen=True)
class Error:
    address: int
    message: str


@dataclass(frozen=True)
class ReadFinished:
    pass


ReadEvent = Value | Error | ReadFinished


@dataclass(frozen=True)
class ScanOutcome:
    config: ConnectionConfig
    devices: tuple[DeviceIdentity, ...]
    cancelled: bool


@dataclass(frozen=True)
class ReadOutcome:
    device_id: int
    states: dict[int, FieldState]
    finished: bool
