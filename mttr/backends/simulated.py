"""In-memory servo bus used for --simulate runs and offline tests."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from mttr.backends.base import FieldRequest
from mttr.core.errors import ModelLoadError, ModelValidationError, TransportError
from mttr.core.model import (
    PROTOCOLS,
    ConnectionConfig,
    DeviceIdentity,
    Error,
    Finished,
    Found,
    Progress,
    ReadEvent,
    ReadFinished,
    ScanEvent,
    Value,
)

LOGGER = logging.getLogger(__name__)

MODEL_NUMBER_ADDRESS = 0
IDENTITY_ADDRESS = 7


@dataclass
class SimulatedDevice:
    id: int
    model_number: int
    protocol: str = "2.0"
    baud_rate: int = 57600
    registers: dict[int, int] = field(default_factory=dict)
    read_errors: dict[int, str] = field(default_factory=dict)
    write_errors: dict[int, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.registers.setdefault(MODEL_NUMBER_ADDRESS, self.model_number)
        self.registers[IDENTITY_ADDRESS] = self.id


class SimulatedBackend:
    """Backend that answers from a table of simulated devices.

    Only devices whose protocol and baud rate match the scan answer pings.
    Protocol 1.0 pings carry no model number, so they report model 0.
    """

    def __init__(
        self,
        devices: Sequence[SimulatedDevice] = (),
        *,
        ports: Sequence[str] = ("/dev/ttyUSB0",),
        step_delay: float = 0.0,
    ) -> None:
        self.devices: dict[int, SimulatedDevice] = {d.id: d for d in devices}
        self.ports = list(ports)
        self.step_delay = step_delay
        self.connection: ConnectionConfig | None = None
        self.writes: list[tuple[int, int, int, int]] = []
        self.reads: list[tuple[int, tuple[FieldRequest, ...]]] = []
        self._cancel = False

    @classmethod
    def from_fixture(cls, path: Path) -> SimulatedBackend:
        try:
            doc = yaml.safe_load(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise ModelLoadError(f"Could not read bus fixture {path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ModelValidationError(f"Invalid YAML in {path}: {exc}") from exc
        if not isinstance(doc, dict):
            raise ModelValidationError(f"Bus fixture {path} must contain a mapping at root")

        devices = [_device_from_doc(entry, source=path) for entry in doc.get("devices", [])]
        return cls(
            devices,
            ports=tuple(doc.get("ports", ("/dev/ttyUSB0",))),
            step_delay=float(doc.get("step_delay", 0.0)),
        )

    async def list_ports(self) -> list[str]:
        return sorted(set(self.ports))

    async def scan(
        self,
        port: str,
        protocol: str,
        baud_rate: int,
        id_start: int,
        id_end: int,
    ) -> AsyncGenerator[ScanEvent, None]:
        if protocol not in PROTOCOLS:
            raise TransportError(f"Unsupported protocol: {protocol}")
        if port not in self.ports:
            raise TransportError(f"Failed to open port {port}: no such device")

        self._cancel = False
        self.connection = ConnectionConfig(port=port, protocol=protocol, baud_rate=baud_rate)
        total = id_end - id_start + 1

        for device_id in range(id_start, id_end + 1):
            if self._cancel:
                yield Finished(cancelled=True)
                return

            yield Progress(current=device_id, total=total)
            await asyncio.sleep(self.step_delay)

            device = self.devices.get(device_id)
            if device is None or device.protocol != protocol or device.baud_rate != baud_rate:
                continue
            model_number = device.model_number if protocol == "2.0" else 0
            yield Found(DeviceIdentity(id=device_id, model_number=model_number))

        yield Finished(cancelled=False)

    async def cancel_scan(self) -> None:
        self._cancel = True

    async def disconnect(self) -> None:
        self.connection = None

    async def read_fields(
        self,
        device_id: int,
        fields: Sequence[FieldRequest],
    ) -> AsyncGenerator[ReadEvent, None]:
        self._require_connection()
        self.reads.append((device_id, tuple(fields)))
        device = self._reachable(device_id)

        for address, _size in fields:
            await asyncio.sleep(self.step_delay)
            if device is None:
                yield Error(address=address, message="timeout")
            elif address in device.read_errors:
                yield Error(address=address, message=device.read_errors[address])
            else:
                yield Value(address=address, value=device.registers.get(address, 0))

        yield ReadFinished()

    async def write_field(self, device_id: int, address: int, size: int, value: int) -> None:
        self._require_connection()
        await asyncio.sleep(self.step_delay)

        device = self._reachable(device_id)
        if device is None:
            raise TransportError(f"No status packet from ID {device_id}")
        if address in device.write_errors:
            raise TransportError(device.write_errors[address])
        lowest, highest = -(1 << (8 * size - 1)), (1 << (8 * size)) - 1
        if not lowest <= value <= highest:
            raise TransportError(f"Value {value} does not fit in {size} byte(s)")

        if address == IDENTITY_ADDRESS and value != device.id:
            if value in self.devices:
                raise TransportError(f"ID {value} is already in use on the bus")
            del self.devices[device.id]
            device.id = value
            self.devices[value] = device

        device.registers[address] = value
        self.writes.append((device_id, address, size, value))
        LOGGER.debug("Simulated write id=%d addr=%d value=%d", device_id, address, value)

    def _require_connection(self) -> ConnectionConfig:
        if self.connection is None:
            raise TransportError("Port is not open; run a scan first")
        return self.connection

    def _reachable(self, device_id: int) -> SimulatedDevice | None:
        device = self.devices.get(device_id)
        connection = self.connection
        if device is None or connection is None:
            return None
        if device.protocol != connection.protocol or device.baud_rate != connection.baud_rate:
            return None
        return device


def _device_from_doc(entry: Any, *, source: Path) -> SimulatedDevice:
    if not isinstance(entry, dict) or "id" not in entry or "model_number" not in entry:
        raise ModelValidationError(f"Bus fixture {source}: each device needs 'id' and 'model_number'")
    return SimulatedDevice(
        id=int(entry["id"]),
        model_number=int(entry["model_number"]),
        protocol=str(entry.get("protocol", "2.0")),
        baud_rate=int(entry.get("baud_rate", 57600)),
        registers={int(k): int(v) for k, v in (entry.get("registers") or {}).items()},
        read_errors={int(k): str(v) for k, v in (entry.get("read_errors") or {}).items()},
        write_errors={int(k): str(v) for k, v in (entry.get("write_errors") or {}).items()},
    )
