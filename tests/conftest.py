from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Sequence
from pathlib import Path
from typing import Any

import pytest

from mttr.core.errors import TransportError
from mttr.core.model import Access, DeviceModel, FieldSchema
from mttr.core.model_loader import ModelRegistry

_END = object()


async def _drain(queue: asyncio.Queue[Any]) -> AsyncGenerator[Any, None]:
    while True:
        item = await queue.get()
        if item is _END:
            return
        if isinstance(item, BaseException):
            raise item
        yield item


class ScriptedBackend:
    """Backend whose streams are fed by the test, one queue per call."""

    def __init__(self) -> None:
        self.ports = ["/dev/ttyUSB0"]
        self.scan_calls: list[tuple[str, str, int, int, int]] = []
        self.scan_queues: list[asyncio.Queue[Any]] = []
        self.read_calls: list[tuple[int, tuple[tuple[int, int], ...]]] = []
        self.read_queues: list[asyncio.Queue[Any]] = []
        self.write_calls: list[tuple[int, int, int, int]] = []
        self.write_error: str | None = None
        self.write_gate: asyncio.Event | None = None
        self.cancel_calls = 0
        self.cancel_error: str | None = None
        self.disconnect_calls = 0

    async def list_ports(self) -> list[str]:
        return list(self.ports)

    def scan(self, port: str, protocol: str, baud_rate: int, id_start: int, id_end: int):
        queue: asyncio.Queue[Any] = asyncio.Queue()
        self.scan_calls.append((port, protocol, baud_rate, id_start, id_end))
        self.scan_queues.append(queue)
        return _drain(queue)

    async def cancel_scan(self) -> None:
        self.cancel_calls += 1
        if self.cancel_error:
            raise TransportError(self.cancel_error)

    async def disconnect(self) -> None:
        self.disconnect_calls += 1

    def read_fields(self, device_id: int, fields: Sequence[tuple[int, int]]):
        queue: asyncio.Queue[Any] = asyncio.Queue()
        self.read_calls.append((device_id, tuple(fields)))
        self.read_queues.append(queue)
        return _drain(queue)

    async def write_field(self, device_id: int, address: int, size: int, value: int) -> None:
        self.write_calls.append((device_id, address, size, value))
        if self.write_gate is not None:
            await self.write_gate.wait()
        if self.write_error:
            raise TransportError(self.write_error)

    def push_scan(self, *events: Any, index: int = -1) -> None:
        for event in events:
            self.scan_queues[index].put_nowait(event)

    def push_read(self, *events: Any, index: int = -1) -> None:
        for event in events:
            self.read_queues[index].put_nowait(event)

    def end_scan(self, index: int = -1) -> None:
        self.scan_queues[index].put_nowait(_END)

    def end_read(self, index: int = -1) -> None:
        self.read_queues[index].put_nowait(_END)

    @staticmethod
    async def settle() -> None:
        for _ in range(20):
            await asyncio.sleep(0)


class RecordingNotifier:
    def __init__(self) -> None:
        self.errors: list[str] = []
        self.infos: list[str] = []

    def error(self, message: str) -> None:
        self.errors.append(message)

    def info(self, message: str) -> None:
        self.infos.append(message)


def make_model(model_number: int = 1060) -> DeviceModel:
    return DeviceModel(
        model_number=model_number,
        name="Test Servo",
        fields=(
            FieldSchema(address=0, size=2, name="Model Number", access=Access.R),
            FieldSchema(address=7, size=1, name="ID", access=Access.RW, range=(0, 252), identity=True),
            FieldSchema(address=10, size=2, name="Limit", access=Access.RW, range=(0, 1000)),
            FieldSchema(
                address=64,
                size=1,
                name="Torque Enable",
                access=Access.RW,
                value_map={0: "Off", 1: "On"},
            ),
            FieldSchema(
                address=104,
                size=4,
                name="Goal Velocity",
                access=Access.RW,
                range=(-1023, 1023),
                unit="0.229 rev/min",
            ),
        ),
    )


@pytest.fixture(autouse=True)
def _isolated_model_dirs(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))


@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def registry() -> ModelRegistry:
    return ModelRegistry({1060: make_model()})


@pytest.fixture
def model() -> DeviceModel:
    return make_model()
