"""Stable public API for building tooling on top of mttr.

This module is the supported integration surface for third-party callers
(GUI/TUI frontends, scripts). Avoid importing from internal modules unless
intentionally depending on non-stable internals.
"""

from __future__ import annotations

from mttr.backends.base import Backend
from mttr.backends.simulated import SimulatedBackend, SimulatedDevice
from mttr.core.errors import (
    FieldNotEditableError,
    FieldValidationError,
    ModelLoadError,
    ModelValidationError,
    MttrError,
    NoActiveDeviceError,
    ReadFailedError,
    ScanFailedError,
    ScanRequestError,
    TransportError,
    WriteFailedError,
)
from mttr.core.field_cache import FieldCache
from mttr.core.model import (
    ConnectionConfig,
    DeviceIdentity,
    DeviceModel,
    FieldSchema,
    FieldState,
    Finished,
    Found,
    Progress,
    ReadOutcome,
    ScanEvent,
    ScanOutcome,
    ScanProgress,
)
from mttr.core.model_loader import ModelRegistry
from mttr.core.scan import ScanListener
from mttr.core.service import DeviceService, Notifier
from mttr.core.write import ContinuousControl, EditSession, EditState

__all__ = [
    "MttrError",
    "FieldNotEditableError",
    "FieldValidationError",
    "ModelLoadError",
    "ModelValidationError",
    "NoActiveDeviceError",
    "ReadFailedError",
    "ScanFailedError",
    "ScanRequestError",
    "TransportError",
    "WriteFailedError",
    "Backend",
    "SimulatedBackend",
    "SimulatedDevice",
    "ConnectionConfig",
    "DeviceIdentity",
    "DeviceModel",
    "FieldSchema",
    "FieldState",
    "ReadOutcome",
    "ScanOutcome",
    "ScanProgress",
    "ScanEvent",
    "Found",
    "Progress",
    "Finished",
    "ContinuousControl",
    "ScanListener",
    "EditSession",
    "EditState",
    "Client",
]


class Client:
    """Public client for driving one device bus.

    A `Client` wraps model loading, the scan/read controllers and the write
    coordinator behind a stable async API. Transport failures are delivered to
    ``notifier`` and surface here as ``None`` results.
    """

    def __init__(
        self,
        backend: Backend,
        *,
        models: ModelRegistry | None = None,
        notifier: Notifier | None = None,
        scan_listener: ScanListener | None = None,
    ) -> None:
        self._service = DeviceService(
            backend, models=models, notifier=notifier, scan_listener=scan_listener
        )

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    @property
    def cache(self) -> FieldCache:
        return self._service.cache

    @property
    def devices(self) -> list[DeviceIdentity]:
        return list(self._service.devices)

    @property
    def active(self) -> DeviceIdentity | None:
        return self._service.active

    @property
    def config(self) -> ConnectionConfig | None:
        return self._service.config

    @property
    def model(self) -> DeviceModel | None:
        return self._service.model

    @property
    def loading(self) -> bool:
        return self._service.reader.loading

    @property
    def scan_progress(self) -> ScanProgress | None:
        return self._service.scan_progress

    @property
    def scan_results(self) -> list[DeviceIdentity]:
        return self._service.scan_results

    async def list_ports(self) -> list[str]:
        return await self._service.list_ports()

    async def scan(
        self,
        port: str,
        *,
        protocol: str = "2.0",
        baud_rate: int = 57600,
        id_start: int = 0,
        id_end: int = 252,
    ) -> ScanOutcome | None:
        return await self._service.scan(port, protocol, baud_rate, id_start, id_end)

    async def cancel_scan(self) -> None:
        await self._service.cancel_scan()

    async def select_device(self, device_id: int) -> ReadOutcome | None:
        return await self._service.select_device(device_id)

    async def refresh(self) -> ReadOutcome | None:
        return await self._service.refresh()

    def begin_edit(self, field: str | int) -> EditSession:
        return self._service.begin_edit(field)

    def cancel_edit(self, field: str | int) -> None:
        self._service.cancel_edit(field)

    async def commit(self, field: str | int, value: str | int) -> bool | None:
        return await self._service.commit(field, value)

    def velocity_control(self, field: str | int = "Goal Velocity") -> ContinuousControl:
        return self._service.velocity_control(field)

    async def release_control(self, control: ContinuousControl, value: int | None = None) -> bool | None:
        return await self._service.release_control(control, value)

    async def disconnect(self) -> None:
        await self._service.disconnect()
