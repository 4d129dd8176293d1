"""Service layer used by the CLI, the public API, and future UI frontends."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Protocol

from mttr.backends.base import Backend
from mttr.core.errors import (
    FieldNotEditableError,
    NoActiveDeviceError,
    ReadFailedError,
    ScanFailedError,
    TransportError,
    WriteFailedError,
)
from mttr.core.field_cache import FieldCache
from mttr.core.model import (
    DEFAULT_BAUD_RATE,
    DEFAULT_PROTOCOL,
    ID_MAX,
    ID_MIN,
    ConnectionConfig,
    DeviceIdentity,
    DeviceModel,
    FieldSchema,
    ReadOutcome,
    ScanOutcome,
    ScanProgress,
)
from mttr.core.model_loader import ModelRegistry
from mttr.core.read import ReadController
from mttr.core.scan import ScanController, ScanListener
from mttr.core.write import ContinuousControl, EditSession, WriteCoordinator

LOGGER = logging.getLogger(__name__)

GOAL_VELOCITY = "Goal Velocity"


class Notifier(Protocol):
    def error(self, message: str) -> None:
        """Report a failed user-initiated operation."""

    def info(self, message: str) -> None:
        """Report an outcome worth showing the user."""


class LoggingNotifier:
    def error(self, message: str) -> None:
        LOGGER.error(message)

    def info(self, message: str) -> None:
        LOGGER.info(message)


class DeviceService:
    """Session state for one bus: scan results, active device, and its fields.

    Transport failures never escape the service; they are handed to the
    notifier and the operation returns ``None``. Validation and
    editability errors are raised to the caller that owns the input.
    """

    def __init__(
        self,
        backend: Backend,
        *,
        models: ModelRegistry | None = None,
        notifier: Notifier | None = None,
        scan_listener: ScanListener | None = None,
    ) -> None:
        self.backend = backend
        self.models = models if models is not None else ModelRegistry.load()
        self.load_warnings = self.models.warnings
        self.notifier: Notifier = notifier or LoggingNotifier()
        self.cache = FieldCache()
        self.scanner = ScanController(backend, listener=scan_listener)
        self.reader = ReadController(backend, self.cache)
        self.writer = WriteCoordinator(
            backend,
            self.cache,
            target=self._active_id,
            on_identity_changed=self._remap_identity,
        )
        self.config: ConnectionConfig | None = None
        self.devices: list[DeviceIdentity] = []
        self.active: DeviceIdentity | None = None

    @property
    def model(self) -> DeviceModel | None:
        if self.active is None:
            return None
        return self.models.get(self.active.model_number)

    @property
    def scan_progress(self) -> ScanProgress | None:
        return self.scanner.progress

    @property
    def scan_results(self) -> list[DeviceIdentity]:
        """Devices found so far by the running or last scan."""
        return list(self.scanner.results)

    async def list_ports(self) -> list[str]:
        try:
            return await self.backend.list_ports()
        except TransportError as exc:
            self.notifier.error(f"Failed to list serial ports: {exc}")
            return []

    async def scan(
        self,
        port: str,
        protocol: str = DEFAULT_PROTOCOL,
        baud_rate: int = DEFAULT_BAUD_RATE,
        id_start: int = ID_MIN,
        id_end: int = ID_MAX,
    ) -> ScanOutcome | None:
        try:
            outcome = await self.scanner.start_scan(port, protocol, baud_rate, id_start, id_end)
        except ScanFailedError as exc:
            self.notifier.error(str(exc))
            return None
        if outcome is None:
            return None

        if outcome.cancelled:
            self.notifier.info("Scan cancelled.")
        if not outcome.devices:
            self.notifier.info("No servos found. Check your connection and settings.")
            return outcome

        count = len(outcome.devices)
        self.notifier.info(f"Found {count} servo{'s' if count != 1 else ''}.")
        self._reset_session()
        self.config = outcome.config
        self.devices = list(outcome.devices)
        return outcome

    async def cancel_scan(self) -> None:
        try:
            await self.scanner.cancel_scan()
        except TransportError as exc:
            self.notifier.error(f"Failed to cancel scan: {exc}")

    async def select_device(self, device_id: int) -> ReadOutcome | None:
        identity = next((d for d in self.devices if d.id == device_id), None)
        if identity is None:
            known = ", ".join(str(d.id) for d in self.devices) or "none"
            raise NoActiveDeviceError(f"No scanned device with ID {device_id} (known: {known})")
        self.writer.discard()
        self.reader.invalidate()
        self.cache.clear()
        self.active = identity
        return await self.refresh()

    async def refresh(self) -> ReadOutcome | None:
        active = self._require_active()
        model = self.model
        if model is None:
            LOGGER.warning(
                "No control table for model %d; reads and writes are disabled for ID %d",
                active.model_number,
                active.id,
            )
            return None
        try:
            return await self.reader.start_read(active.id, model.fields)
        except ReadFailedError as exc:
            self.notifier.error(str(exc))
            return None

    def field(self, key: str | int) -> FieldSchema:
        active = self._require_active()
        model = self.model
        if model is None:
            raise FieldNotEditableError(f"No control table for model {active.model_number}")
        found = model.field_at(key) if isinstance(key, int) else model.field_named(key)
        if found is None:
            raise FieldNotEditableError(f"Model {model.name} has no field '{key}'")
        return found

    def begin_edit(self, key: str | int) -> EditSession:
        return self.writer.begin_edit(self.field(key))

    def cancel_edit(self, key: str | int) -> None:
        self.writer.cancel_edit(self.field(key))

    async def commit(self, key: str | int, value: str | int) -> bool | None:
        field = self.field(key)
        try:
            return await self.writer.commit(field, value)
        except WriteFailedError as exc:
            self.notifier.error(str(exc))
            return None

    def velocity_control(self, key: str | int = GOAL_VELOCITY) -> ContinuousControl:
        return ContinuousControl(self.writer, self.field(key))

    async def release_control(self, control: ContinuousControl, value: int | None = None) -> bool | None:
        try:
            return await control.release(value)
        except WriteFailedError as exc:
            self.notifier.error(f"Failed to set velocity: {exc}")
            return None

    async def disconnect(self) -> None:
        self.scanner.invalidate()
        self._reset_session()
        try:
            await self.backend.disconnect()
        except TransportError as exc:
            self.notifier.error(f"Failed to disconnect: {exc}")

    def _reset_session(self) -> None:
        self.reader.invalidate()
        self.writer.discard()
        self.cache.clear()
        self.config = None
        self.devices = []
        self.active = None

    def _require_active(self) -> DeviceIdentity:
        if self.active is None:
            raise NoActiveDeviceError("No device selected. Scan and select a device first.")
        return self.active

    def _active_id(self) -> int | None:
        return self.active.id if self.active is not None else None

    def _remap_identity(self, old_id: int, new_id: int) -> None:
        self.devices = [replace(d, id=new_id) if d.id == old_id else d for d in self.devices]
        if self.active is not None and self.active.id == old_id:
            self.active = replace(self.active, id=new_id)
        self.reader.retarget(old_id, new_id)
        LOGGER.info("Device %d is now addressed as ID %d", old_id, new_id)
