"""Per-field edit/commit coordination for control-table writes."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from mttr.backends.base import Backend
from mttr.core.errors import (
    FieldNotEditableError,
    FieldValidationError,
    MttrError,
    NoActiveDeviceError,
    TransportError,
    WriteFailedError,
)
from mttr.core.field_cache import FieldCache
from mttr.core.fields import parse_unit, validate
from mttr.core.model import FieldSchema

LOGGER = logging.getLogger(__name__)

IdentityListener = Callable[[int, int], None]


class EditState(str, Enum):
    CLEAN = "clean"
    EDITING = "editing"
    WRITING = "writing"


@dataclass
class EditSession:
    field: FieldSchema
    draft: str
    state: EditState = EditState.EDITING
    error: str | None = None


class WriteCoordinator:
    """Owns edit buffers and commits for the fields of the active device.

    A field moves CLEAN -> EDITING -> WRITING and then back to CLEAN on
    success, or to EDITING with the user's draft intact on failure.
    """

    def __init__(
        self,
        backend: Backend,
        cache: FieldCache,
        *,
        target: Callable[[], int | None],
        on_identity_changed: IdentityListener | None = None,
    ) -> None:
        self._backend = backend
        self.cache = cache
        self._target = target
        self._on_identity_changed = on_identity_changed
        self._sessions: dict[int, EditSession] = {}

    def session(self, field: FieldSchema) -> EditSession | None:
        return self._sessions.get(field.address)

    def state_of(self, field: FieldSchema) -> EditState:
        if self.cache.is_locked(field.address):
            return EditState.WRITING
        session = self._sessions.get(field.address)
        return session.state if session is not None else EditState.CLEAN

    def can_edit(self, field: FieldSchema) -> bool:
        try:
            self._check_editable(field)
        except FieldNotEditableError:
            return False
        return True

    def discard(self) -> None:
        """Drop every open edit, e.g. when the active device changes."""
        self._sessions.clear()

    def begin_edit(self, field: FieldSchema) -> EditSession:
        self._check_editable(field)
        session = self._sessions.get(field.address)
        if session is None:
            value = self.cache.get(field.address).value
            session = EditSession(field=field, draft=str(value))
            self._sessions[field.address] = session
        return session

    def validate(self, field: FieldSchema, raw: str | int | float) -> int:
        return validate(field, raw)

    def update_draft(self, field: FieldSchema, raw: str) -> int | None:
        """Store ``raw`` as the field's draft; return its value when valid."""
        session = self._open_session(field)
        session.draft = raw
        try:
            value = validate(field, raw)
        except FieldValidationError as exc:
            session.error = str(exc)
            return None
        session.error = None
        return value

    async def commit(self, field: FieldSchema, value: str | int) -> bool:
        """Write ``value`` and close the edit; return False for a no-op commit.

        Raises ``FieldValidationError`` for rejected input and
        ``WriteFailedError`` when the backend refuses; in both cases the edit
        stays open with its draft.
        """
        session = self._open_session(field)
        if isinstance(value, str):
            session.draft = value
        try:
            checked = validate(field, value)
        except FieldValidationError as exc:
            session.error = str(exc)
            raise

        if checked == self.cache.get(field.address).value:
            LOGGER.debug("%s unchanged at %d; closing edit", field.name, checked)
            del self._sessions[field.address]
            return False

        session.state = EditState.WRITING
        session.error = None
        try:
            await self._write(field, checked)
        except WriteFailedError as exc:
            session.state = EditState.EDITING
            session.error = str(exc)
            raise

        self._sessions.pop(field.address, None)
        return True

    def cancel_edit(self, field: FieldSchema) -> None:
        session = self._sessions.get(field.address)
        if session is None:
            return
        if session.state is EditState.WRITING:
            raise FieldNotEditableError(f"{field.name} has a write in flight")
        del self._sessions[field.address]

    async def write_value(self, field: FieldSchema, value: int) -> None:
        """Commit a value outside of an edit session (continuous controls)."""
        self._check_editable(field)
        await self._write(field, validate(field, value))

    async def _write(self, field: FieldSchema, value: int) -> None:
        device_id = self._target()
        if device_id is None:
            raise NoActiveDeviceError(f"No device selected to write {field.name} to")
        token = self.cache.lock(field.address)
        try:
            try:
                await self._backend.write_field(device_id, field.address, field.size, value)
            except TransportError as exc:
                raise WriteFailedError(field.address, f"Failed to write {field.name}: {exc}") from exc

            if self._target() != device_id:
                LOGGER.debug("Active device changed during write of %s; not caching", field.name)
                return
            # Cache update and identity remap happen with no await in between.
            self.cache.commit_value(field.address, value)
            if field.identity and value != device_id and self._on_identity_changed is not None:
                self._on_identity_changed(device_id, value)
            LOGGER.info("Wrote %s=%d to device %d", field.name, value, device_id)
        finally:
            self.cache.unlock(field.address, token)

    def _open_session(self, field: FieldSchema) -> EditSession:
        session = self._sessions.get(field.address)
        if session is None:
            raise FieldNotEditableError(f"{field.name} is not being edited")
        if session.state is EditState.WRITING:
            raise FieldNotEditableError(f"{field.name} has a write in flight")
        return session

    def _check_editable(self, field: FieldSchema) -> None:
        if not field.writable:
            raise FieldNotEditableError(f"{field.name} is read-only")
        if self.cache.is_locked(field.address):
            raise FieldNotEditableError(f"{field.name} has a write in flight")
        state = self.cache.get(field.address)
        if not state.resolved:
            reason = "failed to read" if state.error is not None else "still loading"
            raise FieldNotEditableError(f"{field.name} is {reason}")


class ContinuousControl:
    """Slider-style control that only writes when the interaction ends.

    Intermediate positions update ``draft``. A failed write puts the draft
    back to the last committed value.
    """

    def __init__(self, coordinator: WriteCoordinator, field: FieldSchema) -> None:
        self._coordinator = coordinator
        self.field = field
        self.scale, self.unit = parse_unit(field.unit)
        self.committed = coordinator.cache.get(field.address).value or 0
        self.draft = self.committed
        self.writing = False

    @property
    def bounds(self) -> tuple[int, int] | None:
        return self.field.range

    def sync(self) -> None:
        """Follow the cached value while no write is in flight."""
        if self.writing:
            return
        value = self._coordinator.cache.get(self.field.address).value
        if value is not None and value != self.committed:
            self.committed = value
            self.draft = value

    def drag(self, value: int) -> int:
        self.draft = self._clamp(value)
        return self.draft

    async def release(self, value: int | None = None) -> bool:
        if value is not None:
            self.drag(value)
        target = self.draft
        if target == self.committed:
            return False

        self.writing = True
        try:
            await self._coordinator.write_value(self.field, target)
        except MttrError:
            self.draft = self.committed
            raise
        finally:
            self.writing = False
        self.committed = target
        return True

    async def stop(self) -> bool:
        return await self.release(0)

    def display(self) -> str:
        if not self.unit:
            return str(self.draft)
        return f"{self.draft} ({self.draft * self.scale:.1f} {self.unit})"

    def _clamp(self, value: int) -> int:
        if self.field.range is None:
            return value
        low, high = self.field.range
        return max(low, min(high, value))
