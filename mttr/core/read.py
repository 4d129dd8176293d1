"""Control-table read session controller with generation fencing."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from contextlib import aclosing

from mttr.backends.base import Backend, FieldRequest
from mttr.core.errors import ReadFailedError, TransportError
from mttr.core.field_cache import FieldCache
from mttr.core.model import Error, FieldSchema, ReadEvent, ReadFinished, ReadOutcome, Value

LOGGER = logging.getLogger(__name__)


def _requests(fields: Sequence[FieldSchema | FieldRequest]) -> tuple[FieldRequest, ...]:
    requests: list[FieldRequest] = []
    for field in fields:
        if isinstance(field, FieldSchema):
            requests.append((field.address, field.size))
        else:
            address, size = field
            requests.append((int(address), int(size)))
    return tuple(requests)


class ReadController:
    """Reads batches of fields into a ``FieldCache``.

    Starting a read supersedes the previous one: events still arriving for
    an older generation are dropped without touching the cache.
    """

    def __init__(self, backend: Backend, cache: FieldCache) -> None:
        self._backend = backend
        self.cache = cache
        self._generation = 0
        self._loading_generation: int | None = None
        self._last_request: tuple[int, tuple[FieldRequest, ...]] | None = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def loading(self) -> bool:
        return self._loading_generation == self._generation

    def invalidate(self) -> None:
        """Fence off any outstanding read without issuing a new one."""
        self._generation += 1
        self._loading_generation = None
        self._last_request = None

    def retarget(self, old_id: int, new_id: int) -> None:
        """Point the remembered request at a device's new id."""
        if self._last_request is not None and self._last_request[0] == old_id:
            self._last_request = (new_id, self._last_request[1])

    async def refresh(self) -> ReadOutcome | None:
        if self._last_request is None:
            return None
        device_id, requests = self._last_request
        return await self.start_read(device_id, requests)

    async def start_read(
        self,
        device_id: int,
        fields: Sequence[FieldSchema | FieldRequest],
    ) -> ReadOutcome | None:
        requests = _requests(fields)
        self._generation += 1
        generation = self._generation
        self._last_request = (device_id, requests)
        epochs = {address: self.cache.write_epoch(address) for address, _ in requests}
        self.cache.reset(address for address, _ in requests)
        self._loading_generation = generation

        finished = False
        try:
            async with aclosing(self._backend.read_fields(device_id, requests)) as stream:
                async for event in stream:
                    if generation != self._generation:
                        LOGGER.debug("Dropping stale read event from generation %d: %r", generation, event)
                        return None
                    self._apply(event, epochs)
                    if isinstance(event, ReadFinished):
                        finished = True
                        break
        except TransportError as exc:
            if generation != self._generation:
                LOGGER.debug("Ignoring failure of superseded read generation %d: %s", generation, exc)
                return None
            self._loading_generation = None
            raise ReadFailedError(f"Failed to read control table: {exc}") from exc

        if generation != self._generation:
            return None
        self._loading_generation = None
        if not finished:
            LOGGER.warning("Read of device %d ended without a finished event", device_id)
        else:
            LOGGER.info("Read %d field(s) from device %d", len(requests), device_id)
        states = {address: self.cache.get(address) for address, _ in requests}
        return ReadOutcome(device_id=device_id, states=states, finished=finished)

    def _apply(self, event: ReadEvent, epochs: dict[int, int]) -> None:
        if isinstance(event, ReadFinished):
            return
        if self.cache.is_locked(event.address):
            LOGGER.debug("Address %d has a write in flight; ignoring read result", event.address)
            return
        if self.cache.write_epoch(event.address) != epochs.get(event.address, 0):
            LOGGER.debug("Address %d was written after this read started; ignoring", event.address)
            return
        if isinstance(event, Value):
            self.cache.set_value(event.address, event.value)
        elif isinstance(event, Error):
            self.cache.set_error(event.address, event.message)
