"""Discovery scan session controller."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import aclosing

from mttr.backends.base import Backend
from mttr.core.errors import ScanFailedError, ScanRequestError, TransportError
from mttr.core.model import (
    ID_MAX,
    ID_MIN,
    PROTOCOLS,
    ConnectionConfig,
    DeviceIdentity,
    Finished,
    Found,
    Progress,
    ScanEvent,
    ScanOutcome,
    ScanProgress,
)

LOGGER = logging.getLogger(__name__)

ScanListener = Callable[[ScanEvent], None]


def check_scan_request(port: str, protocol: str, id_start: int, id_end: int) -> None:
    if not port or not port.strip():
        raise ScanRequestError("Please select a serial port.")
    if protocol not in PROTOCOLS:
        raise ScanRequestError(f"Unsupported protocol '{protocol}'. Choose one of: {', '.join(PROTOCOLS)}")
    for name, value in (("start", id_start), ("end", id_end)):
        if not ID_MIN <= value <= ID_MAX:
            raise ScanRequestError(f"ID range {name} {value} is outside [{ID_MIN}, {ID_MAX}]")
    if id_start > id_end:
        raise ScanRequestError(f"ID range start {id_start} is greater than end {id_end}")


class ScanController:
    """Owns one discovery scan at a time.

    Each ``start_scan`` bumps the generation. A consumer whose generation is
    no longer current drops the event it holds, closes its stream and
    returns ``None``.
    """

    def __init__(self, backend: Backend, *, listener: ScanListener | None = None) -> None:
        self._backend = backend
        self._listener = listener
        self._generation = 0
        self.results: list[DeviceIdentity] = []
        self.progress: ScanProgress | None = None
        self.active = False
        self.cancelled = False

    @property
    def generation(self) -> int:
        return self._generation

    def invalidate(self) -> None:
        """Fence off the running scan, if any, without starting another."""
        self._generation += 1
        self.active = False
        self.progress = None

    async def start_scan(
        self,
        port: str,
        protocol: str,
        baud_rate: int,
        id_start: int,
        id_end: int,
    ) -> ScanOutcome | None:
        check_scan_request(port, protocol, id_start, id_end)

        if self.active:
            LOGGER.debug("Superseding scan generation %d", self._generation)
        self._generation += 1
        generation = self._generation
        self.results = []
        self.progress = None
        self.cancelled = False
        self.active = True
        config = ConnectionConfig(port=port, protocol=protocol, baud_rate=baud_rate)

        try:
            async with aclosing(
                self._backend.scan(port, protocol, baud_rate, id_start, id_end)
            ) as stream:
                async for event in stream:
                    if generation != self._generation:
                        LOGGER.debug("Dropping stale scan event from generation %d: %r", generation, event)
                        return None
                    if self._apply(event):
                        return ScanOutcome(
                            config=config,
                            devices=tuple(self.results),
                            cancelled=self.cancelled,
                        )
        except TransportError as exc:
            if generation != self._generation:
                LOGGER.debug("Ignoring failure of superseded scan generation %d: %s", generation, exc)
                return None
            self._fail()
            raise ScanFailedError(f"Scan failed: {exc}") from exc

        if generation != self._generation:
            return None
        self._fail()
        raise ScanFailedError("Scan failed: stream ended without a finished event")

    async def cancel_scan(self) -> None:
        if not self.active:
            LOGGER.debug("No scan running; ignoring cancel request")
            return
        await self._backend.cancel_scan()

    def _apply(self, event: ScanEvent) -> bool:
        if isinstance(event, Found):
            self.results.append(event.device)
        elif isinstance(event, Progress):
            self.progress = ScanProgress(current=event.current, total=event.total)
        elif isinstance(event, Finished):
            self.active = False
            self.progress = None
            self.cancelled = event.cancelled
            LOGGER.info(
                "Scan finished (cancelled=%s) with %d device(s)", event.cancelled, len(self.results)
            )
        if self._listener is not None:
            self._listener(event)
        return isinstance(event, Finished)

    def _fail(self) -> None:
        self.results = []
        self.active = False
        self.progress = None
