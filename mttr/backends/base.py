"""Device backend interface consumed by the session controllers."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Sequence
from typing import Protocol

from mttr.core.model import ReadEvent, ScanEvent

FieldRequest = tuple[int, int]


class Backend(Protocol):
    """Asynchronous command/event bridge to the device bus.

    Streams are async generators so consumers can close them when a newer
    session supersedes the one that opened them. Failures are reported by
    raising ``mttr.core.errors.TransportError``.
    """

    async def list_ports(self) -> list[str]:
        """Return the available serial port names, in display order."""

    def scan(
        self,
        port: str,
        protocol: str,
        baud_rate: int,
        id_start: int,
        id_end: int,
    ) -> AsyncGenerator[ScanEvent, None]:
        """Ping every id in ``[id_start, id_end]`` and stream the findings."""

    async def cancel_scan(self) -> None:
        """Ask the running scan to stop; it still ends with ``Finished``."""

    async def disconnect(self) -> None:
        """Release the channel opened by the last scan."""

    def read_fields(
        self,
        device_id: int,
        fields: Sequence[FieldRequest],
    ) -> AsyncGenerator[ReadEvent, None]:
        """Read ``(address, size)`` pairs, one event per field then ``ReadFinished``."""

    async def write_field(self, device_id: int, address: int, size: int, value: int) -> None:
        """Write one field; raise ``TransportError`` when the device rejects it."""
