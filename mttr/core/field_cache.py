"""Local field cache: the single source of truth rendered by frontends."""

from __future__ import annotations

import itertools
from collections.abc import Callable, Iterable

from mttr.core.model import PENDING, FieldState

ChangeListener = Callable[[int, FieldState], None]


class FieldCache:
    """Maps field address to its ``FieldState``.

    Addresses with a write in flight are locked: read generations neither
    reset nor update them until the write resolves. A lock belongs to the
    write that took it, so only that write can release it.

    Every committed write bumps the address's write epoch. A read compares
    epochs against those it started with and drops results for addresses
    written since.
    """

    def __init__(self) -> None:
        self._states: dict[int, FieldState] = {}
        self._locks: dict[int, int] = {}
        self._tokens = itertools.count(1)
        self._epochs: dict[int, int] = {}
        self._listeners: list[ChangeListener] = []

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def get(self, address: int) -> FieldState:
        return self._states.get(address, PENDING)

    def snapshot(self) -> dict[int, FieldState]:
        return dict(self._states)

    def __contains__(self, address: object) -> bool:
        return address in self._states

    def __len__(self) -> int:
        return len(self._states)

    def is_locked(self, address: int) -> bool:
        return address in self._locks

    def lock(self, address: int) -> int:
        """Lock ``address`` for a write and return the token that releases it."""
        if address in self._locks:
            raise RuntimeError(f"Address {address} is already locked")
        token = next(self._tokens)
        self._locks[address] = token
        return token

    def unlock(self, address: int, token: int) -> None:
        if self._locks.get(address) == token:
            del self._locks[address]

    def write_epoch(self, address: int) -> int:
        return self._epochs.get(address, 0)

    def commit_value(self, address: int, value: int) -> None:
        """Store the value of a successful write."""
        self._epochs[address] = self.write_epoch(address) + 1
        self._set(address, FieldState(value=value))

    def reset(self, addresses: Iterable[int]) -> None:
        """Drop every unlocked state and mark ``addresses`` pending."""
        kept = {a: s for a, s in self._states.items() if a in self._locks}
        self._states = kept
        for address in addresses:
            if address not in self._locks:
                self._set(address, PENDING)

    def clear(self) -> None:
        """Drop every state. Locks stay with the writes still holding them."""
        self._states.clear()

    def set_value(self, address: int, value: int) -> None:
        self._set(address, FieldState(value=value))

    def set_error(self, address: int, message: str) -> None:
        self._set(address, FieldState(error=message))

    def _set(self, address: int, state: FieldState) -> None:
        self._states[address] = state
        for listener in list(self._listeners):
            listener(address, state)
