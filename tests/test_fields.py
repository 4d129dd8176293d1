from __future__ import annotations

import pytest

from mttr.core.field_cache import FieldCache
from mttr.core.fields import format_state, parse_unit
from mttr.core.model import PENDING, FieldState


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("0.229 rev/min", (0.229, "rev/min")),
        ("2 usec", (2.0, "usec")),
        ("rev/min", (1.0, "rev/min")),
        (None, (1.0, "")),
    ],
)
def test_parse_unit(raw, expected) -> None:
    assert parse_unit(raw) == expected


def test_format_state(model) -> None:
    torque = model.field_at(64)
    limit = model.field_at(10)
    assert format_state(torque, FieldState(value=1)) == "1 (On)"
    assert format_state(limit, FieldState(value=300)) == "300"
    assert format_state(limit, FieldState(error="timeout")) == "ERR (timeout)"
    assert format_state(limit, PENDING) == "---"


def test_field_state_holds_value_or_error_not_both() -> None:
    with pytest.raises(ValueError):
        FieldState(value=1, error="timeout")
    assert PENDING.pending
    assert FieldState(value=0).resolved


def test_cache_notifies_listeners_until_unsubscribed() -> None:
    cache = FieldCache()
    seen = []
    unsubscribe = cache.subscribe(lambda address, state: seen.append((address, state)))

    cache.set_value(7, 1)
    cache.set_error(10, "timeout")
    unsubscribe()
    cache.set_value(7, 2)

    assert seen == [(7, FieldState(value=1)), (10, FieldState(error="timeout"))]
    assert cache.get(7) == FieldState(value=2)
    assert cache.get(99) is PENDING
    assert 99 not in cache


def test_cache_reset_keeps_locked_addresses_only() -> None:
    cache = FieldCache()
    cache.set_value(0, 1060)
    cache.set_value(10, 5)
    cache.set_value(200, 9)
    cache.lock(10)

    cache.reset([0, 10])

    assert cache.snapshot() == {0: PENDING, 10: FieldState(value=5)}

    cache.clear()
    assert len(cache) == 0
    assert cache.is_locked(10)


def test_lock_is_released_only_by_its_owner() -> None:
    cache = FieldCache()
    first = cache.lock(10)
    cache.unlock(10, first)
    second = cache.lock(10)

    cache.unlock(10, first)
    assert cache.is_locked(10)

    cache.unlock(10, second)
    assert not cache.is_locked(10)


def test_committed_write_bumps_epoch() -> None:
    cache = FieldCache()
    cache.set_value(10, 5)
    assert cache.write_epoch(10) == 0

    cache.commit_value(10, 6)
    cache.commit_value(10, 7)

    assert cache.write_epoch(10) == 2
    assert cache.get(10) == FieldState(value=7)
