from __future__ import annotations

from datetime import datetime, timedelta

from backend.widgets.models import CounterPeriod
from backend.widgets.ownership import hash_token
from backend.widgets.results import ErrorKind
from backend.widgets.services.counter import (
    counter_value,
    day_key,
    month_key,
    new_counter,
    read_counts,
    record_visit,
    set_total,
    week_key,
)

START = datetime(2024, 3, 10, 12, 0, 0)


def _counter():
    return new_counter(
        widget_id="example-00000000",
        url="https://example.com/",
        owner_token_hash=hash_token("owner-token"),
        now=START,
    )


def test_bucket_keys() -> None:
    moment = datetime(2024, 12, 30, 8, 0)
    assert day_key(moment) == "2024-12-30"
    assert week_key(moment) == "2025-W01"
    assert month_key(moment) == "2024-12"


def test_first_visit_counts_in_every_bucket() -> None:
    result = record_visit(_counter(), "fp-a", START)
    assert result.ok and result.changed
    state = result.state
    assert state.total == 1
    assert state.daily == {"2024-03-10": 1}
    assert state.weekly == {week_key(START): 1}
    assert state.monthly == {"2024-03": 1}
    assert state.last_visit_at == START


def test_repeat_visit_within_window_is_noop() -> None:
    state = record_visit(_counter(), "fp-a", START).state
    again = record_visit(state, "fp-a", START + timedelta(hours=23, minutes=59))
    assert again.ok
    assert not again.changed
    assert again.state.total == 1


def test_repeat_visit_after_window_counts_again() -> None:
    state = record_visit(_counter(), "fp-a", START).state
    later = record_visit(state, "fp-a", START + timedelta(hours=24))
    assert later.changed
    assert later.state.total == 2


def test_distinct_visitors_count_independently() -> None:
    state = _counter()
    for index in range(5):
        state = record_visit(state, f"fp-{index}", START).state
    assert state.total == 5
    assert state.daily[day_key(START)] == 5


def test_expired_marks_are_pruned() -> None:
    state = record_visit(_counter(), "fp-old", START).state
    state = record_visit(state, "fp-new", START + timedelta(days=2)).state
    assert set(state.last_visits) == {"fp-new"}


def test_bucket_retention_keeps_total() -> None:
    state = record_visit(_counter(), "fp-a", START, retention_days=30).state
    state = record_visit(state, "fp-b", START + timedelta(days=60), retention_days=30).state
    assert state.total == 2
    assert day_key(START) not in state.daily
    assert month_key(START) not in state.monthly


def test_input_state_is_not_mutated() -> None:
    original = _counter()
    record_visit(original, "fp-a", START)
    assert original.total == 0
    assert original.daily == {}


def test_read_counts_periods() -> None:
    state = _counter()
    state = record_visit(state, "fp-a", START - timedelta(days=1)).state
    state = record_visit(state, "fp-b", START).state
    state = record_visit(state, "fp-c", START).state
    state = record_visit(state, "fp-d", START - timedelta(days=20)).state

    counts = read_counts(state, START)
    assert counts.total == 4
    assert counts.today == 2
    assert counts.yesterday == 1
    assert counts.week == 3
    assert counts.month == 4
    assert counter_value(counts, CounterPeriod.today) == 2
    assert counter_value(counts, CounterPeriod.total) == 4


def test_set_total_requires_owner() -> None:
    state = _counter()
    denied = set_total(state, "wrong-token", 50)
    assert denied.error == ErrorKind.unauthorized
    assert denied.state.total == 0

    allowed = set_total(state, "owner-token", 50)
    assert allowed.ok and allowed.state.total == 50

    unchanged = set_total(allowed.state, "owner-token", 50)
    assert unchanged.ok and not unchanged.changed
