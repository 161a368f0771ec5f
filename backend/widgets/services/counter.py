from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from backend.widgets.models import CounterCounts, CounterPeriod, CounterState
from backend.widgets.ownership import authorize
from backend.widgets.results import EngineResult, ErrorKind, accepted, rejected

DEDUP_WINDOW = timedelta(hours=24)


def day_key(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d")


def week_key(moment: datetime) -> str:
    iso_year, iso_week, _ = moment.isocalendar()
    return f"{iso_year:04d}-W{iso_week:02d}"


def month_key(moment: datetime) -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


def new_counter(
    *, widget_id: str, url: str, owner_token_hash: str, now: datetime
) -> CounterState:
    return CounterState(
        id=widget_id,
        url=url,
        owner_token_hash=owner_token_hash,
        created_at_utc=now,
    )


def is_duplicate_visit(
    state: CounterState, fingerprint: str, now: datetime, window: timedelta = DEDUP_WINDOW
) -> bool:
    last_seen = state.last_visits.get(fingerprint)
    return last_seen is not None and now - last_seen < window


def record_visit(
    state: CounterState,
    fingerprint: str,
    now: datetime,
    *,
    window: timedelta = DEDUP_WINDOW,
    retention_days: Optional[int] = None,
) -> EngineResult[CounterState]:
    """Count one visit unless this fingerprint was admitted within ``window``.

    A suppressed duplicate is an accepted no-op, not an error.
    """
    if is_duplicate_visit(state, fingerprint, now, window):
        return accepted(state, changed=False)

    updated = state.model_copy(deep=True)
    updated.total += 1
    for buckets, key in (
        (updated.daily, day_key(now)),
        (updated.weekly, week_key(now)),
        (updated.monthly, month_key(now)),
    ):
        buckets[key] = buckets.get(key, 0) + 1

    # expired marks can no longer suppress anything
    updated.last_visits = {
        seen_fingerprint: seen_at
        for seen_fingerprint, seen_at in updated.last_visits.items()
        if now - seen_at < window
    }
    updated.last_visits[fingerprint] = now
    updated.last_visit_at = now
    if retention_days:
        prune_buckets(updated, now, retention_days)
    return accepted(updated)


def prune_buckets(state: CounterState, now: datetime, retention_days: int) -> None:
    """Drop buckets older than the horizon in place; ``total`` is untouched."""
    horizon = now - timedelta(days=retention_days)
    oldest_day, oldest_week, oldest_month = day_key(horizon), week_key(horizon), month_key(horizon)
    state.daily = {key: count for key, count in state.daily.items() if key >= oldest_day}
    state.weekly = {key: count for key, count in state.weekly.items() if key >= oldest_week}
    state.monthly = {key: count for key, count in state.monthly.items() if key >= oldest_month}


def _sum_days(state: CounterState, now: datetime, days: int) -> int:
    return sum(state.daily.get(day_key(now - timedelta(days=offset)), 0) for offset in range(days))


def read_counts(state: CounterState, now: datetime) -> CounterCounts:
    return CounterCounts(
        id=state.id,
        url=state.url,
        total=state.total,
        today=state.daily.get(day_key(now), 0),
        yesterday=state.daily.get(day_key(now - timedelta(days=1)), 0),
        week=_sum_days(state, now, 7),
        month=_sum_days(state, now, 30),
        daily=dict(state.daily),
        weekly=dict(state.weekly),
        monthly=dict(state.monthly),
        last_visit_at=state.last_visit_at,
    )


def counter_value(counts: CounterCounts, period: CounterPeriod) -> int:
    return getattr(counts, period.value)


def set_total(
    state: CounterState, provided_token: Optional[str], value: int
) -> EngineResult[CounterState]:
    if not authorize(provided_token, state.owner_token_hash):
        return rejected(state, ErrorKind.unauthorized, "invalid owner token")
    if value == state.total:
        return accepted(state, changed=False)
    updated = state.model_copy(deep=True)
    updated.total = value
    return accepted(updated)
