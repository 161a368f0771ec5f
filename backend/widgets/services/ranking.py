from __future__ import annotations

from datetime import datetime
from typing import Optional

from backend.widgets.models import (
    RankedEntry,
    RankingEntry,
    RankingState,
    RankingView,
    SubmitMode,
)
from backend.widgets.ownership import authorize
from backend.widgets.results import EngineResult, ErrorKind, accepted, rejected


def new_ranking(
    *,
    widget_id: str,
    url: str,
    owner_token_hash: str,
    now: datetime,
    max_entries: int,
    owner_only_submit: bool = False,
    submit_mode: SubmitMode = SubmitMode.append,
) -> RankingState:
    return RankingState(
        id=widget_id,
        url=url,
        owner_token_hash=owner_token_hash,
        created_at_utc=now,
        max_entries=max_entries,
        owner_only_submit=owner_only_submit,
        submit_mode=submit_mode,
    )


def sort_key(entry: RankingEntry) -> tuple[int, datetime]:
    # higher score first, then first-submitted wins a tie
    return (-entry.score, entry.timestamp)


def _ordered(entries: list[RankingEntry], max_entries: int) -> list[RankingEntry]:
    ordered = sorted(entries, key=sort_key)
    return ordered[: max(0, max_entries)]


def _best_per_name(entries: list[RankingEntry]) -> list[RankingEntry]:
    seen: set[str] = set()
    best = []
    for entry in sorted(entries, key=sort_key):
        if entry.name not in seen:
            seen.add(entry.name)
            best.append(entry)
    return best


def submit_score(
    state: RankingState,
    name: str,
    score: int,
    now: datetime,
    *,
    max_entries: Optional[int] = None,
    provided_token: Optional[str] = None,
) -> EngineResult[RankingState]:
    """Insert a score and evict the lowest-ranked entries beyond the limit.

    The duplicate-name policy is the board's ``submit_mode``.
    ``SubmitMode.append`` keeps every submission as its own entry.
    ``SubmitMode.best_per_name`` keeps one entry per name, replacing it only
    when the new score is strictly higher.
    """
    if state.owner_only_submit and not authorize(provided_token, state.owner_token_hash):
        return rejected(state, ErrorKind.unauthorized, "score submission requires owner token")

    limit = state.max_entries if max_entries is None else max_entries
    entries = list(state.entries)
    if state.submit_mode == SubmitMode.best_per_name:
        current = [entry for entry in entries if entry.name == name]
        if current and max(entry.score for entry in current) >= score:
            return accepted(state, changed=False)
        entries = [entry for entry in entries if entry.name != name]

    entries.append(RankingEntry(name=name, score=score, timestamp=now))
    ordered = _ordered(entries, limit)
    if ordered == state.entries:
        # candidate ranked below the cut
        return accepted(state, changed=False)

    updated = state.model_copy(deep=True)
    updated.entries = ordered
    updated.last_update = now
    return accepted(updated)


def read_top(state: RankingState, limit: Optional[int] = None) -> list[RankedEntry]:
    entries = state.entries if limit is None else state.entries[: max(0, limit)]
    return [
        RankedEntry(name=entry.name, score=entry.score, timestamp=entry.timestamp, rank=position)
        for position, entry in enumerate(entries, start=1)
    ]


def ranking_view(state: RankingState, limit: Optional[int] = None) -> RankingView:
    return RankingView(
        id=state.id,
        url=state.url,
        entries=read_top(state, limit),
        total_entries=len(state.entries),
        max_entries=state.max_entries,
        submit_mode=state.submit_mode,
        last_update=state.last_update,
    )


def update_score(
    state: RankingState,
    name: str,
    score: int,
    now: datetime,
    provided_token: Optional[str],
) -> EngineResult[RankingState]:
    if not authorize(provided_token, state.owner_token_hash):
        return rejected(state, ErrorKind.unauthorized, "invalid owner token")
    entries = [entry for entry in state.entries if entry.name != name]
    entries.append(RankingEntry(name=name, score=score, timestamp=now))
    updated = state.model_copy(deep=True)
    updated.entries = _ordered(entries, state.max_entries)
    updated.last_update = now
    return accepted(updated)


def remove_entry(
    state: RankingState, name: str, now: datetime, provided_token: Optional[str]
) -> EngineResult[RankingState]:
    if not authorize(provided_token, state.owner_token_hash):
        return rejected(state, ErrorKind.unauthorized, "invalid owner token")
    remaining = [entry for entry in state.entries if entry.name != name]
    if len(remaining) == len(state.entries):
        return rejected(state, ErrorKind.not_found, f"ranking entry not found: {name}")
    updated = state.model_copy(deep=True)
    updated.entries = remaining
    updated.last_update = now
    return accepted(updated)


def clear_ranking(
    state: RankingState, now: datetime, provided_token: Optional[str]
) -> EngineResult[RankingState]:
    if not authorize(provided_token, state.owner_token_hash):
        return rejected(state, ErrorKind.unauthorized, "invalid owner token")
    updated = state.model_copy(deep=True)
    updated.entries = []
    updated.last_update = now
    return accepted(updated)


def configure_ranking(
    state: RankingState,
    provided_token: Optional[str],
    *,
    ceiling: int,
    max_entries: Optional[int] = None,
    owner_only_submit: Optional[bool] = None,
    submit_mode: Optional[SubmitMode] = None,
) -> EngineResult[RankingState]:
    if not authorize(provided_token, state.owner_token_hash):
        return rejected(state, ErrorKind.unauthorized, "invalid owner token")
    if max_entries is not None and max_entries > ceiling:
        return rejected(
            state,
            ErrorKind.capacity_exceeded,
            f"max_entries cannot exceed {ceiling}",
        )
    updated = state.model_copy(deep=True)
    if max_entries is not None:
        updated.max_entries = max_entries
        updated.entries = _ordered(updated.entries, max_entries)
    if owner_only_submit is not None:
        updated.owner_only_submit = owner_only_submit
    if submit_mode is not None:
        updated.submit_mode = submit_mode
        if submit_mode == SubmitMode.best_per_name:
            updated.entries = _best_per_name(updated.entries)
    return accepted(updated)
