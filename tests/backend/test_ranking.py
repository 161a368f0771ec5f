from __future__ import annotations

from datetime import datetime, timedelta

from backend.widgets.models import SubmitMode
from backend.widgets.ownership import hash_token
from backend.widgets.results import ErrorKind
from backend.widgets.services.ranking import (
    clear_ranking,
    configure_ranking,
    new_ranking,
    ranking_view,
    read_top,
    remove_entry,
    submit_score,
    update_score,
)

START = datetime(2024, 6, 1, 18, 0)
OWNER = "owner-token"


def _ranking(
    max_entries: int = 3,
    owner_only_submit: bool = False,
    submit_mode: SubmitMode = SubmitMode.append,
):
    return new_ranking(
        widget_id="game-22222222",
        url="https://game.example.com/",
        owner_token_hash=hash_token(OWNER),
        now=START,
        max_entries=max_entries,
        owner_only_submit=owner_only_submit,
        submit_mode=submit_mode,
    )


def _submit_all(state, scores):
    for offset, (name, score) in enumerate(scores):
        state = submit_score(state, name, score, START + timedelta(seconds=offset)).state
    return state


def _pairs(state):
    return [(entry.name, entry.score) for entry in state.entries]


def test_top_n_keeps_highest_scores() -> None:
    state = _submit_all(_ranking(), [("A", 10), ("B", 20), ("C", 15), ("D", 25)])
    assert _pairs(state) == [("D", 25), ("B", 20), ("C", 15)]


def test_ties_keep_earlier_submission_first() -> None:
    state = _submit_all(_ranking(), [("late", 10), ("later", 10)])
    assert [entry.name for entry in state.entries] == ["late", "later"]


def test_score_below_cut_is_noop() -> None:
    state = _submit_all(_ranking(), [("A", 30), ("B", 20), ("C", 10)])
    result = submit_score(state, "E", 5, START + timedelta(minutes=5))
    assert result.ok
    assert not result.changed
    assert _pairs(result.state) == [("A", 30), ("B", 20), ("C", 10)]


def test_append_mode_keeps_duplicate_names() -> None:
    state = _submit_all(_ranking(max_entries=5), [("A", 10), ("A", 12)])
    assert _pairs(state) == [("A", 12), ("A", 10)]


def test_best_per_name_replaces_only_on_improvement() -> None:
    state = _ranking(max_entries=5, submit_mode=SubmitMode.best_per_name)
    state = submit_score(state, "A", 10, START).state
    worse = submit_score(state, "A", 8, START)
    assert not worse.changed
    better = submit_score(state, "A", 15, START)
    assert better.changed
    assert _pairs(better.state) == [("A", 15)]


def test_zero_capacity_accepts_nothing() -> None:
    result = submit_score(_ranking(max_entries=0), "A", 100, START)
    assert result.ok and not result.changed
    assert result.state.entries == []


def test_owner_only_submit_requires_token() -> None:
    state = _ranking(owner_only_submit=True)
    denied = submit_score(state, "A", 1, START)
    assert denied.error == ErrorKind.unauthorized
    allowed = submit_score(state, "A", 1, START, provided_token=OWNER)
    assert allowed.ok and len(allowed.state.entries) == 1


def test_read_top_assigns_ranks() -> None:
    state = _submit_all(_ranking(), [("A", 10), ("B", 20)])
    ranked = read_top(state)
    assert [(entry.rank, entry.name) for entry in ranked] == [(1, "B"), (2, "A")]
    assert len(read_top(state, 1)) == 1
    view = ranking_view(state, 1)
    assert view.total_entries == 2
    assert view.max_entries == 3


def test_update_and_remove_need_owner() -> None:
    state = _submit_all(_ranking(), [("A", 10), ("B", 20)])
    assert update_score(state, "A", 99, START, "bad-token-1").error == ErrorKind.unauthorized

    updated = update_score(state, "A", 99, START, OWNER).state
    assert _pairs(updated)[0] == ("A", 99)

    missing = remove_entry(updated, "Z", START, OWNER)
    assert missing.error == ErrorKind.not_found

    removed = remove_entry(updated, "A", START, OWNER).state
    assert _pairs(removed) == [("B", 20)]


def test_clear_ranking() -> None:
    state = _submit_all(_ranking(), [("A", 10)])
    assert clear_ranking(state, START, "nope-nope").error == ErrorKind.unauthorized
    assert clear_ranking(state, START, OWNER).state.entries == []


def test_configure_shrinks_and_respects_ceiling() -> None:
    state = _submit_all(_ranking(), [("A", 10), ("B", 20), ("C", 30)])
    too_big = configure_ranking(state, OWNER, ceiling=50, max_entries=51)
    assert too_big.error == ErrorKind.capacity_exceeded

    shrunk = configure_ranking(state, OWNER, ceiling=50, max_entries=2, owner_only_submit=True)
    assert shrunk.ok
    assert _pairs(shrunk.state) == [("C", 30), ("B", 20)]
    assert shrunk.state.owner_only_submit


def test_tie_at_cut_keeps_earlier_entry() -> None:
    state = _submit_all(_ranking(max_entries=2), [("A", 10), ("B", 5)])
    result = submit_score(state, "C", 5, START + timedelta(minutes=1))
    assert result.ok
    assert not result.changed
    assert _pairs(result.state) == [("A", 10), ("B", 5)]


def test_switching_to_best_per_name_collapses_duplicates() -> None:
    state = _submit_all(_ranking(max_entries=5), [("A", 10), ("B", 7), ("A", 50)])
    assert len(state.entries) == 3

    switched = configure_ranking(
        state, OWNER, ceiling=50, submit_mode=SubmitMode.best_per_name
    ).state
    assert switched.submit_mode == SubmitMode.best_per_name
    assert _pairs(switched) == [("A", 50), ("B", 7)]
    assert ranking_view(switched).submit_mode == SubmitMode.best_per_name


def test_submit_mode_change_requires_owner() -> None:
    result = configure_ranking(
        _ranking(), "visitor-token", ceiling=50, submit_mode=SubmitMode.best_per_name
    )
    assert result.error == ErrorKind.unauthorized
    assert result.state.submit_mode == SubmitMode.append
