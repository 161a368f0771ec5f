from __future__ import annotations

from datetime import datetime

from backend.widgets.models import LikeState, LikeView
from backend.widgets.results import EngineResult, accepted


def new_like(*, widget_id: str, url: str, owner_token_hash: str, now: datetime) -> LikeState:
    return LikeState(
        id=widget_id,
        url=url,
        owner_token_hash=owner_token_hash,
        created_at_utc=now,
    )


def toggle_like(state: LikeState, fingerprint: str, now: datetime) -> EngineResult[LikeState]:
    updated = state.model_copy(deep=True)
    if fingerprint in updated.likers:
        updated.likers.discard(fingerprint)
        return accepted(updated)

    updated.likers.add(fingerprint)
    updated.last_like = now
    if updated.first_like is None:
        updated.first_like = now
    return accepted(updated)


def read_like_state(state: LikeState, fingerprint: str) -> LikeView:
    return LikeView(
        id=state.id,
        url=state.url,
        total=state.total,
        user_liked=fingerprint in state.likers,
        first_like=state.first_like,
        last_like=state.last_like,
    )
