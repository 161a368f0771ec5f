from __future__ import annotations

import math
from datetime import datetime
from typing import Optional

from backend.widgets.models import (
    BBSMessage,
    BBSMessageItem,
    BBSPage,
    BBSSelectOption,
    BBSSettings,
    BBSState,
)
from backend.widgets.ownership import authorize, hash_token, validate_token_shape
from backend.widgets.results import EngineResult, ErrorKind, accepted, rejected


def new_bbs(
    *,
    widget_id: str,
    url: str,
    owner_token_hash: str,
    now: datetime,
    settings: BBSSettings,
) -> BBSState:
    return BBSState(
        id=widget_id,
        url=url,
        owner_token_hash=owner_token_hash,
        created_at_utc=now,
        settings=settings,
    )


def find_message(state: BBSState, message_id: str) -> Optional[int]:
    for index, message in enumerate(state.messages):
        if message.id == message_id:
            return index
    return None


def can_moderate(state: BBSState, message: BBSMessage, provided_token: Optional[str]) -> bool:
    # the target owner may act on any message
    return authorize(provided_token, message.owner_token_hash) or authorize(
        provided_token, state.owner_token_hash
    )


def post_message(
    state: BBSState,
    *,
    message_id: str,
    author: str,
    body: str,
    now: datetime,
    icon: Optional[str] = None,
    selects: Optional[list[str]] = None,
    edit_token: Optional[str] = None,
    provided_owner_token: Optional[str] = None,
) -> EngineResult[BBSState]:
    if state.settings.owner_only_posting and not authorize(
        provided_owner_token, state.owner_token_hash
    ):
        return rejected(state, ErrorKind.unauthorized, "posting is restricted to the owner")
    if edit_token and not validate_token_shape(edit_token):
        return rejected(
            state, ErrorKind.invalid_credential, "edit token must be 8-16 characters"
        )

    message = BBSMessage(
        id=message_id,
        author=author,
        body=body,
        icon=icon,
        selects=list(selects or []),
        created_at_utc=now,
        owner_token_hash=hash_token(edit_token) if edit_token else None,
    )
    updated = state.model_copy(deep=True)
    updated.messages.append(message)
    overflow = len(updated.messages) - updated.settings.max_messages
    if overflow > 0:
        # oldest messages are evicted first
        updated.messages = updated.messages[overflow:]
    updated.last_message_at = now
    return accepted(updated)


def edit_message(
    state: BBSState,
    message_id: str,
    new_body: str,
    provided_token: Optional[str],
    *,
    now: datetime,
    author: Optional[str] = None,
    icon: Optional[str] = None,
) -> EngineResult[BBSState]:
    index = find_message(state, message_id)
    if index is None:
        return rejected(state, ErrorKind.not_found, f"message not found: {message_id}")
    if not can_moderate(state, state.messages[index], provided_token):
        return rejected(state, ErrorKind.unauthorized, "token does not match message or owner")

    updated = state.model_copy(deep=True)
    message = updated.messages[index]
    message.body = new_body
    if author is not None:
        message.author = author
    if icon is not None:
        message.icon = icon
    message.updated_at_utc = now
    return accepted(updated)


def delete_message(
    state: BBSState, message_id: str, provided_token: Optional[str]
) -> EngineResult[BBSState]:
    index = find_message(state, message_id)
    if index is None:
        return rejected(state, ErrorKind.not_found, f"message not found: {message_id}")
    if not can_moderate(state, state.messages[index], provided_token):
        return rejected(state, ErrorKind.unauthorized, "token does not match message or owner")

    updated = state.model_copy(deep=True)
    del updated.messages[index]
    updated.last_message_at = updated.messages[-1].created_at_utc if updated.messages else None
    return accepted(updated)


def list_page(state: BBSState, page: int = 1, page_size: Optional[int] = None) -> BBSPage:
    size = max(1, page_size or state.settings.messages_per_page)
    total_count = len(state.messages)
    page_count = math.ceil(total_count / size)
    current = min(max(1, page), max(1, page_count))

    ordered = list(reversed(state.messages)) if state.settings.newest_first else state.messages
    start = (current - 1) * size
    window = ordered[start : start + size]
    return BBSPage(
        id=state.id,
        url=state.url,
        title=state.settings.title,
        messages=[
            BBSMessageItem(
                id=message.id,
                author=message.author,
                body=message.body,
                icon=message.icon,
                selects=list(message.selects),
                created_at_utc=message.created_at_utc,
                updated_at_utc=message.updated_at_utc,
            )
            for message in window
        ],
        page=current,
        page_size=size,
        page_count=page_count,
        total_count=total_count,
        has_prev=current > 1,
        has_next=current < page_count,
    )


def clear_messages(state: BBSState, provided_token: Optional[str]) -> EngineResult[BBSState]:
    if not authorize(provided_token, state.owner_token_hash):
        return rejected(state, ErrorKind.unauthorized, "invalid owner token")
    updated = state.model_copy(deep=True)
    updated.messages = []
    updated.last_message_at = None
    return accepted(updated)


def update_settings(
    state: BBSState,
    provided_token: Optional[str],
    *,
    ceiling: int,
    title: Optional[str] = None,
    max_messages: Optional[int] = None,
    messages_per_page: Optional[int] = None,
    icons: Optional[list[str]] = None,
    selects: Optional[list[BBSSelectOption]] = None,
    newest_first: Optional[bool] = None,
    owner_only_posting: Optional[bool] = None,
) -> EngineResult[BBSState]:
    if not authorize(provided_token, state.owner_token_hash):
        return rejected(state, ErrorKind.unauthorized, "invalid owner token")
    if max_messages is not None and max_messages > ceiling:
        return rejected(
            state, ErrorKind.capacity_exceeded, f"max_messages cannot exceed {ceiling}"
        )

    changes = {
        "title": title,
        "max_messages": max_messages,
        "messages_per_page": messages_per_page,
        "icons": icons,
        "selects": selects,
        "newest_first": newest_first,
        "owner_only_posting": owner_only_posting,
    }
    updated = state.model_copy(deep=True)
    updated.settings = updated.settings.model_copy(
        update={key: value for key, value in changes.items() if value is not None}
    )
    overflow = len(updated.messages) - updated.settings.max_messages
    if overflow > 0:
        updated.messages = updated.messages[overflow:]
    return accepted(updated)
