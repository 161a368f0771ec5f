from __future__ import annotations

from datetime import datetime, timedelta

from backend.widgets.models import BBSSettings
from backend.widgets.ownership import hash_token
from backend.widgets.results import ErrorKind
from backend.widgets.services.bbs import (
    clear_messages,
    delete_message,
    edit_message,
    list_page,
    new_bbs,
    post_message,
    update_settings,
)

START = datetime(2024, 7, 1, 10, 0)
OWNER = "owner-token"


def _board(**settings):
    return new_bbs(
        widget_id="board-33333333",
        url="https://board.example.com/",
        owner_token_hash=hash_token(OWNER),
        now=START,
        settings=BBSSettings(**settings),
    )


def _post(state, body, *, offset=0, edit_token=None, message_id="msg_0"):
    return post_message(
        state,
        author="guest",
        body=body,
        now=START + timedelta(minutes=offset),
        edit_token=edit_token,
        message_id=message_id,
    )


def test_post_appends_and_records_time() -> None:
    result = _post(_board(), "hello", message_id="msg_1")
    assert result.ok
    assert [message.id for message in result.state.messages] == ["msg_1"]
    assert result.state.last_message_at == START


def test_oldest_messages_are_evicted() -> None:
    state = _board(max_messages=2)
    for index in range(3):
        state = _post(state, f"m{index}", offset=index, message_id=f"msg_{index}").state
    assert [message.id for message in state.messages] == ["msg_1", "msg_2"]


def test_owner_only_posting() -> None:
    state = _board(owner_only_posting=True)
    assert _post(state, "hi").error == ErrorKind.unauthorized
    allowed = post_message(
        state,
        message_id="msg_1",
        author="owner",
        body="hi",
        now=START,
        provided_owner_token=OWNER,
    )
    assert allowed.ok


def test_edit_token_shape_is_checked() -> None:
    result = _post(_board(), "hi", edit_token="short")
    assert result.error == ErrorKind.invalid_credential


def test_edit_by_poster_token_or_owner() -> None:
    state = _post(_board(), "hi", edit_token="poster-token", message_id="msg_1").state

    denied = edit_message(state, "msg_1", "changed", "stranger-1", now=START)
    assert denied.error == ErrorKind.unauthorized
    assert denied.state.messages[0].body == "hi"
    assert denied.state.messages[0].updated_at_utc is None

    by_poster = edit_message(state, "msg_1", "poster edit", "poster-token", now=START)
    assert by_poster.state.messages[0].body == "poster edit"
    assert by_poster.state.messages[0].updated_at_utc == START

    by_owner = edit_message(by_poster.state, "msg_1", "owner edit", OWNER, now=START)
    assert by_owner.state.messages[0].body == "owner edit"


def test_message_without_edit_token_is_owner_moderated() -> None:
    state = _post(_board(), "hi", message_id="msg_1").state
    assert delete_message(state, "msg_1", "anything-1").error == ErrorKind.unauthorized
    assert delete_message(state, "msg_1", OWNER).state.messages == []


def test_missing_message_is_not_found_before_auth() -> None:
    state = _post(_board(), "hi", message_id="msg_1").state
    assert edit_message(state, "msg_x", "b", "bad-token-1", now=START).error == ErrorKind.not_found
    assert delete_message(state, "msg_x", "bad-token-1").error == ErrorKind.not_found


def test_list_page_newest_first_and_clamped() -> None:
    state = _board(messages_per_page=2)
    for index in range(5):
        state = _post(state, f"m{index}", offset=index, message_id=f"msg_{index}").state

    first = list_page(state, 1)
    assert [item.id for item in first.messages] == ["msg_4", "msg_3"]
    assert first.page_count == 3
    assert first.has_next and not first.has_prev

    last = list_page(state, 99)
    assert last.page == 3
    assert [item.id for item in last.messages] == ["msg_0"]
    assert not last.has_next


def test_list_page_oldest_first_setting() -> None:
    state = _board(newest_first=False)
    state = _post(state, "a", message_id="msg_a").state
    state = _post(state, "b", offset=1, message_id="msg_b").state
    assert [item.id for item in list_page(state).messages] == ["msg_a", "msg_b"]


def test_empty_board_page() -> None:
    page = list_page(_board(), 5)
    assert page.page == 1
    assert page.page_count == 0
    assert page.messages == []
    assert not page.has_prev and not page.has_next


def test_clear_and_settings_are_owner_only() -> None:
    state = _post(_board(), "hi").state
    assert clear_messages(state, "bad-token-1").error == ErrorKind.unauthorized
    assert clear_messages(state, OWNER).state.messages == []

    too_big = update_settings(state, OWNER, ceiling=100, max_messages=101)
    assert too_big.error == ErrorKind.capacity_exceeded

    updated = update_settings(state, OWNER, ceiling=100, title="Guestbook", newest_first=False)
    assert updated.state.settings.title == "Guestbook"
    assert updated.state.settings.newest_first is False
    assert updated.state.settings.max_messages == 1000
