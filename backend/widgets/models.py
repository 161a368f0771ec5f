from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, computed_field, field_validator

MAX_SCORE = 999_999_999


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class WidgetKind(str, Enum):
    counter = "counter"
    like = "like"
    ranking = "ranking"
    bbs = "bbs"


class CounterPeriod(str, Enum):
    total = "total"
    today = "today"
    yesterday = "yesterday"
    week = "week"
    month = "month"


class SubmitMode(str, Enum):
    append = "append"
    best_per_name = "best_per_name"


# --- persisted state ---


class WidgetState(BaseModel):
    id: str
    url: str
    owner_token_hash: str
    created_at_utc: datetime


class CounterState(WidgetState):
    total: int = Field(default=0, ge=0)
    daily: dict[str, int] = Field(default_factory=dict)
    weekly: dict[str, int] = Field(default_factory=dict)
    monthly: dict[str, int] = Field(default_factory=dict)
    last_visits: dict[str, datetime] = Field(default_factory=dict)
    last_visit_at: Optional[datetime] = None


class LikeState(WidgetState):
    likers: set[str] = Field(default_factory=set)
    first_like: Optional[datetime] = None
    last_like: Optional[datetime] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> int:
        return len(self.likers)


class RankingEntry(BaseModel):
    name: str
    score: int
    timestamp: datetime


class RankingState(WidgetState):
    entries: list[RankingEntry] = Field(default_factory=list)
    max_entries: int = Field(default=100, ge=0)
    owner_only_submit: bool = False
    submit_mode: SubmitMode = SubmitMode.append
    last_update: Optional[datetime] = None


class BBSSelectOption(BaseModel):
    label: str = Field(min_length=1, max_length=50)
    options: list[str] = Field(default_factory=list, max_length=50)


class BBSSettings(BaseModel):
    title: str = "BBS"
    max_messages: int = Field(default=1000, ge=1)
    messages_per_page: int = Field(default=10, ge=1, le=100)
    icons: list[str] = Field(default_factory=list)
    selects: list[BBSSelectOption] = Field(default_factory=list)
    newest_first: bool = True
    owner_only_posting: bool = False


class BBSMessage(BaseModel):
    id: str
    author: str
    body: str
    icon: Optional[str] = None
    selects: list[str] = Field(default_factory=list)
    created_at_utc: datetime
    updated_at_utc: Optional[datetime] = None
    owner_token_hash: Optional[str] = None


class BBSState(WidgetState):
    messages: list[BBSMessage] = Field(default_factory=list)
    settings: BBSSettings = Field(default_factory=BBSSettings)
    last_message_at: Optional[datetime] = None


# --- projections ---


class CounterCounts(BaseModel):
    id: str
    url: str
    total: int
    today: int
    yesterday: int
    week: int
    month: int
    daily: dict[str, int]
    weekly: dict[str, int]
    monthly: dict[str, int]
    last_visit_at: Optional[datetime]


class LikeView(BaseModel):
    id: str
    url: str
    total: int
    user_liked: bool
    first_like: Optional[datetime]
    last_like: Optional[datetime]


class RankedEntry(RankingEntry):
    rank: int


class RankingView(BaseModel):
    id: str
    url: str
    entries: list[RankedEntry]
    total_entries: int
    max_entries: int
    submit_mode: SubmitMode
    last_update: Optional[datetime]


class BBSMessageItem(BaseModel):
    id: str
    author: str
    body: str
    icon: Optional[str]
    selects: list[str]
    created_at_utc: datetime
    updated_at_utc: Optional[datetime]


class BBSPage(BaseModel):
    id: str
    url: str
    title: str
    messages: list[BBSMessageItem]
    page: int
    page_size: int
    page_count: int
    total_count: int
    has_prev: bool
    has_next: bool


# --- requests / responses ---


class OwnerRequest(BaseModel):
    url: str = Field(min_length=1, max_length=2048)
    token: str = Field(min_length=1, max_length=128)

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        value = value.strip()
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.hostname:
            raise ValueError("url must be an absolute http(s) URL")
        return value


class WidgetCreateRequest(OwnerRequest):
    pass


class RankingCreateRequest(WidgetCreateRequest):
    max_entries: Optional[int] = Field(default=None, ge=0)
    owner_only_submit: bool = False
    submit_mode: SubmitMode = SubmitMode.append


class BBSCreateRequest(WidgetCreateRequest):
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    max_messages: Optional[int] = Field(default=None, ge=1)
    messages_per_page: Optional[int] = Field(default=None, ge=1, le=100)
    icons: list[str] = Field(default_factory=list, max_length=20)
    selects: list[BBSSelectOption] = Field(default_factory=list, max_length=3)
    newest_first: bool = True
    owner_only_posting: bool = False


class WidgetCreateResponse(BaseModel):
    id: str
    url: str
    created: bool


class WidgetDeleteResponse(BaseModel):
    id: str
    deleted: bool


class CounterSetRequest(OwnerRequest):
    total: int = Field(ge=0, le=MAX_SCORE)


class ScoreSubmitRequest(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    score: int = Field(ge=0, le=MAX_SCORE)
    token: Optional[str] = Field(default=None, max_length=128)


class ScoreUpdateRequest(OwnerRequest):
    name: str = Field(min_length=1, max_length=50)
    score: int = Field(ge=0, le=MAX_SCORE)


class ScoreRemoveRequest(OwnerRequest):
    name: str = Field(min_length=1, max_length=50)


class RankingSettingsRequest(OwnerRequest):
    max_entries: Optional[int] = Field(default=None, ge=0)
    owner_only_submit: Optional[bool] = None
    submit_mode: Optional[SubmitMode] = None


class MessagePostRequest(BaseModel):
    author: str = Field(min_length=1, max_length=50)
    body: str = Field(min_length=1, max_length=1000)
    icon: Optional[str] = Field(default=None, max_length=50)
    selects: list[str] = Field(default_factory=list, max_length=3)
    edit_token: Optional[str] = Field(default=None, max_length=128)
    token: Optional[str] = Field(default=None, max_length=128)

    @field_validator("author", mode="before")
    @classmethod
    def strip_author(cls, value):
        return value.strip() if isinstance(value, str) else value


class MessagePostResponse(BaseModel):
    message_id: str
    page: BBSPage


class MessageEditRequest(BaseModel):
    message_id: str = Field(min_length=1, max_length=120)
    body: str = Field(min_length=1, max_length=1000)
    token: str = Field(min_length=1, max_length=128)
    author: Optional[str] = Field(default=None, min_length=1, max_length=50)
    icon: Optional[str] = Field(default=None, max_length=50)

    @field_validator("author", mode="before")
    @classmethod
    def strip_author(cls, value):
        return value.strip() if isinstance(value, str) else value


class MessageDeleteRequest(BaseModel):
    message_id: str = Field(min_length=1, max_length=120)
    token: str = Field(min_length=1, max_length=128)


class BBSSettingsRequest(OwnerRequest):
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    max_messages: Optional[int] = Field(default=None, ge=1)
    messages_per_page: Optional[int] = Field(default=None, ge=1, le=100)
    icons: Optional[list[str]] = Field(default=None, max_length=20)
    selects: Optional[list[BBSSelectOption]] = Field(default=None, max_length=3)
    newest_first: Optional[bool] = None
    owner_only_posting: Optional[bool] = None


class CounterValueResponse(BaseModel):
    id: str
    period: CounterPeriod
    value: int
