from __future__ import annotations

from datetime import timedelta
from typing import Callable, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from backend.widgets.auth import OperatorContext, require_operator
from backend.widgets.models import (
    BBSCreateRequest,
    BBSPage,
    BBSSettings,
    BBSSettingsRequest,
    BBSState,
    CounterCounts,
    CounterPeriod,
    CounterSetRequest,
    CounterState,
    CounterValueResponse,
    LikeState,
    LikeView,
    MessageDeleteRequest,
    MessageEditRequest,
    MessagePostRequest,
    MessagePostResponse,
    OwnerRequest,
    RankingCreateRequest,
    RankingSettingsRequest,
    RankingState,
    RankingView,
    ScoreRemoveRequest,
    ScoreSubmitRequest,
    ScoreUpdateRequest,
    WidgetCreateRequest,
    WidgetCreateResponse,
    WidgetDeleteResponse,
    WidgetKind,
    WidgetState,
    utc_now,
)
from backend.widgets.observability import MetricsRegistry, configure_logging, observe_request
from backend.widgets.ownership import public_id
from backend.widgets.persistence import SqlStateBackend
from backend.widgets.results import EngineResult, ErrorKind, WidgetOperationError
from backend.widgets.services import bbs, counter, like, ranking
from backend.widgets.services.fingerprint import client_origin, fingerprint
from backend.widgets.settings import Settings, load_settings
from backend.widgets.store import (
    InMemoryStateBackend,
    StoreConflictError,
    StoreNotFoundError,
    WidgetStore,
    new_id,
)

ERROR_STATUS = {
    ErrorKind.invalid_credential: status.HTTP_400_BAD_REQUEST,
    ErrorKind.unauthorized: status.HTTP_403_FORBIDDEN,
    ErrorKind.not_found: status.HTTP_404_NOT_FOUND,
    ErrorKind.conflict: status.HTTP_409_CONFLICT,
    ErrorKind.capacity_exceeded: 422,
}


def create_app() -> FastAPI:
    app = FastAPI(title="Widget State API", version="0.1.0")
    configure_logging()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    settings = load_settings()
    backend = (
        SqlStateBackend(settings.database_url)
        if settings.persistence_enabled
        else InMemoryStateBackend()
    )
    app.state.settings = settings
    app.state.metrics = MetricsRegistry()
    app.state.store = WidgetStore(
        backend,
        max_retries=settings.store_max_retries,
        metrics=app.state.metrics,
    )

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        return await observe_request(request, call_next, metrics=app.state.metrics)

    app.include_router(build_router())
    return app


def get_store(request: Request) -> WidgetStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_metrics(request: Request) -> MetricsRegistry:
    return request.app.state.metrics


def visitor_fingerprint(request: Request) -> str:
    settings = get_settings(request)
    origin = client_origin(request.headers, request.client.host if request.client else None)
    return fingerprint(
        origin,
        request.headers.get("user-agent", ""),
        salt=settings.fingerprint_salt,
    )


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, WidgetOperationError):
        return HTTPException(status_code=ERROR_STATUS[exc.kind], detail=exc.detail)
    if isinstance(exc, StoreNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


def run_operation(
    request: Request,
    kind: WidgetKind,
    widget_id: str,
    operation_name: str,
    operation: Callable[[WidgetState], EngineResult],
) -> EngineResult:
    metrics = get_metrics(request)
    try:
        result = get_store(request).transact(kind, widget_id, operation)
    except WidgetOperationError as exc:
        metrics.record_operation(widget=kind.value, operation=operation_name, outcome=exc.kind.value)
        raise _http_error(exc) from exc
    except StoreNotFoundError as exc:
        metrics.record_operation(
            widget=kind.value, operation=operation_name, outcome=ErrorKind.not_found.value
        )
        raise _http_error(exc) from exc
    except StoreConflictError as exc:
        metrics.record_operation(
            widget=kind.value, operation=operation_name, outcome=ErrorKind.conflict.value
        )
        raise _http_error(exc) from exc
    metrics.record_operation(
        widget=kind.value,
        operation=operation_name,
        outcome="applied" if result.changed else "noop",
    )
    return result


def load_state(request: Request, kind: WidgetKind, widget_id: str) -> WidgetState:
    try:
        return get_store(request).load(kind, widget_id)
    except StoreNotFoundError as exc:
        raise _http_error(exc) from exc


def create_widget(
    request: Request,
    kind: WidgetKind,
    payload: WidgetCreateRequest,
    build: Callable[..., WidgetState],
) -> WidgetCreateResponse:
    try:
        state, created = get_store(request).create(kind, payload.url, payload.token, build)
    except (WidgetOperationError, StoreConflictError) as exc:
        raise _http_error(exc) from exc
    get_metrics(request).record_operation(
        widget=kind.value, operation="create", outcome="applied" if created else "noop"
    )
    return WidgetCreateResponse(id=state.id, url=state.url, created=created)


def build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @router.get("/health/ready")
    def readiness(request: Request) -> dict[str, str]:
        if not get_store(request).backend.ping():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="database unavailable",
            )
        return {"status": "ready"}

    @router.get("/metrics", response_class=PlainTextResponse)
    def metrics(request: Request) -> Response:
        registry = get_metrics(request)
        return PlainTextResponse(registry.to_prometheus())

    # --- widget lifecycle ---

    @router.post("/counter/create", response_model=WidgetCreateResponse)
    def create_counter(payload: WidgetCreateRequest, request: Request) -> WidgetCreateResponse:
        def build(widget_id, url, digest, now) -> CounterState:
            return counter.new_counter(
                widget_id=widget_id, url=url, owner_token_hash=digest, now=now
            )

        return create_widget(request, WidgetKind.counter, payload, build)

    @router.post("/like/create", response_model=WidgetCreateResponse)
    def create_like(payload: WidgetCreateRequest, request: Request) -> WidgetCreateResponse:
        def build(widget_id, url, digest, now) -> LikeState:
            return like.new_like(widget_id=widget_id, url=url, owner_token_hash=digest, now=now)

        return create_widget(request, WidgetKind.like, payload, build)

    @router.post("/ranking/create", response_model=WidgetCreateResponse)
    def create_ranking(payload: RankingCreateRequest, request: Request) -> WidgetCreateResponse:
        settings = get_settings(request)
        max_entries = (
            settings.ranking_default_max_entries
            if payload.max_entries is None
            else payload.max_entries
        )
        if max_entries > settings.ranking_max_entries_ceiling:
            raise HTTPException(
                status_code=ERROR_STATUS[ErrorKind.capacity_exceeded],
                detail=f"max_entries cannot exceed {settings.ranking_max_entries_ceiling}",
            )

        def build(widget_id, url, digest, now) -> RankingState:
            return ranking.new_ranking(
                widget_id=widget_id,
                url=url,
                owner_token_hash=digest,
                now=now,
                max_entries=max_entries,
                owner_only_submit=payload.owner_only_submit,
                submit_mode=payload.submit_mode,
            )

        return create_widget(request, WidgetKind.ranking, payload, build)

    @router.post("/bbs/create", response_model=WidgetCreateResponse)
    def create_bbs(payload: BBSCreateRequest, request: Request) -> WidgetCreateResponse:
        settings = get_settings(request)
        max_messages = payload.max_messages or settings.bbs_default_max_messages
        if max_messages > settings.bbs_max_messages_ceiling:
            raise HTTPException(
                status_code=ERROR_STATUS[ErrorKind.capacity_exceeded],
                detail=f"max_messages cannot exceed {settings.bbs_max_messages_ceiling}",
            )
        board_settings = BBSSettings(
            title=payload.title or "BBS",
            max_messages=max_messages,
            messages_per_page=payload.messages_per_page or settings.bbs_default_page_size,
            icons=payload.icons,
            selects=payload.selects,
            newest_first=payload.newest_first,
            owner_only_posting=payload.owner_only_posting,
        )

        def build(widget_id, url, digest, now) -> BBSState:
            return bbs.new_bbs(
                widget_id=widget_id,
                url=url,
                owner_token_hash=digest,
                now=now,
                settings=board_settings,
            )

        return create_widget(request, WidgetKind.bbs, payload, build)

    @router.post("/{widget}/delete", response_model=WidgetDeleteResponse)
    def delete_widget(
        widget: WidgetKind, payload: OwnerRequest, request: Request
    ) -> WidgetDeleteResponse:
        try:
            widget_id = get_store(request).delete(widget, payload.url, payload.token)
        except (WidgetOperationError, StoreNotFoundError, StoreConflictError) as exc:
            raise _http_error(exc) from exc
        get_metrics(request).record_operation(
            widget=widget.value, operation="delete", outcome="applied"
        )
        return WidgetDeleteResponse(id=widget_id, deleted=True)

    @router.post(
        "/admin/widgets/{widget}/{widget_id}/purge",
        response_model=WidgetDeleteResponse,
    )
    def purge_widget(
        widget: WidgetKind,
        widget_id: str,
        request: Request,
        _: OperatorContext = Depends(require_operator),
    ) -> WidgetDeleteResponse:
        if not get_store(request).purge(widget, widget_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"{widget.value} not found: {widget_id}",
            )
        return WidgetDeleteResponse(id=widget_id, deleted=True)

    # --- counter ---

    @router.post("/counter/set", response_model=CounterCounts)
    def set_counter_total(payload: CounterSetRequest, request: Request) -> CounterCounts:
        result = run_operation(
            request,
            WidgetKind.counter,
            public_id(payload.url),
            "set_total",
            lambda state: counter.set_total(state, payload.token, payload.total),
        )
        return counter.read_counts(result.state, utc_now())

    @router.post("/counter/{widget_id}/visit", response_model=CounterCounts)
    def record_counter_visit(widget_id: str, request: Request) -> CounterCounts:
        settings = get_settings(request)
        visitor = visitor_fingerprint(request)
        now = utc_now()
        result = run_operation(
            request,
            WidgetKind.counter,
            widget_id,
            "visit",
            lambda state: counter.record_visit(
                state,
                visitor,
                now,
                window=timedelta(hours=settings.dedup_window_hours),
                retention_days=settings.counter_retention_days,
            ),
        )
        return counter.read_counts(result.state, now)

    @router.get("/counter/{widget_id}", response_model=CounterCounts)
    def read_counter(widget_id: str, request: Request) -> CounterCounts:
        state = load_state(request, WidgetKind.counter, widget_id)
        return counter.read_counts(state, utc_now())

    @router.get("/counter/{widget_id}/value", response_model=CounterValueResponse)
    def read_counter_value(
        widget_id: str,
        request: Request,
        period: CounterPeriod = CounterPeriod.total,
    ) -> CounterValueResponse:
        state = load_state(request, WidgetKind.counter, widget_id)
        counts = counter.read_counts(state, utc_now())
        return CounterValueResponse(
            id=widget_id, period=period, value=counter.counter_value(counts, period)
        )

    # --- like ---

    @router.post("/like/{widget_id}/toggle", response_model=LikeView)
    def toggle_like(widget_id: str, request: Request) -> LikeView:
        visitor = visitor_fingerprint(request)
        now = utc_now()
        result = run_operation(
            request,
            WidgetKind.like,
            widget_id,
            "toggle",
            lambda state: like.toggle_like(state, visitor, now),
        )
        return like.read_like_state(result.state, visitor)

    @router.get("/like/{widget_id}", response_model=LikeView)
    def read_like(widget_id: str, request: Request) -> LikeView:
        state = load_state(request, WidgetKind.like, widget_id)
        return like.read_like_state(state, visitor_fingerprint(request))

    # --- ranking ---

    @router.post("/ranking/update", response_model=RankingView)
    def update_ranking_score(payload: ScoreUpdateRequest, request: Request) -> RankingView:
        now = utc_now()
        result = run_operation(
            request,
            WidgetKind.ranking,
            public_id(payload.url),
            "update",
            lambda state: ranking.update_score(
                state, payload.name.strip(), payload.score, now, payload.token
            ),
        )
        return ranking.ranking_view(result.state)

    @router.post("/ranking/remove", response_model=RankingView)
    def remove_ranking_entry(payload: ScoreRemoveRequest, request: Request) -> RankingView:
        now = utc_now()
        result = run_operation(
            request,
            WidgetKind.ranking,
            public_id(payload.url),
            "remove",
            lambda state: ranking.remove_entry(state, payload.name.strip(), now, payload.token),
        )
        return ranking.ranking_view(result.state)

    @router.post("/ranking/clear", response_model=RankingView)
    def clear_ranking(payload: OwnerRequest, request: Request) -> RankingView:
        now = utc_now()
        result = run_operation(
            request,
            WidgetKind.ranking,
            public_id(payload.url),
            "clear",
            lambda state: ranking.clear_ranking(state, now, payload.token),
        )
        return ranking.ranking_view(result.state)

    @router.post("/ranking/settings", response_model=RankingView)
    def configure_ranking(payload: RankingSettingsRequest, request: Request) -> RankingView:
        ceiling = get_settings(request).ranking_max_entries_ceiling
        result = run_operation(
            request,
            WidgetKind.ranking,
            public_id(payload.url),
            "settings",
            lambda state: ranking.configure_ranking(
                state,
                payload.token,
                ceiling=ceiling,
                max_entries=payload.max_entries,
                owner_only_submit=payload.owner_only_submit,
                submit_mode=payload.submit_mode,
            ),
        )
        return ranking.ranking_view(result.state)

    @router.post("/ranking/{widget_id}/submit", response_model=RankingView)
    def submit_ranking_score(
        widget_id: str, payload: ScoreSubmitRequest, request: Request
    ) -> RankingView:
        now = utc_now()
        result = run_operation(
            request,
            WidgetKind.ranking,
            widget_id,
            "submit",
            lambda state: ranking.submit_score(
                state,
                payload.name.strip(),
                payload.score,
                now,
                provided_token=payload.token,
            ),
        )
        return ranking.ranking_view(result.state)

    @router.get("/ranking/{widget_id}", response_model=RankingView)
    def read_ranking(
        widget_id: str, request: Request, limit: Optional[int] = None
    ) -> RankingView:
        state = load_state(request, WidgetKind.ranking, widget_id)
        return ranking.ranking_view(state, limit)

    # --- bbs ---

    @router.post("/bbs/clear", response_model=BBSPage)
    def clear_bbs(payload: OwnerRequest, request: Request) -> BBSPage:
        result = run_operation(
            request,
            WidgetKind.bbs,
            public_id(payload.url),
            "clear",
            lambda state: bbs.clear_messages(state, payload.token),
        )
        return bbs.list_page(result.state)

    @router.post("/bbs/settings", response_model=BBSPage)
    def configure_bbs(payload: BBSSettingsRequest, request: Request) -> BBSPage:
        ceiling = get_settings(request).bbs_max_messages_ceiling
        result = run_operation(
            request,
            WidgetKind.bbs,
            public_id(payload.url),
            "settings",
            lambda state: bbs.update_settings(
                state,
                payload.token,
                ceiling=ceiling,
                title=payload.title,
                max_messages=payload.max_messages,
                messages_per_page=payload.messages_per_page,
                icons=payload.icons,
                selects=payload.selects,
                newest_first=payload.newest_first,
                owner_only_posting=payload.owner_only_posting,
            ),
        )
        return bbs.list_page(result.state)

    @router.post("/bbs/{widget_id}/post", response_model=MessagePostResponse)
    def post_bbs_message(
        widget_id: str, payload: MessagePostRequest, request: Request
    ) -> MessagePostResponse:
        # fixed up front so every retry writes the same message
        message_id = new_id("msg")
        now = utc_now()
        result = run_operation(
            request,
            WidgetKind.bbs,
            widget_id,
            "post",
            lambda state: bbs.post_message(
                state,
                author=payload.author,
                body=payload.body,
                now=now,
                icon=payload.icon,
                selects=payload.selects,
                edit_token=payload.edit_token,
                provided_owner_token=payload.token,
                message_id=message_id,
            ),
        )
        return MessagePostResponse(message_id=message_id, page=bbs.list_page(result.state))

    @router.post("/bbs/{widget_id}/edit", response_model=BBSPage)
    def edit_bbs_message(
        widget_id: str, payload: MessageEditRequest, request: Request
    ) -> BBSPage:
        now = utc_now()
        result = run_operation(
            request,
            WidgetKind.bbs,
            widget_id,
            "edit",
            lambda state: bbs.edit_message(
                state,
                payload.message_id,
                payload.body,
                payload.token,
                now=now,
                author=payload.author,
                icon=payload.icon,
            ),
        )
        return bbs.list_page(result.state)

    @router.post("/bbs/{widget_id}/delete", response_model=BBSPage)
    def delete_bbs_message(
        widget_id: str, payload: MessageDeleteRequest, request: Request
    ) -> BBSPage:
        result = run_operation(
            request,
            WidgetKind.bbs,
            widget_id,
            "delete_message",
            lambda state: bbs.delete_message(state, payload.message_id, payload.token),
        )
        return bbs.list_page(result.state)

    @router.get("/bbs/{widget_id}", response_model=BBSPage)
    def read_bbs(
        widget_id: str,
        request: Request,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> BBSPage:
        state = load_state(request, WidgetKind.bbs, widget_id)
        if page_size is not None:
            page_size = max(1, min(100, page_size))
        return bbs.list_page(state, page, page_size)

    return router


app = create_app()
