import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request

from app.auth import UserContext, require_telegram_user
from app.dependencies import (
    backend_for,
    feed_limit,
    get_backends,
    get_config,
    get_kv,
    parse_scope,
    resolve_feed,
    scope_query,
)
from app.models import (
    FeedInfo,
    FeedRowModel,
    FeedRowsResponse,
    OnlineCountResponse,
    SendRowRequest,
)
from oddsflow.backend import BackendError
from oddsflow.bulk_loader import BulkLoader
from oddsflow.dispatcher import Dispatcher
from oddsflow.entities import CancelToken, FeedScope, FeedSpec
from oddsflow.feeds import FEEDS
from oddsflow.kvstore import online_count

log = logging.getLogger("app.routes.feeds")

router = APIRouter(tags=["feeds"])


def _check_scope(spec: FeedSpec, scope: FeedScope) -> None:
    if scope is not None and not spec.is_scoped:
        raise HTTPException(status_code=422, detail=f"Feed {spec.name} is not scoped")


@router.get("/feeds", response_model=List[FeedInfo])
async def list_feeds(request: Request):
    """Describe every feed and whether its backend is configured."""
    config = get_config(request)
    backends = get_backends(request)
    return [
        FeedInfo.from_spec(
            spec,
            available=spec.backend in backends,
            limit=feed_limit(config, spec),
        )
        for _, spec in sorted(FEEDS.items())
    ]


@router.get("/feeds/{feed}/rows", response_model=FeedRowsResponse)
async def get_rows(
    request: Request,
    spec: FeedSpec = Depends(resolve_feed),
    scope: FeedScope = Depends(scope_query),
):
    """Most recent rows of one scope, oldest first."""
    _check_scope(spec, scope)
    loader = BulkLoader(
        spec,
        backend_for(request, spec),
        limit=feed_limit(get_config(request), spec),
    )
    rows = await loader.load(scope, CancelToken(scope)) or []
    return FeedRowsResponse(
        feed=spec.name,
        scope=scope,
        rows=[FeedRowModel.from_row(row) for row in rows],
    )


@router.post("/feeds/{feed}/rows", response_model=FeedRowModel, status_code=201)
async def send_row(
    body: SendRowRequest,
    request: Request,
    spec: FeedSpec = Depends(resolve_feed),
    user: UserContext = Depends(require_telegram_user),
):
    """Insert one row as the authenticated user."""
    if not spec.writable:
        raise HTTPException(status_code=405, detail=f"Feed {spec.name} is read-only")
    scope = parse_scope(body.scope)
    _check_scope(spec, scope)
    content = body.content.strip()
    if not content:
        raise HTTPException(status_code=422, detail="Content must not be empty")

    backend = backend_for(request, spec)
    if backend is None:
        raise HTTPException(status_code=503, detail=f"Backend {spec.backend} is not configured")

    dispatcher = Dispatcher(spec, backend, user.to_sender())
    try:
        row = await dispatcher.submit(content, scope)
    except BackendError as exc:
        log.error("❌ Send to %s failed: %s", spec.name, exc)
        raise HTTPException(status_code=502, detail="Backend rejected the row")
    if row is None:
        log.warning("⚠️ Backend returned an unusable row for %s", spec.name)
        raise HTTPException(status_code=502, detail="Backend returned an invalid row")
    return FeedRowModel.from_row(row)


@router.get("/feeds/{feed}/online", response_model=OnlineCountResponse)
async def get_online(
    request: Request,
    spec: FeedSpec = Depends(resolve_feed),
    scope: FeedScope = Depends(scope_query),
):
    """Viewers of a scope plus the configured simulated offset."""
    _check_scope(spec, scope)
    count = await online_count(
        get_kv(request),
        get_backends(request).get("main"),
        spec.name,
        scope,
    )
    return OnlineCountResponse(feed=spec.name, scope=scope, online=count)
