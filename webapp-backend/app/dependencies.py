"""Request-scoped accessors for the shared application state."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import HTTPException, Query, Request

from oddsflow.backend import BackendRegistry, FeedBackend
from oddsflow.config import Config
from oddsflow.entities import FeedScope, FeedSpec
from oddsflow.feeds import get_feed
from oddsflow.kvstore import ResilientKV
from oddsflow.normalizer import INVALID_SCOPE, coerce_scope

log = logging.getLogger("app.dependencies")


def get_config(request: Request) -> Config:
    return request.app.state.config


def get_backends(request: Request) -> BackendRegistry:
    backends = getattr(request.app.state, "backends", None)
    if backends is None:
        log.warning("⚠️ Backends requested before startup finished")
        return BackendRegistry()
    return backends


def get_kv(request: Request) -> ResilientKV:
    return request.app.state.kv


def resolve_feed(feed: str) -> FeedSpec:
    """Path dependency: look up ``feed`` or answer 404."""
    try:
        return get_feed(feed)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown feed: {feed}")


def parse_scope(raw) -> FeedScope:
    """Turn a query or body value into a scope; answers 422 when malformed."""
    value = coerce_scope(raw)
    if value is INVALID_SCOPE:
        raise HTTPException(status_code=422, detail=f"Invalid scope: {raw!r}")
    return value


def scope_query(scope: Optional[str] = Query(default=None)) -> FeedScope:
    return parse_scope(scope)


def feed_limit(config: Config, spec: FeedSpec) -> int:
    return config.FEED_LIMIT or spec.limit


def backend_for(request: Request, spec: FeedSpec) -> Optional[FeedBackend]:
    return get_backends(request).get(spec.backend)
