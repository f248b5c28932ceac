"""WebSocket relay: one live feed per connection."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException, WebSocket, WebSocketDisconnect

from app.auth import TelegramAuthError, UserContext, authenticate_credential
from oddsflow.backend import BackendRegistry, FeedBackend
from oddsflow.config import Config
from oddsflow.entities import FeedChange, FeedScope, FeedSpec
from oddsflow.feeds import get_feed
from oddsflow.kvstore import ResilientKV
from oddsflow.live_feed import LiveFeed
from oddsflow.normalizer import INVALID_SCOPE, coerce_scope
from oddsflow.subscriber import BackoffPolicy

logger = logging.getLogger(__name__)

CLOSE_UNAUTHORIZED = 4401
CLOSE_UNKNOWN_FEED = 4404


def change_message(feed_name: str, change: FeedChange) -> Dict[str, Any]:
    """Serialize a store change for the client."""
    return {
        "type": change.kind.value,
        "feed": feed_name,
        "scope": change.scope,
        "rows": [row.to_dict() for row in change.rows],
        "scroll_to_latest": change.scroll_to_latest,
    }


class FeedConnection:
    """Bridges one WebSocket client and its own :class:`LiveFeed`."""

    def __init__(
        self,
        websocket: WebSocket,
        spec: FeedSpec,
        live: LiveFeed,
        kv: ResilientKV,
    ) -> None:
        self.websocket = websocket
        self.spec = spec
        self.live = live
        self.kv = kv
        self._queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None
        self._present_scope: Optional[FeedScope] = None
        self._present = False
        live.add_listener(self._on_change)

    @property
    def delivering(self) -> bool:
        return self._writer is None or not self._writer.done()

    def _on_change(self, change: FeedChange) -> None:
        self.push(change_message(self.spec.name, change))

    def push(self, message: Dict[str, Any]) -> None:
        if self.delivering:
            self._queue.put_nowait(message)

    def start_writer(self) -> None:
        if self._writer is None:
            self._writer = asyncio.ensure_future(self._write_loop())

    async def _write_loop(self) -> None:
        try:
            while True:
                message = await self._queue.get()
                await self.websocket.send_text(json.dumps(message, default=str))
        except Exception as exc:
            logger.warning("⚠️ WebSocket writer for %s stopped: %s", self.spec.name, exc)
            # Nothing can be delivered any more.
            while not self._queue.empty():
                self._queue.get_nowait()

    async def _switch_scope(self, scope: FeedScope) -> None:
        if self._present:
            await self.kv.leave_presence(self.spec.name, self._present_scope)
            self._present = False
        await self.live.open(scope)
        await self.kv.join_presence(self.spec.name, scope)
        self._present_scope = scope
        self._present = True

    async def handle(self, message: Dict[str, Any]) -> None:
        kind = message.get("type")
        if kind == "scope":
            scope = coerce_scope(message.get("scope"))
            if scope is INVALID_SCOPE or (scope is not None and not self.spec.is_scoped):
                self.push({"type": "error", "message": "invalid scope"})
                return
            if self.live.is_open and self.live.scope == scope:
                return
            await self._switch_scope(scope)
        elif kind == "send":
            content = str(message.get("content") or "")
            if not self.spec.writable:
                self.push({"type": "error", "message": "feed is read-only"})
                return
            if not content.strip():
                return
            row = await self.live.send(content)
            if row is None:
                self.push({"type": "send_failed", "content": content})
        elif kind == "like":
            row_id = message.get("id")
            if not row_id:
                self.push({"type": "error", "message": "id required"})
                return
            if not await self.live.like(str(row_id)):
                self.push({"type": "like_failed", "id": row_id})
        else:
            self.push({"type": "error", "message": f"unknown message type: {kind}"})

    async def run(self, scope: FeedScope) -> None:
        self.start_writer()
        try:
            await self._switch_scope(scope)
            while True:
                data = await self.websocket.receive_text()
                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    self.push({"type": "error", "message": "invalid json"})
                    continue
                if not isinstance(message, dict):
                    self.push({"type": "error", "message": "invalid message"})
                    continue
                await self.handle(message)
                await asyncio.sleep(0)
        finally:
            await self.close()

    async def close(self) -> None:
        self.live.remove_listener(self._on_change)
        await self.live.close()
        if self._present:
            await self.kv.leave_presence(self.spec.name, self._present_scope)
            self._present = False
        if self._writer is not None:
            # Flush what is queued before stopping the writer.
            while self.delivering and not self._queue.empty():
                try:
                    await self.websocket.send_text(
                        json.dumps(self._queue.get_nowait(), default=str)
                    )
                except Exception:
                    break
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.debug("Writer for %s stopped: %s", self.spec.name, exc)
            self._writer = None


async def _reject(websocket: WebSocket, message: str, code: int) -> None:
    await websocket.send_text(json.dumps({"type": "error", "message": message}))
    await websocket.close(code=code)


async def websocket_endpoint(websocket: WebSocket, feed: str) -> None:
    """Authenticated relay for ``feed``; scope comes from the query string."""
    await websocket.accept()

    try:
        spec = get_feed(feed)
    except KeyError:
        await _reject(websocket, f"unknown feed: {feed}", CLOSE_UNKNOWN_FEED)
        return

    state = websocket.app.state
    config: Config = state.config
    params = websocket.query_params
    try:
        user: UserContext = authenticate_credential(
            params.get("token") or params.get("initData"), config
        )
    except (TelegramAuthError, HTTPException) as exc:
        logger.warning("⚠️ WebSocket auth failed for %s: %s", feed, exc.detail)
        await _reject(websocket, "unauthorized", CLOSE_UNAUTHORIZED)
        return

    scope = coerce_scope(params.get("scope"))
    if scope is INVALID_SCOPE or (scope is not None and not spec.is_scoped):
        await _reject(websocket, "invalid scope", 1008)
        return

    backends = state.backends or BackendRegistry()
    backend: Optional[FeedBackend] = backends.get(spec.backend)
    live = LiveFeed(
        spec,
        backend,
        sender=user.to_sender(),
        limit=config.FEED_LIMIT or spec.limit,
        policy=BackoffPolicy.from_config(config),
        resync_after=config.RESYNC_AFTER,
    )
    connection = FeedConnection(websocket, spec, live, state.kv)
    logger.info("WebSocket connected: feed=%s scope=%s user=%s", feed, scope, user.id)

    try:
        await connection.run(scope)
    except WebSocketDisconnect:
        logger.info("WebSocket disconnected: feed=%s user=%s", feed, user.id)
    except Exception as e:
        logger.error("WebSocket error on %s: %s", feed, e)
