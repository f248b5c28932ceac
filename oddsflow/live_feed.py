#!/usr/bin/env python3
"""One live feed: bulk load, realtime merge and outbound writes for a scope.

A :class:`LiveFeed` is owned by exactly one mounted surface. Changing the
scope discards the store and rebuilds it; async work started for an older
scope is fenced off by its :class:`CancelToken`.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Optional

from oddsflow.backend import FeedBackend
from oddsflow.bulk_loader import BulkLoader
from oddsflow.dispatcher import Dispatcher
from oddsflow.entities import (
    EVENT_UPDATE,
    CancelToken,
    Composer,
    FeedRow,
    FeedScope,
    FeedSpec,
    Sender,
)
from oddsflow.feed_store import FeedStore, Listener
from oddsflow.log_utils import LoggerHelper
from oddsflow.normalizer import Normalizer
from oddsflow.subscriber import BackoffPolicy, ChangeSubscriber, SubscriptionState

logger = logging.getLogger(__name__)
log_helper = LoggerHelper.for_logger(logger)

_ANONYMOUS = Sender(id=None, name="Unknown")


class LiveFeed:
    """Parametrized feed replacing the per-screen chat and signal copies."""

    def __init__(
        self,
        spec: FeedSpec,
        backend: Optional[FeedBackend],
        *,
        sender: Optional[Sender] = None,
        limit: Optional[int] = None,
        policy: Optional[BackoffPolicy] = None,
        resync_after: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._spec = spec
        self._backend = backend
        self._normalizer = Normalizer(spec)
        self._loader = BulkLoader(spec, backend, normalizer=self._normalizer, limit=limit)
        self._dispatcher = Dispatcher(
            spec, backend, sender or _ANONYMOUS, normalizer=self._normalizer
        )
        self._policy = policy or BackoffPolicy()
        self._resync_after = resync_after
        self._clock = clock
        self._sleep = sleep
        self._rng = rng

        self._listeners: list = []
        self._store: Optional[FeedStore] = None
        self._token: Optional[CancelToken] = None
        self._subscriber: Optional[ChangeSubscriber] = None
        self._lock = asyncio.Lock()
        self.composer = Composer()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def spec(self) -> FeedSpec:
        return self._spec

    @property
    def store(self) -> Optional[FeedStore]:
        return self._store

    @property
    def scope(self) -> FeedScope:
        return self._store.scope if self._store is not None else None

    @property
    def is_open(self) -> bool:
        return self._store is not None

    @property
    def subscription_state(self) -> SubscriptionState:
        if self._subscriber is None:
            return SubscriptionState.DISCONNECTED
        return self._subscriber.state

    def add_listener(self, listener: Listener) -> None:
        """Register ``listener`` on the current and every future store."""

        self._listeners.append(listener)
        if self._store is not None:
            self._store.add_listener(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
        if self._store is not None:
            self._store.remove_listener(listener)

    # ------------------------------------------------------------------
    # Scope lifecycle
    # ------------------------------------------------------------------

    async def open(self, scope: FeedScope) -> FeedStore:
        """Activate ``scope``: load history, then attach the subscriber."""

        # Fence off a load still in flight for the previous scope.
        if self._token is not None:
            self._token.cancel()

        async with self._lock:
            await self._teardown()

            token = CancelToken(scope)
            store = FeedStore(scope)
            for listener in self._listeners:
                store.add_listener(listener)
            self._token = token
            self._store = store
            self.composer = Composer()

            rows = await self._loader.load(scope, token)
            if rows is None or token.cancelled:
                return store
            store.replace_all(rows)

            if self._backend is not None:
                self._subscriber = ChangeSubscriber(
                    self._spec,
                    self._backend,
                    scope,
                    self._make_row_handler(store, token),
                    token=token,
                    normalizer=self._normalizer,
                    on_resync=self.resync,
                    policy=self._policy,
                    resync_after=self._resync_after,
                    clock=self._clock,
                    sleep=self._sleep,
                    rng=self._rng,
                )
                await self._subscriber.start()

            log_helper.info(
                "FeedOpen",
                feed=self._spec.name,
                scope=scope,
                rows=len(store),
            )
            return store

    async def set_scope(self, scope: FeedScope) -> FeedStore:
        """Switch to ``scope``; a no-op when it is already active."""

        if self._store is not None and self._store.scope == scope:
            return self._store
        return await self.open(scope)

    async def resync(self) -> None:
        """Reload history for the active scope, keeping staged rows."""

        store, token = self._store, self._token
        if store is None or token is None or token.cancelled:
            return
        rows = await self._loader.load(store.scope, token)
        if rows is None or token.cancelled or store is not self._store:
            return
        store.replace_all(rows)

    async def close(self) -> None:
        async with self._lock:
            await self._teardown()

    async def _teardown(self) -> None:
        if self._token is not None:
            self._token.cancel()
        if self._subscriber is not None:
            await self._subscriber.stop()
        if self._store is not None:
            for listener in self._listeners:
                self._store.remove_listener(listener)
        self._subscriber = None
        self._token = None
        self._store = None

    def _make_row_handler(self, store: FeedStore, token: CancelToken):
        def _on_row(event_type: str, row: FeedRow) -> None:
            if token.cancelled or store is not self._store:
                return
            if event_type == EVENT_UPDATE:
                store.upsert(row)
            else:
                store.merge(row)

        return _on_row

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send(self, text: Optional[str] = None) -> Optional[FeedRow]:
        """Send ``text`` (or the composer's current text) to the active scope."""

        if self._store is None:
            return None
        if text is not None and not self.composer.sending:
            self.composer.text = text
        return await self._dispatcher.send(self.composer, self._store)

    async def like(self, row_id: str) -> bool:
        if self._store is None:
            return False
        return await self._dispatcher.like(row_id, self._store)
