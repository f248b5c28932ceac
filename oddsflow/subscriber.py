"""Realtime change subscription with explicit reconnect handling."""

from __future__ import annotations

import asyncio
import enum
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from oddsflow.backend import (
    STATUS_SUBSCRIBED,
    FeedBackend,
    scope_filter,
)
from oddsflow.entities import (
    EVENT_INSERT,
    EVENT_UPDATE,
    CancelToken,
    FeedRow,
    FeedScope,
    FeedSpec,
)
from oddsflow.log_utils import LoggerHelper
from oddsflow.normalizer import Normalizer

logger = logging.getLogger(__name__)
log_helper = LoggerHelper.for_logger(logger)

RowHandler = Callable[[str, FeedRow], None]
ResyncHandler = Callable[[], Awaitable[None]]
Sleeper = Callable[[float], Awaitable[None]]


class SubscriptionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    BACKOFF = "backoff"


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with proportional jitter."""

    base: float = 1.0
    factor: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.2

    @classmethod
    def from_config(cls, cfg) -> "BackoffPolicy":
        return cls(
            base=cfg.BACKOFF_BASE,
            factor=cfg.BACKOFF_FACTOR,
            max_delay=cfg.BACKOFF_MAX,
            jitter=cfg.BACKOFF_JITTER,
        )

    def delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Delay before reconnect ``attempt`` (1-based)."""

        attempt = max(1, attempt)
        raw = min(self.max_delay, self.base * self.factor ** (attempt - 1))
        if not self.jitter:
            return raw
        spread = (rng or random).uniform(-self.jitter, self.jitter)
        return max(0.0, raw * (1 + spread))


class ChangeSubscriber:
    """Keep one realtime channel open for a feed scope.

    State machine::

        DISCONNECTED -> CONNECTING -> SUBSCRIBED
        CONNECTING | SUBSCRIBED --error--> BACKOFF(n) --delay--> CONNECTING
        any --stop()--> DISCONNECTED

    A reconnect after more than ``resync_after`` seconds without a channel
    calls ``on_resync`` so the caller can reload history it may have missed.
    """

    def __init__(
        self,
        spec: FeedSpec,
        backend: FeedBackend,
        scope: FeedScope,
        on_row: RowHandler,
        *,
        token: Optional[CancelToken] = None,
        normalizer: Optional[Normalizer] = None,
        on_resync: Optional[ResyncHandler] = None,
        policy: Optional[BackoffPolicy] = None,
        resync_after: float = 5.0,
        max_attempts: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._spec = spec
        self._backend = backend
        self._scope = scope
        self._on_row = on_row
        self._token = token or CancelToken(scope)
        self._normalizer = normalizer or Normalizer(spec)
        self._on_resync = on_resync
        self._policy = policy or BackoffPolicy()
        self._resync_after = resync_after
        self._max_attempts = max_attempts
        self._clock = clock
        self._sleep = sleep
        self._rng = rng

        self._state = SubscriptionState.DISCONNECTED
        self._handle: Any = None
        self._attempt = 0
        self._disconnected_since: Optional[float] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._resync_task: Optional[asyncio.Task] = None
        self._stopped = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def attempt(self) -> int:
        """Consecutive failed attempts; ``BACKOFF(n)`` carries this ``n``."""

        return self._attempt

    @property
    def scope(self) -> FeedScope:
        return self._scope

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._state is not SubscriptionState.DISCONNECTED or self._stopped:
            return
        await self._connect()

    async def stop(self) -> None:
        self._stopped = True
        for task in (self._reconnect_task, self._resync_task):
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
        self._reconnect_task = None
        self._resync_task = None
        await self._release_handle()
        self._state = SubscriptionState.DISCONNECTED
        log_helper.debug(
            "FeedSubscribe", "Unsubscribed", feed=self._spec.name, scope=self._scope
        )

    async def _connect(self) -> None:
        self._state = SubscriptionState.CONNECTING
        try:
            self._handle = await self._backend.subscribe(
                self._spec.channel_name(self._scope),
                table=self._spec.table,
                events=self._spec.events,
                filter=scope_filter(self._spec.scope_column, self._scope),
                on_event=self._handle_event,
                on_status=self._handle_status,
            )
        except Exception as exc:
            log_helper.warn(
                "FeedSubscribe",
                "Subscribe call failed",
                feed=self._spec.name,
                scope=self._scope,
                error=str(exc),
            )
            self._handle_status("CHANNEL_ERROR", exc)

    async def _release_handle(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            await self._backend.unsubscribe(handle)
        except Exception as exc:
            log_helper.warn(
                "FeedSubscribe",
                "Removing channel failed",
                feed=self._spec.name,
                error=str(exc),
            )

    # ------------------------------------------------------------------
    # Transport callbacks
    # ------------------------------------------------------------------

    def _handle_status(self, status: str, error: Optional[Exception] = None) -> None:
        if self._stopped or self._token.cancelled:
            return

        if status == STATUS_SUBSCRIBED:
            gap = None
            if self._disconnected_since is not None:
                gap = self._clock() - self._disconnected_since
            self._state = SubscriptionState.SUBSCRIBED
            self._attempt = 0
            self._disconnected_since = None
            log_helper.info(
                "FeedSubscribe",
                "Channel subscribed",
                feed=self._spec.name,
                scope=self._scope,
            )
            if gap is not None and gap > self._resync_after and self._on_resync:
                log_helper.info(
                    "FeedResync",
                    "Reloading history after gap",
                    feed=self._spec.name,
                    gap=round(gap, 2),
                )
                self._resync_task = asyncio.ensure_future(self._on_resync())
            return

        if self._state is SubscriptionState.BACKOFF:
            return

        if self._disconnected_since is None:
            self._disconnected_since = self._clock()
        self._attempt += 1
        if self._max_attempts is not None and self._attempt > self._max_attempts:
            log_helper.error(
                "FeedSubscribe",
                "Giving up on realtime channel",
                feed=self._spec.name,
                scope=self._scope,
                attempts=self._attempt - 1,
            )
            self._state = SubscriptionState.DISCONNECTED
            return

        delay = self._policy.delay(self._attempt, self._rng)
        self._state = SubscriptionState.BACKOFF
        log_helper.warn(
            "FeedSubscribe",
            "Channel lost, backing off",
            feed=self._spec.name,
            scope=self._scope,
            status=status,
            attempt=self._attempt,
            delay=round(delay, 2),
            error=str(error) if error else None,
        )
        self._reconnect_task = asyncio.ensure_future(self._reconnect(delay))

    async def _reconnect(self, delay: float) -> None:
        await self._sleep(delay)
        if self._stopped or self._token.cancelled:
            return
        await self._release_handle()
        await self._connect()

    def _handle_event(self, event_type: str, record: Dict[str, Any]) -> None:
        if self._stopped or self._token.cancelled:
            return
        event_type = (event_type or EVENT_INSERT).upper()
        if event_type not in (EVENT_INSERT, EVENT_UPDATE):
            return
        row = self._normalizer.normalize(record, self._scope)
        if row is None:
            return
        self._on_row(event_type, row)
