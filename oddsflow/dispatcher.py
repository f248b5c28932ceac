"""Outbound writes: new rows and like counters."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from oddsflow.backend import BackendError, FeedBackend, RpcNotFoundError
from oddsflow.entities import Composer, FeedRow, FeedScope, FeedSpec, Sender
from oddsflow.feed_store import FeedStore
from oddsflow.log_utils import LoggerHelper
from oddsflow.normalizer import Normalizer

logger = logging.getLogger(__name__)
log_helper = LoggerHelper.for_logger(logger)


class FeedNotWritableError(Exception):
    """Raised when a write is attempted on a read-only feed."""


class Dispatcher:
    """Submit rows for one feed and fold the server's answer into a store."""

    def __init__(
        self,
        spec: FeedSpec,
        backend: Optional[FeedBackend],
        sender: Sender,
        *,
        normalizer: Optional[Normalizer] = None,
    ) -> None:
        self._spec = spec
        self._backend = backend
        self._sender = sender
        self._normalizer = normalizer or Normalizer(spec)
        self._pending_likes: Set[str] = set()

    @property
    def sender(self) -> Sender:
        return self._sender

    def build_payload(
        self,
        content: str,
        scope: FeedScope,
        *,
        client_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        spec = self._spec
        payload: Dict[str, Any] = dict(spec.outbound_defaults)
        payload["content"] = content
        if spec.scope_column is not None:
            payload[spec.scope_column] = scope
        if spec.sender_name_column:
            payload[spec.sender_name_column] = self._sender.name
        if spec.sender_id_column and self._sender.id is not None:
            payload[spec.sender_id_column] = self._sender.id
        if spec.token_column and client_token:
            payload[spec.token_column] = client_token
        return payload

    async def submit(
        self,
        content: str,
        scope: FeedScope,
        *,
        client_token: Optional[str] = None,
    ) -> Optional[FeedRow]:
        """Insert one row and return it normalized.

        Raises :class:`BackendError` on rejection and
        :class:`FeedNotWritableError` for read-only feeds.
        """

        spec = self._spec
        if not spec.writable:
            raise FeedNotWritableError(spec.name)
        if self._backend is None:
            raise BackendError("Backend unavailable")

        record = await self._backend.insert_row(
            spec.table,
            self.build_payload(content, scope, client_token=client_token),
        )
        return self._normalizer.normalize(record, scope)

    async def send(self, composer: Composer, store: FeedStore) -> Optional[FeedRow]:
        """Send the composer's text to the store's scope.

        Returns the confirmed row, or ``None`` when the guard skipped the send
        or the backend rejected it (the composer text is kept for a retry).
        """

        content = composer.text.strip()
        if not content or composer.sending or self._backend is None:
            return None
        if not self._spec.writable:
            log_helper.warn("FeedSend", "Feed is read-only", feed=self._spec.name)
            return None

        scope = store.scope
        composer.sending = True
        token = store.stage(
            FeedRow(
                id=None,
                created_at=datetime.now(timezone.utc).isoformat(),
                content=content,
                scope=scope,
                sender_name=self._sender.name,
                sender_id=self._sender.id,
                avatar_url=self._sender.avatar_url,
            )
        )
        try:
            row = await self.submit(content, scope, client_token=token)
        except Exception as exc:
            store.discard(token)
            log_helper.error(
                "FeedSend",
                "Send failed",
                feed=self._spec.name,
                scope=scope,
                code=getattr(exc, "code", None),
                error=str(exc),
            )
            return None
        finally:
            composer.sending = False

        if row is None:
            store.discard(token)
            log_helper.warn(
                "FeedSend",
                "Server row failed validation",
                feed=self._spec.name,
                scope=scope,
            )
            return None

        store.reconcile(token, row)
        composer.clear()
        return row

    async def like(self, row_id: str, store: FeedStore) -> bool:
        """Optimistically bump ``like_count`` and confirm it on the server."""

        spec = self._spec
        if not spec.writable or self._backend is None:
            return False
        row = store.get(row_id)
        if row is None or row_id in self._pending_likes:
            return False

        previous = row.like_count
        target = previous + 1
        self._pending_likes.add(row_id)
        store.update_field(row_id, "like_count", target)
        try:
            await self._confirm_like(row_id, target)
        except Exception as exc:
            if store.get(row_id) is not None:
                store.update_field(row_id, "like_count", previous)
            log_helper.warn(
                "FeedLike",
                "Like failed, rolled back",
                feed=spec.name,
                id=row_id,
                code=getattr(exc, "code", None),
                error=str(exc),
            )
            return False
        finally:
            self._pending_likes.discard(row_id)
        return True

    async def _confirm_like(self, row_id: str, target: int) -> None:
        spec = self._spec
        if spec.like_rpc:
            try:
                await self._backend.call_rpc(spec.like_rpc, {"message_id": row_id})
                return
            except RpcNotFoundError:
                log_helper.info(
                    "FeedLike",
                    "Counter RPC missing, updating column",
                    feed=spec.name,
                    rpc=spec.like_rpc,
                )
        await self._backend.update_row(spec.table, row_id, {spec.like_column: target})
