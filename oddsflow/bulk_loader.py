"""Initial historical fetch for one feed scope."""

from __future__ import annotations

import logging
from typing import List, Optional

from oddsflow.backend import FeedBackend
from oddsflow.entities import CancelToken, FeedRow, FeedScope, FeedSpec
from oddsflow.log_utils import LoggerHelper
from oddsflow.normalizer import Normalizer

logger = logging.getLogger(__name__)
log_helper = LoggerHelper.for_logger(logger)


class BulkLoader:
    """Fetch the newest rows of a scope and return them oldest first."""

    def __init__(
        self,
        spec: FeedSpec,
        backend: Optional[FeedBackend],
        *,
        normalizer: Optional[Normalizer] = None,
        limit: Optional[int] = None,
    ) -> None:
        self._spec = spec
        self._backend = backend
        self._normalizer = normalizer or Normalizer(spec)
        self._limit = limit or spec.limit

    @property
    def limit(self) -> int:
        return self._limit

    async def load(
        self,
        scope: FeedScope,
        token: Optional[CancelToken] = None,
    ) -> Optional[List[FeedRow]]:
        """Return ascending rows for ``scope``.

        Errors yield an empty list. ``None`` means ``token`` was cancelled
        while the fetch was in flight and the result must be ignored.
        """

        spec = self._spec
        if self._backend is None:
            log_helper.warn("FeedLoad", "Backend unavailable", feed=spec.name)
            return []
        if scope is not None and not spec.is_scoped:
            log_helper.warn(
                "FeedLoad",
                "Scoped load requested for a global feed",
                feed=spec.name,
                scope=scope,
            )
            return []

        try:
            records = await self._backend.fetch_rows(
                spec.table,
                scope_column=spec.scope_column,
                scope=scope,
                order_column=spec.order_column,
                limit=self._limit,
                descending=True,
            )
        except Exception as exc:
            if token is not None and token.cancelled:
                return None
            log_helper.error(
                "FeedLoad",
                "Bulk load failed",
                feed=spec.name,
                scope=scope,
                code=getattr(exc, "code", None),
                error=str(exc),
            )
            return []

        if token is not None and token.cancelled:
            log_helper.debug(
                "FeedLoad", "Discarded stale bulk load", feed=spec.name, scope=scope
            )
            return None

        rows = [
            row
            for row in (self._normalizer.normalize(record, scope) for record in records)
            if row is not None
        ]
        rows.reverse()
        log_helper.debug(
            "FeedLoad",
            feed=spec.name,
            scope=scope,
            fetched=len(records),
            kept=len(rows),
        )
        return rows
