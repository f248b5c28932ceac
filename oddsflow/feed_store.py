"""In-memory ordered, deduplicated row collection for one feed scope."""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from oddsflow.entities import ChangeKind, FeedChange, FeedRow, FeedScope, RowId
from oddsflow.log_utils import LoggerHelper

logger = logging.getLogger(__name__)
log_helper = LoggerHelper.for_logger(logger)

Listener = Callable[[FeedChange], None]


class FeedStore:
    """Ordered rows of the active scope.

    Display order is insertion order. Rows are unique by id; optimistic rows
    staged before the server answers are tracked by a client correlation
    token and never occupy the id namespace.
    """

    def __init__(self, scope: FeedScope = None) -> None:
        self._scope = scope
        self._rows: List[FeedRow] = []
        self._ids: set = set()
        self._staged: Dict[str, FeedRow] = {}
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def scope(self) -> FeedScope:
        return self._scope

    @property
    def rows(self) -> Tuple[FeedRow, ...]:
        return tuple(self._rows)

    @property
    def ids(self) -> List[Optional[RowId]]:
        return [row.id for row in self._rows]

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[FeedRow]:
        return iter(tuple(self._rows))

    def __contains__(self, row_id: object) -> bool:
        return row_id in self._ids

    def get(self, row_id: RowId) -> Optional[FeedRow]:
        for row in self._rows:
            if row.id == row_id:
                return row
        return None

    def is_staged(self, token: str) -> bool:
        return token in self._staged

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _emit(self, change: FeedChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as exc:
                log_helper.error(
                    "FeedStoreListener",
                    "Listener raised",
                    kind=change.kind.value,
                    error=str(exc),
                    exc_info=True,
                )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def replace_all(self, rows: Iterable[FeedRow]) -> None:
        """Install a bulk-loaded, ascending list of rows.

        Staged optimistic rows survive the replacement and stay at the end.
        """

        fresh: List[FeedRow] = []
        ids: set = set()
        for row in rows:
            if row.id is None or row.id in ids:
                continue
            ids.add(row.id)
            fresh.append(row)

        staged = [row for row in self._rows if row.pending]
        self._rows = fresh + staged
        self._ids = ids
        self._emit(
            FeedChange(
                kind=ChangeKind.REPLACE_ALL,
                scope=self._scope,
                rows=tuple(self._rows),
                scroll_to_latest=True,
            )
        )

    def merge(self, row: FeedRow) -> bool:
        """Append ``row`` unless a row with the same id is already held."""

        if row.client_token and row.client_token in self._staged:
            return self.reconcile(row.client_token, row)

        if row.id is None or row.id in self._ids:
            return False

        self._rows.append(row)
        self._ids.add(row.id)
        self._emit(
            FeedChange(
                kind=ChangeKind.APPEND,
                scope=self._scope,
                rows=(row,),
                scroll_to_latest=True,
            )
        )
        return True

    def upsert(self, row: FeedRow) -> bool:
        """Replace the held row with the same id in place, or merge it."""

        if row.id is None:
            return False
        for index, existing in enumerate(self._rows):
            if existing.id == row.id:
                if existing == row:
                    return False
                self._rows[index] = row
                self._emit(
                    FeedChange(
                        kind=ChangeKind.UPDATE,
                        scope=self._scope,
                        rows=(row,),
                    )
                )
                return True
        return self.merge(row)

    def update_field(self, row_id: RowId, field: str, value: Any) -> Any:
        """Set ``field`` on the row with ``row_id``; return the old value.

        Raises ``KeyError`` when no such row is held.
        """

        for index, existing in enumerate(self._rows):
            if existing.id == row_id:
                previous = getattr(existing, field)
                updated = replace(existing, **{field: value})
                self._rows[index] = updated
                self._emit(
                    FeedChange(
                        kind=ChangeKind.UPDATE,
                        scope=self._scope,
                        rows=(updated,),
                    )
                )
                return previous
        raise KeyError(row_id)

    # ------------------------------------------------------------------
    # Optimistic rows
    # ------------------------------------------------------------------

    def stage(self, row: FeedRow) -> str:
        """Append an optimistic row and return its correlation token."""

        token = row.client_token or uuid.uuid4().hex
        staged = replace(row, id=None, client_token=token, pending=True)
        self._staged[token] = staged
        self._rows.append(staged)
        self._emit(
            FeedChange(
                kind=ChangeKind.APPEND,
                scope=self._scope,
                rows=(staged,),
                scroll_to_latest=True,
            )
        )
        return token

    def reconcile(self, token: str, row: FeedRow) -> bool:
        """Replace the staged row for ``token`` with the authoritative ``row``.

        When ``row`` already arrived through the live stream the staged copy
        is dropped instead, so the id stays unique.
        """

        staged = self._staged.pop(token, None)
        confirmed = replace(row, client_token=token, pending=False)

        if staged is None:
            return self.merge(replace(confirmed, client_token=None))

        index = self._index_of_staged(staged)
        if confirmed.id is None or confirmed.id in self._ids:
            if index is not None:
                del self._rows[index]
            self._emit(
                FeedChange(kind=ChangeKind.REMOVE, scope=self._scope, rows=(staged,))
            )
            return False

        if index is None:
            self._rows.append(confirmed)
        else:
            self._rows[index] = confirmed
        self._ids.add(confirmed.id)
        self._emit(
            FeedChange(
                kind=ChangeKind.UPDATE,
                scope=self._scope,
                rows=(confirmed,),
                scroll_to_latest=True,
            )
        )
        return True

    def discard(self, token: str) -> bool:
        """Drop the staged row for ``token`` after a failed send."""

        staged = self._staged.pop(token, None)
        if staged is None:
            return False
        index = self._index_of_staged(staged)
        if index is not None:
            del self._rows[index]
        self._emit(FeedChange(kind=ChangeKind.REMOVE, scope=self._scope, rows=(staged,)))
        return True

    def _index_of_staged(self, staged: FeedRow) -> Optional[int]:
        for index, row in enumerate(self._rows):
            if row.pending and row.client_token == staged.client_token:
                return index
        return None
