"""Hosted database adapter used by the feed components.

The feed code only talks to :class:`FeedBackend`; :class:`SupabaseFeedBackend`
implements it on top of the ``supabase`` async client. Clients are built
explicitly by the entry points and handed down, so tests can pass fakes.
"""

from __future__ import annotations

import logging
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
)

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client

from oddsflow.entities import FeedScope
from oddsflow.log_utils import LoggerHelper

logger = logging.getLogger(__name__)
log_helper = LoggerHelper.for_logger(logger)

EventCallback = Callable[[str, Dict[str, Any]], None]
StatusCallback = Callable[[str, Optional[Exception]], None]

# Network failures raised by the HTTP client underneath postgrest
TRANSPORT_ERRORS = (httpx.HTTPError, OSError)

# PostgREST "function not found" and Postgres "undefined_function"
MISSING_RPC_CODES = {"PGRST202", "42883"}

STATUS_SUBSCRIBED = "SUBSCRIBED"
STATUS_CHANNEL_ERROR = "CHANNEL_ERROR"
STATUS_TIMED_OUT = "TIMED_OUT"
STATUS_CLOSED = "CLOSED"


class BackendError(Exception):
    """Error reported by the hosted database."""

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class RpcNotFoundError(BackendError):
    """The requested RPC function does not exist on the server."""


class BackendUnavailableError(BackendError):
    """No client is configured for the requested project."""


class FeedBackend(Protocol):
    async def fetch_rows(
        self,
        table: str,
        *,
        scope_column: Optional[str],
        scope: FeedScope,
        order_column: str,
        limit: int,
        descending: bool = True,
    ) -> List[Dict[str, Any]]: ...

    async def insert_row(self, table: str, payload: Mapping[str, Any]) -> Dict[str, Any]: ...

    async def update_row(
        self, table: str, row_id: str, values: Mapping[str, Any]
    ) -> Dict[str, Any]: ...

    async def call_rpc(self, name: str, params: Mapping[str, Any]) -> Any: ...

    async def fetch_config_int(self, key: str) -> int: ...

    async def subscribe(
        self,
        channel_name: str,
        *,
        table: str,
        events: Sequence[str],
        filter: Optional[str],
        on_event: EventCallback,
        on_status: StatusCallback,
    ) -> Any: ...

    async def unsubscribe(self, handle: Any) -> None: ...


def scope_filter(scope_column: Optional[str], scope: FeedScope) -> Optional[str]:
    """Realtime filter expression for one scope.

    The realtime transport has no ``is null`` operator, so the global scope
    of a scoped table subscribes unfiltered and relies on the normalizer.
    """

    if scope_column is None or scope is None:
        return None
    return f"{scope_column}=eq.{scope}"


def extract_change(payload: Any) -> Tuple[str, Dict[str, Any]]:
    """Return ``(event type, new record)`` from a realtime payload."""

    if not isinstance(payload, Mapping):
        return "", {}
    data = payload.get("data") if isinstance(payload.get("data"), Mapping) else payload
    event_type = str(data.get("eventType") or data.get("type") or "").upper()
    record = data.get("new") or data.get("record") or {}
    if not isinstance(record, Mapping):
        record = {}
    return event_type, dict(record)


def _status_name(status: Any) -> str:
    return str(getattr(status, "value", status)).upper()


def _wrap_api_error(exc: APIError) -> BackendError:
    code = getattr(exc, "code", None)
    message = getattr(exc, "message", None) or str(exc)
    if code in MISSING_RPC_CODES:
        return RpcNotFoundError(message, code=code)
    return BackendError(message, code=code)


async def _execute(query: Any) -> Any:
    try:
        return await query.execute()
    except APIError as exc:
        raise _wrap_api_error(exc) from exc
    except TRANSPORT_ERRORS as exc:
        raise BackendError(str(exc) or type(exc).__name__, code="transport") from exc


class SupabaseFeedBackend:
    """:class:`FeedBackend` backed by a supabase ``AsyncClient``."""

    def __init__(self, client: AsyncClient, *, name: str = "main") -> None:
        self._client = client
        self._name = name

    @classmethod
    async def connect(cls, url: str, key: str, *, name: str = "main") -> "SupabaseFeedBackend":
        client = await acreate_client(url, key)
        log_helper.info("BackendConnect", "Supabase client ready", backend=name)
        return cls(client, name=name)

    @property
    def name(self) -> str:
        return self._name

    async def fetch_rows(
        self,
        table: str,
        *,
        scope_column: Optional[str],
        scope: FeedScope,
        order_column: str,
        limit: int,
        descending: bool = True,
    ) -> List[Dict[str, Any]]:
        query = self._client.table(table).select("*")
        if scope_column is not None:
            if scope is None:
                query = query.is_(scope_column, "null")
            else:
                query = query.eq(scope_column, scope)
        query = query.order(order_column, desc=descending).limit(limit)
        response = await _execute(query)
        return list(response.data or [])

    async def insert_row(self, table: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        response = await _execute(self._client.table(table).insert(dict(payload)))
        rows = response.data or []
        if not rows:
            raise BackendError(f"Insert into {table} returned no row")
        return dict(rows[0])

    async def update_row(
        self, table: str, row_id: str, values: Mapping[str, Any]
    ) -> Dict[str, Any]:
        response = await _execute(
            self._client.table(table).update(dict(values)).eq("id", row_id)
        )
        rows = response.data or []
        if not rows:
            raise BackendError(f"Row {row_id} not found in {table}")
        return dict(rows[0])

    async def call_rpc(self, name: str, params: Mapping[str, Any]) -> Any:
        response = await _execute(self._client.rpc(name, dict(params)))
        return response.data

    async def fetch_config_int(self, key: str) -> int:
        response = await _execute(
            self._client.table("system_configs").select("value_int").eq("key", key).limit(1)
        )
        rows = response.data or []
        if not rows:
            return 0
        try:
            return int(rows[0].get("value_int") or 0)
        except (TypeError, ValueError):
            return 0

    async def subscribe(
        self,
        channel_name: str,
        *,
        table: str,
        events: Sequence[str],
        filter: Optional[str],
        on_event: EventCallback,
        on_status: StatusCallback,
    ) -> Any:
        channel = self._client.channel(channel_name)

        def _handle(payload: Any) -> None:
            event_type, record = extract_change(payload)
            on_event(event_type, record)

        for event in events:
            kwargs: Dict[str, Any] = {"table": table, "schema": "public"}
            if filter:
                kwargs["filter"] = filter
            channel.on_postgres_changes(event, _handle, **kwargs)

        def _status(status: Any, err: Optional[Exception] = None) -> None:
            on_status(_status_name(status), err)

        await channel.subscribe(_status)
        return channel

    async def unsubscribe(self, handle: Any) -> None:
        await self._client.remove_channel(handle)


class BackendRegistry:
    """Named backends (``main`` and ``odds``) available to the feeds."""

    def __init__(self, backends: Optional[Mapping[str, FeedBackend]] = None) -> None:
        self._backends: Dict[str, FeedBackend] = dict(backends or {})

    @classmethod
    async def from_credentials(
        cls,
        credentials: Mapping[str, Tuple[str, str]],
        connect: Callable[..., Awaitable[FeedBackend]] = SupabaseFeedBackend.connect,
    ) -> "BackendRegistry":
        backends: Dict[str, FeedBackend] = {}
        for name, (url, key) in credentials.items():
            try:
                backends[name] = await connect(url, key, name=name)
            except Exception as exc:
                log_helper.error(
                    "BackendConnect",
                    "Could not create Supabase client",
                    backend=name,
                    error=str(exc),
                )
        return cls(backends)

    def get(self, name: str) -> Optional[FeedBackend]:
        return self._backends.get(name)

    def names(self) -> List[str]:
        return sorted(self._backends)

    def __contains__(self, name: object) -> bool:
        return name in self._backends
