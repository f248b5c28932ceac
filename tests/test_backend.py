"""Tests for the Supabase adapter and backend registry."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError

from oddsflow.backend import (
    BackendError,
    BackendRegistry,
    RpcNotFoundError,
    SupabaseFeedBackend,
    extract_change,
    scope_filter,
)


def _query(data=None, error=None):
    """Fluent query builder mock whose ``execute`` resolves to ``data``."""
    query = MagicMock()
    for method in ("select", "eq", "is_", "order", "limit", "insert", "update"):
        getattr(query, method).return_value = query
    if error is not None:
        query.execute = AsyncMock(side_effect=error)
    else:
        query.execute = AsyncMock(return_value=MagicMock(data=data))
    return query


def _client(query):
    client = MagicMock()
    client.table.return_value = query
    client.rpc.return_value = query
    return client


def test_scope_filter():
    assert scope_filter(None, 5) is None
    assert scope_filter("fixture_id", None) is None
    assert scope_filter("fixture_id", 5) == "fixture_id=eq.5"


def test_extract_change_handles_nested_and_flat_payloads():
    nested = {"data": {"eventType": "insert", "new": {"id": 1}}}
    flat = {"type": "UPDATE", "record": {"id": 2}}

    assert extract_change(nested) == ("INSERT", {"id": 1})
    assert extract_change(flat) == ("UPDATE", {"id": 2})
    assert extract_change("junk") == ("", {})


def test_fetch_rows_uses_is_null_for_global_scope():
    query = _query([{"id": "a"}])
    backend = SupabaseFeedBackend(_client(query))

    rows = asyncio.run(
        backend.fetch_rows(
            "war_room_messages",
            scope_column="fixture_id",
            scope=None,
            order_column="created_at",
            limit=50,
        )
    )

    assert rows == [{"id": "a"}]
    query.is_.assert_called_once_with("fixture_id", "null")
    query.eq.assert_not_called()
    query.order.assert_called_once_with("created_at", desc=True)
    query.limit.assert_called_once_with(50)


def test_fetch_rows_uses_eq_for_concrete_scope():
    query = _query([])
    backend = SupabaseFeedBackend(_client(query))

    asyncio.run(
        backend.fetch_rows(
            "war_room_messages",
            scope_column="fixture_id",
            scope=7,
            order_column="created_at",
            limit=10,
        )
    )

    query.eq.assert_called_once_with("fixture_id", 7)
    query.is_.assert_not_called()


def test_api_error_becomes_backend_error():
    query = _query(error=APIError({"message": "denied", "code": "42501"}))
    backend = SupabaseFeedBackend(_client(query))

    with pytest.raises(BackendError) as info:
        asyncio.run(backend.insert_row("global_chat_messages", {"content": "x"}))

    assert info.value.code == "42501"


def test_transport_error_becomes_backend_error():
    query = _query(error=httpx.ConnectError("connection refused"))
    backend = SupabaseFeedBackend(_client(query))

    with pytest.raises(BackendError) as info:
        asyncio.run(
            backend.fetch_rows(
                "war_room_messages",
                scope_column="fixture_id",
                scope=7,
                order_column="created_at",
                limit=10,
            )
        )

    assert info.value.code == "transport"
    assert isinstance(info.value.__cause__, httpx.ConnectError)


def test_timeout_on_rpc_becomes_backend_error():
    query = _query(error=httpx.ReadTimeout("read timed out"))
    backend = SupabaseFeedBackend(_client(query))

    with pytest.raises(BackendError):
        asyncio.run(backend.call_rpc("increment_like_count", {"message_id": "m1"}))


def test_missing_function_becomes_rpc_not_found():
    query = _query(error=APIError({"message": "no function", "code": "PGRST202"}))
    backend = SupabaseFeedBackend(_client(query))

    with pytest.raises(RpcNotFoundError):
        asyncio.run(backend.call_rpc("increment_like_count", {"message_id": "m1"}))


def test_empty_insert_response_is_an_error():
    backend = SupabaseFeedBackend(_client(_query([])))

    with pytest.raises(BackendError):
        asyncio.run(backend.insert_row("global_chat_messages", {"content": "x"}))


def test_fetch_config_int_defaults_to_zero():
    assert asyncio.run(SupabaseFeedBackend(_client(_query([]))).fetch_config_int("k")) == 0
    assert asyncio.run(
        SupabaseFeedBackend(_client(_query([{"value_int": 25}]))).fetch_config_int("k")
    ) == 25


def test_subscribe_registers_each_event_and_reports_status():
    channel = MagicMock()
    channel.subscribe = AsyncMock()
    client = MagicMock()
    client.channel.return_value = channel
    backend = SupabaseFeedBackend(client)
    events, statuses = [], []

    handle = asyncio.run(
        backend.subscribe(
            "realtime-radar_handicap-5",
            table="handicap",
            events=("INSERT", "UPDATE"),
            filter="fixture_id=eq.5",
            on_event=lambda kind, record: events.append((kind, record)),
            on_status=lambda status, err: statuses.append(status),
        )
    )

    assert handle is channel
    assert channel.on_postgres_changes.call_count == 2
    first = channel.on_postgres_changes.call_args_list[0]
    assert first.args[0] == "INSERT"
    assert first.kwargs == {"table": "handicap", "schema": "public", "filter": "fixture_id=eq.5"}

    callback = first.args[1]
    callback({"data": {"type": "INSERT", "record": {"id": 9}}})
    status_cb = channel.subscribe.await_args.args[0]
    status_cb("SUBSCRIBED", None)

    assert events == [("INSERT", {"id": 9})]
    assert statuses == ["SUBSCRIBED"]


def test_registry_skips_backends_that_fail_to_connect():
    async def connect(url, key, *, name):
        if name == "odds":
            raise RuntimeError("bad url")
        return MagicMock(name=name)

    registry = asyncio.run(
        BackendRegistry.from_credentials(
            {"main": ("https://m", "k"), "odds": ("https://o", "k")},
            connect=connect,
        )
    )

    assert registry.names() == ["main"]
    assert "odds" not in registry
    assert registry.get("odds") is None
