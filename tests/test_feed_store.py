"""Tests for the ordered, de-duplicated feed store."""

import pytest

from oddsflow.entities import ChangeKind, FeedRow
from oddsflow.feed_store import FeedStore


def _row(row_id, created_at, content="hi", **kwargs):
    return FeedRow(id=row_id, created_at=created_at, content=content, **kwargs)


def _ids(store):
    return [row.id for row in store]


def test_merge_same_row_twice_is_idempotent():
    once = FeedStore()
    twice = FeedStore()
    row = _row("x", "2024-01-01T00:00:01")

    assert once.merge(row) is True
    assert twice.merge(row) is True
    assert twice.merge(row) is False

    assert len(twice) == len(once) == 1
    assert twice.rows == once.rows


def test_replace_all_drops_duplicates_and_missing_ids():
    store = FeedStore(7)
    store.replace_all(
        [
            _row("a", "t1"),
            _row("a", "t1", content="dup"),
            _row(None, "t2"),
            _row("b", "t3"),
        ]
    )

    assert _ids(store) == ["a", "b"]
    assert store.get("a").content == "hi"


def test_merge_preserves_ascending_order():
    store = FeedStore()
    store.replace_all([_row("r1", "2024-01-01T00:00:01"), _row("r2", "2024-01-01T00:00:02")])

    for second in range(3, 8):
        store.merge(_row(f"r{second}", f"2024-01-01T00:00:0{second}"))

    stamps = [row.created_at for row in store]
    assert stamps == sorted(stamps)
    assert len(store) == 7


def test_bulk_then_live_then_duplicate_keeps_b_a_c():
    store = FeedStore()
    # Bulk load returned a(T1), b(T2) newest first; the loader reverses it.
    descending = [_row("a", "2024-01-01T10:00:00"), _row("b", "2024-01-01T09:00:00")]
    store.replace_all(list(reversed(descending)))
    assert _ids(store) == ["b", "a"]

    live_c = _row("c", "2024-01-01T11:00:00")
    assert store.merge(live_c) is True
    assert _ids(store) == ["b", "a", "c"]

    assert store.merge(_row("c", "2024-01-01T11:00:00")) is False
    assert _ids(store) == ["b", "a", "c"]
    assert len(store) == 3


def test_update_field_replaces_in_place_and_returns_previous():
    store = FeedStore()
    store.replace_all([_row("a", "t1", like_count=3), _row("b", "t2", like_count=1)])

    previous = store.update_field("a", "like_count", 4)

    assert previous == 3
    assert _ids(store) == ["a", "b"]
    assert store.get("a").like_count == 4
    assert store.get("b").like_count == 1


def test_update_field_unknown_row_raises():
    store = FeedStore()

    with pytest.raises(KeyError):
        store.update_field("missing", "like_count", 1)


def test_upsert_replaces_existing_row_without_reordering():
    store = FeedStore()
    store.replace_all([_row("a", "t1"), _row("b", "t2")])

    assert store.upsert(_row("a", "t1", content="edited")) is True
    assert _ids(store) == ["a", "b"]
    assert store.get("a").content == "edited"

    assert store.upsert(_row("c", "t3")) is True
    assert _ids(store) == ["a", "b", "c"]


def test_listeners_receive_changes_and_can_be_removed():
    store = FeedStore(3)
    changes = []
    store.add_listener(changes.append)

    store.replace_all([_row("a", "t1")])
    store.merge(_row("b", "t2"))
    store.update_field("a", "like_count", 2)
    store.remove_listener(changes.append)
    store.merge(_row("c", "t3"))

    assert [change.kind for change in changes] == [
        ChangeKind.REPLACE_ALL,
        ChangeKind.APPEND,
        ChangeKind.UPDATE,
    ]
    assert all(change.scope == 3 for change in changes)
    assert changes[0].scroll_to_latest is True
    assert changes[2].scroll_to_latest is False


def test_failing_listener_does_not_break_the_store():
    store = FeedStore()

    def _boom(change):
        raise RuntimeError("listener failed")

    store.add_listener(_boom)
    assert store.merge(_row("a", "t1")) is True
    assert _ids(store) == ["a"]


def test_stage_then_reconcile_replaces_optimistic_row():
    store = FeedStore()
    store.replace_all([_row("a", "t1")])

    token = store.stage(_row(None, "t2", content="mine"))
    assert store.is_staged(token)
    assert store.rows[-1].pending is True
    assert store.rows[-1].id is None

    assert store.reconcile(token, _row("srv-1", "t2", content="mine")) is True

    assert _ids(store) == ["a", "srv-1"]
    assert store.get("srv-1").pending is False
    assert not store.is_staged(token)


def test_live_echo_before_confirmation_keeps_single_row():
    store = FeedStore()
    token = store.stage(_row(None, "t1", content="mine"))

    # The realtime echo lands before the insert call returns.
    store.merge(_row("srv-1", "t1", content="mine"))
    assert store.reconcile(token, _row("srv-1", "t1", content="mine")) is False

    assert _ids(store) == ["srv-1"]
    assert not any(row.pending for row in store)


def test_merge_with_staged_token_reconciles():
    store = FeedStore()
    token = store.stage(_row(None, "t1", content="mine"))

    assert store.merge(_row("srv-9", "t1", content="mine", client_token=token)) is True

    assert _ids(store) == ["srv-9"]
    assert not store.is_staged(token)


def test_discard_removes_staged_row():
    store = FeedStore()
    store.replace_all([_row("a", "t1")])
    token = store.stage(_row(None, "t2", content="mine"))

    assert store.discard(token) is True
    assert store.discard(token) is False
    assert _ids(store) == ["a"]


def test_replace_all_keeps_staged_rows_at_the_end():
    store = FeedStore()
    token = store.stage(_row(None, "t9", content="mine"))

    store.replace_all([_row("a", "t1"), _row("b", "t2")])

    assert [row.key for row in store] == ["a", "b", f"pending:{token}"]
