#!/usr/bin/env python3
"""Core value types shared by the feed components."""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, Union


FeedScope = Optional[int]
RowId = str
SenderId = Union[int, str]

EVENT_INSERT = "INSERT"
EVENT_UPDATE = "UPDATE"


@dataclass
class FeedRow:
    """One message or signal held in a feed store."""

    id: Optional[RowId]
    created_at: str
    content: str
    scope: FeedScope = None
    sender_name: str = "Unknown"
    sender_id: Optional[SenderId] = None
    role: Optional[str] = None
    avatar_url: Optional[str] = None
    is_bot: bool = False
    like_count: int = 0
    mood_score: Optional[float] = None
    confidence: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    # Set when the id was synthesized locally because the record had none.
    synthetic_id: bool = False
    client_token: Optional[str] = None
    pending: bool = False

    @property
    def key(self) -> str:
        """Identity used by the store; staged rows have no id yet."""

        if self.id is not None:
            return self.id
        return f"pending:{self.client_token}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FeedSpec:
    """Configuration of one logical feed: table, scope column and row shape."""

    name: str
    table: str
    scope_column: Optional[str] = None
    backend: str = "main"
    limit: int = 50
    order_column: str = "created_at"
    events: Tuple[str, ...] = (EVENT_INSERT,)
    content_fields: Tuple[str, ...] = ("content", "message")
    fallback_content: Optional[str] = None
    sender_fields: Tuple[str, ...] = ("username", "sender_name", "persona_name")
    timestamp_fields: Tuple[str, ...] = ("created_at", "inserted_at")
    role_fields: Tuple[str, ...] = ("role", "persona_role", "sender_type")
    extra_fields: Tuple[str, ...] = ()
    writable: bool = True
    sender_name_column: Optional[str] = "username"
    sender_id_column: Optional[str] = "user_id"
    outbound_defaults: Mapping[str, Any] = field(default_factory=dict)
    token_column: Optional[str] = None
    like_rpc: Optional[str] = None
    like_column: str = "like_count"

    @property
    def is_scoped(self) -> bool:
        return self.scope_column is not None

    @property
    def listens_for_updates(self) -> bool:
        return EVENT_UPDATE in self.events

    def channel_name(self, scope: FeedScope) -> str:
        suffix = "global" if scope is None else str(scope)
        return f"realtime-{self.name}-{suffix}"


class ChangeKind(enum.Enum):
    REPLACE_ALL = "snapshot"
    APPEND = "row"
    UPDATE = "update"
    REMOVE = "remove"


@dataclass(frozen=True)
class FeedChange:
    """Notification emitted by a feed store after a successful mutation."""

    kind: ChangeKind
    scope: FeedScope
    rows: Tuple[FeedRow, ...] = ()
    scroll_to_latest: bool = False


@dataclass
class Sender:
    """Identity attached to outbound rows."""

    id: Optional[SenderId]
    name: str
    avatar_url: Optional[str] = None


@dataclass
class Composer:
    """Input buffer of one mounted surface plus its in-flight flag."""

    text: str = ""
    sending: bool = False

    def clear(self) -> None:
        self.text = ""


class CancelToken:
    """Flag closed over by async work started for one scope activation."""

    __slots__ = ("scope", "cancelled")

    def __init__(self, scope: FeedScope = None) -> None:
        self.scope = scope
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def __repr__(self) -> str:
        return f"CancelToken(scope={self.scope!r}, cancelled={self.cancelled})"
