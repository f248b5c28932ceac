"""Pydantic models used by the FastAPI routes."""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from oddsflow.entities import FeedRow, FeedSpec


class UserResponse(BaseModel):
    id: int
    username: Optional[str] = None
    display_name: str
    lang: Optional[str] = None
    photo_url: Optional[str] = None


class TokenResponse(BaseModel):
    token: str
    expires_in: int
    user_id: int
    username: str


class FeedInfo(BaseModel):
    name: str
    table: str
    backend: str
    scoped: bool
    scope_column: Optional[str] = None
    writable: bool
    limit: int
    events: List[str]
    available: bool

    @classmethod
    def from_spec(cls, spec: FeedSpec, *, available: bool, limit: int) -> "FeedInfo":
        return cls(
            name=spec.name,
            table=spec.table,
            backend=spec.backend,
            scoped=spec.is_scoped,
            scope_column=spec.scope_column,
            writable=spec.writable,
            limit=limit,
            events=list(spec.events),
            available=available,
        )


class FeedRowModel(BaseModel):
    id: Optional[str] = None
    created_at: str
    content: str
    scope: Optional[int] = None
    sender_name: str
    sender_id: Optional[Union[int, str]] = None
    role: Optional[str] = None
    avatar_url: Optional[str] = None
    is_bot: bool = False
    like_count: int = 0
    mood_score: Optional[float] = None
    confidence: Optional[float] = None
    extra: Dict[str, Any] = Field(default_factory=dict)
    synthetic_id: bool = False
    client_token: Optional[str] = None
    pending: bool = False

    @classmethod
    def from_row(cls, row: FeedRow) -> "FeedRowModel":
        return cls(**row.to_dict())


class FeedRowsResponse(BaseModel):
    feed: str
    scope: Optional[int] = None
    rows: List[FeedRowModel]


class SendRowRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=4000)
    scope: Optional[Union[int, str]] = None


class OnlineCountResponse(BaseModel):
    feed: str
    scope: Optional[int] = None
    online: int
