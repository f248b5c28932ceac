"""Validation and coercion of raw backend records into feed rows."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from oddsflow.entities import FeedRow, FeedScope, FeedSpec
from oddsflow.log_utils import LoggerHelper

logger = logging.getLogger(__name__)
log_helper = LoggerHelper.for_logger(logger)

PLACEHOLDER_SENDER = "Unknown"
_BOT_MARKERS = {"bot", "ai"}

# Sentinel for "the record carries no usable scope value".
INVALID_SCOPE = object()


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _first_present(record: Mapping[str, Any], fields) -> Optional[Any]:
    for name in fields:
        value = record.get(name)
        if value is not None:
            return value
    return None


def _first_text(record: Mapping[str, Any], fields) -> str:
    for name in fields:
        value = record.get(name)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_int(value: Any, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def coerce_scope(value: Any) -> Any:
    """Return ``value`` as a scope (``None`` or ``int``), or ``INVALID_SCOPE``."""

    if value is None:
        return None
    if isinstance(value, bool):
        return INVALID_SCOPE
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else INVALID_SCOPE
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        return INVALID_SCOPE


def synthesize_id(created_at: str) -> str:
    """Build a local id for a record that arrived without one."""

    return f"{created_at}-{secrets.token_hex(6)}"


def _detect_bot(record: Mapping[str, Any], sender_name: str, role: Optional[str]) -> bool:
    if bool(record.get("is_bot")):
        return True
    sender_type = str(record.get("sender_type") or "").strip().lower()
    if sender_type in _BOT_MARKERS:
        return True
    if role and role.strip().lower() in _BOT_MARKERS:
        return True
    return "bot" in sender_name.lower()


def _avatar(record: Mapping[str, Any]) -> Optional[str]:
    avatar = record.get("avatar_url")
    if avatar:
        return str(avatar)
    payload = record.get("payload")
    if isinstance(payload, Mapping) and payload.get("avatar_url"):
        return str(payload["avatar_url"])
    return None


class Normalizer:
    """Convert raw records of one feed into :class:`FeedRow` objects."""

    def __init__(self, spec: FeedSpec) -> None:
        self._spec = spec

    @property
    def spec(self) -> FeedSpec:
        return self._spec

    def scope_of(self, record: Mapping[str, Any]) -> Any:
        if not self._spec.is_scoped:
            return None
        return coerce_scope(record.get(self._spec.scope_column))

    def normalize(
        self,
        record: Optional[Mapping[str, Any]],
        scope: FeedScope,
    ) -> Optional[FeedRow]:
        """Return a row for ``record`` or ``None`` when it must be dropped."""

        spec = self._spec
        if not isinstance(record, Mapping):
            return None

        row_scope = self.scope_of(record)
        if row_scope is INVALID_SCOPE or row_scope != scope:
            log_helper.debug(
                "FeedNormalize",
                "Dropped row from another scope",
                feed=spec.name,
                expected=scope,
                received=record.get(spec.scope_column) if spec.scope_column else None,
            )
            return None

        content = _first_text(record, spec.content_fields)
        monitoring = False
        if not content and spec.fallback_content:
            # Odds rows may arrive before their signal text.
            content = spec.fallback_content
            monitoring = True
        if not content:
            log_helper.debug(
                "FeedNormalize",
                "Dropped row with empty content",
                feed=spec.name,
                id=record.get("id"),
            )
            return None

        sender_name = _first_text(record, spec.sender_fields) or PLACEHOLDER_SENDER
        created_at = _first_text(record, spec.timestamp_fields) or _utc_now_iso()
        role = _first_text(record, spec.role_fields) or None

        raw_id = record.get("id")
        synthetic = raw_id is None or str(raw_id).strip() == ""
        row_id = synthesize_id(created_at) if synthetic else str(raw_id)

        sender_id = _first_present(record, ("user_id", "sender_id", "telegram_id"))
        if sender_id is not None and not isinstance(sender_id, (int, str)):
            sender_id = str(sender_id)

        client_token = None
        if spec.token_column:
            token = record.get(spec.token_column)
            client_token = str(token) if token else None

        extra = {
            name: record[name] for name in spec.extra_fields if name in record
        }
        if monitoring:
            extra["monitoring"] = True

        return FeedRow(
            id=row_id,
            created_at=created_at,
            content=content,
            scope=row_scope,
            sender_name=sender_name,
            sender_id=sender_id,
            role=role,
            avatar_url=_avatar(record),
            is_bot=_detect_bot(record, sender_name, role),
            like_count=max(0, _as_int(record.get(spec.like_column))),
            mood_score=_as_float(record.get("mood_score")),
            confidence=_as_float(record.get("confidence")),
            extra=extra,
            synthetic_id=synthetic,
            client_token=client_token,
        )
