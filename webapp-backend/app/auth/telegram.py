"""Telegram Mini App sign-in: initData verification and session tokens."""

from __future__ import annotations

import base64
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional
from urllib.parse import parse_qsl

from fastapi import Header, HTTPException, Query, Request

from oddsflow.config import Config
from oddsflow.entities import Sender


class TelegramAuthError(HTTPException):
    """HTTP 401 error raised when Telegram authentication fails."""

    def __init__(self, detail: str = "Unauthorized") -> None:
        super().__init__(status_code=401, detail=detail)


@dataclass
class UserContext:
    """Telegram user behind a request."""

    id: int
    username: Optional[str]
    lang: Optional[str]
    first_name: Optional[str] = None
    photo_url: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.username:
            return self.username
        if self.first_name:
            return self.first_name
        return f"user{self.id}"

    def to_sender(self) -> Sender:
        """Identity stamped on rows this user sends."""

        return Sender(id=self.id, name=self.display_name, avatar_url=self.photo_url)


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _hmac_sha256(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), digestmod="sha256").digest()


def _user_id(raw: Any, what: str) -> int:
    if raw is None:
        raise TelegramAuthError(f"Missing {what}")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise TelegramAuthError(f"Invalid {what}") from exc


def init_data_hash(pairs: Mapping[str, str], bot_token: str) -> str:
    """Telegram's signature over every initData field except ``hash``."""

    check_string = "\n".join(
        f"{key}={pairs[key]}" for key in sorted(pairs) if key != "hash"
    )
    secret = _hmac_sha256(b"WebAppData", bot_token)
    return hmac.new(secret, check_string.encode("utf-8"), digestmod="sha256").hexdigest()


def validate_init_data(
    init_data: str,
    *,
    bot_token: str,
    max_age_seconds: int = 600,
) -> UserContext:
    """Check the initData signature and age and return its user.

    ``max_age_seconds`` of 0 accepts any ``auth_date``.
    """

    if not bot_token:
        raise HTTPException(status_code=500, detail="Telegram bot token is not configured")

    try:
        pairs: Dict[str, str] = dict(
            parse_qsl(init_data, keep_blank_values=True, strict_parsing=True)
        )
    except ValueError as exc:
        raise TelegramAuthError("Invalid initData format") from exc

    provided = pairs.get("hash")
    if not provided:
        raise TelegramAuthError("Missing initData hash")
    if not hmac.compare_digest(provided, init_data_hash(pairs, bot_token)):
        raise TelegramAuthError("Bad initData signature")

    if max_age_seconds:
        try:
            auth_date = int(pairs.get("auth_date", "0"))
        except ValueError:
            auth_date = 0
        if auth_date and time.time() - auth_date > max_age_seconds:
            raise TelegramAuthError("initData expired")

    try:
        user = json.loads(pairs.get("user") or "")
    except json.JSONDecodeError as exc:
        raise TelegramAuthError("Missing or malformed user in initData") from exc
    if not isinstance(user, dict):
        raise TelegramAuthError("Missing or malformed user in initData")

    return UserContext(
        id=_user_id(user.get("id"), "user.id in initData"),
        username=user.get("username"),
        lang=user.get("language_code") or user.get("lang"),
        first_name=user.get("first_name"),
        photo_url=user.get("photo_url"),
    )


def create_user_jwt(user: UserContext, *, secret: str, ttl_seconds: int) -> str:
    """HS256 session token carrying the fields rows are stamped with."""

    if not secret:
        raise HTTPException(status_code=500, detail="JWT secret is not configured")

    issued_at = int(time.time())
    claims = {
        "sub": str(user.id),
        "username": user.username,
        "lang": user.lang,
        "name": user.first_name,
        "photo": user.photo_url,
        "iat": issued_at,
        "exp": issued_at + ttl_seconds,
    }
    header = _b64encode(b'{"alg":"HS256","typ":"JWT"}')
    body = _b64encode(json.dumps(claims, separators=(",", ":")).encode("utf-8"))
    signature = _hmac_sha256(secret.encode("utf-8"), f"{header}.{body}")
    return f"{header}.{body}.{_b64encode(signature)}"


def decode_user_jwt(token: str, *, secret: str) -> UserContext:
    if not secret:
        raise TelegramAuthError("JWT secret missing")

    try:
        header, body, signature = token.split(".", 2)
        provided = _b64decode(signature)
    except ValueError as exc:
        raise TelegramAuthError("Invalid token format") from exc

    expected = _hmac_sha256(secret.encode("utf-8"), f"{header}.{body}")
    if not hmac.compare_digest(expected, provided):
        raise TelegramAuthError("Bad token signature")

    try:
        claims = json.loads(_b64decode(body))
    except ValueError as exc:
        raise TelegramAuthError("Malformed token payload") from exc
    if not isinstance(claims, dict):
        raise TelegramAuthError("Malformed token payload")

    exp = claims.get("exp")
    if isinstance(exp, int) and exp < int(time.time()):
        raise TelegramAuthError("Token expired")

    return UserContext(
        id=_user_id(claims.get("sub"), "token subject"),
        username=claims.get("username"),
        lang=claims.get("lang"),
        first_name=claims.get("name"),
        photo_url=claims.get("photo"),
    )


def authenticate_credential(credential: Optional[str], config: Config) -> UserContext:
    """Resolve a session JWT or a raw initData string to a user."""

    value = (credential or "").strip()
    if not value:
        raise TelegramAuthError("Telegram credentials missing")
    # JWTs carry two dots; initData is a query string.
    if value.count(".") == 2 and "=" not in value.split(".", 1)[0]:
        return decode_user_jwt(value, secret=config.JWT_SECRET)
    return validate_init_data(
        value,
        bot_token=config.BOT_TOKEN,
        max_age_seconds=config.INITDATA_MAX_AGE,
    )


async def require_telegram_user(
    request: Request,
    x_telegram_init_data: Optional[str] = Header(default=None, alias="X-Telegram-Init-Data"),
    init_data_query: Optional[str] = Query(default=None, alias="initData"),
    authorization: Optional[str] = Header(default=None),
) -> UserContext:
    """FastAPI dependency that enforces Telegram WebApp authentication."""

    config: Config = request.app.state.config
    raw_authorization = (authorization or "").strip()
    if raw_authorization.lower().startswith("bearer "):
        return authenticate_credential(raw_authorization.split(" ", 1)[1], config)

    init_data = x_telegram_init_data or init_data_query
    if not init_data:
        raise TelegramAuthError("Telegram initData missing")
    return authenticate_credential(init_data, config)
