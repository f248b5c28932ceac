#!/usr/bin/env python3
"""Configuration management for the OddsFlow feed service."""

import os
from typing import Dict, Iterable, List, Optional


DEFAULT_CORS_ORIGINS = [
    "https://t.me",
    "https://web.telegram.org",
]


def _first_env(
    names: Iterable[str],
    default: Optional[str] = None,
) -> Optional[str]:
    """Return the first environment variable from ``names`` with a value."""

    for name in names:
        value = os.getenv(name)
        if value is not None and value.strip():
            return value.strip()
    return default


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse a boolean environment variable value."""

    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_int(names: Iterable[str], default: int) -> int:
    names = tuple(names)
    raw = _first_env(names)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{names[0]} must be an integer, got {raw!r}") from exc


def _parse_float(names: Iterable[str], default: float) -> float:
    names = tuple(names)
    raw = _first_env(names)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{names[0]} must be a number, got {raw!r}") from exc


class Config:
    """Load and validate configuration from environment variables."""

    def __init__(self) -> None:
        # Main project: users, chat tables, system_configs
        self.SUPABASE_URL: str = _first_env(
            ("ODDSFLOW_SUPABASE_URL", "SUPABASE_URL", "VITE_SUPABASE_URL"),
            default="",
        )
        self.SUPABASE_KEY: str = _first_env(
            (
                "ODDSFLOW_SUPABASE_KEY",
                "SUPABASE_ANON_KEY",
                "VITE_SUPABASE_ANON_KEY",
            ),
            default="",
        )

        # Odds project: handicap / over-under / moneyline signal tables
        self.ODDS_SUPABASE_URL: str = _first_env(
            (
                "ODDSFLOW_ODDS_SUPABASE_URL",
                "ODDS_SUPABASE_URL",
                "NEXT_PUBLIC_ODDS_SUPABASE_URL",
                "VITE_ODDS_SUPABASE_URL",
            ),
            default="",
        )
        self.ODDS_SUPABASE_KEY: str = _first_env(
            (
                "ODDSFLOW_ODDS_SUPABASE_KEY",
                "ODDS_SUPABASE_KEY",
                "NEXT_PUBLIC_ODDS_SUPABASE_KEY",
                "VITE_ODDS_SUPABASE_KEY",
            ),
            default="",
        )

        self.REDIS_HOST: str = _first_env(
            ("ODDSFLOW_REDIS_HOST", "REDIS_HOST"),
            default="redis",
        )
        self.REDIS_PORT: int = _parse_int(
            ("ODDSFLOW_REDIS_PORT", "REDIS_PORT"), 6379
        )
        self.REDIS_DB: int = _parse_int(("ODDSFLOW_REDIS_DB", "REDIS_DB"), 0)
        self.REDIS_PASS: str = _first_env(
            ("ODDSFLOW_REDIS_PASS", "REDIS_PASS"),
            default="",
        )

        self.DEBUG: bool = _parse_bool(
            _first_env(("ODDSFLOW_DEBUG", "DEBUG")),
            default=False,
        )

        # Telegram launcher bot and Mini App
        self.BOT_TOKEN: str = _first_env(
            ("ODDSFLOW_BOT_TOKEN", "TELEGRAM_BOT_TOKEN", "BOT_TOKEN"),
            default="",
        )
        self.MINIAPP_URL: str = _first_env(
            ("ODDSFLOW_MINIAPP_URL", "MINIAPP_URL"),
            default="",
        )

        # Mini App sessions; tokens are signed with the bot token when no
        # dedicated secret is set
        self.JWT_SECRET: str = _first_env(
            ("ODDSFLOW_JWT_SECRET", "TELEGRAM_JWT_SECRET"),
            default=self.BOT_TOKEN,
        )
        self.JWT_TTL: int = max(
            _parse_int(("ODDSFLOW_JWT_TTL", "TELEGRAM_JWT_TTL"), 900), 60
        )
        self.INITDATA_MAX_AGE: int = max(
            _parse_int(
                ("ODDSFLOW_INITDATA_MAX_AGE", "TELEGRAM_INITDATA_MAX_AGE"), 600
            ),
            0,
        )

        # Feed behaviour; 0 keeps each feed's own limit
        self.FEED_LIMIT: int = _parse_int(("ODDSFLOW_FEED_LIMIT",), 0)
        self.BACKOFF_BASE: float = _parse_float(
            ("ODDSFLOW_BACKOFF_BASE",), 1.0
        )
        self.BACKOFF_FACTOR: float = _parse_float(
            ("ODDSFLOW_BACKOFF_FACTOR",), 2.0
        )
        self.BACKOFF_MAX: float = _parse_float(("ODDSFLOW_BACKOFF_MAX",), 30.0)
        self.BACKOFF_JITTER: float = _parse_float(
            ("ODDSFLOW_BACKOFF_JITTER",), 0.2
        )
        self.RESYNC_AFTER: float = _parse_float(
            ("ODDSFLOW_RESYNC_AFTER",), 5.0
        )

        extra_origins = _first_env(
            ("ODDSFLOW_CORS_ORIGINS", "CORS_ORIGINS"), default=""
        )
        origins = [o.strip() for o in extra_origins.split(",") if o.strip()]
        if self.MINIAPP_URL:
            origins.insert(0, self.MINIAPP_URL.rstrip("/"))
        self.CORS_ORIGINS: List[str] = list(
            dict.fromkeys(DEFAULT_CORS_ORIGINS + origins)
        )

    @property
    def backend_credentials(self) -> Dict[str, tuple]:
        """Return ``{backend name: (url, key)}`` for configured projects."""

        projects: Dict[str, tuple] = {}
        if self.SUPABASE_URL and self.SUPABASE_KEY:
            projects["main"] = (self.SUPABASE_URL, self.SUPABASE_KEY)
        if self.ODDS_SUPABASE_URL and self.ODDS_SUPABASE_KEY:
            projects["odds"] = (self.ODDS_SUPABASE_URL, self.ODDS_SUPABASE_KEY)
        return projects

    def validate(self) -> None:
        """Validate settings shared by every entry point."""

        if bool(self.SUPABASE_URL) != bool(self.SUPABASE_KEY):
            raise ValueError(
                "ODDSFLOW_SUPABASE_URL and ODDSFLOW_SUPABASE_KEY must be set together"
            )
        if bool(self.ODDS_SUPABASE_URL) != bool(self.ODDS_SUPABASE_KEY):
            raise ValueError(
                "ODDSFLOW_ODDS_SUPABASE_URL and ODDSFLOW_ODDS_SUPABASE_KEY "
                "must be set together"
            )
        if self.FEED_LIMIT < 0:
            raise ValueError("ODDSFLOW_FEED_LIMIT must not be negative")
        if self.BACKOFF_BASE <= 0 or self.BACKOFF_MAX < self.BACKOFF_BASE:
            raise ValueError(
                "ODDSFLOW_BACKOFF_BASE must be positive and not exceed "
                "ODDSFLOW_BACKOFF_MAX"
            )
        if self.BACKOFF_FACTOR < 1:
            raise ValueError("ODDSFLOW_BACKOFF_FACTOR must be at least 1")
        if not 0 <= self.BACKOFF_JITTER < 1:
            raise ValueError("ODDSFLOW_BACKOFF_JITTER must be in [0, 1)")
        if self.REDIS_PORT < 1 or self.REDIS_PORT > 65535:
            raise ValueError(f"Invalid Redis port: {self.REDIS_PORT}")

    def validate_bot(self) -> None:
        """Validate settings required by the launcher bot."""

        self.validate()
        if not self.BOT_TOKEN:
            raise ValueError("ODDSFLOW_BOT_TOKEN required for the launcher bot")
        if not self.MINIAPP_URL.startswith("https://"):
            raise ValueError(
                "ODDSFLOW_MINIAPP_URL must be an https:// URL for Telegram WebApps"
            )
