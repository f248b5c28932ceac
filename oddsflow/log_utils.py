"""Structured logging helper shared by the feed components."""

from __future__ import annotations

import logging
from typing import Any, Iterable

__all__ = ["LoggerHelper"]


class LoggerHelper:
    """Format log records as ``<emoji> [Event] message | key=value``."""

    _PREFIXES = {
        "debug": "🧪",
        "info": "📡",
        "warning": "⚠️",
        "error": "❌",
    }

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @classmethod
    def for_logger(cls, logger: logging.Logger) -> "LoggerHelper":
        """Return a helper instance bound to *logger*."""

        return cls(logger)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @staticmethod
    def _compose(message: str | None, items: Iterable[tuple[str, Any]]) -> str:
        parts: list[str] = []
        if message:
            parts.append(str(message))
        formatted = ", ".join(f"{key}={value}" for key, value in items)
        if formatted:
            parts.append(formatted)
        return " | ".join(parts) if parts else "-"

    def _log(
        self,
        level: str,
        event: str,
        message: str | None,
        kwargs: dict[str, Any],
    ) -> None:
        if not self._logger.isEnabledFor(getattr(logging, level.upper())):
            return

        log_kwargs: dict[str, Any] = {}
        for key in ("exc_info", "stack_info", "extra"):
            if key in kwargs:
                log_kwargs[key] = kwargs.pop(key)

        payload = self._compose(message, kwargs.items())
        getattr(self._logger, level)(
            f"{self._PREFIXES[level]} [%s] %s",
            event,
            payload,
            **log_kwargs,
        )

    def debug(self, event: str, message: str | None = None, **kwargs: Any) -> None:
        self._log("debug", event, message, kwargs)

    def info(self, event: str, message: str | None = None, **kwargs: Any) -> None:
        self._log("info", event, message, kwargs)

    def warn(self, event: str, message: str | None = None, **kwargs: Any) -> None:
        self._log("warning", event, message, kwargs)

    def error(self, event: str, message: str | None = None, **kwargs: Any) -> None:
        self._log("error", event, message, kwargs)
