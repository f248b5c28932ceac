"""Authentication helpers for the OddsFlow Radar backend."""

from .telegram import (
    TelegramAuthError,
    UserContext,
    authenticate_credential,
    create_user_jwt,
    decode_user_jwt,
    init_data_hash,
    require_telegram_user,
    validate_init_data,
)

__all__ = [
    "TelegramAuthError",
    "UserContext",
    "authenticate_credential",
    "create_user_jwt",
    "decode_user_jwt",
    "init_data_hash",
    "require_telegram_user",
    "validate_init_data",
]
