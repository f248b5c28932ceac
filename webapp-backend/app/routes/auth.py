from fastapi import APIRouter, Depends

from app.auth import UserContext, create_user_jwt, require_telegram_user
from app.dependencies import get_config
from app.models import TokenResponse, UserResponse
from oddsflow.config import Config

router = APIRouter(tags=["auth"])


@router.post("/auth/exchange", response_model=TokenResponse)
async def exchange_token(
    user: UserContext = Depends(require_telegram_user),
    config: Config = Depends(get_config),
):
    """Trade validated initData for a short-lived bearer token."""
    return TokenResponse(
        token=create_user_jwt(user, secret=config.JWT_SECRET, ttl_seconds=config.JWT_TTL),
        expires_in=config.JWT_TTL,
        user_id=user.id,
        username=user.display_name,
    )


@router.get("/me", response_model=UserResponse)
async def get_me(user: UserContext = Depends(require_telegram_user)):
    """Get current user info"""
    return UserResponse(
        id=user.id,
        username=user.username,
        display_name=user.display_name,
        lang=user.lang,
        photo_url=user.photo_url,
    )
