from datetime import datetime, timezone

from fastapi import APIRouter, Request

from app.dependencies import get_backends, get_kv

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """Check API, Redis and configured backends."""
    kv = get_kv(request)
    try:
        await kv.ping()
        redis_status = "fallback" if kv.using_fallback else "ok"
    except Exception as e:
        redis_status = f"error: {str(e)}"

    return {
        "status": "ok",
        "redis": redis_status,
        "backends": get_backends(request).names(),
        "time": datetime.now(timezone.utc).isoformat(),
        "version": "1.0.0",
    }
