# webapp-backend/app/main.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from app.routes import auth, feeds, health
from app.websocket_manager import websocket_endpoint
from oddsflow.backend import BackendRegistry
from oddsflow.config import Config
from oddsflow.kvstore import ResilientKV, ensure_kv

log = logging.getLogger("app.main")
logging.basicConfig(level=logging.INFO)


def create_app(
    config: Optional[Config] = None,
    backends: Optional[BackendRegistry] = None,
    kv=None,
) -> FastAPI:
    """Build the API; ``backends`` and ``kv`` are created at startup when omitted."""

    config = config or Config()
    config.validate()

    app = FastAPI(title="OddsFlow Radar API", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "X-Telegram-Init-Data", "Content-Type"],
        allow_credentials=True,
    )
    app.state.config = config
    app.state.backends = backends
    app.state.kv = ensure_kv(kv) if kv is not None else None

    # ---- Core router (mounted at / and /api) ----
    router = APIRouter()
    router.include_router(health.router)
    router.include_router(auth.router)
    router.include_router(feeds.router)
    app.include_router(router)
    app.include_router(router, prefix="/api")

    @app.websocket("/ws/feeds/{feed}")
    async def feed_socket(websocket: WebSocket, feed: str):
        await websocket_endpoint(websocket, feed)

    @app.on_event("startup")
    async def connect_backends():
        if app.state.kv is None:
            app.state.kv = ResilientKV.from_config(config)
        if app.state.backends is None:
            app.state.backends = await BackendRegistry.from_credentials(
                config.backend_credentials
            )
        log.info("🔌 Backends: %s", app.state.backends.names() or "none")

    @app.on_event("shutdown")
    async def close_kv():
        if app.state.kv is not None:
            await app.state.kv.close()

    # ---- Startup log of routes (for your diagnostics) ----
    @app.on_event("startup")
    async def show_routes():
        log.info("📡 Routes registered:")
        for r in app.router.routes:
            methods = getattr(r, "methods", {"GET"})
            path = getattr(r, "path", "")
            log.info("  %s %s", methods, path)

    log.info("🚀 OddsFlow Radar API starting...")
    log.info("📍 CORS origins: %s", config.CORS_ORIGINS)
    return app
