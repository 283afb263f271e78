import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from luxbroker.config import settings
from luxbroker.core.async_tasks import drain_background_tasks, run_periodic
from luxbroker.core.kv_store import get_kv_store
from luxbroker.core.log_redaction import install_redaction
from luxbroker.core.nonce_store import get_nonce_store
from luxbroker.core.rate_limiter import get_rate_limiter
from luxbroker.database import dispose_engine, init_db
from luxbroker.models import *  # noqa: F403
from luxbroker.services.tier_service import configure_tier_table

APP_VERSION = "0.1.0"
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup: logging, tables, tier table, sweepers
    logging.basicConfig(level=settings.log_level.upper())
    install_redaction()
    await init_db()
    tiers = configure_tier_table()
    logger.info("Tier table: %s", ", ".join(t.name for t in tiers))

    nonce_store = get_nonce_store()
    rate_limiter = get_rate_limiter()
    sweepers = [
        asyncio.create_task(
            run_periodic("nonce_sweep", settings.nonce_sweep_interval_seconds, nonce_store.sweep)
        ),
        asyncio.create_task(
            run_periodic("rate_limit_sweep", settings.rate_limit_sweep_interval_seconds, rate_limiter.sweep)
        ),
    ]

    yield

    # Shutdown: stop sweepers, let pending deliveries finish, release connections
    for task in sweepers:
        task.cancel()
    await asyncio.gather(*sweepers, return_exceptions=True)
    await drain_background_tasks(timeout_seconds=5.0)
    await get_kv_store().close()
    await dispose_engine()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Content-Security-Policy"] = "default-src 'none'; img-src 'self' data:"
        response.headers["Permissions-Policy"] = (
            "camera=(), microphone=(), geolocation=(), payment=(), usb=()"
        )
        return response


def create_app() -> FastAPI:
    app = FastAPI(
        title="LuxBroker Affiliate Core",
        description="Referral attribution, commission ledger and request authorization",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    # CORS configurable via CORS_ORIGINS env var
    allowed_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Rate limiting
    from luxbroker.core.rate_limit_middleware import RateLimitMiddleware

    app.add_middleware(RateLimitMiddleware)

    # Security headers
    app.add_middleware(SecurityHeadersMiddleware)

    # Register REST routers
    from luxbroker.api import API_PREFIX, API_ROUTERS

    for router in API_ROUTERS:
        app.include_router(router, prefix=API_PREFIX)

    @app.get("/")
    async def root() -> dict[str, str]:
        return {
            "name": "LuxBroker Affiliate Core",
            "version": APP_VERSION,
            "docs": "/docs",
            "health": f"{API_PREFIX}/health",
        }

    return app


app = create_app()
