"""FastAPI application wiring for the account authentication service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

import redis
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from psycopg_pool import ConnectionPool

from .api.dependencies import install_auth_handlers
from .api.routes import router as accounts_router
from .config import get_settings
from .domain.service import AuthenticationService
from .repository import AccountRepository
from .security.cipher import PasswordCipher
from .security.identity_cache import RequestIdentityCache
from .security.session_store import SessionStore

settings = get_settings()

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, Redis, services) for the app lifecycle."""
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    cache = redis.from_url(settings.redis_url)
    cipher = PasswordCipher(settings.encryption_key or None)
    if not cipher.configured:
        logger.warning("ENCRYPTION_KEY is not set; user passwords cannot be stored or verified")
    app.state.pool = pool
    app.state.auth_service = AuthenticationService(
        AccountRepository(pool),
        SessionStore(
            cache,
            ttl=timedelta(seconds=settings.session_ttl_seconds),
            key_prefix=settings.session_cache_prefix,
        ),
        RequestIdentityCache(),
        cipher,
        persist_touch=settings.session_persist_on_touch,
    )
    try:
        yield
    finally:
        cache.close()
        pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[settings.session_header],
    max_age=600,
)

install_auth_handlers(app)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


app.include_router(accounts_router)


# Prometheus metrics endpoint for Prometheus scrapes
try:
    from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
except Exception:  # pragma: no cover - metrics are optional in dev
    pass
