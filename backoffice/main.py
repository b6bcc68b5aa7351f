"""FastAPI application wiring for the back-office service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.routes import admin_router, router
from .config import Settings, get_settings
from .domain.service import AccountService
from .repository import AccountRepository
from .security.auth import SessionMiddleware
from .security.gate import SuspensionGateMiddleware
from .security.redis_sessions import RedisSessionStore
from .security.sessions import MemorySessionStore

logger = logging.getLogger(__name__)

settings = get_settings()


def build_session_store(config: Settings) -> MemorySessionStore | RedisSessionStore:
    """Instantiate the configured session backend, preferring Redis when available."""
    if config.session_backend == "redis" and config.redis_url:
        try:
            import redis

            client = redis.from_url(config.redis_url)
            client.ping()
            logger.info("session store configured for redis backend at %s", config.redis_url)
            return RedisSessionStore(client, ttl_seconds=config.session_ttl_seconds)
        except Exception as exc:  # pragma: no cover - defensive
            logger.warning("redis session store unavailable, falling back to in-memory: %s", exc)

    logger.info("session store using in-memory backend")
    return MemorySessionStore(ttl_seconds=config.session_ttl_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, services, sessions) for the app lifecycle."""
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    repository = AccountRepository(pool)
    repository.apply_schema()
    app.state.pool = pool
    app.state.account_service = AccountService(repository)
    app.state.session_store = build_session_store(settings)
    try:
        yield
    finally:
        pool.close()
        pool.wait_close()


def build_app(lifespan=None) -> FastAPI:
    """Assemble routes and middleware; shared state is installed by ``lifespan``."""
    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

    # the gate reads request.state.auth, so the session middleware wraps it
    app.add_middleware(SuspensionGateMiddleware)
    app.add_middleware(SessionMiddleware)

    @app.get("/healthz", tags=["health"])
    def healthz() -> dict[str, str]:
        """Return a minimal readiness indicator used by orchestration systems."""
        return {"status": "ok"}

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(router)
    app.include_router(admin_router)
    return app


app = build_app(lifespan=lifespan)


def run() -> None:
    """Serve the application with uvicorn using the configured host and port."""
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    uvicorn.run(app, host=settings.http_host, port=settings.http_port)
