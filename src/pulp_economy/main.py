"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from pulp_economy.advantages.router import router as advantages_router
from pulp_economy.advantages.seed import seed_advantage_catalog
from pulp_economy.blessings.router import router as blessings_router
from pulp_economy.challenges.router import router as challenges_router
from pulp_economy.config import get_settings
from pulp_economy.database import close_db, get_session, init_db
from pulp_economy.health.router import router as health_router
from pulp_economy.ledger.router import router as ledger_router
from pulp_economy.middleware import setup_middleware
from pulp_economy.redis_client import close_redis, init_redis
from pulp_economy.settlement.router import router as settlement_router
from pulp_economy.windows.router import router as windows_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(
        settings.database_url,
        pool_timeout=settings.db_pool_timeout_seconds,
        command_timeout=settings.db_command_timeout_seconds,
    )
    await init_redis(settings.redis_url)

    # Seed the advantage catalog (idempotent)
    try:
        async for db in get_session():
            await seed_advantage_catalog(db)
            break
    except Exception:
        logger.warning("Advantage catalog seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="PULP Economy API",
        description="PULP ledger, PULPy windows, blessings, challenges and the advantage shop",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(windows_router)
    app.include_router(blessings_router)
    app.include_router(challenges_router)
    app.include_router(advantages_router)
    app.include_router(ledger_router)
    app.include_router(settlement_router)

    return app


app = create_app()
