"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from taskbuddy.children.router import families_router
from taskbuddy.children.router import router as children_router
from taskbuddy.config import get_settings
from taskbuddy.database import close_db, get_session_factory, init_db
from taskbuddy.gamification.router import router as gamification_router
from taskbuddy.gamification.seed import seed_achievements
from taskbuddy.health.router import router as health_router
from taskbuddy.middleware import setup_middleware
from taskbuddy.redis_client import close_redis, init_redis
from taskbuddy.rewards.router import redemptions_router
from taskbuddy.rewards.router import router as rewards_router
from taskbuddy.tasks.router import router as tasks_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url, max_connections=settings.redis_max_connections)

    # Achievement catalog (idempotent)
    try:
        async with get_session_factory()() as db:
            await seed_achievements(db)
    except Exception:
        logger.warning("Achievement seeding failed (tables may not exist yet)", exc_info=True)

    logger.info("TaskBuddy API %s started (%s)", settings.app_version, settings.environment)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="TaskBuddy Ledger API",
        description="Points, levels, streaks and reward redemption for TaskBuddy families",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(children_router)
    app.include_router(families_router)
    app.include_router(gamification_router)
    app.include_router(rewards_router)
    app.include_router(redemptions_router)
    app.include_router(tasks_router)

    return app


app = create_app()
