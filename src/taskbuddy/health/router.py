"""Liveness, readiness and version endpoints.

``/ready`` checks what a ledger write needs: the database, the ledger
tables, the migrated schema revision and Redis for event delivery.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from taskbuddy.config import get_settings
from taskbuddy.database import get_session
from taskbuddy.db.models import Achievement, ChildProgress
from taskbuddy.redis_client import ping_redis

router = APIRouter()

# Alembic head this build expects.
SCHEMA_REVISION = "002_achievements"


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness check."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    checks: dict[str, str] = {}
    ledger: dict[str, int] = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    try:
        ledger["accounts"] = (await db.execute(select(func.count()).select_from(ChildProgress))).scalar_one()
        ledger["achievements"] = (await db.execute(select(func.count()).select_from(Achievement))).scalar_one()
        checks["ledger"] = "ok"
    except Exception as exc:
        checks["ledger"] = f"error: {exc}"

    # Last: on PostgreSQL a failed statement aborts the rest of the transaction.
    try:
        revision = (await db.execute(text("SELECT version_num FROM alembic_version"))).scalar_one_or_none()
        checks["schema"] = "ok" if revision == SCHEMA_REVISION else f"error: at {revision}, expected {SCHEMA_REVISION}"
    except Exception as exc:
        checks["schema"] = f"error: {exc}"

    checks["redis"] = await ping_redis()

    all_ok = all(v == "ok" for v in checks.values())
    return {"status": "ready" if all_ok else "degraded", "checks": checks, "ledger": ledger}


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
        "schema_revision": SCHEMA_REVISION,
    }
