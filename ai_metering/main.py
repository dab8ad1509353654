"""
FastAPI application entrypoint.

Lifespan:
  • On startup: verify DB connectivity.
  • On shutdown: dispose the engine cleanly.

Routers:
  • /usage — usage event recording and the dashboard overview
  • /spending-limit — monthly budget, settings and pre-flight check
  • /health — shallow liveness probe
"""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ai_metering.core.config import settings
from ai_metering.core.database import engine
from ai_metering.routers.spending_limit import router as spending_limit_router
from ai_metering.routers.usage import router as usage_router

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan ────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""

    # Startup — verify DB is reachable
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection verified ✓")
    except (SQLAlchemyError, OSError):
        logger.warning(
            "Could not reach the database on startup. "
            "The app will start, but requests will fail until the DB is available."
        )

    yield  # ← application runs here

    # Shutdown — clean up connection pool
    await engine.dispose()
    logger.info("Database engine disposed ✓")


# ── App ─────────────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    description=(
        "AI usage metering and monthly spending limits — "
        "usage events, included plan credits, overage and hard limits."
    ),
    lifespan=lifespan,
)

# Mount routers
app.include_router(usage_router, prefix="/usage")
app.include_router(spending_limit_router, prefix="/spending-limit")


# ── Health check ────────────────────────────────────────────
@app.get(
    "/health",
    tags=["System"],
    summary="Liveness probe",
)
async def health_check() -> dict[str, str]:
    """Shallow health check — confirms the process is alive."""
    return {"status": "healthy", "environment": settings.ENVIRONMENT}
