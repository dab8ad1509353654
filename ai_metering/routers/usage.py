"""
Usage router — AI usage telemetry and the dashboard overview.

POST /usage/events
  1. Authenticates via API key.
  2. Validates the payload (Pydantic).
  3. Records the event (cost computed server-side when omitted).
  4. Re-evaluates the budget and splits the charge into
     included credits vs overage.
  5. Returns the stored record plus the budget impact, 201 Created.

  Recording is post-flight: the work already happened, so a hard limit
  never rejects it. Use GET /spending-limit/check before the AI call.

GET /usage
  Trailing-window breakdown by feature, model and day, plus recent activity.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ai_metering.auth.dependencies import AuthContext, get_current_user
from ai_metering.core.database import get_db_session
from ai_metering.schemas.usage import UsageEventCreate, UsageOverview, UsageTrackResponse
from ai_metering.services.aggregator import usage_overview
from ai_metering.services.credit_resolver import CreditResolver, get_credit_resolver
from ai_metering.services.metering import track_usage

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Usage"])

# Type aliases for cleaner signatures
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Auth = Annotated[AuthContext, Depends(get_current_user)]
Resolver = Annotated[CreditResolver, Depends(get_credit_resolver)]


@router.post(
    "/events",
    response_model=UsageTrackResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a single AI usage event",
    description=(
        "Persists the usage event for the authenticated user and reports "
        "how much of it was covered by included credits and how much is overage. "
        "Events are recorded even when a hard limit has been reached."
    ),
)
async def record_usage_event(
    payload: UsageEventCreate,
    session: DbSession,
    auth: Auth,
    resolver: Resolver,
) -> UsageTrackResponse:
    try:
        result = await track_usage(session, auth.user_id, payload, resolver)
    except ValueError as exc:
        # Unknown model and no explicit cost
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    except SQLAlchemyError:
        # Only the recording step propagates; nothing was stored.
        await session.rollback()
        logger.exception("Failed to record usage event for user %s", auth.user_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store the usage event. Please try again.",
        )

    snapshot = result.snapshot
    return UsageTrackResponse(
        event=result.event,
        price_eur=result.price_eur,
        used_from_included_eur=result.split.used_from_included_eur,
        charged_as_overage_eur=result.split.charged_as_overage_eur,
        current_month_spent_eur=snapshot.current_month_spent_eur if snapshot else None,
        has_hit_limit=snapshot.has_hit_limit if snapshot else False,
        metered=result.metered,
    )


@router.get(
    "",
    response_model=UsageOverview,
    summary="Usage overview for the dashboard",
    description=(
        "Aggregates successful usage over the trailing `days` days: totals, "
        "per-feature and per-model breakdowns, a daily series and the most "
        "recent events."
    ),
)
async def get_usage_overview(
    session: DbSession,
    auth: Auth,
    days: int = Query(default=30, ge=1, le=365),
    limit: int = Query(default=20, ge=1, le=100, description="Recent events to return"),
) -> UsageOverview:
    try:
        overview = await usage_overview(session, auth.user_id, days=days, recent_limit=limit)
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Failed to build usage overview for user %s", auth.user_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load usage. Please try again.",
        )
    return UsageOverview.model_validate(overview)
