"""
Spending-limit router — the user's monthly AI budget.

Endpoints:
  GET   /spending-limit        — limit, usage, included credits, overage, alerts
  PATCH /spending-limit        — partial update of limit / threshold / hard flag
  GET   /spending-limit/check  — pre-flight check used by AI entry points

All figures are in EUR. The JSON contract is camelCase.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ai_metering.auth.dependencies import AuthContext, get_current_user
from ai_metering.auth.spending_guard import BudgetContext, enforce_spending_limit
from ai_metering.core.database import get_db_session
from ai_metering.models.spending_limit import SpendingLimit
from ai_metering.schemas.spending_limit import (
    AlertsOut,
    ExtraUsageOut,
    IncludedCreditsOut,
    LimitOut,
    PeriodOut,
    SpendingCheckOut,
    SpendingLimitStatus,
    SpendingLimitUpdate,
    SpendingLimitUpdateResponse,
    UsageOut,
)
from ai_metering.services.credit_resolver import CreditResolver, get_credit_resolver
from ai_metering.services.limit_evaluator import UsageSnapshot, evaluate
from ai_metering.services.spending_limits import (
    SpendingLimitValidationError,
    update_limit,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Spending Limit"])

DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Auth = Annotated[AuthContext, Depends(get_current_user)]
Resolver = Annotated[CreditResolver, Depends(get_credit_resolver)]
Budget = Annotated[BudgetContext, Depends(enforce_spending_limit)]


def _limit_out(limit: SpendingLimit | UsageSnapshot) -> LimitOut:
    # Both carry the same three limit fields.
    return LimitOut(
        monthly_limit_eur=limit.monthly_limit_eur,
        alert_threshold=limit.alert_threshold_percent,
        hard_limit=limit.hard_limit,
    )


def _status_out(snapshot: UsageSnapshot) -> SpendingLimitStatus:
    return SpendingLimitStatus(
        limit=_limit_out(snapshot),
        usage=UsageOut(
            current_month_spent_eur=snapshot.current_month_spent_eur,
            remaining_eur=snapshot.remaining_eur,
            percentage_used=snapshot.percentage_used,
            is_near_limit=snapshot.is_near_limit,
            has_hit_limit=snapshot.has_hit_limit,
        ),
        included_credits=IncludedCreditsOut(
            total_eur=snapshot.included_credits_total_eur,
            remaining_eur=snapshot.included_credits_remaining_eur,
            used_eur=snapshot.included_credits_used_eur,
            percentage_used=snapshot.included_credits_percentage_used,
        ),
        extra_usage=ExtraUsageOut(
            charged_eur=snapshot.extra_usage_charged_eur,
            has_extra_usage=snapshot.has_extra_usage,
        ),
        alerts=AlertsOut(
            alert_sent_at=snapshot.alert_sent_at,
            limit_hit_at=snapshot.limit_hit_at,
        ),
        period=PeriodOut(start=snapshot.period_start, end=snapshot.period_end),
    )


# ── 1. Current status ──────────────────────────────────────
@router.get(
    "",
    response_model=SpendingLimitStatus,
    summary="Current spending limit and usage",
    description=(
        "Returns the user's monthly limit, this month's spend, included "
        "plan credits and overage. Creates the default limit on first access."
    ),
)
async def get_spending_limit(
    session: DbSession,
    auth: Auth,
    resolver: Resolver,
) -> SpendingLimitStatus:
    try:
        snapshot = await evaluate(session, auth.user_id, resolver)
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Failed to load spending limit for user %s", auth.user_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load the spending limit. Please try again.",
        )
    return _status_out(snapshot)


# ── 2. Update ──────────────────────────────────────────────
@router.patch(
    "",
    response_model=SpendingLimitUpdateResponse,
    summary="Update the spending limit",
    description=(
        "Partial update. Raising the monthly limit clears previous alert and "
        "limit-hit markers. Out-of-range values are rejected with 400."
    ),
)
async def patch_spending_limit(
    payload: SpendingLimitUpdate,
    session: DbSession,
    auth: Auth,
) -> SpendingLimitUpdateResponse:
    try:
        limit = await update_limit(
            session,
            auth.user_id,
            monthly_limit_eur=payload.monthly_limit_eur,
            alert_threshold_percent=payload.alert_threshold,
            hard_limit=payload.hard_limit,
        )
    except SpendingLimitValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Failed to update spending limit for user %s", auth.user_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save the spending limit. Please try again.",
        )

    return SpendingLimitUpdateResponse(message="Settings saved", limit=_limit_out(limit))


# ── 3. Pre-flight check ────────────────────────────────────
@router.get(
    "/check",
    response_model=SpendingCheckOut,
    summary="May the user start an AI operation?",
    description=(
        "Returns 200 when AI usage is allowed. Returns 402 when a hard "
        "limit has been reached. Soft limits never block."
    ),
    responses={status.HTTP_402_PAYMENT_REQUIRED: {"description": "Hard limit reached"}},
)
async def check_spending_limit(budget: Budget) -> SpendingCheckOut:
    snapshot = budget.snapshot
    return SpendingCheckOut(
        allowed=True,
        remaining_eur=snapshot.remaining_eur,
        percentage_used=snapshot.percentage_used,
        is_near_limit=snapshot.is_near_limit,
        hard_limit=snapshot.hard_limit,
    )
