"""
FastAPI dependency for pre-flight spending-limit enforcement.

AI entry points depend on `enforce_spending_limit` so that users over a
HARD limit are stopped before a costly AI call is made. Soft-limit users
always pass; their snapshot just carries the near-limit flag.

Order in request pipeline: AUTH → SPENDING LIMIT → ROUTER LOGIC.

On a hard limit, returns 402 Payment Required: the user can continue by
raising the limit, which is a billing decision rather than a retry.
Post-flight usage recording must never use this guard.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ai_metering.auth.dependencies import AuthContext, get_current_user
from ai_metering.core.database import get_db_session
from ai_metering.services.credit_resolver import CreditResolver, get_credit_resolver
from ai_metering.services.limit_evaluator import (
    SpendingLimitReached,
    UsageSnapshot,
    ensure_ai_allowed,
    evaluate,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BudgetContext:
    """AuthContext plus the snapshot the pre-flight decision was based on."""

    auth: AuthContext
    snapshot: UsageSnapshot


async def enforce_spending_limit(
    auth: AuthContext = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    resolver: CreditResolver = Depends(get_credit_resolver),
) -> BudgetContext:
    """Evaluate the user's budget and reject the request on a hard limit."""
    try:
        snapshot = await evaluate(session, auth.user_id, resolver)
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Spending check failed for user %s", auth.user_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check the spending limit. Please try again.",
        )

    try:
        ensure_ai_allowed(snapshot)
    except SpendingLimitReached as exc:
        logger.info("AI request blocked by hard limit for user %s", auth.user_id)
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=str(exc),
        ) from exc

    return BudgetContext(auth=auth, snapshot=snapshot)
