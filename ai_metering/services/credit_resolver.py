"""
Credit resolver — the monthly AI credit allowance included in a user's plan.

The allowance is an injected capability (`CreditResolver`) so the billing
module behind it can be swapped or stubbed without coupling the limit engine
to its schema. `PlanCreditResolver` is the database-backed default.

Failure mode: any lookup error degrades to zero included credits. A broken
billing lookup must never grant free AI spend.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Protocol

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ai_metering.models.plan import SubscriptionPlan
from ai_metering.models.user import User

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")

# Subscription states that still entitle the user to plan features.
ACTIVE_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing", "past_due"})


class CreditLookupError(Exception):
    """Raised by a resolver when the plan allowance cannot be determined."""


class CreditResolver(Protocol):
    """Anything that can tell how many EUR of AI usage a user's plan includes."""

    async def resolve_included_credits(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
    ) -> Decimal: ...


class PlanCreditResolver:
    """Resolve the allowance from the user's Stripe price → subscription plan."""

    async def resolve_included_credits(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
    ) -> Decimal:
        try:
            return await self._lookup(session, user_id)
        except SQLAlchemyError:
            await session.rollback()
            logger.warning(
                "Included-credit lookup failed for user %s; assuming €0",
                user_id,
                exc_info=True,
            )
            return _ZERO

    async def _lookup(self, session: AsyncSession, user_id: uuid.UUID) -> Decimal:
        stmt = select(User.stripe_price_id, User.subscription_status).where(
            User.id == user_id
        )
        row = (await session.execute(stmt)).one_or_none()

        if row is None or not row.stripe_price_id:
            return _ZERO  # no plan
        if row.subscription_status not in ACTIVE_SUBSCRIPTION_STATUSES:
            return _ZERO

        price_id = row.stripe_price_id
        stmt = (
            select(SubscriptionPlan.included_ai_credits_eur)
            .where(
                or_(
                    SubscriptionPlan.stripe_price_monthly == price_id,
                    SubscriptionPlan.stripe_price_quarterly == price_id,
                    SubscriptionPlan.stripe_price_six_months == price_id,
                    SubscriptionPlan.stripe_price_yearly == price_id,
                ),
                # Retired plans grant nothing, even to users still on their price.
                SubscriptionPlan.is_active.is_(True),
            )
            .limit(1)
        )
        credits = (await session.execute(stmt)).scalar_one_or_none()
        if credits is None:
            return _ZERO
        return max(_ZERO, Decimal(credits))


async def resolve_included_credits_safely(
    resolver: CreditResolver,
    session: AsyncSession,
    user_id: uuid.UUID,
) -> Decimal:
    """Call any resolver, degrading to €0 if it reports a lookup failure."""
    try:
        return await resolver.resolve_included_credits(session, user_id)
    except CreditLookupError:
        logger.warning(
            "Credit resolver unavailable for user %s; assuming €0", user_id,
            exc_info=True,
        )
        return _ZERO


_default_resolver = PlanCreditResolver()


def get_credit_resolver() -> CreditResolver:
    """FastAPI dependency — override in tests or when billing moves out."""
    return _default_resolver
