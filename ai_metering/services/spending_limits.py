"""
Spending limit store and monthly reset trigger.

IDEMPOTENCY:
  • get_or_create() relies on the UNIQUE(user_id) constraint. The loser of a
    concurrent create rolls back and reads the winner's row.
  • apply_monthly_reset() is a conditional UPDATE … WHERE last_reset_at =
    <value we read>. Two callers racing into a new month both see
    reset_needed(); only the first UPDATE matches, the second is a no-op and
    simply reloads the row. No double reset, no lost spend.
  • mark_threshold_crossings() stamps markers with WHERE … IS NULL, so the
    first stamp in a month wins.

There is no scheduler: the reset runs lazily on the first read after a
month boundary.
"""

from __future__ import annotations

import datetime
import logging
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ai_metering.core.config import settings
from ai_metering.models.spending_limit import SpendingLimit
from ai_metering.services.period import reset_needed, utcnow

if TYPE_CHECKING:
    from ai_metering.services.limit_evaluator import UsageSnapshot

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


class SpendingLimitValidationError(ValueError):
    """Raised when a limit or threshold is outside its allowed range."""


async def get_limit(session: AsyncSession, user_id: uuid.UUID) -> SpendingLimit | None:
    # populate_existing: conditional UPDATEs bypass the identity map,
    # so always take the stored values.
    stmt = (
        select(SpendingLimit)
        .where(SpendingLimit.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def get_or_create(
    session: AsyncSession,
    user_id: uuid.UUID,
    now: datetime.datetime | None = None,
) -> SpendingLimit:
    """Return the user's spending limit, creating the defaults on first access."""
    limit = await get_limit(session, user_id)
    if limit is not None:
        return limit

    limit = SpendingLimit(
        user_id=user_id,
        monthly_limit_eur=settings.DEFAULT_MONTHLY_LIMIT_EUR,
        alert_threshold_percent=settings.DEFAULT_ALERT_THRESHOLD_PERCENT,
        hard_limit=False,
        current_month_spent_eur=_ZERO,
        last_reset_at=now or utcnow(),
    )
    session.add(limit)
    try:
        await session.commit()
    except IntegrityError:
        # Another request created it first; use theirs.
        await session.rollback()
        limit = await get_limit(session, user_id)
        if limit is None:
            raise
        return limit

    await session.refresh(limit)
    logger.info("Created default spending limit for user %s", user_id)
    return limit


def validate_limit_changes(
    monthly_limit_eur: Decimal | None = None,
    alert_threshold_percent: int | None = None,
) -> None:
    """Raise SpendingLimitValidationError for out-of-range values."""
    if monthly_limit_eur is not None and not (
        _ZERO <= monthly_limit_eur <= settings.MAX_MONTHLY_LIMIT_EUR
    ):
        raise SpendingLimitValidationError(
            f"Monthly limit must be between 0 and "
            f"{settings.MAX_MONTHLY_LIMIT_EUR:,.0f} EUR."
        )
    if alert_threshold_percent is not None and not (0 <= alert_threshold_percent <= 100):
        raise SpendingLimitValidationError(
            "Alert threshold must be between 0 and 100 percent."
        )


async def update_limit(
    session: AsyncSession,
    user_id: uuid.UUID,
    monthly_limit_eur: Decimal | None = None,
    alert_threshold_percent: int | None = None,
    hard_limit: bool | None = None,
) -> SpendingLimit:
    """
    Apply a partial update to the user's limit.

    Raising the monthly limit clears alert_sent_at / limit_hit_at: the user
    has relaxed the constraint, so old warnings no longer apply. Lowering it
    keeps them.

    Raises:
        SpendingLimitValidationError: a value is out of range. Nothing is
            written in that case.
    """
    validate_limit_changes(monthly_limit_eur, alert_threshold_percent)

    limit = await get_or_create(session, user_id)

    if monthly_limit_eur is not None:
        if monthly_limit_eur > limit.monthly_limit_eur:
            limit.alert_sent_at = None
            limit.limit_hit_at = None
        limit.monthly_limit_eur = monthly_limit_eur

    if alert_threshold_percent is not None:
        limit.alert_threshold_percent = alert_threshold_percent

    if hard_limit is not None:
        limit.hard_limit = hard_limit

    await session.commit()
    await session.refresh(limit)
    logger.info(
        "Spending limit updated: user=%s limit=€%s threshold=%d%% hard=%s",
        user_id, limit.monthly_limit_eur, limit.alert_threshold_percent,
        limit.hard_limit,
    )
    return limit


async def apply_monthly_reset(
    session: AsyncSession,
    limit: SpendingLimit,
    now: datetime.datetime | None = None,
) -> bool:
    """
    Reset the monthly fields if a month boundary was crossed.

    Returns True when this call performed the reset. `limit` is reloaded
    afterwards either way, so it always reflects the stored row.
    """
    now = now or utcnow()
    if not reset_needed(now, limit.last_reset_at):
        return False

    stmt = (
        update(SpendingLimit)
        .where(
            SpendingLimit.id == limit.id,
            SpendingLimit.last_reset_at == limit.last_reset_at,
        )
        .values(
            current_month_spent_eur=_ZERO,
            last_reset_at=now,
            alert_sent_at=None,
            limit_hit_at=None,
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()
    await session.refresh(limit)

    if result.rowcount:
        logger.info("Monthly spending reset for user %s", limit.user_id)
        return True

    logger.debug("Monthly reset for user %s already applied", limit.user_id)
    return False


async def mark_threshold_crossings(
    session: AsyncSession,
    user_id: uuid.UUID,
    snapshot: UsageSnapshot,
    now: datetime.datetime | None = None,
) -> None:
    """Stamp alert_sent_at / limit_hit_at the first time each is reached."""
    now = now or utcnow()
    stamped = False

    if snapshot.is_near_limit and snapshot.alert_sent_at is None:
        await session.execute(
            update(SpendingLimit)
            .where(
                SpendingLimit.user_id == user_id,
                SpendingLimit.alert_sent_at.is_(None),
            )
            .values(alert_sent_at=now)
            .execution_options(synchronize_session=False)
        )
        stamped = True
        logger.info("Spending alert threshold reached for user %s", user_id)

    if snapshot.has_hit_limit and snapshot.limit_hit_at is None:
        await session.execute(
            update(SpendingLimit)
            .where(
                SpendingLimit.user_id == user_id,
                SpendingLimit.limit_hit_at.is_(None),
            )
            .values(limit_hit_at=now)
            .execution_options(synchronize_session=False)
        )
        stamped = True
        logger.warning("Hard spending limit hit for user %s", user_id)

    if stamped:
        await session.commit()
