"""
Limit evaluator — classifies a user's spend against limit and plan credits.

evaluate() runs, in order:
  1. get-or-create the limit, then the lazy monthly reset
  2. authoritative month spend from usage_events
  3. cache reconciliation (write only when drift > epsilon; a failed write
     is logged and the fresh value is used anyway)
  4. included-credit lookup (degrades to €0)
  5. build_snapshot() — pure derivation of every figure

Percentages: `raw_percentage_used` is unclamped and drives every decision;
`percentage_used` is clamped to [0, 100] for display. Clamping first would
hide spend far beyond the limit.

This module only classifies. Blocking is the AI entry point's decision
(see ensure_ai_allowed); soft-limit users are never blocked.
"""

from __future__ import annotations

import datetime
import logging
import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ai_metering.core.config import settings
from ai_metering.models.spending_limit import SpendingLimit
from ai_metering.services.aggregator import current_month_spend
from ai_metering.services.credit_resolver import (
    CreditResolver,
    resolve_included_credits_safely,
)
from ai_metering.services.period import month_start, next_month_start, utcnow
from ai_metering.services.spending_limits import apply_monthly_reset, get_or_create

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")
_CENT = Decimal("0.01")


class SpendingLimitReached(Exception):
    """Raised when a hard spending limit blocks further AI usage."""


@dataclass(frozen=True, slots=True)
class UsageSnapshot:
    """Point-in-time view of a user's monthly AI spend. Never persisted."""

    monthly_limit_eur: Decimal
    alert_threshold_percent: int
    hard_limit: bool

    current_month_spent_eur: Decimal
    remaining_eur: Decimal
    raw_percentage_used: Decimal
    percentage_used: Decimal
    is_near_limit: bool
    has_hit_limit: bool

    included_credits_total_eur: Decimal
    included_credits_remaining_eur: Decimal
    included_credits_used_eur: Decimal
    included_credits_percentage_used: Decimal
    extra_usage_charged_eur: Decimal

    alert_sent_at: datetime.datetime | None
    limit_hit_at: datetime.datetime | None
    period_start: datetime.datetime
    period_end: datetime.datetime

    @property
    def has_extra_usage(self) -> bool:
        return self.extra_usage_charged_eur > 0


@dataclass(frozen=True, slots=True)
class ChargeSplit:
    """How one new charge divides between included credits and overage."""

    used_from_included_eur: Decimal
    charged_as_overage_eur: Decimal


def _clamp_percent(value: Decimal) -> Decimal:
    return min(_HUNDRED, max(_ZERO, value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def build_snapshot(
    monthly_limit_eur: Decimal,
    alert_threshold_percent: int,
    hard_limit: bool,
    spent_eur: Decimal,
    included_credits_eur: Decimal,
    period_start: datetime.datetime,
    period_end: datetime.datetime,
    alert_sent_at: datetime.datetime | None = None,
    limit_hit_at: datetime.datetime | None = None,
) -> UsageSnapshot:
    """Derive every snapshot figure from spend, limit settings and credits."""
    limit_eur = Decimal(monthly_limit_eur)
    spent = Decimal(spent_eur)
    included = max(_ZERO, Decimal(included_credits_eur))

    if limit_eur > 0:
        raw_pct = spent / limit_eur * _HUNDRED
    else:
        raw_pct = _ZERO

    included_used = min(spent, included)
    if included > 0:
        included_pct = _clamp_percent(included_used / included * _HUNDRED)
    else:
        included_pct = _ZERO

    return UsageSnapshot(
        monthly_limit_eur=limit_eur,
        alert_threshold_percent=alert_threshold_percent,
        hard_limit=hard_limit,
        current_month_spent_eur=spent,
        remaining_eur=max(_ZERO, limit_eur - spent),
        raw_percentage_used=raw_pct,
        percentage_used=_clamp_percent(raw_pct),
        is_near_limit=raw_pct >= alert_threshold_percent,
        has_hit_limit=hard_limit and raw_pct >= _HUNDRED,
        included_credits_total_eur=included,
        included_credits_remaining_eur=max(_ZERO, included - spent),
        included_credits_used_eur=included_used,
        included_credits_percentage_used=included_pct,
        extra_usage_charged_eur=max(_ZERO, spent - included),
        alert_sent_at=alert_sent_at,
        limit_hit_at=limit_hit_at,
        period_start=period_start,
        period_end=period_end,
    )


def split_event_charge(
    spent_before_eur: Decimal,
    event_eur: Decimal,
    included_credits_eur: Decimal,
) -> ChargeSplit:
    """
    Split a new charge into the part covered by included credits and overage.

    Only the overage part is meant for metered billing.
    """
    spent_before = max(_ZERO, Decimal(spent_before_eur))
    event = max(_ZERO, Decimal(event_eur))
    included_left = max(_ZERO, Decimal(included_credits_eur) - spent_before)

    from_included = min(event, included_left)
    return ChargeSplit(
        used_from_included_eur=from_included,
        charged_as_overage_eur=event - from_included,
    )


def ensure_ai_allowed(snapshot: UsageSnapshot) -> None:
    """Raise SpendingLimitReached when a hard limit has been reached."""
    if snapshot.has_hit_limit:
        raise SpendingLimitReached(
            f"Monthly AI spending limit of €{snapshot.monthly_limit_eur} reached. "
            "Raise the limit or disable the hard limit to continue."
        )


async def _reconcile_cached_spend(
    session: AsyncSession,
    user_id: uuid.UUID,
    last_reset_at: datetime.datetime,
    cached_eur: Decimal,
    fresh_eur: Decimal,
) -> None:
    """
    Correct the cached spend when it drifted from the aggregate.

    The write is conditional on `last_reset_at` still being the value read
    alongside `cached_eur`. If a concurrent request reset the row into a new
    month meanwhile, `fresh_eur` belongs to the old month and is dropped.
    """
    if abs(Decimal(cached_eur) - fresh_eur) <= settings.SPEND_RECONCILE_EPSILON_EUR:
        return

    try:
        await session.execute(
            update(SpendingLimit)
            .where(
                SpendingLimit.user_id == user_id,
                SpendingLimit.last_reset_at == last_reset_at,
            )
            .values(current_month_spent_eur=fresh_eur)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        logger.debug(
            "Reconciled cached spend for user %s: €%s → €%s",
            user_id, cached_eur, fresh_eur,
        )
    except SQLAlchemyError:
        await session.rollback()
        logger.warning(
            "Could not persist reconciled spend for user %s; using fresh value",
            user_id,
            exc_info=True,
        )


async def evaluate(
    session: AsyncSession,
    user_id: uuid.UUID,
    resolver: CreditResolver,
    now: datetime.datetime | None = None,
) -> UsageSnapshot:
    """Produce the user's current UsageSnapshot."""
    now = now or utcnow()

    # ── 1. Limit + lazy monthly reset ───────────────────────
    limit = await get_or_create(session, user_id, now)
    await apply_monthly_reset(session, limit, now)

    # Read the row once: a rollback below would expire the instance.
    monthly_limit_eur = limit.monthly_limit_eur
    alert_threshold_percent = limit.alert_threshold_percent
    hard_limit = limit.hard_limit
    cached_eur = limit.current_month_spent_eur
    alert_sent_at = limit.alert_sent_at
    limit_hit_at = limit.limit_hit_at
    last_reset_at = limit.last_reset_at

    # ── 2. Authoritative spend ──────────────────────────────
    spent_eur = await current_month_spend(session, user_id, now)

    # ── 3. Cache reconciliation ─────────────────────────────
    await _reconcile_cached_spend(session, user_id, last_reset_at, cached_eur, spent_eur)

    # ── 4. Included credits ─────────────────────────────────
    included_eur = await resolve_included_credits_safely(resolver, session, user_id)

    # ── 5. Derive ───────────────────────────────────────────
    return build_snapshot(
        monthly_limit_eur=monthly_limit_eur,
        alert_threshold_percent=alert_threshold_percent,
        hard_limit=hard_limit,
        spent_eur=spent_eur,
        included_credits_eur=included_eur,
        period_start=month_start(now),
        period_end=next_month_start(now),
        alert_sent_at=alert_sent_at,
        limit_hit_at=limit_hit_at,
    )
