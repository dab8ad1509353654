"""
Post-flight metering for AI entry points.

track_usage() is what an AI feature calls after every operation, whatever
the pre-flight check said:

  1. record the event (always; this is the only step that must not be lost)
  2. evaluate the fresh snapshot
  3. split this event's charge into included credits vs overage
  4. stamp alert / hard-limit markers the first time they are reached

Only step 1 may fail the call. Once the event is committed, errors in
steps 2-4 are logged and the stored event is still returned.

Stripe metered reporting of the overage part is handled by the billing
module; this service only computes the amount.
"""

from __future__ import annotations

import datetime
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ai_metering.schemas.usage import UsageEventCreate, UsageEventResponse
from ai_metering.services.cost_calculator import usd_to_eur
from ai_metering.services.credit_resolver import CreditResolver
from ai_metering.services.limit_evaluator import (
    ChargeSplit,
    UsageSnapshot,
    evaluate,
    split_event_charge,
)
from ai_metering.services.period import as_aware, utcnow
from ai_metering.services.spending_limits import mark_threshold_crossings
from ai_metering.services.usage_recorder import record_usage

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")
_NO_SPLIT = ChargeSplit(used_from_included_eur=_ZERO, charged_as_overage_eur=_ZERO)


@dataclass(frozen=True, slots=True)
class TrackResult:
    """
    Outcome of metering one AI operation.

    `snapshot` is None when the event was stored but the budget could not
    be evaluated afterwards; the split is zero in that case.
    """

    event: UsageEventResponse
    price_eur: Decimal
    split: ChargeSplit
    snapshot: UsageSnapshot | None

    @property
    def metered(self) -> bool:
        return self.snapshot is not None


async def track_usage(
    session: AsyncSession,
    user_id: uuid.UUID,
    payload: UsageEventCreate,
    resolver: CreditResolver,
    now: datetime.datetime | None = None,
) -> TrackResult:
    """Record an AI operation and report how it affects the user's budget."""
    now = now or utcnow()

    # ── 1. Record ───────────────────────────────────────────
    stored = await record_usage(session, user_id, payload, now)
    # Detach the data now; later rollbacks would expire the ORM instance.
    event = UsageEventResponse.model_validate(stored)

    price_eur = usd_to_eur(event.cost_usd) if event.success else _ZERO

    # ── 2. Evaluate ─────────────────────────────────────────
    # The event is committed from here on. Failing now must not look like a
    # failed recording, or a retrying client would store the event twice.
    try:
        snapshot = await evaluate(session, user_id, resolver, now)
    except SQLAlchemyError:
        await session.rollback()
        logger.exception(
            "Usage event %s stored but budget evaluation failed for user %s",
            event.id, user_id,
        )
        return TrackResult(event=event, price_eur=price_eur, split=_NO_SPLIT, snapshot=None)

    # ── 3. Split this event's charge ────────────────────────
    event_at = as_aware(payload.timestamp or now)
    in_period = snapshot.period_start <= event_at < snapshot.period_end

    if in_period:
        spent_before = max(_ZERO, snapshot.current_month_spent_eur - price_eur)
        split = split_event_charge(
            spent_before, price_eur, snapshot.included_credits_total_eur,
        )
    else:
        # Late event for a closed period: nothing to split against.
        split = _NO_SPLIT

    # ── 4. Bookkeeping ──────────────────────────────────────
    try:
        await mark_threshold_crossings(session, user_id, snapshot, now)
    except SQLAlchemyError:
        await session.rollback()
        logger.warning(
            "Could not stamp spending thresholds for user %s", user_id,
            exc_info=True,
        )

    if split.charged_as_overage_eur > 0:
        logger.info(
            "Overage for user %s: €%s (feature=%s)",
            user_id, split.charged_as_overage_eur, event.feature,
        )

    return TrackResult(event=event, price_eur=price_eur, split=split, snapshot=snapshot)
