"""
Usage recorder — appends one immutable usage event per AI operation.

Recording is a pure write. It never consults spending limits: an event
describes work that has already been performed, so refusing it would only
undercount spend. Enforcement is a pre-flight decision made by the caller
through the limit evaluator.

Persistence errors propagate. A lost event means undercounted spend, so the
caller (the AI entry point) must retry or queue rather than ignore it.
"""

from __future__ import annotations

import datetime
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from ai_metering.models.usage import UsageEvent
from ai_metering.schemas.usage import UsageEventCreate
from ai_metering.services.cost_calculator import calculate_cost
from ai_metering.services.period import utcnow

logger = logging.getLogger(__name__)


async def record_usage(
    session: AsyncSession,
    user_id: uuid.UUID,
    payload: UsageEventCreate,
    now: datetime.datetime | None = None,
) -> UsageEvent:
    """
    Persist a usage event and return the stored row.

    Raises:
        ValueError: cost_usd was omitted and the model has no known price.
        sqlalchemy.exc.SQLAlchemyError: the store rejected the write
            (the session is rolled back first).
    """

    # ── 1. Resolve cost ─────────────────────────────────────
    cost_usd = payload.cost_usd
    if cost_usd is None:
        cost_usd = calculate_cost(
            model_name=payload.model_name,
            input_tokens=payload.input_tokens,
            output_tokens=payload.output_tokens,
        )

    # ── 2. Build the ORM record ─────────────────────────────
    event = UsageEvent(
        user_id=user_id,
        tenant_id=payload.tenant_id,
        timestamp=payload.timestamp or now or utcnow(),
        feature=payload.feature,
        provider=payload.provider,
        model_name=payload.model_name,
        input_tokens=payload.input_tokens,
        output_tokens=payload.output_tokens,
        total_tokens=payload.input_tokens + payload.output_tokens,
        cost_usd=cost_usd,
        success=payload.success,
        error_message=payload.error_message,
        latency_ms=payload.latency_ms,
        metadata_=payload.metadata,
    )

    # ── 3. Persist ──────────────────────────────────────────
    try:
        session.add(event)
        await session.commit()
        await session.refresh(event)
    except Exception:
        await session.rollback()
        logger.exception("Failed to persist usage event for user %s", user_id)
        raise

    logger.info(
        "Usage recorded: user=%s feature=%s model=%s tokens=%d cost=$%s success=%s",
        user_id, event.feature, event.model_name, event.total_tokens,
        event.cost_usd, event.success,
    )
    return event
