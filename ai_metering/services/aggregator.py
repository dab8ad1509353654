"""
Period aggregator — read-time aggregation over usage_events.

usage_events is the source of truth for spend. Nothing here writes.
All aggregation happens in SQL; Decimal precision is preserved until the
final EUR conversion.

Only successful events count: failed AI calls are recorded for auditing
but never billed.
"""

from __future__ import annotations

import datetime
import logging
import uuid
from decimal import Decimal

from sqlalchemy import Date, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ai_metering.models.usage import UsageEvent
from ai_metering.services.cost_calculator import usd_to_eur
from ai_metering.services.period import month_start, utcnow

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")

FEATURE_LABELS: dict[str, str] = {
    "social_post": "Social media posts",
    "video_gen": "Video generation",
    "image_gen": "Image generation",
    "translation": "Translations",
    "chat": "Chat & assistant",
    "hashtags": "Hashtags",
    "content_improvement": "Content improvement",
}
_OTHER_LABEL = "Other"


def feature_label(feature: str | None) -> str:
    return FEATURE_LABELS.get(feature or "", _OTHER_LABEL)


def _to_decimal(value) -> Decimal:  # type: ignore[no-untyped-def]
    if value is None:
        return _ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# ── Current month spend ─────────────────────────────────────
async def current_month_cost_usd(
    session: AsyncSession,
    user_id: uuid.UUID,
    now: datetime.datetime | None = None,
) -> Decimal:
    """Raw provider cost (USD) of the user's successful events this month."""
    period_start = month_start(now or utcnow())

    stmt = select(func.sum(UsageEvent.cost_usd)).where(
        UsageEvent.user_id == user_id,
        UsageEvent.success.is_(True),
        UsageEvent.timestamp >= period_start,
    )
    total = (await session.execute(stmt)).scalar_one_or_none()
    return _to_decimal(total)


async def current_month_spend(
    session: AsyncSession,
    user_id: uuid.UUID,
    now: datetime.datetime | None = None,
) -> Decimal:
    """
    Authoritative EUR spend for the user's current billing month.

    SQL: SELECT SUM(cost_usd) FROM usage_events
         WHERE user_id = :u AND success AND timestamp >= :month_start

    The ix_usage_events_user_id_timestamp index supports this query.
    """
    return usd_to_eur(await current_month_cost_usd(session, user_id, now))


# ── Usage overview ──────────────────────────────────────────
async def usage_overview(
    session: AsyncSession,
    user_id: uuid.UUID,
    days: int = 30,
    recent_limit: int = 20,
    now: datetime.datetime | None = None,
) -> dict:
    """
    Aggregate the trailing `days` of successful usage for the dashboard.

    Returns a dict shaped like schemas.usage.UsageOverview.
    """
    now = now or utcnow()
    window_start = now - datetime.timedelta(days=days)

    window = (
        UsageEvent.user_id == user_id,
        UsageEvent.success.is_(True),
        UsageEvent.timestamp >= window_start,
    )

    # ── 1. Totals ───────────────────────────────────────────
    totals_stmt = select(
        func.count().label("request_count"),
        func.sum(UsageEvent.total_tokens).label("total_tokens"),
        func.sum(UsageEvent.cost_usd).label("total_cost_usd"),
    ).where(*window)
    totals = (await session.execute(totals_stmt)).one()
    total_cost_usd = _to_decimal(totals.total_cost_usd)

    # ── 2. By feature ───────────────────────────────────────
    feature_stmt = (
        select(
            UsageEvent.feature,
            func.count().label("request_count"),
            func.sum(UsageEvent.total_tokens).label("total_tokens"),
            func.sum(UsageEvent.cost_usd).label("total_cost_usd"),
        )
        .where(*window)
        .group_by(UsageEvent.feature)
    )
    by_feature = []
    for row in (await session.execute(feature_stmt)).all():
        cost_usd = _to_decimal(row.total_cost_usd)
        share = (cost_usd / total_cost_usd * _HUNDRED) if total_cost_usd > 0 else _ZERO
        by_feature.append(
            {
                "feature": row.feature,
                "label": feature_label(row.feature),
                "requests": row.request_count,
                "tokens": row.total_tokens or 0,
                "cost_eur": usd_to_eur(cost_usd),
                "percentage": round(share, 2),
            }
        )
    by_feature.sort(key=lambda item: item["cost_eur"], reverse=True)

    # ── 3. By model ─────────────────────────────────────────
    model_stmt = (
        select(
            UsageEvent.model_name,
            func.count().label("request_count"),
            func.sum(UsageEvent.total_tokens).label("total_tokens"),
            func.sum(UsageEvent.cost_usd).label("total_cost_usd"),
        )
        .where(*window)
        .group_by(UsageEvent.model_name)
    )
    by_model = [
        {
            "model_name": row.model_name,
            "requests": row.request_count,
            "tokens": row.total_tokens or 0,
            "cost_eur": usd_to_eur(_to_decimal(row.total_cost_usd)),
        }
        for row in (await session.execute(model_stmt)).all()
    ]
    by_model.sort(key=lambda item: item["cost_eur"], reverse=True)

    # ── 4. Daily series (UTC days) ──────────────────────────
    day_col = func.date(UsageEvent.timestamp, type_=Date).label("date")
    daily_stmt = (
        select(
            day_col,
            func.count().label("request_count"),
            func.sum(UsageEvent.cost_usd).label("total_cost_usd"),
        )
        .where(*window)
        .group_by(day_col)
        .order_by(day_col.desc())
    )
    daily_usage = [
        {
            "date": row.date,
            "requests": row.request_count,
            "cost_eur": usd_to_eur(_to_decimal(row.total_cost_usd)),
        }
        for row in (await session.execute(daily_stmt)).all()
    ]

    # ── 5. Recent activity ──────────────────────────────────
    recent_stmt = (
        select(UsageEvent)
        .where(*window)
        .order_by(UsageEvent.timestamp.desc())
        .limit(recent_limit)
    )
    recent_activity = [
        {
            "id": event.id,
            "timestamp": event.timestamp,
            "feature": event.feature,
            "label": feature_label(event.feature),
            "model_name": event.model_name,
            "tokens": event.total_tokens,
            "cost_eur": usd_to_eur(event.cost_usd),
            "latency_ms": event.latency_ms,
        }
        for event in (await session.execute(recent_stmt)).scalars().all()
    ]

    return {
        "summary": {
            "total_requests": totals.request_count,
            "total_tokens": totals.total_tokens or 0,
            "total_cost_eur": usd_to_eur(total_cost_usd),
            "current_month_cost_eur": await current_month_spend(session, user_id, now),
            "period_start": window_start,
            "period_end": now,
            "days": days,
        },
        "by_feature": by_feature,
        "by_model": by_model,
        "daily_usage": daily_usage,
        "recent_activity": recent_activity,
    }
