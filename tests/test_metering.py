"""Tests for track_usage(): record, evaluate, split and stamp in one call."""

import datetime
from decimal import Decimal

import pytest

from ai_metering.schemas.usage import UsageEventCreate
from ai_metering.services.credit_resolver import PlanCreditResolver
from ai_metering.services.metering import track_usage
from ai_metering.services.spending_limits import get_limit
from tests.conftest import (
    LAST_MONTH,
    NOW,
    PRO_PRICE_ID,
    add_event,
    create_plan,
    create_user,
    set_limit,
)

resolver = PlanCreditResolver()


def _payload(**overrides) -> UsageEventCreate:
    data = {
        "feature": "marketing_content",
        "provider": "openrouter",
        "model_name": "openai/gpt-4o-mini",
        "input_tokens": 400,
        "output_tokens": 200,
        "cost_usd": Decimal("10"),
    }
    data.update(overrides)
    return UsageEventCreate(**data)


async def test_track_usage_splits_across_included_credits(db):
    await create_plan(db)
    user = await create_user(db, price_id=PRO_PRICE_ID, status="active")
    await add_event(db, user, cost_usd="10", timestamp=NOW)  # €12.88 already spent

    result = await track_usage(db, user.id, _payload(), resolver, NOW)

    assert result.price_eur == Decimal("12.88")
    assert result.split.used_from_included_eur == Decimal("7.12")
    assert result.split.charged_as_overage_eur == Decimal("5.76")
    assert result.snapshot.current_month_spent_eur == Decimal("25.76")
    assert result.event.total_tokens == 600


async def test_track_usage_computes_missing_cost(db, user):
    payload = _payload(cost_usd=None, model_name="openai/gpt-4o", input_tokens=1_000_000, output_tokens=0)
    result = await track_usage(db, user.id, payload, resolver, NOW)
    assert result.event.cost_usd == Decimal("2.5")
    assert result.price_eur == Decimal("3.22")


async def test_track_usage_unknown_model_without_cost(db, user):
    with pytest.raises(ValueError):
        await track_usage(db, user.id, _payload(cost_usd=None, model_name="acme/x"), resolver, NOW)


async def test_failed_event_is_recorded_but_free(db, user):
    result = await track_usage(
        db, user.id, _payload(success=False, error_message="timeout"), resolver, NOW,
    )
    assert result.event.success is False
    assert result.price_eur == Decimal("0")
    assert result.split.charged_as_overage_eur == Decimal("0")
    assert result.snapshot.current_month_spent_eur == Decimal("0.00")


async def test_hard_limit_still_records_and_stamps(db, user):
    await set_limit(db, user, monthly_limit_eur="10", hard_limit=True, last_reset_at=NOW)

    result = await track_usage(db, user.id, _payload(), resolver, NOW)
    assert result.snapshot.has_hit_limit is True
    assert result.event.id is not None

    limit = await get_limit(db, user.id)
    assert limit.alert_sent_at is not None
    assert limit.limit_hit_at is not None


async def test_late_event_for_previous_month(db, user):
    payload = _payload(timestamp=LAST_MONTH)
    result = await track_usage(db, user.id, payload, resolver, NOW)

    assert result.split.used_from_included_eur == Decimal("0")
    assert result.split.charged_as_overage_eur == Decimal("0")
    assert result.snapshot.current_month_spent_eur == Decimal("0.00")
    assert result.event.timestamp.replace(tzinfo=None) == LAST_MONTH.replace(tzinfo=None)


async def test_event_keeps_metadata_and_tenant(db, user):
    import uuid

    tenant_id = uuid.uuid4()
    payload = _payload(tenant_id=tenant_id, metadata={"platform": "instagram"})
    result = await track_usage(db, user.id, payload, resolver, NOW)
    assert result.event.tenant_id == tenant_id
    assert result.event.metadata == {"platform": "instagram"}
    assert result.event.user_id == user.id
    assert isinstance(result.event.timestamp, datetime.datetime)


async def test_evaluation_failure_keeps_recorded_event(db, user, monkeypatch):
    from sqlalchemy.exc import OperationalError

    from ai_metering.services import limit_evaluator
    from ai_metering.services.aggregator import current_month_cost_usd

    async def _db_down(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("db down"))

    user_id = user.id
    monkeypatch.setattr(limit_evaluator, "current_month_spend", _db_down)

    result = await track_usage(db, user_id, _payload(), resolver, NOW)
    assert result.metered is False
    assert result.snapshot is None
    assert result.price_eur == Decimal("12.88")
    assert result.split.charged_as_overage_eur == Decimal("0")
    assert result.event.id is not None

    assert await current_month_cost_usd(db, user_id, NOW) == Decimal("10")
