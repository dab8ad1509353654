"""Tests for the spending limit store: defaults, updates, monthly reset, markers."""

from decimal import Decimal

import pytest

from ai_metering.services.limit_evaluator import build_snapshot
from ai_metering.services.period import as_aware, month_start, next_month_start
from ai_metering.services.spending_limits import (
    SpendingLimitValidationError,
    apply_monthly_reset,
    get_limit,
    get_or_create,
    mark_threshold_crossings,
    update_limit,
    validate_limit_changes,
)
from tests.conftest import LAST_MONTH, NOW, TestSession, set_limit


# ── Get or create ───────────────────────────────────────────
async def test_get_or_create_defaults(db, user):
    limit = await get_or_create(db, user.id, NOW)
    assert limit.monthly_limit_eur == Decimal("50")
    assert limit.alert_threshold_percent == 80
    assert limit.hard_limit is False
    assert limit.current_month_spent_eur == Decimal("0")
    assert limit.alert_sent_at is None
    assert limit.limit_hit_at is None


async def test_get_or_create_is_idempotent(db, user):
    first = await get_or_create(db, user.id)
    async with TestSession() as other:
        second = await get_or_create(other, user.id)
    assert first.id == second.id


async def test_get_limit_missing(db, user):
    assert await get_limit(db, user.id) is None


# ── Validation ──────────────────────────────────────────────
@pytest.mark.parametrize("value", ["0", "50", "10000"])
def test_validate_limit_accepts_range(value):
    validate_limit_changes(monthly_limit_eur=Decimal(value))


@pytest.mark.parametrize("value", ["-0.01", "10000.01"])
def test_validate_limit_rejects_out_of_range(value):
    with pytest.raises(SpendingLimitValidationError):
        validate_limit_changes(monthly_limit_eur=Decimal(value))


@pytest.mark.parametrize("value", [-1, 101])
def test_validate_threshold_rejects_out_of_range(value):
    with pytest.raises(SpendingLimitValidationError):
        validate_limit_changes(alert_threshold_percent=value)


# ── Update ──────────────────────────────────────────────────
async def test_update_partial(db, user):
    limit = await update_limit(db, user.id, alert_threshold_percent=90)
    assert limit.alert_threshold_percent == 90
    assert limit.monthly_limit_eur == Decimal("50")
    assert limit.hard_limit is False


async def test_raising_limit_clears_markers(db, user):
    await set_limit(db, user, alert_sent_at=NOW, limit_hit_at=NOW)
    limit = await update_limit(db, user.id, monthly_limit_eur=Decimal("100"))
    assert limit.monthly_limit_eur == Decimal("100")
    assert limit.alert_sent_at is None
    assert limit.limit_hit_at is None


async def test_lowering_limit_keeps_markers(db, user):
    await set_limit(db, user, alert_sent_at=NOW, limit_hit_at=NOW)
    limit = await update_limit(db, user.id, monthly_limit_eur=Decimal("20"))
    assert limit.monthly_limit_eur == Decimal("20")
    assert limit.alert_sent_at is not None
    assert limit.limit_hit_at is not None


async def test_invalid_update_writes_nothing(db, user):
    with pytest.raises(SpendingLimitValidationError):
        await update_limit(db, user.id, monthly_limit_eur=Decimal("20000"))
    assert await get_limit(db, user.id) is None


# ── Monthly reset ───────────────────────────────────────────
async def test_monthly_reset_clears_monthly_fields(db, user):
    await set_limit(
        db, user,
        current_month_spent_eur="30",
        last_reset_at=LAST_MONTH,
        alert_sent_at=LAST_MONTH,
        limit_hit_at=LAST_MONTH,
    )
    limit = await get_limit(db, user.id)

    assert await apply_monthly_reset(db, limit, NOW) is True
    assert limit.current_month_spent_eur == Decimal("0")
    assert limit.alert_sent_at is None
    assert limit.limit_hit_at is None
    assert as_aware(limit.last_reset_at) == NOW


async def test_monthly_reset_noop_within_month(db, user):
    await set_limit(db, user, current_month_spent_eur="30", last_reset_at=NOW)
    limit = await get_limit(db, user.id)
    assert await apply_monthly_reset(db, limit, NOW) is False
    assert limit.current_month_spent_eur == Decimal("30")


async def test_monthly_reset_ignores_lagging_clock(db, user):
    await set_limit(db, user, current_month_spent_eur="30", last_reset_at=NOW, alert_sent_at=NOW)
    limit = await get_limit(db, user.id)

    assert await apply_monthly_reset(db, limit, LAST_MONTH) is False
    assert limit.current_month_spent_eur == Decimal("30")
    assert limit.alert_sent_at is not None
    assert as_aware(limit.last_reset_at) == NOW


async def test_monthly_reset_happens_once_for_stale_readers(db, user):
    """Two readers load the row before the boundary; only one resets it."""
    await set_limit(db, user, current_month_spent_eur="30", last_reset_at=LAST_MONTH)

    async with TestSession() as first, TestSession() as second:
        first_limit = await get_limit(first, user.id)
        second_limit = await get_limit(second, user.id)

        assert await apply_monthly_reset(first, first_limit, NOW) is True
        assert await apply_monthly_reset(second, second_limit, NOW) is False

        # The loser is reloaded and sees the winner's reset.
        assert as_aware(second_limit.last_reset_at) == NOW
        assert second_limit.current_month_spent_eur == Decimal("0")


# ── Threshold markers ───────────────────────────────────────
def _snapshot(spent: str, hard: bool = True, alert_sent_at=None, limit_hit_at=None):
    return build_snapshot(
        monthly_limit_eur=Decimal("50"),
        alert_threshold_percent=80,
        hard_limit=hard,
        spent_eur=Decimal(spent),
        included_credits_eur=Decimal("0"),
        period_start=month_start(NOW),
        period_end=next_month_start(NOW),
        alert_sent_at=alert_sent_at,
        limit_hit_at=limit_hit_at,
    )


async def test_mark_threshold_crossings_stamps_both(db, user):
    await set_limit(db, user, hard_limit=True, last_reset_at=NOW)
    await mark_threshold_crossings(db, user.id, _snapshot("55"), NOW)

    limit = await get_limit(db, user.id)
    assert as_aware(limit.alert_sent_at) == NOW
    assert as_aware(limit.limit_hit_at) == NOW


async def test_mark_threshold_crossings_alert_only(db, user):
    await set_limit(db, user, hard_limit=True, last_reset_at=NOW)
    await mark_threshold_crossings(db, user.id, _snapshot("45"), NOW)

    limit = await get_limit(db, user.id)
    assert limit.alert_sent_at is not None
    assert limit.limit_hit_at is None


async def test_first_stamp_wins(db, user):
    """A stale snapshot cannot overwrite an existing marker."""
    await set_limit(db, user, hard_limit=True, last_reset_at=NOW, alert_sent_at=NOW)
    later = NOW.replace(hour=18)

    # Snapshot taken before the first stamp was visible
    await mark_threshold_crossings(db, user.id, _snapshot("45"), later)

    limit = await get_limit(db, user.id)
    assert as_aware(limit.alert_sent_at) == NOW


async def test_no_stamp_below_threshold(db, user):
    await set_limit(db, user, last_reset_at=NOW)
    await mark_threshold_crossings(db, user.id, _snapshot("10"), NOW)

    limit = await get_limit(db, user.id)
    assert limit.alert_sent_at is None
    assert limit.limit_hit_at is None
