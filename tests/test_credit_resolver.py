"""Tests for the included-credit lookup (user price → subscription plan)."""

from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from ai_metering.services.credit_resolver import (
    CreditLookupError,
    PlanCreditResolver,
    resolve_included_credits_safely,
)
from tests.conftest import PRO_PRICE_ID, create_plan, create_user

resolver = PlanCreditResolver()


async def test_no_price_means_no_credits(db, user):
    assert await resolver.resolve_included_credits(db, user.id) == Decimal("0")


async def test_active_subscription_gets_plan_credits(db):
    await create_plan(db)
    user = await create_user(db, price_id=PRO_PRICE_ID, status="active")
    assert await resolver.resolve_included_credits(db, user.id) == Decimal("20.00")


async def test_price_matched_on_any_interval(db):
    await create_plan(db, monthly_price="price_m", yearly_price="price_y")
    user = await create_user(db, price_id="price_y", status="active")
    assert await resolver.resolve_included_credits(db, user.id) == Decimal("20.00")


@pytest.mark.parametrize("status", ["trialing", "past_due"])
async def test_grace_statuses_keep_credits(db, status):
    await create_plan(db)
    user = await create_user(db, price_id=PRO_PRICE_ID, status=status)
    assert await resolver.resolve_included_credits(db, user.id) == Decimal("20.00")


@pytest.mark.parametrize("status", ["canceled", "unpaid", None])
async def test_inactive_subscription_gets_nothing(db, status):
    await create_plan(db)
    user = await create_user(db, price_id=PRO_PRICE_ID, status=status)
    assert await resolver.resolve_included_credits(db, user.id) == Decimal("0")


async def test_unknown_price(db):
    await create_plan(db)
    user = await create_user(db, price_id="price_legacy", status="active")
    assert await resolver.resolve_included_credits(db, user.id) == Decimal("0")


async def test_plan_without_credit_amount(db):
    await create_plan(db, credits_eur=None)
    user = await create_user(db, price_id=PRO_PRICE_ID, status="active")
    assert await resolver.resolve_included_credits(db, user.id) == Decimal("0")


async def test_retired_plan_grants_nothing(db):
    await create_plan(db, is_active=False)
    user = await create_user(db, price_id=PRO_PRICE_ID, status="active")
    assert await resolver.resolve_included_credits(db, user.id) == Decimal("0")


async def test_database_error_degrades_to_zero(db, user):
    class BrokenResolver(PlanCreditResolver):
        async def _lookup(self, session, user_id):
            raise OperationalError("SELECT 1", {}, Exception("connection lost"))

    assert await BrokenResolver().resolve_included_credits(db, user.id) == Decimal("0")


async def test_safe_wrapper_absorbs_lookup_errors(db, user):
    class UnavailableResolver:
        async def resolve_included_credits(self, session, user_id):
            raise CreditLookupError("billing service unavailable")

    credits = await resolve_included_credits_safely(UnavailableResolver(), db, user.id)
    assert credits == Decimal("0")
