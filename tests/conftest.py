"""Shared test fixtures — async SQLite engine, test client, user / key helpers."""

import os

# Set env vars BEFORE importing app modules (config reads at import time)
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["BILLING_TIMEZONE"] = "UTC"

import datetime
import uuid
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ai_metering.auth.hashing import generate_api_key  # noqa: E402
from ai_metering.core.database import Base, get_db_session  # noqa: E402
from ai_metering.main import app  # noqa: E402
from ai_metering.models.api_key import APIKey  # noqa: E402
from ai_metering.models.plan import SubscriptionPlan  # noqa: E402
from ai_metering.models.spending_limit import SpendingLimit  # noqa: E402
from ai_metering.models.usage import UsageEvent  # noqa: E402
from ai_metering.models.user import User  # noqa: E402
from ai_metering.services.period import utcnow  # noqa: E402

# Async SQLite engine for tests (in-memory, one shared connection)
test_engine = create_async_engine(
    "sqlite+aiosqlite:///:memory:",
    echo=False,
    poolclass=StaticPool,
    connect_args={"check_same_thread": False},
)
TestSession = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

# A fixed instant in the middle of a month, used by the service-level tests.
NOW = datetime.datetime(2026, 3, 15, 12, 0, tzinfo=datetime.timezone.utc)
LAST_MONTH = datetime.datetime(2026, 2, 20, 9, 0, tzinfo=datetime.timezone.utc)

PRO_PRICE_ID = "price_pro_monthly"


@pytest.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def _override_get_db_session():
    async with TestSession() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise

app.dependency_overrides[get_db_session] = _override_get_db_session


@pytest.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def db():
    async with TestSession() as session:
        yield session


# ── Data helpers ────────────────────────────────────────────
async def create_plan(
    session: AsyncSession,
    credits_eur: Decimal | None = Decimal("20.00"),
    monthly_price: str | None = PRO_PRICE_ID,
    yearly_price: str | None = None,
    is_active: bool = True,
) -> SubscriptionPlan:
    plan = SubscriptionPlan(
        name="Pro",
        included_ai_credits_eur=credits_eur,
        stripe_price_monthly=monthly_price,
        stripe_price_yearly=yearly_price,
        is_active=is_active,
    )
    session.add(plan)
    await session.commit()
    return plan


async def create_user(
    session: AsyncSession,
    email: str | None = None,
    price_id: str | None = None,
    status: str | None = None,
) -> User:
    user = User(
        email=email or f"owner-{uuid.uuid4().hex[:8]}@salon.test",
        stripe_price_id=price_id,
        subscription_status=status,
    )
    session.add(user)
    await session.commit()
    return user


async def create_api_key(
    session: AsyncSession,
    user: User,
    is_active: bool = True,
) -> str:
    """Store a hashed key for `user` and return the raw key."""
    raw_key, key_hash, prefix = generate_api_key()
    session.add(
        APIKey(user_id=user.id, key_hash=key_hash, prefix=prefix, is_active=is_active)
    )
    await session.commit()
    return raw_key


async def add_event(
    session: AsyncSession,
    user: User,
    cost_usd: Decimal | str = "10",
    success: bool = True,
    timestamp: datetime.datetime | None = None,
    feature: str = "marketing_content",
    model_name: str = "openai/gpt-4o-mini",
    input_tokens: int = 100,
    output_tokens: int = 50,
) -> UsageEvent:
    event = UsageEvent(
        user_id=user.id,
        timestamp=timestamp or utcnow(),
        feature=feature,
        provider="openrouter",
        model_name=model_name,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        cost_usd=Decimal(cost_usd),
        success=success,
    )
    session.add(event)
    await session.commit()
    return event


async def set_limit(
    session: AsyncSession,
    user: User,
    monthly_limit_eur: Decimal | str = "50",
    alert_threshold_percent: int = 80,
    hard_limit: bool = False,
    current_month_spent_eur: Decimal | str = "0",
    last_reset_at: datetime.datetime | None = None,
    alert_sent_at: datetime.datetime | None = None,
    limit_hit_at: datetime.datetime | None = None,
) -> SpendingLimit:
    limit = SpendingLimit(
        user_id=user.id,
        monthly_limit_eur=Decimal(monthly_limit_eur),
        alert_threshold_percent=alert_threshold_percent,
        hard_limit=hard_limit,
        current_month_spent_eur=Decimal(current_month_spent_eur),
        last_reset_at=last_reset_at or utcnow(),
        alert_sent_at=alert_sent_at,
        limit_hit_at=limit_hit_at,
    )
    session.add(limit)
    await session.commit()
    return limit


def bearer(raw_key: str) -> dict:
    return {"Authorization": f"Bearer {raw_key}"}


@pytest.fixture
async def user(db):
    return await create_user(db)


@pytest.fixture
async def auth_headers(db, user):
    return bearer(await create_api_key(db, user))
