"""
Subscription plan model — read-only to the metering engine.

A plan is sold at up to four billing intervals, each with its own Stripe
price id. The engine only needs `included_ai_credits_eur`: the AI spend a
subscriber can consume each month before overage billing applies.
"""

import uuid
import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Numeric, String, Uuid, true
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from ai_metering.core.database import Base


class SubscriptionPlan(Base):
    """Sellable plan with its monthly AI credit allowance."""

    __tablename__ = "subscription_plans"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    included_ai_credits_eur: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2), nullable=True,
    )

    # ── Stripe prices per billing interval ──────────────────
    stripe_price_monthly: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_price_quarterly: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_price_six_months: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_price_yearly: Mapped[str | None] = mapped_column(String(255), nullable=True)

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<SubscriptionPlan name={self.name!r} "
            f"credits=€{self.included_ai_credits_eur}>"
        )
