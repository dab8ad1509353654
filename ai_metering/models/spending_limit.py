"""
Spending limit model — one configurable monthly AI budget per user.

Design notes:
  • user_id is UNIQUE — get-or-create races resolve on this constraint.
  • current_month_spent_eur is a cache of the usage_events aggregate for
    the active month. usage_events remains the source of truth; the cache
    is corrected whenever a read sees it drift.
  • last_reset_at marks the month the monthly fields belong to. Resets
    are conditional updates keyed on its previous value.
  • alert_sent_at / limit_hit_at are cleared on reset and when the user
    raises the limit.
"""

import datetime
import uuid
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    Uuid,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from ai_metering.core.database import Base


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class SpendingLimit(Base):
    """Per-user monthly AI spending cap and its bookkeeping timestamps."""

    __tablename__ = "spending_limits"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    # ── User-configurable ───────────────────────────────────
    monthly_limit_eur: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False,
    )
    alert_threshold_percent: Mapped[int] = mapped_column(
        Integer, nullable=False,
    )
    hard_limit: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )

    # ── Monthly bookkeeping ─────────────────────────────────
    current_month_spent_eur: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0"),
    )
    last_reset_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    alert_sent_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    limit_hit_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        CheckConstraint(
            "monthly_limit_eur >= 0 AND monthly_limit_eur <= 10000",
            name="ck_monthly_limit_eur_range",
        ),
        CheckConstraint(
            "alert_threshold_percent >= 0 AND alert_threshold_percent <= 100",
            name="ck_alert_threshold_percent_range",
        ),
        CheckConstraint(
            "current_month_spent_eur >= 0",
            name="ck_current_month_spent_eur_non_neg",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<SpendingLimit user={self.user_id!s:.8} "
            f"spent=€{self.current_month_spent_eur}/€{self.monthly_limit_eur} "
            f"hard={self.hard_limit}>"
        )
