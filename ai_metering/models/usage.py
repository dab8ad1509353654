"""
SQLAlchemy model for the `usage_events` table.

Each row represents a single completed AI operation for one user — treated
as a financial transaction, not a throwaway log entry.

Design notes:
  • Append-only: rows are never updated or deleted by this service.
  • cost_usd uses NUMERIC(12,8) — exact decimal arithmetic, no float rounding.
  • Failed calls are recorded too (success=false) but never billed.
  • metadata_ is JSON(B) for flexible per-feature params.
  • (user_id, timestamp) index backs the monthly spend aggregation.
"""

import datetime
import uuid
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from ai_metering.core.database import Base, JSONType


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class UsageEvent(Base):
    """One AI operation with its measured provider cost."""

    __tablename__ = "usage_events"

    # ── Primary key ─────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # ── Ownership ───────────────────────────────────────────
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Salon the call was made for; salons live outside this service.
    tenant_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    # ── Timestamp ───────────────────────────────────────────
    timestamp: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    # ── Feature / provider / model ──────────────────────────
    feature: Mapped[str] = mapped_column(String(50), nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    model_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # ── Token counts ────────────────────────────────────────
    input_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # ── Cost (exact decimal — financial data) ───────────────
    cost_usd: Mapped[Decimal] = mapped_column(
        Numeric(12, 8),
        nullable=False,
    )

    # ── Outcome ─────────────────────────────────────────────
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    latency_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Column named `metadata_` because `metadata` is reserved on declarative
    # classes; maps to DB column `metadata`.
    metadata_: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
    )

    # ── Table-level constraints ─────────────────────────────
    __table_args__ = (
        CheckConstraint("input_tokens >= 0", name="ck_input_tokens_non_neg"),
        CheckConstraint("output_tokens >= 0", name="ck_output_tokens_non_neg"),
        CheckConstraint("total_tokens >= 0", name="ck_total_tokens_non_neg"),
        CheckConstraint("cost_usd >= 0", name="ck_cost_usd_non_neg"),
        Index("ix_usage_events_user_id_timestamp", "user_id", "timestamp"),
        Index("ix_usage_events_feature", "feature"),
        Index("ix_usage_events_model_name", "model_name"),
    )

    def __repr__(self) -> str:
        return (
            f"<UsageEvent id={self.id!s:.8} feature={self.feature} "
            f"model={self.model_name} cost=${self.cost_usd}>"
        )
