"""
User model — the account whose AI usage is metered.

Only the columns the metering engine reads are mapped here; profile data,
sessions and bookings are owned by other services.
"""

import uuid
import datetime

from sqlalchemy import DateTime, String, Uuid
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from ai_metering.core.database import Base


class User(Base):
    """Platform user — owns API keys, usage events and a spending limit."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True,
    )
    # Price the user is subscribed to; resolves to a SubscriptionPlan.
    stripe_price_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True,
    )
    subscription_status: Mapped[str | None] = mapped_column(
        String(50), nullable=True,
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id!s:.8} email={self.email!r}>"
