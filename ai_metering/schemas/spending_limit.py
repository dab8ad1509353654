"""
Pydantic v2 schemas for the /spending-limit endpoints.

The JSON contract is camelCase (consumed by the dashboard); the Python side
stays snake_case through an alias generator. FastAPI serializes response
models by alias.

Range checks are deliberately NOT expressed as Field constraints: an
out-of-range limit or threshold is a 400 raised by the service, not a 422.
"""

from __future__ import annotations

import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Request schema ──────────────────────────────────────────
class SpendingLimitUpdate(_CamelModel):
    """PATCH body — every field is optional."""

    model_config = ConfigDict(extra="forbid")

    monthly_limit_eur: Decimal | None = Field(default=None, examples=[100])
    alert_threshold: int | None = Field(default=None, examples=[80])
    hard_limit: bool | None = None


# ── Response schemas ────────────────────────────────────────
class LimitOut(_CamelModel):
    monthly_limit_eur: float
    alert_threshold: int
    hard_limit: bool


class UsageOut(_CamelModel):
    current_month_spent_eur: float
    remaining_eur: float
    percentage_used: float
    is_near_limit: bool
    has_hit_limit: bool


class IncludedCreditsOut(_CamelModel):
    total_eur: float
    remaining_eur: float
    used_eur: float
    percentage_used: float


class ExtraUsageOut(_CamelModel):
    charged_eur: float
    has_extra_usage: bool


class AlertsOut(_CamelModel):
    alert_sent_at: datetime.datetime | None
    limit_hit_at: datetime.datetime | None


class PeriodOut(_CamelModel):
    start: datetime.datetime
    end: datetime.datetime


class SpendingLimitStatus(_CamelModel):
    """GET /spending-limit response."""

    limit: LimitOut
    usage: UsageOut
    included_credits: IncludedCreditsOut
    extra_usage: ExtraUsageOut
    alerts: AlertsOut
    period: PeriodOut


class SpendingLimitUpdateResponse(_CamelModel):
    """PATCH /spending-limit response."""

    message: str
    limit: LimitOut


class SpendingCheckOut(_CamelModel):
    """GET /spending-limit/check response (only returned when allowed)."""

    allowed: bool
    remaining_eur: float
    percentage_used: float
    is_near_limit: bool
    hard_limit: bool
