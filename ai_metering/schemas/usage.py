"""
Pydantic v2 schemas for usage-event recording and the usage overview.

Separation:
  • UsageEventCreate   — what an AI entry point sends after an operation.
  • UsageEventResponse — the stored record.
  • UsageTrackResponse — stored record + how its charge was split between
                         included credits and overage.
  • UsageOverview      — the per-user dashboard aggregates.

The user is never part of the payload; it comes from the authenticated key.
"""

from __future__ import annotations

import datetime
import uuid
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ── Request schema ──────────────────────────────────────────
class UsageEventCreate(BaseModel):
    """
    Payload accepted by POST /usage/events.

    cost_usd is the measured provider cost. When omitted it is derived
    from the model price table; total_tokens is always derived.

    extra="forbid" rejects unknown fields with 422 instead of ignoring them.
    """

    model_config = ConfigDict(extra="forbid")

    feature: str = Field(
        ...,
        min_length=1,
        max_length=50,
        examples=["social_post", "image_gen", "chat"],
        description="Product feature that triggered the AI call.",
    )
    provider: str = Field(
        ...,
        min_length=1,
        max_length=50,
        examples=["openrouter", "replicate"],
        description="AI provider identifier.",
    )
    model_name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        examples=["openai/gpt-4o-mini"],
        description="Model used for this call.",
    )
    input_tokens: int = Field(default=0, ge=0, examples=[500])
    output_tokens: int = Field(default=0, ge=0, examples=[150])
    cost_usd: Decimal | None = Field(
        default=None,
        ge=0,
        # Fits NUMERIC(12, 8)
        le=Decimal("9999.99999999"),
        decimal_places=8,
        examples=["0.00042"],
        description="Measured provider cost in USD.",
    )
    success: bool = Field(
        default=True,
        description="Whether the AI operation completed. Failed calls are never billed.",
    )
    error_message: str | None = Field(default=None, max_length=2000)
    latency_ms: int | None = Field(default=None, ge=0, examples=[1200])
    tenant_id: uuid.UUID | None = Field(
        default=None,
        description="Salon the operation was performed for.",
    )
    timestamp: datetime.datetime | None = Field(
        default=None,
        description="When the operation completed. Defaults to now.",
    )
    metadata: dict[str, Any] | None = Field(
        default=None,
        examples=[{"platform": "instagram"}],
    )


# ── Response schemas ────────────────────────────────────────
class UsageEventResponse(BaseModel):
    """Full record returned after a usage event is persisted."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    tenant_id: uuid.UUID | None
    timestamp: datetime.datetime
    feature: str
    provider: str
    model_name: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    cost_usd: Decimal
    success: bool
    error_message: str | None
    latency_ms: int | None
    metadata: dict[str, Any] | None = Field(
        default=None,
        # Maps to the ORM attribute `metadata_` (column name is `metadata`)
        validation_alias="metadata_",
    )


class UsageTrackResponse(BaseModel):
    """
    Result of recording one event.

    `metered` is false when the event was stored but the budget could not be
    evaluated; the split is then zero and the spend is unknown.
    """

    event: UsageEventResponse
    price_eur: float
    used_from_included_eur: float
    charged_as_overage_eur: float
    current_month_spent_eur: float | None
    has_hit_limit: bool
    metered: bool = True


# ── Overview ────────────────────────────────────────────────
class FeatureUsageOut(BaseModel):
    feature: str
    label: str
    requests: int
    tokens: int
    cost_eur: float
    percentage: float


class ModelUsageOut(BaseModel):
    model_name: str
    requests: int
    tokens: int
    cost_eur: float


class DailyUsageOut(BaseModel):
    date: datetime.date
    requests: int
    cost_eur: float


class RecentActivityOut(BaseModel):
    id: uuid.UUID
    timestamp: datetime.datetime
    feature: str
    label: str
    model_name: str
    tokens: int
    cost_eur: float
    latency_ms: int | None


class UsageSummaryOut(BaseModel):
    total_requests: int
    total_tokens: int
    total_cost_eur: float
    current_month_cost_eur: float
    period_start: datetime.datetime
    period_end: datetime.datetime
    days: int


class UsageOverview(BaseModel):
    """Everything the usage dashboard shows for one user."""

    summary: UsageSummaryOut
    by_feature: list[FeatureUsageOut]
    by_model: list[ModelUsageOut]
    daily_usage: list[DailyUsageOut]
    recent_activity: list[RecentActivityOut]
