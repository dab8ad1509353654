"""
Billing-period arithmetic.

A billing period is one calendar month in the reference timezone
(settings.BILLING_TIMEZONE). Everything here is pure: callers pass `now`
explicitly so tests can pin the clock.

The monthly reset is modelled as `reset_needed(now, last_reset_at)` —
a comparison of month/year only. It only ever moves forward: a clock that lags
behind `last_reset_at` never triggers a reset, and any number of callers
evaluating it inside the same new month agree on the answer.
"""

from __future__ import annotations

import datetime
from zoneinfo import ZoneInfo

from ai_metering.core.config import settings


def utcnow() -> datetime.datetime:
    """Current time as a tz-aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


def reference_tz() -> ZoneInfo:
    return ZoneInfo(settings.BILLING_TIMEZONE)


def as_aware(value: datetime.datetime) -> datetime.datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def month_start(
    now: datetime.datetime,
    tz: datetime.tzinfo | None = None,
) -> datetime.datetime:
    """
    First instant of the calendar month containing `now`, in `tz`.

    Returned as a UTC datetime, ready to be used as a query bound.
    """
    tz = tz or reference_tz()
    local = as_aware(now).astimezone(tz)
    start = datetime.datetime(local.year, local.month, 1, tzinfo=tz)
    return start.astimezone(datetime.timezone.utc)


def next_month_start(
    now: datetime.datetime,
    tz: datetime.tzinfo | None = None,
) -> datetime.datetime:
    """First instant of the following month (exclusive period end), in UTC."""
    tz = tz or reference_tz()
    local = as_aware(now).astimezone(tz)
    if local.month == 12:
        start = datetime.datetime(local.year + 1, 1, 1, tzinfo=tz)
    else:
        start = datetime.datetime(local.year, local.month + 1, 1, tzinfo=tz)
    return start.astimezone(datetime.timezone.utc)


def reset_needed(
    now: datetime.datetime,
    last_reset_at: datetime.datetime,
    tz: datetime.tzinfo | None = None,
) -> bool:
    """True when `now` falls in a later calendar month than `last_reset_at`."""
    tz = tz or reference_tz()
    current = as_aware(now).astimezone(tz)
    previous = as_aware(last_reset_at).astimezone(tz)
    return (current.year, current.month) > (previous.year, previous.month)
