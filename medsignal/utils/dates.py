"""Datetime helpers."""

from __future__ import annotations

import os
from datetime import date

import pendulum

DEFAULT_TZ = "Asia/Seoul"


def timezone_name() -> str:
    return os.environ.get("TIMEZONE", DEFAULT_TZ)


def now_in_tz() -> pendulum.DateTime:
    tz = pendulum.timezone(timezone_name())
    return pendulum.now(tz)


def today_in_tz() -> date:
    return now_in_tz().date()


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp used for every persisted *_at column."""
    return pendulum.now("UTC").to_iso8601_string()


def month_end(year: int, month: int) -> date | None:
    if not 1 <= month <= 12:
        return None
    return pendulum.date(year, month, 1).end_of("month")


def safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return pendulum.date(year, month, day)
    except ValueError:
        return None


def format_date(value: date | None) -> str | None:
    if value is None:
        return None
    return value.strftime("%Y-%m-%d")
