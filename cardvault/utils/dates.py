"""Datetime helpers."""

from __future__ import annotations

import os
from datetime import date, datetime

import pendulum


DEFAULT_TZ = "America/Toronto"


def timezone_name() -> str:
    return os.environ.get("TIMEZONE", DEFAULT_TZ)


def now_in_tz() -> pendulum.DateTime:
    tz = pendulum.timezone(timezone_name())
    return pendulum.now(tz)


def today_in_tz() -> date:
    return now_in_tz().date()


def _naive_utc(value: pendulum.DateTime) -> datetime:
    # plain datetime so database drivers adapt it
    utc = value.in_timezone("UTC")
    return datetime(utc.year, utc.month, utc.day, utc.hour, utc.minute, utc.second, utc.microsecond)


def utcnow() -> datetime:
    return _naive_utc(pendulum.now("UTC"))


def start_of_today_utc() -> datetime:
    """Midnight of the local day, expressed as a naive UTC datetime."""
    return _naive_utc(now_in_tz().start_of("day"))


def format_date(value: date) -> str:
    return value.strftime("%Y-%m-%d")
