"""Utility helpers shared across the notification engine."""

from .clock import Clock, SystemClock
from .timestamps import ensure_utc, format_timestamp, parse_iso_datetime, start_of_day, utc_now

__all__ = [
    "Clock",
    "SystemClock",
    "ensure_utc",
    "format_timestamp",
    "parse_iso_datetime",
    "start_of_day",
    "utc_now",
]
