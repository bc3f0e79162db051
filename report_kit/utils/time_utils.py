"""
Time helpers shared by the recipe validator, provider adapters, and reports.

Key concepts:
  - Timeframes: recipe authors write lookbacks as ``"30d"``, ``"12h"`` or
    ``"2w"``.  ``parse_timeframe_days()`` turns them into whole days for the
    providers that only accept day granularity.
  - Epoch conversion: upstream APIs report times as epoch seconds or epoch
    milliseconds; ``from_epoch_ms()`` / ``from_epoch_s()`` return aware UTC
    datetimes so report cells never carry naive timestamps.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone

_TIMEFRAME_RE = re.compile(r"^\s*(\d+)\s*([hdwm])\s*$", re.IGNORECASE)


def parse_timeframe_days(timeframe: str) -> int:
    """Parse a lookback timeframe into a whole number of days (minimum 1).

    Supported suffixes: ``h`` (hours, rounded up to days), ``d`` (days),
    ``w`` (weeks), ``m`` (30-day months).

    Args:
        timeframe: Timeframe string such as ``"30d"``.

    Returns:
        Positive integer day count.

    Raises:
        ValueError: If the string cannot be parsed or is zero.
    """
    match = _TIMEFRAME_RE.match(timeframe or "")
    if not match:
        raise ValueError(
            f"Cannot parse timeframe '{timeframe}'. "
            "Expected format: Nh (hours), Nd (days), Nw (weeks), or Nm (months)."
        )
    value = int(match.group(1))
    unit = match.group(2).lower()
    if value <= 0:
        raise ValueError(f"Timeframe must be positive, got '{timeframe}'.")
    if unit == "h":
        return max(1, math.ceil(value / 24))
    if unit == "w":
        return value * 7
    if unit == "m":
        return value * 30
    return value


def from_epoch_ms(value: int | float | str) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)


def from_epoch_s(value: int | float | str) -> datetime:
    """Convert epoch seconds to an aware UTC datetime."""
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)
