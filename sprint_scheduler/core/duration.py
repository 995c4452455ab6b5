from __future__ import annotations

import re
from datetime import timedelta
from typing import Any


DEFAULT_HOURS_PER_DAY = 8.0

_TOKEN = re.compile(r"(\d+(?:\.\d+)?)\s*([wdhm])", re.IGNORECASE)


def parse_work_duration(value: Any, hours_per_day: float = DEFAULT_HOURS_PER_DAY) -> timedelta:
    """Parse a work-day duration.

    Accepts strings like ``"1d 2h 30m"`` or ``"2w"`` where a day is ``hours_per_day``
    hours and a week is five days, or a plain number of hours.

    Raises ValueError on anything else.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"duration must not be negative: {value}")
        return timedelta(hours=float(value))
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")

    text = value.strip()
    if not text:
        raise ValueError("duration must not be empty")

    pos = 0
    hours = 0.0
    for m in _TOKEN.finditer(text):
        if text[pos : m.start()].strip():
            raise ValueError(f"invalid duration: {value!r}")
        amount = float(m.group(1))
        unit = m.group(2).lower()
        if unit == "w":
            hours += amount * 5 * hours_per_day
        elif unit == "d":
            hours += amount * hours_per_day
        elif unit == "h":
            hours += amount
        else:
            hours += amount / 60.0
        pos = m.end()
    if pos == 0 or text[pos:].strip():
        raise ValueError(f"invalid duration: {value!r}")
    return timedelta(hours=hours)


def format_work_duration(value: timedelta, hours_per_day: float = DEFAULT_HOURS_PER_DAY) -> str:
    """Inverse of parse_work_duration, e.g. ``timedelta(hours=10.5) -> "1d 2h 30m"``."""
    total_minutes = int(round(value.total_seconds() / 60))
    if total_minutes <= 0:
        return "0h"

    minutes_per_day = int(round(hours_per_day * 60))
    days, rest = divmod(total_minutes, minutes_per_day)
    hours, minutes = divmod(rest, 60)

    parts: list[str] = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    return " ".join(parts)


def hours(value: timedelta) -> float:
    return value.total_seconds() / 3600.0
