"""Timestamp helpers shared by the scanner and the history store."""
from __future__ import annotations

import logging
import time
from datetime import UTC, datetime

logger = logging.getLogger(__name__)

LOGFILE_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


def now_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


def now_millis() -> int:
    return int(time.time() * 1000)


def ordinal_suffix(day: int) -> str:
    if 11 <= day <= 13:
        return "th"
    return {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")


def month_name(month: int) -> str | None:
    if 1 <= month <= 12:
        return MONTH_NAMES[month - 1]
    return None


def format_first_use_date(raw: str | None) -> str | None:
    """Turn an 8-digit ``YYYYMMDD`` stamp into ``"January 21st, 2026"``."""
    if raw is None or len(raw) != 8 or not raw.isdigit():
        return None
    year = raw[:4]
    name = month_name(int(raw[4:6]))
    if name is None:
        return None
    day = int(raw[6:8])
    return f"{name} {day}{ordinal_suffix(day)}, {year}"


def format_logfile_timestamp(raw: str | None) -> str | None:
    """Render ``2026-01-21 16:06:52`` as ``January 21st, 2026 at 4:06 PM``.

    Values that do not have the expected shape are returned unchanged.
    """
    if raw is None:
        return None
    parts = raw.split(" ")
    if len(parts) != 2:
        return raw
    date_parts = parts[0].split("-")
    time_parts = parts[1].split(":")
    if len(date_parts) != 3 or len(time_parts) != 3:
        return raw
    try:
        month = int(date_parts[1])
        day = int(date_parts[2])
        hour = int(time_parts[0])
    except ValueError:
        return raw
    name = month_name(month)
    if name is None:
        return raw
    am_pm = "PM" if hour >= 12 else "AM"
    if hour == 0:
        hour12 = 12
    elif hour > 12:
        hour12 = hour - 12
    else:
        hour12 = hour
    return f"{name} {day}{ordinal_suffix(day)}, {date_parts[0]} at {hour12}:{time_parts[1]} {am_pm}"


def logfile_timestamp_to_epoch(raw: str | None) -> int | None:
    """Milliseconds since the epoch, reading ``raw`` as local wall-clock time."""
    if raw is None:
        return None
    try:
        parsed = datetime.strptime(raw.strip(), LOGFILE_TIMESTAMP_FORMAT)
    except ValueError:
        logger.debug("Unparseable logfile timestamp: %s", raw)
        return None
    return int(parsed.timestamp() * 1000)
