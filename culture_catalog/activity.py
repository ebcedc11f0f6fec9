"""
Listing date parsing and activity checks.

Sources publish dates in a handful of shapes:
- Range: "2025.12.01 ~ 2025.12.31" (separators may be "." "-" or "/")
- Single timestamp: "2025-12-10 19:00"
- Single date: "2025.12.20"
- Anything else ("상시", "매주 토요일", "garbage") is opaque

A listing stays active through the end of its last day in Seoul time.
Opaque dates are treated as active so that an unfamiliar format never
hides a legitimate listing.
"""

import re
from datetime import datetime, time
from zoneinfo import ZoneInfo

from .exceptions import UnparseableDate
from .logger import get_logger

logger = get_logger(__name__)

SEOUL_TZ = ZoneInfo("Asia/Seoul")

RANGE_SEPARATOR = "~"

END_OF_DAY = time(23, 59, 59, 999000)

# YYYY.MM.DD with any of . - / between parts; trailing "(토) 19:00" etc. ignored
_DATE_RE = re.compile(r"^\s*(\d{4})\s*[.\-/]\s*(\d{1,2})\s*[.\-/]\s*(\d{1,2})\.?(?!\d)")

_WHITESPACE_RE = re.compile(r"\s+")


def _parse_day(text: str, original: str) -> datetime:
    """Parse the calendar day at the start of ``text`` as end-of-day Seoul time."""
    match = _DATE_RE.match(text)
    if not match:
        raise UnparseableDate(original)
    year, month, day = (int(g) for g in match.groups())
    try:
        return datetime(year, month, day, END_OF_DAY.hour, END_OF_DAY.minute,
                        END_OF_DAY.second, END_OF_DAY.microsecond, tzinfo=SEOUL_TZ)
    except ValueError as e:
        raise UnparseableDate(original) from e


def parse_end_of_day(text: str | None) -> datetime | None:
    """
    Find the last day a listing runs and return its final instant.

    Args:
        text: Free-form date string from a source record.

    Returns:
        23:59:59.999 Seoul time on the relevant day (a range's end date or
        the single date), or None for an open-ended range such as
        "2025.12.01 ~".

    Raises:
        UnparseableDate: If the value is not a string or matches no known shape.
    """
    if not isinstance(text, str) or not text.strip():
        raise UnparseableDate("" if text is None else str(text))

    if RANGE_SEPARATOR in text:
        start, _, end = text.partition(RANGE_SEPARATOR)
        end = end.strip()
        if end:
            return _parse_day(end, text)
        # "2025.12.01 ~" has no end; only accept it if the start is a date
        _parse_day(start.strip(), text)
        return None

    return _parse_day(text.strip(), text)


def is_active(text: str | None, now: datetime) -> bool:
    """
    Check whether a listing is still running at ``now``.

    A naive ``now`` is taken to be Seoul local time. Unparseable dates,
    including values that are not strings at all, are reported active.
    """
    try:
        end = parse_end_of_day(text)
    except UnparseableDate:
        logger.debug(f"Unrecognised date format, keeping listing: {text!r}")
        return True

    if end is None:
        return True

    if now.tzinfo is None:
        now = now.replace(tzinfo=SEOUL_TZ)
    return end >= now


def normalize_date(text: str | None) -> str:
    """
    Normalize a date string for sorting.

    Collapses whitespace and unifies "-" and "/" separators to ".", so
    "2025-12-10 19:00" sorts next to "2025.12.10 ~ 2025.12.12".
    """
    if not text:
        return ""
    normalized = text.replace("-", ".").replace("/", ".")
    return _WHITESPACE_RE.sub(" ", normalized).strip()
