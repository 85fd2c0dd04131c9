"""Value transforms applied to captured text.

Every transform returns ``None`` instead of raising when the input cannot be
converted. Dates are always timezone-aware UTC midnight, independent of the
host's local timezone.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

from dateutil import parser as date_parser

from noticeflow.extraction.template import Transform

logger = logging.getLogger(__name__)

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_DD_MMM_YY = re.compile(r"^(\d{1,2})-([A-Z]{3})-(\d{2})$", re.IGNORECASE)
_MONTH_DAY_YEAR = re.compile(r"([A-Za-z]+)\s+(\d{1,2}),?\s+(\d{4})")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_LEADING_NUMBER = re.compile(r"-?(?:\d+\.?\d*|\.\d+)")
_LEADING_DECIMAL = re.compile(r"(?:\d+\.?\d*|\.\d+)")

Scalar = str | float | datetime | None


def utc_midnight(year: int, month: int, day: int) -> datetime | None:
    try:
        return datetime(year, month, day, tzinfo=timezone.utc)
    except ValueError:
        return None


def _month_number(name: str) -> int | None:
    return _MONTHS.get(name[:3].lower())


def parse_date(value: str) -> datetime | None:
    """Parse a notice date.

    Precedence: ``10-FEB-26`` (year < 50 is 20yy), ``Dec 05, 2025``,
    ``2026-02-17[T...]``, then a lenient parse truncated to the UTC day.
    """
    cleaned = value.strip()

    match = _DD_MMM_YY.match(cleaned)
    if match:
        day, month_name, year_short = match.groups()
        month = _month_number(month_name)
        year = int(year_short) + (2000 if int(year_short) < 50 else 1900)
        return utc_midnight(year, month, int(day)) if month else None

    match = _MONTH_DAY_YEAR.search(cleaned)
    if match:
        month_name, day, year = match.groups()
        month = _month_number(month_name)
        return utc_midnight(int(year), month, int(day)) if month else None

    match = _ISO_DATE.match(cleaned)
    if match:
        year, month, day = (int(part) for part in match.groups())
        return utc_midnight(year, month, day)

    try:
        parsed = date_parser.parse(cleaned)
    except (ValueError, OverflowError):
        logger.debug("Unparseable date %r", value)
        return None
    return utc_midnight(parsed.year, parsed.month, parsed.day)


def _parse_number(value: str, strip: str, leading: re.Pattern[str]) -> float | None:
    match = leading.match(re.sub(strip, "", value))
    return float(match.group(0)) if match else None


def transform_value(value: str, transform: Transform | None) -> Scalar:
    if transform is None:
        return value
    if transform == Transform.TRIM:
        return value.strip()
    if transform == Transform.UPPERCASE:
        return value.upper()
    if transform == Transform.LOWERCASE:
        return value.lower()
    if transform == Transform.NUMBER:
        return _parse_number(value, r"[^0-9.-]", _LEADING_NUMBER)
    if transform == Transform.DECIMAL:
        return _parse_number(value, r"[^0-9.]", _LEADING_DECIMAL)
    if transform == Transform.DATE:
        return parse_date(value)
    return value
