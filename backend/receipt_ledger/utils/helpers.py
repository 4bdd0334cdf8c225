"""Miscellaneous helper functions used to normalise model output."""

from __future__ import annotations

import datetime as dt
import math
import re
from typing import Any, Optional

from dateutil.parser import ParserError, parse as dateparse

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_YEAR_FIRST_RE = re.compile(r"^\d{4}\D")
_NUMERIC_RE = re.compile(r"[^0-9.+-]")


def parse_iso_datetime(value: str | None) -> Optional[dt.datetime]:
    """Parse an ISO8601 datetime string into a :class:`datetime` object.

    The standard ``datetime.fromisoformat`` helper does not accept a lowercase
    ``z`` as the UTC designator. Some data sources provide timestamps that end
    with ``z`` instead of the canonical ``Z``. This function normalises that
    case and returns ``None`` if the value cannot be parsed.
    """
    if not value:
        return None
    try:
        if value.endswith("z"):
            value = value[:-1] + "Z"
        return dt.datetime.fromisoformat(value)
    except ValueError:
        return None


def normalize_date(value: Any) -> Optional[str]:
    """Return ``value`` as a ``YYYY-MM-DD`` string, or ``None`` if it is not a date."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value:
        return None
    if _ISO_DATE_RE.match(value):
        try:
            return dt.date.fromisoformat(value).isoformat()
        except ValueError:
            return None
    parsed = parse_iso_datetime(value)
    if parsed is not None:
        return parsed.date().isoformat()
    # Printed receipts: "09.03.2024", "2024-1-5", "Date: 09/03/2024 14:32".
    # Day-first unless the string leads with a four-digit year.
    year_first = bool(_YEAR_FIRST_RE.match(value))
    try:
        return dateparse(value, dayfirst=not year_first, yearfirst=year_first, fuzzy=True).date().isoformat()
    except (ParserError, ValueError, OverflowError):
        return None


def today_iso() -> str:
    return dt.date.today().isoformat()


def to_minor_units(value: Any) -> Optional[int]:
    """Coerce a model-reported amount to a non-negative integer.

    The model is asked for integer minor units already; this only guards
    against floats, numeric strings and stray signs. Returns ``None`` when
    nothing numeric can be recovered.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        cleaned = _NUMERIC_RE.sub("", value)
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    try:
        number = float(number)
    except OverflowError:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return abs(int(round(number)))


def clamp_confidence(value: Any, default: float = 0.5) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return default
    try:
        number = float(value)
    except (ValueError, OverflowError):
        return default
    if math.isnan(number):
        return default
    return min(1.0, max(0.0, number))


def clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()
