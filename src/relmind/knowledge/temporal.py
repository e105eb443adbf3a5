"""Derive a fact's current value from its stored baseline.

Stored facts are never rewritten as time passes. Presentation code calls
`compute_current_value` at read time to turn a baseline like "1st year
Engineering" recorded two years ago into "3rd year Engineering" today.
"""

import re
from datetime import date, datetime

from ..models import Fact, TimeProgression

ORDINALS = ["1st", "2nd", "3rd", "4th", "5th", "6th", "7th", "8th", "9th", "10th"]

_INTEGER = re.compile(r"^[+-]?\d+$")


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def elapsed_months(start: date | datetime, end: date | datetime) -> int:
    """Whole calendar months from start to end, never negative."""
    start = _as_date(start)
    end = _as_date(end)
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return max(months, 0)


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'}"


def advance_academic_year(value: str, years: int) -> str:
    """Move the first ordinal in value forward by years, capped at 10th."""
    for index, ordinal in enumerate(ORDINALS):
        pattern = re.compile(rf"\b{ordinal}\b", re.IGNORECASE)
        if pattern.search(value):
            replacement = ORDINALS[min(index + years, len(ORDINALS) - 1)]
            return pattern.sub(replacement, value, count=1)
    return value


def format_tenure(months: int) -> str:
    """Render a month count as "N months" or "Y years, N months"."""
    years, remainder = divmod(months, 12)
    if years == 0:
        return _plural(remainder, "month")
    return f"{_plural(years, 'year')}, {_plural(remainder, 'month')}"


def compute_current_value(fact: Fact, as_of: date | datetime | None = None) -> str:
    """Compute the value a fact has as of a given date.

    Args:
        fact: The stored fact.
        as_of: Reference date, defaults to today.

    Returns:
        The derived value, or the stored value when the fact does not
        progress over time.
    """
    if (
        not fact.is_time_sensitive
        or fact.fact_date is None
        or fact.time_progression is None
    ):
        return fact.value

    reference = _as_date(as_of) if as_of is not None else date.today()
    months = elapsed_months(fact.fact_date, reference)
    years_passed = months // 12

    if fact.time_progression is TimeProgression.AGE:
        if _INTEGER.match(fact.value):
            return str(int(fact.value) + years_passed)
        return fact.value

    if fact.time_progression is TimeProgression.ACADEMIC_YEAR:
        return advance_academic_year(fact.value, years_passed)

    if fact.time_progression is TimeProgression.TENURE:
        return format_tenure(months)

    return fact.value
