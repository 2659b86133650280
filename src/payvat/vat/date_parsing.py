"""Invoice date resolution for Irish documents.

Irish invoices write dates day-first, so an ambiguous ``03/04/2025`` is read
as 3 April. Strategies are tried in a fixed order and the first plausible
date wins; when none matches, the current date is returned with low
confidence so the document can still be filed.
"""
from __future__ import annotations

import re
from datetime import date, datetime
from typing import Callable

from payvat.models.extraction import DateResolution
from payvat.utils.resilience import first_result

FOUND_CONFIDENCE = 0.9
FALLBACK_CONFIDENCE = 0.5

MONTH_ABBREVIATIONS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_DAY_FIRST = re.compile(r'(\d{1,2})[/-](\d{1,2})[/-](\d{4})')
_YEAR_FIRST = re.compile(r'(\d{4})[/-](\d{1,2})[/-](\d{1,2})')
_DAY_MONTH_NAME = re.compile(
    r'(\d{1,2})\s+(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?,?\s+(\d{4})',
    re.IGNORECASE,
)
_MONTH_NAME_FIRST = re.compile(
    r'\b(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})',
    re.IGNORECASE,
)


def _native(text: str) -> date:
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        m = _MONTH_NAME_FIRST.search(text)
        if not m:
            raise
        return date(int(m[3]), MONTH_ABBREVIATIONS[m[1][:3].lower()], int(m[2]))


def _day_first(text: str) -> date | None:
    m = _DAY_FIRST.search(text)
    if not m:
        return None
    return date(int(m[3]), int(m[2]), int(m[1]))


def _year_first(text: str) -> date | None:
    m = _YEAR_FIRST.search(text)
    if not m:
        return None
    return date(int(m[1]), int(m[2]), int(m[3]))


def _day_month_name(text: str) -> date | None:
    m = _DAY_MONTH_NAME.search(text)
    if not m:
        return None
    return date(int(m[3]), MONTH_ABBREVIATIONS[m[2][:3].lower()], int(m[1]))


STRATEGIES: list[tuple[str, Callable[[str], date | None]]] = [
    ("native", _native),
    ("day_first", _day_first),
    ("year_first", _year_first),
    ("day_month_name", _day_month_name),
]


def resolve_date(
    candidate: str | None,
    *,
    today: date | None = None,
    min_year: int = 1990,
    max_year: int = 2030,
) -> DateResolution:
    """Resolve a free-text date candidate. Never raises.

    A parsed date whose year falls outside ``[min_year, max_year]`` is
    rejected and the next strategy is tried.
    """
    today = today or date.today()
    text = (candidate or "").strip()

    if text:
        def plausible(parse: Callable[[str], date | None]) -> Callable[[], date | None]:
            def attempt() -> date | None:
                parsed = parse(text)
                if parsed is not None and min_year <= parsed.year <= max_year:
                    return parsed
                return None
            return attempt

        hit = first_result((name, plausible(parse)) for name, parse in STRATEGIES)
        if hit is not None:
            strategy, value = hit
            return DateResolution(value=value, confidence=FOUND_CONFIDENCE, found=True, strategy=strategy)

    return DateResolution(value=today, confidence=FALLBACK_CONFIDENCE, found=False)


_DATE_TEXT = re.compile(
    r'\d{1,2}[/-]\d{1,2}[/-]\d{4}|\d{4}[/-]\d{1,2}[/-]\d{1,2}|\d{1,2}\s+[A-Za-z]{3,9}\.?\s+\d{4}'
    r'|(?i:\b(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?\s+\d{1,2}(?:st|nd|rd|th)?,?\s+\d{4})'
)


def find_date_text(text: str | None) -> str | None:
    """First date-looking substring of ``text``, unparsed."""
    if not text:
        return None
    match = _DATE_TEXT.search(text)
    return match.group(0) if match else None
