"""Euro amount parsing for scanned text and model output."""
from __future__ import annotations
import re

_CURRENCY = re.compile(r'[€$£\s]|EUR|GBP|USD', re.IGNORECASE)


def parse_amount(raw_string: str, number_format: str = "1,234.56") -> float:
    """Parse a monetary amount string to float.

    Handles:
    - Irish/UK format: "1,234.56" → 1234.56
    - EU format when requested: "1.234,56" → 1234.56
    - Currency symbols and codes: "€1,234.56", "EUR 12.00"
    - Negative: "(23.66)", "-23.66", "23.66-"
    """
    if not raw_string or not raw_string.strip():
        raise ValueError("Empty amount string")

    cleaned = raw_string.strip()

    negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        negative = True
        cleaned = cleaned[1:-1].strip()
    elif cleaned.startswith("-"):
        negative = True
        cleaned = cleaned.lstrip("- ")
    elif cleaned.endswith("-"):
        negative = True
        cleaned = cleaned[:-1].strip()

    cleaned = _CURRENCY.sub('', cleaned)
    if not cleaned:
        raise ValueError(f"No numeric content in: {raw_string}")

    if number_format == "1.234,56":
        cleaned = cleaned.replace('.', '').replace(',', '.')
    else:
        cleaned = cleaned.replace(',', '')

    result = float(cleaned)
    return -result if negative else result


def to_amount(value: object) -> float | None:
    """Coerce a loosely typed JSON value into an amount, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return parse_amount(value)
        except ValueError:
            return None
    return None
