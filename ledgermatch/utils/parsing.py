"""
Value parsing helpers shared by the file parser and the row validator.

Spreadsheet cells arrive as strings, numbers, pandas timestamps or NaN; these
helpers turn them into dates, decimals and comparable text, raising
ValueError when a value is present but unusable.
"""
import re
import unicodedata
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

import numpy as np
import pandas as pd

DATE_FORMATS = (
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%Y/%m/%d",
    "%Y%m%d",
    "%d/%m/%y",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
)

_CURRENCY_RE = re.compile(r"(R\$|US\$|\$|€|£|BRL|USD|EUR)", re.IGNORECASE)
_CENTS = Decimal("0.01")
# Numeric(18, 2) columns hold at most 16 integer digits
MAX_AMOUNT = Decimal("9999999999999999.99")


def is_missing(value: Any) -> bool:
    """True for None, NaN/NaT and blank strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (float, np.floating)) and np.isnan(value):
        return True
    if value is pd.NaT or value is pd.NA:
        return True
    return False


def parse_date(value: Any) -> date:
    """
    Parse a cell into a date.

    Raises:
        ValueError: If the value cannot be read as a date.
    """
    if isinstance(value, pd.Timestamp):
        return value.date()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, np.datetime64):
        return pd.Timestamp(value).date()

    text = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    parsed = pd.to_datetime(text, dayfirst=True, errors="coerce")
    if pd.isna(parsed):
        raise ValueError(f"Invalid date: '{text}'")
    return parsed.date()


def parse_amount(value: Any) -> Decimal:
    """
    Parse a cell into a two-decimal amount.

    Accepts numbers and strings such as "1.234,56", "1,234.56", "R$ -50,00"
    and "(120.00)".

    Raises:
        ValueError: If the value cannot be read as an amount.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: '{value}'")
    if isinstance(value, (int, np.integer)):
        return _to_cents(Decimal(int(value)), value)
    if isinstance(value, (float, np.floating)):
        if not np.isfinite(value):
            raise ValueError(f"Invalid amount: '{value}'")
        return _to_cents(Decimal(str(float(value))), value)
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError(f"Invalid amount: '{value}'")
        return _to_cents(value, value)

    original = str(value).strip()
    text = _CURRENCY_RE.sub("", original).replace(" ", "").replace(" ", "")

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]
    if text.endswith("-"):
        negative = True
        text = text[:-1]

    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        head, _, tail = text.rpartition(",")
        if len(tail) in (1, 2) and text.count(",") == 1:
            text = f"{head}.{tail}"
        else:
            text = text.replace(",", "")

    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"Invalid amount: '{original}'")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: '{original}'")
    if negative:
        amount = -abs(amount)
    return _to_cents(amount, original)


def _to_cents(amount: Decimal, original: Any) -> Decimal:
    if abs(amount) > MAX_AMOUNT:
        raise ValueError(f"Amount out of range: '{original}'")
    try:
        return amount.quantize(_CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Invalid amount: '{original}'")


def strip_accents(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))


def normalize_text(value: Optional[str]) -> str:
    """Lower-case, accent-free, single-spaced text for comparisons."""
    if value is None:
        return ""
    return " ".join(strip_accents(str(value)).lower().split())


def clean_string(value: Any) -> Optional[str]:
    """Trimmed string or None for missing cells."""
    if is_missing(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()
