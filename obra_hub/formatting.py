from __future__ import annotations

import math
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, List

MONTHS_ES = [
    "enero",
    "febrero",
    "marzo",
    "abril",
    "mayo",
    "junio",
    "julio",
    "agosto",
    "septiembre",
    "octubre",
    "noviembre",
    "diciembre",
]
MONTHS_ES_SHORT = ["ene", "feb", "mar", "abr", "may", "jun", "jul", "ago", "sep", "oct", "nov", "dic"]
MONTHS_ES_TITLE = [name.capitalize() for name in MONTHS_ES]
# Sunday first, matching date.isoweekday() % 7.
DAY_LETTERS_ES = ["D", "L", "M", "X", "J", "V", "S"]


def to_number(value: Any) -> float:
    """Best-effort numeric value; blanks, junk, NaN and infinities become 0."""
    if value is None or value == "":
        return 0.0
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    else:
        try:
            number = float(Decimal(str(value).replace(",", "").replace("$", "").strip()))
        except (InvalidOperation, ValueError):
            return 0.0
    return number if math.isfinite(number) else 0.0


def format_currency(value: Any, decimals: int = 2) -> str:
    amount = to_number(value)
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.{decimals}f}"


def format_percent(value: Any, decimals: int = 0) -> str:
    return f"{to_number(value):.{decimals}f}%"


def parse_date(value: Any) -> date | None:
    """Parse a stored date as a local calendar date.

    Timestamps keep only their date part so an ISO string like
    ``2024-03-01T00:00:00Z`` never shifts to the previous day.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) >= 10 and text[4] == "-":
        text = text[:10]
    for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%Y/%m/%d"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip().replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(text).replace(tzinfo=None)
    except ValueError:
        parsed = parse_date(text)
        if parsed is None:
            return None
        return datetime(parsed.year, parsed.month, parsed.day)


def format_date_long(value: Any) -> str:
    """``5 de marzo de 2024``"""
    parsed = parse_date(value)
    if parsed is None:
        return "-"
    return f"{parsed.day} de {MONTHS_ES[parsed.month - 1]} de {parsed.year}"


def format_date_medium(value: Any) -> str:
    parsed = parse_date(value)
    if parsed is None:
        return "-"
    return f"{parsed.day} {MONTHS_ES_SHORT[parsed.month - 1]} {parsed.year}"


def format_date_short(value: Any) -> str:
    parsed = parse_date(value)
    if parsed is None:
        return "-"
    return f"{parsed.day:02d} {MONTHS_ES_SHORT[parsed.month - 1]}"


def month_label(year: int, month: int) -> str:
    return f"{MONTHS_ES_SHORT[month - 1].capitalize()} {year % 100:02d}"


def day_letter(value: date) -> str:
    return DAY_LETTERS_ES[value.isoweekday() % 7]


def split_lines(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    return [line.strip() for line in str(value).splitlines() if line.strip()]
