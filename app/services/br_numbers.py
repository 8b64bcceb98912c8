"""
Brazilian number parsing/formatting shared by ingestion, metrics and repasses.

Spreadsheet cells and admin inputs arrive in three shapes:
  - Brazilian:  '51.242,29'  (dot = thousands, comma = decimal)
  - plain:      '51242.29'   (dot = decimal, no comma)
  - integer:    '51242'
plus native numbers when openpyxl already typed the cell. Everything is
converted to Decimal so sums stay exact.
"""
import math
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

ZERO = Decimal("0")
CENT = Decimal("0.01")

_NON_NUMERIC_RE = re.compile(r"[^\d,.\-]")


def parse_br_number(raw) -> Decimal:
    """Parse a spreadsheet/admin value to Decimal.

    If the string contains a comma, the comma is the decimal point and every
    dot is a thousands separator; otherwise the value is read as-is. Anything
    other than digits, '.', ',' and a leading '-' is stripped first.
    Blank or unparseable input returns 0, never raises.
    """
    if raw is None or isinstance(raw, bool):
        return ZERO
    if isinstance(raw, Decimal):
        return raw if raw.is_finite() else ZERO
    if isinstance(raw, int):
        return Decimal(raw)
    if isinstance(raw, float):
        if not math.isfinite(raw):
            return ZERO
        # str() keeps the shortest repr: 0.1 -> Decimal('0.1'), not the binary expansion
        return Decimal(str(raw))

    cleaned = _NON_NUMERIC_RE.sub("", str(raw).strip())
    if not cleaned:
        return ZERO

    negative = cleaned.startswith("-")
    cleaned = cleaned.replace("-", "")

    if "," in cleaned:
        cleaned = cleaned.replace(".", "").replace(",", ".")

    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return ZERO
    if not value.is_finite():
        return ZERO
    return -value if negative else value


def quantize_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def format_br_number(value, with_grouping: bool = True) -> str:
    """Format to Brazilian display ('1.234,50'). Negative values give ''."""
    if isinstance(value, (Decimal, int, float)) and not isinstance(value, bool):
        number = parse_br_number(value)
    else:
        number = parse_br_number(str(value) if value is not None else "")

    if number < 0:
        return ""

    q = quantize_cents(number)
    if with_grouping:
        # '1,234.50' -> '1.234,50'
        return f"{q:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{q:.2f}".replace(".", ",")


def format_brl(value) -> str:
    number = parse_br_number(value)
    if number < 0:
        return f"-R$ {format_br_number(-number)}"
    return f"R$ {format_br_number(number)}"
