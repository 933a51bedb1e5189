"""Money and input sanitization helpers."""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union
from urllib.parse import quote

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
DEFAULT_COUNTRY_CODE = "52"

# Characters encodeURIComponent leaves untouched
_URI_SAFE = "-_.!~*'()"

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """Convert a number or numeric string to Decimal. Floats go through str() to avoid binary noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        return Decimal("0")


def fix_money(value: Number) -> Decimal:
    """Round to cents, half away from zero."""
    amount = to_decimal(value)
    if not amount.is_finite():
        return ZERO
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def only_digits(raw: str) -> str:
    """Strip everything that is not a digit."""
    return re.sub(r"\D", "", raw or "")


def sanitize_phone(raw: str) -> str:
    """Normalize a phone number to its digits."""
    return only_digits(raw)


def sanitize_amount(raw: str) -> str:
    """
    Clean a typed amount.

    Commas become decimal points, every other non-numeric character is dropped
    and only the first decimal point is kept ("1,2.3" -> "1.23").
    """
    cleaned = re.sub(r"[^0-9.]", "", (raw or "").replace(",", "."))
    parts = cleaned.split(".")
    if len(parts) <= 2:
        return cleaned
    return f"{parts[0]}.{''.join(parts[1:])}"


def parse_amount(raw: Number) -> Decimal:
    """Parse user input into a cent-rounded amount. Unparseable input is 0."""
    if isinstance(raw, str):
        cleaned = sanitize_amount(raw)
        if cleaned in ("", "."):
            return ZERO
        return fix_money(cleaned)
    return fix_money(raw)


def parse_quantity(raw: Number) -> Decimal:
    """Parse a quantity. Anything that is not a positive finite number becomes 1."""
    if isinstance(raw, str):
        raw = raw.strip().replace(",", ".")
    quantity = to_decimal(raw)
    if not quantity.is_finite() or quantity <= 0:
        return Decimal("1")
    return quantity


def currency(amount: Number) -> str:
    """Format an amount as Mexican pesos, e.g. ``$1,234.50``."""
    value = fix_money(amount)
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def format_phone_for_whatsapp(raw: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Prefix the country code unless the number already carries it."""
    digits = only_digits(raw)
    if digits.startswith(country_code):
        return digits
    return country_code + digits


def whatsapp_links(phone: str, text: str, country_code: str = DEFAULT_COUNTRY_CODE) -> tuple[str, str]:
    """
    Build the WhatsApp deep links for a message.

    Returns:
        (native app link, web fallback link)
    """
    number = format_phone_for_whatsapp(phone, country_code)
    encoded = quote(text, safe=_URI_SAFE)
    native = f"whatsapp://send?phone={number}&text={encoded}"
    web = f"https://wa.me/{number}?text={encoded}"
    return native, web
