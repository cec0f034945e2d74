from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

DEFAULT_CURRENCY = "USD"

CURRENCY_SYMBOLS: dict[str, str] = {
    "USD": "$",
    "CAD": "$",
    "AUD": "$",
    "NZD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "KRW": "₩",
    "INR": "₹",
}

# Currencies whose minor unit is not 1/100 of the major unit.
MINOR_UNIT_DIGITS: dict[str, int] = {
    "JPY": 0,
    "KRW": 0,
}


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def minor_unit_digits(currency: str) -> int:
    return MINOR_UNIT_DIGITS.get(normalize_currency(currency), 2)


def to_major_units(amount: int, currency: str = DEFAULT_CURRENCY) -> Decimal:
    """Convert integer minor units (cents) to a Decimal in major units."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError("Amounts must be whole minor currency units.")
    digits = minor_unit_digits(currency)
    return Decimal(amount).scaleb(-digits).quantize(Decimal(1).scaleb(-digits))


def to_minor_units(amount: Decimal, currency: str = DEFAULT_CURRENCY) -> int:
    """Round a major-unit amount half up to whole minor units."""
    digits = minor_unit_digits(currency)
    return int(Decimal(amount).scaleb(digits).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def format_amount(amount: int, currency: str = DEFAULT_CURRENCY) -> str:
    normalized = normalize_currency(currency)
    major = to_major_units(amount, normalized)
    digits = minor_unit_digits(normalized)
    body = f"{abs(major):,.{digits}f}"
    sign = "-" if major < 0 else ""
    symbol = CURRENCY_SYMBOLS.get(normalized)
    if symbol is None:
        return f"{sign}{body} {normalized}"
    return f"{sign}{symbol}{body}"
