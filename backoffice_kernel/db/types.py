"""
Module: backoffice_kernel.db.types
Responsibility: Money and FX rate rounding plus the currency
    validation helpers shared by every engine and module.
Architecture position: Kernel > DB.  Imported by models, engines and services.

Invariants enforced:
    - round_money() is the only sanctioned rounding function for money.
      Default mode is ROUND_HALF_UP.
    - round_rate() quantizes FX rates to the 9 places their columns hold.
    - validate_currency() accepts ISO 4217 codes only.
    - No floats: every amount is a Decimal.

Failure modes:
    - InvalidCurrencyError on an unknown currency code.
"""

from decimal import ROUND_HALF_UP, Decimal

from backoffice_kernel.exceptions import InvalidCurrencyError

MONEY_DECIMAL_PLACES = 2
RATE_DECIMAL_PLACES = 9
DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to ``decimal_places`` using ``rounding``.

    Every engine and service delegates money rounding here so the whole
    back-office rounds the same way.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places else "1"
    return Decimal(value).quantize(Decimal(quantize_str), rounding=rounding)


def round_rate(value: Decimal) -> Decimal:
    """Quantize an FX rate to ``RATE_DECIMAL_PLACES``, the scale rate columns store."""
    return Decimal(value).quantize(Decimal(1).scaleb(-RATE_DECIMAL_PLACES), rounding=DEFAULT_ROUNDING)


def to_decimal(value: Decimal | int | str) -> Decimal:
    """Coerce config and JSON values to Decimal.  Floats are rejected."""
    if isinstance(value, float):
        raise TypeError(f"Refusing float for money value: {value!r}")
    return Decimal(str(value))


ISO_4217_CURRENCIES: frozenset[str] = frozenset({
    "USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "NZD",
    "AED", "ARS", "BGN", "BHD", "BRL", "CLP", "CNY", "COP", "CZK",
    "DKK", "EGP", "HKD", "HUF", "IDR", "ILS", "INR", "ISK",
    "KES", "KRW", "KWD", "MAD", "MXN", "MYR", "NGN", "NOK",
    "OMR", "PEN", "PHP", "PKR", "PLN", "QAR", "RON", "RSD", "RUB",
    "SAR", "SEK", "SGD", "THB", "TRY", "TWD", "UAH", "VND", "ZAR",
})


def validate_currency(currency: str) -> str:
    """
    Validate and normalize an ISO 4217 currency code.

    Returns:
        The uppercase, trimmed code.

    Raises:
        InvalidCurrencyError: If the code is not a recognized currency.
    """
    if not currency or not isinstance(currency, str):
        raise InvalidCurrencyError(str(currency))

    normalized = currency.upper().strip()
    if normalized not in ISO_4217_CURRENCIES:
        raise InvalidCurrencyError(currency)
    return normalized
