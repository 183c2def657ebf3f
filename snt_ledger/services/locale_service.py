"""Money formatting for debtor messages and receipts.

The ledger holds a single currency, taken from the territory of the LOCALE
setting (ru_RU gives RUB).
"""

import logging
from decimal import Decimal

from babel import Locale, UnknownLocaleError
from babel.numbers import format_currency, format_decimal, get_territory_currencies

from snt_ledger.config import settings

logger = logging.getLogger(__name__)

FALLBACK_LOCALE = "ru_RU"
FALLBACK_CURRENCY = "RUB"


def _resolve(locale_name: str | None) -> tuple[str, str]:
    """Return (locale, currency) for a locale name, falling back to ru_RU / RUB."""
    try:
        locale = Locale.parse(locale_name or FALLBACK_LOCALE)
    except (UnknownLocaleError, ValueError) as e:
        logger.warning("Unusable LOCALE %r (%s), formatting amounts as %s", locale_name, e, FALLBACK_LOCALE)
        return FALLBACK_LOCALE, FALLBACK_CURRENCY

    currencies = get_territory_currencies(locale.territory) if locale.territory else []
    return str(locale), currencies[0] if currencies else FALLBACK_CURRENCY


LOCALE, CURRENCY = _resolve(settings.locale)


def get_currency_code() -> str:
    return CURRENCY


def format_amount(amount: Decimal | int | str, include_symbol: bool = True) -> str:
    """Render an amount the way residents read it, e.g. '1 234,56 ₽'."""
    value = Decimal(str(amount))
    if include_symbol:
        return format_currency(value, CURRENCY, locale=LOCALE)
    return format_decimal(value, format="#,##0.00", locale=LOCALE)
