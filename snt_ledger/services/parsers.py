"""Row normalization for imported statements and payment registries.

Handles Russian-specific formatting of already-parsed spreadsheet cells:
- Decimal separator: comma (,)
- Thousand separator: space ( ) or non-breaking space
- Currency symbol: р. / руб / ₽
- Date format: DD.MM.YYYY (ISO YYYY-MM-DD is accepted as well)

Example:
    >>> parse_russian_decimal("1 000,25")
    Decimal('1000.25')

    >>> parse_russian_currency("р.7 000,00")
    Decimal('7000.00')

    >>> parse_date("23.06.2025")
    datetime.date(2025, 6, 23)
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

OUTBOUND_DIRECTIONS = {"out", "outbound", "debit", "expense", "расход", "списание"}
ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
RU_DATE_RE = re.compile(r"^(\d{2})\.(\d{2})\.(\d{4})")


def parse_russian_decimal(value: Optional[str]) -> Optional[Decimal]:
    """
    Parse a Russian-formatted decimal number to Python Decimal.

    Args:
        value: Russian-formatted number string (e.g., "1 000,25") or None/empty

    Returns:
        Decimal object or None if input is empty/None

    Raises:
        ValueError: If value cannot be parsed as a valid decimal

    Examples:
        >>> parse_russian_decimal("1 000,25")
        Decimal('1000.25')
        >>> parse_russian_decimal("")
        None
    """
    if not value or not isinstance(value, str):
        return None

    value = value.strip()
    if not value:
        return None

    try:
        # Handle both regular spaces and non-breaking spaces (U+00A0, U+202F)
        normalized = (
            value.replace(" ", "").replace("\xa0", "").replace("\u202f", "").replace(",", ".")
        )
        result = Decimal(normalized)
    except (ValueError, InvalidOperation) as e:
        raise ValueError(f"Cannot parse Russian decimal '{value}': {e}") from e
    if not result.is_finite():
        raise ValueError(f"Cannot parse Russian decimal '{value}': not a finite number")
    return result


def parse_russian_currency(value: Optional[str]) -> Optional[Decimal]:
    """
    Parse a Russian-formatted currency value to Python Decimal.

    Examples:
        >>> parse_russian_currency("р.7 000 000,00")
        Decimal('7000000.00')
        >>> parse_russian_currency("1 500 ₽")
        Decimal('1500')
    """
    if not value or not isinstance(value, str):
        return None

    value = value.strip()
    if not value:
        return None

    cleaned = (
        value.replace("руб.", "").replace("руб", "").replace("р.", "").replace("₽", "").strip()
    )
    return parse_russian_decimal(cleaned)


def parse_amount(value: Any) -> Optional[Decimal]:
    """Parse an amount cell that may already be numeric.

    Raises:
        ValueError: If value is not a number
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Cannot parse amount {value!r}")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    return parse_russian_currency(str(value))


def parse_date(value: Any) -> Optional[date]:
    """Parse a date cell: date/datetime objects, "DD.MM.YYYY" or "YYYY-MM-DD".

    Raises:
        ValueError: If date format is invalid

    Examples:
        >>> parse_date("23.06.2025")
        datetime.date(2025, 6, 23)
        >>> parse_date("2025-06-23")
        datetime.date(2025, 6, 23)
        >>> parse_date("")
        None
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Cannot parse date {value!r}")

    value = value.strip()
    if not value:
        return None

    try:
        if ISO_DATE_RE.match(value):
            return datetime.strptime(value[:10], "%Y-%m-%d").date()
        if RU_DATE_RE.match(value):
            return datetime.strptime(value[:10], "%d.%m.%Y").date()
    except ValueError as e:
        raise ValueError(f"Cannot parse date '{value}': {e}") from e
    raise ValueError(f"Cannot parse date '{value}' (expected DD.MM.YYYY or YYYY-MM-DD)")


def clean_text(value: Any) -> Optional[str]:
    """Collapse whitespace; empty becomes None."""
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


@dataclass
class StatementRow:
    """Normalized bank statement row."""

    paid_at: date
    amount: Decimal
    payer: Optional[str]
    purpose: Optional[str]
    bank_ref: Optional[str]
    outbound: bool = False


@dataclass
class RegistryRow:
    """Normalized payment registry row (plot given explicitly)."""

    paid_at: date
    amount: Decimal
    plot: Optional[str]
    payer: Optional[str]


def _is_outbound(row: dict[str, Any], amount: Decimal) -> bool:
    direction = clean_text(row.get("direction"))
    if direction:
        return direction.lower() in OUTBOUND_DIRECTIONS
    return amount < 0


def _required_date(row: dict[str, Any]) -> date:
    paid_at = parse_date(row.get("date"))
    if paid_at is None:
        raise ValueError("Missing date")
    return paid_at


def _required_amount(row: dict[str, Any]) -> Decimal:
    amount = parse_amount(row.get("amount"))
    if amount is None:
        raise ValueError("Missing amount")
    return amount


def normalize_statement_row(row: dict[str, Any]) -> StatementRow:
    """Normalize a statement row {date, amount, direction?, payer, purpose, bank_ref}.

    Outbound rows (direction out/debit or a negative amount without direction)
    are returned flagged, not rejected.

    Raises:
        ValueError: If date or amount is missing or malformed, or an inbound
            amount is not positive
    """
    paid_at = _required_date(row)
    amount = _required_amount(row)
    outbound = _is_outbound(row, amount)
    if not outbound and amount <= 0:
        raise ValueError(f"Amount must be positive, got {amount}")
    return StatementRow(
        paid_at=paid_at,
        amount=abs(amount),
        payer=clean_text(row.get("payer")),
        purpose=clean_text(row.get("purpose")),
        bank_ref=clean_text(row.get("bank_ref")),
        outbound=outbound,
    )


def normalize_registry_row(row: dict[str, Any]) -> RegistryRow:
    """Normalize a registry row {date, amount, plot, payer}.

    Raises:
        ValueError: If date or amount is missing or malformed, or amount <= 0
    """
    paid_at = _required_date(row)
    amount = _required_amount(row)
    if amount <= 0:
        raise ValueError(f"Amount must be positive, got {amount}")
    return RegistryRow(
        paid_at=paid_at,
        amount=amount,
        plot=clean_text(row.get("plot")),
        payer=clean_text(row.get("payer")),
    )


__all__ = [
    "parse_russian_decimal",
    "parse_russian_currency",
    "parse_amount",
    "parse_date",
    "clean_text",
    "StatementRow",
    "RegistryRow",
    "normalize_statement_row",
    "normalize_registry_row",
]
