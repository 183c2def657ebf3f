"""Unit tests for money rounding, month keys and the penalty formula."""

from datetime import date
from decimal import Decimal

import pytest

from snt_ledger.services.errors import ValidationError
from snt_ledger.services.ledger_store import month_bounds, parse_period, period_key, to_money
from snt_ledger.services.locale_service import format_amount, get_currency_code
from snt_ledger.services.penalty_service import compute_penalty


class TestToMoney:
    """Test conversion to kopecks."""

    def test_rounds_half_up(self):
        assert to_money("10.005") == Decimal("10.01")
        assert to_money(Decimal("10.004")) == Decimal("10.00")
        assert to_money(3000) == Decimal("3000.00")

    def test_invalid_amount(self):
        with pytest.raises(ValidationError):
            to_money("ten")
        with pytest.raises(ValidationError):
            to_money(Decimal("NaN"))


class TestPeriods:
    """Test 'YYYY-MM' month keys."""

    def test_period_key(self):
        assert period_key(date(2025, 1, 31)) == "2025-01"

    def test_parse_period(self):
        assert parse_period("2025-12") == (2025, 12)

    @pytest.mark.parametrize("value", ["2025-13", "2025-00", "2025-1", "25-01", "", "2025/01"])
    def test_parse_period_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_period(value)

    def test_month_bounds_february(self):
        assert month_bounds("2024-02") == (date(2024, 2, 1), date(2024, 2, 29))
        assert month_bounds("2025-02") == (date(2025, 2, 1), date(2025, 2, 28))


class TestComputePenalty:
    """Test penalty = debt * rate * days / 365."""

    def test_reference_value(self):
        assert compute_penalty(Decimal("10000"), Decimal("0.365"), 10) == Decimal("100.00")

    def test_rounded_to_kopecks(self):
        # 1000 * 0.095 * 1 / 365 = 0.26027...
        assert compute_penalty(Decimal("1000"), Decimal("0.095"), 1) == Decimal("0.26")

    def test_no_penalty_without_debt_or_overdue(self):
        assert compute_penalty(Decimal("0"), Decimal("0.1"), 30) == Decimal("0.00")
        assert compute_penalty(Decimal("1000"), Decimal("0.1"), 0) == Decimal("0.00")
        assert compute_penalty(Decimal("-5"), Decimal("0.1"), 30) == Decimal("0.00")


class TestLocale:
    """Test amount formatting for campaign messages."""

    def test_currency_from_locale(self):
        assert get_currency_code() == "RUB"

    def test_format_amount(self):
        text = format_amount(Decimal("1234.5"))
        assert "₽" in text
        assert "234,50" in text

    def test_format_without_symbol(self):
        assert "₽" not in format_amount(Decimal("10"), include_symbol=False)
