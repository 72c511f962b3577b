"""
Tests for fixed-point display formatting.
"""
from perp_positions.constants import USD_DECIMALS
from perp_positions.positions.formatting import format_amount, get_delta_str

USD = 10 ** USD_DECIMALS


class TestFormatAmount:

    def test_truncates_instead_of_rounding(self):
        assert format_amount(1999 * USD // 1000, USD_DECIMALS, 2) == "1.99"

    def test_commas(self):
        assert format_amount(1234567 * USD, USD_DECIMALS, 2, use_commas=True) == "1,234,567.00"
        assert format_amount(1234567 * USD, USD_DECIMALS, 2) == "1234567.00"

    def test_token_decimals(self):
        assert format_amount(1500000, 6, 2) == "1.50"
        assert format_amount(4795, 2, 2) == "47.95"

    def test_missing_amount_uses_default(self):
        assert format_amount(None, USD_DECIMALS, 2) == "..."
        assert format_amount(None, USD_DECIMALS, 2, default_value="-") == "-"


class TestDeltaStr:

    def test_profit(self):
        assert get_delta_str(1234 * USD + 56 * USD // 100, 1234, True) == ("+$1,234.56", "+12.34%")

    def test_loss(self):
        assert get_delta_str(50 * USD, 500, False) == ("-$50.00", "-5.00%")

    def test_zero_delta_has_no_sign(self):
        assert get_delta_str(0, 0, True) == ("$0.00", "0.00%")
        assert get_delta_str(0, 0, False) == ("$0.00", "0.00%")
