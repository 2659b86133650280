"""Test euro amount parsing."""
import pytest
from payvat.vat.number_parsing import parse_amount, to_amount


class TestParseAmount:
    def test_irish_format(self):
        assert parse_amount("1,234.56") == 1234.56

    def test_euro_symbol(self):
        assert parse_amount("€1,234.56") == 1234.56

    def test_currency_code(self):
        assert parse_amount("EUR 12.00") == 12.0

    def test_parentheses_negative(self):
        assert parse_amount("(23.66)") == -23.66

    def test_trailing_minus(self):
        assert parse_amount("23.66-") == -23.66

    def test_eu_format_when_requested(self):
        assert parse_amount("1.234,56", number_format="1.234,56") == 1234.56

    def test_empty_raises(self):
        with pytest.raises(ValueError):
            parse_amount("   ")

    def test_symbol_only_raises(self):
        with pytest.raises(ValueError):
            parse_amount("€")


class TestToAmount:
    def test_none(self):
        assert to_amount(None) is None

    def test_bool_is_not_an_amount(self):
        assert to_amount(True) is None

    def test_int(self):
        assert to_amount(5) == 5.0

    def test_string(self):
        assert to_amount("€23.00") == 23.0

    def test_unparseable_string(self):
        assert to_amount("n/a") is None

    def test_other_types(self):
        assert to_amount([1, 2]) is None
