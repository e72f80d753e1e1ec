"""Unit tests for domain parsing functions."""

import unittest
from decimal import Decimal

from welloh.domain.parsing import (
    is_valid_ticker,
    normalize_ticker,
    parse_metric_value,
    parse_share_count,
    quantize_money,
    quantize_price,
    to_decimal,
    to_price,
)
from welloh.errors import ValidationError


class TestNormalizeTicker(unittest.TestCase):
    """Test ticker normalization."""

    def test_uppercase_conversion(self):
        self.assertEqual(normalize_ticker("aapl"), "AAPL")

    def test_strip_dollar_sign(self):
        self.assertEqual(normalize_ticker("$aapl"), "AAPL")

    def test_whitespace_stripping(self):
        self.assertEqual(normalize_ticker("  sonatel.brvm  "), "SONATEL.BRVM")


class TestIsValidTicker(unittest.TestCase):
    """Test ticker validation."""

    def test_valid_tickers(self):
        self.assertTrue(is_valid_ticker("AAPL"))
        self.assertTrue(is_valid_ticker("BRK-B"))
        self.assertTrue(is_valid_ticker("SNTS.BRVM"))

    def test_invalid_too_long(self):
        self.assertFalse(is_valid_ticker("ABCDEFGHIJKLMNOP"))

    def test_invalid_characters(self):
        self.assertFalse(is_valid_ticker("AAP@L"))
        self.assertFalse(is_valid_ticker("AA PL"))
        self.assertFalse(is_valid_ticker(""))


class TestShareCount(unittest.TestCase):
    """Share counts must be positive whole numbers."""

    def test_accepts_ints_and_integer_strings(self):
        self.assertEqual(parse_share_count(12), 12)
        self.assertEqual(parse_share_count(" 12 "), 12)

    def test_rejects_bad_input(self):
        for value in ("abc", "1.5", "0", -3, 0, True, None, ""):
            with self.subTest(value=value):
                with self.assertRaises(ValidationError) as ctx:
                    parse_share_count(value)
                self.assertEqual(ctx.exception.message, "Please enter a valid number of shares.")


class TestMoney(unittest.TestCase):
    """Decimal conversion and rounding."""

    def test_to_decimal(self):
        self.assertEqual(to_decimal(0.1), Decimal("0.1"))
        self.assertEqual(to_decimal(" 12.50 "), Decimal("12.50"))
        self.assertIsNone(to_decimal("abc"))
        self.assertIsNone(to_decimal(float("nan")))
        self.assertIsNone(to_decimal("NaN"))
        self.assertIsNone(to_decimal(True))

    def test_rounding_is_half_up(self):
        self.assertEqual(quantize_money(Decimal("2.675")), Decimal("2.68"))
        self.assertEqual(quantize_money(Decimal("2.665")), Decimal("2.67"))
        self.assertEqual(quantize_price(Decimal("1.23455")), Decimal("1.2346"))

    def test_to_price(self):
        self.assertEqual(to_price("12.5"), Decimal("12.5000"))
        for value in ("0", -1, "free", None):
            with self.subTest(value=value):
                with self.assertRaises(ValidationError):
                    to_price(value)

    def test_to_price_rejects_values_lost_to_rounding(self):
        # positive, but 0.0000 at 4 decimal places
        with self.assertRaises(ValidationError):
            to_price("0.00004")
        self.assertEqual(to_price("0.00005"), Decimal("0.0001"))

    def test_to_price_rejects_values_too_large_to_quantize(self):
        with self.assertRaises(ValidationError):
            to_price("1e30")


class TestMetricValue(unittest.TestCase):
    """Leading number extraction from formatted metrics."""

    def test_formatted_values(self):
        self.assertEqual(parse_metric_value("25.3"), 25.3)
        self.assertEqual(parse_metric_value("2.5T USD"), 2.5)
        self.assertEqual(parse_metric_value("+12%"), 12.0)
        self.assertEqual(parse_metric_value("-5.2%"), -5.2)
        self.assertEqual(parse_metric_value("1,234"), 1234.0)
        self.assertEqual(parse_metric_value(7), 7.0)

    def test_non_numeric(self):
        self.assertIsNone(parse_metric_value("N/A"))
        self.assertIsNone(parse_metric_value(None))
        self.assertIsNone(parse_metric_value(float("inf")))


if __name__ == "__main__":
    unittest.main()
