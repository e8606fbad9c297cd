"""Summary paragraph and number formatting."""
import pytest

from profseg.classifier import classify, totals
from profseg.narrative import column_formatter, describe, format_number
from profseg.thresholds import compute_thresholds


class TestFormatNumber:
    @pytest.mark.parametrize(
        "value,column_type,expected",
        [
            (1234.5, "number", "1,234.50"),
            (0.125, "percentage", "12.50%"),
            (None, "number", "N/A"),
            (float("nan"), "number", "N/A"),
            (-3, "number", "-3.00"),
        ],
    )
    def test_format(self, value, column_type, expected):
        assert format_number(value, column_type) == expected

    def test_column_types_are_applied(self):
        fmt = column_formatter({"rate": "percentage"})
        assert fmt(0.5, "rate") == "50.00%"
        assert fmt(0.5, "amt") == "0.50"

    def test_custom_formatter(self):
        fmt = column_formatter(None, lambda v, t: f"<{v}:{t}>")
        assert fmt(1.0, "amt") == "<1.0:number>"


class TestDescribe:
    def test_iqr_paragraph(self, rows, fields, thresholds):
        text = describe("iqr", thresholds, classify(rows, fields, thresholds), totals(rows, fields), fields)
        assert text.startswith("This profile classifies 5 objects using the interquartile range (IQR) method")
        assert "high = Q3 + 1.5 x IQR = 21.00" in text
        assert "low = Q1 - 0 x IQR = 11.00" in text
        assert "high = Q3 + 1.5 x IQR = 6.00" in text
        assert "1 DoubleHigh, 0 HighPrimary, 0 HighSecondary, 2 Middle, 2 Low" in text
        assert "amt totals 148.00" in text
        assert "cnt totals 17.00" in text
        assert "\n" not in text

    def test_stddev_paragraph(self, rows, fields):
        t = compute_thresholds(rows, "amt", "cnt", method="stddev")
        text = describe("stddev", t, classify(rows, fields, t), totals(rows, fields), fields)
        assert "mean / standard deviation" in text
        assert "the mean is 29.60" in text
        assert "Mean + 2 x StdDev" in text
        assert "Q1" not in text

    def test_formatter_is_used(self, rows, fields, thresholds):
        fmt = column_formatter({"amt": "percentage"})
        text = describe("iqr", thresholds, classify(rows, fields, thresholds), totals(rows, fields), fields, fmt)
        assert "high = Q3 + 1.5 x IQR = 2,100.00%" in text
