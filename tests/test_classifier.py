"""Deterministic five-category classification."""
import pytest

from profseg.classifier import (
    assign,
    build_indicators,
    build_params,
    build_rules,
    classify,
    classify_row,
    totals,
)
from profseg.models import (
    CATEGORY_ORDER,
    CategoryTag,
    FieldIdentification,
    FieldThresholds,
    ThresholdUnavailable,
    Thresholds,
)
from profseg.thresholds import compute_thresholds


def _fixed(high_v=21.0, low_v=11.0, high_c=6.0, low_c=1.0):
    return Thresholds(
        method="iqr",
        upper_multiplier=1.5,
        lower_multiplier=0.0,
        value=FieldThresholds(method="iqr", high_threshold=high_v, low_threshold=low_v),
        count=FieldThresholds(method="iqr", high_threshold=high_c, low_threshold=low_c),
    )


def _by_tag(categories):
    return {c.category: c for c in categories}


class TestClassifyRow:
    @pytest.mark.parametrize(
        "value,count,expected",
        [
            (100, 10, CategoryTag.DOUBLE_HIGH),
            (21, 6, CategoryTag.DOUBLE_HIGH),
            (21, 5.9, CategoryTag.HIGH_PRIMARY),
            (20.9, 6, CategoryTag.HIGH_SECONDARY),
            (12, 2, CategoryTag.MIDDLE),
            (11, 3, CategoryTag.LOW),
            (12, 1, CategoryTag.LOW),
            (0, 0, CategoryTag.LOW),
        ],
    )
    def test_ordered_rule(self, value, count, expected):
        assert classify_row(value, count, _fixed()) is expected

    def test_middle_bounds_are_strict(self):
        t = _fixed()
        assert classify_row(11.0001, 1.0001, t) is CategoryTag.MIDDLE
        assert classify_row(11, 1.0001, t) is CategoryTag.LOW
        assert classify_row(11.0001, 1, t) is CategoryTag.LOW

    def test_incomplete_thresholds_raise(self):
        t = Thresholds(method="iqr", upper_multiplier=1.5, lower_multiplier=0.0)
        with pytest.raises(ThresholdUnavailable):
            classify_row(1, 1, t)


class TestClassify:
    def test_scenario_split(self, rows, fields, thresholds):
        cats = _by_tag(classify(rows, fields, thresholds))
        assert cats[CategoryTag.DOUBLE_HIGH].object_count == 1
        assert cats[CategoryTag.HIGH_PRIMARY].object_count == 0
        assert cats[CategoryTag.HIGH_SECONDARY].object_count == 0
        assert cats[CategoryTag.MIDDLE].object_count == 2
        assert cats[CategoryTag.LOW].object_count == 2

    def test_aggregates_and_averages(self, rows, fields, thresholds):
        cats = _by_tag(classify(rows, fields, thresholds))
        middle = cats[CategoryTag.MIDDLE].indicators
        assert middle["amt"] == 27.0
        assert middle["cnt"] == 5.0
        assert middle["avgAmount"] == pytest.approx(5.4)
        assert cats[CategoryTag.DOUBLE_HIGH].indicators["avgAmount"] == 10.0

    def test_empty_category_average_is_zero(self, rows, fields, thresholds):
        empty = _by_tag(classify(rows, fields, thresholds))[CategoryTag.HIGH_PRIMARY]
        assert empty.indicators["avgAmount"] == 0.0
        assert empty.indicators["riskLevel"] == "high"

    def test_always_five_categories_in_order(self, rows, fields, thresholds):
        cats = classify(rows, fields, thresholds)
        assert [c.category for c in cats] == list(CATEGORY_ORDER)

    def test_every_row_counted_once(self, fields):
        rows = [{"amt": a, "cnt": c} for a, c in [(1, 1), (5, 9), (9, 2), (3, 3), (50, 1), (7, 7), (2, 8)]]
        rows.append({"amt": "n/a", "cnt": None})
        t = compute_thresholds(rows, "amt", "cnt")
        cats = classify(rows, FieldIdentification("amt", "cnt"), t)
        assert sum(c.object_count for c in cats) == len(rows)

    def test_idempotent(self, rows, fields, thresholds):
        first = [c.to_dict() for c in classify(rows, fields, thresholds)]
        second = [c.to_dict() for c in classify(rows, fields, thresholds)]
        assert first == second

    def test_aux_fields_summed(self, rows, fields, thresholds):
        cats = _by_tag(classify(rows, fields, thresholds, ["fee"]))
        assert cats[CategoryTag.DOUBLE_HIGH].indicators["fee"] == 5.0
        assert cats[CategoryTag.MIDDLE].indicators["fee"] == 5.0
        assert cats[CategoryTag.LOW].indicators["fee"] == 5.0
        assert cats[CategoryTag.HIGH_PRIMARY].indicators["fee"] == 0.0

    def test_assign_matches_counts(self, rows, fields, thresholds):
        tags = assign(rows, fields, thresholds)
        assert tags[1] is CategoryTag.DOUBLE_HIGH
        assert tags.count(CategoryTag.LOW) == 2


class TestRulesAndParams:
    def test_rules_carry_thresholds(self, fields, thresholds):
        rules = build_rules(fields, thresholds)
        assert [r.name for r in rules] == [t.value for t in CATEGORY_ORDER]
        assert rules[0].condition == "amt >= 21.00 and cnt >= 6.00"
        assert rules[-1].condition == "any object not matched above"
        assert rules[0].to_dict()["riskLevel"] == "high"

    def test_iqr_params(self, fields, thresholds):
        d = build_params(fields, thresholds).to_dict()
        assert d["valueField"] == "amt" and d["countField"] == "cnt"
        assert d["valueHighThreshold"] == 21.0
        assert d["countIQR"] == 2.0
        assert "valueMean" not in d

    def test_stddev_params(self, rows, fields):
        t = compute_thresholds(rows, "amt", "cnt", method="stddev")
        d = build_params(fields, t).to_dict()
        assert d["method"] == "stddev"
        assert d["valueMean"] == pytest.approx(29.6)
        assert "valueQ1" not in d

    def test_flattened_indicators(self, rows, fields, thresholds):
        flat = build_indicators(classify(rows, fields, thresholds), fields)
        assert flat[0] == {
            "category": "DoubleHigh",
            "totalAmount": 100.0,
            "transactionCount": 10.0,
            "avgAmount": 10.0,
            "frequency": "high",
            "timeInterval": "regular",
            "objectCount": 1,
        }

    def test_totals(self, rows, fields):
        t = totals(rows, fields)
        assert (t.rows, t.value_total, t.count_total) == (5, 148.0, 17.0)


class TestSharedValueAndCountColumn:
    """One column serving as both axes is summed once per row."""

    def test_single_running_sum(self):
        rows = [{"name": "a", "cnt": 1}, {"name": "b", "cnt": 2}, {"name": "c", "cnt": 3}, {"name": "d", "cnt": 40}]
        fields = FieldIdentification("cnt", "cnt")
        cats = classify(rows, fields, compute_thresholds(rows, "cnt", "cnt"))
        assert sum(c.indicators["cnt"] for c in cats) == 46.0
        for c in cats:
            if c.object_count:
                assert c.indicators["avgAmount"] == 1.0
