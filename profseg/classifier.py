from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence

from profseg.models import (
    CATEGORY_ORDER,
    CATEGORY_PROFILE,
    DEFAULT_CONFIDENCE,
    METHOD_IQR,
    Category,
    CategoryTag,
    ClassificationParams,
    ClassificationRule,
    FieldIdentification,
    Row,
    Thresholds,
    Totals,
    as_number,
)
from profseg.narrative import column_formatter
from profseg.thresholds import require_complete


def _cell(row: Row, column: Optional[str]) -> float:
    if not column:
        return 0.0
    v = as_number(row.get(column))
    return 0.0 if v is None else v


def classify_row(value: float, count: float, thresholds: Thresholds) -> CategoryTag:
    """Ordered, first-match-wins decision rule. Low is the catch-all."""
    t = require_complete(thresholds)
    high_v, low_v = t.value.high_threshold, t.value.low_threshold
    high_c, low_c = t.count.high_threshold, t.count.low_threshold

    if value >= high_v and count >= high_c:
        return CategoryTag.DOUBLE_HIGH
    if value >= high_v and count < high_c:
        return CategoryTag.HIGH_PRIMARY
    if count >= high_c and value < high_v:
        return CategoryTag.HIGH_SECONDARY
    if low_v < value < high_v and low_c < count < high_c:
        return CategoryTag.MIDDLE
    return CategoryTag.LOW


def assign(rows: Sequence[Row], fields: FieldIdentification, thresholds: Thresholds) -> List[CategoryTag]:
    """Category tag per row, in row order."""
    require_complete(thresholds, fields.primary_value_field, fields.primary_count_field)
    vf, cf = fields.primary_value_field, fields.primary_count_field
    return [classify_row(_cell(r, vf), _cell(r, cf), thresholds) for r in rows]


def _value_key(fields: FieldIdentification) -> str:
    return fields.primary_value_field or "totalAmount"


def _count_key(fields: FieldIdentification) -> str:
    return fields.primary_count_field or "transactionCount"


def empty_indicators(tag: CategoryTag, fields: FieldIdentification, aux_fields: Sequence[str] = ()) -> Dict[str, Any]:
    _, frequency, interval, risk = CATEGORY_PROFILE[tag]
    ind: Dict[str, Any] = {
        _value_key(fields): 0.0,
        _count_key(fields): 0.0,
        "avgAmount": 0.0,
        "frequency": frequency,
        "timeInterval": interval,
        "riskLevel": risk,
        "objectCount": 0,
    }
    for f in aux_fields:
        ind.setdefault(f, 0.0)
    return ind


def aggregate_aux(
    rows: Sequence[Row],
    tags: Sequence[CategoryTag],
    target: CategoryTag,
    aux_fields: Sequence[str],
) -> Dict[str, float]:
    """Sum auxiliary numeric fields over the rows assigned to `target`."""
    out = {f: 0.0 for f in aux_fields}
    for r, tag in zip(rows, tags):
        if tag is not target:
            continue
        for f in aux_fields:
            v = as_number(r.get(f))
            if v is not None:
                out[f] += v
    return out


def classify(
    rows: Sequence[Row],
    fields: FieldIdentification,
    thresholds: Thresholds,
    aux_fields: Sequence[str] = (),
) -> List[Category]:
    """Assign every row to one of the five categories and aggregate per category.

    Always returns five categories in DoubleHigh, HighPrimary, HighSecondary,
    Middle, Low order, including empty ones.
    """
    tags = assign(rows, fields, thresholds)
    vf, cf = fields.primary_value_field, fields.primary_count_field
    vk, ck = _value_key(fields), _count_key(fields)

    cats = {
        tag: Category(
            category=tag,
            description=CATEGORY_PROFILE[tag][0],
            indicators=empty_indicators(tag, fields, aux_fields),
            confidence=DEFAULT_CONFIDENCE,
        )
        for tag in CATEGORY_ORDER
    }

    for r, tag in zip(rows, tags):
        ind = cats[tag].indicators
        ind[vk] += _cell(r, vf)
        if ck != vk:
            ind[ck] += _cell(r, cf)
        ind["objectCount"] += 1
        for f in aux_fields:
            if f in (vk, ck):
                continue
            v = as_number(r.get(f))
            if v is not None:
                ind[f] += v

    for c in cats.values():
        total_count = c.indicators[ck]
        c.indicators["avgAmount"] = c.indicators[vk] / total_count if total_count else 0.0

    return [cats[tag] for tag in CATEGORY_ORDER]


def totals(rows: Sequence[Row], fields: FieldIdentification) -> Totals:
    return Totals(
        rows=len(rows),
        value_total=sum(_cell(r, fields.primary_value_field) for r in rows),
        count_total=sum(_cell(r, fields.primary_count_field) for r in rows),
    )


def build_indicators(categories: Sequence[Category], fields: FieldIdentification) -> List[Dict[str, Any]]:
    """Flattened per-category indicator records."""
    vk, ck = _value_key(fields), _count_key(fields)
    return [
        {
            "category": c.category.value,
            "totalAmount": c.indicators.get(vk, 0.0),
            "transactionCount": c.indicators.get(ck, 0.0),
            "avgAmount": c.indicators.get("avgAmount", 0.0),
            "frequency": c.indicators.get("frequency"),
            "timeInterval": c.indicators.get("timeInterval"),
            "objectCount": c.object_count,
        }
        for c in categories
    ]


def build_rules(
    fields: FieldIdentification,
    thresholds: Thresholds,
    formatter: Optional[Callable[[Optional[float], Optional[str]], str]] = None,
) -> List[ClassificationRule]:
    """Human/model-facing echo of the decision rule with the actual cut-offs."""
    t = require_complete(thresholds, fields.primary_value_field, fields.primary_count_field)
    fmt = formatter or column_formatter()
    vf, cf = fields.primary_value_field, fields.primary_count_field
    v, c = vf or "value", cf or "count"
    hv, lv = fmt(t.value.high_threshold, vf), fmt(t.value.low_threshold, vf)
    hc, lc = fmt(t.count.high_threshold, cf), fmt(t.count.low_threshold, cf)

    conditions = {
        CategoryTag.DOUBLE_HIGH: f"{v} >= {hv} and {c} >= {hc}",
        CategoryTag.HIGH_PRIMARY: f"{v} >= {hv} and {c} < {hc}",
        CategoryTag.HIGH_SECONDARY: f"{c} >= {hc} and {v} < {hv}",
        CategoryTag.MIDDLE: f"{v} in ({lv}, {hv}) and {c} in ({lc}, {hc})",
        CategoryTag.LOW: "any object not matched above",
    }
    return [
        ClassificationRule(
            name=tag.value,
            condition=conditions[tag],
            risk_level=CATEGORY_PROFILE[tag][3],
            description=CATEGORY_PROFILE[tag][0],
        )
        for tag in CATEGORY_ORDER
    ]


def build_params(fields: FieldIdentification, thresholds: Thresholds) -> ClassificationParams:
    t = require_complete(thresholds, fields.primary_value_field, fields.primary_count_field)
    vf = fields.primary_value_field or ""
    cf = fields.primary_count_field or ""
    common = dict(
        value_field=vf,
        value_label=fields.label(vf) or vf,
        count_field=cf,
        count_label=fields.label(cf) or cf,
        method=t.method,
        upper_multiplier=t.upper_multiplier,
        lower_multiplier=t.lower_multiplier,
        value_high_threshold=t.value.high_threshold,
        value_low_threshold=t.value.low_threshold,
        count_high_threshold=t.count.high_threshold,
        count_low_threshold=t.count.low_threshold,
    )
    if t.method == METHOD_IQR:
        return ClassificationParams(
            **common,
            value_q1=t.value.q1,
            value_q2=t.value.q2,
            value_q3=t.value.q3,
            value_iqr=t.value.iqr,
            count_q1=t.count.q1,
            count_q2=t.count.q2,
            count_q3=t.count.q3,
            count_iqr=t.count.iqr,
        )
    return ClassificationParams(
        **common,
        value_mean=t.value.mean,
        value_std_dev=t.value.std_dev,
        count_mean=t.count.mean,
        count_std_dev=t.count.std_dev,
    )
