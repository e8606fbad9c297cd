"""Summary paragraph built from the structured thresholds and category counts.

Numbers in the paragraph always come from the computed statistics; nothing is
copied from model prose.
"""
from __future__ import annotations

import math
from typing import Callable, Dict, List, Optional, Sequence

from profseg.models import (
    METHOD_IQR,
    METHOD_NAMES,
    Category,
    CategoryTag,
    FieldIdentification,
    FieldThresholds,
    Thresholds,
    Totals,
)


Formatter = Callable[[Optional[float], str], str]


def format_number(value: Optional[float], column_type: str = "number", decimals: int = 2) -> str:
    """Default display formatter: thousands separators, fixed decimals."""
    if value is None:
        return "N/A"
    try:
        v = float(value)
    except (TypeError, ValueError):
        return "N/A"
    if math.isnan(v):
        return "N/A"
    if column_type == "percentage":
        return f"{v * 100:,.{decimals}f}%"
    return f"{v:,.{decimals}f}"


def column_formatter(
    column_types: Optional[Dict[str, str]] = None,
    formatter: Optional[Formatter] = None,
) -> Callable[[Optional[float], Optional[str]], str]:
    """Bind a formatter to per-column display types."""
    fmt = formatter or format_number
    types = column_types or {}

    def _fmt(value: Optional[float], column: Optional[str] = None) -> str:
        return fmt(value, types.get(column or "", "number"))

    return _fmt


_CATEGORY_PHRASES = {
    CategoryTag.DOUBLE_HIGH: "DoubleHigh",
    CategoryTag.HIGH_PRIMARY: "HighPrimary",
    CategoryTag.HIGH_SECONDARY: "HighSecondary",
    CategoryTag.MIDDLE: "Middle",
    CategoryTag.LOW: "Low",
}


def _field_sentence(
    label: str,
    column: Optional[str],
    t: FieldThresholds,
    thresholds: Thresholds,
    fmt: Callable[[Optional[float], Optional[str]], str],
) -> str:
    up = _mult(thresholds.upper_multiplier)
    lo = _mult(thresholds.lower_multiplier)
    if t.method == METHOD_IQR:
        return (
            f"for {label}, Q1 is {fmt(t.q1, column)}, the median is {fmt(t.q2, column)}, "
            f"Q3 is {fmt(t.q3, column)} and the IQR is {fmt(t.iqr, column)}, so "
            f"high = Q3 + {up} x IQR = {fmt(t.high_threshold, column)} and "
            f"low = Q1 - {lo} x IQR = {fmt(t.low_threshold, column)}"
        )
    return (
        f"for {label}, the mean is {fmt(t.mean, column)} and the standard deviation is "
        f"{fmt(t.std_dev, column)}, so high = Mean + {up} x StdDev = {fmt(t.high_threshold, column)} "
        f"and low = Mean - {lo} x StdDev = {fmt(t.low_threshold, column)}"
    )


def _mult(m: float) -> str:
    return f"{m:g}"


def describe(
    method: str,
    thresholds: Thresholds,
    categories: Sequence[Category],
    totals: Totals,
    fields: FieldIdentification,
    formatter: Optional[Callable[[Optional[float], Optional[str]], str]] = None,
) -> str:
    """One paragraph: rows analysed, method, per-field arithmetic, counts, totals."""
    fmt = formatter or column_formatter()
    vf = fields.primary_value_field
    cf = fields.primary_count_field
    v_label = fields.label(vf) or "value"
    c_label = fields.label(cf) or "count"
    method_name = METHOD_NAMES.get(method, method)

    parts: List[str] = [
        f"This profile classifies {totals.rows} objects using the {method_name} method "
        f"on two dimensions, {v_label} and {c_label}."
    ]
    sentences = []
    if thresholds.value is not None:
        sentences.append(_field_sentence(v_label, vf, thresholds.value, thresholds, fmt))
    if thresholds.count is not None:
        sentences.append(_field_sentence(c_label, cf, thresholds.count, thresholds, fmt))
    if sentences:
        s = "; ".join(sentences)
        parts.append(s[0].upper() + s[1:] + ".")

    counts = {c.category: c.object_count for c in categories}
    breakdown = ", ".join(f"{counts.get(tag, 0)} {phrase}" for tag, phrase in _CATEGORY_PHRASES.items())
    parts.append(
        f"Objects in DoubleHigh, HighPrimary and HighSecondary exceed at least one high threshold "
        f"and need attention. The resulting split is {breakdown}."
    )
    parts.append(
        f"Overall, {v_label} totals {fmt(totals.value_total, vf)} and "
        f"{c_label} totals {fmt(totals.count_total, cf)}."
    )
    return " ".join(parts)
