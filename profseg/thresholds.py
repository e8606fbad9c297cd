"""High/low threshold computation for the two classification axes.

Quartiles use a nearest-rank estimator: the value at index floor(n * p) of
the ascending values. Differs from interpolated quantiles on small samples.
"""
from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np

from profseg.models import (
    DEFAULT_IQR_MULTIPLIERS,
    DEFAULT_STDDEV_MULTIPLIERS,
    METHOD_IQR,
    METHOD_NAMES,
    METHOD_STDDEV,
    METHODS,
    FieldThresholds,
    InputError,
    MethodConfig,
    Row,
    ThresholdUnavailable,
    Thresholds,
    numeric_values,
)


def _rank(sorted_values: Sequence[float], p: float) -> float:
    return float(sorted_values[int(math.floor(len(sorted_values) * p))])


def iqr_thresholds(
    values: Sequence[float],
    upper_multiplier: float = DEFAULT_IQR_MULTIPLIERS.upper_multiplier,
    lower_multiplier: float = DEFAULT_IQR_MULTIPLIERS.lower_multiplier,
) -> Optional[FieldThresholds]:
    if not values:
        return None
    s = sorted(values)
    q1 = _rank(s, 0.25)
    q2 = _rank(s, 0.5)
    q3 = _rank(s, 0.75)
    iqr = q3 - q1
    return FieldThresholds(
        method=METHOD_IQR,
        q1=q1,
        q2=q2,
        q3=q3,
        iqr=iqr,
        high_threshold=q3 + upper_multiplier * iqr,
        low_threshold=q1 - lower_multiplier * iqr,
    )


def stddev_thresholds(
    values: Sequence[float],
    upper_multiplier: float = DEFAULT_STDDEV_MULTIPLIERS.upper_multiplier,
    lower_multiplier: float = DEFAULT_STDDEV_MULTIPLIERS.lower_multiplier,
) -> Optional[FieldThresholds]:
    if not values:
        return None
    arr = np.asarray(values, dtype=float)
    mean = float(arr.mean())
    # Population standard deviation (divide by N).
    std = float(arr.std(ddof=0))
    return FieldThresholds(
        method=METHOD_STDDEV,
        mean=mean,
        std_dev=std,
        high_threshold=mean + upper_multiplier * std,
        low_threshold=mean - lower_multiplier * std,
    )


def compute_thresholds(
    rows: Sequence[Row],
    value_field: Optional[str],
    count_field: Optional[str],
    method: str = METHOD_IQR,
    upper_multiplier: Optional[float] = None,
    lower_multiplier: Optional[float] = None,
) -> Thresholds:
    """Compute thresholds for both axes independently.

    A side with no numeric values (or no field) is left as None; callers must
    treat that as "cannot classify".
    """
    method = (method or METHOD_IQR).lower()
    if method not in METHODS:
        raise InputError(f"Unknown threshold method: {method!r}")

    defaults = DEFAULT_STDDEV_MULTIPLIERS if method == METHOD_STDDEV else DEFAULT_IQR_MULTIPLIERS
    upper = defaults.upper_multiplier if upper_multiplier is None else float(upper_multiplier)
    lower = defaults.lower_multiplier if lower_multiplier is None else float(lower_multiplier)
    fn = stddev_thresholds if method == METHOD_STDDEV else iqr_thresholds

    return Thresholds(
        method=method,
        upper_multiplier=upper,
        lower_multiplier=lower,
        value=fn(numeric_values(rows, value_field), upper, lower),
        count=fn(numeric_values(rows, count_field), upper, lower),
    )


def thresholds_for(
    rows: Sequence[Row],
    value_field: Optional[str],
    count_field: Optional[str],
    method_config: Optional[MethodConfig] = None,
) -> Thresholds:
    mc = method_config or MethodConfig()
    m = mc.multipliers
    return compute_thresholds(
        rows,
        value_field,
        count_field,
        method=mc.method,
        upper_multiplier=m.upper_multiplier,
        lower_multiplier=m.lower_multiplier,
    )


def require_complete(
    thresholds: Thresholds,
    value_field: Optional[str] = None,
    count_field: Optional[str] = None,
) -> Thresholds:
    if thresholds.complete:
        return thresholds
    missing = []
    if thresholds.value is None:
        missing.append(f"value field {value_field!r}" if value_field else "value field (none identified)")
    if thresholds.count is None:
        missing.append(f"count field {count_field!r}" if count_field else "count field (none identified)")
    name = METHOD_NAMES.get(thresholds.method, thresholds.method)
    raise ThresholdUnavailable(
        f"Cannot compute classification thresholds with the {name} method: "
        f"no numeric values for {' and '.join(missing)}"
    )
