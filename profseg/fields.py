from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from profseg.models import FieldIdentification, ProfileAnalysisConfig, Row, as_number


_SUM_MARKER = "_sum"
_COUNT_MARKER = "_count"

# Language-agnostic count vocabulary, matched case-insensitively as substrings.
COUNT_TOKENS: tuple[str, ...] = (
    "count",
    "cnt",
    "qty",
    "number_of",
    "frequency",
    "计数",
    "数量",
    "次数",
)

log = logging.getLogger(__name__)


def row_columns(rows: Sequence[Row], columns: Optional[Sequence[str]] = None) -> List[str]:
    """Columns of the row shape: first row's keys, then any extra declared columns."""
    out: List[str] = list(rows[0].keys()) if rows else []
    for c in columns or []:
        if c not in out:
            out.append(c)
    return out


def numeric_columns(rows: Sequence[Row], columns: Sequence[str]) -> List[str]:
    """A column is numeric if any row holds a finite number in it."""
    return [c for c in columns if any(as_number(r.get(c)) is not None for r in rows)]


def _label(column: str) -> str:
    # Names are already meaningful; no expansion or abbreviation.
    return column


def identify_fields(
    rows: Sequence[Row],
    columns: Optional[Sequence[str]] = None,
    config: Optional[ProfileAnalysisConfig] = None,
    *,
    logger: Optional[logging.Logger] = None,
) -> FieldIdentification:
    """Pick the value, count and secondary value columns without domain assumptions."""
    logger = logger or log
    actual = row_columns(rows, columns)
    numeric = numeric_columns(rows, actual)
    sum_cols = [c for c in actual if _SUM_MARKER in c]
    count_cols = [c for c in actual if _COUNT_MARKER in c]
    configured = config.analysis_field_names if config else []

    logger.debug(
        "identify_fields: columns=%s numeric=%s sum=%s count=%s", actual, numeric, sum_cols, count_cols
    )

    value_field: Optional[str] = None
    if configured and configured[0] in actual:
        value_field = configured[0]
        logger.debug("value field from configured analysis field 0: %s", value_field)
    if not value_field and sum_cols:
        value_field = sum_cols[0]
        logger.debug("value field from sum column: %s", value_field)
    if not value_field and numeric:
        value_field = numeric[0]
        logger.debug("value field from first numeric column: %s", value_field)

    count_field: Optional[str] = None
    if len(configured) > 1 and configured[1] in actual:
        count_field = configured[1]
        logger.debug("count field from configured analysis field 1: %s", count_field)
    if not count_field and count_cols:
        count_field = count_cols[0]
        logger.debug("count field from count column: %s", count_field)
    if not count_field:
        count_field = next(
            (c for c in numeric if any(tok in c.lower() for tok in COUNT_TOKENS)),
            None,
        )
        logger.debug("count field from count-like name: %s", count_field)

    secondary: Optional[str] = None
    if len(sum_cols) > 1:
        secondary = sum_cols[1]
    elif len(numeric) > 1 and numeric[0] != value_field:
        secondary = numeric[1]

    labels = {c: _label(c) for c in (value_field, count_field, secondary) if c}
    return FieldIdentification(
        primary_value_field=value_field,
        primary_count_field=count_field,
        secondary_value_field=secondary,
        field_labels=labels,
    )
