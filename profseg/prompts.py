from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from profseg.llm_client import LLMConfig, Message
from profseg.models import (
    CATEGORY_ORDER,
    CATEGORY_PROFILE,
    METHOD_IQR,
    CategoryTag,
    FieldIdentification,
    FieldThresholds,
    ProfileAnalysisConfig,
    Row,
    Thresholds,
    as_number,
)
from profseg.thresholds import require_complete


SAMPLE_ROWS = 20


@dataclass(frozen=True)
class ProfileRequest:
    messages: List[Message]
    config: LLMConfig = field(default_factory=LLMConfig)


def system_prompt(fields: FieldIdentification) -> str:
    """Fixed instruction; only the identified field names vary."""
    vf = fields.primary_value_field or "totalAmount"
    cf = fields.primary_count_field or "transactionCount"
    category_lines = "\n".join(
        f"{i}. {tag.value}: risk {CATEGORY_PROFILE[tag][3]}. {CATEGORY_PROFILE[tag][0]}."
        for i, tag in enumerate(CATEGORY_ORDER, start=1)
    )
    names = ", ".join(t.value for t in CATEGORY_ORDER)
    return f"""You are a professional data analyst profiling aggregated tabular data.

The data may come from any domain. Do NOT assume domain terminology; use the actual field names.

Fields:
- Primary value field: {vf} ({fields.label(fields.primary_value_field) or vf})
- Primary count field: {cf} ({fields.label(fields.primary_count_field) or cf})

The user message gives the threshold method (IQR or standard deviation) and the exact threshold
values for both fields. Use those values verbatim. Never recompute them.

Five categories, evaluated in this order (first match wins):
{category_lines}

Output ONE strict JSON object, no prose around it:
{{
  "categories": [
    {{
      "category": one of {names},
      "description": "generic description",
      "indicators": {{
        "{vf}": total value for the category (number),
        "{cf}": total count for the category (number),
        "avgAmount": total value / total count (number, 0 when count is 0),
        "frequency": "high" | "normal" | "low",
        "timeInterval": "regular" | "irregular",
        "riskLevel": "high" | "low",
        "objectCount": number of rows in the category (number)
      }},
      "confidence": 0.0-1.0
    }}
  ],
  "analysis": "one paragraph: rows analysed, method and multipliers, thresholds with their arithmetic, objects per category, overall totals",
  "classificationRules": [{{"name": "...", "condition": "...", "riskLevel": "high" | "low", "description": "..."}}],
  "classificationParams": {{
    "valueField": "{vf}", "countField": "{cf}", "method": "iqr" | "stddev",
    "upperMultiplier": number, "lowerMultiplier": number,
    "valueHighThreshold": number, "valueLowThreshold": number,
    "countHighThreshold": number, "countLowThreshold": number
  }}
}}

Emit all five categories, even empty ones."""


def _fmt(v: Optional[float]) -> str:
    return "N/A" if v is None else f"{v:.2f}"


def _sample(rows: Sequence[Row], columns: Sequence[str], limit: int = SAMPLE_ROWS) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for i, row in enumerate(rows[:limit], start=1):
        rec: Dict[str, Any] = {"index": i}
        for col in columns:
            cell = row.get(col)
            n = as_number(cell)
            if n is not None:
                rec[col] = f"{n:.2f}"
            elif cell is None or cell == "":
                rec[col] = "N/A"
            else:
                rec[col] = cell
        out.append(rec)
    return out


def _threshold_block(title: str, column: Optional[str], t: FieldThresholds, thresholds: Thresholds) -> str:
    up, lo = thresholds.upper_multiplier, thresholds.lower_multiplier
    if t.method == METHOD_IQR:
        return (
            f"=== {title} IQR Thresholds ===\n"
            f"Field: {column}\n"
            f"Q1 (25%): {_fmt(t.q1)}\n"
            f"Q2 (Median, 50%): {_fmt(t.q2)}\n"
            f"Q3 (75%): {_fmt(t.q3)}\n"
            f"IQR (Q3 - Q1): {_fmt(t.iqr)}\n"
            f"High Threshold (Q3 + {up:g}*IQR): {_fmt(t.high_threshold)}\n"
            f"Low Threshold (Q1 - {lo:g}*IQR): {_fmt(t.low_threshold)}\n"
        )
    return (
        f"=== {title} Standard Deviation Thresholds ===\n"
        f"Field: {column}\n"
        f"Mean: {_fmt(t.mean)}\n"
        f"Standard Deviation (population): {_fmt(t.std_dev)}\n"
        f"High Threshold (Mean + {up:g}*StdDev): {_fmt(t.high_threshold)}\n"
        f"Low Threshold (Mean - {lo:g}*StdDev): {_fmt(t.low_threshold)}\n"
    )


def _rule_lines(fields: FieldIdentification, thresholds: Thresholds) -> List[str]:
    v = fields.label(fields.primary_value_field) or "value"
    c = fields.label(fields.primary_count_field) or "count"
    hv, lv = _fmt(thresholds.value.high_threshold), _fmt(thresholds.value.low_threshold)
    hc, lc = _fmt(thresholds.count.high_threshold), _fmt(thresholds.count.low_threshold)
    conds = {
        CategoryTag.DOUBLE_HIGH: f"{v} >= {hv} AND {c} >= {hc}",
        CategoryTag.HIGH_PRIMARY: f"{v} >= {hv} AND {c} < {hc}",
        CategoryTag.HIGH_SECONDARY: f"{c} >= {hc} AND {v} < {hv}",
        CategoryTag.MIDDLE: f"{lv} < {v} < {hv} AND {lc} < {c} < {hc}",
        CategoryTag.LOW: "every row not matched by rules 1-4",
    }
    return [
        f"{i}. {tag.value}: {conds[tag]}, Risk: {CATEGORY_PROFILE[tag][3]}"
        for i, tag in enumerate(CATEGORY_ORDER, start=1)
    ]


def user_prompt(
    rows: Sequence[Row],
    columns: Sequence[str],
    fields: FieldIdentification,
    thresholds: Thresholds,
    config: Optional[ProfileAnalysisConfig] = None,
) -> str:
    vf, cf, sf = fields.primary_value_field, fields.primary_count_field, fields.secondary_value_field

    p = "=== Data Overview ===\n"
    p += f"Total records: {len(rows)}\n"
    if config and config.subject_field_name:
        p += f"Each record describes one {config.subject_field_name}.\n"
    p += f"Available columns: {', '.join(columns)}\n\n"

    p += "=== Field Identification ===\n"
    if vf:
        p += f"Primary Value Field: {vf} ({fields.label(vf)})\n"
    if cf:
        p += f"Primary Count Field: {cf} ({fields.label(cf)})\n"
    if sf:
        p += f"Secondary Value Field: {sf} ({fields.label(sf)})\n"
    p += "\n"

    p += _threshold_block("Value Field", vf, thresholds.value, thresholds) + "\n"
    p += _threshold_block("Count Field", cf, thresholds.count, thresholds) + "\n"

    sample = _sample(rows, columns)
    p += f"=== Data Sample (first {len(sample)} records) ===\n"
    p += json.dumps(sample, ensure_ascii=False, indent=2) + "\n\n"

    p += "=== Classification Rules (Use These Exact Thresholds) ===\n"
    p += "\n".join(_rule_lines(fields, thresholds)) + "\n\n"

    p += "=== Analysis Steps ===\n"
    p += "1. Use the primary value field and primary count field identified above\n"
    p += "2. Apply the exact threshold values provided above (do NOT recalculate)\n"
    p += "3. Classify each object into exactly one of the five categories, checking rules in order\n"
    p += "4. Aggregate values for each category\n"
    p += "5. Calculate averages: avgAmount = totalValue / totalCount\n"
    p += "6. Count objects in each category\n\n"

    if config and config.analysis_fields:
        p += "=== User Configured Analysis Fields ===\n"
        for f in config.analysis_fields:
            p += f"- {f.field_name}: {f.description}\n"
        p += "Include each of these fields in every category's indicators, summed over its rows.\n"

    return p


def build_request(
    rows: Sequence[Row],
    columns: Sequence[str],
    fields: FieldIdentification,
    thresholds: Thresholds,
    config: Optional[ProfileAnalysisConfig] = None,
    llm_config: Optional[LLMConfig] = None,
) -> ProfileRequest:
    require_complete(thresholds, fields.primary_value_field, fields.primary_count_field)
    return ProfileRequest(
        messages=[
            Message(role="system", content=system_prompt(fields)),
            Message(role="user", content=user_prompt(rows, columns, fields, thresholds, config)),
        ],
        config=llm_config or LLMConfig.from_env(),
    )
