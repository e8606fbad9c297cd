"""
Reconciles a model-proposed classification with the locally computed one.

The local classifier is the ground truth. The model reply can contribute
descriptions, confidence and qualitative tags, but every object count comes
from the local rule and any missing piece (categories, rules, params,
auxiliary indicators) is filled from local values. The summary paragraph is
always regenerated from the structured thresholds.
"""
from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from profseg.classifier import (
    aggregate_aux,
    assign,
    build_indicators,
    build_params,
    build_rules,
    totals,
)
from profseg.llm_client import LLMError
from profseg.models import (
    CATEGORY_ORDER,
    SOURCE_FALLBACK,
    SOURCE_MODEL,
    Category,
    CategoryTag,
    ClassificationParams,
    ClassificationRule,
    FieldIdentification,
    ProfileAnalysisConfig,
    ProfileResult,
    Row,
    Thresholds,
    as_number,
)
from profseg.narrative import describe


class ReplyParseError(LLMError):
    pass


log = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE | re.MULTILINE)
_NAME_CLEAN_RE = re.compile(r"[\s_\-()（）]+")

# Normalized spellings a model may use for each category.
CATEGORY_ALIASES: Dict[str, CategoryTag] = {
    "doublehigh": CategoryTag.DOUBLE_HIGH,
    "highhigh": CategoryTag.DOUBLE_HIGH,
    "双高型": CategoryTag.DOUBLE_HIGH,
    "highprimary": CategoryTag.HIGH_PRIMARY,
    "highforfirstfield": CategoryTag.HIGH_PRIMARY,
    "highvalue": CategoryTag.HIGH_PRIMARY,
    "偏高型第一字段": CategoryTag.HIGH_PRIMARY,
    "highsecondary": CategoryTag.HIGH_SECONDARY,
    "highforsecondfield": CategoryTag.HIGH_SECONDARY,
    "highcount": CategoryTag.HIGH_SECONDARY,
    "偏高型第二字段": CategoryTag.HIGH_SECONDARY,
    "middle": CategoryTag.MIDDLE,
    "中间型": CategoryTag.MIDDLE,
    "low": CategoryTag.LOW,
    "lowlow": CategoryTag.LOW,
    "低值型": CategoryTag.LOW,
}

_QUALITATIVE_KEYS = ("frequency", "timeInterval", "riskLevel")
_PARAM_TOLERANCE = 1e-6


def _extract_json_text(text: str) -> str:
    """Best-effort extraction of a JSON object from model output."""
    t = (text or "").strip()
    if not t:
        return t
    # Strip markdown fences if present
    if "```" in t:
        t = _FENCE_RE.sub("", t).strip()
    # If model added leading prose, try to slice to first/last braces
    a = t.find("{")
    b = t.rfind("}")
    if a == -1 or b == -1 or b <= a:
        return ""
    return t[a : b + 1].strip()


def parse_reply(text: str) -> Dict[str, Any]:
    """Parse the model's free text into its JSON object.

    Raises ReplyParseError when no object is found, it does not parse, or it has
    no `categories` list.
    """
    blob = _extract_json_text(text)
    if not blob:
        raise ReplyParseError(f"No JSON object in model reply:\n{(text or '')[:2000]}")
    try:
        data = json.loads(blob)
    except json.JSONDecodeError as e:
        raise ReplyParseError(f"Failed to parse model JSON output: {e}\nRaw:\n{blob[:2000]}") from e
    if not isinstance(data, dict):
        raise ReplyParseError("Model reply JSON is not an object")
    if not isinstance(data.get("categories"), list):
        raise ReplyParseError("Model reply has no 'categories' list")
    return data


def category_tag(name: Any) -> Optional[CategoryTag]:
    key = _NAME_CLEAN_RE.sub("", str(name or "")).lower()
    return CATEGORY_ALIASES.get(key)


def _copy_category(c: Category) -> Category:
    return Category(
        category=c.category,
        description=c.description,
        indicators=dict(c.indicators),
        confidence=c.confidence,
    )


def _value_keys(fields: FieldIdentification) -> tuple[str, str]:
    return (fields.primary_value_field or "totalAmount", fields.primary_count_field or "transactionCount")


def _result(
    categories: List[Category],
    rows: Sequence[Row],
    fields: FieldIdentification,
    thresholds: Thresholds,
    rules: List[ClassificationRule],
    params: ClassificationParams,
    source: str,
    formatter: Optional[Callable[[Optional[float], Optional[str]], str]],
    model_analysis: Optional[str] = None,
) -> ProfileResult:
    return ProfileResult(
        categories=categories,
        analysis=describe(thresholds.method, thresholds, categories, totals(rows, fields), fields, formatter),
        indicators=build_indicators(categories, fields),
        classification_rules=rules,
        classification_params=params,
        fields=fields,
        thresholds=thresholds,
        source=source,
        model_analysis=model_analysis,
    )


def fallback_result(
    rows: Sequence[Row],
    fields: FieldIdentification,
    thresholds: Thresholds,
    ground_truth: Sequence[Category],
    *,
    formatter: Optional[Callable[[Optional[float], Optional[str]], str]] = None,
) -> ProfileResult:
    """The deterministic classification in the public result shape."""
    return _result(
        [_copy_category(c) for c in ground_truth],
        rows,
        fields,
        thresholds,
        build_rules(fields, thresholds, formatter),
        build_params(fields, thresholds),
        SOURCE_FALLBACK,
        formatter,
    )


def _merge_category(
    local: Category,
    reply_cat: Mapping[str, Any],
    fields: FieldIdentification,
    aux_fields: Sequence[str] = (),
) -> Category:
    merged = _copy_category(local)
    desc = reply_cat.get("description")
    if isinstance(desc, str) and desc.strip():
        merged.description = desc.strip()
    conf = as_number(reply_cat.get("confidence"))
    if conf is not None and 0.0 <= conf <= 1.0:
        merged.confidence = conf

    reply_ind = reply_cat.get("indicators")
    if not isinstance(reply_ind, Mapping):
        reply_ind = {}

    vk, ck = _value_keys(fields)
    # Auxiliary fields start from what the model reported, 0 when absent.
    for f in aux_fields:
        merged.indicators[f] = as_number(reply_ind.get(f)) or 0
    for k in (vk, ck):
        v = as_number(reply_ind.get(k))
        if v is not None:
            merged.indicators[k] = v
    total_value = as_number(merged.indicators.get(vk)) or 0.0
    total_count = as_number(merged.indicators.get(ck)) or 0.0
    merged.indicators["avgAmount"] = total_value / total_count if total_count else 0.0
    for k in _QUALITATIVE_KEYS:
        v = reply_ind.get(k)
        if isinstance(v, str) and v.strip():
            merged.indicators[k] = v.strip()
    for k, v in reply_ind.items():
        if k not in merged.indicators:
            merged.indicators[k] = v
    # Local count is authoritative.
    merged.indicators["objectCount"] = local.object_count
    return merged


def _fill_aux_fields(
    categories: List[Category],
    rows: Sequence[Row],
    tags: Sequence[CategoryTag],
    aux_fields: Sequence[str],
    logger: logging.Logger,
) -> None:
    for cat in categories:
        missing = [f for f in aux_fields if not as_number(cat.indicators.get(f))]
        if not missing:
            continue
        sums = aggregate_aux(rows, tags, cat.category, missing)
        cat.indicators.update(sums)
        logger.debug("back-filled auxiliary fields for %s: %s", cat.category.value, sums)


def _close(a: Optional[float], b: Optional[float]) -> bool:
    if a is None or b is None:
        return False
    return math.isclose(a, b, rel_tol=_PARAM_TOLERANCE, abs_tol=_PARAM_TOLERANCE)


def _params_agree(reply_params: Mapping[str, Any], local: ClassificationParams) -> bool:
    if str(reply_params.get("method") or "").lower() != local.method:
        return False
    pairs = (
        ("valueHighThreshold", local.value_high_threshold),
        ("valueLowThreshold", local.value_low_threshold),
        ("countHighThreshold", local.count_high_threshold),
        ("countLowThreshold", local.count_low_threshold),
    )
    return all(_close(as_number(reply_params.get(k)), v) for k, v in pairs)


def _reconcile_params(reply: Mapping[str, Any], local: ClassificationParams, logger: logging.Logger) -> ClassificationParams:
    raw = reply.get("classificationParams")
    if not isinstance(raw, Mapping):
        logger.info("model reply has no classificationParams; using local thresholds")
        return local
    if not _params_agree(raw, local):
        logger.warning(
            "model classificationParams disagree with local thresholds (method=%s); replacing",
            raw.get("method"),
        )
        return local
    value_label = raw.get("valueLabel")
    count_label = raw.get("countLabel")
    return replace(
        local,
        value_label=value_label if isinstance(value_label, str) and value_label.strip() else local.value_label,
        count_label=count_label if isinstance(count_label, str) and count_label.strip() else local.count_label,
    )


def _reconcile_rules(reply: Mapping[str, Any], local: List[ClassificationRule], logger: logging.Logger) -> List[ClassificationRule]:
    raw = reply.get("classificationRules")
    if not isinstance(raw, list) or not raw:
        logger.info("model reply has no classificationRules; using local rules")
        return local
    rules: List[ClassificationRule] = []
    for r in raw:
        if not isinstance(r, Mapping) or not r.get("name") or not r.get("condition"):
            logger.warning("malformed classification rule in model reply; using local rules")
            return local
        rules.append(
            ClassificationRule(
                name=str(r.get("name")),
                condition=str(r.get("condition")),
                risk_level=str(r.get("riskLevel") or ""),
                description=str(r.get("description") or ""),
            )
        )
    return rules


def reconcile(
    reply: Mapping[str, Any],
    ground_truth: Sequence[Category],
    rows: Sequence[Row],
    fields: FieldIdentification,
    thresholds: Thresholds,
    config: Optional[ProfileAnalysisConfig] = None,
    *,
    formatter: Optional[Callable[[Optional[float], Optional[str]], str]] = None,
    logger: Optional[logging.Logger] = None,
) -> ProfileResult:
    """Merge a parsed model reply onto the local ground truth."""
    logger = logger or log
    by_tag: Dict[CategoryTag, Mapping[str, Any]] = {}
    for rc in reply.get("categories") or []:
        if not isinstance(rc, Mapping):
            logger.warning("ignoring non-object category in model reply: %r", rc)
            continue
        tag = category_tag(rc.get("category"))
        if tag is None:
            logger.warning("ignoring unknown category in model reply: %r", rc.get("category"))
            continue
        if tag in by_tag:
            logger.warning("duplicate category %s in model reply; keeping the first", tag.value)
            continue
        by_tag[tag] = rc

    vk, ck = _value_keys(fields)
    aux = [f for f in (config.analysis_field_names if config else []) if f not in (vk, ck)]

    local = {c.category: c for c in ground_truth}
    categories: List[Category] = []
    for tag in CATEGORY_ORDER:
        if tag in by_tag:
            categories.append(_merge_category(local[tag], by_tag[tag], fields, aux))
        else:
            logger.info("model reply omitted category %s; using local values", tag.value)
            categories.append(_copy_category(local[tag]))

    _fill_aux_fields(categories, rows, assign(rows, fields, thresholds), aux, logger)

    model_text = reply.get("analysis")
    return _result(
        categories,
        rows,
        fields,
        thresholds,
        _reconcile_rules(reply, build_rules(fields, thresholds, formatter), logger),
        _reconcile_params(reply, build_params(fields, thresholds), logger),
        SOURCE_MODEL,
        formatter,
        model_analysis=model_text if isinstance(model_text, str) and model_text.strip() else None,
    )
