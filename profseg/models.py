"""Data model shared by the profiling engine.

Rows are plain mappings; everything produced by the engine is a fresh
dataclass per call.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence


Row = Mapping[str, Any]


class ProfileError(RuntimeError):
    pass


class InputError(ProfileError):
    """Empty/malformed rows or a configured field missing from the data."""


class ThresholdUnavailable(ProfileError):
    """A required numeric field produced no usable values."""


METHOD_IQR = "iqr"
METHOD_STDDEV = "stddev"
METHODS = (METHOD_IQR, METHOD_STDDEV)

METHOD_NAMES = {
    METHOD_IQR: "interquartile range (IQR)",
    METHOD_STDDEV: "mean / standard deviation",
}


def as_number(cell: Any) -> Optional[float]:
    """Return the cell as a float if it is a finite number, else None.

    Booleans and numeric-looking strings are not numbers here.
    """
    if isinstance(cell, bool) or not isinstance(cell, (int, float)):
        return None
    v = float(cell)
    if math.isnan(v) or math.isinf(v):
        return None
    return v


def numeric_values(rows: Sequence[Row], column: Optional[str]) -> List[float]:
    if not column:
        return []
    out: List[float] = []
    for r in rows:
        v = as_number(r.get(column))
        if v is not None:
            out.append(v)
    return out


def _num(v: Any, default: float) -> float:
    n = as_number(v)
    return default if n is None else n


# ---------------------------------------------------------------------------
# Caller configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AnalysisField:
    field_name: str
    description: str = ""


@dataclass(frozen=True)
class ProfileAnalysisConfig:
    subject_field_name: str = ""
    group_by_field_name: str = ""
    analysis_fields: tuple[AnalysisField, ...] = ()

    @property
    def analysis_field_names(self) -> List[str]:
        return [f.field_name for f in self.analysis_fields if f.field_name]

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ProfileAnalysisConfig":
        data = data or {}
        fields_raw = data.get("analysisFields") or data.get("analysis_fields") or []
        analysis_fields = tuple(
            AnalysisField(
                field_name=str(f.get("fieldName") or f.get("field_name") or "").strip(),
                description=str(f.get("description") or ""),
            )
            for f in fields_raw
            if isinstance(f, Mapping)
        )
        return cls(
            subject_field_name=str(data.get("subjectFieldName") or data.get("subject_field_name") or "").strip(),
            group_by_field_name=str(data.get("groupByFieldName") or data.get("group_by_field_name") or "").strip(),
            analysis_fields=analysis_fields,
        )


@dataclass(frozen=True)
class Multipliers:
    upper_multiplier: float
    lower_multiplier: float


DEFAULT_IQR_MULTIPLIERS = Multipliers(upper_multiplier=1.5, lower_multiplier=0.0)
DEFAULT_STDDEV_MULTIPLIERS = Multipliers(upper_multiplier=2.0, lower_multiplier=2.0)


@dataclass(frozen=True)
class MethodConfig:
    method: str = METHOD_IQR
    iqr: Multipliers = DEFAULT_IQR_MULTIPLIERS
    stddev: Multipliers = DEFAULT_STDDEV_MULTIPLIERS

    @property
    def multipliers(self) -> Multipliers:
        return self.stddev if self.method == METHOD_STDDEV else self.iqr

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "MethodConfig":
        data = data or {}
        method = str(data.get("method") or METHOD_IQR).strip().lower()
        if method not in METHODS:
            raise InputError(f"Unknown threshold method: {method!r} (expected one of {', '.join(METHODS)})")

        def _mult(key: str, default: Multipliers) -> Multipliers:
            raw = data.get(key) or {}
            return Multipliers(
                upper_multiplier=_num(raw.get("upperMultiplier", raw.get("upper_multiplier")), default.upper_multiplier),
                lower_multiplier=_num(raw.get("lowerMultiplier", raw.get("lower_multiplier")), default.lower_multiplier),
            )

        return cls(
            method=method,
            iqr=_mult("iqr", DEFAULT_IQR_MULTIPLIERS),
            stddev=_mult("stddev", DEFAULT_STDDEV_MULTIPLIERS),
        )


# ---------------------------------------------------------------------------
# Derived entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldIdentification:
    primary_value_field: Optional[str]
    primary_count_field: Optional[str]
    secondary_value_field: Optional[str] = None
    field_labels: Dict[str, str] = field(default_factory=dict)

    def label(self, column: Optional[str]) -> str:
        if not column:
            return ""
        return self.field_labels.get(column, column)


@dataclass(frozen=True)
class FieldThresholds:
    """High/low cut-offs for one field.

    `iqr` variant fills q1/q2/q3/iqr, `stddev` variant fills mean/std_dev.
    """

    method: str
    high_threshold: float
    low_threshold: float
    q1: Optional[float] = None
    q2: Optional[float] = None
    q3: Optional[float] = None
    iqr: Optional[float] = None
    mean: Optional[float] = None
    std_dev: Optional[float] = None


@dataclass(frozen=True)
class Thresholds:
    method: str
    upper_multiplier: float
    lower_multiplier: float
    value: Optional[FieldThresholds] = None
    count: Optional[FieldThresholds] = None

    @property
    def complete(self) -> bool:
        return self.value is not None and self.count is not None


class CategoryTag(str, Enum):
    DOUBLE_HIGH = "DoubleHigh"
    HIGH_PRIMARY = "HighPrimary"
    HIGH_SECONDARY = "HighSecondary"
    MIDDLE = "Middle"
    LOW = "Low"


CATEGORY_ORDER: tuple[CategoryTag, ...] = (
    CategoryTag.DOUBLE_HIGH,
    CategoryTag.HIGH_PRIMARY,
    CategoryTag.HIGH_SECONDARY,
    CategoryTag.MIDDLE,
    CategoryTag.LOW,
)

# (description, frequency, timeInterval, riskLevel)
CATEGORY_PROFILE: Dict[CategoryTag, tuple[str, str, str, str]] = {
    CategoryTag.DOUBLE_HIGH: ("Both dimensions exceed their high thresholds; needs close attention", "high", "regular", "high"),
    CategoryTag.HIGH_PRIMARY: ("The value dimension exceeds its high threshold; needs attention", "high", "regular", "high"),
    CategoryTag.HIGH_SECONDARY: ("The count dimension exceeds its high threshold; needs attention", "high", "regular", "high"),
    CategoryTag.MIDDLE: ("Both dimensions are within the normal range", "normal", "regular", "low"),
    CategoryTag.LOW: ("At least one dimension is at or below its low threshold", "low", "irregular", "low"),
}

DEFAULT_CONFIDENCE = 0.9


@dataclass
class Category:
    category: CategoryTag
    description: str
    indicators: Dict[str, Any]
    confidence: float = DEFAULT_CONFIDENCE

    @property
    def object_count(self) -> int:
        return int(self.indicators.get("objectCount") or 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "description": self.description,
            "indicators": dict(self.indicators),
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    condition: str
    risk_level: str
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "condition": self.condition,
            "riskLevel": self.risk_level,
            "description": self.description,
        }


@dataclass(frozen=True)
class ClassificationParams:
    value_field: str
    value_label: str
    count_field: str
    count_label: str
    method: str
    upper_multiplier: float
    lower_multiplier: float
    value_high_threshold: float
    value_low_threshold: float
    count_high_threshold: float
    count_low_threshold: float
    value_q1: Optional[float] = None
    value_q2: Optional[float] = None
    value_q3: Optional[float] = None
    value_iqr: Optional[float] = None
    count_q1: Optional[float] = None
    count_q2: Optional[float] = None
    count_q3: Optional[float] = None
    count_iqr: Optional[float] = None
    value_mean: Optional[float] = None
    value_std_dev: Optional[float] = None
    count_mean: Optional[float] = None
    count_std_dev: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "valueField": self.value_field,
            "valueLabel": self.value_label,
            "countField": self.count_field,
            "countLabel": self.count_label,
            "method": self.method,
            "upperMultiplier": self.upper_multiplier,
            "lowerMultiplier": self.lower_multiplier,
            "valueHighThreshold": self.value_high_threshold,
            "valueLowThreshold": self.value_low_threshold,
            "countHighThreshold": self.count_high_threshold,
            "countLowThreshold": self.count_low_threshold,
        }
        if self.method == METHOD_IQR:
            out.update(
                {
                    "valueQ1": self.value_q1,
                    "valueQ2": self.value_q2,
                    "valueQ3": self.value_q3,
                    "valueIQR": self.value_iqr,
                    "countQ1": self.count_q1,
                    "countQ2": self.count_q2,
                    "countQ3": self.count_q3,
                    "countIQR": self.count_iqr,
                }
            )
        else:
            out.update(
                {
                    "valueMean": self.value_mean,
                    "valueStdDev": self.value_std_dev,
                    "countMean": self.count_mean,
                    "countStdDev": self.count_std_dev,
                }
            )
        return out


@dataclass(frozen=True)
class Totals:
    rows: int
    value_total: float
    count_total: float


SOURCE_MODEL = "model"
SOURCE_FALLBACK = "fallback"


@dataclass
class ProfileResult:
    categories: List[Category]
    analysis: str
    indicators: List[Dict[str, Any]]
    classification_rules: List[ClassificationRule]
    classification_params: ClassificationParams
    fields: FieldIdentification
    thresholds: Thresholds
    source: str = SOURCE_FALLBACK
    model_analysis: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "categories": [c.to_dict() for c in self.categories],
            "analysis": self.analysis,
            "indicators": [dict(i) for i in self.indicators],
            "classificationRules": [r.to_dict() for r in self.classification_rules],
            "classificationParams": self.classification_params.to_dict(),
            "source": self.source,
        }
        if self.model_analysis:
            out["modelAnalysis"] = self.model_analysis
        return out


@dataclass
class GroupResult:
    key: str
    label: str
    result: ProfileResult

    def to_dict(self) -> Dict[str, Any]:
        d = self.result.to_dict()
        d.update({"type": self.key, "typeLabel": self.label})
        return d


ALL_GROUP_KEY = "all"
NULL_GROUP_KEY = "null"


@dataclass
class ProfileReport:
    grouped: bool
    group_field: Optional[str]
    groups: Dict[str, GroupResult]
    all_categories: List[Category]
    classification_rules: List[ClassificationRule]
    classification_params: Optional[ClassificationParams]
    summary: str
    warnings: List[str] = field(default_factory=list)

    @property
    def total_objects(self) -> int:
        return sum(c.object_count for c in self.all_categories)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasGroups": self.grouped,
            "groupField": self.group_field,
            "groups": {k: g.to_dict() for k, g in self.groups.items()},
            "allCategories": [c.to_dict() for c in self.all_categories],
            "classificationRules": [r.to_dict() for r in self.classification_rules],
            "classificationParams": self.classification_params.to_dict() if self.classification_params else None,
            "summary": self.summary,
            "warnings": list(self.warnings),
        }
