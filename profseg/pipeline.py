from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import requests

from profseg.classifier import classify
from profseg.fields import identify_fields, row_columns
from profseg.llm_client import LLMConfig, LLMError, Message, OpenAIChatClient
from profseg.models import (
    ALL_GROUP_KEY,
    NULL_GROUP_KEY,
    GroupResult,
    InputError,
    MethodConfig,
    ProfileAnalysisConfig,
    ProfileReport,
    ProfileResult,
    Row,
)
from profseg.narrative import Formatter, column_formatter
from profseg.prompts import build_request
from profseg.reconciliation import fallback_result, parse_reply, reconcile
from profseg.thresholds import require_complete, thresholds_for


log = logging.getLogger(__name__)


class ChatCollaborator(Protocol):
    def complete(self, messages: Sequence[Message], config: Optional[LLMConfig] = None) -> str:
        ...


# Failures of the model step that are absorbed by the deterministic fallback.
COLLABORATOR_ERRORS: Tuple[type, ...] = (
    LLMError,
    requests.RequestException,
    ValueError,
    TypeError,
    KeyError,
    AttributeError,
)


def _validate_config(rows: Sequence[Row], columns: Sequence[str], config: Optional[ProfileAnalysisConfig]) -> None:
    if not rows:
        raise InputError("No aggregated rows to analyse")
    if not config:
        return
    missing = [f for f in config.analysis_field_names if f not in columns]
    if missing:
        raise InputError(f"Configured analysis field(s) not found in data: {', '.join(missing)}")


def analyze_profile(
    rows: Sequence[Row],
    columns: Optional[Sequence[str]] = None,
    config: Optional[ProfileAnalysisConfig] = None,
    method_config: Optional[MethodConfig] = None,
    *,
    client: Optional[ChatCollaborator] = None,
    use_model: bool = True,
    llm_config: Optional[LLMConfig] = None,
    column_types: Optional[Dict[str, str]] = None,
    formatter: Optional[Formatter] = None,
    logger: Optional[logging.Logger] = None,
) -> ProfileResult:
    """Profile one partition of rows.

    Field identification and thresholds failures raise. Anything that goes wrong
    in the model step falls back to the deterministic classifier.
    """
    logger = logger or log
    cols = row_columns(rows, columns)
    _validate_config(rows, cols, config)
    method_config = method_config or MethodConfig()
    fmt = column_formatter(column_types, formatter)

    fields = identify_fields(rows, cols, config, logger=logger)
    thresholds = thresholds_for(rows, fields.primary_value_field, fields.primary_count_field, method_config)
    require_complete(thresholds, fields.primary_value_field, fields.primary_count_field)
    logger.info(
        "profiling %d rows: value=%s count=%s method=%s",
        len(rows),
        fields.primary_value_field,
        fields.primary_count_field,
        thresholds.method,
    )

    aux = config.analysis_field_names if config else []
    ground_truth = classify(rows, fields, thresholds, aux)

    if not use_model:
        return fallback_result(rows, fields, thresholds, ground_truth, formatter=fmt)

    try:
        request = build_request(rows, cols, fields, thresholds, config, llm_config)
        collaborator = client or OpenAIChatClient()
        text = collaborator.complete(request.messages, request.config)
        logger.debug("model reply: %d chars", len(text or ""))
        reply = parse_reply(text)
        return reconcile(reply, ground_truth, rows, fields, thresholds, config, formatter=fmt, logger=logger)
    except COLLABORATOR_ERRORS as e:
        logger.warning("model step failed, using deterministic classification: %s", e)
        return fallback_result(rows, fields, thresholds, ground_truth, formatter=fmt)


def _bucket(value: Any) -> Any:
    # 1, 1.0, True and "1" are distinct partitions.
    if value is None:
        return None
    try:
        hash(value)
    except TypeError:
        return (type(value).__name__, repr(value))
    return (type(value).__name__, value)


def _display_key(bucket: Any, taken: Dict[str, List[Row]]) -> str:
    if bucket is None:
        key = NULL_GROUP_KEY
    else:
        key = str(bucket[1])
    if key in taken and bucket is not None:
        key = f"{key} ({bucket[0]})"
    base, n = key, 2
    while key in taken:
        key = f"{base} #{n}"
        n += 1
    return key


def partition(rows: Sequence[Row], group_field: str) -> Dict[str, List[Row]]:
    """Rows by distinct raw grouping value, in first-seen order.

    None maps to "null". Values whose text collides get the type name appended,
    e.g. "1" and "1 (str)".
    """
    buckets: Dict[Any, List[Row]] = {}
    for r in rows:
        buckets.setdefault(_bucket(r.get(group_field)), []).append(r)
    groups: Dict[str, List[Row]] = {}
    for bucket, part in buckets.items():
        groups[_display_key(bucket, groups)] = part
    return groups


def analyze(
    rows: Sequence[Row],
    config: Optional[ProfileAnalysisConfig] = None,
    method_config: Optional[MethodConfig] = None,
    *,
    columns: Optional[Sequence[str]] = None,
    client: Optional[ChatCollaborator] = None,
    use_model: bool = True,
    llm_config: Optional[LLMConfig] = None,
    column_types: Optional[Dict[str, str]] = None,
    formatter: Optional[Formatter] = None,
    max_workers: Optional[int] = None,
    logger: Optional[logging.Logger] = None,
) -> ProfileReport:
    """Profile all rows, or each partition of the configured grouping field."""
    logger = logger or log
    if not rows:
        raise InputError("No aggregated rows to analyse")
    cols = row_columns(rows, columns)

    def run(part: Sequence[Row]) -> ProfileResult:
        return analyze_profile(
            part,
            cols,
            config,
            method_config,
            client=client,
            use_model=use_model,
            llm_config=llm_config,
            column_types=column_types,
            formatter=formatter,
            logger=logger,
        )

    group_field = config.group_by_field_name if config else ""
    if not group_field:
        result = run(rows)
        return ProfileReport(
            grouped=False,
            group_field=None,
            groups={ALL_GROUP_KEY: GroupResult(key=ALL_GROUP_KEY, label="all rows", result=result)},
            all_categories=list(result.categories),
            classification_rules=list(result.classification_rules),
            classification_params=result.classification_params,
            summary=result.analysis,
        )

    if not any(group_field in r for r in rows):
        raise InputError(f"Grouping field {group_field!r} not found in data")

    warnings: List[str] = []
    parts: List[Tuple[str, List[Row]]] = []
    for key, part in partition(rows, group_field).items():
        if not part:
            msg = f"Group {group_field}={key} has no rows; skipped"
            logger.warning(msg)
            warnings.append(msg)
            continue
        parts.append((key, part))
    logger.info("profiling %d groups of %s", len(parts), group_field)

    if max_workers and max_workers > 1 and len(parts) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            results = list(pool.map(run, [p for _, p in parts]))
    else:
        results = [run(p) for _, p in parts]

    groups: Dict[str, GroupResult] = {}
    all_categories = []
    for (key, _), result in zip(parts, results):
        groups[key] = GroupResult(key=key, label=f"{group_field}={key}", result=result)
        all_categories.extend(result.categories)

    # Every partition shares the same method config, so the first one's rules stand for all.
    first = results[0] if results else None
    return ProfileReport(
        grouped=True,
        group_field=group_field,
        groups=groups,
        all_categories=all_categories,
        classification_rules=list(first.classification_rules) if first else [],
        classification_params=first.classification_params if first else None,
        summary=f"Profile analysis by {group_field}: {len(groups)} groups, {len(rows)} objects",
        warnings=warnings,
    )


def _load_rows(path: Path) -> List[Dict[str, Any]]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("rows") or data.get("aggregatedData") or []
    if not isinstance(data, list):
        raise InputError(f"{path}: expected a JSON list of row objects")
    return [r for r in data if isinstance(r, dict)]


def main(argv: Optional[Sequence[str]] = None) -> int:
    import argparse

    p = argparse.ArgumentParser(description="Two-axis behavioural profiling of aggregated rows.")
    p.add_argument("rows", help="JSON file with a list of aggregated row objects")
    p.add_argument("--config", help="JSON file with the profile analysis config (camelCase)")
    p.add_argument("--method", choices=["iqr", "stddev"], default="iqr")
    p.add_argument("--upper", type=float, default=None, help="Upper multiplier")
    p.add_argument("--lower", type=float, default=None, help="Lower multiplier")
    p.add_argument("--group-by", default=None, help="Grouping field")
    p.add_argument("--no-model", action="store_true", help="Skip the model call")
    p.add_argument("--workers", type=int, default=None, help="Profile groups in parallel")
    p.add_argument("--out", default=None, help="Write the report JSON here instead of stdout")
    p.add_argument("-v", "--verbose", action="store_true")
    args = p.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    rows = _load_rows(Path(args.rows))
    cfg_raw: Dict[str, Any] = {}
    if args.config:
        cfg_raw = json.loads(Path(args.config).read_text(encoding="utf-8"))
    if args.group_by:
        cfg_raw["groupByFieldName"] = args.group_by
    config = ProfileAnalysisConfig.from_dict(cfg_raw)

    mult: Dict[str, Any] = {}
    if args.upper is not None:
        mult["upperMultiplier"] = args.upper
    if args.lower is not None:
        mult["lowerMultiplier"] = args.lower
    method_config = MethodConfig.from_dict({"method": args.method, args.method: mult})

    report = analyze(
        rows,
        config,
        method_config,
        use_model=not args.no_model,
        llm_config=LLMConfig.from_env(),
        max_workers=args.workers,
    )
    out = json.dumps(report.to_dict(), indent=2, ensure_ascii=False)
    if args.out:
        Path(args.out).write_text(out, encoding="utf-8")
        log.info("wrote report to %s", args.out)
    else:
        print(out)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
