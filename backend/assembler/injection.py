from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from assembler.budget import CHARS_PER_TOKEN, TokenEstimator, estimate_tokens
from assembler.paths import PathError, get_path, render_path, set_path
from documents.schemas import InjectionLimit, InjectionRule

logger = logging.getLogger(__name__)


@dataclass
class InjectionReport:
    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


def apply_limit(
    value: Any,
    limit: InjectionLimit,
    estimator: TokenEstimator = estimate_tokens,
) -> Any:
    if limit.units == "count":
        if isinstance(value, (list, str)):
            return value[: limit.max]
        if isinstance(value, dict):
            return dict(list(value.items())[: limit.max])
        return value

    if estimator(value) <= limit.max:
        return value
    if isinstance(value, str):
        trimmed = value[: limit.max * CHARS_PER_TOKEN]
        while trimmed and estimator(trimmed) > limit.max:
            trimmed = trimmed[:-1]
        return trimmed
    if isinstance(value, list):
        trimmed_list = list(value)
        while trimmed_list and estimator(trimmed_list) > limit.max:
            trimmed_list.pop()
        return trimmed_list
    if isinstance(value, dict):
        items = list(value.items())
        while items and estimator(dict(items)) > limit.max:
            items.pop()
        return dict(items)
    return value


def apply_injection_map(
    rules: Sequence[InjectionRule],
    sources: Mapping[str, Any],
    env: Mapping[str, Any],
    target: dict,
    *,
    estimator: TokenEstimator = estimate_tokens,
) -> InjectionReport:
    """Copy values from ``sources`` into ``target`` as described by ``rules``.

    A failing rule is recorded in the report and the remaining rules still run.
    """
    report = InjectionReport()
    for rule in rules:
        label = f"{rule.source} -> {rule.to}"
        try:
            source_path = render_path(rule.source, env)
            value = get_path(sources, source_path)
            if rule.skip_if_empty and is_empty(value):
                report.skipped.append(label)
                continue
            if is_empty(value) and rule.fallback is not None:
                value = rule.fallback.if_missing
            if rule.limit is not None:
                value = apply_limit(value, rule.limit, estimator)
            if is_empty(value):
                report.skipped.append(label)
                continue
            set_path(target, render_path(rule.to, env), copy.deepcopy(value))
            report.applied.append(label)
        except PathError as exc:
            report.errors.append(f"{label}: {exc}")
            logger.warning("Injection rule %s failed: %s", label, exc)
    return report
