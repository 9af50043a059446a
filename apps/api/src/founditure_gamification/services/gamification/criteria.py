"""Achievement criteria: structural validation and evaluation."""

from __future__ import annotations

from typing import Any, Mapping

from .errors import ValidationError

CRITERIA_TYPES = ("progress", "threshold", "flags", "all")
_MAX_DEPTH = 4


def validate_criteria(criteria: Any, *, field: str = "criteria", _depth: int = 0) -> dict[str, Any]:
    """Return a normalized copy of ``criteria`` or raise ``ValidationError``."""

    if criteria is None:
        return {}
    if not isinstance(criteria, Mapping):
        raise ValidationError.for_field(field, "Criteria must be an object")
    if _depth > _MAX_DEPTH:
        raise ValidationError.for_field(field, "Criteria nesting is too deep")
    if not criteria:
        return {}

    kind = criteria.get("type", "progress")
    if kind not in CRITERIA_TYPES:
        raise ValidationError.for_field(f"{field}.type", f"Unknown criteria type: {kind}")

    normalized: dict[str, Any] = dict(criteria)
    normalized["type"] = kind

    if kind == "threshold":
        metric = criteria.get("metric")
        threshold = criteria.get("threshold")
        if not isinstance(metric, str) or not metric:
            raise ValidationError.for_field(f"{field}.metric", "Threshold criteria need a metric name")
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
            raise ValidationError.for_field(f"{field}.threshold", "Threshold must be numeric")
    elif kind == "flags":
        flags = criteria.get("flags")
        if not isinstance(flags, list) or not flags or not all(isinstance(flag, str) and flag for flag in flags):
            raise ValidationError.for_field(f"{field}.flags", "Flags criteria need a list of flag names")
    elif kind == "all":
        nested = criteria.get("criteria")
        if not isinstance(nested, list) or not nested:
            raise ValidationError.for_field(f"{field}.criteria", "Composite criteria need nested criteria")
        normalized["criteria"] = [
            validate_criteria(item, field=f"{field}.criteria[{index}]", _depth=_depth + 1)
            for index, item in enumerate(nested)
        ]

    return normalized


def evaluate_criteria(criteria: Mapping[str, Any] | None, metadata: Mapping[str, Any] | None) -> bool:
    """Check whether progress ``metadata`` satisfies a validated criteria object."""

    if not criteria:
        return True
    metadata = metadata or {}
    kind = criteria.get("type", "progress")

    if kind == "progress":
        return True
    if kind == "threshold":
        value = metadata.get(criteria["metric"])
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        return value >= criteria["threshold"]
    if kind == "flags":
        return all(bool(metadata.get(flag)) for flag in criteria["flags"])
    if kind == "all":
        return all(evaluate_criteria(item, metadata) for item in criteria["criteria"])
    return False


__all__ = ["CRITERIA_TYPES", "evaluate_criteria", "validate_criteria"]
