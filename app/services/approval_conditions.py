"""
Step conditions — whether a route step takes part in a given application.

A condition is parsed once, when the route is saved, into an explicit type.
Evaluation is a small total function over that type and the cleaned
submission data; it never sees raw user JSON.

Supported shapes (input to ``parse_condition``):

    {"type": "numeric_range", "field": "amount", "min": 10000, "max": null}
    {"field": "amount", "min": 10000}          # type defaults to numeric_range
    {"minAmount": 10000, "maxAmount": 50000}   # shorthand, field "amount"

Evaluation is fail-closed: a keyed field that is absent or not numeric makes
the step NOT apply. A step with no condition always applies.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping

from app.core.exceptions import ValidationError

NUMERIC_RANGE = "numeric_range"

# Shorthand keys accepted from the route-authoring form.
_SHORTHAND_FIELD = "amount"
_SHORTHAND_KEYS = {"minAmount": "min", "maxAmount": "max"}


@dataclass(frozen=True)
class NumericRange:
    """Closed interval check on one numeric field. Missing bound = unbounded."""

    field: str
    min: float | None = None
    max: float | None = None

    type = NUMERIC_RANGE

    def to_dict(self) -> dict:
        return {"type": self.type, "field": self.field, "min": self.min, "max": self.max}


def _as_number(value: Any) -> float | None:
    """Finite float for ints/floats/numeric strings; None for anything else."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _parse_bound(raw: Mapping, key: str, label: str) -> float | None:
    if key not in raw or raw[key] is None:
        return None
    value = raw[key]
    number = _as_number(value) if not isinstance(value, str) else None
    if number is None:
        raise ValidationError(f"Condition {label} must be a finite number", details={"condition": dict(raw)})
    return number


def parse_condition(raw: Any) -> NumericRange | None:
    """Normalise a step condition, rejecting malformed ones.

    Returns None for "no condition" (None or an empty mapping).

    Raises:
        ValidationError: unknown type, missing field, non-numeric bound,
            no bound at all, or min greater than max.
    """
    if raw is None or (isinstance(raw, Mapping) and not raw):
        return None
    if isinstance(raw, NumericRange):
        return raw
    if not isinstance(raw, Mapping):
        raise ValidationError("Condition must be an object")

    if any(key in raw for key in _SHORTHAND_KEYS):
        extra = set(raw) - set(_SHORTHAND_KEYS)
        if extra:
            raise ValidationError(
                "Condition mixes minAmount/maxAmount with other keys",
                details={"unexpected_keys": sorted(extra)},
            )
        normalised = {"type": NUMERIC_RANGE, "field": _SHORTHAND_FIELD}
        for short, key in _SHORTHAND_KEYS.items():
            if short in raw:
                normalised[key] = raw[short]
        raw = normalised

    condition_type = raw.get("type", NUMERIC_RANGE)
    if condition_type != NUMERIC_RANGE:
        raise ValidationError(f"Unsupported condition type {condition_type!r}")

    field = raw.get("field")
    if not isinstance(field, str) or not field.strip():
        raise ValidationError("Condition field is required", details={"condition": dict(raw)})

    minimum = _parse_bound(raw, "min", "min")
    maximum = _parse_bound(raw, "max", "max")
    if minimum is None and maximum is None:
        raise ValidationError("Condition needs at least one of min/max", details={"condition": dict(raw)})
    if minimum is not None and maximum is not None and minimum > maximum:
        raise ValidationError("Condition min must not exceed max", details={"condition": dict(raw)})

    return NumericRange(field=field.strip(), min=minimum, max=maximum)


def condition_from_dict(stored: Mapping | None) -> NumericRange | None:
    """Rebuild a condition previously produced by ``NumericRange.to_dict``."""
    if not stored:
        return None
    return NumericRange(field=stored["field"], min=stored.get("min"), max=stored.get("max"))


def applies(condition: NumericRange | None, data: Mapping[str, Any]) -> bool:
    """Decide whether a step with ``condition`` joins the assignment chain."""
    if condition is None:
        return True
    value = _as_number(data.get(condition.field)) if data else None
    if value is None:
        return False
    if condition.min is not None and value < condition.min:
        return False
    if condition.max is not None and value > condition.max:
        return False
    return True
