"""Pillar score reconciliation and display helpers.

Scoring happens on the backend; results arrive as loosely typed pillar
records. Some carry a precomputed ``percentage``, some only a raw
``score``/``max_score`` pair, and some are malformed. Everything here is pure
and never raises so a bad payload cannot break the results view.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, Mapping, Optional

LIKERT_MAX_SCORE = 5.0

_SCORE_KEYS = ("score", "raw_score", "rawScore")
_MAX_KEYS = ("max_score", "maxScore")
_NAME_KEYS = ("pillar", "name", "factor")

# Lower bounds on the percentage scale, highest first.
INTERPRETATION_BANDS = (
    (80.0, "Excellent"),
    (60.0, "Good"),
    (40.0, "Needs Improvement"),
)
LOWEST_BAND = "At Risk"


def _is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _clamp(value: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, float(value)))


def _field(record: Any, keys: Iterable[str]) -> Any:
    """Return the first present value for *keys* from a mapping or object."""
    for key in keys:
        if isinstance(record, Mapping):
            if key in record:
                return record[key]
        elif hasattr(record, key):
            return getattr(record, key)
    return None


def _raw_score(record: Any) -> float:
    score = _field(record, _SCORE_KEYS)
    return float(score) if _is_finite_number(score) else 0.0


def _max_score(record: Any) -> float:
    max_score = _field(record, _MAX_KEYS)
    if _is_finite_number(max_score) and max_score > 0:
        return float(max_score)
    return LIKERT_MAX_SCORE


def reconcile(record: Any) -> float:
    """Return one percentage in [0, 100] for a pillar score record.

    A finite backend ``percentage`` wins. Otherwise the raw score is scaled by
    ``max_score``, which falls back to the Likert maximum of 5.
    """
    if record is None:
        return 0.0
    percentage = _field(record, ("percentage",))
    if _is_finite_number(percentage):
        return _clamp(percentage)
    return _clamp(_raw_score(record) / _max_score(record) * 100.0)


def is_valid_record(record: Any) -> bool:
    """True when *record* names its pillar and carries a finite numeric score."""
    if record is None or isinstance(record, (str, bytes, int, float, bool)):
        return False
    name = _field(record, _NAME_KEYS)
    score = _field(record, _SCORE_KEYS)
    return isinstance(name, str) and _is_finite_number(score)


def format_pillar_score(record: Any) -> str:
    """Render a raw score as ``"3.8/5"``."""
    max_score = _max_score(record)
    max_text = f"{max_score:g}"
    return f"{_raw_score(record):.1f}/{max_text}"


def format_percentage(percentage: float) -> str:
    if not _is_finite_number(percentage):
        return "0%"
    # Half-up rounding so 62.5 renders as 63%
    return f"{int(math.floor(percentage + 0.5))}%"


def interpret(percentage: float) -> str:
    value = percentage if _is_finite_number(percentage) else 0.0
    for lower_bound, label in INTERPRETATION_BANDS:
        if value >= lower_bound:
            return label
    return LOWEST_BAND


def pillar_display_data(record: Any, pillar_name: Optional[str] = None) -> dict:
    """Build the row a chart or results table renders for one pillar."""
    percentage = reconcile(record)
    return {
        "factor": pillar_name or _field(record, _NAME_KEYS),
        "score": percentage,
        "raw_score": _raw_score(record),
        "max_score": _max_score(record),
        "formatted_score": format_pillar_score(record),
        "formatted_percentage": format_percentage(percentage),
        "interpretation": interpret(percentage),
        "full_mark": 100,
    }


def reconcile_all(records: Optional[Iterable[Any]], names: Optional[Mapping[str, str]] = None) -> list[dict]:
    """Drop malformed records and return display rows for the rest.

    *names* optionally maps pillar keys to localized display names.
    """
    rows: list[dict] = []
    for record in records or ():
        if not is_valid_record(record):
            continue
        key = _field(record, _NAME_KEYS)
        rows.append(pillar_display_data(record, (names or {}).get(key)))
    return rows


__all__ = [
    "LIKERT_MAX_SCORE",
    "reconcile",
    "is_valid_record",
    "format_pillar_score",
    "format_percentage",
    "interpret",
    "pillar_display_data",
    "reconcile_all",
]
