from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

__all__ = [
    "GROUP_ORDERS",
    "FieldStats",
    "GroupKey",
    "_clean_text",
    "_coerce_float",
    "compute_field_stats",
    "group_rows",
    "group_sort_key",
]

GroupKey = Tuple[Optional[str], ...]

# "sorted" follows a group-by/summarise chain (lexicographic on the key tuple,
# missing values last); "first_seen" keeps the order keys appear in the source.
GROUP_ORDERS: Tuple[str, ...] = ("sorted", "first_seen")


def _clean_text(value: Optional[object]) -> Optional[str]:
    """Normalise arbitrary inputs to stripped text or ``None``."""

    if value in (None, ""):
        return None
    text = str(value).strip()
    return text or None


def _coerce_float(value: object) -> Optional[float]:
    """Parse floats from heterogeneous inputs, filtering non-finite values."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, np.integer, np.floating)):
        numeric = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            numeric = float(text)
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(numeric):
        return None
    return numeric


@dataclass(frozen=True)
class FieldStats:
    """Full-precision mean and standard error over valid observations."""

    mean: Optional[float]
    se: Optional[float]
    n: int

    @property
    def is_missing(self) -> bool:
        return self.n == 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "mean": float(self.mean) if self.mean is not None else None,
            "se": float(self.se) if self.se is not None else None,
            "n": int(self.n),
        }


def compute_field_stats(values: Iterable[object]) -> FieldStats:
    """Return the mean and ``sd / sqrt(n)`` of the non-missing ``values``.

    With no valid observations both statistics are ``None``. A single
    observation has no estimable spread and reports a standard error of zero.
    """

    valid = [numeric for numeric in (_coerce_float(value) for value in values) if numeric is not None]
    n = len(valid)
    if n == 0:
        return FieldStats(mean=None, se=None, n=0)
    array = np.asarray(valid, dtype=float)
    mean = float(np.mean(array))
    if n == 1:
        return FieldStats(mean=mean, se=0.0, n=1)
    std = float(np.std(array, ddof=1))
    return FieldStats(mean=mean, se=std / math.sqrt(n), n=n)


def group_sort_key(key: GroupKey) -> Tuple[Tuple[bool, str], ...]:
    return tuple((part is None, part or "") for part in key)


def group_rows(
    rows: Iterable[Mapping[str, Any]],
    group_fields: Sequence[str],
    *,
    order: str = "sorted",
) -> Dict[GroupKey, Tuple[Mapping[str, Any], ...]]:
    """Bucket ``rows`` by the values of ``group_fields``.

    Rows keep their source order inside each bucket. Buckets are returned in
    ``order`` (see :data:`GROUP_ORDERS`).
    """

    if order not in GROUP_ORDERS:
        raise ValueError(f"Unknown group order '{order}'; expected one of {', '.join(GROUP_ORDERS)}")
    buckets: Dict[GroupKey, List[Mapping[str, Any]]] = {}
    for row in rows:
        key: GroupKey = tuple(_clean_text(row.get(field)) for field in group_fields)
        buckets.setdefault(key, []).append(row)
    keys = list(buckets.keys())
    if order == "sorted":
        keys.sort(key=group_sort_key)
    return {key: tuple(buckets[key]) for key in keys}
