"""Grouped mean ± standard error summaries with a derived element ratio."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .common_loader import SourceTable, ensure_columns
from .common_metrics import FieldStats, GroupKey, compute_field_stats, group_rows
from .display import (
    MEAN_DECIMALS,
    MEAN_SIGNIFICANT,
    PLACEHOLDER,
    PLUS_MINUS,
    RATIO_SCALE,
    SE_DECIMALS,
    SE_SIGNIFICANT,
    format_mean_se,
    format_ratio,
)

__all__ = [
    "DEFAULT_RATIO_COLUMN",
    "AggregatedRow",
    "DisplayPolicy",
    "attach_ratios",
    "compute_ratio",
    "summarize_mean_se",
    "summarize_stoichiometry",
]

DEFAULT_RATIO_COLUMN = "ratio"

logger = logging.getLogger(__name__)

RowSource = Union[SourceTable, Sequence[Mapping[str, Any]]]


@dataclass(frozen=True)
class DisplayPolicy:
    """Digit and glyph conventions used when formatting summary cells."""

    mean_decimals: int = MEAN_DECIMALS
    mean_significant: int = MEAN_SIGNIFICANT
    se_decimals: int = SE_DECIMALS
    se_significant: int = SE_SIGNIFICANT
    glyph: str = PLUS_MINUS
    placeholder: str = PLACEHOLDER
    ratio_scale: int = RATIO_SCALE

    @classmethod
    def from_mapping(cls, payload: Optional[Mapping[str, Any]]) -> "DisplayPolicy":
        if not payload:
            return cls()
        mean_block = payload.get("mean") or {}
        se_block = payload.get("se") or {}
        defaults = cls()
        return cls(
            mean_decimals=int(mean_block.get("decimals", defaults.mean_decimals)),
            mean_significant=int(mean_block.get("significant", defaults.mean_significant)),
            se_decimals=int(se_block.get("decimals", defaults.se_decimals)),
            se_significant=int(se_block.get("significant", defaults.se_significant)),
            glyph=str(payload.get("glyph", defaults.glyph)),
            placeholder=str(payload.get("placeholder", defaults.placeholder)),
            ratio_scale=int(payload.get("ratio_scale", defaults.ratio_scale)),
        )

    def format(self, stats: FieldStats) -> str:
        return format_mean_se(
            stats.mean,
            stats.se,
            mean_decimals=self.mean_decimals,
            mean_significant=self.mean_significant,
            se_decimals=self.se_decimals,
            se_significant=self.se_significant,
            glyph=self.glyph,
            placeholder=self.placeholder,
        )


@dataclass(frozen=True)
class AggregatedRow:
    key: GroupKey
    group_fields: Tuple[str, ...]
    cells: Mapping[str, str]
    stats: Mapping[str, FieldStats]
    ratio: Optional[str] = None
    ratio_column: str = field(default=DEFAULT_RATIO_COLUMN, compare=False)

    @property
    def group(self) -> Dict[str, Optional[str]]:
        return dict(zip(self.group_fields, self.key))

    @property
    def field_names(self) -> Tuple[str, ...]:
        names = tuple(self.cells)
        if self.ratio is not None:
            names += (self.ratio_column,)
        return names

    def value(self, name: str) -> str:
        if name == self.ratio_column and self.ratio is not None:
            return self.ratio
        try:
            return self.cells[name]
        except KeyError:
            raise KeyError(f"Aggregated row {self.key} has no display field '{name}'") from None

    def display_values(self, fields: Sequence[str]) -> Tuple[str, ...]:
        return tuple(self.value(name) for name in fields)

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "group": self.group,
            "cells": dict(self.cells),
            "stats": {name: stats.as_dict() for name, stats in self.stats.items()},
        }
        if self.ratio is not None:
            payload[self.ratio_column] = self.ratio
        return payload


def _available_columns(rows: RowSource) -> Tuple[str, ...]:
    if isinstance(rows, SourceTable):
        return rows.columns
    seen: Dict[str, None] = {}
    for row in rows:
        for name in row.keys():
            seen.setdefault(str(name), None)
    return tuple(seen)


def summarize_mean_se(
    rows: RowSource,
    group_fields: Sequence[str],
    value_fields: Sequence[str],
    *,
    order: str = "sorted",
    policy: Optional[DisplayPolicy] = None,
) -> Tuple[AggregatedRow, ...]:
    """Reduce each value field to a ``"mean ± se"`` string per group.

    Every requested column is checked against the table before any group is
    formed; absent columns raise :class:`~stoichtab.analysis.common_loader.SchemaError`.
    Groups without valid observations for a field carry the placeholder in
    that cell.
    """

    if not value_fields:
        raise ValueError("At least one value field is required for aggregation")
    active_policy = policy or DisplayPolicy()
    records = rows.rows if isinstance(rows, SourceTable) else tuple(rows)
    if not records and not isinstance(rows, SourceTable):
        return ()
    context = f"Source table {rows.source}" if isinstance(rows, SourceTable) else "Source rows"
    ensure_columns(
        _available_columns(rows if isinstance(rows, SourceTable) else records),
        list(group_fields) + list(value_fields),
        context=context,
    )

    grouping = tuple(group_fields)
    buckets = group_rows(records, grouping, order=order)
    aggregated: List[AggregatedRow] = []
    for key, members in buckets.items():
        stats: Dict[str, FieldStats] = {}
        cells: Dict[str, str] = {}
        for name in value_fields:
            field_stats = compute_field_stats(member.get(name) for member in members)
            stats[name] = field_stats
            cells[name] = active_policy.format(field_stats)
        logger.debug("Group %s: %d rows, cells=%s", key, len(members), cells)
        aggregated.append(
            AggregatedRow(
                key=key,
                group_fields=grouping,
                cells=MappingProxyType(cells),
                stats=MappingProxyType(stats),
            )
        )
    logger.info(
        "Summarised %d rows into %d groups over %s", len(records), len(aggregated), ", ".join(value_fields)
    )
    return tuple(aggregated)


def compute_ratio(
    mean_c: Optional[float],
    mean_n: Optional[float],
    mean_p: Optional[float],
    *,
    scale: int = RATIO_SCALE,
    placeholder: str = PLACEHOLDER,
) -> str:
    """Return ``"<C>:<N>:1"`` scaled against ``mean_p`` from full-precision means."""

    return format_ratio(mean_c, mean_n, mean_p, scale=scale, placeholder=placeholder)


def attach_ratios(
    rows: Iterable[AggregatedRow],
    ratio_fields: Sequence[str],
    *,
    column: str = DEFAULT_RATIO_COLUMN,
    policy: Optional[DisplayPolicy] = None,
) -> Tuple[AggregatedRow, ...]:
    """Return copies of ``rows`` carrying the ratio derived from raw means."""

    if len(ratio_fields) != 3:
        raise ValueError(f"Ratio requires exactly three fields, got {list(ratio_fields)}")
    active_policy = policy or DisplayPolicy()
    first, second, reference = ratio_fields
    updated: List[AggregatedRow] = []
    for row in rows:
        missing = [name for name in ratio_fields if name not in row.stats]
        if missing:
            raise ValueError(
                f"Ratio fields {missing} were not aggregated; add them to the value fields"
            )
        ratio = compute_ratio(
            row.stats[first].mean,
            row.stats[second].mean,
            row.stats[reference].mean,
            scale=active_policy.ratio_scale,
            placeholder=active_policy.placeholder,
        )
        updated.append(replace(row, ratio=ratio, ratio_column=column))
    return tuple(updated)


def summarize_stoichiometry(
    rows: RowSource,
    group_fields: Sequence[str],
    value_fields: Sequence[str],
    ratio_fields: Sequence[str],
    *,
    ratio_column: str = DEFAULT_RATIO_COLUMN,
    order: str = "sorted",
    policy: Optional[DisplayPolicy] = None,
) -> Tuple[AggregatedRow, ...]:
    """Aggregate ``value_fields`` per group and attach the derived ratio column."""

    missing = [name for name in ratio_fields if name not in value_fields]
    if missing:
        raise ValueError(f"Ratio fields {missing} must also be listed as value fields")
    summaries = summarize_mean_se(rows, group_fields, value_fields, order=order, policy=policy)
    return attach_ratios(summaries, ratio_fields, column=ratio_column, policy=policy)
