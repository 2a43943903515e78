"""Declarative row layout for publication tables.

A layout is an ordered list of segments. Each segment either emits a run of
blank spacer rows or a contiguous slice of aggregated rows. A parallel list of
row labels names every emitted row, spacers included, so the two must agree
in length before anything is rendered.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .summary import AggregatedRow

__all__ = [
    "BLANK_MARKER",
    "BlankRun",
    "DataSlice",
    "LayoutMismatch",
    "LayoutRow",
    "LayoutTable",
    "build_layout",
    "parse_segments",
    "planned_row_count",
    "resolve_column_headers",
]

BLANK_MARKER = " "

logger = logging.getLogger(__name__)


class LayoutMismatch(RuntimeError):
    """Raised when a layout description disagrees with the data or its labels."""


@dataclass(frozen=True)
class BlankRun:
    count: int

    def __post_init__(self) -> None:
        if self.count < 0:
            raise LayoutMismatch(f"Blank run length must be non-negative, got {self.count}")


@dataclass(frozen=True)
class DataSlice:
    """Aggregated rows ``start`` (inclusive) to ``stop`` (exclusive), zero-based."""

    start: int
    stop: int

    def __post_init__(self) -> None:
        if self.start < 0 or self.stop < self.start:
            raise LayoutMismatch(f"Invalid data slice [{self.start}, {self.stop})")

    @property
    def count(self) -> int:
        return self.stop - self.start


LayoutSegment = Union[BlankRun, DataSlice]


@dataclass(frozen=True)
class LayoutRow:
    label: str
    values: Tuple[str, ...]
    blank: bool
    source_index: Optional[int] = None


@dataclass(frozen=True)
class LayoutTable:
    label_header: str
    headers: Tuple[str, ...]
    fields: Tuple[str, ...]
    rows: Tuple[LayoutRow, ...]

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return 1 + len(self.headers)

    def header_row(self) -> Tuple[str, ...]:
        return (self.label_header,) + self.headers

    def grid(self) -> List[Tuple[str, ...]]:
        return [(row.label,) + row.values for row in self.rows]

    def as_dict(self) -> dict[str, Any]:
        return {
            "label_header": self.label_header,
            "headers": list(self.headers),
            "fields": list(self.fields),
            "rows": [
                {"label": row.label, "values": list(row.values), "blank": row.blank}
                for row in self.rows
            ],
        }


def _parse_segment(entry: Any, index: int) -> LayoutSegment:
    if isinstance(entry, (BlankRun, DataSlice)):
        return entry
    if not isinstance(entry, Mapping) or len(entry) != 1:
        raise LayoutMismatch(
            f"Layout segment {index} must be a single-key mapping with 'blank' or 'rows', got {entry!r}"
        )
    ((kind, payload),) = entry.items()
    if kind == "blank":
        try:
            return BlankRun(int(payload))
        except (TypeError, ValueError) as exc:
            raise LayoutMismatch(f"Layout segment {index} has a non-integer blank count {payload!r}") from exc
    if kind == "rows":
        if not isinstance(payload, Sequence) or isinstance(payload, str) or len(payload) != 2:
            raise LayoutMismatch(f"Layout segment {index} 'rows' must be [start, stop], got {payload!r}")
        try:
            start, stop = (int(value) for value in payload)
        except (TypeError, ValueError) as exc:
            raise LayoutMismatch(f"Layout segment {index} has non-integer bounds {payload!r}") from exc
        return DataSlice(start, stop)
    raise LayoutMismatch(f"Layout segment {index} has unknown kind '{kind}'")


def parse_segments(entries: Iterable[Any]) -> Tuple[LayoutSegment, ...]:
    return tuple(_parse_segment(entry, index) for index, entry in enumerate(entries))


def planned_row_count(segments: Iterable[LayoutSegment]) -> int:
    return sum(segment.count for segment in segments)


def resolve_column_headers(
    fields: Sequence[str],
    column_headers: Union[None, Sequence[str], Mapping[str, str]],
) -> Tuple[str, ...]:
    """Return display headers for ``fields``; headers are passed through untouched."""

    if column_headers is None:
        return tuple(fields)
    if isinstance(column_headers, Mapping):
        unknown = [str(key) for key in column_headers if key not in fields]
        if unknown:
            raise LayoutMismatch(
                f"Column headers name unknown display columns: {', '.join(unknown)}"
            )
        return tuple(str(column_headers.get(name, name)) for name in fields)
    headers = tuple(str(header) for header in column_headers)
    if len(headers) != len(fields):
        raise LayoutMismatch(
            f"Received {len(headers)} column headers for {len(fields)} display columns"
        )
    return headers


def build_layout(
    aggregated: Sequence[AggregatedRow],
    segments: Iterable[Union[LayoutSegment, Mapping[str, Any]]],
    row_labels: Sequence[str],
    *,
    fields: Sequence[str],
    column_headers: Union[None, Sequence[str], Mapping[str, str]] = None,
    label_header: str = "",
    blank_marker: str = BLANK_MARKER,
) -> LayoutTable:
    """Splice ``aggregated`` rows and blank spacers into the final row order.

    Raises :class:`LayoutMismatch` when a slice reaches past the aggregated
    rows, when the label count differs from the emitted row count, when a
    field is not one of the aggregated columns, or when the column headers
    do not line up with ``fields``.
    """

    parsed = parse_segments(segments)
    display_fields = tuple(fields)
    headers = resolve_column_headers(display_fields, column_headers)
    if aggregated:
        available = aggregated[0].field_names
        unknown = [name for name in display_fields if name not in available]
        if unknown:
            raise LayoutMismatch(
                f"Display columns {', '.join(unknown)} are not aggregated; "
                f"available columns: {', '.join(available)}"
            )
    expected = planned_row_count(parsed)
    if len(row_labels) != expected:
        raise LayoutMismatch(
            f"Layout emits {expected} rows but {len(row_labels)} row labels were supplied"
        )

    blank_values = tuple(blank_marker for _ in display_fields)
    rows: List[LayoutRow] = []
    for segment in parsed:
        if isinstance(segment, BlankRun):
            for _ in range(segment.count):
                rows.append(
                    LayoutRow(label=str(row_labels[len(rows)]), values=blank_values, blank=True)
                )
            continue
        if segment.stop > len(aggregated):
            raise LayoutMismatch(
                f"Data slice [{segment.start}, {segment.stop}) exceeds the {len(aggregated)} aggregated rows"
            )
        for index in range(segment.start, segment.stop):
            rows.append(
                LayoutRow(
                    label=str(row_labels[len(rows)]),
                    values=aggregated[index].display_values(display_fields),
                    blank=False,
                    source_index=index,
                )
            )

    logger.info(
        "Laid out %d rows (%d blank, %d data)",
        len(rows),
        sum(1 for row in rows if row.blank),
        sum(1 for row in rows if not row.blank),
    )
    return LayoutTable(
        label_header=label_header,
        headers=headers,
        fields=display_fields,
        rows=tuple(rows),
    )
