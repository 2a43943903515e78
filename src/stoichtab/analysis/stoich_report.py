"""End-to-end litter stoichiometry report: load, aggregate, lay out, render."""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from stoichtab.configs import resolve_data_path
from stoichtab.configs.layered import extract_section, load_layered_config, validate_sections

from .common_loader import DEFAULT_NA_VALUES, DEFAULT_TIMEOUT, SourceTable, is_remote_source, load_table
from .common_metrics import GROUP_ORDERS
from .layout import BLANK_MARKER, LayoutTable, build_layout
from .render import (
    RenderOptions,
    render_html_document,
    render_markdown,
    to_delimited_text,
)
from .summary import DEFAULT_RATIO_COLUMN, AggregatedRow, DisplayPolicy, summarize_stoichiometry

__all__ = [
    "DEFAULT_CONFIG",
    "RenderedReport",
    "ReportConfig",
    "StoichReport",
    "build_manifest",
    "build_report",
    "compute_file_sha256",
    "load_report_config",
    "render_report",
    "write_outputs",
]

DEFAULT_CONFIG = "litter_stoichiometry"

logger = logging.getLogger(__name__)


def compute_file_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(8192), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _require(section: Mapping[str, Any], key: str, name: str) -> Any:
    value = section.get(key)
    if value in (None, "", [], ()):
        raise ValueError(f"Report configuration section '{name}' must define '{key}'")
    return value


def _string_tuple(values: Iterable[Any]) -> Tuple[str, ...]:
    return tuple(str(value) for value in values)


@dataclass(frozen=True)
class ReportConfig:
    source: str
    group_fields: Tuple[str, ...]
    value_fields: Tuple[str, ...]
    ratio_fields: Tuple[str, ...]
    segments: Tuple[Mapping[str, Any], ...]
    row_labels: Tuple[str, ...]
    delimiter: str = ","
    na_values: Tuple[str, ...] = DEFAULT_NA_VALUES
    timeout: float = DEFAULT_TIMEOUT
    ratio_column: str = DEFAULT_RATIO_COLUMN
    order: str = "sorted"
    policy: DisplayPolicy = field(default_factory=DisplayPolicy)
    display_fields: Tuple[str, ...] = ()
    column_headers: Union[None, Tuple[str, ...], Mapping[str, str]] = None
    label_header: str = ""
    blank_marker: str = BLANK_MARKER
    render: RenderOptions = field(default_factory=RenderOptions)
    title: str = "Summary table"
    sources: Tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "ReportConfig":
        validate_sections(config)
        source = extract_section(config, "source")
        aggregation = extract_section(config, "aggregation")
        layout = extract_section(config, "layout")
        render_block = config.get("render") or {}

        value_fields = _string_tuple(_require(aggregation, "value_fields", "aggregation"))
        ratio_column = str(aggregation.get("ratio_column", DEFAULT_RATIO_COLUMN))
        ratio_fields = _string_tuple(_require(aggregation, "ratio_fields", "aggregation"))
        if len(ratio_fields) != 3:
            raise ValueError(f"'ratio_fields' must name exactly three fields, got {list(ratio_fields)}")
        unlisted = [name for name in ratio_fields if name not in value_fields]
        if unlisted:
            raise ValueError(f"Ratio fields {unlisted} must also be listed in 'value_fields'")
        order = str(aggregation.get("order", "sorted"))
        if order not in GROUP_ORDERS:
            raise ValueError(f"Unknown group order '{order}'; expected one of {', '.join(GROUP_ORDERS)}")

        display_fields = _string_tuple(layout.get("columns") or value_fields + (ratio_column,))
        unknown = [name for name in display_fields if name not in value_fields + (ratio_column,)]
        if unknown:
            raise ValueError(
                f"Layout columns {unknown} are neither value fields nor the ratio column '{ratio_column}'"
            )
        headers = layout.get("column_headers")
        if isinstance(headers, Mapping):
            column_headers: Union[None, Tuple[str, ...], Mapping[str, str]] = {
                str(key): str(value) for key, value in headers.items()
            }
        elif headers:
            column_headers = _string_tuple(headers)
        else:
            column_headers = None

        return cls(
            source=str(_require(source, "path", "source")),
            delimiter=str(source.get("delimiter", ",")),
            na_values=_string_tuple(source.get("na_values", DEFAULT_NA_VALUES)),
            timeout=float(source.get("timeout", DEFAULT_TIMEOUT)),
            group_fields=_string_tuple(_require(aggregation, "group_fields", "aggregation")),
            value_fields=value_fields,
            ratio_fields=ratio_fields,
            ratio_column=ratio_column,
            order=order,
            policy=DisplayPolicy.from_mapping(aggregation.get("display")),
            segments=tuple(_require(layout, "segments", "layout")),
            row_labels=_string_tuple(_require(layout, "row_labels", "layout")),
            display_fields=display_fields,
            column_headers=column_headers,
            label_header=str(layout.get("label_header", "")),
            blank_marker=str(layout.get("blank_marker", BLANK_MARKER)),
            render=RenderOptions.from_mapping(render_block),
            title=str(config.get("title", "Summary table")),
            sources=_string_tuple(config.get("__sources__", ())),
        )

    def with_overrides(
        self,
        *,
        source: Optional[str] = None,
        delimiter: Optional[str] = None,
    ) -> "ReportConfig":
        updates: Dict[str, Any] = {}
        if source is not None:
            updates["source"] = source
        if delimiter is not None:
            updates["delimiter"] = delimiter
        return replace(self, **updates) if updates else self


def load_report_config(reference: Union[str, Path] = DEFAULT_CONFIG) -> ReportConfig:
    return ReportConfig.from_mapping(load_layered_config(reference))


def _resolve_source(source: str) -> Union[str, Path]:
    if is_remote_source(source):
        return source
    candidate = Path(source).expanduser()
    if candidate.is_absolute() or candidate.exists():
        return candidate
    return resolve_data_path(candidate)


@dataclass
class StoichReport:
    config: ReportConfig
    table: SourceTable
    aggregated: Tuple[AggregatedRow, ...]
    layout: LayoutTable

    def as_dict(self) -> Dict[str, Any]:
        return {
            "title": self.config.title,
            "source": self.table.source,
            "row_count": len(self.table),
            "group_fields": list(self.config.group_fields),
            "value_fields": list(self.config.value_fields),
            "ratio_fields": list(self.config.ratio_fields),
            "groups": [row.as_dict() for row in self.aggregated],
            "layout": self.layout.as_dict(),
        }


@dataclass(frozen=True)
class RenderedReport:
    html: str
    markdown: str
    delimited: str


def build_report(config: ReportConfig) -> StoichReport:
    """Run the load, aggregate and layout stages for ``config``."""

    source = _resolve_source(config.source)
    table = load_table(
        source,
        delimiter=config.delimiter,
        numeric_columns=config.value_fields,
        na_values=config.na_values,
        timeout=config.timeout,
    )
    aggregated = summarize_stoichiometry(
        table,
        config.group_fields,
        config.value_fields,
        config.ratio_fields,
        ratio_column=config.ratio_column,
        order=config.order,
        policy=config.policy,
    )
    layout = build_layout(
        aggregated,
        config.segments,
        config.row_labels,
        fields=config.display_fields,
        column_headers=config.column_headers,
        label_header=config.label_header,
        blank_marker=config.blank_marker,
    )
    return StoichReport(config=config, table=table, aggregated=aggregated, layout=layout)


def render_report(report: StoichReport, *, delimiter: str = ",") -> RenderedReport:
    """Render every output in memory so a layout error leaves no files behind."""

    options = report.config.render
    return RenderedReport(
        html=render_html_document(report.layout, options, title=report.config.title),
        markdown=render_markdown(report.layout, options),
        delimited=to_delimited_text(report.layout, delimiter=delimiter),
    )


def write_outputs(
    rendered: RenderedReport,
    *,
    html_path: Optional[Path] = None,
    csv_path: Optional[Path] = None,
    markdown_path: Optional[Path] = None,
) -> List[Path]:
    written: List[Path] = []
    for path, text in (
        (html_path, rendered.html),
        (csv_path, rendered.delimited),
        (markdown_path, rendered.markdown),
    ):
        if path is None:
            continue
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        logger.info("Wrote %s", path)
        written.append(path)
    return written


def build_manifest(
    report: StoichReport,
    *,
    outputs: Sequence[Path] = (),
    manifest_path: Optional[Path] = None,
) -> Dict[str, Any]:
    source_entry: Dict[str, Any] = {"path": report.table.source}
    if not is_remote_source(report.table.source):
        source_path = Path(report.table.source)
        if source_path.exists():
            source_entry["sha256"] = compute_file_sha256(source_path)
    manifest: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "title": report.config.title,
        "config_sources": list(report.config.sources),
        "source": source_entry,
        "groups": len(report.aggregated),
        "layout_rows": len(report.layout),
        "outputs": [
            {"path": str(path), "sha256": compute_file_sha256(path)}
            for path in outputs
            if path.exists()
        ],
    }
    if manifest_path is not None:
        manifest_path.parent.mkdir(parents=True, exist_ok=True)
        manifest_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")
    return manifest
