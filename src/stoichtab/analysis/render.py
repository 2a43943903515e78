from __future__ import annotations

import csv
import html
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .layout import LayoutMismatch, LayoutTable

__all__ = [
    "HeaderSpan",
    "RenderOptions",
    "parse_header_spans",
    "render_html",
    "render_html_document",
    "render_markdown",
    "resolve_indents",
    "to_delimited_text",
    "write_delimited",
]

DEFAULT_INDENT_EM = 1.5
_MARKDOWN_INDENT = "&emsp;"

_DOCUMENT_STYLE = """\
table.stoich-table { border-collapse: collapse; font-family: serif; }
table.stoich-table th, table.stoich-table td { padding: 2px 8px; text-align: center; }
table.stoich-table td.row-label, table.stoich-table th.row-label { text-align: left; }
table.stoich-table thead tr:last-child th { border-bottom: 1px solid #000; }
table.stoich-table thead tr:first-child th { border-top: 2px solid #000; }
table.stoich-table th.span-label { border-bottom: 1px solid #000; }
table.stoich-table tbody tr:last-child td { border-bottom: 2px solid #000; }
table.stoich-table tfoot td { text-align: left; font-size: 0.9em; }
"""

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HeaderSpan:
    label: str
    span: int

    def __post_init__(self) -> None:
        if self.span < 1:
            raise LayoutMismatch(f"Header span '{self.label}' must cover at least one column")


@dataclass(frozen=True)
class RenderOptions:
    """Presentation settings; labels, headers and footnote are inserted as markup."""

    caption: Optional[str] = None
    footnote: Optional[str] = None
    header_spans: Tuple[HeaderSpan, ...] = ()
    indent_levels: Mapping[int, Sequence[int]] = field(default_factory=dict)
    indent_em: float = DEFAULT_INDENT_EM
    table_class: str = "stoich-table"

    @classmethod
    def from_mapping(cls, payload: Optional[Mapping[str, Any]]) -> "RenderOptions":
        if not payload:
            return cls()
        levels_block = payload.get("indent") or {}
        levels = {int(level): tuple(int(index) for index in indices or ()) for level, indices in levels_block.items()}
        return cls(
            caption=payload.get("caption"),
            footnote=payload.get("footnote"),
            header_spans=parse_header_spans(payload.get("header_spans") or ()),
            indent_levels=levels,
            indent_em=float(payload.get("indent_em", DEFAULT_INDENT_EM)),
            table_class=str(payload.get("table_class", "stoich-table")),
        )


def parse_header_spans(entries: Iterable[Any]) -> Tuple[HeaderSpan, ...]:
    spans: List[HeaderSpan] = []
    for entry in entries:
        if isinstance(entry, HeaderSpan):
            spans.append(entry)
        elif isinstance(entry, Mapping):
            spans.append(HeaderSpan(label=str(entry.get("label", "")), span=int(entry.get("span", 1))))
        else:
            label, span = entry
            spans.append(HeaderSpan(label=str(label), span=int(span)))
    return tuple(spans)


def resolve_indents(levels: Mapping[int, Sequence[int]], row_count: int) -> Dict[int, int]:
    """Map row index to indent depth from explicit per-level index lists."""

    depths: Dict[int, int] = {}
    for level, indices in sorted(levels.items()):
        if level < 1:
            raise LayoutMismatch(f"Indent levels start at 1, got {level}")
        for index in indices:
            if not 0 <= index < row_count:
                raise LayoutMismatch(
                    f"Indent level {level} names row {index} outside a {row_count}-row table"
                )
            if index in depths:
                raise LayoutMismatch(
                    f"Row {index} is assigned to indent levels {depths[index]} and {level}"
                )
            depths[index] = level
    return depths


def _check_spans(spans: Sequence[HeaderSpan], column_count: int) -> None:
    if not spans:
        return
    width = sum(span.span for span in spans)
    if width != column_count:
        raise LayoutMismatch(f"Header spans cover {width} columns; table has {column_count}")


def _cell_text(value: str) -> str:
    if not value.strip():
        return "&nbsp;"
    return html.escape(value)


def render_html(table: LayoutTable, options: Optional[RenderOptions] = None) -> str:
    """Render ``table`` as an HTML ``<table>`` fragment."""

    opts = options or RenderOptions()
    _check_spans(opts.header_spans, table.column_count)
    depths = resolve_indents(opts.indent_levels, len(table))

    lines: List[str] = [f'<table class="{html.escape(opts.table_class)}">']
    if opts.caption:
        lines.append(f"  <caption>{opts.caption}</caption>")
    lines.append("  <thead>")
    if opts.header_spans:
        cells = []
        for span in opts.header_spans:
            css = ' class="span-label"' if span.label.strip() else ""
            colspan = f' colspan="{span.span}"' if span.span > 1 else ""
            cells.append(f"<th{colspan}{css}>{span.label}</th>")
        lines.append("    <tr>" + "".join(cells) + "</tr>")
    header_cells = [f'<th class="row-label">{table.label_header}</th>']
    header_cells.extend(f"<th>{header}</th>" for header in table.headers)
    lines.append("    <tr>" + "".join(header_cells) + "</tr>")
    lines.append("  </thead>")

    lines.append("  <tbody>")
    for index, row in enumerate(table.rows):
        depth = depths.get(index, 0)
        style = f' style="padding-left: {depth * opts.indent_em:g}em"' if depth else ""
        label = row.label if row.label.strip() else "&nbsp;"
        cells = [f'<td class="row-label"{style}>{label}</td>']
        cells.extend(f"<td>{_cell_text(value)}</td>" for value in row.values)
        css = ' class="spacer"' if row.blank else ""
        lines.append(f"    <tr{css}>" + "".join(cells) + "</tr>")
    lines.append("  </tbody>")

    if opts.footnote:
        lines.append("  <tfoot>")
        lines.append(f'    <tr><td colspan="{table.column_count}">{opts.footnote}</td></tr>')
        lines.append("  </tfoot>")
    lines.append("</table>")
    return "\n".join(lines) + "\n"


def render_html_document(
    table: LayoutTable,
    options: Optional[RenderOptions] = None,
    *,
    title: str = "Summary table",
) -> str:
    fragment = render_html(table, options)
    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n'
        "<head>\n"
        '<meta charset="utf-8">\n'
        f"<title>{html.escape(title)}</title>\n"
        f"<style>\n{_DOCUMENT_STYLE}</style>\n"
        "</head>\n"
        "<body>\n"
        f"{fragment}"
        "</body>\n"
        "</html>\n"
    )


def _markdown_escape(value: str) -> str:
    return value.replace("|", "\\|")


def render_markdown(table: LayoutTable, options: Optional[RenderOptions] = None) -> str:
    opts = options or RenderOptions()
    depths = resolve_indents(opts.indent_levels, len(table))
    lines: List[str] = []
    if opts.caption:
        lines.append(opts.caption)
        lines.append("")
    header = [_markdown_escape(text) or " " for text in table.header_row()]
    lines.append("| " + " | ".join(header) + " |")
    lines.append("| " + " | ".join(["---"] + ["---:"] * len(table.headers)) + " |")
    for index, row in enumerate(table.rows):
        label = _MARKDOWN_INDENT * depths.get(index, 0) + _markdown_escape(row.label)
        values = [_markdown_escape(value) for value in row.values]
        lines.append("| " + " | ".join([label] + values) + " |")
    if opts.footnote:
        lines.append("")
        lines.append(opts.footnote)
    return "\n".join(lines) + "\n"


def to_delimited_text(table: LayoutTable, *, delimiter: str = ",") -> str:
    """Serialise the header and rows; blank cells stay as single spaces."""

    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
    writer.writerow(table.header_row())
    for row in table.grid():
        writer.writerow(row)
    return buffer.getvalue()


def write_delimited(table: LayoutTable, path: Path, *, delimiter: str = ",") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(to_delimited_text(table, delimiter=delimiter), encoding="utf-8")
    logger.info("Wrote %d table rows to %s", len(table), path)
    return path
