#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from stoichtab.analysis.common_loader import LoadError, SchemaError  # type: ignore[import]
from stoichtab.analysis.layout import LayoutMismatch  # type: ignore[import]
from stoichtab.analysis.stoich_report import (  # type: ignore[import]
    DEFAULT_CONFIG,
    build_manifest,
    build_report,
    load_report_config,
    render_report,
    write_outputs,
)


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate the grouped mean ± SE litter chemistry table.",
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG,
        help=f"Report configuration name or YAML path (default: {DEFAULT_CONFIG}).",
    )
    parser.add_argument(
        "--source",
        default=None,
        help="Override the source table path or URL declared in the configuration.",
    )
    parser.add_argument(
        "--delimiter",
        default=None,
        help="Override the source field delimiter (a single character).",
    )
    parser.add_argument(
        "--output-html",
        type=Path,
        default=None,
        help="Optional path to write the standalone HTML table. If no output is given, markdown is printed.",
    )
    parser.add_argument(
        "--output-csv",
        type=Path,
        default=None,
        help="Optional path to write the table as delimited text.",
    )
    parser.add_argument(
        "--output-markdown",
        type=Path,
        default=None,
        help="Optional path to write the markdown table.",
    )
    parser.add_argument(
        "--csv-delimiter",
        default=",",
        help="Field delimiter for --output-csv (default: ',').",
    )
    parser.add_argument(
        "--json",
        type=Path,
        default=None,
        help="Optional path to write the structured summary JSON.",
    )
    parser.add_argument(
        "--manifest",
        type=Path,
        default=None,
        help="Optional path to write a manifest JSON with source and output digests.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable INFO-level logging for each pipeline stage.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.INFO)
    try:
        config = load_report_config(args.config).with_overrides(
            source=args.source,
            delimiter=args.delimiter,
        )
        report = build_report(config)
        rendered = render_report(report, delimiter=args.csv_delimiter)
    except (LoadError, SchemaError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except (LayoutMismatch, ValueError, FileNotFoundError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    outputs = write_outputs(
        rendered,
        html_path=args.output_html.expanduser() if args.output_html else None,
        csv_path=args.output_csv.expanduser() if args.output_csv else None,
        markdown_path=args.output_markdown.expanduser() if args.output_markdown else None,
    )
    if not outputs:
        print(rendered.markdown, end="")

    if args.json is not None:
        json_path = args.json.expanduser()
        json_path.parent.mkdir(parents=True, exist_ok=True)
        json_path.write_text(json.dumps(report.as_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
        outputs.append(json_path)

    if args.manifest is not None:
        build_manifest(report, outputs=outputs, manifest_path=args.manifest.expanduser())

    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
