from __future__ import annotations

import csv
import importlib.util
import json
import sys
from pathlib import Path
from typing import Any, Dict

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

pytest.importorskip("numpy")
pytest.importorskip("yaml")

from stoichtab.analysis.common_loader import LoadError  # type: ignore[import]
from stoichtab.analysis.layout import LayoutMismatch  # type: ignore[import]
from stoichtab.analysis.stoich_report import (  # type: ignore[import]
    ReportConfig,
    build_manifest,
    build_report,
    compute_file_sha256,
    load_report_config,
    render_report,
    write_outputs,
)


def _load_script() -> Any:
    script_path = REPO_ROOT / "scripts" / "stoich_report.py"
    spec = importlib.util.spec_from_file_location("stoich_report_script", script_path)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _minimal_config(source: Path, **layout_overrides: Any) -> Dict[str, Any]:
    layout: Dict[str, Any] = {
        "segments": [{"blank": 1}, {"rows": [0, 2]}],
        "row_labels": ["Bartlett", "Ambient", "+N"],
    }
    layout.update(layout_overrides)
    return {
        "source": {"path": str(source)},
        "aggregation": {
            "group_fields": ["site", "treat"],
            "value_fields": ["C", "N", "P"],
            "ratio_fields": ["C", "N", "P"],
        },
        "layout": layout,
    }


def _write_source(path: Path) -> Path:
    path.write_text(
        "site,treat,C,N,P\n"
        "BW,AMB,10,5,2\n"
        "BW,AMB,12,7,2\n"
        "BW,N,20,9,NA\n",
        encoding="utf-8",
    )
    return path


def test_bundled_report_layout() -> None:
    report = build_report(load_report_config())
    assert len(report.table) == 48
    assert len(report.aggregated) == 16
    assert len(report.layout) == 22
    assert report.aggregated[0].key == ("BW", "2010", "AMB")

    rows = report.layout.rows
    assert [row.label for row in rows[:3]] == ["Bartlett", "2010", "Ambient"]
    assert rows[0].blank and rows[1].blank
    assert rows[2].values[0] == "493 ± 1.2"
    assert rows[2].values[3] == "713208:13936:1"
    assert rows[7].label == "Ambient"
    assert rows[7].values[1] == "9.63 ± 0.23"
    assert rows[21].label == "+P"
    assert rows[21].values[2] == "NA"
    assert rows[21].values[3] == "NA"


def test_bundled_report_renders() -> None:
    report = build_report(load_report_config())
    rendered = render_report(report)
    assert "<!DOCTYPE html>" in rendered.html
    assert '<th colspan="3" class="span-label">Concentration</th>' in rendered.html
    assert "<i>C</i>:<i>N</i>:<i>P</i>" in rendered.html
    assert rendered.markdown.count("\n| ") == 1 + 1 + 22
    assert len(list(csv.reader(rendered.delimited.splitlines()))) == 23


def test_pipeline_is_deterministic() -> None:
    config = load_report_config()
    first = render_report(build_report(config))
    second = render_report(build_report(config))
    assert first.delimited == second.delimited
    assert first.markdown == second.markdown


def test_report_config_validation(tmp_path: Path) -> None:
    source = _write_source(tmp_path / "litter.csv")
    config = ReportConfig.from_mapping(_minimal_config(source))
    assert config.display_fields == ("C", "N", "P", "ratio")
    assert config.with_overrides() is config
    assert config.with_overrides(delimiter=";").delimiter == ";"

    payload = _minimal_config(source)
    payload["aggregation"]["ratio_fields"] = ["C", "N", "K"]
    with pytest.raises(ValueError, match="K"):
        ReportConfig.from_mapping(payload)

    payload = _minimal_config(source)
    del payload["layout"]
    with pytest.raises(ValueError, match="layout"):
        ReportConfig.from_mapping(payload)

    payload = _minimal_config(source)
    payload["aggregation"]["order"] = "shuffled"
    with pytest.raises(ValueError, match="shuffled"):
        ReportConfig.from_mapping(payload)

    payload = _minimal_config(source, columns=["C", "N", "P", "ratios"])
    with pytest.raises(ValueError, match="ratios"):
        ReportConfig.from_mapping(payload)


def test_minimal_report_and_outputs(tmp_path: Path) -> None:
    source = _write_source(tmp_path / "litter.csv")
    report = build_report(ReportConfig.from_mapping(_minimal_config(source)))
    assert [row.values for row in report.layout.rows[1:]] == [
        ("11 ± 1", "6 ± 1", "2 ± 0", "5500:3000:1"),
        ("20 ± 0", "9 ± 0", "NA", "NA"),
    ]

    rendered = render_report(report)
    written = write_outputs(
        rendered,
        html_path=tmp_path / "out" / "table.html",
        csv_path=tmp_path / "out" / "table.csv",
    )
    assert [path.name for path in written] == ["table.html", "table.csv"]

    manifest_path = tmp_path / "out" / "manifest.json"
    manifest = build_manifest(report, outputs=written, manifest_path=manifest_path)
    assert manifest["source"]["sha256"] == compute_file_sha256(source)
    assert manifest["groups"] == 2
    assert manifest["layout_rows"] == 3
    assert {entry["path"] for entry in manifest["outputs"]} == {str(path) for path in written}
    assert json.loads(manifest_path.read_text(encoding="utf-8"))["title"] == "Summary table"


def test_layout_mismatch_is_detected_before_rendering(tmp_path: Path) -> None:
    source = _write_source(tmp_path / "litter.csv")
    config = ReportConfig.from_mapping(_minimal_config(source, row_labels=["Ambient", "+N"]))
    with pytest.raises(LayoutMismatch):
        build_report(config)


def test_missing_source_raises_load_error(tmp_path: Path) -> None:
    config = ReportConfig.from_mapping(_minimal_config(tmp_path / "absent.csv"))
    with pytest.raises(LoadError):
        build_report(config)


def test_script_writes_outputs(tmp_path: Path) -> None:
    script = _load_script()
    html_path = tmp_path / "table.html"
    csv_path = tmp_path / "table.csv"
    json_path = tmp_path / "summary.json"
    manifest_path = tmp_path / "manifest.json"
    exit_code = script.main(
        [
            "--output-html",
            str(html_path),
            "--output-csv",
            str(csv_path),
            "--json",
            str(json_path),
            "--manifest",
            str(manifest_path),
        ]
    )
    assert exit_code == 0
    assert html_path.exists() and csv_path.exists()
    summary = json.loads(json_path.read_text(encoding="utf-8"))
    assert len(summary["groups"]) == 16
    manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
    assert len(manifest["outputs"]) == 3


def test_script_prints_markdown_without_outputs(capsys: pytest.CaptureFixture[str]) -> None:
    script = _load_script()
    assert script.main([]) == 0
    captured = capsys.readouterr()
    assert "| Bartlett |" in captured.out


def test_script_exit_codes(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    script = _load_script()
    html_path = tmp_path / "table.html"
    assert script.main(["--source", str(tmp_path / "absent.csv"), "--output-html", str(html_path)]) == 1
    assert "Missing source table" in capsys.readouterr().err
    assert not html_path.exists()

    bad_config = tmp_path / "bad.yaml"
    source = _write_source(tmp_path / "litter.csv")
    bad_config.write_text(
        "source:\n"
        f"  path: {json.dumps(str(source))}\n"
        "aggregation:\n"
        "  group_fields: [site, treat]\n"
        "  value_fields: [C, N, P]\n"
        "  ratio_fields: [C, N, P]\n"
        "layout:\n"
        "  segments:\n"
        "    - rows: [0, 2]\n"
        "  row_labels: [only-one]\n",
        encoding="utf-8",
    )
    assert script.main(["--config", str(bad_config), "--output-html", str(html_path)]) == 2
    assert "row labels" in capsys.readouterr().err
    assert not html_path.exists()


def _write_config(path: Path, payload: Dict[str, Any]) -> Path:
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path


def test_script_reports_config_errors(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    script = _load_script()
    source = _write_source(tmp_path / "litter.csv")
    html_path = tmp_path / "table.html"

    typo = _write_config(tmp_path / "typo.yaml", _minimal_config(source, columns=["C", "N", "P", "ratios"]))
    assert script.main(["--config", str(typo), "--output-html", str(html_path)]) == 2
    assert "ratios" in capsys.readouterr().err

    malformed = tmp_path / "malformed.yaml"
    malformed.write_text("source: [unclosed\n", encoding="utf-8")
    assert script.main(["--config", str(malformed), "--output-html", str(html_path)]) == 2
    assert "not valid YAML" in capsys.readouterr().err

    assert not html_path.exists()


def test_script_reports_missing_group_column(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    script = _load_script()
    source = _write_source(tmp_path / "litter.csv")
    payload = _minimal_config(source)
    payload["aggregation"]["group_fields"] = ["site", "treatment"]
    config_path = _write_config(tmp_path / "schema.yaml", payload)
    html_path = tmp_path / "table.html"
    assert script.main(["--config", str(config_path), "--output-html", str(html_path)]) == 1
    assert "missing required columns: treatment" in capsys.readouterr().err
    assert not html_path.exists()
