from __future__ import annotations

import math
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

np = pytest.importorskip("numpy")

from stoichtab.analysis.common_metrics import (  # type: ignore[import]
    FieldStats,
    _clean_text,
    _coerce_float,
    compute_field_stats,
    group_rows,
)


def test_clean_and_coerce_helpers_handle_nan_inputs() -> None:
    assert _clean_text("  abc  ") == "abc"
    assert _clean_text("   ") is None
    assert _clean_text(None) is None

    assert _coerce_float("0.5") == pytest.approx(0.5)
    assert _coerce_float(np.float64(1.2)) == pytest.approx(1.2)
    assert _coerce_float("nan") is None
    assert _coerce_float(np.nan) is None
    assert _coerce_float(True) is None


def test_field_stats_use_sample_standard_error() -> None:
    stats = compute_field_stats([10.0, None, float("nan"), 12.0])
    assert stats.n == 2
    assert stats.mean == pytest.approx(11.0)
    assert stats.se == pytest.approx(math.sqrt(2.0) / math.sqrt(2.0))

    values = [3.0, 4.0, 8.0]
    expected = float(np.std(values, ddof=1)) / math.sqrt(3)
    assert compute_field_stats(values).se == pytest.approx(expected)


def test_field_stats_edge_cases() -> None:
    empty = compute_field_stats([None, None])
    assert empty == FieldStats(mean=None, se=None, n=0)
    assert empty.is_missing
    single = compute_field_stats([4.2])
    assert single.mean == pytest.approx(4.2)
    assert single.se == 0.0
    assert single.as_dict() == {"mean": pytest.approx(4.2), "se": 0.0, "n": 1}


def test_group_rows_orders() -> None:
    rows = [
        {"site": "HB", "treat": "P"},
        {"site": "BW", "treat": "N"},
        {"site": "HB", "treat": "AMB"},
        {"site": "BW", "treat": "N"},
        {"site": None, "treat": "AMB"},
    ]
    ordered = group_rows(rows, ("site", "treat"))
    assert list(ordered) == [("BW", "N"), ("HB", "AMB"), ("HB", "P"), (None, "AMB")]
    assert len(ordered[("BW", "N")]) == 2

    first_seen = group_rows(rows, ("site", "treat"), order="first_seen")
    assert list(first_seen) == [("HB", "P"), ("BW", "N"), ("HB", "AMB"), (None, "AMB")]

    with pytest.raises(ValueError):
        group_rows(rows, ("site",), order="random")
