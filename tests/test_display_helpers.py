from __future__ import annotations

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from stoichtab.analysis.display import (  # type: ignore[import]
    coerce_numeric,
    format_mean_se,
    format_number,
    format_ratio,
    round_for_display,
    round_significant,
)


def test_coerce_numeric_filters_non_finite() -> None:
    assert coerce_numeric("1.5") == pytest.approx(1.5)
    assert coerce_numeric(None) is None
    assert coerce_numeric(float("nan")) is None
    assert coerce_numeric("abc") is None


def test_round_significant_and_two_stage_rounding() -> None:
    assert round_significant(0.012345, 2) == pytest.approx(0.012)
    assert round_significant(0.0, 3) == 0.0
    assert round_for_display(1234.5678, 2, 3) == pytest.approx(1230.0)
    # The second stage drops the zero the first stage kept.
    assert round_for_display(0.104, 2, 2) == pytest.approx(0.1)
    with pytest.raises(ValueError):
        round_significant(1.0, 0)


def test_format_number_drops_trailing_zeros() -> None:
    assert format_number(11.0, 2) == "11"
    assert format_number(2.50, 2) == "2.5"
    assert format_number(1230.0, 2) == "1230"
    assert format_number(-0.0, 2) == "0"


def test_format_mean_se_cells() -> None:
    assert format_mean_se(11.0, 1.0) == "11 ± 1"
    assert format_mean_se(12.3412, 0.0678) == "12.3 ± 0.07"
    assert format_mean_se(1234.5678, 0.104) == "1230 ± 0.1"
    assert format_mean_se(2.5, 0.1, glyph="+/-") == "2.5 +/- 0.1"


def test_format_mean_se_never_mixes_placeholder() -> None:
    assert format_mean_se(None, None) == "NA"
    assert format_mean_se(5.0, None) == "NA"
    assert format_mean_se(None, 0.5, placeholder="n/a") == "n/a"


def test_format_ratio_rules() -> None:
    assert format_ratio(10.0, 5.0, 2.0) == "5000:2500:1"
    assert format_ratio(10.0, 5.0, None) == "NA"
    assert format_ratio(10.0, 5.0, 0.0) == "NA"
    assert format_ratio(None, 5.0, 2.0) == "NA"
    # Exact halves round to the even neighbour.
    assert format_ratio(1.0, 3.0, 400.0) == "2:8:1"
