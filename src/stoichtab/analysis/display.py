from __future__ import annotations

import math
from typing import Optional

__all__ = [
    "PLACEHOLDER",
    "PLUS_MINUS",
    "RATIO_SCALE",
    "coerce_numeric",
    "round_significant",
    "round_for_display",
    "format_number",
    "format_mean_se",
    "format_ratio",
]

PLACEHOLDER = "NA"
PLUS_MINUS = "±"
RATIO_SCALE = 1000

MEAN_DECIMALS = 2
MEAN_SIGNIFICANT = 3
SE_DECIMALS = 2
SE_SIGNIFICANT = 2


def coerce_numeric(value: object) -> Optional[float]:
    """Return ``float(value)`` if finite; otherwise ``None``."""

    if value is None:
        return None
    if isinstance(value, bool):
        return float(value)
    if not isinstance(value, (int, float)):
        try:
            value = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return None
    numeric = float(value)
    if not math.isfinite(numeric):
        return None
    return numeric


def round_significant(value: float, digits: int) -> float:
    """Round ``value`` to ``digits`` significant figures."""

    if digits < 1:
        raise ValueError(f"Significant digits must be positive, got {digits}")
    if value == 0.0:
        return 0.0
    magnitude = math.floor(math.log10(abs(value)))
    return round(value, digits - 1 - magnitude)


def round_for_display(value: float, decimals: int, significant: int) -> float:
    """Round to ``decimals`` places first, then to ``significant`` figures.

    The two stages are applied in sequence, so trailing zeros that survive the
    first stage may be dropped by the second (``0.104`` becomes ``0.1`` with
    two significant figures rather than ``0.10``).
    """

    return round_significant(round(value, decimals), significant)


def format_number(value: float, decimals: int) -> str:
    """Render ``value`` with at most ``decimals`` places and no trailing zeros."""

    text = f"{value:.{max(decimals, 0)}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("-0", ""):
        return "0"
    return text


def format_mean_se(
    mean: object,
    se: object,
    *,
    mean_decimals: int = MEAN_DECIMALS,
    mean_significant: int = MEAN_SIGNIFICANT,
    se_decimals: int = SE_DECIMALS,
    se_significant: int = SE_SIGNIFICANT,
    glyph: str = PLUS_MINUS,
    placeholder: str = PLACEHOLDER,
) -> str:
    """Format a mean and standard error as ``"<mean> ± <se>"``.

    A missing mean or standard error yields ``placeholder`` alone; a cell never
    mixes a number with the placeholder.
    """

    numeric_mean = coerce_numeric(mean)
    numeric_se = coerce_numeric(se)
    if numeric_mean is None or numeric_se is None:
        return placeholder
    mean_text = format_number(
        round_for_display(numeric_mean, mean_decimals, mean_significant), mean_decimals
    )
    se_text = format_number(
        round_for_display(numeric_se, se_decimals, se_significant), se_decimals
    )
    return f"{mean_text} {glyph} {se_text}"


def format_ratio(
    first: object,
    second: object,
    reference: object,
    *,
    scale: int = RATIO_SCALE,
    placeholder: str = PLACEHOLDER,
) -> str:
    """Format ``first:second:1`` relative to ``reference`` scaled by ``scale``."""

    numeric_reference = coerce_numeric(reference)
    if numeric_reference is None or numeric_reference == 0.0:
        return placeholder
    numeric_first = coerce_numeric(first)
    numeric_second = coerce_numeric(second)
    if numeric_first is None or numeric_second is None:
        return placeholder
    first_part = round(scale * numeric_first / numeric_reference)
    second_part = round(scale * numeric_second / numeric_reference)
    return f"{int(first_part)}:{int(second_part)}:1"
