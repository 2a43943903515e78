"""Top-level package for stoichtab."""

__all__ = [
    "analysis",
    "configs",
]
