"""Layered YAML loading for report configurations."""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping, Tuple

import yaml

from . import config_root, resolve_config_path

REQUIRED_SECTIONS: Tuple[str, ...] = ("source", "aggregation", "layout")


def _with_yaml_suffix(path: Path) -> Path:
    if path.suffix:
        return path
    return path.with_suffix(".yaml")


def _resolve_reference(reference: str | Path, anchor: Path | None = None) -> Path:
    candidate = _with_yaml_suffix(Path(reference))
    if candidate.is_absolute():
        return candidate
    if anchor is not None:
        anchored = (anchor.parent / candidate).resolve()
        if anchored.exists():
            return anchored
    resolved = resolve_config_path(candidate)
    if resolved.exists():
        return resolved
    # Missing files are reported by _load_recursive with the full path.
    return (config_root() / candidate).resolve()


def _deep_merge(base: Mapping[str, Any], updates: Mapping[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = deepcopy(dict(base))
    for key, value in updates.items():
        current = result.get(key)
        if isinstance(current, MutableMapping) and isinstance(value, Mapping):
            result[key] = _deep_merge(current, value)
        else:
            result[key] = deepcopy(value)
    return result


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Report config '{path}' is not valid YAML: {exc}") from exc
    if not isinstance(raw, dict):
        raise ValueError(f"Report config '{path}' must contain a mapping at the top level")
    return raw


def _default_references(raw: Dict[str, Any], path: Path) -> List[str | Path]:
    defaults = raw.pop("defaults", [])
    if isinstance(defaults, (str, Path)):
        defaults = [defaults]
    if not isinstance(defaults, list) or not all(isinstance(entry, (str, Path)) for entry in defaults):
        raise ValueError(f"Report config '{path}' must list 'defaults' as config names, got {defaults!r}")
    return defaults


def _load_recursive(path: Path, stack: Tuple[Path, ...]) -> Tuple[Dict[str, Any], List[Path]]:
    if path in stack:
        chain = " -> ".join(str(p) for p in stack + (path,))
        raise ValueError(f"Cyclic defaults detected while loading report configs: {chain}")
    if not path.exists():
        if stack:
            raise FileNotFoundError(f"Report config '{path}' named in defaults of '{stack[-1]}' does not exist")
        raise FileNotFoundError(f"Report config '{path}' does not exist")

    raw = _read_yaml(path)
    merged: Dict[str, Any] = {}
    sources: List[Path] = []
    for default in _default_references(raw, path):
        default_path = _resolve_reference(default, anchor=path)
        default_cfg, default_sources = _load_recursive(default_path, stack + (path,))
        merged = _deep_merge(merged, default_cfg)
        sources.extend(default_sources)

    merged = _deep_merge(merged, raw)
    sources.append(path)
    return merged, sources


def load_layered_config(reference: str | Path) -> Dict[str, Any]:
    """Load ``reference`` resolving ``defaults`` recursively."""

    path = _resolve_reference(reference)
    config, sources = _load_recursive(path, tuple())
    config.setdefault("__sources__", [str(p) for p in sources])
    return config


def extract_section(config: Mapping[str, Any], name: str) -> Dict[str, Any]:
    """Return a copy of the ``name`` section, raising when it is absent or empty."""

    section = config.get(name)
    if not isinstance(section, Mapping) or not section:
        raise ValueError(
            f"Report configuration must define a '{name}' section via defaults or overrides."
        )
    return deepcopy(dict(section))


def validate_sections(config: Mapping[str, Any]) -> None:
    missing = [name for name in REQUIRED_SECTIONS if not isinstance(config.get(name), Mapping)]
    if missing:
        raise ValueError(f"Report configuration is missing sections: {', '.join(missing)}")


__all__ = [
    "REQUIRED_SECTIONS",
    "extract_section",
    "load_layered_config",
    "validate_sections",
]
