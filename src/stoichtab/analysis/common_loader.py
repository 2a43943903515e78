from __future__ import annotations

import csv
import io
import logging
import math
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

__all__ = [
    "DEFAULT_NA_VALUES",
    "LoadError",
    "SchemaError",
    "SourceTable",
    "ensure_columns",
    "is_remote_source",
    "load_table",
]

DEFAULT_NA_VALUES: Tuple[str, ...] = ("", "NA", "NaN", "nan")
DEFAULT_TIMEOUT = 30.0
_REMOTE_SCHEMES: frozenset[str] = frozenset({"http", "https", "ftp", "file"})

logger = logging.getLogger(__name__)


class LoadError(RuntimeError):
    """Raised when a source table is unreachable or malformed."""


class SchemaError(RuntimeError):
    """Raised when a source table lacks columns the report depends on."""


@dataclass(frozen=True)
class SourceTable:
    """Immutable in-memory table with column names fixed at load time."""

    source: str
    columns: Tuple[str, ...]
    rows: Tuple[Mapping[str, Any], ...]
    numeric_columns: Tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.rows)

    def has_column(self, name: str) -> bool:
        return name in self.columns

    def column(self, name: str) -> Tuple[Any, ...]:
        if name not in self.columns:
            raise SchemaError(f"Column '{name}' is not present in {self.source}")
        return tuple(row.get(name) for row in self.rows)


def is_remote_source(source: Union[str, Path]) -> bool:
    if isinstance(source, Path):
        return False
    scheme = urllib.parse.urlparse(str(source)).scheme.lower()
    return scheme in _REMOTE_SCHEMES


def _read_text(source: Union[str, Path], *, encoding: str, timeout: float) -> str:
    if is_remote_source(source):
        try:
            with urllib.request.urlopen(str(source), timeout=timeout) as response:
                payload = response.read()
        except (urllib.error.URLError, OSError, ValueError) as exc:
            raise LoadError(f"Unable to fetch source table {source}: {exc}") from exc
        try:
            return payload.decode(encoding)
        except UnicodeDecodeError as exc:
            raise LoadError(f"Source table {source} is not valid {encoding} text") from exc
    path = Path(source).expanduser()
    if not path.exists():
        raise LoadError(f"Missing source table: {path}")
    try:
        return path.read_text(encoding=encoding)
    except (OSError, UnicodeDecodeError) as exc:
        raise LoadError(f"Unable to read source table {path}: {exc}") from exc


def _clean_header(raw: Sequence[str]) -> Tuple[str, ...]:
    names = [str(name).strip() for name in raw]
    if names:
        names[0] = names[0].lstrip("\ufeff")
    return tuple(names)


def _parse_numeric(
    text: str,
    *,
    na_values: frozenset[str],
    column: str,
    line_number: int,
    source: str,
) -> Optional[float]:
    if text in na_values:
        return None
    try:
        numeric = float(text)
    except ValueError as exc:
        raise LoadError(
            f"Non-numeric value {text!r} in column '{column}' on line {line_number} of {source}"
        ) from exc
    if not math.isfinite(numeric):
        return None
    return numeric


def ensure_columns(
    columns: Iterable[str],
    required: Iterable[str],
    *,
    context: str,
) -> None:
    """Raise :class:`SchemaError` listing every ``required`` column absent from ``columns``."""

    available = set(columns)
    missing: List[str] = []
    for name in required:
        if name not in available and name not in missing:
            missing.append(name)
    if missing:
        raise SchemaError(
            f"{context} is missing required columns: {', '.join(missing)}"
        )


def load_table(
    source: Union[str, Path],
    *,
    delimiter: str = ",",
    numeric_columns: Sequence[str] = (),
    na_values: Iterable[str] = DEFAULT_NA_VALUES,
    encoding: str = "utf-8",
    timeout: float = DEFAULT_TIMEOUT,
) -> SourceTable:
    """Read a delimited file or URL into a :class:`SourceTable`.

    Values are stripped of surrounding whitespace. Tokens listed in
    ``na_values`` become ``None``. Columns named in ``numeric_columns`` are
    parsed as floats; any other non-missing text in them is a :class:`LoadError`.
    """

    source_label = str(source)
    if not delimiter or len(delimiter) != 1:
        raise ValueError(f"Delimiter must be a single character, got {delimiter!r}")
    text = _read_text(source, encoding=encoding, timeout=timeout)
    missing_tokens = frozenset(str(token) for token in na_values)

    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)
    try:
        header_row = next(reader)
    except StopIteration:
        raise LoadError(f"Source table {source_label} is empty") from None
    except csv.Error as exc:
        raise LoadError(f"Malformed header in {source_label}: {exc}") from exc
    columns = _clean_header(header_row)
    if not any(columns):
        raise LoadError(f"Source table {source_label} has no header row")
    duplicates = sorted({name for name in columns if columns.count(name) > 1})
    if duplicates:
        raise LoadError(f"Duplicate column names in {source_label}: {', '.join(duplicates)}")

    numeric = tuple(numeric_columns)
    ensure_columns(columns, numeric, context=f"Source table {source_label}")
    numeric_set = set(numeric)

    rows: List[Mapping[str, Any]] = []
    try:
        for raw in reader:
            line_number = reader.line_num
            if not raw or (len(raw) == 1 and not raw[0].strip()):
                continue
            if len(raw) != len(columns):
                raise LoadError(
                    f"Line {line_number} of {source_label} has {len(raw)} fields; "
                    f"expected {len(columns)}"
                )
            record: Dict[str, Any] = {}
            for name, field in zip(columns, raw):
                value = field.strip()
                if name in numeric_set:
                    record[name] = _parse_numeric(
                        value,
                        na_values=missing_tokens,
                        column=name,
                        line_number=line_number,
                        source=source_label,
                    )
                else:
                    record[name] = None if value in missing_tokens else value
            rows.append(MappingProxyType(record))
    except csv.Error as exc:
        raise LoadError(f"Malformed record in {source_label}: {exc}") from exc

    logger.info("Loaded %d rows with %d columns from %s", len(rows), len(columns), source_label)
    return SourceTable(
        source=source_label,
        columns=columns,
        rows=tuple(rows),
        numeric_columns=numeric,
    )
