"""
climate_backend.csv_reader — CSV tokenizing, column resolution, coercion.

The datasets are small quoted CSV files: one header row, then data rows.
Parsing is deliberately forgiving. A malformed cell never aborts a read;
it coerces to 0 downstream.

Tokenizer rules (per line):
    - '"' toggles quoted mode
    - '""' inside quoted mode emits one literal '"'
    - ',' outside quoted mode ends the current field
    - anything else is appended to the current field
    - the last field is flushed at end of line
    - an unterminated quote keeps the rest of the line as field content
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

# Leading integer, the way year headers such as "1990" or "1990 [YR1990]"
# are recognised.
_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


# ---------------------------------------------------------------------------
# DataSet: immutable parsed table
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DataSet:
    """An in-memory CSV table. Immutable once parsed."""

    name: str
    header: tuple[str, ...]
    rows: tuple[tuple[str, ...], ...]

    def column(self, name: str) -> int | None:
        """Position of a header, or None if absent."""
        return column_position(self.header, name)

    def __len__(self) -> int:
        return len(self.rows)


def cell(row: tuple[str, ...], index: int | None) -> str:
    """Field at ``index``, or "" when the column is unresolved or the row is short."""
    if index is None or index < 0 or index >= len(row):
        return ""
    return row[index]


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


def split_lines(text: str) -> list[str]:
    """Split a text blob into trimmed, non-empty lines."""
    stripped = (line.strip() for line in re.split(r"\r?\n", text))
    return [line for line in stripped if line]


def parse_csv_row(line: str) -> list[str]:
    """Parse one CSV line into unquoted field strings."""
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    n = len(line)

    while i < n:
        char = line[i]
        if char == '"':
            if in_quotes and i + 1 < n and line[i + 1] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            fields.append("".join(current))
            current = []
        else:
            current.append(char)
        i += 1

    fields.append("".join(current))
    return fields


def parse_text(name: str, text: str) -> DataSet:
    """Tokenize a whole CSV blob. First non-empty line is the header."""
    lines = split_lines(text)
    if not lines:
        return DataSet(name=name, header=(), rows=())
    header = tuple(parse_csv_row(lines[0]))
    rows = tuple(tuple(parse_csv_row(line)) for line in lines[1:])
    return DataSet(name=name, header=header, rows=rows)


def read_dataset(path: Path) -> DataSet:
    """Read and parse a CSV file from disk.

    Raises OSError / UnicodeDecodeError on unreadable files; callers at the
    loader level translate those into DatasetUnavailableError.
    """
    with open(path, encoding="utf-8-sig") as fh:
        text = fh.read()
    return parse_text(path.name, text)


# ---------------------------------------------------------------------------
# Column Index Resolver
# ---------------------------------------------------------------------------


def column_position(header: Iterable[str], name: str) -> int | None:
    """First position of ``name`` in ``header`` (exact match), else None."""
    for i, h in enumerate(header):
        if h == name:
            return i
    return None


def resolve_columns(header: Iterable[str], names: Iterable[str]) -> dict[str, int]:
    """Map each requested column name to its position.

    Names missing from the header are simply absent from the result.
    """
    header = tuple(header)
    index: dict[str, int] = {}
    for name in names:
        pos = column_position(header, name)
        if pos is not None:
            index[name] = pos
    return index


def leading_int(text: str) -> int | None:
    """Leading integer of ``text`` ("1990 [YR1990]" → 1990), or None."""
    m = _LEADING_INT_RE.match(text)
    return int(m.group(1)) if m else None


def resolve_year_columns(header: Iterable[str], first: int, last: int) -> dict[str, int]:
    """Map every header whose leading integer lies in [first, last] to its position.

    The key is the header text exactly as written, since downstream
    consumers join on that string.
    """
    index: dict[str, int] = {}
    for i, h in enumerate(header):
        year = leading_int(h)
        if year is not None and first <= year <= last and h not in index:
            index[h] = i
    return index


def year_labels(first: int, last: int) -> list[str]:
    return [str(y) for y in range(first, last + 1)]


# ---------------------------------------------------------------------------
# Numeric Coercion
# ---------------------------------------------------------------------------


def coerce_number(raw: str | None) -> float:
    """Convert a raw cell into a finite number; anything unusable becomes 0.

    Thousands-separator commas are stripped before parsing.
    """
    if not raw:
        return 0.0
    text = raw.replace(",", "").strip()
    if not text or "_" in text:
        return 0.0
    try:
        value = float(text)
    except ValueError:
        return 0.0
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return value
