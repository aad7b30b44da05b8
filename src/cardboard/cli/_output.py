"""Output formatting helpers for the CLI."""

from __future__ import annotations

import base64
import json
import sys
from typing import Any, Iterable, Iterator


def _default(value: Any) -> Any:
    # record bodies are stored as bytes
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    return str(value)


def dumps(data: Any) -> str:
    return json.dumps(data, indent=2, default=_default)


def print_json(data: Any) -> None:
    print(dumps(data))


def print_lines(values: Iterable[Any], *, json_mode: bool = False) -> None:
    """One value per line, or a JSON array."""
    values = list(values)
    if json_mode:
        print_json(values)
        return
    for value in values:
        print(value)


def _flatten(data: dict[str, Any], prefix: str = "") -> Iterator[tuple[str, Any]]:
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            yield from _flatten(value, f"{name}.")
        else:
            yield name, value


def print_fields(data: dict[str, Any], *, json_mode: bool = False) -> None:
    """A mapping as JSON, or as ``key: value`` lines with nested keys dotted."""
    if json_mode:
        print_json(data)
        return
    for name, value in _flatten(data):
        print(f"{name}: {value}")


def print_table(headers: list[str], rows: list[list[Any]], *, json_mode: bool = False) -> None:
    """Rows as aligned columns, or as a JSON array of objects."""
    if json_mode:
        print_json([dict(zip(headers, row)) for row in rows])
        return
    if not rows:
        return

    grid = [headers] + [[str(v) for v in row] for row in rows]
    widths = [max(len(line[i]) for line in grid) for i in range(len(headers))]
    lines = ["  ".join(v.ljust(w) for v, w in zip(line, widths)).rstrip() for line in grid]
    lines.insert(1, "  ".join("-" * w for w in widths))
    print("\n".join(lines))


def print_geojson(data: dict[str, Any]) -> None:
    """GeoJSON is always emitted as JSON."""
    print(json.dumps(data, indent=2, ensure_ascii=False))


def print_error(msg: str) -> None:
    """Print an error message to stderr."""
    print(f"Error: {msg}", file=sys.stderr)
