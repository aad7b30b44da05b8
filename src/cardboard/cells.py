"""Multi-resolution grid cells over Web-Mercator slippy tiles.

A cell key is ``cell!{level}!{quadkey}`` where the quadkey has one digit per
level. Tile coordinates are derived from a level-independent tile fraction
scaled by ``2**level``; scaling by a power of two is exact, so the tile holding
a point at level L+1 always nests inside its tile at level L. Cells are
half-open, so a point falls into exactly one cell per level.
"""

from __future__ import annotations

import math
from typing import Iterator, Sequence

_MAX_MERCATOR_LAT = 85.05112878

CELL_PREFIX = "cell!"


def tile_fraction(lon: float, lat: float) -> tuple[float, float]:
    """Map lon/lat (EPSG:4326) to a tile fraction in [0, 1] x [0, 1], y growing south."""
    lat = max(-_MAX_MERCATOR_LAT, min(_MAX_MERCATOR_LAT, float(lat)))
    lon = max(-180.0, min(180.0, float(lon)))
    lat_rad = math.radians(lat)
    fx = (lon + 180.0) / 360.0
    fy = (1.0 - math.log(math.tan(lat_rad) + (1.0 / math.cos(lat_rad))) / math.pi) / 2.0
    return fx, min(1.0, max(0.0, fy))


def _tile_index(fraction: float, level: int) -> int:
    n = 1 << level
    return max(0, min(n - 1, int(math.floor(fraction * n))))


def tile_range(bbox: Sequence[float], level: int) -> tuple[int, int, int, int]:
    """Inclusive (x0, y0, x1, y1) tile range of a [west, south, east, north] box."""
    west, south, east, north = bbox
    fx0, fy0 = tile_fraction(west, north)
    fx1, fy1 = tile_fraction(east, south)
    return (
        _tile_index(fx0, level),
        _tile_index(fy0, level),
        _tile_index(fx1, level),
        _tile_index(fy1, level),
    )


def tile_count(bbox: Sequence[float], level: int) -> int:
    x0, y0, x1, y1 = tile_range(bbox, level)
    return (x1 - x0 + 1) * (y1 - y0 + 1)


def quadkey(x: int, y: int, level: int) -> str:
    digits = []
    for i in range(level, 0, -1):
        mask = 1 << (i - 1)
        digit = 0
        if x & mask:
            digit += 1
        if y & mask:
            digit += 2
        digits.append(str(digit))
    return "".join(digits)


def choose_level(bbox: Sequence[float], min_level: int, max_level: int, max_cells: int) -> int:
    """Finest level in [min_level, max_level] whose cover has at most max_cells tiles.

    Tile counts never decrease with level, so the walk stops at the first
    level that overflows. ``min_level`` is returned even if it overflows.
    """
    chosen = min_level
    for level in range(min_level + 1, max_level + 1):
        if tile_count(bbox, level) > max_cells:
            break
        chosen = level
    return chosen


def iter_quadkeys(bbox: Sequence[float], level: int) -> Iterator[str]:
    x0, y0, x1, y1 = tile_range(bbox, level)
    for y in range(y0, y1 + 1):
        for x in range(x0, x1 + 1):
            yield quadkey(x, y, level)


def cell_key(level: int, quad: str) -> str:
    return f"{CELL_PREFIX}{level}!{quad}"


def parse_cell_key(key: str) -> tuple[int, str]:
    _, level, quad = key.split("!", 2)
    return int(level), quad


def compute_cover(
    bbox: Sequence[float] | None,
    *,
    min_level: int,
    max_level: int,
    max_cells: int,
) -> set[str]:
    """Cell keys covering a bounding box at its chosen level. Empty for no bbox."""
    if bbox is None:
        return set()
    level = choose_level(bbox, min_level, max_level, max_cells)
    return {cell_key(level, q) for q in iter_quadkeys(bbox, level)}


def query_prefixes(
    bbox: Sequence[float],
    *,
    min_level: int,
    max_level: int,
    max_cells: int,
) -> list[str]:
    """Index key prefixes that together return every row overlapping ``bbox``.

    The query is expressed as tiles at one level Lq. A feature indexed at a
    coarser or equal level L sits in the ancestor tile ``q[:L]`` of some query
    tile, matched by the exact prefix ``cell!L!{q[:L]}!``. A feature indexed at
    a finer level sits in a descendant of a query tile, matched by the open
    prefix ``cell!L!{q}``. Every indexed level must be scanned.
    """
    qlevel = choose_level(bbox, min_level, max_level, max_cells)
    quads = list(iter_quadkeys(bbox, qlevel))
    prefixes: set[str] = set()
    for level in range(min_level, max_level + 1):
        if level <= qlevel:
            prefixes.update(f"{cell_key(level, q[:level])}!" for q in quads)
        else:
            prefixes.update(cell_key(level, q) for q in quads)
    return sorted(prefixes)
