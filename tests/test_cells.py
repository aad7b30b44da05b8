"""Tests for grid cell math: levels, covers and query prefixes."""

from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st

from cardboard.cells import (
    cell_key,
    choose_level,
    compute_cover,
    parse_cell_key,
    query_prefixes,
    quadkey,
    tile_count,
    tile_fraction,
    tile_range,
)
from cardboard.spatial_index import index_row_id

LEVELS = {"min_level": 1, "max_level": 20}


def test_tile_fraction_corners() -> None:
    assert tile_fraction(-180, 0) == (0.0, 0.5)
    fx, fy = tile_fraction(180, 90)
    assert fx == 1.0
    assert abs(fy) < 1e-6
    _, fy = tile_fraction(0, -90)
    assert abs(1.0 - fy) < 1e-6


def test_quadkey_digits() -> None:
    assert quadkey(0, 0, 1) == "0"
    assert quadkey(1, 0, 1) == "1"
    assert quadkey(0, 1, 1) == "2"
    assert quadkey(1, 1, 1) == "3"
    assert quadkey(3, 5, 3) == "213"


def test_point_on_tile_boundary_falls_in_one_cell() -> None:
    # (0, 0) sits on the corner of all four level-1 tiles
    assert tile_range((0, 0, 0, 0), 1) == (1, 1, 1, 1)
    assert compute_cover((0, 0, 0, 0), min_level=1, max_level=1, max_cells=4) == {"cell!1!3"}


def test_point_cover_uses_finest_level() -> None:
    cover = compute_cover((0, 0, 0, 0), max_cells=16, **LEVELS)
    assert len(cover) == 1
    (key,) = cover
    level, quad = parse_cell_key(key)
    assert level == 20
    assert len(quad) == 20


def test_choose_level_bounded_by_max_cells() -> None:
    bbox = (-73.39, 18.17, -71.82, 19.89)
    level = choose_level(bbox, 1, 20, 16)
    assert tile_count(bbox, level) <= 16
    assert level == 20 or tile_count(bbox, level + 1) > 16


def test_choose_level_returns_min_level_for_world() -> None:
    assert choose_level((-180, -85, 180, 85), 1, 20, 4) == 1


def test_cover_of_none_is_empty() -> None:
    assert compute_cover(None, max_cells=16, **LEVELS) == set()


def test_cell_key_roundtrip() -> None:
    assert cell_key(3, "012") == "cell!3!012"
    assert parse_cell_key("cell!3!012") == (3, "012")


def test_query_prefixes_for_null_island_bbox_match_point_row() -> None:
    prefixes = query_prefixes((-10, -10, 10, 10), max_cells=4, **LEVELS)
    (cell,) = compute_cover((0, 0, 0, 0), max_cells=16, **LEVELS)
    row = index_row_id(cell, "abc")
    assert any(row.startswith(p) for p in prefixes)


def test_query_prefixes_far_bbox_misses_point_row() -> None:
    prefixes = query_prefixes((30, 30, 40, 40), max_cells=4, **LEVELS)
    (cell,) = compute_cover((0, 0, 0, 0), max_cells=16, **LEVELS)
    row = index_row_id(cell, "abc")
    assert not any(row.startswith(p) for p in prefixes)


def test_exact_prefixes_do_not_leak_into_longer_quadkeys() -> None:
    prefixes = query_prefixes((0.1, 0.1, 0.2, 0.2), max_cells=4, min_level=1, max_level=3)
    for p in prefixes:
        level, _ = parse_cell_key(p.rstrip("!"))
        if level <= 3 and p.endswith("!"):
            assert len(p.rstrip("!").split("!")[2]) == level


_lon = st.floats(min_value=-179.9, max_value=179.9, allow_nan=False)
_lat = st.floats(min_value=-84.0, max_value=84.0, allow_nan=False)
_span = st.floats(min_value=0.0, max_value=20.0, allow_nan=False)


def _box(lon: float, lat: float, dx: float, dy: float) -> tuple[float, float, float, float]:
    return lon, lat, min(lon + dx, 180.0), min(lat + dy, 85.0)


@settings(max_examples=200, deadline=None)
@given(_lon, _lat, _span, _span, _lon, _lat, _span, _span)
def test_intersecting_boxes_are_never_missed(
    fl: float, ft: float, fdx: float, fdy: float, ql: float, qt: float, qdx: float, qdy: float
) -> None:
    feature = _box(fl, ft, fdx, fdy)
    query = _box(ql, qt, qdx, qdy)
    intersects = (
        feature[0] <= query[2]
        and query[0] <= feature[2]
        and feature[1] <= query[3]
        and query[1] <= feature[3]
    )
    if not intersects:
        return
    rows = [
        index_row_id(c, "f") for c in compute_cover(feature, max_cells=16, **LEVELS)
    ]
    prefixes = query_prefixes(query, max_cells=4, **LEVELS)
    assert any(row.startswith(p) for row in rows for p in prefixes)


@settings(max_examples=100, deadline=None)
@given(_lon, _lat, _span, _span)
def test_cover_respects_max_cells(lon: float, lat: float, dx: float, dy: float) -> None:
    bbox = _box(lon, lat, dx, dy)
    cover = compute_cover(bbox, max_cells=16, **LEVELS)
    assert 1 <= len(cover) <= 16
    assert len({parse_cell_key(c)[0] for c in cover}) == 1
