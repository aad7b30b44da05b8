"""GeoJSON fixtures shared by the test suite."""

from __future__ import annotations

import copy
import random
from typing import Any


def _feature(geometry: dict[str, Any] | None, properties: dict[str, Any] | None = None, **extra: Any) -> dict[str, Any]:
    feature = {"type": "Feature", "properties": properties or {}, "geometry": geometry}
    feature.update(extra)
    return feature


NULL_ISLAND = _feature({"type": "Point", "coordinates": [0, 0]}, {"name": "null island"})

DC = _feature({"type": "Point", "coordinates": [-77.0366, 38.8977]}, {"name": "dc"})

HAITI = _feature(
    {
        "type": "Polygon",
        "coordinates": [
            [
                [-73.388671875, 18.271086109608877],
                [-72.48779296875, 18.166730410221938],
                [-71.905517578125, 18.28151988124507],
                [-71.81762695312499, 19.062117883514652],
                [-72.2021484375, 19.84939395842214],
                [-73.23486328124999, 19.89072302399691],
                [-73.388671875, 18.271086109608877],
            ]
        ],
    },
    {"id": "haitipolygonid", "name": "haiti"},
)

HAITI_LINE = _feature(
    {
        "type": "LineString",
        "coordinates": [
            [-72.388671875, 18.771086109608877],
            [-72.15087890625, 18.916730410221938],
            [-71.905517578125, 19.10151988124507],
        ],
    },
    {"name": "haiti line"},
)


def fixture(base: dict[str, Any], feature_id: str | None = None) -> dict[str, Any]:
    """Independent copy of a fixture, optionally carrying an id."""
    feature = copy.deepcopy(base)
    if feature_id is not None:
        feature["id"] = feature_id
    return feature


def random_polygons(count: int, *, seed: int = 42) -> list[dict[str, Any]]:
    """Small rectangles scattered over Idaho, each with a distinct id."""
    rng = random.Random(seed)
    out = []
    for i in range(count):
        west = rng.uniform(-117.0, -111.5)
        south = rng.uniform(42.0, 48.5)
        width = rng.uniform(0.01, 0.5)
        height = rng.uniform(0.01, 0.5)
        ring = [
            [west, south],
            [west + width, south],
            [west + width, south + height],
            [west, south + height],
            [west, south],
        ]
        out.append(
            _feature(
                {"type": "Polygon", "coordinates": [ring]},
                {"GEOID": f"16{i:09d}"},
                id=f"tract-{i:03d}",
            )
        )
    return out
