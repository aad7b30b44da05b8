"""GeoJSON helpers: canonical bodies, extents and bounding boxes."""

from __future__ import annotations

import copy
import json
import math
from typing import Any, Sequence

from shapely.errors import ShapelyError
from shapely.geometry import shape

from cardboard.errors import ValidationError

BBox = tuple[float, float, float, float]


def canonical_json(feature: dict[str, Any]) -> bytes:
    """Deterministic serialization used for storage, size accounting and comparison."""
    return json.dumps(
        feature, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def byte_length(feature: dict[str, Any]) -> int:
    return len(canonical_json(feature))


def validate_feature(feature: Any) -> dict[str, Any]:
    """Check that a value is a GeoJSON Feature and return it."""
    if not isinstance(feature, dict) or feature.get("type") != "Feature":
        raise ValidationError("Expected a GeoJSON Feature")
    if "geometry" not in feature:
        raise ValidationError("Feature has no geometry member")
    props = feature.get("properties")
    if props is not None and not isinstance(props, dict):
        raise ValidationError("Feature properties must be an object or null")
    return feature


def prepare_feature(feature: dict[str, Any], feature_id: str) -> dict[str, Any]:
    """Copy of a feature carrying ``feature_id`` and an object for properties."""
    prepared = copy.deepcopy(validate_feature(feature))
    prepared["id"] = feature_id
    if prepared.get("properties") is None:
        prepared["properties"] = {}
    return prepared


def extent(feature: dict[str, Any]) -> BBox | None:
    """[west, south, east, north] of the feature geometry, None when empty."""
    geom = feature.get("geometry")
    if not geom:
        return None
    try:
        shp = shape(geom)
    except (ShapelyError, ValueError, TypeError, KeyError, IndexError, AttributeError) as e:
        raise ValidationError(f"Invalid geometry: {e}") from e
    if shp.is_empty:
        return None
    west, south, east, north = (float(v) for v in shp.bounds)
    return west, south, east, north


def normalize_bbox(bbox: Sequence[Any]) -> BBox:
    """Validate a [west, south, east, north] box, swapping inverted edges."""
    if isinstance(bbox, (str, bytes)) or len(bbox) != 4:
        raise ValidationError("Bounding box must be [west, south, east, north]")
    try:
        west, south, east, north = (float(v) for v in bbox)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Bounding box values must be numbers: {bbox}") from e
    if not all(math.isfinite(v) for v in (west, south, east, north)):
        raise ValidationError(f"Bounding box values must be finite: {bbox}")
    return min(west, east), min(south, north), max(west, east), max(south, north)


def bbox_intersects(a: Sequence[float], b: Sequence[float]) -> bool:
    """Closed-interval intersection of two [west, south, east, north] boxes."""
    return a[0] <= b[2] and b[0] <= a[2] and a[1] <= b[3] and b[1] <= a[3]


def feature_collection(features: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    return {"type": "FeatureCollection", "features": list(features or [])}


def features_from_geojson(obj: Any) -> list[dict[str, Any]]:
    """Flatten a Feature or FeatureCollection into a list of features."""
    if isinstance(obj, dict) and obj.get("type") == "FeatureCollection":
        features = obj.get("features")
        if not isinstance(features, list):
            raise ValidationError("FeatureCollection has no features list")
        return [validate_feature(f) for f in features]
    return [validate_feature(obj)]
