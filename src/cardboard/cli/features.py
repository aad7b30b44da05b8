"""cardboard get / insert / query — feature commands."""

from __future__ import annotations

import json
from pathlib import Path

import typer

from cardboard.cli import _exitcodes as ec
from cardboard.cli._output import print_error, print_geojson, print_table
from cardboard.cli._storage import open_cardboard
from cardboard.errors import ValidationError
from cardboard.geometry import features_from_geojson


def get_cmd(
    dataset: str = typer.Argument(..., help="Dataset name"),
    feature_id: str = typer.Argument(..., help="Feature id"),
) -> None:
    """Print a feature as a FeatureCollection."""
    with open_cardboard() as cb:
        fc = cb.get(feature_id, dataset)
    if not fc["features"]:
        print_error(f"Feature '{feature_id}' not found in '{dataset}'")
        raise typer.Exit(ec.GENERAL_ERROR)
    print_geojson(fc)


def insert_cmd(
    dataset: str = typer.Argument(..., help="Dataset name"),
    file: Path = typer.Argument(..., help="GeoJSON Feature or FeatureCollection file"),
) -> None:
    """Insert features from a GeoJSON file. Re-running the same file is safe."""
    from cardboard.cli import state

    try:
        features = features_from_geojson(json.loads(file.read_text()))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        print_error(f"Cannot read {file}: {e}")
        raise typer.Exit(ec.USAGE_ERROR)

    with open_cardboard() as cb:
        results = cb.insert_many(features, dataset)

    rows = [
        [r.index, r.feature_id, r.version if r.ok else "", "ok" if r.ok else str(r.error)]
        for r in results
    ]
    print_table(["index", "id", "version", "status"], rows, json_mode=state.json_output)
    failed = [r for r in results if not r.ok]
    if failed:
        print_error(f"{len(failed)} of {len(results)} features failed")
        raise typer.Exit(ec.GENERAL_ERROR)


def _parse_bbox(raw: str) -> list[float]:
    parts = raw.split(",")
    if len(parts) != 4:
        raise typer.BadParameter("expected W,S,E,N")
    try:
        return [float(p) for p in parts]
    except ValueError:
        raise typer.BadParameter("expected four numbers W,S,E,N")


def query_cmd(
    dataset: str = typer.Argument(..., help="Dataset name"),
    bbox: str = typer.Option(..., "--bbox", help="Bounding box W,S,E,N"),
) -> None:
    """Print features intersecting a bounding box."""
    box = _parse_bbox(bbox)
    with open_cardboard() as cb:
        fc = cb.bbox_query(box, dataset)
    print_geojson(fc)
