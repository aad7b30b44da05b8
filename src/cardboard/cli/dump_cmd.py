"""cardboard dump — export every item or every feature."""

from __future__ import annotations

import typer

from cardboard.cli._output import print_geojson, print_json
from cardboard.cli._storage import open_cardboard


def dump_cmd(
    geojson: bool = typer.Option(False, "--geojson", help="Emit a FeatureCollection of features"),
) -> None:
    """Dump raw items across all datasets, or all features as GeoJSON."""
    with open_cardboard() as cb:
        if geojson:
            print_geojson(cb.dump_geojson())
            return
        print_json(cb.dump())
