"""cardboard datasets / info / ids / delete — dataset catalog commands."""

from __future__ import annotations

import typer

from cardboard.cli import _exitcodes as ec
from cardboard.cli._output import print_error, print_json, print_lines, print_table
from cardboard.cli._storage import open_cardboard


def datasets_cmd() -> None:
    """List dataset names."""
    from cardboard.cli import state

    with open_cardboard() as cb:
        names = cb.list_datasets()
    print_lines(names, json_mode=state.json_output)


def info_cmd(dataset: str = typer.Argument(..., help="Dataset name")) -> None:
    """Show aggregate metadata for a dataset."""
    from cardboard.cli import state

    with open_cardboard() as cb:
        info = cb.get_dataset_info(dataset)
    if not info:
        print_error(f"No metadata for dataset '{dataset}'")
        raise typer.Exit(ec.GENERAL_ERROR)

    data = {
        "dataset": dataset,
        "count": info.get("count"),
        "size": info.get("size"),
        "bbox": [info.get("west"), info.get("south"), info.get("east"), info.get("north")],
    }
    if state.json_output:
        print_json(data)
        return
    print(f"Dataset: {dataset}")
    print(f"Features: {data['count']}")
    print(f"Size: {int(data['size'] or 0):,} bytes")
    if data["count"]:
        print("Bounds: " + ", ".join(str(v) for v in data["bbox"]))


def ids_cmd(dataset: str = typer.Argument(..., help="Dataset name")) -> None:
    """List raw item ids in a dataset."""
    from cardboard.cli import state

    with open_cardboard() as cb:
        ids = cb.list_ids(dataset)
    print_lines(ids, json_mode=state.json_output)


def delete_cmd(
    dataset: str = typer.Argument(..., help="Dataset name"),
    yes: bool = typer.Option(False, "--yes", help="Confirm deletion"),
) -> None:
    """Delete every item and blob in a dataset."""
    from cardboard.cli import state

    if not yes:
        print_error(f"Refusing to delete dataset '{dataset}' without --yes")
        raise typer.Exit(ec.USAGE_ERROR)

    with open_cardboard() as cb:
        deleted = cb.del_dataset(dataset)
    print_table(["dataset", "deleted"], [[dataset, deleted]], json_mode=state.json_output)
