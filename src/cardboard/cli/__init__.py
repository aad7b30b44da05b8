"""Cardboard CLI: operator console for feature stores."""

from __future__ import annotations

import logging
from typing import Optional

import typer

from cardboard.cli import datasets, dump_cmd, features, init_cmd

app = typer.Typer(
    name="cardboard",
    help="Cardboard CLI: operator console for geospatial feature stores.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    storage_uri: str = "sqlite:///cardboard.db"
    blob_uri: str = "file://cardboard-blobs"
    config: str | None = None
    json_output: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        from cardboard import __version__

        print(f"cardboard {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    storage_uri: Optional[str] = typer.Option(
        None,
        "--storage-uri",
        envvar="CARDBOARD_STORAGE_URI",
        help="Key-value storage URI (sqlite:///cardboard.db or dynamodb://table)",
    ),
    blob_uri: Optional[str] = typer.Option(
        None,
        "--blob-uri",
        envvar="CARDBOARD_BLOB_URI",
        help="Blob storage URI (file:///dir or s3://bucket/prefix)",
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="CARDBOARD_CONFIG",
        help="YAML config file path",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging to stderr"),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all cardboard commands."""
    from cardboard.errors import StorageBackendError
    from cardboard.storage import parse_blob_target, parse_storage_target

    resolved_uri = storage_uri or _State.storage_uri
    resolved_blob = blob_uri or _State.blob_uri
    try:
        parse_storage_target(resolved_uri)
        parse_blob_target(resolved_blob)
    except StorageBackendError as e:
        raise typer.BadParameter(str(e))

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
        )

    state.storage_uri = resolved_uri
    state.blob_uri = resolved_blob
    state.config = config
    state.json_output = json_output
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.command(name="init")(init_cmd.init_cmd)
app.command(name="datasets")(datasets.datasets_cmd)
app.command(name="info")(datasets.info_cmd)
app.command(name="ids")(datasets.ids_cmd)
app.command(name="delete")(datasets.delete_cmd)
app.command(name="get")(features.get_cmd)
app.command(name="insert")(features.insert_cmd)
app.command(name="query")(features.query_cmd)
app.command(name="dump")(dump_cmd.dump_cmd)


def main() -> None:
    """Entry point for the cardboard CLI."""
    app()
