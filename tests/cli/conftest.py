"""Shared fixtures for CLI tests."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from cardboard import Cardboard
from cardboard.cli import app
from tests.fixtures import DC, HAITI, NULL_ISLAND, fixture

if TYPE_CHECKING:
    from click.testing import Result


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_uris(tmp_path):
    """Storage and blob URIs under a temp directory."""
    return f"sqlite:///{tmp_path}/cli_test.db", f"file://{tmp_path}/blobs"


@pytest.fixture
def seeded(cli_uris):
    """Store with two datasets of seed features."""
    with Cardboard.open(*cli_uris) as cb:
        cb.insert(fixture(NULL_ISLAND, "island"), "points")
        cb.insert(fixture(DC, "dc"), "points")
        cb.insert(fixture(HAITI, "haiti"), "shapes")
    return cli_uris


@pytest.fixture
def geojson_file(tmp_path):
    def _write(obj, name: str = "input.geojson"):
        path = tmp_path / name
        path.write_text(json.dumps(obj))
        return path

    return _write


def invoke(runner: CliRunner, args: list[str], uris: tuple[str, str] | None = None) -> "Result":
    """Invoke the CLI with storage options injected before the subcommand."""
    if uris:
        args = ["--storage-uri", uris[0], "--blob-uri", uris[1]] + args
    return runner.invoke(app, args, catch_exceptions=False)
