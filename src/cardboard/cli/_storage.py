"""CLI helpers for resolving configuration and opening a Cardboard."""

from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator

import typer

from cardboard.cardboard import Cardboard
from cardboard.cli import _exitcodes as ec
from cardboard.cli._output import print_error
from cardboard.config import CardboardConfig, load_config
from cardboard.errors import (
    CardboardError,
    ConditionalCheckFailedError,
    StorageBackendError,
    ValidationError,
)


def _env_overrides() -> dict[str, str | None]:
    return {
        "region": os.getenv("CARDBOARD_REGION"),
        "dynamodb_endpoint_url": os.getenv("CARDBOARD_DYNAMODB_ENDPOINT"),
        "s3_endpoint_url": os.getenv("CARDBOARD_S3_ENDPOINT"),
    }


def resolve_config() -> CardboardConfig:
    """Config file from --config/CARDBOARD_CONFIG, with environment overrides on top."""
    from cardboard.cli import state

    overrides = _env_overrides()
    if state.config:
        return load_config(state.config, **overrides)
    cfg = CardboardConfig()
    for key, value in overrides.items():
        if value is not None:
            setattr(cfg, key, value)
    return cfg.validate()


def exit_code_for(err: CardboardError) -> int:
    if isinstance(err, ValidationError):
        return ec.USAGE_ERROR
    if isinstance(err, ConditionalCheckFailedError):
        return ec.CONFLICT
    if isinstance(err, StorageBackendError):
        return ec.STORAGE_ERROR
    return ec.GENERAL_ERROR


@contextmanager
def open_cardboard() -> Iterator[Cardboard]:
    """Open a Cardboard from global CLI state; map library errors to exit codes."""
    from cardboard.cli import state

    try:
        cfg = resolve_config()
    except (CardboardError, OSError) as e:
        print_error(f"Invalid config: {e}")
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        cb = Cardboard.open(state.storage_uri, state.blob_uri, cfg)
    except CardboardError as e:
        print_error(f"Cannot open storage backend: {e}")
        raise typer.Exit(ec.STORAGE_ERROR)

    try:
        yield cb
    except CardboardError as e:
        print_error(str(e))
        raise typer.Exit(exit_code_for(e))
    finally:
        cb.close()
