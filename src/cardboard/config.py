"""Configuration for Cardboard stores and indexing."""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from cardboard.errors import ValidationError


@dataclass
class CardboardConfig:
    """Configuration passed to every Cardboard component."""

    table: str = "cardboard"
    prefix: str = "cardboard"
    region: str | None = None
    dynamodb_endpoint_url: str | None = None
    s3_endpoint_url: str | None = None
    request_timeout_s: float = 10.0
    blob_threshold_bytes: int = 60000
    min_level: int = 1
    max_level: int = 20
    max_cells: int = 16
    query_max_cells: int = 4
    max_concurrency: int = 8
    aggregation_lease_s: float = 60.0

    def validate(self) -> CardboardConfig:
        if not 1 <= self.min_level <= self.max_level <= 30:
            raise ValidationError(
                f"Invalid index level range {self.min_level}..{self.max_level} (expected 1..30)"
            )
        # A single level-1 cover can touch all four quadrants.
        if self.max_cells < 4 or self.query_max_cells < 4:
            raise ValidationError("max_cells and query_max_cells must be at least 4")
        if self.max_concurrency < 1:
            raise ValidationError("max_concurrency must be at least 1")
        if self.aggregation_lease_s <= 0:
            raise ValidationError("aggregation_lease_s must be positive")
        if self.blob_threshold_bytes < 0:
            raise ValidationError("blob_threshold_bytes must not be negative")
        return self


def load_config(path: str | Path, **overrides: Any) -> CardboardConfig:
    """Read a YAML mapping into a validated CardboardConfig."""
    raw = yaml.safe_load(Path(path).read_text()) or {}
    if not isinstance(raw, dict):
        raise ValidationError(f"Config file {path} must contain a mapping")
    known = {f.name for f in fields(CardboardConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValidationError(f"Unknown config keys in {path}: {unknown}")
    raw.update({k: v for k, v in overrides.items() if v is not None})
    return CardboardConfig(**raw).validate()
