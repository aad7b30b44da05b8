"""Cardboard: geospatial feature store with a cell index and dataset metadata."""

__version__ = "0.1.0"

from cardboard.cardboard import Cardboard
from cardboard.config import CardboardConfig, load_config
from cardboard.coordinator import BatchResult
from cardboard.errors import (
    CardboardError,
    ConditionalCheckFailedError,
    StorageBackendError,
    ValidationError,
)
from cardboard.metadata import Metadata
from cardboard.storage import LocalBlobStore, SqliteKeyValueStore, open_stores

__all__ = [
    "__version__",
    "Cardboard",
    "CardboardConfig",
    "load_config",
    "BatchResult",
    "Metadata",
    "CardboardError",
    "ConditionalCheckFailedError",
    "StorageBackendError",
    "ValidationError",
    "LocalBlobStore",
    "SqliteKeyValueStore",
    "open_stores",
]
