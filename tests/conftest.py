"""Shared test fixtures for Cardboard tests."""

from __future__ import annotations

import pytest

from cardboard import Cardboard, CardboardConfig
from cardboard.storage import LocalBlobStore, SqliteKeyValueStore


@pytest.fixture
def kv():
    """In-memory SQLite key-value store."""
    store = SqliteKeyValueStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def blobs(tmp_path):
    """Blob store rooted in a temp directory."""
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def config():
    return CardboardConfig()


@pytest.fixture
def cardboard(kv, blobs, config):
    """Cardboard over the in-memory store; closing is left to the kv fixture."""
    return Cardboard(kv, blobs, config)
