"""Backing-store contracts, local adapters and storage URI resolution."""

from __future__ import annotations

import base64
import json
import logging
import os
import sqlite3
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Mapping, Protocol, runtime_checkable
from urllib.parse import urlparse

from cardboard.config import CardboardConfig
from cardboard.errors import ConditionalCheckFailedError, StorageBackendError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Condition:
    """Server-evaluated guard for a conditional write.

    ``exists`` checks item presence; the mappings compare current attribute
    values. An attribute missing from the item fails every comparison.
    """

    exists: bool | None = None
    equals: Mapping[str, Any] = field(default_factory=dict)
    greater_than: Mapping[str, Any] = field(default_factory=dict)
    less_than: Mapping[str, Any] = field(default_factory=dict)


MUST_EXIST = Condition(exists=True)
MUST_NOT_EXIST = Condition(exists=False)


def condition_holds(item: dict[str, Any] | None, condition: Condition | None) -> bool:
    """Evaluate a condition against the current item (None when absent)."""
    if condition is None:
        return True
    if condition.exists is True and item is None:
        return False
    if condition.exists is False and item is not None:
        return False
    current = item or {}
    for name, value in condition.equals.items():
        if name not in current or current[name] != value:
            return False
    for name, value in condition.greater_than.items():
        if name not in current or not current[name] > value:
            return False
    for name, value in condition.less_than.items():
        if name not in current or not current[name] < value:
            return False
    return True


def apply_update(
    item: dict[str, Any] | None,
    dataset: str,
    id: str,
    *,
    set: Mapping[str, Any] | None = None,
    add: Mapping[str, int | float] | None = None,
) -> dict[str, Any]:
    """Return the item after SET and ADD actions, creating it when absent."""
    updated = dict(item) if item is not None else {"dataset": dataset, "id": id}
    for name, value in (set or {}).items():
        updated[name] = value
    for name, delta in (add or {}).items():
        updated[name] = updated.get(name, 0) + delta
    return updated


@runtime_checkable
class KeyValueStore(Protocol):
    """Sorted key-value store keyed by (dataset, id)."""

    def get_item(self, dataset: str, id: str) -> dict[str, Any] | None: ...

    def put_item(self, item: dict[str, Any], *, condition: Condition | None = None) -> None: ...

    def update_item(
        self,
        dataset: str,
        id: str,
        *,
        set: Mapping[str, Any] | None = None,
        add: Mapping[str, int | float] | None = None,
        condition: Condition | None = None,
        return_values: str = "NONE",
    ) -> dict[str, Any] | None: ...

    def delete_item(self, dataset: str, id: str, *, condition: Condition | None = None) -> None: ...

    def query(self, dataset: str, prefix: str = "") -> Iterator[dict[str, Any]]: ...

    def batch_get_items(self, dataset: str, ids: list[str]) -> list[dict[str, Any]]: ...

    def scan(self) -> Iterator[dict[str, Any]]: ...

    def create_table(self) -> None: ...

    def storage_info(self) -> dict[str, Any]: ...

    def close(self) -> None: ...


@runtime_checkable
class BlobStore(Protocol):
    """Opaque-path object store for large feature bodies."""

    def put_object(self, key: str, body: bytes) -> None: ...

    def get_object(self, key: str) -> bytes: ...

    def delete_object(self, key: str) -> None: ...

    def storage_info(self) -> dict[str, Any]: ...


# --- SQLite key-value adapter ---


def _encode_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return {"$b64": base64.b64encode(bytes(value)).decode("ascii")}
    raise TypeError(f"Cannot store value of type {type(value).__name__}")


def _decode_object(obj: dict[str, Any]) -> Any:
    if len(obj) == 1 and "$b64" in obj:
        return base64.b64decode(obj["$b64"])
    return obj


def _dumps_item(item: Mapping[str, Any]) -> str:
    return json.dumps(item, default=_encode_value, sort_keys=True, separators=(",", ":"))


def _loads_item(raw: str) -> dict[str, Any]:
    return json.loads(raw, object_hook=_decode_object)


def _prefix_upper_bound(prefix: str) -> str:
    """Smallest string greater than every string starting with ``prefix``.

    SQLite's BINARY collation compares UTF-8 bytes, which orders the same as
    code points, so bumping the last character bounds the range.
    """
    return prefix[:-1] + chr(ord(prefix[-1]) + 1)


class SqliteKeyValueStore:
    """SQLite-backed key-value store.

    Conditional writes run inside ``BEGIN IMMEDIATE`` transactions so the
    read-check-write sequence is atomic against other connections, and a
    lock serializes use of the shared connection across threads.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        if db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self.create_table()

    def create_table(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS items (
                    dataset    TEXT NOT NULL,
                    id         TEXT NOT NULL,
                    attrs_json TEXT NOT NULL,
                    PRIMARY KEY (dataset, id)
                ) WITHOUT ROWID
                """
            )

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def storage_info(self) -> dict[str, Any]:
        return {"backend": "sqlite", "db_path": self.db_path}

    def _fetch(self, dataset: str, id: str) -> dict[str, Any] | None:
        row = self._conn.execute(
            "SELECT attrs_json FROM items WHERE dataset = ? AND id = ?",
            (dataset, id),
        ).fetchone()
        return _loads_item(row[0]) if row else None

    def _store(self, item: Mapping[str, Any]) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO items (dataset, id, attrs_json) VALUES (?, ?, ?)",
            (item["dataset"], item["id"], _dumps_item(item)),
        )

    def _conditional(self, operation: str, fn: Any) -> Any:
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageBackendError(operation, str(e)) from e
            try:
                result = fn()
            except sqlite3.Error as e:
                self._conn.execute("ROLLBACK")
                raise StorageBackendError(operation, str(e)) from e
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")
            return result

    def get_item(self, dataset: str, id: str) -> dict[str, Any] | None:
        with self._lock:
            return self._fetch(dataset, id)

    def put_item(self, item: dict[str, Any], *, condition: Condition | None = None) -> None:
        if "dataset" not in item or "id" not in item:
            raise StorageBackendError("put_item", "item must carry 'dataset' and 'id'")

        def _put() -> None:
            current = self._fetch(item["dataset"], item["id"])
            if not condition_holds(current, condition):
                raise ConditionalCheckFailedError()
            self._store(item)

        self._conditional("put_item", _put)

    def update_item(
        self,
        dataset: str,
        id: str,
        *,
        set: Mapping[str, Any] | None = None,
        add: Mapping[str, int | float] | None = None,
        condition: Condition | None = None,
        return_values: str = "NONE",
    ) -> dict[str, Any] | None:
        def _update() -> dict[str, Any] | None:
            current = self._fetch(dataset, id)
            if not condition_holds(current, condition):
                raise ConditionalCheckFailedError()
            updated = apply_update(current, dataset, id, set=set, add=add)
            self._store(updated)
            if return_values == "ALL_OLD":
                return current
            if return_values == "ALL_NEW":
                return updated
            return None

        return self._conditional("update_item", _update)

    def delete_item(self, dataset: str, id: str, *, condition: Condition | None = None) -> None:
        def _delete() -> None:
            current = self._fetch(dataset, id)
            if not condition_holds(current, condition):
                raise ConditionalCheckFailedError()
            self._conn.execute("DELETE FROM items WHERE dataset = ? AND id = ?", (dataset, id))

        self._conditional("delete_item", _delete)

    def query(self, dataset: str, prefix: str = "") -> Iterator[dict[str, Any]]:
        if prefix:
            # key range over the (dataset, id) primary key
            sql = (
                "SELECT attrs_json FROM items "
                "WHERE dataset = ? AND id >= ? AND id < ? ORDER BY id"
            )
            params: tuple[Any, ...] = (dataset, prefix, _prefix_upper_bound(prefix))
        else:
            sql = "SELECT attrs_json FROM items WHERE dataset = ? ORDER BY id"
            params = (dataset,)
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return (_loads_item(r[0]) for r in rows)

    def batch_get_items(self, dataset: str, ids: list[str]) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        with self._lock:
            for id in dict.fromkeys(ids):
                item = self._fetch(dataset, id)
                if item is not None:
                    out.append(item)
        return out

    def scan(self) -> Iterator[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT attrs_json FROM items ORDER BY dataset, id"
            ).fetchall()
        return (_loads_item(r[0]) for r in rows)


# --- Local directory blob adapter ---


class LocalBlobStore:
    """Blob store writing each object to a file under a root directory."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / key.lstrip("/")).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageBackendError("blob_key", f"Key escapes blob root: {key}")
        return path

    def put_object(self, key: str, body: bytes) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
            with os.fdopen(fd, "wb") as fh:
                fh.write(body)
            os.replace(tmp, path)
        except OSError as e:
            raise StorageBackendError("put_object", f"{key}: {e}") from e

    def get_object(self, key: str) -> bytes:
        try:
            return self._path(key).read_bytes()
        except OSError as e:
            raise StorageBackendError("get_object", f"{key}: {e}") from e

    def delete_object(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageBackendError("delete_object", f"{key}: {e}") from e

    def storage_info(self) -> dict[str, Any]:
        return {"backend": "file", "root": str(self.root)}


# --- Storage URI resolution ---


@dataclass(frozen=True)
class StorageTarget:
    """Resolved storage target from a storage or blob URI."""

    backend: str
    uri: str
    db_path: str | None = None
    table: str | None = None
    root: str | None = None
    bucket: str | None = None
    prefix: str | None = None


def parse_storage_target(storage_uri: str) -> StorageTarget:
    """Resolve the key-value backend named by a storage URI."""
    parsed = urlparse(storage_uri)

    if parsed.scheme == "sqlite":
        sqlite_path = parsed.path
        if parsed.netloc:
            sqlite_path = f"{parsed.netloc}{sqlite_path}"
        elif sqlite_path.startswith("//"):
            # sqlite:////abs/path -> /abs/path
            sqlite_path = sqlite_path[1:]
        elif sqlite_path.startswith("/"):
            # sqlite:///rel/path -> rel/path
            sqlite_path = sqlite_path[1:]
        if not sqlite_path:
            raise StorageBackendError("parse_storage_uri", f"Invalid sqlite URI: {storage_uri}")
        return StorageTarget(backend="sqlite", uri=storage_uri, db_path=sqlite_path)

    if parsed.scheme == "dynamodb":
        table = parsed.netloc or parsed.path.strip("/")
        if not table:
            raise StorageBackendError("parse_storage_uri", f"Invalid dynamodb URI: {storage_uri}")
        return StorageTarget(backend="dynamodb", uri=storage_uri, table=table)

    raise StorageBackendError(
        "parse_storage_uri",
        f"Unsupported storage URI scheme '{parsed.scheme}' for '{storage_uri}'",
    )


def parse_blob_target(blob_uri: str) -> StorageTarget:
    """Resolve the blob backend named by a blob URI."""
    parsed = urlparse(blob_uri)

    if parsed.scheme == "file":
        root = f"{parsed.netloc}{parsed.path}"
        if not root:
            raise StorageBackendError("parse_blob_uri", f"Invalid file URI: {blob_uri}")
        return StorageTarget(backend="file", uri=blob_uri, root=root)

    if parsed.scheme == "s3":
        bucket = parsed.netloc
        prefix = parsed.path.lstrip("/").rstrip("/")
        if not bucket:
            raise StorageBackendError("parse_blob_uri", f"Invalid s3 URI: {blob_uri}")
        return StorageTarget(backend="s3", uri=blob_uri, bucket=bucket, prefix=prefix)

    raise StorageBackendError(
        "parse_blob_uri",
        f"Unsupported blob URI scheme '{parsed.scheme}' for '{blob_uri}'",
    )


def open_stores(
    storage_uri: str,
    blob_uri: str,
    *,
    config: CardboardConfig | None = None,
) -> tuple[KeyValueStore, BlobStore]:
    """Open the key-value and blob adapters named by the two URIs."""
    cfg = config or CardboardConfig()
    target = parse_storage_target(storage_uri)
    store: KeyValueStore
    if target.backend == "sqlite":
        assert target.db_path is not None
        store = SqliteKeyValueStore(target.db_path)
    else:
        from cardboard.storage_dynamodb import DynamoDBKeyValueStore

        assert target.table is not None
        store = DynamoDBKeyValueStore(table=target.table, config=cfg)

    blob_target = parse_blob_target(blob_uri)
    blobs: BlobStore
    if blob_target.backend == "file":
        assert blob_target.root is not None
        blobs = LocalBlobStore(blob_target.root)
    else:
        from cardboard.storage_s3 import S3BlobStore

        assert blob_target.bucket is not None
        blobs = S3BlobStore(bucket=blob_target.bucket, prefix=blob_target.prefix or "", config=cfg)

    logger.debug("Opened stores %s and %s", target.uri, blob_target.uri)
    return store, blobs


__all__ = [
    "BlobStore",
    "Condition",
    "KeyValueStore",
    "LocalBlobStore",
    "MUST_EXIST",
    "MUST_NOT_EXIST",
    "SqliteKeyValueStore",
    "StorageTarget",
    "apply_update",
    "condition_holds",
    "open_stores",
    "parse_blob_target",
    "parse_storage_target",
]
