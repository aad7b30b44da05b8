"""Idempotent write coordinator over feature records, index rows and metadata.

Each logical write is a strict sequence: canonical record, then index rows,
then the metadata delta. No step is retried locally. Progress is recorded on
the feature record itself (``indexed`` and ``aggregated``) so a caller that
retries a failed ``insert`` re-enters at the record write, finds its own
record, and only redoes the steps that have not observably completed. The
metadata delta is guarded by a claim token in ``aggregating`` so overlapping
attempts apply it once.
"""

from __future__ import annotations

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from cardboard.config import CardboardConfig
from cardboard.errors import CardboardError, ConditionalCheckFailedError, ValidationError
from cardboard.features import (
    NO_CLAIM,
    FeatureStore,
    PreparedRecord,
    feature_id_of,
    next_version,
)
from cardboard.geometry import extent, validate_feature
from cardboard.metadata import Metadata
from cardboard.spatial_index import SpatialIndex
from cardboard.storage import KeyValueStore

logger = logging.getLogger(__name__)

MetadataFactory = Callable[[KeyValueStore, str], Metadata]


@dataclass
class BatchResult:
    """Outcome of one feature in a bulk insert."""

    index: int
    feature_id: str | None
    version: int | None = None
    error: CardboardError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _require_id(feature: Any) -> str:
    if not isinstance(feature, dict) or feature.get("id") in (None, ""):
        raise ValidationError("Feature does not specify an id")
    return str(feature["id"])


class WriteCoordinator:
    """Composes FeatureStore, SpatialIndex and Metadata into retry-safe writes."""

    def __init__(
        self,
        store: KeyValueStore,
        features: FeatureStore,
        index: SpatialIndex,
        config: CardboardConfig,
        metadata_factory: MetadataFactory = Metadata,
    ) -> None:
        self._store = store
        self._features = features
        self._index = index
        self._config = config
        self._metadata_factory = metadata_factory

    def metadata(self, dataset: str) -> Metadata:
        return self._metadata_factory(self._store, dataset)

    def _build(
        self, feature: dict[str, Any], feature_id: str, dataset: str, version: int
    ) -> PreparedRecord:
        cells = self._index.compute_cover(extent(validate_feature(feature)))
        return self._features.build(feature, feature_id, dataset, version, cells)

    def _discard_blob(self, prepared: PreparedRecord) -> None:
        """Best-effort removal of a blob uploaded by a write that did not land."""
        if prepared.blob_key is None:
            return
        try:
            self._features.delete_blob(prepared.blob_key)
        except CardboardError:
            logger.warning("Could not remove orphaned blob %s", prepared.blob_key, exc_info=True)

    def _create(self, prepared: PreparedRecord) -> None:
        self._features.upload(prepared)
        try:
            self._features.create(prepared)
        except ConditionalCheckFailedError:
            existing = self._features.get_record(prepared.item["dataset"], prepared.feature_id)
            # same-millisecond replay may share the stored blob key
            if existing is None or existing.get("blob") != prepared.blob_key:
                self._discard_blob(prepared)
            raise
        except Exception:
            self._discard_blob(prepared)
            raise

    # --- insert ---

    def insert(self, feature: dict[str, Any], dataset: str) -> dict[str, Any]:
        """Create-if-absent. Replaying an identical insert is a successful no-op."""
        feature_id = _require_id(feature)
        prepared = self._build(feature, feature_id, dataset, next_version())

        try:
            self._create(prepared)
            record = prepared.item
            logger.debug("Created %s/%s at version %s", dataset, feature_id, record["version"])
        except ConditionalCheckFailedError:
            record = self._accept_existing(prepared)

        self._finish_insert(record, prepared.feature)
        return {"id": feature_id, "version": record["version"]}

    def _accept_existing(self, prepared: PreparedRecord) -> dict[str, Any]:
        dataset = prepared.item["dataset"]
        existing = self._features.get_record(dataset, prepared.feature_id)
        if existing is None:
            raise ConditionalCheckFailedError(
                f"Feature {prepared.feature_id} changed during insert"
            )
        if self._features.read_body(existing) != prepared.body:
            raise ConditionalCheckFailedError(
                f"Feature {prepared.feature_id} already exists with different content"
            )
        logger.debug(
            "Insert of %s/%s already applied at version %s",
            dataset,
            prepared.feature_id,
            existing["version"],
        )
        return existing

    def _finish_insert(self, record: dict[str, Any], feature: dict[str, Any]) -> None:
        self._sync_index(record)
        if not record.get("aggregated"):
            meta = self.metadata(record["dataset"])
            self._aggregate(record, lambda: meta.add_feature(feature))

    def _sync_index(self, record: dict[str, Any]) -> None:
        cells = list(record.get("cells") or [])
        indexed = list(record.get("indexed") or [])
        if set(cells) == set(indexed):
            return
        self._index.write_index(feature_id_of(record), record["dataset"], cells, indexed)
        self._features.mark(record, guard_version=True, indexed=cells)

    def _claim_expired(self, held: str) -> bool:
        claimed_at = int(held.split(":", 1)[0])
        return next_version() - claimed_at > self._config.aggregation_lease_s * 1000

    def _aggregate(self, record: dict[str, Any], apply: Callable[[], None]) -> None:
        """Apply a metadata delta once per record version.

        The attempt first claims the record's ``aggregating`` slot. A live claim
        held by another attempt means that attempt owns the delta, so this one
        returns without applying it. A claim older than the lease is taken
        over, which lets a retry finish the work of an attempt that died.
        """
        held = record.get("aggregating") or NO_CLAIM
        if held != NO_CLAIM and not self._claim_expired(held):
            logger.debug("Metadata for %s is being applied by %s", record["id"], held)
            return
        token = f"{next_version()}:{uuid.uuid4().hex}"
        if not self._features.claim(record, token, held):
            logger.debug("Lost aggregation claim on %s", record["id"])
            return
        try:
            apply()
        except Exception:
            try:
                self._features.release(record, token)
            except CardboardError:
                logger.warning("Could not release claim on %s", record["id"], exc_info=True)
            raise
        self._features.mark(record, aggregated=True, aggregating=NO_CLAIM)

    # --- update ---

    def update(
        self, feature: dict[str, Any], dataset: str, expected_version: int
    ) -> dict[str, Any]:
        """Compare-and-swap replace guarded by ``expected_version``."""
        feature_id = _require_id(feature)
        return self._replace(feature, feature_id, dataset, expected_version, reindex=True)

    def _replace(
        self,
        feature: dict[str, Any],
        feature_id: str,
        dataset: str,
        expected_version: int,
        *,
        reindex: bool,
    ) -> dict[str, Any]:
        current = self._features.get_record(dataset, feature_id)
        if current is None or current.get("version") != expected_version:
            raise ConditionalCheckFailedError(
                f"Feature {feature_id} is not at version {expected_version}"
            )

        prepared = self._build(feature, feature_id, dataset, next_version(current["version"]))
        self._features.upload(prepared)
        try:
            old = self._features.replace(prepared, expected_version)
        except Exception:
            self._discard_blob(prepared)
            raise

        original = self._features.load(old)
        record = {**old, **prepared.content()}
        logger.debug(
            "Replaced %s/%s version %s -> %s",
            dataset,
            feature_id,
            expected_version,
            prepared.version,
        )

        if reindex:
            self._sync_index(record)

        meta = self.metadata(dataset)
        if old.get("aggregated"):
            meta.update_feature(original, prepared.feature)
        else:
            self._aggregate(record, lambda: meta.add_feature(prepared.feature))

        if old.get("blob") and old["blob"] != prepared.blob_key:
            self._features.delete_blob(old["blob"])
        return {"id": feature_id, "version": prepared.version}

    # --- low-level writes ---

    def put(
        self, feature: dict[str, Any], dataset: str, version: int | None = None
    ) -> dict[str, Any]:
        """Write a record and its metadata without touching index rows.

        Without ``version`` the feature is created under its own id or a new
        UUID; with ``version`` it replaces the record at that version.
        """
        validate_feature(feature)
        if version is not None:
            feature_id = _require_id(feature)
            return self._replace(feature, feature_id, dataset, version, reindex=False)

        feature_id = str(feature.get("id") or uuid.uuid4())
        prepared = self._build(feature, feature_id, dataset, next_version())
        self._create(prepared)
        record = prepared.item
        meta = self.metadata(dataset)
        self._aggregate(record, lambda: meta.add_feature(prepared.feature))
        return {"id": feature_id, "version": record["version"]}

    def add_feature_indexes(self, feature_id: str, dataset: str, version: int) -> None:
        """Bring the index rows of one record in line with its current cover."""
        record = self._features.get_record(dataset, feature_id)
        if record is None or record.get("version") != version:
            raise ConditionalCheckFailedError(f"Feature {feature_id} is not at version {version}")
        self._sync_index(record)

    def remove(self, feature_id: str, dataset: str) -> bool:
        """Delete a feature, its index rows and its share of the metadata.

        Index rows go first, while the record still lists them, so a failed
        remove can be retried until the record delete lands.
        """
        record = self._features.get_record(dataset, feature_id)
        if record is None:
            return False
        feature = self._features.load(record)
        # rows of an interrupted index write may not be listed in ``indexed`` yet
        rows = set(record.get("indexed") or ()) | set(record.get("cells") or ())
        self._index.write_index(feature_id, dataset, (), rows)
        self._features.delete_record(record)
        if record.get("aggregated"):
            self.metadata(dataset).delete_feature(feature)
        self._features.delete_blob(record.get("blob"))
        logger.debug("Removed %s/%s", dataset, feature_id)
        return True

    # --- bulk ---

    def insert_many(
        self, features: Iterable[dict[str, Any]], dataset: str
    ) -> list[BatchResult]:
        """Independent per-feature inserts with bounded concurrency."""
        batch = list(features)

        def _one(i: int, feature: dict[str, Any]) -> BatchResult:
            feature_id = feature.get("id") if isinstance(feature, dict) else None
            try:
                res = self.insert(feature, dataset)
            except CardboardError as e:
                logger.debug("Bulk insert item %d failed: %s", i, e)
                return BatchResult(index=i, feature_id=feature_id, error=e)
            return BatchResult(index=i, feature_id=res["id"], version=res["version"])

        if not batch:
            return []
        workers = min(self._config.max_concurrency, len(batch))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(_one, i, f) for i, f in enumerate(batch)]
            return [f.result() for f in futures]
