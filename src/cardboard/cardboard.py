"""Public facade: feature writes, bbox queries and dataset catalog."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence

from cardboard.config import CardboardConfig
from cardboard.coordinator import BatchResult, MetadataFactory, WriteCoordinator
from cardboard.features import RECORD_PREFIX, FeatureStore
from cardboard.geometry import feature_collection, normalize_bbox
from cardboard.metadata import Metadata
from cardboard.spatial_index import SpatialIndex, run_bounded
from cardboard.storage import BlobStore, KeyValueStore, open_stores

logger = logging.getLogger(__name__)


class Cardboard:
    """Geospatial feature store over a key-value table and a blob store.

    Usage::

        with Cardboard.open("sqlite:///features.db", "file:///var/blobs") as cb:
            cb.create_table()
            cb.insert(feature, "parcels")
            cb.bbox_query([-10, -10, 10, 10], "parcels")
    """

    def __init__(
        self,
        store: KeyValueStore,
        blobs: BlobStore,
        config: CardboardConfig | None = None,
        *,
        metadata_factory: MetadataFactory = Metadata,
    ) -> None:
        self._config = (config or CardboardConfig()).validate()
        self._store = store
        self._blobs = blobs
        self._features = FeatureStore(store, blobs, self._config)
        self._index = SpatialIndex(store, self._config)
        self._writer = WriteCoordinator(
            store, self._features, self._index, self._config, metadata_factory
        )

    @classmethod
    def open(
        cls,
        storage_uri: str,
        blob_uri: str,
        config: CardboardConfig | None = None,
    ) -> Cardboard:
        cfg = config or CardboardConfig()
        store, blobs = open_stores(storage_uri, blob_uri, config=cfg)
        return cls(store, blobs, cfg)

    @property
    def config(self) -> CardboardConfig:
        return self._config

    @property
    def store(self) -> KeyValueStore:
        """Expose the key-value adapter for low-level tests and tooling."""
        return self._store

    def __enter__(self) -> Cardboard:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: Any,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._store.close()

    def create_table(self) -> None:
        self._store.create_table()

    def storage_info(self) -> dict[str, Any]:
        return {"store": self._store.storage_info(), "blobs": self._blobs.storage_info()}

    # --- writes ---

    def put(
        self, feature: dict[str, Any], dataset: str, version: int | None = None
    ) -> dict[str, Any]:
        return self._writer.put(feature, dataset, version)

    def insert(self, feature: dict[str, Any], dataset: str) -> dict[str, Any]:
        return self._writer.insert(feature, dataset)

    def update(
        self, feature: dict[str, Any], dataset: str, expected_version: int
    ) -> dict[str, Any]:
        return self._writer.update(feature, dataset, expected_version)

    def insert_many(self, features: Iterable[dict[str, Any]], dataset: str) -> list[BatchResult]:
        return self._writer.insert_many(features, dataset)

    def add_feature_indexes(self, feature_id: str, dataset: str, version: int) -> None:
        self._writer.add_feature_indexes(feature_id, dataset, version)

    def remove(self, feature_id: str, dataset: str) -> bool:
        return self._writer.remove(feature_id, dataset)

    # --- reads ---

    def get(self, feature_id: str, dataset: str) -> dict[str, Any]:
        record = self._features.get_record(dataset, feature_id)
        if record is None:
            return feature_collection()
        return feature_collection([self._features.load(record)])

    def get_record(self, feature_id: str, dataset: str) -> dict[str, Any] | None:
        """Raw stored record, including ``version`` for optimistic updates."""
        return self._features.get_record(dataset, feature_id)

    def bbox_query(self, bbox: Sequence[float], dataset: str) -> dict[str, Any]:
        """Features whose extent intersects ``bbox``."""
        box = normalize_bbox(bbox)
        candidates = self._index.query_bbox(box, dataset)
        if not candidates:
            return feature_collection()
        records = self._features.get_records(dataset, sorted(candidates))
        matches = self._index.filter_exact(records, box)
        return feature_collection([self._features.load(r) for r in matches])

    def get_by_secondary_id(self, usid: Any, dataset: str) -> dict[str, Any]:
        """Features whose ``properties.id`` equals ``usid``."""
        wanted = str(usid)
        features = [
            self._features.load(r)
            for r in self._features.iter_records(dataset)
            if r.get("usid") == wanted
        ]
        return feature_collection(features)

    def get_dataset_info(self, dataset: str) -> dict[str, Any]:
        return Metadata(self._store, dataset).get_info()

    # --- catalog ---

    def list_ids(self, dataset: str) -> list[str]:
        return sorted(item["id"] for item in self._store.query(dataset, ""))

    def list_datasets(self) -> list[str]:
        return sorted({item["dataset"] for item in self._store.scan()})

    def del_dataset(self, dataset: str) -> int:
        """Delete every item in a dataset and the blobs its records reference."""
        items = list(self._store.query(dataset, ""))
        blob_keys = [i["blob"] for i in items if i.get("blob")]

        def _delete(item_id: str) -> Any:
            return lambda: self._store.delete_item(dataset, item_id)

        def _delete_blob(key: str) -> Any:
            return lambda: self._blobs.delete_object(key)

        run_bounded([_delete(i["id"]) for i in items], self._config.max_concurrency)
        run_bounded([_delete_blob(k) for k in blob_keys], self._config.max_concurrency)
        logger.info(
            "Deleted dataset %s: %d items, %d blobs", dataset, len(items), len(blob_keys)
        )
        return len(items)

    def dump(self) -> dict[str, Any]:
        items = list(self._store.scan())
        return {"items": items, "count": len(items)}

    def dump_geojson(self) -> dict[str, Any]:
        features = [
            self._features.load(item)
            for item in self._store.scan()
            if item["id"].startswith(RECORD_PREFIX)
        ]
        return feature_collection(features)
