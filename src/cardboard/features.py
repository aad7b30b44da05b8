"""Canonical feature records with optional blob offload."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Iterable

from cardboard.config import CardboardConfig
from cardboard.errors import ConditionalCheckFailedError
from cardboard.geometry import canonical_json, extent, prepare_feature
from cardboard.storage import MUST_EXIST, MUST_NOT_EXIST, BlobStore, Condition, KeyValueStore

logger = logging.getLogger(__name__)

RECORD_PREFIX = "id!"

# Attributes owned by the write path rather than by the feature content.
BOOKKEEPING_ATTRS = ("indexed", "aggregated", "aggregating")

# Value of ``aggregating`` when no attempt holds the aggregation claim.
NO_CLAIM = ""


def record_id(feature_id: str) -> str:
    return f"{RECORD_PREFIX}{feature_id}"


def feature_id_of(record: dict[str, Any]) -> str:
    return record["id"][len(RECORD_PREFIX) :]


def next_version(previous: int | None = None) -> int:
    """Millisecond timestamp, strictly greater than ``previous``."""
    now = int(time.time() * 1000)
    if previous is None:
        return now
    return max(now, int(previous) + 1)


@dataclass
class PreparedRecord:
    """A record ready to be written, with its canonical body and feature."""

    item: dict[str, Any]
    feature: dict[str, Any]
    body: bytes
    blob_key: str | None

    @property
    def feature_id(self) -> str:
        return feature_id_of(self.item)

    @property
    def version(self) -> int:
        return self.item["version"]

    def content(self) -> dict[str, Any]:
        """Attributes replaced on update; key and bookkeeping attributes excluded."""
        return {
            k: v
            for k, v in self.item.items()
            if k not in ("id", "dataset") and k not in BOOKKEEPING_ATTRS
        }


class FeatureStore:
    """Reads and writes ``id!{featureId}`` records.

    Bodies larger than ``blob_threshold_bytes`` are written to the blob store
    under ``{prefix}/{dataset}/{featureId}/{version}`` before the record that
    references them, so a durable record never points at a missing blob.
    """

    def __init__(self, store: KeyValueStore, blobs: BlobStore, config: CardboardConfig) -> None:
        self._store = store
        self._blobs = blobs
        self._config = config

    def blob_key(self, dataset: str, feature_id: str, version: int) -> str:
        prefix = self._config.prefix.strip("/")
        key = f"{dataset}/{feature_id}/{version}"
        return f"{prefix}/{key}" if prefix else key

    def build(
        self,
        feature: dict[str, Any],
        feature_id: str,
        dataset: str,
        version: int,
        cells: Iterable[str],
    ) -> PreparedRecord:
        prepared = prepare_feature(feature, feature_id)
        body = canonical_json(prepared)
        bbox = extent(prepared)
        usid = prepared["properties"].get("id")

        item: dict[str, Any] = {
            "id": record_id(feature_id),
            "dataset": dataset,
            "version": version,
            "size": len(body),
            "cells": sorted(cells),
            "indexed": [],
            "aggregated": False,
            "aggregating": NO_CLAIM,
            "usid": str(usid) if usid is not None else None,
            "west": None,
            "south": None,
            "east": None,
            "north": None,
            "val": None,
            "blob": None,
        }
        if bbox is not None:
            item.update(zip(("west", "south", "east", "north"), bbox))

        blob_key = None
        if len(body) > self._config.blob_threshold_bytes:
            blob_key = self.blob_key(dataset, feature_id, version)
            item["blob"] = blob_key
        else:
            item["val"] = body
        return PreparedRecord(item=item, feature=prepared, body=body, blob_key=blob_key)

    def upload(self, prepared: PreparedRecord) -> None:
        if prepared.blob_key is not None:
            logger.debug("Uploading %d byte body to %s", len(prepared.body), prepared.blob_key)
            self._blobs.put_object(prepared.blob_key, prepared.body)

    def create(self, prepared: PreparedRecord) -> None:
        """Write a new record; raises ConditionalCheckFailedError if the id is taken."""
        self._store.put_item(prepared.item, condition=MUST_NOT_EXIST)

    def replace(self, prepared: PreparedRecord, expected_version: int) -> dict[str, Any]:
        """Swap the content of an existing record guarded by its version. Returns the old record."""
        old = self._store.update_item(
            prepared.item["dataset"],
            prepared.item["id"],
            set=prepared.content(),
            condition=Condition(exists=True, equals={"version": expected_version}),
            return_values="ALL_OLD",
        )
        assert old is not None
        return old

    def mark(self, record: dict[str, Any], *, guard_version: bool = False, **attrs: Any) -> None:
        """Set bookkeeping attributes on a stored record."""
        condition = (
            Condition(exists=True, equals={"version": record["version"]})
            if guard_version
            else MUST_EXIST
        )
        self._store.update_item(record["dataset"], record["id"], set=attrs, condition=condition)
        record.update(attrs)

    def claim(self, record: dict[str, Any], token: str, held: str = NO_CLAIM) -> bool:
        """Swap the ``aggregating`` claim from ``held`` to ``token``.

        Succeeds only while the record is at the same version and not yet
        aggregated, so at most one attempt owns the metadata delta at a time.
        """
        condition = Condition(
            exists=True,
            equals={"version": record["version"], "aggregated": False, "aggregating": held},
        )
        try:
            self._store.update_item(
                record["dataset"], record["id"], set={"aggregating": token}, condition=condition
            )
        except ConditionalCheckFailedError:
            return False
        record["aggregating"] = token
        return True

    def release(self, record: dict[str, Any], token: str) -> None:
        """Drop our claim so a later attempt can take it. No-op if it was taken over."""
        try:
            self._store.update_item(
                record["dataset"],
                record["id"],
                set={"aggregating": NO_CLAIM},
                condition=Condition(exists=True, equals={"aggregating": token}),
            )
        except ConditionalCheckFailedError:
            logger.debug("Claim %s on %s already released or taken over", token, record["id"])
            return
        record["aggregating"] = NO_CLAIM

    def get_record(self, dataset: str, feature_id: str) -> dict[str, Any] | None:
        return self._store.get_item(dataset, record_id(feature_id))

    def get_records(self, dataset: str, feature_ids: Iterable[str]) -> list[dict[str, Any]]:
        return self._store.batch_get_items(dataset, [record_id(f) for f in feature_ids])

    def iter_records(self, dataset: str) -> Iterable[dict[str, Any]]:
        return self._store.query(dataset, RECORD_PREFIX)

    def read_body(self, record: dict[str, Any]) -> bytes:
        if record.get("blob"):
            return self._blobs.get_object(record["blob"])
        return bytes(record["val"])

    def load(self, record: dict[str, Any]) -> dict[str, Any]:
        return json.loads(self.read_body(record))

    def delete_record(self, record: dict[str, Any]) -> None:
        self._store.delete_item(
            record["dataset"],
            record["id"],
            condition=Condition(exists=True, equals={"version": record["version"]}),
        )

    def delete_blob(self, key: str | None) -> None:
        if key:
            self._blobs.delete_object(key)
