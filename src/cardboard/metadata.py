"""Per-dataset aggregate metadata: feature count, byte size and bounding envelope."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from cardboard.errors import ConditionalCheckFailedError
from cardboard.geometry import byte_length, extent
from cardboard.storage import MUST_EXIST, MUST_NOT_EXIST, Condition, KeyValueStore

logger = logging.getLogger(__name__)

# Maximally exclusive envelope: any real bbox narrows every edge.
EMPTY_BOUNDS = {"west": 180.0, "south": 90.0, "east": -180.0, "north": -90.0}


class Metadata:
    """Aggregate record ``metadata!{dataset}``.

    ``count`` and ``size`` are exact signed accumulations applied with atomic
    ADD. The envelope only grows: each edge moves outward through its own
    conditional update and is never recomputed on delete or shrinking update.
    Adjustments against a dataset without a record are silent no-ops.
    """

    def __init__(self, store: KeyValueStore, dataset: str) -> None:
        self._store = store
        self.dataset = dataset
        self.record_id = f"metadata!{dataset}"

    def get_info(self) -> dict[str, Any]:
        item = self._store.get_item(self.dataset, self.record_id)
        return item or {}

    def default_info(self) -> bool:
        """Create a zeroed record if none exists. Returns whether one was created."""
        item = {
            "id": self.record_id,
            "dataset": self.dataset,
            "count": 0,
            "size": 0,
            **EMPTY_BOUNDS,
        }
        try:
            self._store.put_item(item, condition=MUST_NOT_EXIST)
        except ConditionalCheckFailedError:
            return False
        logger.debug("Created metadata record for %s", self.dataset)
        return True

    def adjust_properties(self, deltas: dict[str, int]) -> bool:
        """Atomically add signed deltas to ``count`` and/or ``size``."""
        add = {k: int(v) for k, v in deltas.items() if k in ("count", "size") and v}
        if not add:
            return False
        try:
            self._store.update_item(self.dataset, self.record_id, add=add, condition=MUST_EXIST)
        except ConditionalCheckFailedError:
            logger.debug("No metadata for %s; skipped adjust %s", self.dataset, add)
            return False
        return True

    def adjust_bounds(self, bbox: Sequence[float] | None) -> bool:
        """Widen the envelope to include ``bbox``. Returns whether any edge moved."""
        if bbox is None:
            return False
        west, south, east, north = bbox
        edges = (
            ("west", west, Condition(exists=True, greater_than={"west": west})),
            ("south", south, Condition(exists=True, greater_than={"south": south})),
            ("east", east, Condition(exists=True, less_than={"east": east})),
            ("north", north, Condition(exists=True, less_than={"north": north})),
        )
        moved = False
        for name, value, condition in edges:
            try:
                self._store.update_item(
                    self.dataset, self.record_id, set={name: float(value)}, condition=condition
                )
                moved = True
            except ConditionalCheckFailedError:
                # already as wide, or no record yet
                continue
        return moved

    def add_feature(self, feature: dict[str, Any]) -> None:
        self.default_info()
        self.adjust_properties({"count": 1, "size": byte_length(feature)})
        self.adjust_bounds(extent(feature))

    def update_feature(self, original: dict[str, Any], edited: dict[str, Any]) -> None:
        self.adjust_properties({"size": byte_length(edited) - byte_length(original)})
        self.adjust_bounds(extent(edited))

    def delete_feature(self, feature: dict[str, Any]) -> None:
        self.adjust_properties({"count": -1, "size": -byte_length(feature)})
