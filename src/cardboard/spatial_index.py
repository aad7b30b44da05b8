"""Spatial index rows: cover computation, fan-out writes and bbox candidate lookup."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, Sequence

from cardboard.cells import compute_cover, query_prefixes
from cardboard.config import CardboardConfig
from cardboard.geometry import bbox_intersects, normalize_bbox
from cardboard.storage import KeyValueStore

logger = logging.getLogger(__name__)


def index_row_id(cell: str, feature_id: str) -> str:
    return f"{cell}!{feature_id}"


def feature_id_from_row(row_id: str) -> str:
    # cell!{level}!{quadkey}!{featureId}; feature ids may contain '!'
    return row_id.split("!", 3)[3]


def run_bounded(
    fns: Iterable[Callable[[], Any]],
    max_workers: int,
) -> list[Any]:
    """Run independent calls with bounded concurrency, re-raising the first failure."""
    tasks = list(fns)
    if not tasks:
        return []
    if len(tasks) == 1 or max_workers <= 1:
        return [fn() for fn in tasks]
    with ThreadPoolExecutor(max_workers=min(max_workers, len(tasks))) as pool:
        futures = [pool.submit(fn) for fn in tasks]
        return [f.result() for f in futures]


class SpatialIndex:
    """Index rows mapping grid cells to feature ids within a dataset."""

    def __init__(self, store: KeyValueStore, config: CardboardConfig) -> None:
        self._store = store
        self._config = config

    def compute_cover(self, bbox: Sequence[float] | None) -> set[str]:
        return compute_cover(
            bbox,
            min_level=self._config.min_level,
            max_level=self._config.max_level,
            max_cells=self._config.max_cells,
        )

    def write_index(
        self,
        feature_id: str,
        dataset: str,
        cover: Iterable[str],
        previous_cover: Iterable[str] = (),
    ) -> None:
        """Replace ``previous_cover`` rows with ``cover`` rows. Safe to re-run."""
        cover = set(cover)
        previous = set(previous_cover)
        stale = sorted(previous - cover)
        fresh = sorted(cover - previous)
        logger.debug(
            "Index %s/%s: %d rows to write, %d to delete", dataset, feature_id, len(fresh), len(stale)
        )

        def _put(cell: str) -> Callable[[], None]:
            return lambda: self._store.put_item(
                {"dataset": dataset, "id": index_row_id(cell, feature_id)}
            )

        def _delete(cell: str) -> Callable[[], None]:
            return lambda: self._store.delete_item(dataset, index_row_id(cell, feature_id))

        run_bounded(
            [_put(c) for c in fresh] + [_delete(c) for c in stale],
            self._config.max_concurrency,
        )

    def query_bbox(self, bbox: Sequence[float], dataset: str) -> set[str]:
        """Candidate feature ids whose cells overlap ``bbox``. May hold false positives."""
        box = normalize_bbox(bbox)
        prefixes = query_prefixes(
            box,
            min_level=self._config.min_level,
            max_level=self._config.max_level,
            max_cells=self._config.query_max_cells,
        )

        def _scan(prefix: str) -> Callable[[], list[str]]:
            return lambda: [
                feature_id_from_row(row["id"]) for row in self._store.query(dataset, prefix)
            ]

        candidates: set[str] = set()
        for ids in run_bounded([_scan(p) for p in prefixes], self._config.max_concurrency):
            candidates.update(ids)
        logger.debug(
            "bbox %s on %s: %d prefixes, %d candidates", box, dataset, len(prefixes), len(candidates)
        )
        return candidates

    def filter_exact(
        self, records: Iterable[dict[str, Any]], bbox: Sequence[float]
    ) -> list[dict[str, Any]]:
        """Drop records whose stored extent does not intersect ``bbox``."""
        box = normalize_bbox(bbox)
        matches = []
        for record in records:
            if record.get("west") is None:
                continue
            extent = (record["west"], record["south"], record["east"], record["north"])
            if bbox_intersects(extent, box):
                matches.append(record)
        return matches
