"""In-memory cosine index over signal vectors.

Writers build a fresh immutable snapshot and swap it in with a single
reference assignment, so concurrent searches always see a complete index.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable, Mapping

import numpy as np

from .errors import IndexVersionError, InvalidArgumentError
from .models import Signal

logger = logging.getLogger(__name__)

METRIC = "cosine"
FORMAT_VERSION = 1


@dataclass(slots=True, frozen=True)
class IndexManifest:
    embedder: str
    dimensions: int
    taxonomy: str = ""
    metric: str = METRIC
    format_version: int = FORMAT_VERSION

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping) -> IndexManifest:
        return cls(
            embedder=str(data["embedder"]),
            dimensions=int(data["dimensions"]),
            taxonomy=str(data.get("taxonomy", "")),
            metric=str(data.get("metric", METRIC)),
            format_version=int(data.get("format_version", FORMAT_VERSION)),
        )


@dataclass(slots=True, frozen=True)
class IndexMetadata:
    agency: str | None = None
    categories: frozenset[str] = frozenset()
    source_type: str | None = None
    response_due_at: datetime | None = None

    @classmethod
    def from_signal(cls, signal: Signal, categories: Iterable[str] = ()) -> IndexMetadata:
        return cls(
            agency=signal.agency.upper() if signal.agency else None,
            categories=frozenset(signal.category_codes) | frozenset(categories),
            source_type=signal.source_type,
            response_due_at=signal.response_due_at,
        )


@dataclass(slots=True, frozen=True)
class SearchFilter:
    agencies: frozenset[str] = frozenset()
    categories: frozenset[str] = frozenset()
    source_types: frozenset[str] = frozenset()
    include_expired: bool = False
    as_of: datetime | None = None

    def matches(self, meta: IndexMetadata) -> bool:
        if self.agencies and (meta.agency or "") not in self.agencies:
            return False
        if self.categories and not (self.categories & meta.categories):
            return False
        if self.source_types and meta.source_type not in self.source_types:
            return False
        if (
            not self.include_expired
            and self.as_of is not None
            and meta.response_due_at is not None
            and meta.response_due_at < self.as_of
        ):
            return False
        return True


@dataclass(slots=True, frozen=True)
class _Snapshot:
    ids: tuple[str, ...] = ()
    matrix: np.ndarray = field(default_factory=lambda: np.zeros((0, 0), dtype=np.float32))
    metadata: tuple[IndexMetadata, ...] = ()
    positions: Mapping[str, int] = field(default_factory=dict)


class VectorIndex:
    def __init__(self, manifest: IndexManifest) -> None:
        if manifest.metric != METRIC:
            raise IndexVersionError(f"Unsupported similarity metric: {manifest.metric}")
        self.manifest = manifest
        self.generation = 0
        self._write_lock = threading.Lock()
        self._snapshot = _Snapshot(
            matrix=np.zeros((0, manifest.dimensions), dtype=np.float32)
        )

    def __len__(self) -> int:
        return len(self._snapshot.ids)

    def __contains__(self, signal_id: str) -> bool:
        return signal_id in self._snapshot.positions

    @property
    def ids(self) -> tuple[str, ...]:
        return self._snapshot.ids

    def ensure_compatible(self, manifest: IndexManifest) -> None:
        if manifest != self.manifest:
            raise IndexVersionError(
                f"Index built with {self.manifest.to_dict()} cannot accept {manifest.to_dict()}; "
                "a full rebuild is required"
            )

    def upsert(self, signal_id: str, vector: np.ndarray, metadata: IndexMetadata) -> None:
        self.upsert_many([(signal_id, vector, metadata)])

    def upsert_many(self, items: Iterable[tuple[str, np.ndarray, IndexMetadata]]) -> int:
        prepared = [
            (signal_id, self._check_vector(vector), metadata)
            for signal_id, vector, metadata in items
        ]
        if not prepared:
            return 0

        with self._write_lock:
            current = self._snapshot
            ids = list(current.ids)
            metadata = list(current.metadata)
            matrix = current.matrix.copy()
            positions = dict(current.positions)
            appended: list[np.ndarray] = []

            for signal_id, vector, meta in prepared:
                position = positions.get(signal_id)
                if position is None:
                    positions[signal_id] = len(ids)
                    ids.append(signal_id)
                    metadata.append(meta)
                    appended.append(vector)
                elif position < len(matrix):
                    matrix[position] = vector
                    metadata[position] = meta
                else:
                    appended[position - len(matrix)] = vector
                    metadata[position] = meta

            if appended:
                matrix = np.vstack([matrix, np.stack(appended)])
            self._swap(ids, matrix, metadata, positions)
        return len(prepared)

    def replace_all(self, items: Iterable[tuple[str, np.ndarray, IndexMetadata]]) -> int:
        prepared = {
            signal_id: (self._check_vector(vector), metadata)
            for signal_id, vector, metadata in items
        }
        ids = sorted(prepared)
        matrix = (
            np.stack([prepared[signal_id][0] for signal_id in ids])
            if ids
            else np.zeros((0, self.manifest.dimensions), dtype=np.float32)
        )
        with self._write_lock:
            self._swap(
                ids,
                matrix,
                [prepared[signal_id][1] for signal_id in ids],
                {signal_id: position for position, signal_id in enumerate(ids)},
            )
        return len(ids)

    def remove(self, signal_id: str) -> bool:
        with self._write_lock:
            current = self._snapshot
            position = current.positions.get(signal_id)
            if position is None:
                return False
            ids = list(current.ids)
            metadata = list(current.metadata)
            del ids[position]
            del metadata[position]
            matrix = np.delete(current.matrix, position, axis=0)
            positions = {identifier: index for index, identifier in enumerate(ids)}
            self._swap(ids, matrix, metadata, positions)
        return True

    def search(
        self,
        vector: np.ndarray,
        k: int,
        search_filter: SearchFilter | None = None,
    ) -> list[tuple[str, float]]:
        if not isinstance(k, int) or isinstance(k, bool) or k <= 0:
            raise InvalidArgumentError(f"k must be a positive integer, got {k!r}")
        query = self._check_vector(vector)

        snapshot = self._snapshot
        if not snapshot.ids:
            return []

        if search_filter is None:
            eligible = list(range(len(snapshot.ids)))
        else:
            eligible = [
                position
                for position, meta in enumerate(snapshot.metadata)
                if search_filter.matches(meta)
            ]
        if not eligible:
            return []

        norm = float(np.linalg.norm(query))
        if norm == 0.0:
            similarities = np.zeros(len(eligible), dtype=np.float32)
        else:
            similarities = snapshot.matrix[eligible] @ (query / norm)

        ranked = sorted(
            zip(eligible, similarities.tolist()),
            key=lambda item: (-item[1], snapshot.ids[item[0]]),
        )
        return [(snapshot.ids[position], float(score)) for position, score in ranked[:k]]

    def vector(self, signal_id: str) -> np.ndarray | None:
        snapshot = self._snapshot
        position = snapshot.positions.get(signal_id)
        if position is None:
            return None
        return snapshot.matrix[position]

    def save(self, path: Path) -> None:
        snapshot = self._snapshot
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("wb") as handle:
            np.savez(
                handle,
                ids=np.array(snapshot.ids, dtype=str),
                matrix=snapshot.matrix,
                manifest=np.array(json.dumps(self.manifest.to_dict(), sort_keys=True)),
            )
        logger.info("Saved index with %d vectors to %s", len(snapshot.ids), path)

    @classmethod
    def load(
        cls,
        path: Path,
        expected: IndexManifest,
        metadata: Mapping[str, IndexMetadata],
    ) -> VectorIndex:
        with np.load(path, allow_pickle=False) as data:
            stored = IndexManifest.from_dict(json.loads(str(data["manifest"])))
            ids = [str(identifier) for identifier in data["ids"].tolist()]
            matrix = np.asarray(data["matrix"], dtype=np.float32)

        if stored != expected:
            raise IndexVersionError(
                f"Index at {path} was built with {stored.to_dict()}, "
                f"expected {expected.to_dict()}; a full rebuild is required"
            )

        index = cls(expected)
        items = []
        for position, signal_id in enumerate(ids):
            meta = metadata.get(signal_id)
            if meta is None:
                logger.warning("Dropping indexed vector %s with no stored signal", signal_id)
                continue
            items.append((signal_id, matrix[position], meta))
        index.replace_all(items)
        return index

    def _check_vector(self, vector: np.ndarray) -> np.ndarray:
        array = np.asarray(vector, dtype=np.float32)
        if array.shape != (self.manifest.dimensions,):
            raise InvalidArgumentError(
                f"Vector shape {array.shape} does not match index dimensions "
                f"({self.manifest.dimensions},)"
            )
        return array

    def _swap(
        self,
        ids: list[str],
        matrix: np.ndarray,
        metadata: list[IndexMetadata],
        positions: dict[str, int],
    ) -> None:
        self._snapshot = _Snapshot(
            ids=tuple(ids),
            matrix=matrix,
            metadata=tuple(metadata),
            positions=positions,
        )
        self.generation += 1
