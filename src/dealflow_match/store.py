from __future__ import annotations

import hashlib
import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

import numpy as np

from .extractor import Features
from .index import IndexManifest
from .models import Signal
from .records import signal_from_record, signal_to_record

logger = logging.getLogger(__name__)

SIGNALS_FILE = "signals.json"
VECTORS_FILE = "signal_vectors.npz"


@dataclass(slots=True, frozen=True)
class StoredSignal:
    signal: Signal
    features: Features
    fingerprint: str

    @property
    def id(self) -> str:
        return self.signal.id

    @property
    def terms(self) -> frozenset[str]:
        return self.features.terms

    @property
    def vector(self) -> np.ndarray:
        return self.features.vector


def fingerprint(signal: Signal) -> str:
    payload = "\x1f".join([signal.title, signal.description, *signal.category_codes])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class SignalStore:
    def __init__(self, manifest: IndexManifest) -> None:
        self.manifest = manifest
        self._records: dict[str, StoredSignal] = {}
        self._write_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, signal_id: str) -> bool:
        return signal_id in self._records

    def __iter__(self) -> Iterator[StoredSignal]:
        records = self._records
        return iter([records[key] for key in sorted(records)])

    def get(self, signal_id: str) -> StoredSignal | None:
        return self._records.get(signal_id)

    def needs_extraction(self, signal: Signal) -> bool:
        current = self._records.get(signal.id)
        return current is None or current.fingerprint != fingerprint(signal)

    def upsert(self, stored: StoredSignal) -> None:
        self.upsert_many([stored])

    def upsert_many(self, items: list[StoredSignal]) -> None:
        for stored in items:
            if stored.fingerprint != fingerprint(stored.signal):
                raise ValueError(f"Features for {stored.id} are stale; re-extract before storing")
        with self._write_lock:
            records = dict(self._records)
            for stored in items:
                records[stored.id] = stored
            self._records = records

    def replace_all(self, items: list[StoredSignal], manifest: IndexManifest) -> None:
        with self._write_lock:
            self._records = {item.id: item for item in items}
            self.manifest = manifest

    def remove(self, signal_id: str) -> bool:
        with self._write_lock:
            if signal_id not in self._records:
                return False
            records = dict(self._records)
            del records[signal_id]
            self._records = records
        return True

    def save(self, directory: Path) -> None:
        directory.mkdir(parents=True, exist_ok=True)
        items = list(self)
        payload = {
            "manifest": self.manifest.to_dict(),
            "signals": [
                {
                    "record": signal_to_record(item.signal),
                    "terms": sorted(item.terms),
                    "categories": sorted(item.features.categories),
                    "fingerprint": item.fingerprint,
                }
                for item in items
            ],
        }
        (directory / SIGNALS_FILE).write_text(json.dumps(payload, indent=2, sort_keys=True))

        matrix = (
            np.stack([item.vector for item in items])
            if items
            else np.zeros((0, self.manifest.dimensions), dtype=np.float32)
        )
        with (directory / VECTORS_FILE).open("wb") as handle:
            np.savez(handle, ids=np.array([item.id for item in items], dtype=str), matrix=matrix)
        logger.info("Saved %d signals to %s", len(items), directory)

    @classmethod
    def load(cls, directory: Path, manifest: IndexManifest) -> SignalStore:
        """Load a saved store, or an empty one when nothing usable is on disk.

        Stored features are kept only when they were produced under
        ``manifest``; otherwise the caller is expected to re-extract.
        """
        store = cls(manifest)
        signals_path = directory / SIGNALS_FILE
        vectors_path = directory / VECTORS_FILE
        if not signals_path.exists() or not vectors_path.exists():
            return store

        try:
            data = json.loads(signals_path.read_text())
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring unreadable signal store %s: %s", signals_path, exc)
            return store

        raw_manifest = data.get("manifest") if isinstance(data, dict) else None
        if not isinstance(raw_manifest, dict):
            logger.warning("Ignoring signal store %s without a manifest", signals_path)
            return store
        store.manifest = IndexManifest.from_dict(raw_manifest)
        try:
            with np.load(vectors_path, allow_pickle=False) as arrays:
                vectors = {
                    str(identifier): np.asarray(row, dtype=np.float32)
                    for identifier, row in zip(arrays["ids"].tolist(), arrays["matrix"])
                }
        except (OSError, ValueError, EOFError, KeyError) as exc:
            logger.warning("Ignoring unreadable signal vectors %s: %s", vectors_path, exc)
            return cls(manifest)

        records: dict[str, StoredSignal] = {}
        for item in data.get("signals", []):
            signal = signal_from_record(item["record"])
            vector = vectors.get(signal.id)
            if vector is None:
                logger.warning("Signal %s has no stored vector; skipping", signal.id)
                continue
            features = Features(
                vector=vector,
                terms=frozenset(item.get("terms", [])),
                categories=frozenset(item.get("categories", [])),
            )
            records[signal.id] = StoredSignal(
                signal=signal, features=features, fingerprint=item["fingerprint"]
            )
        store._records = records
        logger.info("Loaded %d signals from %s", len(records), directory)
        return store
