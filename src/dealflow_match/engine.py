from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Iterable

from .config import AppConfig
from .errors import ExtractionError, IndexVersionError, InvalidInputError
from .extractor import (
    Embedder,
    FeatureExtractor,
    HashingEmbedder,
    SentenceTransformerEmbedder,
)
from .index import IndexManifest, IndexMetadata, VectorIndex
from .models import IngestReport, Signal
from .provider import HttpEmbeddingProvider
from .records import signal_from_record
from .service import MatchService, signal_metadata
from .store import SignalStore, StoredSignal, fingerprint
from .taxonomy import load_taxonomy

logger = logging.getLogger(__name__)

INDEX_FILE = "index.npz"


class Engine:
    """Owns the signal store, the index and the match service built on them.

    All writes go through one lock. Upserts land in the store before the
    index and removals leave the index first, so every id the index returns
    can be resolved in the store.
    """

    def __init__(
        self,
        config: AppConfig,
        extractor: FeatureExtractor,
        store: SignalStore,
        index: VectorIndex,
    ) -> None:
        self.config = config
        self.extractor = extractor
        self.store = store
        self.index = index
        self.service = MatchService(store, index, extractor, config.scoring)
        self._write_lock = threading.Lock()

    @property
    def manifest(self) -> IndexManifest:
        return self.index.manifest

    @property
    def data_dir(self) -> Path:
        return Path(self.config.store.data_dir).expanduser()

    def ingest(self, records: Iterable[Any], remove: Iterable[str] = ()) -> IngestReport:
        report = IngestReport()
        with self._write_lock:
            prepared: dict[str, StoredSignal] = {}
            for position, record in enumerate(records):
                try:
                    signal = signal_from_record(record)
                    prepared[signal.id] = self._prepare(signal, prepared.get(signal.id))
                except (InvalidInputError, ExtractionError) as exc:
                    report.rejected.append(
                        {"index": position, "id": _record_id(record), "reason": str(exc)}
                    )
                    logger.warning("Rejected signal record %d: %s", position, exc)
                    continue
                if signal.id not in report.accepted:
                    report.accepted.append(signal.id)

            items = list(prepared.values())
            self.store.upsert_many(items)
            self.index.upsert_many(
                (item.id, item.vector, self._metadata(item.signal)) for item in items
            )

            for signal_id in remove:
                if self._remove(signal_id):
                    report.removed.append(signal_id)

        logger.info(
            "Ingested batch: accepted=%d rejected=%d removed=%d total=%d",
            len(report.accepted),
            len(report.rejected),
            len(report.removed),
            len(self.store),
        )
        return report

    def remove(self, signal_id: str) -> bool:
        with self._write_lock:
            return self._remove(signal_id)

    def rebuild(self) -> int:
        with self._write_lock:
            items: list[StoredSignal] = []
            for stored in self.store:
                try:
                    items.append(self._extract(stored.signal))
                except ExtractionError as exc:
                    logger.error("Could not re-extract %s during rebuild: %s", stored.id, exc)
                    raise
            self.store.replace_all(items, self.manifest)
            count = self.index.replace_all(
                (item.id, item.vector, self._metadata(item.signal)) for item in items
            )
        logger.info("Rebuilt index with %d signals (%s)", count, self.manifest.embedder)
        return count

    def save(self) -> None:
        with self._write_lock:
            self.store.save(self.data_dir)
            self.index.save(self.data_dir / INDEX_FILE)

    def stats(self) -> dict[str, Any]:
        return {
            "signals": len(self.store),
            "indexed": len(self.index),
            "index": self.manifest.to_dict(),
        }

    def _prepare(self, signal: Signal, pending: StoredSignal | None) -> StoredSignal:
        existing = pending or self.store.get(signal.id)
        current = fingerprint(signal)
        if existing is not None and existing.fingerprint == current:
            return StoredSignal(signal=signal, features=existing.features, fingerprint=current)
        return self._extract(signal)

    def _extract(self, signal: Signal) -> StoredSignal:
        features = self.extractor.extract(signal.text, signal.category_codes)
        return StoredSignal(signal=signal, features=features, fingerprint=fingerprint(signal))

    def _metadata(self, signal: Signal) -> IndexMetadata:
        return signal_metadata(signal, self.extractor.taxonomy)

    def _remove(self, signal_id: str) -> bool:
        removed_from_index = self.index.remove(signal_id)
        removed_from_store = self.store.remove(signal_id)
        return removed_from_index or removed_from_store


def make_extractor(config: AppConfig) -> FeatureExtractor:
    taxonomy_path = config.extractor.taxonomy_path
    taxonomy = load_taxonomy(Path(taxonomy_path).expanduser() if taxonomy_path else None)
    embedder: Embedder
    if config.extractor.uses_provider:
        embedder = HttpEmbeddingProvider(config)
    elif config.extractor.embedder == "hashing":
        embedder = HashingEmbedder(config.extractor.dimensions)
    else:
        embedder = SentenceTransformerEmbedder(config.extractor.model)
    return FeatureExtractor(embedder=embedder, taxonomy=taxonomy)


def build_engine(config: AppConfig, extractor: FeatureExtractor | None = None) -> Engine:
    extractor = extractor or make_extractor(config)
    manifest = IndexManifest(
        embedder=extractor.embedder_name,
        dimensions=extractor.dimensions,
        taxonomy=extractor.taxonomy.digest,
    )
    data_dir = Path(config.store.data_dir).expanduser()

    store = SignalStore.load(data_dir, manifest)
    if store.manifest != manifest:
        engine = Engine(config, extractor, store, VectorIndex(manifest))
        logger.warning(
            "Stored features were built with %s; re-extracting %d signals under %s",
            store.manifest.embedder,
            len(store),
            manifest.embedder,
        )
        engine.rebuild()
        return engine

    index = _load_index(data_dir / INDEX_FILE, manifest, store, extractor)
    return Engine(config, extractor, store, index)


def _load_index(
    path: Path,
    manifest: IndexManifest,
    store: SignalStore,
    extractor: FeatureExtractor,
) -> VectorIndex:
    metadata = {
        stored.id: signal_metadata(stored.signal, extractor.taxonomy) for stored in store
    }
    if path.exists():
        try:
            index = VectorIndex.load(path, manifest, metadata)
        except IndexVersionError as exc:
            logger.warning("%s", exc)
        else:
            if set(index.ids) == set(metadata):
                logger.info("Loaded index with %d vectors from %s", len(index), path)
                return index
            logger.warning("Index at %s is out of sync with the signal store; rebuilding", path)

    index = VectorIndex(manifest)
    index.replace_all((stored.id, stored.vector, metadata[stored.id]) for stored in store)
    return index


def _record_id(record: Any) -> str | None:
    if isinstance(record, dict):
        value = record.get("id") or record.get("signal_id") or record.get("notice_id")
        return str(value) if value is not None else None
    return None
