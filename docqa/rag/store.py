"""Persistent index store for fragments and their embeddings.

Handles:
- Loading the drive artifact (fragments with inline vectors)
- Loading the guide artifacts (fragments and an optional embeddings file)
- Whole-source replacement and independent source refresh
- Copy-on-write snapshots with per-source FAISS tables for search
"""
import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import faiss
import numpy as np
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from docqa import config
from docqa.rag.models import (
    FRAGMENT_TYPES,
    Fragment,
    GuideFragment,
    IndexEntry,
    SourceKind,
)

logger = structlog.get_logger()


class FragmentRecord(BaseModel):
    """On-disk form of a fragment."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    content: str
    document_id: str = Field(alias="documentId")
    document_name: str = Field(alias="documentName")
    position: int
    total_fragments: int = Field(alias="totalFragments")
    source: SourceKind
    parent_group: Optional[str] = Field(default=None, alias="parentGroup")
    url: Optional[str] = None
    section: Optional[str] = None
    topics: List[str] = Field(default_factory=list)
    word_count: Optional[int] = Field(default=None, alias="wordCount")


class IndexArtifact(BaseModel):
    """One source's fragments with positionally aligned vectors."""

    model_config = ConfigDict(populate_by_name=True)

    fragments: List[FragmentRecord] = Field(default_factory=list)
    vectors: List[List[float]] = Field(default_factory=list)
    indexed_at: Optional[str] = Field(default=None, alias="indexedAt")
    total_documents: int = Field(default=0, alias="totalDocuments")


class EmbeddingsMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    model: str
    dimensions: int = Field(alias="embeddingDimensions")
    generated_at: str = Field(alias="generatedAt")
    total_chunks: int = Field(default=0, alias="totalChunks")
    successful_embeddings: int = Field(default=0, alias="successfulEmbeddings")


class EmbeddingsArtifact(BaseModel):
    """Embeddings keyed by fragment id with a metadata header."""

    metadata: EmbeddingsMetadata
    embeddings: Dict[str, List[float]] = Field(default_factory=dict)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def fragment_to_record(fragment: Fragment) -> FragmentRecord:
    extras: Dict[str, Any] = {}
    if isinstance(fragment, GuideFragment):
        extras = {
            "url": fragment.url,
            "section": fragment.section,
            "topics": list(fragment.topics),
            "word_count": fragment.word_count,
        }
    return FragmentRecord(
        id=fragment.id,
        content=fragment.content,
        document_id=fragment.document_id,
        document_name=fragment.document_name,
        position=fragment.position,
        total_fragments=fragment.total_fragments,
        source=fragment.source_kind,
        parent_group=fragment.parent_group,
        **extras,
    )


def record_to_fragment(record: FragmentRecord) -> Fragment:
    fields = dict(
        id=record.id,
        content=record.content,
        document_id=record.document_id,
        document_name=record.document_name,
        position=record.position,
        total_fragments=record.total_fragments,
        parent_group=record.parent_group,
    )
    if record.source is SourceKind.GUIDE:
        fields.update(
            url=record.url or "",
            section=record.section or "",
            topics=list(record.topics),
            word_count=record.word_count or len(record.content.split()),
        )
    return FRAGMENT_TYPES[record.source](**fields)


def _to_vector(values: Optional[Sequence[float]]) -> Optional[np.ndarray]:
    if not values:
        return None
    return np.asarray(values, dtype=np.float32)


def _write_json(path: Path, model: BaseModel) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(model.model_dump_json(by_alias=True, indent=2))


def _read_json(path: Path, model_type: type) -> Optional[BaseModel]:
    """Read and validate an artifact.

    Returns None when the file is missing, unreadable or malformed.
    """
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return model_type.model_validate(data)
    except (OSError, ValueError, ValidationError) as e:
        logger.error(
            "index_artifact_unreadable",
            path=str(path),
            error=str(e),
            error_type=type(e).__name__,
        )
        return None


def write_guide_chunks(path: Path, fragments: Sequence[Fragment]) -> None:
    """Persist guide fragments without vectors."""
    artifact = IndexArtifact(
        fragments=[fragment_to_record(f) for f in fragments],
        vectors=[],
        indexed_at=utc_now(),
        total_documents=len({f.document_id for f in fragments}),
    )
    _write_json(path, artifact)
    logger.info("guide_chunks_saved", path=str(path), count=len(fragments))


def write_embeddings(
    path: Path,
    embeddings: Mapping[str, Sequence[float]],
    model: str,
    total_chunks: int,
) -> None:
    """Persist an embeddings-only artifact, replacing any previous file."""
    dimensions = len(next(iter(embeddings.values()))) if embeddings else 0
    artifact = EmbeddingsArtifact(
        metadata=EmbeddingsMetadata(
            model=model,
            dimensions=dimensions,
            generated_at=utc_now(),
            total_chunks=total_chunks,
            successful_embeddings=len(embeddings),
        ),
        embeddings={key: list(map(float, value)) for key, value in embeddings.items()},
    )
    _write_json(path, artifact)
    logger.info("embeddings_saved", path=str(path), count=len(embeddings), model=model)


def read_guide_fragments(path: Path) -> List[Fragment]:
    """Load guide fragments from their chunks artifact (empty if unavailable)."""
    artifact = _read_json(path, IndexArtifact)
    if artifact is None:
        return []
    return [record_to_fragment(record) for record in artifact.fragments]


@dataclass
class VectorTable:
    """Exact inner-product index over one source's normalized embeddings."""

    index: faiss.Index
    entries: List[IndexEntry]
    dimension: int

    @classmethod
    def build(cls, entries: Sequence[IndexEntry]) -> Optional["VectorTable"]:
        """Build a table from embedded entries sharing the dominant dimension.

        Zero vectors cannot be normalized and are left out.
        """
        if not entries:
            return None

        dimensions = [entry.embedding.shape[0] for entry in entries]
        dimension = max(set(dimensions), key=dimensions.count)

        kept = []
        rows = []
        for entry in entries:
            vector = entry.embedding
            norm = float(np.linalg.norm(vector))
            if vector.shape[0] != dimension or norm == 0.0:
                continue
            kept.append(entry)
            rows.append(vector / norm)

        if not kept:
            return None

        if len(kept) < len(entries):
            logger.warning(
                "embeddings_excluded_from_table",
                excluded=len(entries) - len(kept),
                dimension=dimension,
            )

        index = faiss.IndexFlatIP(dimension)
        index.add(np.vstack(rows).astype(np.float32))
        return cls(index=index, entries=kept, dimension=dimension)

    def search(self, query: np.ndarray, top_k: int) -> List[Tuple[IndexEntry, float]]:
        """Return (entry, cosine similarity) pairs, most similar first."""
        top_k = min(top_k, self.index.ntotal)
        if top_k <= 0:
            return []

        norm = float(np.linalg.norm(query))
        if norm == 0.0:
            return []
        query_vector = (query / norm).astype(np.float32).reshape(1, -1)

        scores, positions = self.index.search(query_vector, top_k)
        return [
            (self.entries[position], float(np.clip(score, -1.0, 1.0)))
            for score, position in zip(scores[0].tolist(), positions[0].tolist())
            if position >= 0
        ]


@dataclass
class IndexSnapshot:
    """Immutable view of the index at one point in time."""

    entries: Tuple[IndexEntry, ...] = ()
    indexed_times: Dict[SourceKind, str] = field(default_factory=dict)
    _tables: Dict[SourceKind, Optional[VectorTable]] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def indexed_at(self) -> Optional[str]:
        """Most recent refresh across sources."""
        return max(self.indexed_times.values(), default=None)

    def by_source(self, kind: SourceKind) -> List[IndexEntry]:
        return [entry for entry in self.entries if entry.fragment.source_kind is kind]

    def sources(self) -> List[SourceKind]:
        return [kind for kind in SourceKind if self.by_source(kind)]

    def vector_table(self, kind: SourceKind) -> Optional[VectorTable]:
        """Lazily built FAISS table for a source's embedded fragments."""
        with self._lock:
            if kind not in self._tables:
                embedded = [e for e in self.by_source(kind) if e.has_embedding]
                self._tables[kind] = VectorTable.build(embedded)
            return self._tables[kind]


class IndexStore:
    """Fragments and embeddings for every source, persisted as JSON artifacts.

    Mutations are serialized by a single-writer lock and publish a new
    snapshot, so a search holding the previous snapshot stays consistent.
    """

    def __init__(
        self,
        index_path: Path = None,
        guide_chunks_path: Path = None,
        guide_embeddings_path: Path = None,
    ):
        """Initialize the store.

        Args:
            index_path: Drive artifact path (default from config)
            guide_chunks_path: Guide fragments artifact path (default from config)
            guide_embeddings_path: Guide embeddings artifact path (default from config)
        """
        self.index_path = Path(index_path or config.VECTOR_INDEX_PATH)
        self.guide_chunks_path = Path(guide_chunks_path or config.GUIDE_CHUNKS_PATH)
        self.guide_embeddings_path = Path(
            guide_embeddings_path or config.GUIDE_EMBEDDINGS_PATH
        )

        self._write_lock = threading.RLock()
        self._snapshot = IndexSnapshot()

        logger.info(
            "index_store_initialized",
            index_path=str(self.index_path),
            guide_chunks_path=str(self.guide_chunks_path),
        )

    def snapshot(self) -> IndexSnapshot:
        return self._snapshot

    def entries(self, kind: SourceKind = None) -> List[IndexEntry]:
        snapshot = self._snapshot
        if kind is None:
            return list(snapshot.entries)
        return snapshot.by_source(kind)

    def _publish(
        self, entries: Sequence[IndexEntry], indexed_times: Mapping[SourceKind, str]
    ) -> None:
        self._snapshot = IndexSnapshot(entries=tuple(entries), indexed_times=dict(indexed_times))

    def load(self) -> None:
        """Rebuild the in-memory index from the persisted artifacts.

        A missing or malformed artifact counts as an empty source.
        """
        with self._write_lock:
            drive_entries, drive_indexed_at = self._load_drive()
            guide_entries, guide_indexed_at = self._load_guide()

            indexed_times = {
                kind: ts
                for kind, ts in (
                    (SourceKind.DRIVE, drive_indexed_at),
                    (SourceKind.GUIDE, guide_indexed_at),
                )
                if ts
            }
            self._publish(drive_entries + guide_entries, indexed_times)

        logger.info(
            "index_loaded",
            drive_fragments=len(drive_entries),
            guide_fragments=len(guide_entries),
            embedded=sum(1 for e in self._snapshot.entries if e.has_embedding),
            indexed_at=self._snapshot.indexed_at,
        )

    def _load_drive(self) -> Tuple[List[IndexEntry], Optional[str]]:
        artifact = _read_json(self.index_path, IndexArtifact)
        if artifact is None:
            return [], None

        fragments = [record_to_fragment(record) for record in artifact.fragments]
        vectors = list(artifact.vectors)

        if vectors and len(vectors) != len(fragments):
            logger.warning(
                "index_vector_count_mismatch",
                path=str(self.index_path),
                fragments=len(fragments),
                vectors=len(vectors),
            )

        # Pad so fragments[i] always pairs with vectors[i]
        vectors = (vectors + [[]] * len(fragments))[: len(fragments)]
        entries = [
            IndexEntry(fragment=fragment, embedding=_to_vector(vector))
            for fragment, vector in zip(fragments, vectors)
        ]
        return entries, artifact.indexed_at

    def _load_guide(self) -> Tuple[List[IndexEntry], Optional[str]]:
        artifact = _read_json(self.guide_chunks_path, IndexArtifact)
        if artifact is None:
            return [], None

        fragments = [record_to_fragment(record) for record in artifact.fragments]

        embeddings: Dict[str, List[float]] = {}
        embeddings_artifact = _read_json(self.guide_embeddings_path, EmbeddingsArtifact)
        if embeddings_artifact is not None:
            embeddings = embeddings_artifact.embeddings
            logger.info(
                "guide_embeddings_loaded",
                count=len(embeddings),
                model=embeddings_artifact.metadata.model,
                dimensions=embeddings_artifact.metadata.dimensions,
            )

        entries = [
            IndexEntry(fragment=fragment, embedding=_to_vector(embeddings.get(fragment.id)))
            for fragment in fragments
        ]
        return entries, artifact.indexed_at

    def save(self) -> None:
        """Persist the drive source; other sources are persisted by their generators."""
        with self._write_lock:
            drive_entries = self._snapshot.by_source(SourceKind.DRIVE)
            artifact = IndexArtifact(
                fragments=[fragment_to_record(e.fragment) for e in drive_entries],
                vectors=[
                    e.embedding.tolist() if e.has_embedding else []
                    for e in drive_entries
                ],
                indexed_at=self._snapshot.indexed_times.get(SourceKind.DRIVE) or utc_now(),
                total_documents=len({e.fragment.document_id for e in drive_entries}),
            )
            _write_json(self.index_path, artifact)

        logger.info(
            "index_saved",
            path=str(self.index_path),
            fragments=len(drive_entries),
        )

    def clear(self) -> None:
        """Empty every source and persist the empty state."""
        with self._write_lock:
            self._publish([], {})
            _write_json(self.index_path, IndexArtifact(indexed_at=utc_now()))
            _write_json(self.guide_chunks_path, IndexArtifact(indexed_at=utc_now()))
            if self.guide_embeddings_path.exists():
                self.guide_embeddings_path.unlink()

        logger.warning("index_cleared", index_path=str(self.index_path))

    def replace_source(self, kind: SourceKind, entries: Sequence[IndexEntry]) -> None:
        """Swap in a freshly indexed source, keeping the others."""
        for entry in entries:
            if entry.fragment.source_kind is not kind:
                raise ValueError(
                    f"Fragment {entry.fragment.id} is {entry.fragment.source_kind.value}, "
                    f"expected {kind.value}"
                )

        with self._write_lock:
            snapshot = self._snapshot
            kept = [e for e in snapshot.entries if e.fragment.source_kind is not kind]
            indexed_times = dict(snapshot.indexed_times)
            indexed_times[kind] = utc_now()
            self._publish(kept + list(entries), indexed_times)

        logger.info("source_replaced", source=kind.value, fragments=len(entries))

    def append_source(
        self,
        fragments: Sequence[Fragment],
        vectors: Mapping[str, Sequence[float]] = None,
    ) -> None:
        """Refresh one source from fragments and an optional id -> vector map.

        Existing fragments of the same source are replaced, so refreshing a
        source twice does not duplicate it.
        """
        if not fragments:
            logger.info("append_source_skipped_empty")
            return

        kinds = {f.source_kind for f in fragments}
        if len(kinds) != 1:
            raise ValueError("append_source expects fragments from a single source")

        vectors = vectors or {}
        entries = [
            IndexEntry(fragment=f, embedding=_to_vector(vectors.get(f.id)))
            for f in fragments
        ]
        self.replace_source(kinds.pop(), entries)

    def status(self) -> Dict[str, Any]:
        """Get statistics about the index."""
        snapshot = self._snapshot
        sources = {}
        for kind in SourceKind:
            entries = snapshot.by_source(kind)
            sources[kind.value] = {
                "fragments": len(entries),
                "embedded": sum(1 for e in entries if e.has_embedding),
                "documents": len({e.fragment.document_id for e in entries}),
            }

        return {
            "is_indexed": len(snapshot) > 0,
            "total_fragments": len(snapshot),
            "indexed_at": snapshot.indexed_at,
            "sources": sources,
            "index_path": str(self.index_path),
            "guide_chunks_path": str(self.guide_chunks_path),
            "guide_embeddings_path": str(self.guide_embeddings_path),
        }
