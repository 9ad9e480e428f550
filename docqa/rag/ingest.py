"""Ingest pipeline for indexing both document sources.

Orchestrates:
- Document discovery through the connectors
- Normalization and chunking
- Embedding generation
- Index store updates and persistence
"""
from typing import Any, Callable, Dict, List, Optional

import structlog

from docqa import config
from docqa.connectors.docs_site import DocsSiteConnector
from docqa.connectors.drive import DriveConnector
from docqa.embedding_client import EmbeddingClient
from docqa.errors import IndexEmptyError
from docqa.rag import normalizer
from docqa.rag.chunker import GuideChunker, TextChunker, get_chunk_stats, validate_fragments
from docqa.rag.embeddings import EmbeddingGenerator
from docqa.rag.models import Fragment, SourceKind
from docqa.rag.store import IndexStore, read_guide_fragments, write_guide_chunks

logger = structlog.get_logger()

ProgressCallback = Callable[[int, int, str], None]


def _new_stats() -> Dict[str, Any]:
    return {
        "documents_found": 0,
        "documents_indexed": 0,
        "documents_failed": 0,
        "fragments_created": 0,
        "fragments_rejected": 0,
        "embeddings_generated": 0,
        "embeddings_failed": 0,
        "chunk_stats": get_chunk_stats([]),
    }


class IngestPipeline:
    """Pipeline for (re)indexing the document store and the documentation site."""

    def __init__(
        self,
        store: IndexStore,
        drive: DriveConnector = None,
        docs_site: DocsSiteConnector = None,
        embedding_client: EmbeddingClient = None,
        drive_chunker: TextChunker = None,
        guide_chunker: GuideChunker = None,
        drive_generator: EmbeddingGenerator = None,
        guide_generator: EmbeddingGenerator = None,
    ):
        """Initialize the ingest pipeline.

        Connectors, chunkers and generators default to instances built from
        config, sharing one embedding client.
        """
        self.store = store
        self.drive = drive or DriveConnector()
        self.docs_site = docs_site or DocsSiteConnector()

        client = embedding_client or EmbeddingClient()
        self.drive_chunker = drive_chunker or TextChunker(max_chunk_size=config.DRIVE_CHUNK_SIZE)
        self.guide_chunker = guide_chunker or GuideChunker()
        self.drive_generator = drive_generator or EmbeddingGenerator(
            client, batch_size=config.DRIVE_EMBED_BATCH_SIZE
        )
        self.guide_generator = guide_generator or EmbeddingGenerator(client)

        self.stats = _new_stats()

    async def index_drive(self, progress_callback: ProgressCallback = None) -> Dict[str, Any]:
        """Rebuild the document-store source from scratch and persist it.

        Raises:
            ConnectorError: If the document store cannot be listed
        """
        self.stats = _new_stats()
        logger.info("drive_index_started")

        documents = await self.drive.list_documents()
        self.stats["documents_found"] = len(documents)

        if not documents:
            logger.warning("no_drive_documents_found")
            return self.stats

        fragments: List[Fragment] = []
        for idx, document in enumerate(documents, 1):
            if progress_callback:
                progress_callback(idx, len(documents), document.name)

            content = await self.drive.get_content(document.id, document.mime_type)
            normalized = normalizer.from_drive(document, content)
            if normalized is None:
                self.stats["documents_failed"] += 1
                continue

            document_fragments = self.drive_chunker.chunk_document(normalized)
            fragments.extend(document_fragments)
            self.stats["documents_indexed"] += 1

            logger.debug(
                "drive_document_chunked",
                document_id=document.id,
                name=document.name,
                fragments=len(document_fragments),
            )

        valid = self._validate(fragments)
        run = await self.drive_generator.embed(valid)
        self._record_run(run)

        if valid:
            self.store.append_source(valid, run.embeddings)
        else:
            self.store.replace_source(SourceKind.DRIVE, [])
        self.store.save()

        logger.info("drive_index_completed", stats=self.stats)
        return self.stats

    async def index_guide(
        self,
        embed: bool = True,
        progress_callback: ProgressCallback = None,
    ) -> Dict[str, Any]:
        """Scrape the documentation site and refresh its source.

        Args:
            embed: Run the embedding pass right away; otherwise the guide is
                searchable through keyword scoring until embed_guide() runs
            progress_callback: Optional callback(current, total, title)

        Raises:
            ConnectorError: If page discovery fails
        """
        self.stats = _new_stats()
        logger.info("guide_index_started", embed=embed)

        pages = await self.docs_site.scrape_all()
        self.stats["documents_found"] = len(pages)

        if not pages:
            logger.warning("no_guide_pages_scraped")
            return self.stats

        fragments: List[Fragment] = []
        seen_ids: Dict[str, int] = {}
        for idx, page in enumerate(pages, 1):
            if progress_callback:
                progress_callback(idx, len(pages), page.title)

            document = normalizer.from_guide_page(page)

            # Pages sharing a title still need distinct document ids
            count = seen_ids.get(document.document_id, 0)
            seen_ids[document.document_id] = count + 1
            if count:
                document.document_id = f"{document.document_id}-{count + 1}"

            page_fragments = self.guide_chunker.chunk_document(document)
            if not page_fragments:
                self.stats["documents_failed"] += 1
                continue

            fragments.extend(page_fragments)
            self.stats["documents_indexed"] += 1

        valid = self._validate(fragments)
        write_guide_chunks(self.store.guide_chunks_path, valid)

        vectors: Dict[str, List[float]] = {}
        if embed:
            run = await self.guide_generator.embed(
                valid, output_path=self.store.guide_embeddings_path
            )
            self._record_run(run)
            vectors = run.embeddings
        elif self.store.guide_embeddings_path.exists():
            # Old vectors belong to the previous fragments
            self.store.guide_embeddings_path.unlink()
            logger.info("stale_guide_embeddings_removed")

        if valid:
            self.store.append_source(valid, vectors)
        else:
            self.store.replace_source(SourceKind.GUIDE, [])

        logger.info("guide_index_completed", stats=self.stats)
        return self.stats

    async def embed_guide(self) -> Dict[str, Any]:
        """Run the embedding pass over the persisted guide fragments.

        Raises:
            IndexEmptyError: If no guide fragments have been persisted
        """
        self.stats = _new_stats()

        fragments = read_guide_fragments(self.store.guide_chunks_path)
        if not fragments:
            raise IndexEmptyError("No guide fragments found. Run a guide index first.")

        self.stats["fragments_created"] = len(fragments)
        self.stats["chunk_stats"] = get_chunk_stats(fragments)

        run = await self.guide_generator.embed(
            fragments, output_path=self.store.guide_embeddings_path
        )
        self._record_run(run)
        self.store.append_source(fragments, run.embeddings)

        logger.info("guide_embedding_completed", stats=self.stats)
        return self.stats

    def _validate(self, fragments: List[Fragment]) -> List[Fragment]:
        valid, invalid = validate_fragments(fragments)
        self.stats["fragments_created"] = len(valid)
        self.stats["fragments_rejected"] = len(invalid)
        self.stats["chunk_stats"] = get_chunk_stats(valid)
        return valid

    def _record_run(self, run) -> None:
        self.stats["embeddings_generated"] = run.succeeded
        self.stats["embeddings_failed"] = run.failed
        self.stats["embedding_seconds"] = round(run.elapsed, 2)


def build_pipeline(store: Optional[IndexStore] = None) -> IngestPipeline:
    """Build a pipeline from config with a freshly loaded store."""
    if store is None:
        store = IndexStore()
        store.load()
    return IngestPipeline(store)
