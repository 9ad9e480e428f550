"""Text chunking for the retrieval pipeline.

Implements character-based chunking to avoid tokenizer dependencies:
- Sentence accumulation for document-store files (small fragments)
- Sentence accumulation with a character-window fallback for scraped pages
"""
import math
import re
from collections import Counter
from typing import List, Sequence, Tuple

import structlog

from docqa import config
from docqa.rag.models import DriveFragment, Fragment, GuideFragment, fragment_id
from docqa.rag.normalizer import NormalizedDocument, extract_topics

logger = structlog.get_logger()

_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")
_UNSAFE_CHARS = re.compile(r"[^\w\s.!?,'-]")


def normalize_text(text: str) -> str:
    """Strip characters that upset tokenizers and collapse whitespace."""
    if not text:
        return ""
    return " ".join(_UNSAFE_CHARS.sub(" ", text).split())


def split_sentences(text: str) -> List[str]:
    """Split normalized text after sentence-ending punctuation."""
    return [sentence for sentence in _SENTENCE_BREAK.split(text) if sentence]


class TextChunker:
    """Sentence-respecting chunker producing document-store fragments."""

    def __init__(
        self,
        max_chunk_size: int = None,
        min_chunk_size: int = None,
    ):
        """Initialize the text chunker.

        Args:
            max_chunk_size: Maximum fragment size in characters (default from config)
            min_chunk_size: Fragments shorter than this are dropped (default from config)
        """
        self.max_chunk_size = max_chunk_size or config.DRIVE_CHUNK_SIZE
        self.min_chunk_size = (
            config.MIN_CHUNK_SIZE if min_chunk_size is None else min_chunk_size
        )

        if self.min_chunk_size >= self.max_chunk_size:
            raise ValueError(
                f"Minimum size ({self.min_chunk_size}) must be less than "
                f"maximum size ({self.max_chunk_size})"
            )

        logger.debug(
            "chunker_initialized",
            chunker=type(self).__name__,
            max_chunk_size=self.max_chunk_size,
            min_chunk_size=self.min_chunk_size,
        )

    def split(self, text: str) -> List[str]:
        """Split text into fragment contents, in reading order.

        Args:
            text: Raw document text

        Returns:
            Normalized fragment strings no shorter than min_chunk_size
        """
        normalized = normalize_text(text)
        if not normalized:
            return []

        pieces = self._pack_sentences(split_sentences(normalized))
        return self._drop_short(pieces)

    def chunk(
        self,
        document_id: str,
        document_name: str,
        text: str,
        parent_group: str = None,
    ) -> List[Fragment]:
        """Split a document into fragments linked back to it.

        Positions are dense and zero-based after short pieces are dropped.
        """
        pieces = self.split(text)
        fragments = [
            DriveFragment(
                id=fragment_id(document_id, position),
                content=content,
                document_id=document_id,
                document_name=document_name,
                position=position,
                total_fragments=len(pieces),
                parent_group=parent_group,
            )
            for position, content in enumerate(pieces)
        ]

        logger.debug(
            "document_chunked",
            document_id=document_id,
            text_length=len(text or ""),
            fragment_count=len(fragments),
        )
        return fragments

    def chunk_document(self, document: NormalizedDocument) -> List[Fragment]:
        """Chunk a normalized document."""
        return self.chunk(
            document.document_id,
            document.name,
            document.text,
            document.parent_group,
        )

    def _pack_sentences(self, sentences: Sequence[str]) -> List[str]:
        """Accumulate sentences into buffers no larger than max_chunk_size.

        The sentence that would overflow the buffer starts the next one.
        """
        pieces = []
        buffer = ""

        for sentence in sentences:
            for part in self._split_long_sentence(sentence):
                candidate = f"{buffer} {part}" if buffer else part
                if len(candidate) > self.max_chunk_size and buffer:
                    pieces.append(buffer)
                    buffer = part
                else:
                    buffer = candidate

        if buffer:
            pieces.append(buffer)

        return pieces

    def _split_long_sentence(self, sentence: str) -> List[str]:
        """Break a sentence longer than max_chunk_size on word boundaries."""
        if len(sentence) <= self.max_chunk_size:
            return [sentence]

        parts = []
        current = ""
        for word in sentence.split(" "):
            # A single word can exceed the limit; hard-cut it
            while len(word) > self.max_chunk_size:
                if current:
                    parts.append(current)
                    current = ""
                parts.append(word[: self.max_chunk_size])
                word = word[self.max_chunk_size:]
            if not word:
                continue
            candidate = f"{current} {word}" if current else word
            if len(candidate) > self.max_chunk_size:
                parts.append(current)
                current = word
            else:
                current = candidate

        if current:
            parts.append(current)
        return parts

    def _drop_short(self, pieces: Sequence[str]) -> List[str]:
        kept = [piece.strip() for piece in pieces if len(piece.strip()) >= self.min_chunk_size]
        if len(kept) < len(pieces):
            logger.debug("short_fragments_dropped", dropped=len(pieces) - len(kept))
        return kept


class GuideChunker(TextChunker):
    """Chunker for scraped documentation pages.

    Uses sentence accumulation when the page has sentence structure and
    falls back to overlapping character windows otherwise.
    """

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
        lookahead: int = None,
        min_chunk_size: int = None,
    ):
        """Initialize the guide chunker.

        Args:
            chunk_size: Window and maximum sentence-buffer size (default from config)
            chunk_overlap: Overlap between consecutive windows (default from config)
            lookahead: How far past a window end to look for a sentence break
            min_chunk_size: Fragments shorter than this are dropped
        """
        super().__init__(
            max_chunk_size=chunk_size or config.GUIDE_CHUNK_SIZE,
            min_chunk_size=min_chunk_size,
        )
        self.chunk_size = self.max_chunk_size
        self.chunk_overlap = (
            config.GUIDE_CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        )
        self.lookahead = config.GUIDE_BOUNDARY_LOOKAHEAD if lookahead is None else lookahead

        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

    def split(self, text: str) -> List[str]:
        normalized = normalize_text(text)
        if not normalized:
            return []

        if len(normalized) <= self.chunk_size:
            return self._drop_short([normalized])

        sentences = split_sentences(normalized)
        if self._has_sentence_structure(sentences):
            pieces = self._pack_sentences(sentences)
        else:
            pieces = self._window_chunks(normalized)

        return self._drop_short(pieces)

    def chunk_document(self, document: NormalizedDocument) -> List[Fragment]:
        pieces = self.split(document.text)
        fragments = []
        for position, content in enumerate(pieces):
            fragments.append(
                GuideFragment(
                    id=fragment_id(document.document_id, position),
                    content=content,
                    document_id=document.document_id,
                    document_name=document.name,
                    position=position,
                    total_fragments=len(pieces),
                    parent_group=document.parent_group,
                    url=document.url,
                    section=document.section or document.name,
                    topics=extract_topics(document.sections, content),
                    word_count=len(content.split()),
                )
            )

        logger.debug(
            "page_chunked",
            document_id=document.document_id,
            text_length=len(document.text),
            fragment_count=len(fragments),
        )
        return fragments

    def _has_sentence_structure(self, sentences: Sequence[str]) -> bool:
        return len(sentences) > 1 and max(len(s) for s in sentences) <= self.chunk_size

    def _window_chunks(self, text: str) -> List[str]:
        """Overlapping character windows extended to the next sentence break.

        Iterations are capped at ceil(len / (chunk_size - overlap)) + 10.
        """
        text_length = len(text)
        step = self.chunk_size - self.chunk_overlap
        max_iterations = math.ceil(text_length / step) + 10

        pieces = []
        start = 0
        iterations = 0

        while start < text_length and iterations < max_iterations:
            iterations += 1
            end = min(start + self.chunk_size, text_length)

            if end < text_length:
                end = self._extend_to_sentence_end(text, end)

            pieces.append(text[start:end].strip())

            if end >= text_length:
                break
            start = end - self.chunk_overlap

        if iterations >= max_iterations:
            logger.warning(
                "window_chunking_iteration_cap_reached",
                text_length=text_length,
                max_iterations=max_iterations,
            )

        return pieces

    def _extend_to_sentence_end(self, text: str, end: int) -> int:
        boundary = text.find(". ", end)
        if boundary != -1 and boundary < end + self.lookahead:
            return boundary + 1
        return end


def validate_fragments(
    fragments: Sequence[Fragment],
    min_chars: int = None,
    max_chars: int = None,
) -> Tuple[List[Fragment], List[Fragment]]:
    """Separate fragments whose content length is within bounds.

    Returns:
        Tuple of (valid, invalid) fragments
    """
    min_chars = config.MIN_FRAGMENT_CHARS if min_chars is None else min_chars
    max_chars = config.MAX_FRAGMENT_CHARS if max_chars is None else max_chars

    valid, invalid = [], []
    for fragment in fragments:
        if min_chars <= len(fragment.content) <= max_chars:
            valid.append(fragment)
        else:
            invalid.append(fragment)

    if invalid:
        logger.warning(
            "fragments_out_of_bounds",
            invalid=len(invalid),
            valid=len(valid),
            min_chars=min_chars,
            max_chars=max_chars,
        )

    return valid, invalid


def get_chunk_stats(fragments: Sequence[Fragment]) -> dict:
    """Get statistics about a set of fragments.

    Args:
        fragments: Fragments from any source

    Returns:
        Dictionary with fragment statistics
    """
    if not fragments:
        return {
            "chunk_count": 0,
            "total_chars": 0,
            "avg_chunk_size": 0,
            "min_chunk_size": 0,
            "max_chunk_size": 0,
            "source_breakdown": {},
        }

    sizes = [len(f.content) for f in fragments]
    breakdown = Counter(f.source_kind.value for f in fragments)

    return {
        "chunk_count": len(fragments),
        "total_chars": sum(sizes),
        "avg_chunk_size": sum(sizes) // len(fragments),
        "min_chunk_size": min(sizes),
        "max_chunk_size": max(sizes),
        "source_breakdown": dict(breakdown),
    }
