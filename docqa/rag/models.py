"""Core retrieval types: fragments, index entries and search results."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Sequence

import numpy as np

from docqa import config


# Shorter partial context blocks carry too little text to be worth including
MIN_PARTIAL_BLOCK = 200

class SourceKind(str, Enum):
    """Where a fragment came from; decides metadata and scoring."""

    DRIVE = "drive-document"
    GUIDE = "scraped-page"


@dataclass(frozen=True)
class KeywordWeights:
    """Weights for keyword fallback scoring.

    These are empirical tuning values rather than derived ones. Dividing the
    raw tally by ``normalizer`` puts it on roughly the same 0..1 scale as
    cosine similarity so both phases can be merged by a plain sort.
    """

    content: int = config.KEYWORD_CONTENT_WEIGHT
    title: int = config.KEYWORD_TITLE_WEIGHT
    topic: int = config.KEYWORD_TOPIC_WEIGHT
    normalizer: float = config.KEYWORD_NORMALIZER

    def normalize(self, raw_score: int) -> float:
        return min(1.0, raw_score / self.normalizer)


def fragment_id(document_id: str, position: int) -> str:
    return f"{document_id}-chunk-{position}"


@dataclass
class Fragment:
    """A bounded slice of a source document, the unit indexed and retrieved."""

    source_kind: ClassVar[SourceKind]

    id: str
    content: str
    document_id: str
    document_name: str
    position: int
    total_fragments: int
    parent_group: Optional[str] = None

    def keyword_score(self, words: Sequence[str], weights: KeywordWeights) -> int:
        """Raw keyword tally for lowercased query words."""
        content = self.content.lower()
        title = self.document_name.lower()
        score = 0
        for word in words:
            if word in content:
                score += weights.content
            if word in title:
                score += weights.title
        return score

    def display_extras(self) -> Dict[str, Any]:
        """Source-specific metadata surfaced on search results."""
        return {}


@dataclass
class DriveFragment(Fragment):
    """Fragment of a document-store file."""

    source_kind: ClassVar[SourceKind] = SourceKind.DRIVE


@dataclass
class GuideFragment(Fragment):
    """Fragment of a scraped documentation page."""

    source_kind: ClassVar[SourceKind] = SourceKind.GUIDE

    url: str = ""
    section: str = ""
    topics: List[str] = field(default_factory=list)
    word_count: int = 0

    def keyword_score(self, words: Sequence[str], weights: KeywordWeights) -> int:
        score = super().keyword_score(words, weights)
        for word in words:
            if any(word in topic for topic in self.topics):
                score += weights.topic
        return score

    def display_extras(self) -> Dict[str, Any]:
        return {"url": self.url, "section": self.section, "topics": list(self.topics)}


FRAGMENT_TYPES = {
    SourceKind.DRIVE: DriveFragment,
    SourceKind.GUIDE: GuideFragment,
}


@dataclass(frozen=True, eq=False)
class IndexEntry:
    """A fragment paired with its embedding, or None when it has none."""

    fragment: Fragment
    embedding: Optional[np.ndarray] = None

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None and self.embedding.size > 0


@dataclass
class FragmentHit:
    """A scored fragment produced by one of the search phases."""

    fragment: Fragment
    score: float
    match: str = "vector"


@dataclass
class SearchResult:
    """A document-level retrieval result."""

    document_id: str
    document_name: str
    content: str
    similarity: float
    source_kind: SourceKind
    parent_group: Optional[str] = None
    url: Optional[str] = None
    section: Optional[str] = None
    topics: List[str] = field(default_factory=list)
    fragment_count: int = 1
    match: str = "vector"

    @property
    def source(self) -> str:
        """Get a formatted source string for display."""
        label = self.document_name
        if self.parent_group and self.parent_group != "Root Folder":
            label = f"{label} (in {self.parent_group})"
        if self.url:
            label = f"{label} <{self.url}>"
        return label

    def context_block(self, position: int, budget: int) -> Optional[str]:
        """Render this result as a numbered prompt block within a character budget.

        A block that overflows the budget is cut short and marked with "...",
        unless fewer than MIN_PARTIAL_BLOCK characters would survive, in
        which case None is returned.
        """
        block = f"[Source {position}: {self.source}]\n{self.content.strip()}\n"
        if len(block) <= budget:
            return block
        if budget < MIN_PARTIAL_BLOCK:
            return None
        return block[:budget] + "...\n"
