"""Turn raw documents from either source into uniform records.

Drive files and scraped documentation pages carry different metadata; both
become a NormalizedDocument that the chunkers understand.
"""
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional
from urllib.parse import urlparse

import structlog

from docqa import config
from docqa.connectors.docs_site import ScrapedPage
from docqa.connectors.drive import DriveDocument, is_unavailable_content
from docqa.rag.models import SourceKind

logger = structlog.get_logger()

# Title keywords used when the URL carries no section segment
_TITLE_SECTIONS = [
    (("install", "setup"), "Install"),
    (("access", "connect"), "Access"),
    (("manage", "admin"), "Manage"),
    (("advanced", "command"), "Advanced Management"),
    (("coach", "learn"), "Coach your learners"),
]

_SECTION_PATH_PATTERN = re.compile(r"/en/latest/([^/]+)")


@dataclass
class NormalizedDocument:
    """Source-independent view of one document."""

    document_id: str
    name: str
    text: str
    source_kind: SourceKind
    parent_group: Optional[str] = None
    url: str = ""
    section: str = ""
    sections: List[str] = field(default_factory=list)


def slugify(text: str) -> str:
    """Lowercase, hyphenated identifier safe for fragment ids."""
    slug = re.sub(r"[^a-z0-9\s-]", "", text.lower())
    slug = re.sub(r"\s+", "-", slug.strip())
    return re.sub(r"-+", "-", slug).strip("-")


def from_drive(document: DriveDocument, content: str) -> Optional[NormalizedDocument]:
    """Normalize a document-store file.

    Returns:
        NormalizedDocument, or None if the content was not accessible or empty
    """
    if is_unavailable_content(content):
        logger.warning(
            "drive_document_skipped",
            document_id=document.id,
            name=document.name,
            reason=content[:200],
        )
        return None

    text = " ".join(content.split())
    if not text:
        logger.debug("drive_document_empty", document_id=document.id)
        return None

    return NormalizedDocument(
        document_id=document.id,
        name=document.name,
        text=text,
        source_kind=SourceKind.DRIVE,
        parent_group=document.parent_path or None,
        url=document.web_view_link or "",
    )


def from_guide_page(page: ScrapedPage) -> NormalizedDocument:
    """Normalize a scraped documentation page."""
    document_id = slugify(page.title) or slugify(urlparse(page.url).path.replace("/", " "))

    return NormalizedDocument(
        document_id=document_id or "page",
        name=page.title,
        text=page.text,
        source_kind=SourceKind.GUIDE,
        parent_group=determine_parent_section(page.url, page.title),
        url=page.url,
        section=page.title,
        sections=list(page.sections),
    )


def determine_parent_section(url: str, title: str) -> Optional[str]:
    """Derive a grouping label from the URL path, falling back to the title."""
    match = _SECTION_PATH_PATTERN.search(url)
    if match:
        segment = match.group(1)
        segment = re.sub(r"\.html?$", "", segment)
        if segment and segment != "index":
            return segment.replace("-", " ").replace("_", " ").title()

    title_lower = title.lower()
    for keywords, section in _TITLE_SECTIONS:
        if any(keyword in title_lower for keyword in keywords):
            return section

    return None


def extract_topics(
    sections: Iterable[str],
    content: str,
    terms: Iterable[str] = None,
    limit: int = None,
) -> List[str]:
    """Collect topic tags from section headings and known technical terms.

    Args:
        sections: Section headings of the page
        content: Fragment text
        terms: Technical terms to look for (default from config)
        limit: Maximum number of topics (default from config)

    Returns:
        Ordered, de-duplicated list of lowercase topics
    """
    terms = config.TOPIC_TERMS if terms is None else terms
    limit = limit or config.MAX_TOPICS

    topics: List[str] = []
    for heading in sections:
        heading = heading.strip()
        if 3 < len(heading) < 100 and heading.lower() not in topics:
            topics.append(heading.lower())

    content_lower = content.lower()
    for term in terms:
        term = term.lower()
        if term in content_lower and term not in topics:
            topics.append(term)

    return topics[:limit]
