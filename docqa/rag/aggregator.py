"""Group fragment-level hits into document-level results."""
from typing import Dict, List, Sequence, Tuple

from docqa.rag.models import FragmentHit, SearchResult, SourceKind


def aggregate(hits: Sequence[FragmentHit]) -> List[SearchResult]:
    """Collapse hits into one result per source document.

    Documents are ranked by the sum of their fragment scores. Each result
    carries the contents of its fragments joined in score order, the average
    fragment score as its similarity, and display metadata from its
    best-scoring fragment.

    Args:
        hits: Scored fragments in any order

    Returns:
        SearchResult list, best document first
    """
    ordered = sorted(hits, key=lambda hit: hit.score, reverse=True)

    groups: Dict[Tuple[SourceKind, str], List[FragmentHit]] = {}
    for hit in ordered:
        key = (hit.fragment.source_kind, hit.fragment.document_id)
        groups.setdefault(key, []).append(hit)

    ranked = sorted(
        groups.values(),
        key=lambda group: (-sum(h.score for h in group), group[0].fragment.document_id),
    )

    return [_to_result(group) for group in ranked]


def _to_result(group: List[FragmentHit]) -> SearchResult:
    best = group[0]
    fragment = best.fragment
    extras = fragment.display_extras()

    return SearchResult(
        document_id=fragment.document_id,
        document_name=fragment.document_name,
        parent_group=fragment.parent_group,
        content=" ".join(hit.fragment.content for hit in group),
        similarity=sum(hit.score for hit in group) / len(group),
        source_kind=fragment.source_kind,
        url=extras.get("url"),
        section=extras.get("section"),
        topics=extras.get("topics", []),
        fragment_count=len(group),
        match=best.match,
    )
