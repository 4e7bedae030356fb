import logging
import re
from typing import Dict, Iterable, List, Optional
from urllib.parse import urldefrag, urlsplit

from models import BackendReply, GroundingSource, Provenance

logger = logging.getLogger(__name__)

URL_RETRIEVAL_SUCCESS = "URL_RETRIEVAL_STATUS_SUCCESS"

INLINE_URL_RE = re.compile(r"\bhttps?://\S+", re.IGNORECASE)
TRAILING_PUNCTUATION_RE = re.compile(r"[.,;!?)\]>]+$")


def merge_sources(*channels: Iterable[GroundingSource]) -> List[GroundingSource]:
    """Merge source lists by uri, keeping the first entry seen for each uri."""
    merged: Dict[str, GroundingSource] = {}
    for channel in channels:
        for source in channel:
            if source.uri not in merged:
                merged[source.uri] = source
    return list(merged.values())


def normalize_inline_url(token: str) -> Optional[str]:
    """Strip trailing sentence punctuation and the fragment from a URL found in text."""
    url = TRAILING_PUNCTUATION_RE.sub("", token)
    url, _ = urldefrag(url)
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
        return None
    return url


def extract_inline_urls(text: str) -> List[str]:
    urls = (normalize_inline_url(token) for token in INLINE_URL_RE.findall(text or ""))
    return list(dict.fromkeys(u for u in urls if u))


def _grounding_sources(reply: BackendReply) -> List[GroundingSource]:
    return [
        GroundingSource(uri=chunk.uri, title=chunk.title)
        for chunk in reply.grounding_chunks
        if chunk.uri and chunk.title
    ]


def _retrieved_sources(reply: BackendReply) -> List[GroundingSource]:
    retrieved = [r for r in reply.url_retrieval_metadata if r.status == URL_RETRIEVAL_SUCCESS and r.uri]
    failed = [r.uri for r in reply.url_retrieval_metadata if r.status != URL_RETRIEVAL_SUCCESS]
    if failed:
        logger.warning(f"Unable to access the following URLs, so they were not included in the context: {', '.join(failed)}")
    return [GroundingSource(uri=r.uri, title=r.uri) for r in retrieved]


def resolve_provenance(reply: BackendReply, include_related_links: bool = False) -> Provenance:
    """
    Merge the grounding channels of one reply into a deduplicated source list.

    Grounding chunks come first so their titles win over URL-retrieval records
    for the same uri. The order of the returned list is what numeric citation
    markers in the text refer to: marker [k] is sources[k - 1]. Callers must
    not reorder it.

    With include_related_links, URLs mentioned in the text that are not formal
    sources are returned separately as related links.
    """
    sources = merge_sources(_grounding_sources(reply), _retrieved_sources(reply))

    related: List[GroundingSource] = []
    if include_related_links:
        known = {s.uri for s in sources}
        related = [GroundingSource(uri=u, title=u) for u in extract_inline_urls(reply.text) if u not in known]

    return Provenance(sources=sources, related_links=related)

