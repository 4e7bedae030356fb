import asyncio
import logging
from typing import List, Sequence

from errors import NoSourcesProvided
from models import (
    Capability,
    DocumentSource,
    PastedTextSource,
    SearchQuerySource,
    SourceDescriptor,
    SourceMaterial,
    SourcePlan,
    UrlSource,
)

logger = logging.getLogger(__name__)


def collect_sources(material: SourceMaterial) -> List[SourceDescriptor]:
    """Turn raw form input into source descriptors, honouring the channel toggles."""
    if not (material.use_urls or material.use_documents or material.use_pasted_texts or material.use_search):
        raise NoSourcesProvided("Please select at least one content source to merge.")

    sources: List[SourceDescriptor] = []

    if material.use_urls:
        sources.extend(UrlSource(url=u.strip()) for u in material.urls if u.strip())

    if material.use_documents:
        sources.extend(material.documents)

    if material.use_pasted_texts:
        sources.extend(PastedTextSource(text=t) for t in material.pasted_texts if t.strip())

    if material.use_search and material.search_query and material.search_query.strip():
        sources.append(SearchQuerySource(query=material.search_query.strip()))

    if not sources:
        raise NoSourcesProvided()

    logger.info(f"Collected {len(sources)} sources")
    return sources


def plan_sources(sources: Sequence[SourceDescriptor]) -> SourcePlan:
    """
    Describe the enabled channels and pick the backend capabilities they need.

    Channels are described in a fixed order (urls, documents, pasted text,
    search), one fragment per non-empty channel.
    """
    urls = [s.url for s in sources if isinstance(s, UrlSource)]
    documents = [s for s in sources if isinstance(s, DocumentSource)]
    pasted = [s for s in sources if isinstance(s, PastedTextSource)]
    queries = [s.query for s in sources if isinstance(s, SearchQuerySource)]

    descriptions = []
    capabilities = set()

    if urls:
        noun = "webpages" if len(urls) > 1 else "webpage"
        descriptions.append(f"the {noun} at the URL(s): {', '.join(urls)}")
        capabilities.add(Capability.URL_CONTEXT)

    if documents:
        descriptions.append(f"the provided {len(documents)} document(s)")

    if pasted:
        descriptions.append(f"the provided {len(pasted)} pasted text snippet(s)")

    if queries:
        quoted = " and ".join(f'"{q}"' for q in queries)
        descriptions.append(f"a Google search for {quoted}")
        capabilities.add(Capability.WEB_SEARCH)

    if not descriptions:
        raise NoSourcesProvided()

    return SourcePlan(
        descriptions=descriptions,
        capabilities=frozenset(capabilities),
        search_queries=queries,
    )


async def read_uploads(files) -> List[DocumentSource]:
    """Read uploaded files concurrently; the result keeps the upload order."""
    if not files:
        return []

    contents = await asyncio.gather(*(f.read() for f in files))
    documents = [
        DocumentSource(
            data=data,
            mime_type=f.content_type or "application/pdf",
            name=f.filename,
        )
        for f, data in zip(files, contents)
    ]
    logger.info(f"Read {len(documents)} uploaded document(s) ({sum(len(d.data) for d in documents)} bytes)")
    return documents
