from enum import Enum
from typing import Annotated, Any, Dict, FrozenSet, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from config import DEFAULT_MODEL


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

class Capability(str, Enum):
    URL_CONTEXT = "url_context"
    WEB_SEARCH = "web_search"


class OutputFormat(str, Enum):
    SCHEMA = "schema"
    FREE_TEXT = "free_text"


class UrlSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["url"] = "url"
    url: str


class DocumentSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["document"] = "document"
    data: bytes
    mime_type: str = "application/pdf"
    name: Optional[str] = None


class PastedTextSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["pasted_text"] = "pasted_text"
    text: str


class SearchQuerySource(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["search_query"] = "search_query"
    query: str


SourceDescriptor = Annotated[
    Union[UrlSource, DocumentSource, PastedTextSource, SearchQuerySource],
    Field(discriminator="kind"),
]


class SourceMaterial(BaseModel):
    """Raw user input, one list per channel plus the channel toggles."""

    urls: List[str] = Field(default_factory=list)
    documents: List[DocumentSource] = Field(default_factory=list)
    pasted_texts: List[str] = Field(default_factory=list)
    search_query: Optional[str] = None
    use_urls: bool = True
    use_documents: bool = True
    use_pasted_texts: bool = True
    use_search: bool = True


class SourcePlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    descriptions: List[str]
    capabilities: FrozenSet[Capability]
    search_queries: List[str] = Field(default_factory=list)


class GenerationContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    sources: List[SourceDescriptor]
    focus_topic: Optional[str] = None
    model: str = DEFAULT_MODEL


# ---------------------------------------------------------------------------
# Lesson
# ---------------------------------------------------------------------------

class QAPair(BaseModel):
    question: str = Field(..., min_length=1)
    answer: str


class LessonSection(BaseModel):
    section_title: str = Field(..., min_length=1)
    qa_pairs: List[QAPair] = Field(..., min_length=1)


class GroundingSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    uri: str
    title: str


class LessonReady(BaseModel):
    kind: Literal["lesson_ready"] = "lesson_ready"
    sections: List[LessonSection]


class MissingDocumentsSignal(BaseModel):
    kind: Literal["missing_documents"] = "missing_documents"
    uris: List[str]


LessonOutcome = Union[LessonReady, MissingDocumentsSignal]


class Provenance(BaseModel):
    sources: List[GroundingSource] = Field(default_factory=list)
    related_links: List[GroundingSource] = Field(default_factory=list)


class LessonResult(BaseModel):
    status: Literal["ready", "awaiting_documents"]
    sections: List[LessonSection] = Field(default_factory=list)
    sources: List[GroundingSource] = Field(default_factory=list)
    missing_documents: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

class ChatTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "model"]
    text: str
    sources: List[GroundingSource] = Field(default_factory=list)
    related_links: List[GroundingSource] = Field(default_factory=list)
    no_answer: bool = False


class FollowUpAnchor(BaseModel):
    original_question: str
    original_answer: str
    section_content: str


# ---------------------------------------------------------------------------
# Backend boundary
# ---------------------------------------------------------------------------

class ContentPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: Optional[str] = None
    data: Optional[bytes] = None
    mime_type: Optional[str] = None


class GenerationRequest(BaseModel):
    model: str
    system_instruction: str
    content_parts: List[ContentPart] = Field(default_factory=list)
    history: List[ChatTurn] = Field(default_factory=list)
    capabilities: FrozenSet[Capability] = frozenset()
    output_format: OutputFormat = OutputFormat.FREE_TEXT
    response_schema: Optional[Dict[str, Any]] = None
    temperature: float
    top_p: Optional[float] = None
    top_k: Optional[int] = None


class UrlRetrievalRecord(BaseModel):
    uri: str
    status: str


class GroundingChunk(BaseModel):
    uri: Optional[str] = None
    title: Optional[str] = None


class BackendReply(BaseModel):
    text: str = ""
    grounding_chunks: List[GroundingChunk] = Field(default_factory=list)
    url_retrieval_metadata: List[UrlRetrievalRecord] = Field(default_factory=list)
    safety_blocked: bool = False


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

class SessionCreated(BaseModel):
    session_id: str


class ChatRequest(BaseModel):
    section_index: int = Field(..., ge=0)
    qa_index: int = Field(..., ge=0)
    message: str = Field(..., min_length=1, description="Follow-up question")
    use_search: bool = False


class ContextSummary(BaseModel):
    urls: List[str]
    documents: List[str]
    pasted_texts: int
    search_queries: List[str]
    focus_topic: Optional[str]
    model: str


class SessionState(BaseModel):
    session_id: str
    state: str
    sections: List[LessonSection]
    sources: List[GroundingSource]
    missing_documents: List[str]
    attachments: Dict[str, str]
    bulk_documents: int
    last_context: Optional[ContextSummary] = None
