"""
Learning session: the per-user state of one lesson and its follow-up chats.

A session moves between two states:

    IDLE --(missing documents signal)--> AWAITING_DOCUMENTS
    AWAITING_DOCUMENTS --(resubmit succeeds / fails / abandon)--> IDLE
    AWAITING_DOCUMENTS --(resubmit signals again)--> AWAITING_DOCUMENTS (new set)

While awaiting documents the session keeps the triggering GenerationContext
verbatim and collects per-document attachments (one file or one pasted text
per requested URI) plus a bulk list of files. Resubmitting appends, in this
order, the bulk files, the per-URI files and the per-URI texts to the kept
context and runs the lesson pipeline again.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from config import DEFAULT_MODEL
from agents.followup import build_anchor, run_followup
from agents.generator import generate_lesson
from errors import (
    LessonSynthError,
    NoPendingRequest,
    NothingToSubmit,
    RequestAbandoned,
    RequestInFlight,
    SessionNotFound,
    UnknownDocument,
    UnknownQuestion,
)
from ingest.sources import collect_sources
from models import (
    ChatTurn,
    ContextSummary,
    DocumentSource,
    GenerationContext,
    GroundingSource,
    LessonResult,
    LessonSection,
    MissingDocumentsSignal,
    PastedTextSource,
    SearchQuerySource,
    SessionState,
    SourceMaterial,
    UrlSource,
)
from utils.provenance import merge_sources

logger = logging.getLogger(__name__)

Attachment = Union[DocumentSource, PastedTextSource]
ChatKey = Tuple[int, int]


class WorkflowState(str, Enum):
    IDLE = "idle"
    AWAITING_DOCUMENTS = "awaiting_documents"


class LearningSession:
    def __init__(self, backend, session_id: Optional[str] = None):
        self.session_id = session_id or str(uuid.uuid4())
        self.backend = backend

        self.state = WorkflowState.IDLE
        self.lesson: List[LessonSection] = []
        self.sources: List[GroundingSource] = []
        self.model = DEFAULT_MODEL

        self.missing_documents: List[str] = []
        self.pending_context: Optional[GenerationContext] = None
        self.last_context: Optional[GenerationContext] = None
        self._attachments: Dict[str, Attachment] = {}
        self._bulk: List[DocumentSource] = []

        self._histories: Dict[ChatKey, List[ChatTurn]] = {}
        self._chat_locks: Dict[ChatKey, threading.Lock] = {}
        self._chat_locks_guard = threading.Lock()

        self._state_lock = threading.RLock()
        self._generation = 0
        self._active: Optional[int] = None

    # ------------------------------------------------------------------
    # Lesson generation
    # ------------------------------------------------------------------

    def _busy(self) -> bool:
        """True while a lesson request runs that has not been abandoned."""
        return self._active is not None and self._active == self._generation

    @contextmanager
    def _generation_slot(self):
        with self._state_lock:
            if self._busy():
                raise RequestInFlight("A lesson request is already in progress for this session.")
            self._generation += 1
            token = self._generation
            self._active = token
        try:
            yield token
        finally:
            with self._state_lock:
                if self._active == token:
                    self._active = None

    def _clear_pending(self):
        self.state = WorkflowState.IDLE
        self.pending_context = None
        self.missing_documents = []
        self._attachments = {}
        self._bulk = []

    def _reset(self):
        self._clear_pending()
        self.lesson = []
        self.sources = []
        self._histories = {}

    def _execute(self, context: GenerationContext, fresh: bool, token: int) -> LessonResult:
        """Run the pipeline for `context` under the generation slot `token`."""
        with self._state_lock:
            if token != self._generation:
                raise RequestAbandoned()
            if fresh:
                self._reset()
            self.last_context = context
            self.model = context.model

        try:
            outcome, provenance = generate_lesson(context, self.backend)
        except LessonSynthError:
            with self._state_lock:
                if token == self._generation:
                    self._clear_pending()
            raise

        with self._state_lock:
            if token != self._generation:
                logger.info(f"Discarding result of abandoned request in session {self.session_id}")
                raise RequestAbandoned()

            if isinstance(outcome, MissingDocumentsSignal):
                # A repeated signal replaces the pending set; earlier attachments
                # already live in the context's source list.
                self._clear_pending()
                self.state = WorkflowState.AWAITING_DOCUMENTS
                self.pending_context = context
                self.missing_documents = list(outcome.uris)
                logger.info(f"Awaiting {len(self.missing_documents)} document(s): {', '.join(self.missing_documents)}")
                return LessonResult(status="awaiting_documents", missing_documents=self.missing_documents)

            self._clear_pending()
            self.lesson = outcome.sections
            self.sources = provenance.sources
            return LessonResult(status="ready", sections=self.lesson, sources=self.sources)

    def start_learning(
        self,
        material: SourceMaterial,
        focus_topic: Optional[str] = None,
        model: Optional[str] = None,
    ) -> LessonResult:
        sources = collect_sources(material)
        context = GenerationContext(sources=sources, focus_topic=focus_topic, model=model or DEFAULT_MODEL)
        with self._generation_slot() as token:
            return self._execute(context, fresh=True, token=token)

    def retry(self) -> LessonResult:
        """Run the most recent context again, e.g. after an unparsable reply."""
        if self.last_context is None:
            raise NoPendingRequest("There is no previous request to retry.")
        with self._generation_slot() as token:
            return self._execute(self.last_context, fresh=True, token=token)

    def abandon(self):
        """
        Drop the pending request. The result of any call in flight is discarded
        and a new lesson request may start without waiting for it.
        """
        with self._state_lock:
            self._generation += 1
            self._clear_pending()
        logger.info(f"Session {self.session_id} abandoned its pending request")

    # ------------------------------------------------------------------
    # Supplemental documents
    # ------------------------------------------------------------------

    def _check_awaiting(self):
        if self._busy():
            raise RequestInFlight("Cannot change attachments while a request is in progress.")
        if self.state != WorkflowState.AWAITING_DOCUMENTS or self.pending_context is None:
            raise NoPendingRequest()

    def _check_requested(self, uri: str):
        if uri not in self.missing_documents:
            raise UnknownDocument(uri)

    def attach_file(self, uri: str, document: DocumentSource):
        with self._state_lock:
            self._check_awaiting()
            self._check_requested(uri)
            self._attachments[uri] = document

    def attach_text(self, uri: str, text: str):
        if not text or not text.strip():
            raise NothingToSubmit("Pasted text is empty.")
        with self._state_lock:
            self._check_awaiting()
            self._check_requested(uri)
            self._attachments[uri] = PastedTextSource(text=text)

    def attach_bulk(self, documents: List[DocumentSource]):
        with self._state_lock:
            self._check_awaiting()
            self._bulk = list(documents)

    def detach(self, uri: str):
        with self._state_lock:
            self._check_awaiting()
            self._attachments.pop(uri, None)

    @property
    def attachments(self) -> Dict[str, str]:
        return {
            uri: "file" if isinstance(a, DocumentSource) else "text"
            for uri, a in self._attachments.items()
        }

    def resubmit(self) -> LessonResult:
        with self._generation_slot() as token:
            with self._state_lock:
                if self.state != WorkflowState.AWAITING_DOCUMENTS or self.pending_context is None:
                    raise NoPendingRequest("Cannot re-submit, original context was lost.")
                if not self._attachments and not self._bulk:
                    raise NothingToSubmit()

                per_uri = [self._attachments[u] for u in self.missing_documents if u in self._attachments]
                files = [a for a in per_uri if isinstance(a, DocumentSource)]
                texts = [a for a in per_uri if isinstance(a, PastedTextSource)]
                context = self.pending_context.model_copy(
                    update={"sources": [*self.pending_context.sources, *self._bulk, *files, *texts]}
                )
                logger.info(
                    f"Resubmitting with {len(self._bulk)} bulk file(s), {len(files)} file(s) "
                    f"and {len(texts)} text(s) for {len(self.missing_documents)} requested document(s)"
                )
                self._attachments = {}
                self._bulk = []

            return self._execute(context, fresh=False, token=token)

    def submit_supplemental_content(
        self,
        per_uri: Optional[Dict[str, Union[DocumentSource, str]]] = None,
        bulk: Optional[List[DocumentSource]] = None,
    ) -> LessonResult:
        per_uri = per_uri or {}
        with self._state_lock:
            self._check_awaiting()
            # All or nothing: nothing is attached unless every entry is acceptable.
            for uri, content in per_uri.items():
                self._check_requested(uri)
                if not isinstance(content, DocumentSource) and not (content and content.strip()):
                    raise NothingToSubmit("Pasted text is empty.", {"uri": uri})
            for uri, content in per_uri.items():
                if isinstance(content, DocumentSource):
                    self.attach_file(uri, content)
                else:
                    self.attach_text(uri, content)
            if bulk:
                self.attach_bulk(bulk)
        return self.resubmit()

    # ------------------------------------------------------------------
    # Follow-up chat
    # ------------------------------------------------------------------

    def _chat_lock(self, key: ChatKey) -> threading.Lock:
        with self._chat_locks_guard:
            return self._chat_locks.setdefault(key, threading.Lock())

    def history(self, section_index: int, qa_index: int) -> List[ChatTurn]:
        return list(self._histories.get((section_index, qa_index), []))

    def send_follow_up(self, section_index: int, qa_index: int, message: str, use_search: bool = False) -> ChatTurn:
        lesson = self.lesson
        if not (0 <= section_index < len(lesson)) or not (0 <= qa_index < len(lesson[section_index].qa_pairs)):
            raise UnknownQuestion(section_index, qa_index)
        section = lesson[section_index]

        key = (section_index, qa_index)
        lock = self._chat_lock(key)
        if not lock.acquire(blocking=False):
            raise RequestInFlight("A message for this question is already being answered.", {"section_index": section_index, "qa_index": qa_index})
        try:
            history = self._histories.setdefault(key, [])
            history.append(ChatTurn(role="user", text=message))
            try:
                reply = run_followup(build_anchor(section, qa_index), list(history), use_search, self.model, self.backend)
            except LessonSynthError as e:
                history.append(ChatTurn(role="model", text=f"Sorry, I encountered an error: {e.message}"))
                raise
            history.append(reply)
            return reply
        finally:
            lock.release()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def bibliography(self) -> List[GroundingSource]:
        """Lesson sources plus every chat reply's sources, deduplicated in first-seen order."""
        chat_sources = [
            turn.sources
            for history in self._histories.values()
            for turn in history
            if turn.role == "model"
        ]
        return merge_sources(self.sources, *chat_sources)

    def snapshot(self) -> SessionState:
        return SessionState(
            session_id=self.session_id,
            state=self.state.value,
            sections=self.lesson,
            sources=self.sources,
            missing_documents=self.missing_documents,
            attachments=self.attachments,
            bulk_documents=len(self._bulk),
            last_context=describe_context(self.last_context) if self.last_context else None,
        )


def describe_context(context: GenerationContext) -> ContextSummary:
    return ContextSummary(
        urls=[s.url for s in context.sources if isinstance(s, UrlSource)],
        documents=[s.name or s.mime_type for s in context.sources if isinstance(s, DocumentSource)],
        pasted_texts=sum(1 for s in context.sources if isinstance(s, PastedTextSource)),
        search_queries=[s.query for s in context.sources if isinstance(s, SearchQuerySource)],
        focus_topic=context.focus_topic,
        model=context.model,
    )


class SessionStore:
    """In-memory registry of learning sessions."""

    def __init__(self, backend_factory):
        self.backend_factory = backend_factory
        self._sessions: Dict[str, LearningSession] = {}
        self._lock = threading.Lock()

    def create(self) -> LearningSession:
        session = LearningSession(self.backend_factory())
        with self._lock:
            self._sessions[session.session_id] = session
        logger.info(f"Created session {session.session_id}")
        return session

    def get(self, session_id: str) -> LearningSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def delete(self, session_id: str):
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFound(session_id)
        session.abandon()
