import logging
from typing import List

from config import ANSWER_CONTEXT_CHARS, CHAT_TEMPERATURE, SECTION_CONTEXT_CHARS, SUBJECT_DOMAIN
from agents.prompts import (
    FOLLOWUP_CONTEXT_ONLY_PROMPT,
    FOLLOWUP_SEARCH_PROMPT,
    FOLLOWUP_SYSTEM_PROMPT,
    NO_ANSWER_SENTINEL,
    SAFETY_APOLOGY,
)
from errors import BackendError, ChatBackendError
from models import Capability, ChatTurn, FollowUpAnchor, GenerationRequest, LessonSection, OutputFormat
from utils.provenance import resolve_provenance

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "..."


def _truncate(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[:limit] + TRUNCATION_MARKER
    return text


def section_content(section: LessonSection) -> str:
    return "\n\n".join(f"Q: {qa.question}\nA: {qa.answer}" for qa in section.qa_pairs)


def build_anchor(section: LessonSection, qa_index: int) -> FollowUpAnchor:
    qa = section.qa_pairs[qa_index]
    return FollowUpAnchor(
        original_question=qa.question,
        original_answer=qa.answer,
        section_content=section_content(section),
    )


def is_no_answer(text: str) -> bool:
    """True when the model replied with the fixed no-answer sentence and nothing else."""
    return text.strip() == NO_ANSWER_SENTINEL


def compile_followup_request(
    anchor: FollowUpAnchor,
    history: List[ChatTurn],
    use_search: bool,
    model: str,
) -> GenerationRequest:
    """Build one chat turn. `history` must already end with the new user message."""
    instruction = FOLLOWUP_SYSTEM_PROMPT.format(
        domain=SUBJECT_DOMAIN,
        question=anchor.original_question,
        answer=_truncate(anchor.original_answer, ANSWER_CONTEXT_CHARS),
        section=_truncate(anchor.section_content, SECTION_CONTEXT_CHARS),
    )

    if use_search:
        instruction += FOLLOWUP_SEARCH_PROMPT
    else:
        instruction += FOLLOWUP_CONTEXT_ONLY_PROMPT.format(sentinel=NO_ANSWER_SENTINEL)

    return GenerationRequest(
        model=model,
        system_instruction=instruction,
        history=list(history),
        capabilities=frozenset({Capability.WEB_SEARCH}) if use_search else frozenset(),
        output_format=OutputFormat.FREE_TEXT,
        temperature=CHAT_TEMPERATURE,
    )


def run_followup(
    anchor: FollowUpAnchor,
    history: List[ChatTurn],
    use_search: bool,
    model: str,
    backend,
) -> ChatTurn:
    """Send one follow-up turn and return the model's reply as a chat turn."""
    request = compile_followup_request(anchor, history, use_search, model)
    logger.info(f"Follow-up turn: model={model}, use_search={use_search}, history={len(history)} turns")

    try:
        reply = backend.generate(request)
    except BackendError as e:
        logger.error(f"Error getting chat response: {e}")
        raise ChatBackendError(context={"cause": str(e)}) from e

    if reply.safety_blocked:
        logger.warning("Follow-up reply blocked by safety filters")
        return ChatTurn(role="model", text=SAFETY_APOLOGY)

    provenance = resolve_provenance(reply, include_related_links=True)
    return ChatTurn(
        role="model",
        text=reply.text,
        sources=provenance.sources,
        related_links=provenance.related_links,
        no_answer=is_no_answer(reply.text),
    )
