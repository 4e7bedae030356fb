import logging
from typing import Tuple

from config import (
    LESSON_AUDIENCE,
    LESSON_TEMPERATURE,
    LESSON_TOP_K,
    LESSON_TOP_P,
    MAX_SECTIONS,
    MIN_SECTIONS,
    SUBJECT_DOMAIN,
)
from agents.prompts import (
    FOCUS_TOPIC_PROMPT,
    LESSON_SYSTEM_PROMPT,
    MISSING_DOCUMENTS_PROMPT,
    PASTED_CONTENT_TEMPLATE,
    RAW_JSON_OUTPUT_PROMPT,
    SCHEMA_OUTPUT_PROMPT,
    SEARCH_FOCUS_PROMPT,
    SEARCH_GROUNDING_PROMPT,
    SOURCES_HEADER_PROMPT,
)
from agents.response_parser import parse_lesson_reply
from errors import BackendError, GenerationFailed
from ingest.sources import plan_sources
from models import (
    Capability,
    ContentPart,
    DocumentSource,
    GenerationContext,
    GenerationRequest,
    LessonOutcome,
    OutputFormat,
    PastedTextSource,
    Provenance,
)
from utils.provenance import resolve_provenance

logger = logging.getLogger(__name__)


LESSON_SECTIONS_SCHEMA = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "section_title": {
                "type": "string",
                "description": "A concise title for the teaching section.",
            },
            "qa_pairs": {
                "type": "array",
                "description": "A list of question and answer pairs for this section.",
                "items": {
                    "type": "object",
                    "properties": {
                        "question": {"type": "string", "description": "The question."},
                        "answer": {
                            "type": "string",
                            "description": "The detailed answer to the question, potentially containing Markdown.",
                        },
                    },
                    "required": ["question", "answer"],
                },
            },
        },
        "required": ["section_title", "qa_pairs"],
    },
}

MISSING_DOCUMENTS_SCHEMA = {
    "type": "object",
    "properties": {
        "missing_pdfs": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["missing_pdfs"],
}

# The escalation object has to stay schema-valid in schema mode.
LESSON_RESPONSE_SCHEMA = {"anyOf": [LESSON_SECTIONS_SCHEMA, MISSING_DOCUMENTS_SCHEMA]}


def _lesson_system_instruction(focus_topic, use_search: bool) -> str:
    focus = ""
    if focus_topic and focus_topic.strip():
        focus = FOCUS_TOPIC_PROMPT.format(topic=focus_topic.strip())

    instruction = LESSON_SYSTEM_PROMPT.format(
        domain=SUBJECT_DOMAIN,
        min_sections=MIN_SECTIONS,
        max_sections=MAX_SECTIONS,
        focus=focus,
        audience=LESSON_AUDIENCE,
    )

    if use_search:
        # Grounding tools cannot be combined with a response schema, so the
        # JSON shape is demanded in prose instead.
        return instruction + SEARCH_GROUNDING_PROMPT + MISSING_DOCUMENTS_PROMPT + RAW_JSON_OUTPUT_PROMPT
    return instruction + MISSING_DOCUMENTS_PROMPT + SCHEMA_OUTPUT_PROMPT


def compile_lesson_request(context: GenerationContext) -> GenerationRequest:
    """
    Build the generation request for one lesson attempt.

    Content parts are the source header, then each document, then each
    pasted text wrapped in explicit delimiters.
    """
    plan = plan_sources(context.sources)
    use_search = Capability.WEB_SEARCH in plan.capabilities

    header = SOURCES_HEADER_PROMPT.format(descriptions=" AND ".join(plan.descriptions))
    if plan.search_queries:
        header += SEARCH_FOCUS_PROMPT.format(queries=" and ".join(f'"{q}"' for q in plan.search_queries))

    parts = [ContentPart(text=header)]
    parts.extend(
        ContentPart(data=s.data, mime_type=s.mime_type)
        for s in context.sources
        if isinstance(s, DocumentSource)
    )
    parts.extend(
        ContentPart(text=PASTED_CONTENT_TEMPLATE.format(text=s.text))
        for s in context.sources
        if isinstance(s, PastedTextSource)
    )

    output_format = OutputFormat.FREE_TEXT if use_search else OutputFormat.SCHEMA

    return GenerationRequest(
        model=context.model,
        system_instruction=_lesson_system_instruction(context.focus_topic, use_search),
        content_parts=parts,
        capabilities=plan.capabilities,
        output_format=output_format,
        response_schema=None if use_search else LESSON_RESPONSE_SCHEMA,
        temperature=LESSON_TEMPERATURE,
        top_p=LESSON_TOP_P,
        top_k=LESSON_TOP_K,
    )


def generate_lesson(context: GenerationContext, backend) -> Tuple[LessonOutcome, Provenance]:
    """Run one lesson attempt: compile, call the backend, parse and resolve sources."""
    request = compile_lesson_request(context)
    logger.info(
        f"Generating lesson: model={request.model}, format={request.output_format.value}, "
        f"capabilities={sorted(c.value for c in request.capabilities)}, parts={len(request.content_parts)}"
    )

    try:
        reply = backend.generate(request)
    except BackendError as e:
        logger.error(f"Lesson generation failed: {e}")
        raise GenerationFailed(context={"cause": str(e)}) from e

    outcome = parse_lesson_reply(reply, request.output_format)
    provenance = resolve_provenance(reply)
    logger.info(f"Lesson outcome: {outcome.kind}, {len(provenance.sources)} sources")
    return outcome, provenance
