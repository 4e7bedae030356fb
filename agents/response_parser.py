"""
Classify and decode a lesson reply from the backend.

Decoding is a strict two-step boundary: the reply text is first turned into
an untyped JSON tree, then a shape validator turns that tree into either
LessonReady or MissingDocumentsSignal. Nothing downstream touches the raw
tree.
"""

import json
import logging
import re
from typing import Any, List, Optional

from pydantic import ValidationError

from errors import MalformedJson, SafetyBlocked, UnexpectedShape, UnparsableResponse
from models import BackendReply, LessonOutcome, LessonReady, LessonSection, MissingDocumentsSignal, OutputFormat

logger = logging.getLogger(__name__)

FENCED_BLOCK_RE = re.compile(r"```(?i:json)?\s*([\s\S]*?)\s*```")

_CLOSERS = {"{": "}", "[": "]"}


def _match_brackets(text: str, start: int) -> Optional[str]:
    """Return the balanced JSON value starting at text[start], or None if it never closes."""
    stack = []
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]"):
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return text[start:i + 1]
    return None


def _json_candidates(text: str) -> List[str]:
    candidates = []

    match = FENCED_BLOCK_RE.search(text)
    if match and match.group(1):
        candidates.append(match.group(1))

    for i, ch in enumerate(text):
        if ch in _CLOSERS:
            candidate = _match_brackets(text, i)
            # Unbalanced: hand the remainder to the JSON decoder so it reports why.
            candidates.append(candidate if candidate is not None else text[i:])
            break

    return candidates


def extract_json_text(text: str) -> str:
    """
    Pull the JSON payload out of a free-text reply.

    A fenced code block wins. Otherwise the first top-level object or array
    found by bracket matching is used; this is a best-effort heuristic and can
    be fooled by stray brackets in narrative text before the JSON.
    """
    candidates = _json_candidates(text)
    if not candidates:
        raise UnparsableResponse(context={"preview": text[:200]})
    return candidates[0]


def _loads(payload: str) -> Any:
    try:
        return json.loads(payload)
    except json.JSONDecodeError as e:
        logger.error(f"Reply is not valid JSON: {e}")
        raise MalformedJson(context={"error": str(e)}) from e


def _decode(reply: BackendReply, output_format: OutputFormat) -> Any:
    if output_format == OutputFormat.SCHEMA:
        return _loads(reply.text)

    candidates = _json_candidates(reply.text)
    if not candidates:
        raise UnparsableResponse(context={"preview": reply.text[:200]})

    # A fence can sit inside a Markdown answer of raw JSON; then the
    # bracket-matched candidate is the payload.
    for candidate in candidates[:-1]:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            logger.info("Fenced block is not JSON, trying bracket matching")
    return _loads(candidates[-1])


def _validate_missing(uris: List[Any]) -> MissingDocumentsSignal:
    if not all(isinstance(u, str) and u.strip() for u in uris):
        raise UnexpectedShape("The AI requested documents in an unexpected format.")
    # Ordered set: keep the first occurrence of each URI.
    unique = list(dict.fromkeys(u.strip() for u in uris))
    return MissingDocumentsSignal(uris=unique)


def _validate_sections(items: List[Any]) -> LessonReady:
    if not items:
        raise UnexpectedShape("The AI returned no teaching sections.")
    try:
        sections = [LessonSection.model_validate(item) for item in items]
    except ValidationError as e:
        raise UnexpectedShape(context={"errors": e.errors(include_url=False, include_input=False, include_context=False)}) from e
    return LessonReady(sections=sections)


def classify(tree: Any) -> LessonOutcome:
    if isinstance(tree, dict):
        missing = tree.get("missing_pdfs")
        if isinstance(missing, list) and missing:
            return _validate_missing(missing)
        raise UnexpectedShape()

    if isinstance(tree, list):
        return _validate_sections(tree)

    raise UnexpectedShape()


def parse_lesson_reply(reply: BackendReply, output_format: OutputFormat) -> LessonOutcome:
    if reply.safety_blocked:
        raise SafetyBlocked()

    outcome = classify(_decode(reply, output_format))
    if isinstance(outcome, MissingDocumentsSignal):
        logger.info(f"Backend requested {len(outcome.uris)} missing document(s)")
    else:
        logger.info(f"Parsed {len(outcome.sections)} teaching sections")
    return outcome
