import json

import pytest

from agents.response_parser import extract_json_text, parse_lesson_reply
from errors import MalformedJson, SafetyBlocked, UnexpectedShape, UnparsableResponse
from models import BackendReply, LessonReady, MissingDocumentsSignal, OutputFormat
from tests.fakes import SECTION, TWO_QA_SECTION


def _reply(text: str) -> BackendReply:
    return BackendReply(text=text)


def test_missing_pdfs_round_trip_preserves_order() -> None:
    uris = ["https://c.org/3.pdf", "https://a.org/1.pdf", "https://b.org/2.pdf"]
    outcome = parse_lesson_reply(_reply(json.dumps({"missing_pdfs": uris})), OutputFormat.SCHEMA)
    assert outcome == MissingDocumentsSignal(uris=uris)


def test_missing_pdfs_duplicates_collapse() -> None:
    outcome = parse_lesson_reply(
        _reply('{"missing_pdfs": ["https://a.org/1.pdf", "https://b.org/2.pdf", "https://a.org/1.pdf"]}'),
        OutputFormat.SCHEMA,
    )
    assert outcome.uris == ["https://a.org/1.pdf", "https://b.org/2.pdf"]


def test_schema_mode_lesson() -> None:
    outcome = parse_lesson_reply(_reply(json.dumps([SECTION, TWO_QA_SECTION])), OutputFormat.SCHEMA)
    assert isinstance(outcome, LessonReady)
    assert [s.section_title for s in outcome.sections] == ["Basics", "Imaging"]
    assert outcome.sections[1].qa_pairs[1].answer == "For posterior fossa lesions."


def test_free_text_extracts_only_fenced_block() -> None:
    text = (
        "Here is the lesson you asked for [see below].\n"
        "```json\n" + json.dumps([SECTION]) + "\n```\n"
        "Let me know if you want more {details}."
    )
    outcome = parse_lesson_reply(_reply(text), OutputFormat.FREE_TEXT)
    assert isinstance(outcome, LessonReady)
    assert outcome.sections[0].section_title == "Basics"


def test_free_text_fence_without_language_tag() -> None:
    text = "```\n" + json.dumps({"missing_pdfs": ["https://x.org/a.pdf"]}) + "\n```"
    outcome = parse_lesson_reply(_reply(text), OutputFormat.FREE_TEXT)
    assert outcome == MissingDocumentsSignal(uris=["https://x.org/a.pdf"])


def test_free_text_fence_tag_is_case_insensitive() -> None:
    text = 'Here:\n```JSON\n{"missing_pdfs": ["https://x.org/a.pdf"]}\n```'
    outcome = parse_lesson_reply(_reply(text), OutputFormat.FREE_TEXT)
    assert outcome == MissingDocumentsSignal(uris=["https://x.org/a.pdf"])


def test_raw_json_with_code_block_in_answer() -> None:
    section = {
        "section_title": "Shell",
        "qa_pairs": [{"question": "How to list?", "answer": "Run:\n```bash\nls -la\n```\nDone."}],
    }
    outcome = parse_lesson_reply(_reply(json.dumps([section])), OutputFormat.FREE_TEXT)
    assert isinstance(outcome, LessonReady)
    assert outcome.sections[0].qa_pairs[0].answer == "Run:\n```bash\nls -la\n```\nDone."


def test_free_text_falls_back_to_bracket_matching() -> None:
    text = "Sure! " + json.dumps([SECTION]) + " Hope this helps."
    outcome = parse_lesson_reply(_reply(text), OutputFormat.FREE_TEXT)
    assert isinstance(outcome, LessonReady)


def test_bracket_matching_ignores_brackets_inside_strings() -> None:
    payload = {"missing_pdfs": ["https://x.org/a]b}.pdf"]}
    assert json.loads(extract_json_text("Need: " + json.dumps(payload) + " thanks")) == payload


def test_bracket_matching_is_best_effort_with_stray_brackets() -> None:
    # Narrative brackets before the JSON are picked up first.
    text = "See [note] below. " + json.dumps([SECTION])
    with pytest.raises(MalformedJson):
        parse_lesson_reply(_reply(text), OutputFormat.FREE_TEXT)


def test_free_text_without_json_is_unparsable() -> None:
    with pytest.raises(UnparsableResponse):
        parse_lesson_reply(_reply("I could not find anything useful."), OutputFormat.FREE_TEXT)


def test_schema_mode_does_not_scan_for_fences() -> None:
    with pytest.raises(MalformedJson):
        parse_lesson_reply(_reply("```json\n[]\n```"), OutputFormat.SCHEMA)


def test_malformed_json() -> None:
    with pytest.raises(MalformedJson):
        parse_lesson_reply(_reply('[{"section_title": "A",'), OutputFormat.SCHEMA)


@pytest.mark.parametrize(
    "payload",
    [
        {"sections": [SECTION]},
        {"missing_pdfs": []},
        {"missing_pdfs": "https://x.org/a.pdf"},
        {"missing_pdfs": [1, 2]},
        [],
        [{"section_title": "No questions", "qa_pairs": []}],
        [{"qa_pairs": SECTION["qa_pairs"]}],
        [{"section_title": "Bad pair", "qa_pairs": [{"question": "Q only"}]}],
        ["just a string"],
        "a bare string",
        42,
    ],
)
def test_unexpected_shapes(payload) -> None:
    with pytest.raises(UnexpectedShape):
        parse_lesson_reply(_reply(json.dumps(payload)), OutputFormat.SCHEMA)


def test_safety_block_is_terminal() -> None:
    with pytest.raises(SafetyBlocked):
        parse_lesson_reply(BackendReply(text=json.dumps([SECTION]), safety_blocked=True), OutputFormat.SCHEMA)


@pytest.mark.parametrize("output_format", [OutputFormat.SCHEMA, OutputFormat.FREE_TEXT])
def test_parsing_is_idempotent(output_format) -> None:
    reply = _reply(json.dumps([SECTION, TWO_QA_SECTION]))
    assert parse_lesson_reply(reply, output_format) == parse_lesson_reply(reply, output_format)
