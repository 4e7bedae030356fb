import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

import config
from agents import backend as backend_module
from agents.backend import GeminiBackend, build_messages, reply_from_message
from errors import BackendError, MissingApiCredentials
from models import (
    Capability,
    ChatTurn,
    ContentPart,
    GenerationRequest,
    GroundingChunk,
    OutputFormat,
    UrlRetrievalRecord,
)


def _request(**kwargs):
    values = {"model": "gemini-2.5-flash", "system_instruction": "system", "temperature": 0.6}
    values.update(kwargs)
    return GenerationRequest(**values)


def test_reply_from_snake_case_metadata() -> None:
    message = AIMessage(
        content="lesson",
        response_metadata={
            "finish_reason": "STOP",
            "grounding_metadata": {
                "grounding_chunks": [{"web": {"uri": "https://a.com", "title": "A"}}, {"retrieved_context": {}}],
            },
            "url_context_metadata": {
                "url_metadata": [
                    {"retrieved_url": "https://b.com", "url_retrieval_status": "URL_RETRIEVAL_STATUS_SUCCESS"},
                ],
            },
        },
    )
    reply = reply_from_message(message)
    assert reply.text == "lesson"
    assert reply.grounding_chunks == [GroundingChunk(uri="https://a.com", title="A"), GroundingChunk()]
    assert reply.url_retrieval_metadata == [
        UrlRetrievalRecord(uri="https://b.com", status="URL_RETRIEVAL_STATUS_SUCCESS"),
    ]
    assert reply.safety_blocked is False


def test_reply_from_camel_case_metadata() -> None:
    message = AIMessage(
        content="lesson",
        response_metadata={
            "groundingMetadata": {"groundingChunks": [{"web": {"uri": "https://a.com", "title": "A"}}]},
            "urlContextMetadata": {
                "urlMetadata": [{"retrievedUrl": "https://b.com", "urlRetrievalStatus": "URL_RETRIEVAL_STATUS_ERROR"}],
            },
        },
    )
    reply = reply_from_message(message)
    assert reply.grounding_chunks[0].uri == "https://a.com"
    assert reply.url_retrieval_metadata[0].status == "URL_RETRIEVAL_STATUS_ERROR"


def test_reply_without_metadata() -> None:
    reply = reply_from_message(AIMessage(content="plain"))
    assert reply.grounding_chunks == []
    assert reply.url_retrieval_metadata == []
    assert reply.safety_blocked is False


def test_reply_joins_text_blocks() -> None:
    message = AIMessage(content=[{"type": "text", "text": "[{"}, "\"a\": 1", {"type": "text", "text": "}]"}])
    assert reply_from_message(message).text == '[{"a": 1}]'


@pytest.mark.parametrize(
    "metadata",
    [
        {"finish_reason": "SAFETY"},
        {"finish_reason": "FinishReason.SAFETY"},
        {"prompt_feedback": {"block_reason": "SAFETY"}},
        {"promptFeedback": {"blockReason": 1}},
    ],
)
def test_safety_block_detected(metadata) -> None:
    assert reply_from_message(AIMessage(content="", response_metadata=metadata)).safety_blocked


def test_unspecified_block_reason_is_not_a_block() -> None:
    message = AIMessage(content="ok", response_metadata={"prompt_feedback": {"block_reason": 0}})
    assert reply_from_message(message).safety_blocked is False


def test_build_messages_orders_history_then_content() -> None:
    request = _request(
        history=[ChatTurn(role="user", text="q1"), ChatTurn(role="model", text="a1"), ChatTurn(role="user", text="q2")],
        content_parts=[ContentPart(text="header"), ContentPart(data=b"%PDF", mime_type="application/pdf")],
    )
    messages = build_messages(request)
    assert [type(m) for m in messages] == [SystemMessage, HumanMessage, AIMessage, HumanMessage, HumanMessage]
    assert messages[0].content == "system"
    assert messages[-1].content == [
        {"type": "text", "text": "header"},
        {"type": "media", "mime_type": "application/pdf", "data": b"%PDF"},
    ]


def test_build_messages_chat_turn_has_no_content_message() -> None:
    messages = build_messages(_request(history=[ChatTurn(role="user", text="why?")]))
    assert len(messages) == 2
    assert messages[-1].content == "why?"


class _FakeLLM:
    """Stands in for ChatGoogleGenerativeAI; `error` is shared by every instance."""

    instances = []
    error = None

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.calls = []
        self.reply = AIMessage(content="ok")
        _FakeLLM.instances.append(self)

    def invoke(self, messages, **kwargs):
        self.calls.append((messages, kwargs))
        if _FakeLLM.error is not None:
            raise _FakeLLM.error
        return self.reply


@pytest.fixture
def fake_llm(monkeypatch):
    _FakeLLM.instances = []
    _FakeLLM.error = None
    monkeypatch.setattr(backend_module, "ChatGoogleGenerativeAI", _FakeLLM)
    return _FakeLLM


def test_missing_api_key(monkeypatch, fake_llm) -> None:
    monkeypatch.setattr(config, "GOOGLE_API_KEY", None)
    with pytest.raises(MissingApiCredentials):
        GeminiBackend().generate(_request())
    assert fake_llm.instances == []


def test_schema_request_configures_json_output(fake_llm) -> None:
    schema = {"type": "array"}
    reply = GeminiBackend(api_key="key").generate(_request(
        output_format=OutputFormat.SCHEMA,
        response_schema=schema,
        capabilities=frozenset({Capability.URL_CONTEXT}),
        top_p=0.9,
        top_k=40,
    ))
    assert reply.text == "ok"
    llm = fake_llm.instances[0]
    assert llm.kwargs["model"] == "gemini-2.5-flash"
    assert llm.kwargs["google_api_key"] == "key"
    assert llm.kwargs["response_mime_type"] == "application/json"
    assert llm.kwargs["response_schema"] == schema
    assert llm.kwargs["top_k"] == 40
    assert llm.calls[0][1] == {"tools": [{"url_context": {}}]}


def test_free_text_request_with_search(fake_llm) -> None:
    GeminiBackend(api_key="key").generate(_request(
        capabilities=frozenset({Capability.WEB_SEARCH, Capability.URL_CONTEXT}),
    ))
    llm = fake_llm.instances[0]
    assert "response_schema" not in llm.kwargs
    assert llm.calls[0][1] == {"tools": [{"url_context": {}}, {"google_search": {}}]}


def test_no_capabilities_means_no_tools(fake_llm) -> None:
    GeminiBackend(api_key="key").generate(_request())
    assert fake_llm.instances[0].calls[0][1] == {}


def test_safety_exception_becomes_blocked_reply(fake_llm) -> None:
    fake_llm.error = ValueError("Response was blocked: finish_reason SAFETY")
    reply = GeminiBackend(api_key="key").generate(_request())
    assert reply.safety_blocked is True
    assert reply.text == ""


def test_transport_failure_becomes_backend_error(fake_llm) -> None:
    fake_llm.error = RuntimeError("503 Service Unavailable")
    with pytest.raises(BackendError) as exc_info:
        GeminiBackend(api_key="key").generate(_request())
    assert "503 Service Unavailable" in exc_info.value.message
