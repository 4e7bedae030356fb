import logging
from typing import Any, Dict, List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI, HarmBlockThreshold, HarmCategory

import config
from errors import BackendError, MissingApiCredentials
from models import (
    BackendReply,
    Capability,
    GenerationRequest,
    GroundingChunk,
    OutputFormat,
    UrlRetrievalRecord,
)

logger = logging.getLogger(__name__)

SAFETY_SETTINGS = {
    HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
}

CAPABILITY_TOOLS = {
    Capability.URL_CONTEXT: {"url_context": {}},
    Capability.WEB_SEARCH: {"google_search": {}},
}

_UNBLOCKED = (None, 0, "", "BLOCK_REASON_UNSPECIFIED")


def _get(data: Optional[Dict[str, Any]], *keys: str) -> Any:
    """Read the first present key; metadata arrives in snake_case or camelCase."""
    if not data:
        return None
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _message_text(message: AIMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    texts = []
    for block in content or []:
        if isinstance(block, str):
            texts.append(block)
        elif isinstance(block, dict) and block.get("type", "text") == "text":
            texts.append(block.get("text", ""))
    return "".join(texts)


def _grounding_chunks(metadata: Dict[str, Any]) -> List[GroundingChunk]:
    grounding = _get(metadata, "grounding_metadata", "groundingMetadata") or {}
    chunks = []
    for chunk in _get(grounding, "grounding_chunks", "groundingChunks") or []:
        web = _get(chunk, "web") or {}
        chunks.append(GroundingChunk(uri=_get(web, "uri"), title=_get(web, "title")))
    return chunks


def _url_retrieval_records(metadata: Dict[str, Any]) -> List[UrlRetrievalRecord]:
    url_context = _get(metadata, "url_context_metadata", "urlContextMetadata") or {}
    entries = _get(url_context, "url_metadata", "urlMetadata") if isinstance(url_context, dict) else url_context
    records = []
    for entry in entries or []:
        uri = _get(entry, "retrieved_url", "retrievedUrl")
        status = _get(entry, "url_retrieval_status", "urlRetrievalStatus")
        if uri:
            records.append(UrlRetrievalRecord(uri=uri, status=str(status)))
    return records


def _is_blocked(metadata: Dict[str, Any]) -> bool:
    if str(_get(metadata, "finish_reason", "finishReason") or "").upper().endswith("SAFETY"):
        return True
    feedback = _get(metadata, "prompt_feedback", "promptFeedback") or {}
    return _get(feedback, "block_reason", "blockReason") not in _UNBLOCKED


def reply_from_message(message: AIMessage) -> BackendReply:
    """Convert a LangChain Gemini message into the backend reply shape."""
    metadata = message.response_metadata or {}
    return BackendReply(
        text=_message_text(message),
        grounding_chunks=_grounding_chunks(metadata),
        url_retrieval_metadata=_url_retrieval_records(metadata),
        safety_blocked=_is_blocked(metadata),
    )


def build_messages(request: GenerationRequest) -> List[BaseMessage]:
    messages: List[BaseMessage] = [SystemMessage(content=request.system_instruction)]

    for turn in request.history:
        if turn.role == "user":
            messages.append(HumanMessage(content=turn.text))
        else:
            messages.append(AIMessage(content=turn.text))

    if request.content_parts:
        blocks = []
        for part in request.content_parts:
            if part.data is not None:
                blocks.append({"type": "media", "mime_type": part.mime_type, "data": part.data})
            else:
                blocks.append({"type": "text", "text": part.text})
        messages.append(HumanMessage(content=blocks))

    return messages


class GeminiBackend:
    """Generation backend on Gemini via LangChain."""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key

    def _get_llm(self, request: GenerationRequest) -> ChatGoogleGenerativeAI:
        api_key = self.api_key or config.GOOGLE_API_KEY
        if not api_key:
            raise MissingApiCredentials()

        kwargs = {}
        if request.output_format == OutputFormat.SCHEMA and request.response_schema:
            kwargs["response_mime_type"] = "application/json"
            kwargs["response_schema"] = request.response_schema

        return ChatGoogleGenerativeAI(
            model=request.model,
            google_api_key=api_key,
            temperature=request.temperature,
            top_p=request.top_p,
            top_k=request.top_k,
            safety_settings=SAFETY_SETTINGS,
            **kwargs,
        )

    def generate(self, request: GenerationRequest) -> BackendReply:
        llm = self._get_llm(request)
        messages = build_messages(request)
        tools = [CAPABILITY_TOOLS[c] for c in sorted(request.capabilities, key=lambda c: c.value)]

        try:
            if tools:
                response = llm.invoke(messages, tools=tools)
            else:
                response = llm.invoke(messages)
        except Exception as e:
            error_msg = str(e)
            if "SAFETY" in error_msg:
                logger.warning(f"Gemini blocked the request: {error_msg}")
                return BackendReply(safety_blocked=True)
            raise BackendError(f"Gemini API error: {error_msg}") from e

        return reply_from_message(response)
