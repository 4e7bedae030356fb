"""
Exception hierarchy for the lesson synthesizer.

Every domain error inherits from LessonSynthError and carries:
- error_code: machine-readable string (e.g. "NO_SOURCES_PROVIDED")
- status_code: HTTP status code used by the API layer
- message: human-readable description
- context: optional structured metadata dict
"""

from typing import Optional, Dict, Any


class LessonSynthError(Exception):
    """Base exception for all lesson synthesizer errors."""

    error_code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)


# Construction / validation errors, raised before any backend call

class NoSourcesProvided(LessonSynthError):
    error_code = "NO_SOURCES_PROVIDED"
    status_code = 400

    def __init__(self, message: str = "No content provided to generate teaching sections.", context=None):
        super().__init__(message, context)


class NothingToSubmit(LessonSynthError):
    error_code = "NOTHING_TO_SUBMIT"
    status_code = 400

    def __init__(self, message: str = "Please provide content for at least one of the requested documents.", context=None):
        super().__init__(message, context)


class NoPendingRequest(LessonSynthError):
    error_code = "NO_PENDING_REQUEST"
    status_code = 409

    def __init__(self, message: str = "There is no pending request waiting for documents.", context=None):
        super().__init__(message, context)


class UnknownDocument(LessonSynthError):
    error_code = "UNKNOWN_DOCUMENT"
    status_code = 400

    def __init__(self, uri: str):
        super().__init__(f"The document {uri} was not requested.", {"uri": uri})


class UnknownQuestion(LessonSynthError):
    error_code = "UNKNOWN_QUESTION"
    status_code = 404

    def __init__(self, section_index: int, qa_index: int):
        super().__init__(
            "Cannot send message, the teaching context is missing.",
            {"section_index": section_index, "qa_index": qa_index},
        )


class RequestInFlight(LessonSynthError):
    error_code = "REQUEST_IN_FLIGHT"
    status_code = 409


class SessionNotFound(LessonSynthError):
    error_code = "SESSION_NOT_FOUND"
    status_code = 404

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found.", {"session_id": session_id})


# Response interpretation errors

class UnparsableResponse(LessonSynthError):
    error_code = "UNPARSABLE_RESPONSE"
    status_code = 502

    def __init__(self, message: str = "The AI returned a non-JSON response. Could not find a valid JSON object or array.", context=None):
        super().__init__(message, context)


class MalformedJson(LessonSynthError):
    error_code = "MALFORMED_JSON"
    status_code = 502

    def __init__(self, message: str = "Failed to parse the response from the AI as valid JSON. The AI's output may have been malformed.", context=None):
        super().__init__(message, context)


class UnexpectedShape(LessonSynthError):
    error_code = "UNEXPECTED_SHAPE"
    status_code = 502

    def __init__(self, message: str = "The AI returned teaching sections in an unexpected format.", context=None):
        super().__init__(message, context)


class SafetyBlocked(LessonSynthError):
    error_code = "SAFETY_BLOCKED"
    status_code = 422

    def __init__(self, message: str = "The content could not be processed due to safety filters. Please ensure the URL/query links to appropriate content.", context=None):
        super().__init__(message, context)


# Backend errors

class MissingApiCredentials(LessonSynthError):
    error_code = "MISSING_API_CREDENTIALS"
    status_code = 500

    def __init__(self, message: str = "GOOGLE_API_KEY is not configured.", context=None):
        super().__init__(message, context)


class BackendError(LessonSynthError):
    """Transport-level failure of the generation backend. Mapped by callers."""

    error_code = "BACKEND_ERROR"
    status_code = 502


class GenerationFailed(LessonSynthError):
    error_code = "GENERATION_FAILED"
    status_code = 502

    def __init__(self, message: str = "Failed to generate teaching sections. The AI model might be busy or there was an issue with the request.", context=None):
        super().__init__(message, context)


class ChatBackendError(LessonSynthError):
    error_code = "CHAT_BACKEND_ERROR"
    status_code = 502

    def __init__(self, message: str = "Failed to get chat response. The AI model might be unavailable.", context=None):
        super().__init__(message, context)


class RequestAbandoned(LessonSynthError):
    error_code = "REQUEST_ABANDONED"
    status_code = 409

    def __init__(self, message: str = "The request was abandoned before the AI replied; its result was discarded.", context=None):
        super().__init__(message, context)
