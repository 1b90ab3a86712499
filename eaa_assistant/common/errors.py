"""
Error taxonomy shared by the pipeline and the HTTP layer.

Each error carries the HTTP status and machine-readable code it maps to.
"""

from typing import Optional


class AssistantError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(AssistantError):
    """Malformed or missing request fields."""

    status_code = 400
    code = "VALIDATION_ERROR"


class UpstreamError(AssistantError):
    """A hosted embedding/chat/search/transcription call failed."""

    status_code = 502
    code = "UPSTREAM_ERROR"

    def __init__(self, service: str, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(f"{service}: {message}", code=code)
        self.service = service


class NotFoundError(AssistantError):
    """Referenced session or resource does not exist."""

    status_code = 404
    code = "NOT_FOUND"


class InternalError(AssistantError):
    """Unexpected failure inside the pipeline."""

    status_code = 500
    code = "INTERNAL_ERROR"


class PayloadTooLargeError(AssistantError):
    """Uploaded body exceeds the configured limit."""

    status_code = 413
    code = "PAYLOAD_TOO_LARGE"


class PipelineError(InternalError):
    """Unrecoverable /ask failure; identifies the request for log lookup."""

    def __init__(self, query_id: str, session_id: Optional[str] = None) -> None:
        super().__init__("Internal server error")
        self.query_id = query_id
        self.session_id = session_id

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["query_id"] = self.query_id
        body["session_id"] = self.session_id
        return body
