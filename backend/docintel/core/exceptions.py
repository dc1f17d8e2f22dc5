"""
Exception taxonomy for the document pipeline and the AI capability layer.

Pipeline errors drive the orchestrator's retry decision:

    PipelineError
      ├── NonRetriableError            → skip remaining retries, run on_failure
      │     ├── DocumentNotFoundError
      │     └── DocumentAccessDenied   → surfaced to the caller (HTTP 403)
      └── EmbeddingBatchError          → retried (provider returned a bad batch)

Anything else raised from a step is treated as transient and retried.

AI errors describe provider / configuration problems. They never cross a
stage boundary unhandled: classification and analysis degrade instead, and
handle_ai_error() maps them to stable client-facing codes.
"""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Pipeline errors
# ---------------------------------------------------------------------------

class PipelineError(Exception):
    """Base class for errors raised by pipeline stages."""


class NonRetriableError(PipelineError):
    """Permanent failure: retrying the same input cannot succeed."""


class DocumentNotFoundError(NonRetriableError):
    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class DocumentAccessDenied(NonRetriableError):
    """Requester is neither related to the document's customer nor an active member."""

    def __init__(self, document_id: str, user_id: str) -> None:
        super().__init__(f"Unauthorized access to document {document_id} by user {user_id}")
        self.document_id = document_id
        self.user_id     = user_id


class EmbeddingBatchError(PipelineError):
    """Provider answered, but the batch cannot be persisted as returned."""


# ---------------------------------------------------------------------------
# AI capability errors
# ---------------------------------------------------------------------------

class AIError(Exception):
    code = "AI_ERROR"


class AINotConfiguredError(AIError):
    code = "AI_NOT_CONFIGURED"

    def __init__(self, message: str = "AI is not configured for this organization") -> None:
        super().__init__(message)


class AIFeatureDisabledError(AIError):
    code = "AI_FEATURE_DISABLED"

    def __init__(self, feature: str) -> None:
        super().__init__(f"AI feature '{feature}' is disabled for this organization")
        self.feature = feature


class AIProviderError(AIError):
    code = "AI_PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        provider_message: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code      = status_code
        self.provider_message = provider_message


class AIRateLimitError(AIError):
    code = "AI_RATE_LIMITED"

    def __init__(self, retry_after: float = 60.0) -> None:
        super().__init__(f"Too many AI requests; retry in {int(retry_after)}s")
        self.retry_after = retry_after


# Exception class names (openai / httpx) that mean "could not reach provider"
_CONNECTION_ERROR_TYPES = (
    "APIConnectionError",
    "APITimeoutError",
    "ConnectError",
    "ConnectTimeout",
    "ReadTimeout",
)


def handle_ai_error(exc: BaseException) -> tuple[str, str]:
    """
    Map any exception from the AI layer to (error_code, message).

    Used for logging and API error bodies; never raises.
    """
    if isinstance(exc, AIError):
        return exc.code, str(exc)

    name = type(exc).__name__
    if name in _CONNECTION_ERROR_TYPES or isinstance(exc, ConnectionError):
        return "AI_CONNECTION_ERROR", "Unable to reach the AI provider"

    status_code = getattr(exc, "status_code", None)
    if status_code == 429 or name == "RateLimitError":
        return "AI_RATE_LIMITED", "AI provider rate limit exceeded"
    if isinstance(status_code, int):
        return "AI_PROVIDER_ERROR", f"AI provider returned HTTP {status_code}"

    return "AI_ERROR", str(exc) or name
