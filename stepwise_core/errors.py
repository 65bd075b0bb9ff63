from __future__ import annotations


class StepwiseError(Exception):
    """Base error for Stepwise."""


class RecoverableError(StepwiseError):
    """Indicates the operation can be retried safely."""


class PermanentError(StepwiseError):
    """Indicates the operation should not be retried."""


class AuthError(StepwiseError):
    """Authentication or authorization failure."""


class ValidationError(StepwiseError):
    """Input validation failure."""


class InferenceTimeoutError(RecoverableError):
    """A model or provider call exceeded its time budget."""


class ErrorCode:
    FETCH_FAILED = "FETCH_FAILED"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    TRANSCRIPTION_FAILED = "TRANSCRIPTION_FAILED"
    SYNTHESIS_FAILED = "SYNTHESIS_FAILED"
    WEBHOOK_AUTH_FAILED = "WEBHOOK_AUTH_FAILED"
    RETRIEVAL_UNAVAILABLE = "RETRIEVAL_UNAVAILABLE"
    PLACEHOLDER_RESPONSE = "PLACEHOLDER_RESPONSE"


class StageError(PermanentError):
    """A pipeline stage failed; the module run cannot continue."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ProviderClientError(PermanentError):
    """The provider rejected the request (4xx other than 408/429)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderTransientError(RecoverableError):
    """Rate limit, upstream 5xx, timeout or connection failure."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class WebhookAuthError(AuthError):
    """Webhook token or signature did not verify."""


class NotFoundError(PermanentError):
    """The referenced record does not exist."""
