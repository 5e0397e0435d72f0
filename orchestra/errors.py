"""Service error taxonomy.

Every error carries a stable ``code`` and an HTTP status; the exception handlers
in ``middleware.error_handler`` render them as ``{"error": {"code", "message"}}``.
"""

from typing import Any, Dict, Optional


class ServiceError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if code:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class InvalidInputError(ServiceError):
    code = "INVALID_INPUT"
    status_code = 400


class UnsupportedError(ServiceError):
    code = "UNSUPPORTED"
    status_code = 400


class ForbiddenError(ServiceError):
    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(ServiceError):
    """Absent and not-owned entities are indistinguishable to callers."""

    code = "NOT_FOUND"
    status_code = 404


class CampaignNotFoundError(NotFoundError):
    code = "CAMPAIGN_NOT_FOUND"


class PredictionNotFoundError(NotFoundError):
    code = "PREDICTION_NOT_FOUND"


class ConflictError(ServiceError):
    code = "INVALID_STATE"
    status_code = 409


class RevisionInProgressError(ConflictError):
    code = "REVISION_IN_PROGRESS"


class ModificationFailedError(ServiceError):
    code = "MODIFICATION_FAILED"
    status_code = 422


class RevisionFailedError(ModificationFailedError):
    code = "REVISION_FAILED"


class PublishFailedError(ServiceError):
    code = "PUBLISH_FAILED"
    status_code = 502


class SuggestionsFailedError(ServiceError):
    code = "SUGGESTIONS_FAILED"
    status_code = 500


class IntegrationError(Exception):
    """A third-party integration call failed; callers may fall back."""

    def __init__(self, integration: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{integration}: {message}")
        self.integration = integration
        self.status_code = status_code


class GenerationError(Exception):
    """The content generator could not produce output."""
