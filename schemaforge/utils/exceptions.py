"""
Custom exceptions for SchemaForge.

Every failure a caller can act on has its own type. Each type carries the
HTTP status it maps to, so route handlers never translate messages.
"""

from typing import Any


class SchemaForgeError(Exception):
    """
    Base exception for all SchemaForge errors.

    Attributes:
        message: Human-readable error description
        details: Additional context for debugging
        status_code: HTTP status used by the API error handler
    """

    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


# ===================
# Request Errors
# ===================


class InvalidInputError(SchemaForgeError):
    """
    Raised when a request can never succeed as sent.

    Examples: no valid URL in a bulk submission, too many URLs.
    Clients must fix the request; it is never retried.
    """

    status_code = 400


class QuotaExceededError(SchemaForgeError):
    """Raised when a user already has the maximum number of active bulk jobs."""

    status_code = 400

    def __init__(self, user_id: str, limit: int) -> None:
        super().__init__(
            "Too many active jobs. Please wait for current jobs to complete.",
            details={"user_id": user_id, "limit": limit},
        )


class CapacityExceededError(SchemaForgeError):
    """
    Raised when the server is already processing the maximum number of jobs.

    Transient: the job stays pending and the caller may retry later.
    """

    status_code = 400

    def __init__(self, limit: int) -> None:
        super().__init__(
            "Server is at maximum capacity. Please try again later.",
            details={"limit": limit},
        )


class InvalidStateError(SchemaForgeError):
    """Raised when an operation is not valid for the current lifecycle state."""

    status_code = 400

    def __init__(self, message: str, current_state: str | None = None) -> None:
        details = {"current_state": current_state} if current_state else {}
        super().__init__(message, details)


class AuthenticationError(SchemaForgeError):
    """Raised when a bearer token is missing, malformed or expired."""

    status_code = 401


class VersionConflictError(SchemaForgeError):
    """Raised when an autosave carries an expected version that is no longer current."""

    status_code = 409

    def __init__(self, expected_version: int, current_version: int) -> None:
        super().__init__(
            "Draft was modified by another writer",
            details={
                "expected_version": expected_version,
                "current_version": current_version,
            },
        )


# ===================
# Lookup Errors
# ===================


class NotFoundError(SchemaForgeError):
    """
    Base for absent resources.

    Resources owned by somebody else are reported as not found as well,
    so their existence is never leaked.
    """

    status_code = 404


class JobNotFoundError(NotFoundError):
    """Raised when a bulk job does not exist or belongs to another user."""

    def __init__(self, job_id: str) -> None:
        super().__init__(
            "Job not found or access denied",
            details={"job_id": job_id},
        )


class ProjectNotFoundError(NotFoundError):
    """Raised when a project does not exist or belongs to another user."""

    def __init__(self, project_id: str) -> None:
        super().__init__(
            "Project not found or access denied",
            details={"project_id": project_id},
        )


class VersionNotFoundError(NotFoundError):
    """Raised when a draft version is not in the project history."""

    def __init__(self, project_id: str, *versions: int) -> None:
        super().__init__(
            "Version not found in history",
            details={"project_id": project_id, "versions": list(versions)},
        )


class AutosaveNotFoundError(NotFoundError):
    """Raised when there is no autosave state to read, recover or clear."""

    def __init__(self, project_id: str | None = None) -> None:
        details = {"project_id": project_id} if project_id else {}
        super().__init__("No autosave data found", details)


class StaleAutosaveError(SchemaForgeError):
    """Raised when an autosave is too old to be recovered."""

    status_code = 410

    def __init__(self, project_id: str, stale_hours: int) -> None:
        super().__init__(
            f"Autosave data is too old to recover (older than {stale_hours} hours)",
            details={"project_id": project_id, "stale_hours": stale_hours},
        )


# ===================
# External Service Errors
# ===================


class ExternalServiceError(SchemaForgeError):
    """
    Base exception for failures of the scraping or AI providers.

    Inside a bulk job these are recorded per URL and never abort the batch.
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        service: str | None = None,
        url: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if service:
            details["service"] = service
        if url:
            details["url"] = url
        if status_code:
            details["upstream_status"] = status_code
        super().__init__(message, details)


class ScrapeError(ExternalServiceError):
    """Raised when the scraping provider cannot return page content."""


class SchemaGenerationError(ExternalServiceError):
    """Raised when the AI provider fails or returns an unusable schema."""


class RateLimitedError(ExternalServiceError):
    """Raised on HTTP 429 from a provider. Retried with backoff."""


# ===================
# Infrastructure Errors
# ===================


class ConfigurationError(SchemaForgeError):
    """
    Raised when application configuration is invalid.

    Typically caught at startup to fail fast.
    """


class DatabaseError(SchemaForgeError):
    """
    Raised when database operations fail.

    Wraps SQLAlchemy exceptions with additional context.
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        table: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details)
