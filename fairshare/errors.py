"""
Domain Error Taxonomy

Every error a caller can act on derives from FairshareError and carries
the HTTP status the API layer should answer with.

- Authorization errors: the caller may not act on the resource
- Validation errors: the request must be corrected
- State conflicts: the current state must change before retrying
- Fatal errors: opaque failure, re-issue the request

Storage failures have their own hierarchy in the storage interface and
are always reported as opaque internal errors.
"""

from typing import Optional


class FairshareError(Exception):
    """Base exception for all domain errors."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationRequiredError(FairshareError):
    """No caller identity was supplied by the identity provider."""

    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(FairshareError):
    """Caller is not allowed to perform the operation."""

    status_code = 403
    default_message = "Forbidden"


class InvalidRequestError(FairshareError):
    """Request input failed validation."""

    status_code = 400
    default_message = "Invalid request"

    def __init__(self, message: Optional[str] = None, issues: Optional[list[dict]] = None):
        super().__init__(message)
        self.issues = issues or []


class ResourceNotFoundError(FairshareError):
    """Referenced entity does not exist (or is not visible to the caller)."""

    status_code = 404
    default_message = "Not found"


class StateConflictError(FairshareError):
    """Operation conflicts with the current persisted state."""

    status_code = 409
    default_message = "Conflict"
