"""Exception hierarchy for hoparb.

All custom exceptions inherit from HoparbError so callers can catch the
whole family at once. A pool that simply does not exist is not an error:
the probe and venues report it by returning None.
"""

from typing import Any, Optional


class HoparbError(Exception):
    """Base exception for all hoparb errors."""

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "HOPARB_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for logging/serialization."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class QuoteValidationError(HoparbError, ValueError):
    """Quote request rejected before any network I/O."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="VALIDATION_ERROR", **kwargs)


class VenueError(HoparbError):
    """The swap venue failed to answer (transport, HTTP or payload errors)."""

    def __init__(self, message: str, *, venue: str = "unknown", **kwargs):
        details = kwargs.pop("details", {})
        details["venue"] = venue
        super().__init__(message, code=kwargs.pop("code", "VENUE_ERROR"), details=details, **kwargs)
        self.venue = venue


class SwapSubmissionError(VenueError):
    """The venue refused or failed to accept a signed swap."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="SWAP_SUBMISSION_ERROR", **kwargs)


class SigningError(HoparbError):
    """A swap payload could not be signed."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="SIGNING_ERROR", **kwargs)


class LearningPersistenceError(HoparbError):
    """The learning store snapshot could not be read or written."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="PERSISTENCE_ERROR", **kwargs)
