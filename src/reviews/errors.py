"""
Collection & analysis error hierarchy.

Every error carries an error_type (validation, not_found, invalid_state,
rate_limit, timeout, harvesting, internal) and serializes to the
{"message", "type"} object exposed in session status payloads.
"""

from typing import Dict, Optional


class CollectionError(Exception):
    """Base exception for collection and analysis errors."""

    error_type = "internal"

    def __init__(self, message: str, error_type: Optional[str] = None):
        self.message = message
        if error_type:
            self.error_type = error_type
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, str]:
        return {"message": self.message, "type": self.error_type}


class ValidationError(CollectionError):
    """Malformed source reference, review or config."""
    error_type = "validation"


class SessionNotFoundError(CollectionError):
    """Unknown (or already purged) session id."""
    error_type = "not_found"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class InvalidStateError(CollectionError):
    """Operation not permitted in the session's current status."""
    error_type = "invalid_state"


class RateLimitExceededError(CollectionError):
    """Backoff exhausted against the scoring or harvesting capability."""
    error_type = "rate_limit"

    def __init__(self, message: str, attempts: int = 0):
        self.attempts = attempts
        super().__init__(message)


class PhaseTimeoutError(CollectionError):
    """A phase (or the whole collection) exceeded its time budget."""
    error_type = "timeout"


class HarvestingError(CollectionError):
    """Source-specific harvesting failure (blocked, malformed source...)."""
    error_type = "harvesting"


class AnalysisError(CollectionError):
    """Unparseable or malformed scoring response. Absorbed into fallback."""
    error_type = "internal"
