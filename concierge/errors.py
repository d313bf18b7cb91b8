"""Typed exception hierarchy for the concierge pipeline.

Each error carries the HTTP status the API surfaces for it:
- InvalidQueryError / ConfigurationError: fail fast, 4xx with a clear message.
- UpstreamError and subclasses: embedding/search/storage/LLM failures and timeouts.
"""


class ConciergeError(Exception):
    """Base class for all concierge errors."""

    status_code: int = 500


class InvalidQueryError(ConciergeError):
    """Raised for malformed or out-of-bounds user input."""

    status_code = 400


class ConfigurationError(ConciergeError):
    """Raised when required credentials or endpoints are not configured."""

    status_code = 400


class UpstreamError(ConciergeError):
    """Raised when an external dependency fails."""

    status_code = 503


class EmbeddingError(UpstreamError):
    """Embedding generation failed after retries."""


class SearchError(UpstreamError):
    """A database-backed search or lookup failed."""


class StorageError(UpstreamError):
    """Signed URL generation failed."""


class UpstreamTimeoutError(UpstreamError):
    """An external call exceeded its time budget."""
