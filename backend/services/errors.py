"""Error taxonomy for the regulatory chat pipeline."""
from typing import Optional

import openai


class RegulatoryAPIError(Exception):
    """Base exception for failures talking to regulatory data sources."""

    code = "API_ERROR"
    retryable = True

    def __init__(self, message: str, source: Optional[str] = None):
        self.message = message
        self.source = source
        super().__init__(f"{self.code}: {message}")


class ValidationError(RegulatoryAPIError):
    """Malformed input (e.g. a bad CFR citation). Never retried."""

    code = "VALIDATION_ERROR"
    retryable = False


class UpstreamTimeoutError(RegulatoryAPIError, TimeoutError):
    """A single attempt exceeded its deadline."""

    code = "TIMEOUT"


class RateLimitError(RegulatoryAPIError):
    """Source signaled throttling."""

    code = "RATE_LIMITED"


class ServerError(RegulatoryAPIError):
    """Source-side failure or unusable response."""

    code = "SERVER_ERROR"


class NotFoundError(RegulatoryAPIError):
    """Authoritative absence. Surfaced immediately."""

    code = "NOT_FOUND"
    retryable = False


class AuthError(RegulatoryAPIError):
    """Missing or invalid session, or thread not owned by the caller."""

    code = "AUTH_ERROR"
    retryable = False


class StreamParseError(RegulatoryAPIError):
    """One malformed event frame in the generation stream."""

    code = "STREAM_PARSE_ERROR"
    retryable = False


class UpstreamStreamError(RegulatoryAPIError):
    """Connection-level failure of the generation stream."""

    code = "UPSTREAM_STREAM_ERROR"
    retryable = False


class SearchUnavailableError(RegulatoryAPIError):
    """Both the embedding call and keyword search failed."""

    code = "SEARCH_UNAVAILABLE"
    retryable = False


class PersistenceError(RegulatoryAPIError):
    """The store rejected a write needed to complete a request."""

    code = "PERSISTENCE_ERROR"
    retryable = False


# Provider failures that are worth another attempt. Auth, bad request and
# not-found responses from the SDK are terminal.
TRANSIENT_PROVIDER_ERRORS = (
    openai.APIConnectionError,  # includes APITimeoutError
    openai.RateLimitError,
    openai.InternalServerError,
)


def is_retryable(error: BaseException) -> bool:
    """
    Whether an attempt that raised ``error`` may be tried again.

    Taxonomy errors carry their own flag; outside the taxonomy only timeouts
    and transient provider failures qualify.
    """
    if isinstance(error, RegulatoryAPIError):
        return error.retryable
    return isinstance(error, (TimeoutError, *TRANSIENT_PROVIDER_ERRORS))
