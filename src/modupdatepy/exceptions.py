"""
exceptions.py

Exception types raised by the version parser, key parser, source adapters and config loader.
Each error carries an optional HTTP status and the raw response for debugging.

None of these escape `UpdateAggregator.check_for_update`: the aggregator collects
them as warning strings so that a broken key or a flaky site never blocks a check.
"""

from enum import Enum
from typing import Optional, Any


class ModUpdateError(Exception):
    """
    Root of every modupdatepy error.

    Attributes
    ----------
    message: str
        What went wrong, in words a mod user can act on.
    code: Optional[int]
        HTTP status when the error came from a source site, else None.
    response: Optional[Any]
        The `requests.Response` (or payload) that caused it, kept for debugging.
    """

    def __init__(self, message: str, code: Optional[int] = None, response: Optional[Any] = None):
        self.message = message
        self.code = code
        self.response = response
        super().__init__(self.__str__())

    def __str__(self) -> str:
        base = self.message
        if self.code is not None:
            base += f" (code={self.code})"
        return base

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} code={self.code!r} message={self.message!r}>"


class ParseError(ModUpdateError):
    """Raised when a version string can't be parsed (strict mode, or nothing numeric to order)."""


class MalformedKeyError(ModUpdateError):
    """Raised when an update key doesn't name a known source or has no identifier."""


class ConfigurationError(ModUpdateError):
    """Raised when the update-check configuration is invalid or unreadable."""


class FetchFailureKind(str, Enum):
    """Why a single source call failed. Every kind is cached with the error TTL."""
    NOT_FOUND = "NotFound"
    RATE_LIMITED = "RateLimited"
    UNAVAILABLE = "Unavailable"
    MALFORMED = "Malformed"


class FetchError(ModUpdateError):
    """
    Base class for failures of one source adapter call.

    Subclasses set `kind`; the result cache stores the kind and message as a failed outcome.
    """
    kind: FetchFailureKind = FetchFailureKind.UNAVAILABLE


class NotFoundError(FetchError):
    """HTTP 404/410, or an identifier that can't exist on the source."""
    kind = FetchFailureKind.NOT_FOUND


class RateLimitError(FetchError):
    """HTTP 429. `retry_after` holds the seconds the site asked for (0.0 if it didn't say)."""
    kind = FetchFailureKind.RATE_LIMITED

    def __init__(self, message: str, code: Optional[int] = None, response: Optional[Any] = None,
                 retry_after: float = 0.0):
        self.retry_after = retry_after
        super().__init__(message, code, response)


class UnavailableError(FetchError):
    """5xx, timeouts and transport failures."""
    kind = FetchFailureKind.UNAVAILABLE


class MalformedResponseError(FetchError):
    """Raised when the source returns malformed/unparseable data."""
    kind = FetchFailureKind.MALFORMED


def map_http_status(status_code: int, message: str = "", response: Optional[Any] = None,
                    retry_after: float = 0.0) -> FetchError:
    """
    Convert an HTTP status code + message into an appropriate FetchError instance.

    Parameters
    ----------
    status_code : int
        Status the source site answered with.
    message : str
        Message for the resulting error (becomes the warning text).
    response : Any
        Response to attach for debugging.
    retry_after : float
        Seconds the server asked us to wait (429 only).

    Returns
    -------
    FetchError
        Not raised; the caller decides.
    """
    if status_code in (404, 410):
        return NotFoundError(message or "Not Found", status_code, response)
    if status_code == 429:
        return RateLimitError(message or "Rate Limited", status_code, response, retry_after=retry_after)
    if 500 <= status_code <= 599:
        return UnavailableError(message or "Server Error", status_code, response)
    if status_code in (401, 403):
        # bad/missing API key: the source is unusable for now, not the mod missing
        return UnavailableError(message or "Access denied", status_code, response)
    # fallback
    return MalformedResponseError(message or f"HTTP {status_code}", status_code, response)


__all__ = [
    "ModUpdateError",
    "ParseError",
    "MalformedKeyError",
    "ConfigurationError",
    "FetchFailureKind",
    "FetchError",
    "NotFoundError",
    "RateLimitError",
    "UnavailableError",
    "MalformedResponseError",
    "map_http_status",
]
