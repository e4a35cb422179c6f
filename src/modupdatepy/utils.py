from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import *

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .exceptions import MalformedResponseError

__all__ = [
    "DEFAULT_USER_AGENT",
    "logger_setup",
    "session_factory",
    "parse_retry_after",
    "safe_json",
    "utc_now",
]

DEFAULT_USER_AGENT = "modupdatepy/0.1 (update checks; +https://smapi.io)"

# lookups only read, so every method the adapters use is safe to repeat
_RETRYABLE_METHODS = frozenset(["GET", "HEAD", "POST"])


def utc_now() -> datetime:
    """Current time as an aware UTC datetime (the default clock for the result cache)."""
    return datetime.now(timezone.utc)


def logger_setup(name: str = "modupdatepy",
                 level: int = logging.INFO,
                 *,
                 log_to_file: Optional[str] = None,
                 file_level: Optional[int] = None,
                 fmt: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                 datefmt: str = "%H:%M:%S") -> logging.Logger:
    """
    Attach console (and optionally file) handlers to the package logger.

    Every module logs through ``logging.getLogger(__name__)``, so configuring
    ``"modupdatepy"`` covers cache hits, HTTP calls and update notices at once.
    Calling it again for the same name only adjusts the level.

    Parameters
    ----------
    name : str
        Logger to configure; the package root by default.
    level : int
        Console level.
    log_to_file : Optional[str]
        Also write to this file.
    file_level : Optional[int]
        File handler level; same as `level` if omitted.

    Example
    -------
    >>> log = logger_setup(level=logging.DEBUG, log_to_file="update-checks.log")
    >>> log.debug("cache warmed")
    """
    logger = logging.getLogger(name)
    file_level = level if file_level is None else file_level
    logger.setLevel(min(level, file_level) if log_to_file else level)

    if getattr(logger, "_modupdate_setup_done", False):
        return logger

    formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)
    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_to_file:
        file_handler = logging.FileHandler(log_to_file, encoding="utf-8")
        file_handler.setLevel(file_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger._modupdate_setup_done = True
    return logger


def session_factory(user_agent: Optional[str] = None,
                    *,
                    pool_maxsize: int = 10,
                    pool_connections: int = 10,
                    max_retries: int = 0,
                    backoff_factor: float = 0.0,
                    status_forcelist: Optional[Iterable[int]] = (500, 502, 503, 504),
                    default_headers: Optional[Dict[str, str]] = None) -> requests.Session:
    """
    Build the one `requests.Session` every source adapter shares.

    Site credentials are not set here; each adapter sends its own header
    (GitHub token, Nexus ``apikey``, CurseForge ``x-api-key``).

    Parameters
    ----------
    user_agent : Optional[str]
        Defaults to DEFAULT_USER_AGENT. Some sites reject requests without one.
    pool_maxsize, pool_connections : int
        Connection pool sizing. Keep `pool_maxsize` at or above the aggregator's
        worker count, otherwise concurrent lookups wait on the pool.
    max_retries : int
        urllib3 retries for connect/read errors and `status_forcelist` statuses.
        Off by default: every adapter call has its own timeout, and a failed
        lookup is cached for the error TTL rather than hammered.
    backoff_factor : float
        urllib3 exponential backoff between retries.
    status_forcelist : Iterable[int]
        Statuses retried when `max_retries` > 0. 429 is not in the default list,
        rate limits are reported and cached instead.
    default_headers : Optional[Dict[str,str]]
        Merged over the default Accept/User-Agent headers.

    Returns
    -------
    requests.Session
    """
    session = requests.Session()
    session.headers.update({"Accept": "application/json", "User-Agent": user_agent or DEFAULT_USER_AGENT})
    if default_headers:
        session.headers.update(default_headers)

    retry: Union[Retry, int] = 0
    if max_retries and max_retries > 0:
        retry = Retry(
            total=max_retries,
            connect=max_retries,
            read=max_retries,
            status=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=tuple(status_forcelist or ()),
            allowed_methods=_RETRYABLE_METHODS,
            respect_retry_after_header=False,
            raise_on_status=False,
        )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=pool_connections, pool_maxsize=pool_maxsize)
    for prefix in ("https://", "http://"):
        session.mount(prefix, adapter)
    return session


def parse_retry_after(value: Optional[Union[str, int, float]]) -> float:
    """
    Seconds to wait according to a ``Retry-After`` header.

    Handles both forms the header can take (delta seconds, or an HTTP date).
    Missing, negative, past or unparseable values give 0.0.
    """
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return max(0.0, float(value))

    text = str(value).strip()
    if text.isdigit():
        return float(text)
    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return 0.0
    if when is None:
        return 0.0
    return max(0.0, when.timestamp() - time.time())


def safe_json(payload: Union[str, bytes, dict, list, None], *, source: str = "") -> Union[dict, list]:
    """
    Decode a response body, raising MalformedResponseError instead of returning junk.

    `payload` may be text, bytes, or something already decoded (returned unchanged).
    `source` prefixes the error message (``"Nexus returned invalid JSON: ..."``).
    """
    prefix = f"{source} " if source else ""
    if isinstance(payload, (dict, list)):
        return payload

    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if payload is None or not str(payload).strip():
        raise MalformedResponseError(f"{prefix}returned an empty response")

    try:
        return json.loads(payload)
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(f"{prefix}returned invalid JSON: {exc}") from exc
