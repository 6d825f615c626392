# oai_harvester/errors.py
# Exception types raised by the harvester and the error-code classifier.

import errno
import socket
from typing import Any, Iterator, Mapping, Optional

import requests
from urllib3.exceptions import NameResolutionError

UNKNOWN_ERROR = "UNKNOWN_ERROR"

# Phase-level codes reported by the orchestrator
IDENTIFY_PROCESSING_ERROR = "IDENTIFY_PROCESSING_ERROR"
LISTRECORDS_PROCESSING_ERROR = "LISTRECORDS_PROCESSING_ERROR"
PAGE_PROCESSING_FAILED = "PAGE_PROCESSING_FAILED"

# Network failures raised by the HTTP stack
TransportError = requests.RequestException


class HarvestError(Exception):
    """Base class for errors raised by the harvester itself."""


class ValidationError(HarvestError):
    """The caller supplied an unusable OAI endpoint URL."""


class ProtocolError(HarvestError):
    """The endpoint answered, but not with a usable OAI-PMH response."""


class HttpStatusError(ProtocolError):
    """Non-200 response. Keeps the response so the status can be classified."""

    def __init__(self, message: str, response: Any = None):
        super().__init__(message)
        self.response = response


class EmptyResponseError(ProtocolError):
    pass


class MalformedResponseError(ProtocolError):
    """XML could not be parsed or the expected OAI-PMH element is missing."""


class RecordError(HarvestError):
    """A single record could not be normalized."""


class DeliveryError(HarvestError):
    """The raw-file store or the message publisher failed."""


_ERRNO_CODES = {
    errno.ECONNREFUSED: "CONNECTION_REFUSED",
    errno.ETIMEDOUT: "TIMEOUT_ERROR",
    errno.ECONNRESET: "CONNECTION_RESET",
}

_NAMED_CODES = {
    "ECONNREFUSED": "CONNECTION_REFUSED",
    "ENOTFOUND": "DNS_RESOLUTION_FAILED",
    "EAI_AGAIN": "DNS_RESOLUTION_FAILED",
    "ETIMEDOUT": "TIMEOUT_ERROR",
    "ECONNRESET": "CONNECTION_RESET",
}


def _get(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _error_chain(error: Any) -> Iterator[Any]:
    """Walk an exception and the errors it wraps, each visited once.

    requests buries the socket error a few levels down, for example
    ConnectionError -> MaxRetryError.reason -> NewConnectionError -> OSError.
    """
    seen = set()
    pending = [error]
    while pending:
        current = pending.pop(0)
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        if isinstance(current, BaseException):
            pending.extend([current.__cause__, current.__context__, getattr(current, "reason", None)])
            pending.extend(arg for arg in current.args if isinstance(arg, BaseException))


def _network_code(error: Any) -> Optional[str]:
    for current in _error_chain(error):
        if isinstance(current, (socket.gaierror, NameResolutionError)):
            return "DNS_RESOLUTION_FAILED"
        code = _get(current, "code")
        if isinstance(code, str) and code in _NAMED_CODES:
            return _NAMED_CODES[code]
        if isinstance(current, OSError) and current.errno in _ERRNO_CODES:
            return _ERRNO_CODES[current.errno]
    return None


def _status_code(error: Any) -> Optional[int]:
    response = _get(error, "response")
    if response is None:
        return None
    status = _get(response, "status_code")
    if status is None:
        status = _get(response, "status")
    try:
        return int(status) if status else None
    except (TypeError, ValueError):
        return None


def classify(error: Any) -> str:
    """Map a raised error to a canonical error code.

    Checks run in a fixed order and the first match wins: socket-level codes,
    then the HTTP status, then requests exception types, then built-in
    exception kinds. Anything else, including ``None``, is ``UNKNOWN_ERROR``.
    """
    if error is None:
        return UNKNOWN_ERROR

    code = _network_code(error)
    if code:
        return code

    status = _status_code(error)
    if status:
        if 400 <= status < 500:
            return f"HTTP_CLIENT_ERROR_{status}"
        if 500 <= status < 600:
            return f"HTTP_SERVER_ERROR_{status}"
        return f"HTTP_ERROR_{status}"

    if isinstance(error, requests.Timeout):
        return "REQUEST_TIMEOUT"
    if isinstance(error, requests.ConnectionError):
        return "NETWORK_ERROR"
    if isinstance(error, TransportError):
        return "HTTP_LIBRARY_ERROR"

    if isinstance(error, TypeError):
        return "TYPE_ERROR"
    if isinstance(error, SyntaxError):
        return "SYNTAX_ERROR"
    if isinstance(error, NameError):
        return "REFERENCE_ERROR"

    return UNKNOWN_ERROR
