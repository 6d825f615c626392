import errno
import socket

import pytest
import requests
from urllib3.exceptions import MaxRetryError, NewConnectionError

from oai_harvester.errors import (
    EmptyResponseError,
    HttpStatusError,
    MalformedResponseError,
    TransportError,
    ValidationError,
    classify,
)
from tests.conftest import FakeResponse


class CodedError(Exception):
    def __init__(self, code):
        super().__init__(code)
        self.code = code


def test_unknown_for_none_and_plain_errors():
    assert classify(None) == "UNKNOWN_ERROR"
    assert classify(Exception("Unknown error")) == "UNKNOWN_ERROR"
    assert classify(ValidationError("OAI URL is required")) == "UNKNOWN_ERROR"
    assert classify(EmptyResponseError("Empty response")) == "UNKNOWN_ERROR"


@pytest.mark.parametrize("code, expected", [
    ("ECONNREFUSED", "CONNECTION_REFUSED"),
    ("ENOTFOUND", "DNS_RESOLUTION_FAILED"),
    ("ETIMEDOUT", "TIMEOUT_ERROR"),
    ("ECONNRESET", "CONNECTION_RESET"),
])
def test_named_network_codes(code, expected):
    assert classify(CodedError(code)) == expected
    assert classify({"code": code}) == expected


def test_os_errors_by_errno():
    assert classify(ConnectionRefusedError(errno.ECONNREFUSED, "Connection refused")) == "CONNECTION_REFUSED"
    assert classify(ConnectionResetError(errno.ECONNRESET, "reset by peer")) == "CONNECTION_RESET"
    assert classify(OSError(errno.ETIMEDOUT, "timed out")) == "TIMEOUT_ERROR"
    assert classify(socket.gaierror(socket.EAI_NONAME, "Name or service not known")) == "DNS_RESOLUTION_FAILED"


def test_refused_connection_buried_inside_requests_error():
    refused = ConnectionRefusedError(errno.ECONNREFUSED, "Connection refused")
    new_conn = NewConnectionError(None, "Failed to establish a new connection")
    new_conn.__cause__ = refused
    error = requests.ConnectionError(MaxRetryError(None, "/oai", reason=new_conn))

    assert classify(error) == "CONNECTION_REFUSED"


def test_http_status_codes():
    assert classify({"response": {"status": 404}}) == "HTTP_CLIENT_ERROR_404"
    assert classify({"response": {"status": 500}}) == "HTTP_SERVER_ERROR_500"
    assert classify(HttpStatusError("HTTP error 403", FakeResponse(status_code=403))) == "HTTP_CLIENT_ERROR_403"
    assert classify(HttpStatusError("HTTP error 503", FakeResponse(status_code=503))) == "HTTP_SERVER_ERROR_503"
    assert classify(HttpStatusError("HTTP error 302", FakeResponse(status_code=302))) == "HTTP_ERROR_302"


def test_requests_http_error_uses_status():
    response = requests.Response()
    response.status_code = 429
    assert classify(requests.HTTPError("Too Many Requests", response=response)) == "HTTP_CLIENT_ERROR_429"


def test_requests_library_errors():
    assert classify(requests.ReadTimeout("read timed out")) == "REQUEST_TIMEOUT"
    assert classify(requests.ConnectionError("network unreachable")) == "NETWORK_ERROR"
    assert classify(requests.TooManyRedirects("Exceeded 5 redirects")) == "HTTP_LIBRARY_ERROR"
    assert classify(TransportError("invalid chunk length")) == "HTTP_LIBRARY_ERROR"


def test_network_code_wins_over_library_type():
    error = requests.ConnectionError("refused")
    error.__cause__ = ConnectionRefusedError(errno.ECONNREFUSED, "Connection refused")
    assert classify(error) == "CONNECTION_REFUSED"


def test_builtin_error_kinds():
    assert classify(TypeError("bad operand")) == "TYPE_ERROR"
    assert classify(SyntaxError("invalid syntax")) == "SYNTAX_ERROR"
    assert classify(NameError("name 'x' is not defined")) == "REFERENCE_ERROR"
    assert classify(MalformedResponseError("Invalid XML")) == "UNKNOWN_ERROR"
