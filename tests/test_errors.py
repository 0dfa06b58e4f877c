"""Tests for transport error mapping and session error classification."""

import httpx

from opencode_mirror.errors import (
    NotFoundError,
    OpenCodeError,
    ServerConnectionError,
    SessionNotFoundError,
    classify_session_error,
    session_error_signature,
    wrap_transport_error,
)


def status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "http://opencode.test/session")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"status {status}", request=request, response=response)


class TestWrapTransportError:

    def test_connection_failures(self):
        error = wrap_transport_error(httpx.ConnectError("refused"))
        assert isinstance(error, ServerConnectionError)
        assert error.code == "CONNECTION_ERROR"
        assert isinstance(wrap_transport_error(OSError("reset")), ServerConnectionError)

    def test_status_codes(self):
        assert isinstance(wrap_transport_error(status_error(404)), NotFoundError)
        assert wrap_transport_error(status_error(401)).code == "UNAUTHORIZED"
        assert wrap_transport_error(status_error(403)).code == "FORBIDDEN"
        assert wrap_transport_error(status_error(400)).code == "BAD_REQUEST"
        assert wrap_transport_error(status_error(500)).code == "UNKNOWN"

    def test_already_wrapped_is_returned_unchanged(self):
        error = SessionNotFoundError("ses_001")
        assert wrap_transport_error(error) is error
        assert error.code == "NOT_FOUND"
        assert error.session_id == "ses_001"

    def test_unknown_errors(self):
        error = wrap_transport_error(RuntimeError("boom"))
        assert type(error) is OpenCodeError
        assert str(error) == "boom"


class TestClassifySessionError:

    def test_nothing_to_show(self):
        assert classify_session_error(None) is None
        assert classify_session_error({}) is None

    def test_aborted_is_hidden(self):
        assert classify_session_error({"name": "MessageAbortedError"}) is None

    def test_retryable_api_error_is_hidden(self):
        error = {"name": "APIError", "data": {"isRetryable": True, "message": "overloaded"}}
        assert classify_session_error(error) is None

    def test_api_error(self):
        classified = classify_session_error({"name": "APIError", "data": {"isRetryable": False}})
        assert classified.classification == "dismissable"
        assert classified.message == "An API error occurred"
        assert classified.hint == "You may need to try again later"

    def test_provider_auth_error_is_critical(self):
        classified = classify_session_error({"name": "ProviderAuthError", "data": {"providerID": "anthropic"}})
        assert classified.classification == "critical"
        assert classified.message == "Authentication failed for anthropic"
        assert classified.hint is not None

    def test_server_message_wins(self):
        classified = classify_session_error({"name": "UnknownError", "data": {"message": "disk full"}})
        assert classified.classification == "dismissable"
        assert classified.message == "disk full"
        assert classified.hint is None


def test_session_error_signature():
    a = {"name": "APIError", "data": {"b": 1, "a": 2}}
    b = {"name": "APIError", "data": {"a": 2, "b": 1}}
    assert session_error_signature(a) == session_error_signature(b)
    assert session_error_signature(a) != session_error_signature({"name": "APIError", "data": {}})
    assert session_error_signature(None) is None
