"""Errors raised by the OpenCode transport, and session error classification."""

import json
from dataclasses import dataclass

import httpx


class OpenCodeError(Exception):
    """Base class for failures talking to the OpenCode server."""

    code = "UNKNOWN"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        if code:
            self.code = code


class ServerConnectionError(OpenCodeError):
    code = "CONNECTION_ERROR"


class NotFoundError(OpenCodeError):
    code = "NOT_FOUND"


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


_STATUS_CODES = {401: "UNAUTHORIZED", 403: "FORBIDDEN", 400: "BAD_REQUEST"}


def wrap_transport_error(error: Exception) -> OpenCodeError:
    """Map an httpx (or already wrapped) exception to an OpenCodeError."""
    if isinstance(error, OpenCodeError):
        return error

    message = str(error) or error.__class__.__name__

    if isinstance(error, (httpx.TransportError, OSError)):
        return ServerConnectionError(message)

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status == 404:
            return NotFoundError(message)
        if status in _STATUS_CODES:
            return OpenCodeError(message, _STATUS_CODES[status])

    return OpenCodeError(message)


# ── Session errors ───────────────────────────────────────────────


@dataclass(frozen=True)
class ClassifiedSessionError:
    error: dict
    classification: str  # "critical" | "dismissable"
    message: str
    hint: str | None = None


def classify_session_error(error: dict | None) -> ClassifiedSessionError | None:
    """Classify a ``session.error`` payload for display.

    Aborted messages and retryable API errors are not shown (the server
    retries on its own). Provider auth errors cannot be dismissed.
    """
    if not error:
        return None

    name = error.get("name", "")
    data = error.get("data") if isinstance(error.get("data"), dict) else {}

    if name == "MessageAbortedError":
        return None
    if name == "APIError" and data.get("isRetryable") is True:
        return None

    return ClassifiedSessionError(
        error=error,
        classification="critical" if name == "ProviderAuthError" else "dismissable",
        message=_session_error_message(name, data),
        hint=_session_error_hint(name, data),
    )


def session_error_signature(error: dict | None) -> str | None:
    """Stable signature for remembering dismissed errors."""
    if not error:
        return None
    try:
        return f"{error.get('name', '')}:{json.dumps(error.get('data'), sort_keys=True)}"
    except (TypeError, ValueError):
        return str(error.get("name", ""))


def _session_error_message(name: str, data: dict) -> str:
    if data.get("message"):
        return str(data["message"])
    if name == "ProviderAuthError":
        provider = data.get("providerID")
        return f"Authentication failed for {provider}" if provider else "Authentication failed"
    if name == "MessageOutputLengthError":
        return "Response was too long and was truncated"
    if name == "APIError":
        return "An API error occurred"
    return "An error occurred"


def _session_error_hint(name: str, data: dict) -> str | None:
    if name == "ProviderAuthError":
        return "Check your API key or re-authenticate with the provider"
    if name == "MessageOutputLengthError":
        return "Try breaking your request into smaller parts"
    if name == "APIError":
        return "You may need to try again later"
    return None
