"""Exception hierarchy for session and context delivery.

Specific exceptions for each failure mode. Every failure degrades a
single operation; none is fatal to the process.
"""
from __future__ import annotations


class LloroError(Exception):
    """Base exception for all lloro errors."""


class RpcError(LloroError):
    """A backend RPC call failed."""
    def __init__(self, method: str, message: str):
        self.method = method
        super().__init__(message)


class TransportError(RpcError):
    """Backend unreachable or answered with a non-2xx status."""
    def __init__(self, method: str, reason: str, status: int | None = None):
        self.reason = reason
        self.status = status
        detail = f"HTTP {status}: {reason}" if status is not None else reason
        super().__init__(method, f"{method} transport failure ({detail})")


class ProtocolError(RpcError):
    """Backend answered with a malformed JSON-RPC envelope."""
    def __init__(self, method: str, reason: str):
        self.reason = reason
        super().__init__(method, f"{method} protocol violation: {reason}")


class RemoteError(RpcError):
    """Backend returned a well-formed JSON-RPC error object."""
    def __init__(self, method: str, message: str, code: int | None = None):
        self.remote_message = message
        self.code = code
        super().__init__(method, message)


class SessionNotFoundError(LloroError):
    """No session with the requested id exists in the store."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class ExtractionFailedError(LloroError):
    """The content provider returned nothing for a tab."""
    def __init__(self, url: str | None):
        self.url = url
        super().__init__(
            f"Could not extract page content from {url or 'the active tab'}"
        )


class ValidationError(LloroError):
    """A request was rejected before any state changed."""


class EmptyMessageError(ValidationError):
    def __init__(self) -> None:
        super().__init__("Message text is empty")


class TurnInFlightError(ValidationError):
    """A chat turn is already running for this session."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(
            f"A message is already being sent in session {session_id}"
        )
