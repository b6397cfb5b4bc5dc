"""Errors raised or reported by the station simulator.

None of these end the process. Callers either get them raised (connect and
policy checks) or see them in the event log.
"""
from typing import Any, Dict, Optional


class StationError(Exception):
    """Base class for every simulator error."""


class StationConnectionError(StationError):
    """The CSMS could not be reached, refused the handshake or the subprotocol."""


class NotConnectedError(StationError):
    """An intent needed a live connection but there is none."""

    def __init__(self, message: str = "Not connected to CSMS"):
        super().__init__(message)


class DecodeError(StationError):
    """An inbound frame is not a well-formed OCPP-J message."""

    def __init__(self, message: str, raw: Any = None):
        super().__init__(message)
        self.raw = raw


class UnmatchedResultError(StationError):
    """A result or error frame referenced a message id that is not pending."""

    def __init__(self, message_id: str):
        super().__init__(f"no pending call for message id {message_id!r}")
        self.message_id = message_id


class PolicyViolationError(StationError):
    """The station state does not allow the requested intent."""


class CallTimeoutError(StationError):
    """The CSMS did not answer a call within the call timeout."""

    def __init__(self, action: str, message_id: str, timeout: float):
        super().__init__(f"{action} ({message_id}) not confirmed within {timeout:g}s")
        self.action = action
        self.message_id = message_id
        self.timeout = timeout


class CallCancelledError(StationError):
    """A pending call was dropped because its session went away."""

    def __init__(self, action: str, message_id: str, reason: str):
        super().__init__(f"{action} ({message_id}) cancelled: {reason}")
        self.action = action
        self.message_id = message_id
        self.reason = reason


class CallErrorResponse(StationError):
    """The CSMS answered a call with a CallError frame."""

    def __init__(
        self,
        action: str,
        message_id: str,
        error_code: str,
        error_description: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(f"{action} ({message_id}) failed: {error_code} {error_description}".rstrip())
        self.action = action
        self.message_id = message_id
        self.error_code = error_code
        self.error_description = error_description
        self.details = details or {}
