"""Call correlation and action dispatch.

Outgoing calls are tracked in a pending table keyed by message id until the
CSMS answers, the call times out or the session goes away. Results are routed
to the handler registered for the call's action; CSMS-initiated calls are routed
through a second table keyed by action.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from ocpp.v201.enums import Action

from . import codec
from .codec import CallEnvelope, ErrorEnvelope, ResultEnvelope
from .config import CALL_TIMEOUT_SEC
from .exceptions import (
    CallCancelledError,
    CallErrorResponse,
    CallTimeoutError,
    DecodeError,
    NotConnectedError,
    StationError,
    UnmatchedResultError,
)
from .log import EventLog
from .transport import ConnectionState


@dataclass
class PendingCall:
    message_id: str
    action: Action
    payload: Dict[str, Any]
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False, compare=False)


ResultHandler = Callable[[PendingCall, Dict[str, Any]], None]
FailureHandler = Callable[[PendingCall, StationError], None]
RequestHandler = Callable[[CallEnvelope], Awaitable[Dict[str, Any]]]


@dataclass
class ActionHandler:
    on_result: ResultHandler
    on_failure: Optional[FailureHandler] = None


class Dispatcher:
    def __init__(self, transport, log: EventLog, call_timeout: Optional[float] = CALL_TIMEOUT_SEC):
        self.transport = transport
        self.log = log
        self.call_timeout = call_timeout
        self.on_error: Optional[Callable[[StationError], None]] = None
        self._handlers: Dict[Action, ActionHandler] = {}
        self._request_handlers: Dict[Action, RequestHandler] = {}
        self._pending: Dict[str, PendingCall] = {}

    # ----- registration -----
    def register(
        self,
        action: Union[Action, str],
        on_result: ResultHandler,
        on_failure: Optional[FailureHandler] = None,
    ) -> None:
        """Handle confirmations of calls the station sends for ``action``."""
        self._handlers[Action(action)] = ActionHandler(on_result, on_failure)

    def register_request(self, action: Union[Action, str], handler: RequestHandler) -> None:
        """Handle calls the CSMS sends for ``action``; the handler returns the result payload."""
        self._request_handlers[Action(action)] = handler

    @property
    def pending(self) -> Dict[str, PendingCall]:
        return dict(self._pending)

    def _report(self, err: StationError, level: int = logging.WARNING) -> None:
        self.log.append(f"{type(err).__name__}: {err}", level)
        if self.on_error is not None:
            self.on_error(err)

    # ----- outgoing -----
    def _new_message_id(self) -> str:
        message_id = str(uuid.uuid4())
        while message_id in self._pending:
            message_id = str(uuid.uuid4())
        return message_id

    async def send_call(self, action: Union[Action, str], payload: Dict[str, Any]) -> str:
        """Send a call and return its message id without waiting for the result."""
        action = Action(action)
        if action not in self._handlers:
            raise ValueError(f"no handler registered for {action.value}")
        if self.transport.state is not ConnectionState.CONNECTED:
            raise NotConnectedError()

        envelope = CallEnvelope(self._new_message_id(), action.value, payload)
        pending = PendingCall(envelope.message_id, action, payload)
        self._pending[pending.message_id] = pending
        text = codec.encode(envelope)
        try:
            await self.transport.send(text)
        except NotConnectedError:
            self._pending.pop(pending.message_id, None)
            raise
        # the confirmation may already have been processed while send() yielded
        if self._pending.get(pending.message_id) is pending and self.call_timeout:
            loop = asyncio.get_running_loop()
            pending.timer = loop.call_later(self.call_timeout, self._expire, pending.message_id)
        self.log.append(f"Sent: {text}")
        return pending.message_id

    def _pop(self, message_id: str) -> Optional[PendingCall]:
        pending = self._pending.pop(message_id, None)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()
        return pending

    def _fail(self, pending: PendingCall, err: StationError) -> None:
        self._report(err)
        handler = self._handlers.get(pending.action)
        if handler is not None and handler.on_failure is not None:
            handler.on_failure(pending, err)

    def _expire(self, message_id: str) -> None:
        pending = self._pop(message_id)
        if pending is None:
            return
        self._fail(pending, CallTimeoutError(pending.action.value, message_id, self.call_timeout))

    def cancel_all(self, reason: str) -> int:
        """Drop every pending call; each one's failure handler sees CallCancelledError."""
        cancelled = 0
        for message_id in list(self._pending):
            pending = self._pop(message_id)
            if pending is None:
                continue
            self._fail(pending, CallCancelledError(pending.action.value, message_id, reason))
            cancelled += 1
        return cancelled

    # ----- incoming -----
    async def on_frame_received(self, raw: Union[str, bytes]) -> None:
        text = raw.decode("utf-8", "replace") if isinstance(raw, (bytes, bytearray)) else raw
        self.log.append(f"Received: {text}")
        try:
            envelope = codec.decode(raw)
        except DecodeError as e:
            self._report(e)
            return

        if isinstance(envelope, CallEnvelope):
            await self._on_remote_call(envelope)
            return

        pending = self._pop(envelope.message_id)
        if pending is None:
            self._report(UnmatchedResultError(envelope.message_id))
            return

        if isinstance(envelope, ErrorEnvelope):
            self._fail(
                pending,
                CallErrorResponse(
                    pending.action.value,
                    pending.message_id,
                    envelope.error_code,
                    envelope.error_description,
                    envelope.details,
                ),
            )
            return

        handler = self._handlers[pending.action]
        payload = envelope.payload if isinstance(envelope.payload, dict) else {}
        handler.on_result(pending, payload)

    async def _on_remote_call(self, envelope: CallEnvelope) -> None:
        try:
            action = Action(envelope.action)
        except ValueError:
            action = None
        handler = self._request_handlers.get(action) if action is not None else None

        if handler is None:
            self.log.append(f"Unsupported action from CSMS: {envelope.action}", logging.WARNING)
            code = "NotSupported" if action is not None else "NotImplemented"
            reply = ErrorEnvelope(
                envelope.message_id, code, f"{envelope.action} is not supported by this station"
            )
        else:
            payload = envelope.payload if isinstance(envelope.payload, dict) else {}
            try:
                result = await handler(CallEnvelope(envelope.message_id, envelope.action, payload))
                reply = ResultEnvelope(envelope.message_id, result or {})
            except StationError as e:
                self._report(e)
                reply = ErrorEnvelope(envelope.message_id, "InternalError", str(e))
            except Exception as e:
                logging.exception(f"{envelope.action} handler failed")
                err = StationError(f"{envelope.action} handler failed: {type(e).__name__}: {e}")
                self._report(err, logging.ERROR)
                reply = ErrorEnvelope(envelope.message_id, "InternalError", str(err))

        text = codec.encode(reply)
        try:
            await self.transport.send(text)
        except NotConnectedError as e:
            self._report(e)
            return
        self.log.append(f"Sent: {text}")
