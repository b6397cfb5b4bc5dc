"""Console-facing API of the simulated charging station.

``ChargingStation`` is what an operator console talks to. Each successful
``connect()`` creates a ``SessionHandle`` that owns the websocket transport,
the dispatcher with its pending-call table and the task draining transport
events. The handle is torn down on ``disconnect()`` or when the CSMS closes the
connection. Charging state lives on the station and outlives sessions.
"""
import asyncio
import logging
from typing import Optional

from ocpp.v201.enums import Action, TransactionEventEnumType, TriggerReasonEnumType

from . import ocpp_handlers
from .config import CALL_TIMEOUT_SEC, CSMS_URL, OCPP_PROTOCOL, OPEN_TIMEOUT_SEC
from .dispatch import Dispatcher
from .exceptions import NotConnectedError, PolicyViolationError, StationConnectionError, StationError
from .log import EventLog
from .ocpp_handlers import StationHandlers
from .state_machine import StationState, StationStateMachine
from .transport import ConnectionState, EventKind, TransportSession

PROTOCOL_VERSIONS = ("ocpp2.0.1", "ocpp1.6")


class SessionHandle:
    """One websocket session: transport, dispatcher and the event loop task."""

    def __init__(self, station: "ChargingStation", transport: TransportSession, dispatcher: Dispatcher):
        self.station = station
        self.transport = transport
        self.dispatcher = dispatcher
        self.protocol: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._task = asyncio.create_task(self._run())

    @property
    def closed(self) -> bool:
        return self._task is not None and self._task.done()

    async def _run(self) -> None:
        log = self.station.log
        try:
            while True:
                event = await self.transport.events.get()
                if event.kind is EventKind.OPEN:
                    self.protocol = event.data
                    log.append(f"Connected to CSMS with protocol {event.data}")
                    await self.station._on_session_open(self)
                elif event.kind is EventKind.MESSAGE:
                    await self.dispatcher.on_frame_received(event.data)
                elif event.kind is EventKind.ERROR:
                    log.append(f"WebSocket error occurred: {event.data}", logging.ERROR)
                    break
                elif event.kind is EventKind.CLOSE:
                    log.append("Disconnected from CSMS")
                    break
        except Exception as e:
            logging.exception("Session loop failed")
            err = StationError(f"session loop failed: {type(e).__name__}: {e}")
            log.append(f"{type(err).__name__}: {err}", logging.ERROR)
            self.station._record_error(err)
            await self.transport.close()
        finally:
            cancelled = self.dispatcher.cancel_all("connection closed")
            if cancelled:
                logging.info(f"{cancelled} pending call(s) discarded on disconnect")
            self.station._on_session_closed(self)

    async def close(self, timeout: float = 5.0) -> None:
        await self.transport.close()
        if self._task is None:
            return
        done, _ = await asyncio.wait({self._task}, timeout=timeout)
        if not done:
            self._task.cancel()
            self.dispatcher.cancel_all("session torn down")
            self.station._on_session_closed(self)


class ChargingStation:
    def __init__(self, call_timeout: Optional[float] = CALL_TIMEOUT_SEC, open_timeout: float = OPEN_TIMEOUT_SEC):
        self.call_timeout = call_timeout
        self.open_timeout = open_timeout
        self.log = EventLog()
        self.machine = StationStateMachine()
        self.handlers = StationHandlers(self.machine, self.log)
        self.session: Optional[SessionHandle] = None
        self.last_error: Optional[StationError] = None

    # ----- observers -----
    @property
    def connection_state(self) -> ConnectionState:
        if self.session is None:
            return ConnectionState.DISCONNECTED
        return self.session.transport.state

    @property
    def station_state(self) -> StationState:
        return self.machine.snapshot()

    def _record_error(self, err: StationError) -> None:
        self.last_error = err

    # ----- session lifecycle -----
    async def connect(self, address: str = CSMS_URL, protocol_version: str = OCPP_PROTOCOL) -> SessionHandle:
        if self.session is not None:
            await self.session.close()
            self.session = None

        if protocol_version not in PROTOCOL_VERSIONS:
            err = StationConnectionError(f"unsupported protocol version {protocol_version!r}")
            self.log.append(f"{type(err).__name__}: {err}", logging.ERROR)
            self._record_error(err)
            raise err

        transport = TransportSession(open_timeout=self.open_timeout)
        dispatcher = Dispatcher(transport, self.log, self.call_timeout)
        dispatcher.on_error = self._record_error
        self.handlers.register(dispatcher)
        session = SessionHandle(self, transport, dispatcher)
        self.session = session
        session.start()

        self.log.append(f"Connecting to CSMS: {address} ({protocol_version})")
        try:
            await transport.open(address, protocol_version)
        except StationConnectionError as e:
            self._record_error(e)
            await session.close()
            if self.session is session:
                self.session = None
            raise
        self.last_error = None
        return session

    async def disconnect(self) -> None:
        session = self.session
        if session is None:
            return
        await session.close()
        if self.session is session:
            self.session = None

    async def _on_session_open(self, session: SessionHandle) -> None:
        try:
            await self._send(Action.boot_notification, ocpp_handlers.boot_notification(), session)
        except NotConnectedError as e:
            logging.warning(f"BootNotification not sent: {e}")

    def _on_session_closed(self, session: SessionHandle) -> None:
        if self.session is session:
            self.session = None

    async def _send(self, action: Action, payload, session: Optional[SessionHandle] = None) -> str:
        session = session or self.session
        if session is None:
            raise NotConnectedError()
        return await session.dispatcher.send_call(action, payload)

    async def _send_intent(self, action: Action, payload) -> Optional[str]:
        try:
            return await self._send(action, payload)
        except NotConnectedError as e:
            self._not_connected(e)
            return None

    def _not_connected(self, err: NotConnectedError) -> None:
        self.log.append(str(err), logging.WARNING)
        self._record_error(err)

    def _guard(self, check) -> None:
        try:
            check()
        except PolicyViolationError as e:
            self.log.append(f"{type(e).__name__}: {e}", logging.WARNING)
            self._record_error(e)
            raise

    # ----- operator intents -----
    async def request_status_notification(self, status: Optional[str] = None) -> Optional[str]:
        payload = ocpp_handlers.status_notification(status or self.machine.to_status())
        return await self._send_intent(Action.status_notification, payload)

    async def request_authorize(self, id_token: Optional[str] = None, token_type: Optional[str] = None) -> Optional[str]:
        kwargs = {}
        if id_token is not None:
            kwargs["id_token"] = id_token
        if token_type is not None:
            kwargs["token_type"] = token_type
        return await self._send_intent(Action.authorize, ocpp_handlers.authorize(**kwargs))

    async def _transaction_event(self, event_type: str, trigger_reason: str) -> Optional[str]:
        if self.connection_state is not ConnectionState.CONNECTED:
            self._not_connected(NotConnectedError())
            return None
        tx_id = self.machine.new_transaction_id()
        seq_no = self.machine.next_seq_no(event_type)
        payload = ocpp_handlers.transaction_event(event_type, tx_id, seq_no, trigger_reason)
        # marked before sending so a concurrent intent sees it while send() yields
        self.machine.mark_sent(event_type)
        message_id = await self._send_intent(Action.transaction_event, payload)
        if message_id is None:
            self.machine.abandon(event_type)
        return message_id

    async def request_transaction_start(self) -> Optional[str]:
        """Send TransactionEvent(Started); raises PolicyViolationError if already charging."""
        self._guard(self.machine.check_start)
        return await self._transaction_event(
            TransactionEventEnumType.started.value, TriggerReasonEnumType.authorized.value
        )

    async def request_transaction_end(self) -> Optional[str]:
        """Send TransactionEvent(Ended); raises PolicyViolationError unless charging."""
        self._guard(self.machine.check_end)
        return await self._transaction_event(
            TransactionEventEnumType.ended.value, TriggerReasonEnumType.authorized.value
        )

    async def request_transaction_update(self, trigger_reason: Optional[str] = None) -> Optional[str]:
        self._guard(self.machine.check_update)
        return await self._transaction_event(
            TransactionEventEnumType.updated.value,
            trigger_reason or TriggerReasonEnumType.charging_state_changed.value,
        )
