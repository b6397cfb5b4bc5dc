import asyncio
import enum
import logging
import ssl
from dataclasses import dataclass
from typing import Any, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from .config import TLS_CA_CERT, TLS_CLIENT_CERT, TLS_CLIENT_KEY, OPEN_TIMEOUT_SEC
from .exceptions import NotConnectedError, StationConnectionError


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"


class EventKind(str, enum.Enum):
    OPEN = "open"
    MESSAGE = "message"
    CLOSE = "close"
    ERROR = "error"


@dataclass(frozen=True)
class TransportEvent:
    kind: EventKind
    data: Any = None


def build_ssl_context() -> Optional[ssl.SSLContext]:
    """SSL context from the TLS_* settings, or None to use websockets' default."""
    if not (TLS_CA_CERT or TLS_CLIENT_CERT):
        return None
    ctx = ssl.create_default_context(cafile=TLS_CA_CERT)
    if TLS_CLIENT_CERT:
        ctx.load_cert_chain(TLS_CLIENT_CERT, TLS_CLIENT_KEY)
    return ctx


class TransportSession:
    """The single websocket connection to the CSMS.

    Lifecycle events are put on ``events`` in the order they happen. Each
    ``open()`` produces exactly one OPEN or ERROR event; a live connection that
    ends for any reason produces one CLOSE event.
    """

    def __init__(self, open_timeout: float = OPEN_TIMEOUT_SEC):
        self.open_timeout = open_timeout
        self.state = ConnectionState.DISCONNECTED
        self.subprotocol: Optional[str] = None
        self.events: "asyncio.Queue[TransportEvent]" = asyncio.Queue()
        self._ws: Optional[ClientConnection] = None
        self._reader: Optional[asyncio.Task] = None
        self._attempt = 0

    def _emit(self, kind: EventKind, data: Any = None) -> None:
        self.events.put_nowait(TransportEvent(kind, data))

    async def open(self, address: str, subprotocol: str) -> None:
        if self.state is not ConnectionState.DISCONNECTED:
            await self.close()

        self._attempt += 1
        attempt = self._attempt
        self.state = ConnectionState.CONNECTING
        kwargs = {}
        if address.startswith("wss://"):
            ctx = build_ssl_context()
            if ctx is not None:
                kwargs["ssl"] = ctx
        try:
            ws = await connect(
                address,
                subprotocols=[subprotocol],
                open_timeout=self.open_timeout,
                **kwargs,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError, ValueError) as e:
            if attempt == self._attempt:
                self.state = ConnectionState.DISCONNECTED
            detail = f"{type(e).__name__}: {e}"
            self._emit(EventKind.ERROR, detail)
            raise StationConnectionError(f"cannot connect to {address}: {detail}") from e

        if attempt != self._attempt:
            # a newer open() started while this one was connecting
            await ws.close()
            detail = "connection attempt superseded"
            self._emit(EventKind.ERROR, detail)
            raise StationConnectionError(detail)

        if ws.subprotocol != subprotocol:
            await ws.close()
            self.state = ConnectionState.DISCONNECTED
            detail = f"CSMS did not accept subprotocol {subprotocol} (got {ws.subprotocol})"
            self._emit(EventKind.ERROR, detail)
            raise StationConnectionError(detail)

        self._ws = ws
        self.subprotocol = subprotocol
        self.state = ConnectionState.CONNECTED
        self._emit(EventKind.OPEN, subprotocol)
        self._reader = asyncio.create_task(self._read_loop(ws))

    async def _read_loop(self, ws: ClientConnection) -> None:
        reason = None
        try:
            async for message in ws:
                self._emit(EventKind.MESSAGE, message)
        except ConnectionClosed as e:
            reason = str(e)
        finally:
            if reason is None:
                reason = f"code={ws.close_code} reason={ws.close_reason or ''}".rstrip()
            if self._ws is ws:
                self._ws = None
                self.subprotocol = None
                self.state = ConnectionState.DISCONNECTED
            self._emit(EventKind.CLOSE, reason)

    async def send(self, text: str) -> None:
        if self.state is not ConnectionState.CONNECTED or self._ws is None:
            raise NotConnectedError()
        try:
            await self._ws.send(text)
        except ConnectionClosed as e:
            raise NotConnectedError(f"Not connected to CSMS ({e})") from e

    async def close(self) -> None:
        """Close the connection; calling it again, or when closed, does nothing."""
        ws, reader = self._ws, self._reader
        if ws is None:
            if self.state is ConnectionState.CONNECTING:
                # invalidate the in-progress open()
                self._attempt += 1
                self.state = ConnectionState.DISCONNECTED
                logging.info("Connection attempt abandoned")
            return
        await ws.close()
        if reader is not None:
            await reader
        self._reader = None
