import asyncio
import json

import pytest_asyncio
from websockets.asyncio.server import serve

from stationsim.station import ChargingStation

CALL_RESULTS = {
    "BootNotification": {"currentTime": "2024-01-01T00:00:00Z", "interval": 300, "status": "Accepted"},
    "StatusNotification": {},
    "Authorize": {"idTokenInfo": {"status": "Accepted"}},
    "TransactionEvent": {},
}


class FakeCSMS:
    """Minimal central system: records frames and answers calls with results."""

    def __init__(self):
        self.calls: asyncio.Queue = asyncio.Queue()
        self.replies: asyncio.Queue = asyncio.Queue()
        self.connections = []
        self.auto_reply = True
        self.url = None

    async def handler(self, ws):
        self.connections.append(ws)
        async for raw in ws:
            frame = json.loads(raw)
            if frame[0] != 2:
                await self.replies.put(frame)
                continue
            await self.calls.put(frame)
            if self.auto_reply:
                await ws.send(json.dumps([3, frame[1], CALL_RESULTS.get(frame[2], {})]))

    async def send(self, frame):
        await self.connections[-1].send(json.dumps(frame))

    async def next_call(self, action=None, timeout=5):
        while True:
            frame = await asyncio.wait_for(self.calls.get(), timeout=timeout)
            if action is None or frame[2] == action:
                return frame


async def wait_until(predicate, timeout=5):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(_poll(), timeout=timeout)


@pytest_asyncio.fixture
async def csms():
    fake = FakeCSMS()
    async with serve(fake.handler, "127.0.0.1", 0, subprotocols=["ocpp2.0.1", "ocpp1.6"]) as server:
        port = next(iter(server.sockets)).getsockname()[1]
        fake.url = f"ws://127.0.0.1:{port}/ocpp/TestCP01"
        yield fake


@pytest_asyncio.fixture
async def station():
    st = ChargingStation(call_timeout=5, open_timeout=5)
    yield st
    await st.disconnect()


@pytest_asyncio.fixture
async def connected(csms, station):
    """Station connected to the fake CSMS with its BootNotification answered."""
    await station.connect(csms.url, "ocpp2.0.1")
    boot = await csms.next_call("BootNotification")
    await wait_until(lambda: station.handlers.registration_status == "Accepted")
    return {"station": station, "csms": csms, "boot": boot}
