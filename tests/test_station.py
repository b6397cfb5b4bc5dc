import asyncio

import pytest
from websockets.asyncio.server import serve

from stationsim.exceptions import NotConnectedError, PolicyViolationError, StationConnectionError
from stationsim.state_machine import ChargingState
from stationsim.station import ChargingStation
from stationsim.transport import ConnectionState

from conftest import wait_until


async def _drain(ws):
    async for _ in ws:
        pass


@pytest.mark.asyncio
async def test_boot_notification_sent_on_open(connected):
    station, boot = connected["station"], connected["boot"]
    assert boot[0] == 2
    assert boot[3]["reason"] == "PowerUp"
    assert boot[3]["chargingStation"] == {"model": "Simulator", "vendorName": "OCPP Simulator"}
    assert station.connection_state is ConnectionState.CONNECTED
    assert station.handlers.heartbeat_interval == 300
    assert "Connected to CSMS with protocol ocpp2.0.1" in station.log.texts()
    assert connected["csms"].calls.empty()


@pytest.mark.asyncio
async def test_ocpp16_subprotocol(csms, station):
    session = await station.connect(csms.url, "ocpp1.6")
    assert session.transport.subprotocol == "ocpp1.6"
    assert csms.connections[-1].subprotocol == "ocpp1.6"
    await csms.next_call("BootNotification")


@pytest.mark.asyncio
async def test_transaction_start_and_end(connected):
    station, csms = connected["station"], connected["csms"]

    await station.request_transaction_start()
    started = await csms.next_call("TransactionEvent")
    assert started[3]["eventType"] == "Started"
    assert started[3]["seqNo"] == 0
    assert started[3]["evse"] == {"id": 1, "connectorId": 1}
    tx_id = started[3]["transactionInfo"]["transactionId"]

    await wait_until(lambda: station.station_state.charging_state == ChargingState.CHARGING)
    assert station.station_state.active_transaction_id == tx_id

    await station.request_transaction_end()
    ended = await csms.next_call("TransactionEvent")
    assert ended[3]["eventType"] == "Ended"
    assert ended[3]["seqNo"] == 1
    assert ended[3]["transactionInfo"]["transactionId"] == tx_id

    await wait_until(lambda: station.station_state.charging_state == ChargingState.AVAILABLE)
    assert station.station_state.active_transaction_id is None


@pytest.mark.asyncio
async def test_second_start_rejected_without_sending(connected):
    station, csms = connected["station"], connected["csms"]
    csms.auto_reply = False

    await station.request_transaction_start()
    await csms.next_call("TransactionEvent")
    with pytest.raises(PolicyViolationError):
        await station.request_transaction_start()

    await asyncio.sleep(0.1)
    assert csms.calls.empty()
    assert isinstance(station.last_error, PolicyViolationError)
    assert any(t.startswith("PolicyViolationError") for t in station.log.texts())


@pytest.mark.asyncio
async def test_end_rejected_when_available(connected):
    station, csms = connected["station"], connected["csms"]
    with pytest.raises(PolicyViolationError):
        await station.request_transaction_end()
    await asyncio.sleep(0.1)
    assert csms.calls.empty()


@pytest.mark.asyncio
async def test_unknown_result_does_not_touch_state(connected):
    station, csms = connected["station"], connected["csms"]
    before = station.station_state

    await csms.send([3, "unknown-id", {}])
    await wait_until(lambda: any(t.startswith("UnmatchedResultError") for t in station.log.texts()))

    assert station.station_state == before
    assert station.connection_state is ConnectionState.CONNECTED


@pytest.mark.asyncio
async def test_close_cancels_pending_calls(connected):
    station, csms = connected["station"], connected["csms"]
    csms.auto_reply = False

    await station.request_transaction_start()
    await csms.next_call("TransactionEvent")
    assert len(station.session.dispatcher.pending) == 1

    await csms.connections[-1].close()
    await wait_until(lambda: station.connection_state is ConnectionState.DISCONNECTED)

    assert station.session is None
    assert "Disconnected from CSMS" in station.log.texts()
    assert any(t.startswith("CallCancelledError") for t in station.log.texts())
    # the unconfirmed start left the station available and startable again
    assert station.station_state.charging_state == ChargingState.AVAILABLE
    station.machine.check_start()


@pytest.mark.asyncio
async def test_statusnotification_and_authorize(connected):
    station, csms = connected["station"], connected["csms"]

    await station.request_status_notification()
    status = await csms.next_call("StatusNotification")
    assert status[3]["connectorStatus"] == "Available"
    assert status[3]["evseId"] == 1 and status[3]["connectorId"] == 1

    await station.request_authorize("TAG123", "Central")
    auth = await csms.next_call("Authorize")
    assert auth[3] == {"idToken": {"idToken": "TAG123", "type": "Central"}}

    await wait_until(lambda: station.handlers.authorization_status == "Accepted")
    assert station.station_state.charging_state == ChargingState.AVAILABLE


@pytest.mark.asyncio
async def test_transaction_update_while_charging(connected):
    station, csms = connected["station"], connected["csms"]
    await station.request_transaction_start()
    await csms.next_call("TransactionEvent")
    await wait_until(lambda: station.station_state.charging_state == ChargingState.CHARGING)

    await station.request_transaction_update()
    update = await csms.next_call("TransactionEvent")
    assert update[3]["eventType"] == "Updated"
    assert update[3]["triggerReason"] == "ChargingStateChanged"
    assert update[3]["seqNo"] == 1


@pytest.mark.asyncio
async def test_call_timeout_keeps_session(csms):
    station = ChargingStation(call_timeout=0.2)
    csms.auto_reply = False
    try:
        await station.connect(csms.url, "ocpp2.0.1")
        await csms.next_call("BootNotification")
        await wait_until(lambda: any(t.startswith("CallTimeoutError") for t in station.log.texts()))
        assert station.connection_state is ConnectionState.CONNECTED
        assert station.session.dispatcher.pending == {}
    finally:
        await station.disconnect()


@pytest.mark.asyncio
async def test_unsupported_csms_call_gets_error_reply(connected):
    csms = connected["csms"]
    await csms.send([2, "srv-1", "Reset", {"type": "Immediate"}])
    reply = await asyncio.wait_for(csms.replies.get(), timeout=5)
    assert reply[:3] == [4, "srv-1", "NotSupported"]


@pytest.mark.asyncio
async def test_intents_while_disconnected(station):
    assert await station.request_status_notification() is None
    assert await station.request_transaction_start() is None
    assert station.log.texts().count("Not connected to CSMS") == 2
    assert station.station_state.charging_state == ChargingState.AVAILABLE
    assert station.machine.in_flight is None


@pytest.mark.asyncio
async def test_connect_refused(station):
    with pytest.raises(StationConnectionError):
        await station.connect("ws://127.0.0.1:1/", "ocpp2.0.1")
    assert station.connection_state is ConnectionState.DISCONNECTED
    assert station.session is None
    assert isinstance(station.last_error, StationConnectionError)
    await wait_until(lambda: any(t.startswith("WebSocket error occurred") for t in station.log.texts()))


@pytest.mark.asyncio
async def test_invalid_address_and_protocol(station):
    with pytest.raises(StationConnectionError):
        await station.connect("not-a-url", "ocpp2.0.1")
    with pytest.raises(StationConnectionError):
        await station.connect("ws://127.0.0.1:1/", "ocpp9")
    assert station.connection_state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_reconnect_replaces_session(connected):
    station, csms = connected["station"], connected["csms"]
    first = station.session

    second = await station.connect(csms.url, "ocpp2.0.1")
    await csms.next_call("BootNotification")

    assert second is not first
    assert first.closed
    assert station.session is second
    assert station.connection_state is ConnectionState.CONNECTED


@pytest.mark.asyncio
async def test_disconnect_is_idempotent(connected):
    station = connected["station"]
    await station.disconnect()
    await station.disconnect()
    assert station.connection_state is ConnectionState.DISCONNECTED
    assert station.log.texts().count("Disconnected from CSMS") == 1


@pytest.mark.asyncio
async def test_failing_csms_call_handler_keeps_session(connected):
    station, csms = connected["station"], connected["csms"]

    async def on_reset(envelope):
        raise KeyError("type")

    station.session.dispatcher.register_request("Reset", on_reset)
    await csms.send([2, "srv-1", "Reset", {"type": "Immediate"}])
    reply = await asyncio.wait_for(csms.replies.get(), timeout=5)
    assert reply[:3] == [4, "srv-1", "InternalError"]

    assert await station.request_authorize() is not None
    await wait_until(lambda: station.handlers.authorization_status == "Accepted")
    assert station.connection_state is ConnectionState.CONNECTED
    assert not station.session.closed
    assert station.session.dispatcher.pending == {}


@pytest.mark.asyncio
async def test_concurrent_starts_send_one_event(connected):
    station, csms = connected["station"], connected["csms"]
    transport = station.session.transport
    real_send = transport.send

    async def slow_send(text):
        await asyncio.sleep(0.05)
        await real_send(text)

    transport.send = slow_send
    results = await asyncio.gather(
        station.request_transaction_start(),
        station.request_transaction_start(),
        return_exceptions=True,
    )
    assert isinstance(results[0], str)
    assert isinstance(results[1], PolicyViolationError)

    await csms.next_call("TransactionEvent")
    await wait_until(lambda: station.station_state.charging_state == ChargingState.CHARGING)
    assert csms.calls.empty()


@pytest.mark.asyncio
async def test_failed_send_clears_in_flight(connected):
    station = connected["station"]

    async def broken_send(text):
        raise NotConnectedError()

    station.session.transport.send = broken_send
    assert await station.request_transaction_start() is None
    assert station.machine.in_flight is None
    assert station.station_state.charging_state == ChargingState.AVAILABLE


@pytest.mark.asyncio
async def test_subprotocol_refused_by_csms(station):
    async with serve(_drain, "127.0.0.1", 0, subprotocols=["ocpp1.6"]) as server:
        port = next(iter(server.sockets)).getsockname()[1]
        with pytest.raises(StationConnectionError):
            await station.connect(f"ws://127.0.0.1:{port}/ocpp/TestCP01", "ocpp2.0.1")
    assert station.session is None
    assert station.connection_state is ConnectionState.DISCONNECTED
    assert isinstance(station.last_error, StationConnectionError)
