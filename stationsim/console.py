from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field, ConfigDict, AliasChoices

from .config import CSMS_URL, OCPP_PROTOCOL
from .exceptions import PolicyViolationError, StationConnectionError
from .station import ChargingStation


class ConnectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(CSMS_URL, validation_alias=AliasChoices("url", "wsUrl"))
    protocol: str = Field(OCPP_PROTOCOL, validation_alias=AliasChoices("protocol", "protocolVersion"))


class StatusRequest(BaseModel):
    status: Optional[str] = Field(None, validation_alias=AliasChoices("status", "connectorStatus"))


class AuthorizeRequest(BaseModel):
    id_token: Optional[str] = Field(None, validation_alias=AliasChoices("id_token", "idToken"))
    type: Optional[str] = None


class UpdateRequest(BaseModel):
    trigger_reason: Optional[str] = Field(None, validation_alias=AliasChoices("trigger_reason", "triggerReason"))


def _sent(message_id: Optional[str]) -> dict:
    if message_id is None:
        return {"ok": False, "error": "not connected"}
    return {"ok": True, "messageId": message_id}


def create_app(station: ChargingStation) -> FastAPI:
    """HTTP control surface for an operator; holds no protocol logic."""
    app = FastAPI(title="Station Simulator Control")
    app.state.station = station

    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.get("/state")
    async def state():
        st = station.station_state
        return {
            "connectionState": station.connection_state.value,
            "chargingState": st.charging_state,
            "transactionId": st.active_transaction_id,
            "registrationStatus": station.handlers.registration_status,
            "lastError": str(station.last_error) if station.last_error else None,
        }

    @app.get("/logs")
    async def logs(since: int = 0):
        return {
            "next": len(station.log),
            "entries": [
                {"timestamp": e.timestamp.isoformat(), "text": e.text}
                for e in station.log.since(since)
            ],
        }

    @app.post("/connect")
    async def connect(req: ConnectRequest):
        try:
            await station.connect(req.url, req.protocol)
        except StationConnectionError as e:
            raise HTTPException(status_code=502, detail=str(e))
        return {"ok": True, "connectionState": station.connection_state.value}

    @app.post("/disconnect")
    async def disconnect():
        await station.disconnect()
        return {"ok": True, "connectionState": station.connection_state.value}

    @app.post("/status_notification")
    async def status_notification(req: Optional[StatusRequest] = None):
        status = req.status if req is not None else None
        return _sent(await station.request_status_notification(status))

    @app.post("/authorize")
    async def authorize(req: Optional[AuthorizeRequest] = None):
        req = req or AuthorizeRequest()
        return _sent(await station.request_authorize(req.id_token, req.type))

    @app.post("/transaction/start")
    async def transaction_start():
        try:
            return _sent(await station.request_transaction_start())
        except PolicyViolationError as e:
            raise HTTPException(status_code=409, detail=str(e))

    @app.post("/transaction/end")
    async def transaction_end():
        try:
            return _sent(await station.request_transaction_end())
        except PolicyViolationError as e:
            raise HTTPException(status_code=409, detail=str(e))

    @app.post("/transaction/update")
    async def transaction_update(req: Optional[UpdateRequest] = None):
        try:
            return _sent(await station.request_transaction_update(req.trigger_reason if req else None))
        except PolicyViolationError as e:
            raise HTTPException(status_code=409, detail=str(e))

    return app
