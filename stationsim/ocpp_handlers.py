import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ocpp.charge_point import remove_nones, snake_to_camel_case
from ocpp.v201 import call
from ocpp.v201.enums import (
    Action,
    BootReasonEnumType,
    TransactionEventEnumType,
    TriggerReasonEnumType,
)

from .config import CONNECTOR_ID, EVSE_ID, ID_TOKEN, ID_TOKEN_TYPE, STATION_MODEL, STATION_VENDOR
from .dispatch import Dispatcher, PendingCall
from .exceptions import StationError
from .log import EventLog
from .state_machine import StationStateMachine

SUPPORTED_ACTIONS = (
    Action.boot_notification,
    Action.status_notification,
    Action.authorize,
    Action.transaction_event,
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def to_payload(req) -> Dict[str, Any]:
    """ocpp request dataclass -> camelCase JSON payload."""
    return snake_to_camel_case(remove_nones(asdict(req)))


# -------- payload builders --------
def boot_notification(model: str = STATION_MODEL, vendor: str = STATION_VENDOR) -> Dict[str, Any]:
    req = call.BootNotification(
        charging_station={"model": model, "vendor_name": vendor},
        reason=BootReasonEnumType.power_up.value,
    )
    return to_payload(req)


def status_notification(connector_status: str) -> Dict[str, Any]:
    req = call.StatusNotification(
        timestamp=_now(),
        connector_status=connector_status,
        evse_id=EVSE_ID,
        connector_id=CONNECTOR_ID,
    )
    return to_payload(req)


def authorize(id_token: str = ID_TOKEN, token_type: str = ID_TOKEN_TYPE) -> Dict[str, Any]:
    req = call.Authorize(id_token={"id_token": id_token, "type": token_type})
    return to_payload(req)


def transaction_event(
    event_type: str,
    transaction_id: str,
    seq_no: int,
    trigger_reason: str = TriggerReasonEnumType.authorized.value,
) -> Dict[str, Any]:
    req = call.TransactionEvent(
        event_type=event_type,
        timestamp=_now(),
        trigger_reason=trigger_reason,
        seq_no=seq_no,
        transaction_info={"transaction_id": transaction_id},
        evse={"id": EVSE_ID, "connector_id": CONNECTOR_ID},
    )
    return to_payload(req)


# -------- confirmation handlers (CSMS -> station results) --------
class StationHandlers:
    """Result handlers for the calls the station sends."""

    def __init__(self, machine: StationStateMachine, log: EventLog):
        self.machine = machine
        self.log = log
        self.registration_status: Optional[str] = None
        self.heartbeat_interval: Optional[int] = None
        self.authorization_status: Optional[str] = None

    def register(self, dispatcher: Dispatcher) -> None:
        dispatcher.register(Action.boot_notification, self.on_boot_result)
        dispatcher.register(Action.status_notification, self.on_status_result)
        dispatcher.register(Action.authorize, self.on_authorize_result)
        dispatcher.register(
            Action.transaction_event, self.on_transaction_result, self.on_transaction_failure
        )

    def on_boot_result(self, pending: PendingCall, payload: Dict[str, Any]) -> None:
        self.registration_status = payload.get("status")
        self.heartbeat_interval = payload.get("interval")
        self.log.append(
            f"Boot Notification Confirmed (status={self.registration_status}, interval={self.heartbeat_interval})"
        )

    def on_status_result(self, pending: PendingCall, payload: Dict[str, Any]) -> None:
        self.log.append(f"Status Notification Confirmed ({pending.payload.get('connectorStatus')})")

    def on_authorize_result(self, pending: PendingCall, payload: Dict[str, Any]) -> None:
        info = payload.get("idTokenInfo") or {}
        self.authorization_status = info.get("status")
        self.log.append(f"Authorization Confirmed (status={self.authorization_status})")

    def on_transaction_result(self, pending: PendingCall, payload: Dict[str, Any]) -> None:
        event_type = pending.payload.get("eventType")
        tx_id = (pending.payload.get("transactionInfo") or {}).get("transactionId")

        if event_type == TransactionEventEnumType.started.value:
            applied = self.machine.confirm_started(tx_id)
        elif event_type == TransactionEventEnumType.ended.value:
            applied = self.machine.confirm_ended(tx_id)
        else:
            applied = True
        if not applied:
            self.log.append(
                f"Transaction {event_type} confirmation ignored: station is {self.machine.charging_state}",
                logging.WARNING,
            )
            return
        self.log.append(f"Transaction {event_type} Confirmed (transactionId={tx_id})")

    def on_transaction_failure(self, pending: PendingCall, err: StationError) -> None:
        event_type = pending.payload.get("eventType")
        self.machine.abandon(event_type)
        logging.info(f"Transaction {event_type} not confirmed, state stays {self.machine.charging_state}")
