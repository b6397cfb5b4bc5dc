import uuid
from dataclasses import dataclass
from typing import Optional

from ocpp.v201.enums import ConnectorStatusEnumType, TransactionEventEnumType

from .exceptions import PolicyViolationError


class ChargingState:
    AVAILABLE = "Available"
    CHARGING = "Charging"
    # reserved, nothing drives these yet
    FAULTED = "Faulted"
    UNAVAILABLE = "Unavailable"


@dataclass(frozen=True)
class StationState:
    charging_state: str = ChargingState.AVAILABLE
    active_transaction_id: Optional[str] = None


class StationStateMachine:
    """Charging state of the single EVSE.

    The state only moves on confirmed TransactionEvent results. Intents are
    checked with ``check_*`` before anything is sent so an impossible request
    never reaches the CSMS.
    """

    def __init__(self):
        self.charging_state = ChargingState.AVAILABLE
        self.active_transaction_id: Optional[str] = None
        # eventType sent and not yet confirmed
        self.in_flight: Optional[str] = None
        self._seq_no = 0

    def snapshot(self) -> StationState:
        return StationState(self.charging_state, self.active_transaction_id)

    def to_status(self) -> str:
        # map internal -> OCPP 2.0.1 connector status
        if self.charging_state == ChargingState.CHARGING:
            return ConnectorStatusEnumType.occupied.value
        if self.charging_state == ChargingState.FAULTED:
            return ConnectorStatusEnumType.faulted.value
        if self.charging_state == ChargingState.UNAVAILABLE:
            return ConnectorStatusEnumType.unavailable.value
        return ConnectorStatusEnumType.available.value

    # ----- guards -----
    def check_start(self) -> None:
        if self.charging_state == ChargingState.CHARGING:
            raise PolicyViolationError("transaction already started")
        if self.in_flight == TransactionEventEnumType.started.value:
            raise PolicyViolationError("transaction start already awaiting confirmation")
        if self.charging_state != ChargingState.AVAILABLE:
            raise PolicyViolationError(f"cannot start a transaction while {self.charging_state}")

    def check_end(self) -> None:
        if self.charging_state != ChargingState.CHARGING:
            raise PolicyViolationError("no active transaction to end")
        if self.in_flight == TransactionEventEnumType.ended.value:
            raise PolicyViolationError("transaction end already awaiting confirmation")

    def check_update(self) -> None:
        if self.charging_state != ChargingState.CHARGING:
            raise PolicyViolationError("no active transaction to update")

    # ----- transaction data for outgoing events -----
    def new_transaction_id(self) -> str:
        return self.active_transaction_id or str(uuid.uuid4())

    def next_seq_no(self, event_type: str) -> int:
        if event_type == TransactionEventEnumType.started.value:
            self._seq_no = 0
        else:
            self._seq_no += 1
        return self._seq_no

    def mark_sent(self, event_type: str) -> None:
        if event_type != TransactionEventEnumType.updated.value:
            self.in_flight = event_type

    def abandon(self, event_type: str) -> None:
        """Forget an in-flight event that failed; the state is unchanged."""
        if self.in_flight == event_type:
            self.in_flight = None

    # ----- confirmed transitions -----
    def confirm_started(self, transaction_id: str) -> bool:
        self.abandon(TransactionEventEnumType.started.value)
        if self.charging_state == ChargingState.CHARGING or self.active_transaction_id is not None:
            return False
        self.active_transaction_id = transaction_id
        self.charging_state = ChargingState.CHARGING
        return True

    def confirm_ended(self, transaction_id: str) -> bool:
        self.abandon(TransactionEventEnumType.ended.value)
        if self.charging_state != ChargingState.CHARGING or self.active_transaction_id is None:
            return False
        if transaction_id != self.active_transaction_id:
            return False
        self.active_transaction_id = None
        self.charging_state = ChargingState.AVAILABLE
        return True
