from .station import ChargingStation, SessionHandle
from .state_machine import ChargingState, StationState
from .transport import ConnectionState

__all__ = ["ChargingStation", "ChargingState", "ConnectionState", "SessionHandle", "StationState"]
