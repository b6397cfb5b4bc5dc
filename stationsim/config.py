import os

CSMS_URL = os.getenv("CSMS_URL", "ws://127.0.0.1:1880/")
# "ocpp2.0.1" or "ocpp1.6"; used as the websocket subprotocol
OCPP_PROTOCOL = os.getenv("OCPP_PROTOCOL", "ocpp2.0.1")
# TLS certificate configuration (optional, wss:// only)
TLS_CA_CERT = os.getenv("TLS_CA_CERT")
TLS_CLIENT_CERT = os.getenv("TLS_CLIENT_CERT")
TLS_CLIENT_KEY = os.getenv("TLS_CLIENT_KEY")

CPID = os.getenv("CPID", "TestCP01")
STATION_MODEL = os.getenv("STATION_MODEL", "Simulator")
STATION_VENDOR = os.getenv("STATION_VENDOR", "OCPP Simulator")

ID_TOKEN = os.getenv("ID_TOKEN", "1234567890")
ID_TOKEN_TYPE = os.getenv("ID_TOKEN_TYPE", "ISO14443")

EVSE_ID = 1
CONNECTOR_ID = 1

CALL_TIMEOUT_SEC = float(os.getenv("CALL_TIMEOUT_SEC", "30"))  # 0 disables
OPEN_TIMEOUT_SEC = float(os.getenv("OPEN_TIMEOUT_SEC", "10"))

HTTP_HOST = os.getenv("HTTP_HOST", "0.0.0.0")
HTTP_PORT = int(os.getenv("HTTP_PORT", "7071"))
AUTO_CONNECT = os.getenv("AUTO_CONNECT", "0").lower() in ("1", "true", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
