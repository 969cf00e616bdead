import os

CSMS_URL = os.getenv("CSMS_URL", "ws://localhost:8090")
CPID = os.getenv("CPID", "TG001")
OCPP_SUBPROTOCOL = "ocpp1.6"

# Basic auth presented once when the websocket is opened
CP_USERNAME = os.getenv("CP_USERNAME", CPID)
CP_PASSWORD = os.getenv("CP_PASSWORD", "ChargerAuthKeyTG001")

# TLS certificate configuration (optional, wss:// only)
TLS_CA_CERT = os.getenv("TLS_CA_CERT")
TLS_CLIENT_CERT = os.getenv("TLS_CLIENT_CERT")
TLS_CLIENT_KEY = os.getenv("TLS_CLIENT_KEY")

VENDOR = os.getenv("CP_VENDOR", "MEV")
MODEL = os.getenv("CP_MODEL", "MEV-AC7kW")
SERIAL = os.getenv("CP_SERIAL", "SN-0001")
FIRMWARE = os.getenv("CP_FIRMWARE", "1.0.0")

CONNECTOR_ID = 1

METER_START_WH = int(os.getenv("METER_START_WH", "10000"))
METER_PERIOD_SEC = float(os.getenv("METER_PERIOD_SEC", "10"))
# ~4-7 kW at a 10s period
METER_INCREMENT_MIN_WH = int(os.getenv("METER_INCREMENT_MIN_WH", "120"))
METER_INCREMENT_MAX_WH = int(os.getenv("METER_INCREMENT_MAX_WH", "199"))

SEND_HEARTBEAT_SEC = float(os.getenv("SEND_HEARTBEAT_SEC", "60"))
REQUEST_TIMEOUT_SEC = float(os.getenv("REQUEST_TIMEOUT_SEC", "20"))
RECONNECT_DELAY_SEC = float(os.getenv("RECONNECT_DELAY_SEC", "5"))
RESET_GRACE_SEC = float(os.getenv("RESET_GRACE_SEC", "0.3"))
SETTLE_DELAY_SEC = float(os.getenv("SETTLE_DELAY_SEC", "0.5"))

DEFAULT_TRANSACTION_ID = 1
REMOTE_ID_TAG = os.getenv("REMOTE_ID_TAG", "API-TAG")

HTTP_PORT = int(os.getenv("HTTP_PORT", "7071"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
