class SimulatorError(Exception):
    pass


class MalformedFrame(SimulatorError):
    """Inbound data that can't be read as an OCPP-J frame."""


class UnknownMessageType(MalformedFrame):
    def __init__(self, message_type_id):
        self.message_type_id = message_type_id

    def __str__(self):
        return f"Unknown OCPP message type: {self.message_type_id!r}"


class NotConnected(SimulatorError):
    def __str__(self):
        return "Charge point is not connected"


class RequestFailed(SimulatorError):
    """An outbound Call that did not produce a CallResult."""

    def __init__(self, action: str, unique_id: str):
        self.action = action
        self.unique_id = unique_id

    def __str__(self):
        return f"{self.action} failed ({self.unique_id})"


class RequestTimeout(RequestFailed):
    def __str__(self):
        return f"Timeout waiting for {self.action} ({self.unique_id})"


class CallErrorReceived(RequestFailed):
    def __init__(self, action: str, unique_id: str, code: str, description: str, details=None):
        super().__init__(action, unique_id)
        self.code = code
        self.description = description
        self.details = details or {}

    def __str__(self):
        return f"{self.action} failed: {self.code} {self.description}"


class ConnectionLost(RequestFailed):
    def __str__(self):
        return f"Connection closed while waiting for {self.action} ({self.unique_id})"


class BootRejected(SimulatorError):
    def __init__(self, status):
        self.status = status

    def __str__(self):
        return f"Boot not accepted: {self.status}"


class TransactionActive(SimulatorError):
    def __init__(self, transaction_id):
        self.transaction_id = transaction_id

    def __str__(self):
        return f"Charging session already active (transaction {self.transaction_id})"
