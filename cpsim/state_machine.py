from dataclasses import dataclass
from typing import Optional

from ocpp.v16.enums import ChargePointStatus

from .exceptions import TransactionActive


class ConnectorStatus:
    AVAILABLE = ChargePointStatus.available
    PREPARING = ChargePointStatus.preparing
    CHARGING = ChargePointStatus.charging
    UNAVAILABLE = ChargePointStatus.unavailable


@dataclass
class SessionState:
    connected: bool = False
    # Only true after a BootNotification was accepted on the current connection.
    boot_accepted: bool = False


@dataclass
class Transaction:
    transaction_id: int
    id_tag: str
    start_meter_wh: int
    current_meter_wh: int
    started_at: str
    remote_initiated: bool = False

    @property
    def energy_wh(self) -> int:
        return self.current_meter_wh - self.start_meter_wh

    @property
    def energy_kwh(self) -> float:
        return self.energy_wh / 1000

    @property
    def start_type(self) -> str:
        return "Remote/API" if self.remote_initiated else "Independent/RFID"


class Connector:
    def __init__(self, connector_id: int = 1, meter_start_wh: int = 0):
        self.id = connector_id
        self.status = ConnectorStatus.AVAILABLE
        self.meter_wh = meter_start_wh
        self.transaction: Optional[Transaction] = None

    def begin_transaction(self, transaction_id, id_tag: str, meter_start_wh: int, started_at: str,
                          remote_initiated: bool = False) -> Transaction:
        """Record a transaction the central system confirmed."""
        if self.transaction is not None:
            raise TransactionActive(self.transaction.transaction_id)
        self.transaction = Transaction(
            transaction_id=transaction_id,
            id_tag=id_tag,
            start_meter_wh=meter_start_wh,
            current_meter_wh=self.meter_wh,
            started_at=started_at,
            remote_initiated=remote_initiated,
        )
        return self.transaction

    def add_energy(self, wh: int) -> int:
        self.meter_wh += wh
        if self.transaction is not None:
            self.transaction.current_meter_wh = self.meter_wh
        return self.meter_wh

    def end_transaction(self) -> Optional[Transaction]:
        tx, self.transaction = self.transaction, None
        return tx
