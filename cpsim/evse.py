import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import Optional, Tuple

from ocpp.v16 import call
from ocpp.v16.enums import AuthorizationStatus, ChargePointErrorCode, Measurand, Reason, UnitOfMeasure

from .config import (
    CONNECTOR_ID,
    DEFAULT_TRANSACTION_ID,
    METER_INCREMENT_MAX_WH,
    METER_INCREMENT_MIN_WH,
    METER_PERIOD_SEC,
    METER_START_WH,
    SETTLE_DELAY_SEC,
)
from .exceptions import TransactionActive
from .state_machine import Connector, ConnectorStatus, Transaction


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class EVSE:
    """The single connector of a charge point and its charging sessions.

    Every status change is reported with a StatusNotification. The local
    status is updated as soon as the notification is sent, the reply is
    awaited afterwards.
    """

    def __init__(
        self,
        cp,
        connector_id: int = CONNECTOR_ID,
        meter_start_wh: int = METER_START_WH,
        meter_period: float = METER_PERIOD_SEC,
        meter_increment_wh: Tuple[int, int] = (METER_INCREMENT_MIN_WH, METER_INCREMENT_MAX_WH),
        settle_delay: float = SETTLE_DELAY_SEC,
        rng: Optional[random.Random] = None,
    ):
        self.cp = cp
        self.connector = Connector(connector_id, meter_start_wh)
        self.meter_period = meter_period
        self.meter_increment_wh = meter_increment_wh
        self.settle_delay = settle_delay
        self._rng = rng or random.Random()
        self._meter_task: Optional[asyncio.Task] = None
        self._tx_lock = asyncio.Lock()

    # -------- status --------
    async def send_status(self, status, error_code=ChargePointErrorCode.no_error):
        request = await self.cp.send_call(
            call.StatusNotification(
                connector_id=self.connector.id,
                error_code=error_code,
                status=status,
                timestamp=_now(),
            )
        )
        self.connector.status = status
        logging.info(f"Status changed to: {status}")
        await request

    async def announce(self):
        """Report the connector after a boot was accepted."""
        if self.connector.transaction is not None:
            await self.send_status(ConnectorStatus.CHARGING)
            self.start_metering()
        else:
            await self.send_status(ConnectorStatus.AVAILABLE)

    async def restore_status(self):
        """Best effort: report the status matching the transaction state."""
        status = ConnectorStatus.CHARGING if self.connector.transaction else ConnectorStatus.AVAILABLE
        try:
            await self.send_status(status)
        except Exception as e:
            logging.error(f"Failed to restore connector status to {status}: {e}")

    async def plug_in(self):
        if self.connector.transaction is not None:
            raise TransactionActive(self.connector.transaction.transaction_id)
        await self.send_status(ConnectorStatus.PREPARING)

    async def make_available(self):
        if self.connector.transaction is not None:
            raise TransactionActive(self.connector.transaction.transaction_id)
        await self.send_status(ConnectorStatus.AVAILABLE)

    # -------- authorization & sessions --------
    async def authorize(self, id_tag: str) -> str:
        logging.info(f"Authorizing idTag: {id_tag}")
        reply = await self.cp.call(call.Authorize(id_tag=id_tag))
        id_tag_info = reply.get("id_tag_info")
        if not isinstance(id_tag_info, dict):
            id_tag_info = {}
        # Permissive test servers leave the status out.
        return id_tag_info.get("status") or AuthorizationStatus.accepted

    async def begin_session(self, id_tag: str, remote: bool = False) -> str:
        """Preparing -> Authorize -> StartTransaction.

        Returns the authorization status. On anything but `Accepted` the
        connector is reported `Available` again and no transaction starts.
        """
        # A remote start during a running transaction also passes through
        # Preparing; start_transaction refuses it later.
        if self.connector.status != ConnectorStatus.PREPARING:
            logging.info("Status is not Preparing, changing status...")
            await self.send_status(ConnectorStatus.PREPARING)
            await asyncio.sleep(self.settle_delay)

        status = await self.authorize(id_tag)
        if status != AuthorizationStatus.accepted:
            logging.warning(f"Authorization rejected: {status}")
            await self.restore_status()
            return status

        logging.info("Authorization accepted, starting charging...")
        await self.start_transaction(id_tag, remote=remote)
        return status

    async def swipe_card(self, id_tag: Optional[str] = None) -> str:
        """Simulate a user presenting an RFID card."""
        if self.connector.transaction is not None:
            raise TransactionActive(self.connector.transaction.transaction_id)
        id_tag = id_tag or f"USER-RFID-{self._rng.randint(0, 999)}"
        try:
            return await self.begin_session(id_tag)
        except Exception:
            await self.restore_status()
            raise

    async def start_transaction(self, id_tag: str, remote: bool = False) -> Transaction:
        async with self._tx_lock:
            if self.connector.transaction is not None:
                raise TransactionActive(self.connector.transaction.transaction_id)

            meter_start = self.connector.meter_wh
            started_at = _now()
            logging.info(f"Starting transaction for idTag: {id_tag}")
            reply = await self.cp.call(
                call.StartTransaction(
                    connector_id=self.connector.id,
                    id_tag=id_tag,
                    meter_start=meter_start,
                    timestamp=started_at,
                )
            )
            transaction_id = reply.get("transaction_id")
            if transaction_id is None:
                transaction_id = DEFAULT_TRANSACTION_ID
            tx = self.connector.begin_transaction(
                transaction_id, id_tag, meter_start, started_at, remote_initiated=remote
            )
            logging.info(f"Transaction started: id={tx.transaction_id}, meterStart={meter_start} Wh")

            try:
                await self.send_status(ConnectorStatus.CHARGING)
            finally:
                self.start_metering()
        return tx

    async def stop_transaction(self, reason=Reason.local) -> Optional[Transaction]:
        async with self._tx_lock:
            tx = self.connector.transaction
            if tx is None:
                logging.warning("No active transaction to stop")
                return None

            logging.info(f"Stopping transaction: id={tx.transaction_id}, reason={reason}")
            self.stop_metering()
            try:
                try:
                    await self.cp.call(
                        call.StopTransaction(
                            transaction_id=tx.transaction_id,
                            meter_stop=self.connector.meter_wh,
                            timestamp=_now(),
                            reason=reason,
                        )
                    )
                finally:
                    self.connector.end_transaction()
                    logging.info(f"Transaction stopped: energy consumed = {tx.energy_kwh:.3f} kWh")

                await self.send_status(ConnectorStatus.AVAILABLE)
            except Exception:
                await self.restore_status()
                raise
        return tx

    # -------- metering --------
    def start_metering(self):
        self.stop_metering()
        if self.connector.transaction is None or not self.cp.state.connected:
            return
        logging.info("Starting meter value loop")
        self._meter_task = asyncio.create_task(self._meter_loop(self.connector.transaction))

    def stop_metering(self):
        if self._meter_task is not None:
            logging.info("Stopping meter value loop")
            self._meter_task.cancel()
            self._meter_task = None

    async def _meter_loop(self, tx: Transaction):
        while True:
            await asyncio.sleep(self.meter_period)
            if self.connector.transaction is not tx:
                return
            try:
                await self.meter_tick()
            except Exception as e:
                logging.warning(f"MeterValues error: {e}")

    async def meter_tick(self) -> Optional[int]:
        """Add a simulated energy import and report the register."""
        tx = self.connector.transaction
        if tx is None:
            return None

        meter_wh = self.connector.add_energy(self._rng.randint(*self.meter_increment_wh))
        mv = [{
            "timestamp": _now(),
            "sampledValue": [{
                "value": str(meter_wh),
                "measurand": Measurand.energy_active_import_register,
                "unit": UnitOfMeasure.wh,
            }],
        }]
        logging.info(f"MeterValues: {meter_wh} Wh (session: {tx.energy_kwh:.3f} kWh)")
        request = await self.cp.send_call(
            call.MeterValues(
                connector_id=self.connector.id,
                transaction_id=tx.transaction_id,
                meter_value=mv,
            )
        )
        self.cp.watch(request)
        return meter_wh
