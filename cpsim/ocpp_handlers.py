import logging

from ocpp.exceptions import GenericError
from ocpp.routing import on
from ocpp.v16 import call_result
from ocpp.v16.enums import (
    Action,
    AuthorizationStatus,
    AvailabilityStatus,
    Reason,
    RemoteStartStopStatus,
    ResetStatus,
    ResetType,
    UnlockStatus,
)

from .charge_point import ChargePoint
from .config import (
    CONNECTOR_ID,
    METER_INCREMENT_MAX_WH,
    METER_INCREMENT_MIN_WH,
    METER_PERIOD_SEC,
    METER_START_WH,
    REMOTE_ID_TAG,
    SETTLE_DELAY_SEC,
)
from .evse import EVSE
from .exceptions import SimulatorError


class EVSEChargePoint(ChargePoint):
    def __init__(
        self,
        id,
        *,
        connector_id=CONNECTOR_ID,
        meter_start_wh=METER_START_WH,
        meter_period=METER_PERIOD_SEC,
        meter_increment_wh=(METER_INCREMENT_MIN_WH, METER_INCREMENT_MAX_WH),
        settle_delay=SETTLE_DELAY_SEC,
        rng=None,
        **kwargs,
    ):
        super().__init__(id, **kwargs)
        self.evse = EVSE(
            self,
            connector_id=connector_id,
            meter_start_wh=meter_start_wh,
            meter_period=meter_period,
            meter_increment_wh=meter_increment_wh,
            settle_delay=settle_delay,
            rng=rng,
        )

    async def after_boot(self):
        await self.evse.announce()

    def on_disconnect(self):
        self.evse.stop_metering()

    async def shutdown(self):
        """Stop a running session and close the connection."""
        logging.info("Shutting down gracefully...")
        if self.evse.connector.transaction is not None:
            try:
                await self.evse.stop_transaction(Reason.local)
            except SimulatorError as e:
                logging.error(f"Error stopping transaction: {e}")
        await self.close()

    # ====== CSMS -> EVSE ======

    @on(Action.remote_start_transaction)
    async def on_remote_start(self, id_tag=None, connector_id=None, **kwargs):
        id_tag = id_tag or REMOTE_ID_TAG
        logging.info(
            f"RemoteStartTransaction requested: idTag={id_tag}, "
            f"connector={connector_id or self.evse.connector.id}"
        )
        try:
            status = await self.evse.begin_session(id_tag, remote=True)
        except Exception as e:
            logging.error(f"RemoteStartTransaction error: {e}")
            await self.evse.restore_status()
            raise GenericError(description=str(e)) from e

        if status != AuthorizationStatus.accepted:
            return call_result.RemoteStartTransaction(status=RemoteStartStopStatus.rejected)
        logging.info("Remote charging session started")
        return call_result.RemoteStartTransaction(status=RemoteStartStopStatus.accepted)

    @on(Action.remote_stop_transaction)
    async def on_remote_stop(self, transaction_id=None, **kwargs):
        # Single connector: whatever transaction is running gets stopped.
        if self.evse.connector.transaction is None:
            logging.warning("RemoteStopTransaction: no active transaction to stop")
            return call_result.RemoteStopTransaction(status=RemoteStartStopStatus.rejected)

        await self.evse.stop_transaction(Reason.remote)
        return call_result.RemoteStopTransaction(status=RemoteStartStopStatus.accepted)

    @on(Action.reset)
    async def on_reset(self, **kwargs):
        logging.info(f"Reset requested: {kwargs.get('type') or ResetType.soft}")
        # The reply is sent before the grace delay runs out.
        self.close_later(self.reset_grace)
        return call_result.Reset(status=ResetStatus.accepted)

    @on(Action.change_availability)
    async def on_change_availability(self, **kwargs):
        return call_result.ChangeAvailability(status=AvailabilityStatus.accepted)

    @on(Action.unlock_connector)
    async def on_unlock_connector(self, **kwargs):
        return call_result.UnlockConnector(status=UnlockStatus.unlocked)
