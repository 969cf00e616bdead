import asyncio
import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException

from .config import CPID, CSMS_URL, HTTP_PORT, LOG_LEVEL
from .exceptions import SimulatorError
from .ocpp_handlers import EVSEChargePoint
from .transport import ReconnectingClient, build_ssl_context


def create_app(cp: EVSEChargePoint, client: Optional[ReconnectingClient] = None) -> FastAPI:
    """HTTP control for simulating plug-in, card swipes and local stop."""
    app = FastAPI(title="OCPP 1.6J Charge Point Simulator Control")

    def connector(connector_id: int):
        if connector_id != cp.evse.connector.id:
            raise HTTPException(status_code=404, detail=f"Unknown connector {connector_id}")
        return cp.evse.connector

    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.get("/status")
    async def status():
        c = cp.evse.connector
        tx = c.transaction
        return {
            "connected": cp.state.connected,
            "bootAccepted": cp.state.boot_accepted,
            "status": c.status,
            "transactionActive": tx is not None,
            "transactionId": tx.transaction_id if tx else None,
            "startType": tx.start_type if tx else None,
        }

    @app.get("/session")
    async def session():
        tx = cp.evse.connector.transaction
        if tx is None:
            return {"active": False}
        return {
            "active": True,
            "transactionId": tx.transaction_id,
            "idTag": tx.id_tag,
            "startType": tx.start_type,
            "meterStartWh": tx.start_meter_wh,
            "meterWh": tx.current_meter_wh,
            "energyKWh": round(tx.energy_kwh, 3),
        }

    @app.post("/plug/{connector_id}")
    async def plug(connector_id: int):
        connector(connector_id)
        try:
            await cp.evse.plug_in()
        except SimulatorError as e:
            return {"ok": False, "error": str(e)}
        return {"ok": True, "connector": connector_id, "status": cp.evse.connector.status}

    @app.post("/swipe/{connector_id}")
    async def swipe(connector_id: int, id_tag: Optional[str] = None):
        connector(connector_id)
        try:
            auth = await cp.evse.swipe_card(id_tag)
        except SimulatorError as e:
            return {"ok": False, "error": str(e)}
        tx = cp.evse.connector.transaction
        return {
            "ok": tx is not None,
            "authorization": auth,
            "transactionId": tx.transaction_id if tx else None,
        }

    @app.post("/local_stop/{connector_id}")
    async def local_stop(connector_id: int):
        c = connector(connector_id)
        if c.transaction is None:
            return {"ok": False, "error": "no active session"}
        try:
            tx = await cp.evse.stop_transaction()
        except SimulatorError as e:
            return {"ok": False, "error": str(e)}
        return {"ok": True, "transactionId": tx.transaction_id, "energyKWh": round(tx.energy_kwh, 3)}

    @app.post("/available/{connector_id}")
    async def available(connector_id: int):
        connector(connector_id)
        try:
            await cp.evse.make_available()
        except SimulatorError as e:
            return {"ok": False, "error": str(e)}
        return {"ok": True, "connector": connector_id, "status": cp.evse.connector.status}

    @app.post("/shutdown")
    async def shutdown():
        if client is not None:
            client.stop()
        await cp.shutdown()
        return {"ok": True}

    return app


async def main():
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s | %(levelname)s | %(message)s")

    url = f"{CSMS_URL}/{CPID}"
    cp = EVSEChargePoint(CPID)
    client = ReconnectingClient(cp, url, ssl_context=build_ssl_context(url))
    app = create_app(cp, client)

    # run OCPP client and HTTP API together
    server = uvicorn.Server(uvicorn.Config(app, host="0.0.0.0", port=HTTP_PORT, loop="asyncio", log_level="info"))
    api_task = asyncio.create_task(server.serve())
    try:
        await client.run_forever()
    finally:
        server.should_exit = True
        await api_task


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
