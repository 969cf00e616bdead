import asyncio
import base64
from contextlib import asynccontextmanager

import pytest

from cpsim.ocpp_handlers import EVSEChargePoint
from cpsim.transport import ReconnectingClient, basic_auth_header, build_ssl_context


async def wait_until(predicate, timeout=2):
    async def _wait():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_wait(), timeout)


def test_basic_auth_header():
    token = base64.b64encode(b"TG001:secret").decode()
    assert basic_auth_header("TG001", "secret") == {"Authorization": f"Basic {token}"}


def test_no_ssl_context_for_plain_websocket():
    assert build_ssl_context("ws://localhost:8090/TG001") is None


@pytest.mark.asyncio
async def test_reconnects_after_boot_rejected(csms_factory):
    cp = EVSEChargePoint("TestCP01", response_timeout=1)
    attempts = []

    @asynccontextmanager
    async def connect(url, **kwargs):
        connection, csms = csms_factory(responses={"BootNotification": {"status": "Rejected"}})
        attempts.append((asyncio.get_running_loop().time(), url, kwargs, csms))
        try:
            yield connection
        finally:
            await connection.close()

    client = ReconnectingClient(
        cp,
        "ws://csms.test/TestCP01",
        username="TestCP01",
        password="secret",
        reconnect_delay=0.05,
        connect=connect,
    )
    task = asyncio.create_task(client.run_forever())
    try:
        await wait_until(lambda: len(attempts) >= 3)
    finally:
        client.stop()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    first_at, url, kwargs, csms = attempts[0]
    assert url == "ws://csms.test/TestCP01"
    assert kwargs["subprotocols"] == ["ocpp1.6"]
    assert kwargs["additional_headers"] == basic_auth_header("TestCP01", "secret")
    assert "ssl" not in kwargs
    assert csms.actions() == ["BootNotification"]
    assert attempts[1][0] - first_at >= 0.05
    assert cp.state.boot_accepted is False


@pytest.mark.asyncio
async def test_reconnects_after_connection_error(csms_factory):
    cp = EVSEChargePoint("TestCP01", response_timeout=1)
    attempts = []
    sessions = []

    @asynccontextmanager
    async def connect(url, **kwargs):
        attempts.append(url)
        if len(attempts) == 1:
            raise OSError("connection refused")
        connection, csms = csms_factory()
        sessions.append((connection, csms))
        yield connection

    client = ReconnectingClient(cp, "ws://csms.test/TestCP01", reconnect_delay=0.01, connect=connect)
    task = asyncio.create_task(client.run_forever())

    await wait_until(lambda: cp.state.boot_accepted)
    assert len(attempts) == 2

    # Stopping ends the loop once the current connection closes.
    client.stop()
    await sessions[0][0].close()
    await asyncio.wait_for(task, timeout=2)
    assert len(attempts) == 2
    assert cp.state.connected is False
