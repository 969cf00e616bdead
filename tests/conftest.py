import asyncio
import json
import uuid
from collections import defaultdict

import httpx
import pytest_asyncio

from cpsim.app import create_app
from cpsim.ocpp_handlers import EVSEChargePoint


class FakeConnection:
    """In-memory stand-in for a websocket connection."""

    def __init__(self):
        self.inbound = asyncio.Queue()
        self.outbound = asyncio.Queue()
        self.sent = []
        self.closed = False
        self.close_code = None
        self.close_reason = ""

    async def send(self, message):
        if self.closed:
            raise ConnectionError("connection is closed")
        self.sent.append(message)
        await self.outbound.put(message)

    async def close(self, code=1000, reason=""):
        if not self.closed:
            self.closed = True
            self.close_code = code
            self.close_reason = reason
            self.inbound.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        message = await self.inbound.get()
        if message is None:
            raise StopAsyncIteration
        return message


class FakeCSMS:
    """Answers every Call of the charge point from a response table."""

    def __init__(self, connection, responses=None, errors=None):
        self.connection = connection
        self.responses = {
            "BootNotification": {"status": "Accepted", "interval": 300},
            "Authorize": {"idTagInfo": {"status": "Accepted"}},
            "StartTransaction": {"transactionId": 1, "idTagInfo": {"status": "Accepted"}},
        }
        self.responses.update(responses or {})
        # action -> (errorCode, errorDescription)
        self.errors = dict(errors or {})
        # actions that never get an answer
        self.silent = set()
        self.calls = []
        self.queues = defaultdict(asyncio.Queue)
        self._replies = {}

    async def serve(self):
        while True:
            msg = json.loads(await self.connection.outbound.get())
            if msg[0] != 2:
                future = self._replies.pop(msg[1], None)
                if future is not None and not future.done():
                    future.set_result(msg)
                continue

            _, unique_id, action, payload = msg
            self.calls.append((action, payload))
            self.queues[action].put_nowait(payload)
            if action in self.silent or self.connection.closed:
                continue
            if action in self.errors:
                code, description = self.errors[action]
                reply = [4, unique_id, code, description, {}]
            else:
                reply = [3, unique_id, self.responses.get(action, {})]
            await self.connection.inbound.put(json.dumps(reply))

    async def send_call(self, action, payload, timeout=5):
        """Send a Call to the charge point and return its reply frame."""
        unique_id = str(uuid.uuid4())
        future = asyncio.get_running_loop().create_future()
        self._replies[unique_id] = future
        await self.connection.inbound.put(json.dumps([2, unique_id, action, payload]))
        return await asyncio.wait_for(future, timeout)

    async def expect(self, action, timeout=5):
        return await asyncio.wait_for(self.queues[action].get(), timeout)

    def actions(self):
        return [action for action, _ in self.calls]

    def payloads(self, action):
        return [payload for a, payload in self.calls if a == action]

    def statuses(self):
        return [payload["status"] for payload in self.payloads("StatusNotification")]


@pytest_asyncio.fixture
async def csms_factory():
    """Factory for a FakeConnection served by a running FakeCSMS."""
    tasks = []
    connections = []

    def factory(responses=None, errors=None, silent=()):
        connection = FakeConnection()
        csms = FakeCSMS(connection, responses=responses, errors=errors)
        csms.silent.update(silent)
        tasks.append(asyncio.create_task(csms.serve()))
        connections.append(connection)
        return connection, csms

    yield factory

    for connection in connections:
        await connection.close()
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


@pytest_asyncio.fixture
async def make_simulator(csms_factory):
    """Factory running an EVSEChargePoint against a FakeCSMS."""
    tasks = []

    async def factory(responses=None, errors=None, silent=(), cp=None, **kwargs):
        options = dict(
            default_heartbeat_interval=60,
            response_timeout=2,
            meter_period=60,
            meter_start_wh=10000,
            meter_increment_wh=(150, 150),
            settle_delay=0,
            reset_grace=0.05,
        )
        options.update(kwargs)
        if cp is None:
            cp = EVSEChargePoint("TestCP01", **options)
        connection, csms = csms_factory(responses=responses, errors=errors, silent=silent)
        cp_task = asyncio.create_task(cp.run(connection))
        tasks.append(cp_task)
        return {"cp": cp, "csms": csms, "connection": connection, "task": cp_task}

    yield factory

    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


@pytest_asyncio.fixture
async def simulator(make_simulator):
    """A booted charge point, connector reported Available, plus an HTTP client."""
    sim = await make_simulator()
    csms = sim["csms"]
    await csms.expect("BootNotification")
    status = await csms.expect("StatusNotification")
    assert status["status"] == "Available"

    transport = httpx.ASGITransport(app=create_app(sim["cp"]))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        sim["client"] = client
        yield sim
