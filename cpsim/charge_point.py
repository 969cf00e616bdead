import asyncio
import logging
from typing import Optional, Set

from ocpp.charge_point import camel_to_snake_case
from ocpp.exceptions import GenericError, NotImplementedError as OCPPNotImplementedError, OCPPError
from ocpp.routing import create_route_map
from ocpp.v16 import call
from ocpp.v16.enums import RegistrationStatus

from .config import FIRMWARE, MODEL, REQUEST_TIMEOUT_SEC, RESET_GRACE_SEC, SEND_HEARTBEAT_SEC, SERIAL, VENDOR
from .correlation import CorrelationTable, PendingRequest
from .exceptions import BootRejected, ConnectionLost, MalformedFrame, NotConnected, RequestFailed, UnknownMessageType
from .messages import Call, CallResult, pack, serialize, unpack
from .state_machine import SessionState


class ChargePoint:
    """Charge point side of an OCPP 1.6J session.

    A :class:`ChargePoint` outlives the websocket connections it runs on:
    the transport hands every new connection to :meth:`run`, which boots the
    charge point, schedules heartbeats and routes frames until the
    connection closes. Server-initiated actions are dispatched to methods
    decorated with :func:`ocpp.routing.on`.

    Everything runs on one event loop. Inbound Calls are each handled in
    their own task so a handler waiting for a reply to its own Call doesn't
    stall the reader.
    """

    def __init__(
        self,
        id: str,
        *,
        vendor: str = VENDOR,
        model: str = MODEL,
        serial_number: str = SERIAL,
        firmware_version: str = FIRMWARE,
        default_heartbeat_interval: float = SEND_HEARTBEAT_SEC,
        response_timeout: float = REQUEST_TIMEOUT_SEC,
        reset_grace: float = RESET_GRACE_SEC,
    ):
        self.id = id
        self.vendor = vendor
        self.model = model
        self.serial_number = serial_number
        self.firmware_version = firmware_version
        self.default_heartbeat_interval = default_heartbeat_interval
        self.heartbeat_interval = default_heartbeat_interval
        self.reset_grace = reset_grace

        self.state = SessionState()
        self._pending = CorrelationTable(timeout=response_timeout)
        self._connection = None
        self._route_map = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        # Kept apart from `_tasks`, a close must not be cancelled by the
        # teardown it triggers.
        self._closing: Set[asyncio.Task] = set()

    async def run(self, connection):
        """Serve `connection` until it's closed."""
        self._connection = connection
        self.state.connected = True
        logging.info(f"{self.id}: connected")
        self._spawn(self._on_open())
        try:
            async for message in connection:
                self.route_message(message)
        finally:
            self._on_close()

    async def close(self):
        if self._connection is not None:
            await self._connection.close()

    def close_later(self, delay: float):
        async def _close():
            await asyncio.sleep(delay)
            logging.info(f"{self.id}: closing connection")
            await self.close()

        task = asyncio.create_task(_close())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _on_open(self):
        try:
            await self.boot()
        except Exception as e:
            logging.error(f"Boot sequence failed: {e}")
            await self.close()

    def _on_close(self):
        self.state.connected = False
        self.state.boot_accepted = False
        self.stop_heartbeat()
        self.on_disconnect()
        for task in list(self._tasks):
            task.cancel()
        self._pending.fail_all(lambda request: ConnectionLost(request.action, request.unique_id))
        self._connection = None
        logging.info(f"{self.id}: disconnected")

    def on_disconnect(self):
        """Called when the connection closes. Subclasses override it."""

    async def after_boot(self):
        """Called once a boot is accepted. Subclasses override it."""

    async def boot(self):
        logging.info("Starting boot sequence...")
        reply = await self.call(
            call.BootNotification(
                charge_point_vendor=self.vendor,
                charge_point_model=self.model,
                charge_point_serial_number=self.serial_number,
                firmware_version=self.firmware_version,
            )
        )
        status = reply.get("status")
        if status != RegistrationStatus.accepted:
            raise BootRejected(status)

        self.state.boot_accepted = True
        logging.info("Boot accepted")

        interval = reply.get("interval")
        if isinstance(interval, (int, float)) and not isinstance(interval, bool) and interval > 0:
            self.heartbeat_interval = interval
        else:
            self.heartbeat_interval = self.default_heartbeat_interval
        self.start_heartbeat()

        await self.after_boot()

    def start_heartbeat(self):
        self.stop_heartbeat()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(self.heartbeat_interval))
        logging.info(f"Heartbeat scheduled every {self.heartbeat_interval}s")

    def stop_heartbeat(self):
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None

    async def _heartbeat_loop(self, interval: float):
        while True:
            await asyncio.sleep(interval)
            if not (self.state.connected and self.state.boot_accepted):
                continue
            try:
                request = await self.send_call(call.Heartbeat())
            except Exception as e:
                logging.warning(f"Heartbeat error: {e}")
                continue
            self.watch(request)

    async def call(self, payload) -> dict:
        """Send a Call and wait for the CallResult payload (snake_cased).

        Raises :class:`RequestTimeout`, :class:`CallErrorReceived` or
        :class:`ConnectionLost` when no CallResult arrives.
        """
        request = await self.send_call(payload)
        reply = await request
        # Minimal central systems sometimes answer with `null` or `[]`.
        if not isinstance(reply, dict):
            return {}
        return camel_to_snake_case(reply)

    async def send_call(self, payload) -> PendingRequest:
        """Send a Call without waiting for the reply."""
        action = payload.__class__.__name__
        request = self._pending.issue(action, serialize(payload))
        try:
            await self._send(request.call)
        except BaseException:
            self._pending.discard(request.unique_id)
            raise
        logging.info(f"=> {action} {request.call.payload}")
        return request

    def watch(self, request: PendingRequest):
        """Await `request` in the background, logging a failed reply."""

        async def _watch():
            try:
                await request
            except RequestFailed as e:
                logging.warning(f"{request.action} error: {e}")

        self._spawn(_watch())

    async def _send(self, frame):
        if self._connection is None:
            raise NotConnected()
        await self._connection.send(pack(frame))

    def route_message(self, raw):
        try:
            msg = unpack(raw)
        except UnknownMessageType as e:
            logging.warning(f"{e}, ignoring {raw!r}")
            return
        except MalformedFrame as e:
            logging.error(f"Invalid OCPP frame: {e}")
            return

        if isinstance(msg, Call):
            logging.info(f"<= {msg.action} {msg.payload}")
            self._spawn(self._handle_call(msg))
        elif isinstance(msg, CallResult):
            request = self._pending.resolve(msg.unique_id, msg.payload)
            if request is not None:
                logging.info(f"<= CALLRESULT for {request.action} {msg.payload}")
        else:
            request = self._pending.reject(
                msg.unique_id, msg.error_code, msg.error_description, msg.error_details
            )
            if request is not None:
                logging.warning(
                    f"<= CALLERROR for {request.action}: {msg.error_code} - {msg.error_description}"
                )

    async def _handle_call(self, msg: Call):
        if self._route_map is None:
            self._route_map = create_route_map(self)

        try:
            try:
                handler = self._route_map[msg.action]["_on_action"]
            except KeyError:
                logging.warning(f"Action not implemented: {msg.action}")
                raise OCPPNotImplementedError(description=f"Action {msg.action} not implemented")
            result = await handler(**camel_to_snake_case(msg.payload))
            response = msg.create_call_result(serialize(result))
        except OCPPError as e:
            response = msg.create_call_error(e)
        except Exception as e:
            logging.exception(f"Handler for {msg.action} failed")
            response = msg.create_call_error(GenericError(description=str(e)))

        await self._send(response)
        logging.info(f"=> {type(response).__name__} ({msg.unique_id}) {response.to_json()}")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logging.error(f"Background task failed: {task.exception()!r}")
