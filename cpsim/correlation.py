from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Callable, Dict, Optional

from .config import REQUEST_TIMEOUT_SEC
from .exceptions import CallErrorReceived, RequestFailed, RequestTimeout
from .messages import Call


class PendingRequest:
    """An outbound Call waiting for its CallResult or CallError.

    Awaiting a :class:`PendingRequest` returns the CallResult payload or
    raises a :class:`RequestFailed` subclass.
    """

    def __init__(self, call: Call, deadline: float, future: asyncio.Future, timer: asyncio.TimerHandle):
        self.call = call
        self.deadline = deadline
        self._future = future
        self._timer = timer

    @property
    def unique_id(self) -> str:
        return self.call.unique_id

    @property
    def action(self) -> str:
        return self.call.action

    def done(self) -> bool:
        return self._future.done()

    def __await__(self):
        return self._future.__await__()


class CorrelationTable:
    """Outstanding Calls issued by the charge point, keyed by unique id."""

    def __init__(self, timeout: float = REQUEST_TIMEOUT_SEC):
        self.timeout = timeout
        self._pending: Dict[str, PendingRequest] = {}

    def __len__(self):
        return len(self._pending)

    def __contains__(self, unique_id):
        return unique_id in self._pending

    def issue(self, action: str, payload: dict) -> PendingRequest:
        loop = asyncio.get_running_loop()

        unique_id = str(uuid.uuid4())
        while unique_id in self._pending:
            unique_id = str(uuid.uuid4())

        future = loop.create_future()
        timer = loop.call_later(self.timeout, self._expire, unique_id)
        request = PendingRequest(
            Call(unique_id, action, payload), loop.time() + self.timeout, future, timer
        )
        self._pending[unique_id] = request
        # A caller that gives up on the request (cancellation) releases it.
        future.add_done_callback(lambda _: self._forget(request))
        return request

    def resolve(self, unique_id: str, payload) -> Optional[PendingRequest]:
        request = self._pop(unique_id)
        if request is None:
            logging.debug(f"Dropping CALLRESULT for unknown id {unique_id}")
            return None
        if not request.done():
            request._future.set_result(payload)
        return request

    def reject(self, unique_id: str, code: str, description: str, details=None) -> Optional[PendingRequest]:
        request = self._pop(unique_id)
        if request is None:
            logging.debug(f"Dropping CALLERROR for unknown id {unique_id}")
            return None
        if not request.done():
            request._future.set_exception(
                CallErrorReceived(request.action, unique_id, code, description, details)
            )
        return request

    def discard(self, unique_id: str) -> None:
        request = self._pop(unique_id)
        if request is not None and not request.done():
            request._future.cancel()

    def fail_all(self, error: Callable[[PendingRequest], RequestFailed]) -> None:
        for unique_id in list(self._pending):
            request = self._pop(unique_id)
            if not request.done():
                request._future.set_exception(error(request))

    def _expire(self, unique_id: str) -> None:
        request = self._pop(unique_id)
        if request is not None and not request.done():
            request._future.set_exception(RequestTimeout(request.action, unique_id))

    def _pop(self, unique_id: str) -> Optional[PendingRequest]:
        request = self._pending.pop(unique_id, None)
        if request is not None:
            request._timer.cancel()
        return request

    def _forget(self, request: PendingRequest) -> None:
        if self._pending.get(request.unique_id) is request:
            self._pop(request.unique_id)
