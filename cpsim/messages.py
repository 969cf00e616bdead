from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from typing import Union

from ocpp import messages
from ocpp.charge_point import remove_nones, snake_to_camel_case
from ocpp.exceptions import OCPPError

from .exceptions import MalformedFrame, UnknownMessageType


def pack(frame: Frame) -> str:
    return frame.to_json()


def unpack(msg) -> Frame:
    """
    Unpacks a message into either a Call, CallResult or CallError.

    Raises :class:`MalformedFrame` when `msg` isn't a JSON array of at
    least 3 elements, or when the elements don't fit the shape its
    MessageTypeId announces. An unknown MessageTypeId raises
    :class:`UnknownMessageType`.
    """
    try:
        msg = json.loads(msg)
    except (TypeError, ValueError) as e:
        raise MalformedFrame(f"Message is not valid JSON: {msg!r}") from e

    if not isinstance(msg, list):
        raise MalformedFrame(
            f"OCPP message should be a list, but got '{type(msg).__name__}' instead"
        )

    if len(msg) < 3:
        raise MalformedFrame(f"OCPP message is missing elements: {msg!r}")

    if not isinstance(msg[1], str):
        raise MalformedFrame(f"Unique id should be a string: {msg!r}")

    for cls in (Call, CallResult, CallError):
        if type(msg[0]) is int and msg[0] == cls.message_type_id:
            try:
                return cls(*msg[1 : cls.length])
            except TypeError as e:
                raise MalformedFrame(f"OCPP message is missing elements: {msg!r}") from e

    raise UnknownMessageType(msg[0])


def serialize(payload) -> dict:
    """Turn an `ocpp.v16.call` or `ocpp.v16.call_result` dataclass into a
    camelCased payload. Plain dicts are passed through."""
    if is_dataclass(payload):
        return snake_to_camel_case(remove_nones(asdict(payload)))
    return payload


class _Frame:
    length: int

    def __eq__(self, other):
        return type(self) is type(other) and vars(self) == vars(other)

    def __repr__(self):
        return f"<{type(self).__name__} - {self.to_json()}>"


class Call(_Frame, messages.Call):
    length = 4

    def create_call_result(self, payload) -> CallResult:
        call_result = CallResult(self.unique_id, payload)
        call_result.action = self.action
        return call_result

    def create_call_error(self, exception) -> CallError:
        error_code = "InternalError"
        error_description = "An unexpected error occurred."
        error_details = {}

        if isinstance(exception, OCPPError):
            error_code = exception.code
            error_description = exception.description
            error_details = exception.details

        return CallError(
            self.unique_id,
            error_code,
            error_description,
            error_details,
        )


class CallResult(_Frame, messages.CallResult):
    length = 3


class CallError(_Frame, messages.CallError):
    length = 5

    def __init__(self, unique_id, error_code, error_description, error_details=None):
        super().__init__(unique_id, error_code, error_description, error_details or {})


Frame = Union[Call, CallResult, CallError]
