"""
Wire format of the bridge.

Requests arrive as JSON text frames:

    {"id": <int32>, "command": {"name": <str>, "arguments": {<str>: <str>}}}

Responses leave as binary frames: a little-endian int32 correlation id, one
status byte (0 = ok, 1 = error) and the payload bytes. The earlier revision
of the protocol answered with JSON text instead; it is still available via
the legacy encoder.
"""

import base64
import json
import struct
from dataclasses import dataclass
from enum import IntEnum
from types import MappingProxyType
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import ProtocolError

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1

INVALID_COMMAND = "Invalid command."

_HEADER = struct.Struct("<iB")
HEADER_SIZE = _HEADER.size


class Status(IntEnum):
    OK = 0
    ERROR = 1


def _fold_keys(value):
    # Property names match case-insensitively; values keep their case.
    if isinstance(value, dict):
        return {str(k).lower(): v for k, v in value.items()}
    return value


def _as_text(value):
    if isinstance(value, (bool, int, float)):
        return json.dumps(value)
    return value


class _CommandModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    arguments: dict[str, str] | None = None

    @model_validator(mode="before")
    @classmethod
    def _fold(cls, data):
        return _fold_keys(data)

    @field_validator("arguments", mode="before")
    @classmethod
    def _stringify(cls, value):
        # Primitive values are read as their JSON text; null means absent.
        if not isinstance(value, dict):
            return value
        return {k: _as_text(v) for k, v in value.items() if v is not None}


class _RequestModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int = Field(ge=INT32_MIN, le=INT32_MAX)
    command: _CommandModel

    @model_validator(mode="before")
    @classmethod
    def _fold(cls, data):
        return _fold_keys(data)


@dataclass(frozen=True)
class Request:
    id: int
    command_name: str
    arguments: Mapping[str, str]


@dataclass(frozen=True)
class Response:
    correlation_id: int
    status: Status
    payload: bytes | str = b""

    @classmethod
    def ok(cls, correlation_id: int, payload: bytes | str) -> "Response":
        return cls(correlation_id, Status.OK, payload)

    @classmethod
    def error(cls, correlation_id: int, message: str) -> "Response":
        return cls(correlation_id, Status.ERROR, message)

    @property
    def payload_bytes(self) -> bytes:
        if isinstance(self.payload, str):
            return self.payload.encode("utf-8")
        return bytes(self.payload)


def _recover_id(text: str) -> int:
    """Best-effort id of a request that failed validation, 0 when there is none."""
    try:
        data = json.loads(text)
    except (ValueError, RecursionError):
        return 0
    if not isinstance(data, dict):
        return 0
    value = _fold_keys(data).get("id")
    if isinstance(value, int) and not isinstance(value, bool) and INT32_MIN <= value <= INT32_MAX:
        return value
    return 0


def decode_request(text: str) -> Request:
    """Parse an inbound text frame into a Request.

    Raises ProtocolError("Invalid command.") for malformed JSON, a missing
    command or a missing command name. The error carries whatever request id
    could still be read so the reply can be correlated.
    """
    try:
        model = _RequestModel.model_validate_json(text)
    except (ValueError, RecursionError) as e:
        raise ProtocolError(INVALID_COMMAND, request_id=_recover_id(text)) from e
    arguments = dict(model.command.arguments or {})
    return Request(
        id=model.id,
        command_name=model.command.name,
        arguments=MappingProxyType(arguments),
    )


def encode_response(response: Response) -> bytes:
    header = _HEADER.pack(response.correlation_id, int(response.status))
    return header + response.payload_bytes


def decode_response(frame: bytes) -> Response:
    if len(frame) < HEADER_SIZE:
        raise ProtocolError(f"Response frame too short ({len(frame)} bytes)")
    correlation_id, status = _HEADER.unpack_from(frame)
    try:
        status = Status(status)
    except ValueError as e:
        raise ProtocolError(f"Unknown response status {status}") from e
    return Response(correlation_id, status, bytes(frame[HEADER_SIZE:]))


def encode_legacy_response(response: Response) -> str:
    # Binary payloads travel as base64 in the JSON revision.
    if isinstance(response.payload, str):
        text = response.payload
    else:
        text = base64.b64encode(response.payload).decode("ascii")
    message: dict[str, object] = {
        "Id": response.correlation_id,
        "Command": None,
        "Data": None,
        "Error": None,
    }
    message["Data" if response.status is Status.OK else "Error"] = text
    return json.dumps(message)


def decode_legacy_response(text: str) -> Response:
    try:
        message = json.loads(text)
        correlation_id = int(message.get("Id", 0))
    except (ValueError, TypeError, AttributeError) as e:
        raise ProtocolError(f"Malformed legacy response: {e}") from e
    error = message.get("Error")
    if error is not None:
        return Response.error(correlation_id, str(error))
    return Response.ok(correlation_id, str(message.get("Data") or ""))
