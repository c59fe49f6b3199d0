from __future__ import annotations

import json
import math
import struct
from dataclasses import dataclass
from typing import Any, Mapping

from . import mutf8
from .constants import (
    CLOSE_CONNECTION,
    FIELD_AUTHORIZATION,
    FIELD_CLIENT,
    FIELD_CONNECTION,
    FIELD_CONTENT_FILE_ID,
    FIELD_CONTENT_LENGTH,
    FIELD_CUSTOM_DATA,
    FIELD_DATE,
    FIELD_MD5,
    FIELD_PAGE,
    FIELD_PERSIST_CONNECTION,
    FIELD_RANGE_END,
    FIELD_RANGE_START,
    FIELD_SIZE,
    FIELD_STATUS,
    FIELD_TYPE,
    LENGTH_FORMAT,
    MAX_FRAME_LEN,
    OPEN_CONNECTION,
    STATUS_OK,
    TYPE_FILE,
    TYPE_INVALID,
)
from .exceptions import DecodeError, FrameTooLargeError

INT32_MIN, INT32_MAX = -(2**31), 2**31 - 1
INT64_MIN, INT64_MAX = -(2**63), 2**63 - 1

LENGTH_SIZE = struct.calcsize(LENGTH_FORMAT)


def _field(obj: Mapping[str, Any], key: str) -> Any:
    try:
        value = obj[key]
    except KeyError:
        raise DecodeError(f"missing field {key!r}", key) from None
    if value is None:
        raise DecodeError(f"field {key!r} is null", key)
    return value


def _get_int(obj: Mapping[str, Any], key: str, lo: int, hi: int) -> int:
    value = _field(obj, key)
    if isinstance(value, bool):
        raise DecodeError(f"field {key!r} is not a number: {value!r}", key)
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        if not math.isfinite(value):
            raise DecodeError(f"field {key!r} is not a finite number: {value!r}", key)
        number = int(value)
    elif isinstance(value, str):
        try:
            number = int(value.strip())
        except ValueError:
            raise DecodeError(f"field {key!r} is not a number: {value!r}", key) from None
    else:
        raise DecodeError(f"field {key!r} is not a number: {value!r}", key)
    if not lo <= number <= hi:
        raise DecodeError(f"field {key!r} out of range: {number}", key)
    return number


def _get_int32(obj: Mapping[str, Any], key: str) -> int:
    return _get_int(obj, key, INT32_MIN, INT32_MAX)


def _get_int64(obj: Mapping[str, Any], key: str) -> int:
    return _get_int(obj, key, INT64_MIN, INT64_MAX)


def _get_str(obj: Mapping[str, Any], key: str) -> str:
    value = _field(obj, key)
    if not isinstance(value, str):
        raise DecodeError(f"field {key!r} is not a string: {value!r}", key)
    return value


def _get_bool(obj: Mapping[str, Any], key: str) -> bool:
    value = _field(obj, key)
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise DecodeError(f"field {key!r} is not a boolean: {value!r}", key)


def _parse_object(text: str) -> dict:
    try:
        obj = json.loads(text)
    except (ValueError, RecursionError) as e:
        raise DecodeError(f"frame is not valid JSON: {e}") from e
    if not isinstance(obj, dict):
        raise DecodeError(f"frame is not a JSON object: {type(obj).__name__}")
    return obj


def _check_range(key: str, value: int, lo: int, hi: int) -> int:
    if not lo <= value <= hi:
        raise ValueError(f"field {key!r} out of range: {value}")
    return value


def _dumps(obj: Mapping[str, Any]) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def pack_frame(text: str) -> bytes:
    """Length-prefix ``text`` as one control frame."""
    payload = mutf8.encode(text)
    if len(payload) > MAX_FRAME_LEN:
        raise FrameTooLargeError(len(payload), MAX_FRAME_LEN)
    return struct.pack(LENGTH_FORMAT, len(payload)) + payload


def unpack_length(header: bytes) -> int:
    if len(header) != LENGTH_SIZE:
        raise ValueError(f"frame header must be {LENGTH_SIZE} bytes, got {len(header)}")
    (length,) = struct.unpack(LENGTH_FORMAT, header)
    return length


def decode_text(payload: bytes) -> str:
    try:
        return mutf8.decode(payload)
    except UnicodeDecodeError as e:
        raise DecodeError(f"frame is not valid modified UTF-8: {e}") from e


@dataclass(frozen=True, slots=True)
class FileRequest:
    type: int = TYPE_FILE
    content_file_id: str = ""
    range_start: int = 0
    range_end: int = -1
    authorization: str = ""
    client: str = ""
    custom_data: str = ""
    page: int = 0
    size: int = 0
    persist_connection: bool = True

    @property
    def is_ranged(self) -> bool:
        return self.range_start > 0 or self.range_end > -1

    def to_dict(self) -> dict:
        return {
            FIELD_TYPE: _check_range(FIELD_TYPE, self.type, INT32_MIN, INT32_MAX),
            FIELD_CONTENT_FILE_ID: self.content_file_id,
            FIELD_RANGE_START: _check_range(FIELD_RANGE_START, self.range_start, INT64_MIN, INT64_MAX),
            FIELD_RANGE_END: _check_range(FIELD_RANGE_END, self.range_end, INT64_MIN, INT64_MAX),
            FIELD_AUTHORIZATION: self.authorization,
            FIELD_CLIENT: self.client,
            FIELD_CUSTOM_DATA: self.custom_data,
            FIELD_PAGE: _check_range(FIELD_PAGE, self.page, INT32_MIN, INT32_MAX),
            FIELD_SIZE: _check_range(FIELD_SIZE, self.size, INT32_MIN, INT32_MAX),
            FIELD_PERSIST_CONNECTION: self.persist_connection,
        }

    def to_json(self) -> str:
        return _dumps(self.to_dict())

    def to_frame(self) -> bytes:
        return pack_frame(self.to_json())

    @staticmethod
    def from_dict(obj: Mapping[str, Any]) -> "FileRequest":
        """Build a request from decoded wire fields, normalizing range and paging.

        Out-of-order or negative ranges are repaired rather than rejected:
        a bad start collapses to 0 when an end is given, and a bad end
        becomes -1 (read to the end of the content). Paging values below
        -1 become -1.
        """
        range_start = _get_int64(obj, FIELD_RANGE_START)
        range_end = _get_int64(obj, FIELD_RANGE_END)
        page = _get_int32(obj, FIELD_PAGE)
        size = _get_int32(obj, FIELD_SIZE)

        # both checks look at the values as received
        bad_start = (range_start < 0 or range_start > range_end) and range_end > -1
        bad_end = range_end < 0 or range_end < range_start
        if bad_start:
            range_start = 0
        if bad_end:
            range_end = -1
        if page < -1:
            page = -1
        if size < -1:
            size = -1

        return FileRequest(
            type=_get_int32(obj, FIELD_TYPE),
            content_file_id=_get_str(obj, FIELD_CONTENT_FILE_ID),
            range_start=range_start,
            range_end=range_end,
            authorization=_get_str(obj, FIELD_AUTHORIZATION),
            client=_get_str(obj, FIELD_CLIENT),
            custom_data=_get_str(obj, FIELD_CUSTOM_DATA),
            page=page,
            size=size,
            persist_connection=_get_bool(obj, FIELD_PERSIST_CONNECTION),
        )

    @staticmethod
    def from_json(text: str) -> "FileRequest":
        return FileRequest.from_dict(_parse_object(text))


@dataclass(frozen=True, slots=True)
class FileResponse:
    status: int = STATUS_OK
    type: int = TYPE_INVALID
    connection: int = CLOSE_CONNECTION
    date: int = 0
    content_length: int = 0
    md5: str = ""

    @property
    def keep_alive(self) -> bool:
        return self.connection == OPEN_CONNECTION

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def to_dict(self) -> dict:
        return {
            FIELD_STATUS: _check_range(FIELD_STATUS, self.status, INT32_MIN, INT32_MAX),
            FIELD_TYPE: _check_range(FIELD_TYPE, self.type, INT32_MIN, INT32_MAX),
            FIELD_CONNECTION: _check_range(FIELD_CONNECTION, self.connection, INT32_MIN, INT32_MAX),
            FIELD_DATE: _check_range(FIELD_DATE, self.date, INT64_MIN, INT64_MAX),
            FIELD_CONTENT_LENGTH: _check_range(FIELD_CONTENT_LENGTH, self.content_length, INT64_MIN, INT64_MAX),
            FIELD_MD5: self.md5,
        }

    def to_json(self) -> str:
        return _dumps(self.to_dict())

    def to_frame(self) -> bytes:
        return pack_frame(self.to_json())

    @staticmethod
    def from_dict(obj: Mapping[str, Any]) -> "FileResponse":
        return FileResponse(
            status=_get_int32(obj, FIELD_STATUS),
            type=_get_int32(obj, FIELD_TYPE),
            connection=_get_int32(obj, FIELD_CONNECTION),
            date=_get_int64(obj, FIELD_DATE),
            content_length=_get_int64(obj, FIELD_CONTENT_LENGTH),
            md5=_get_str(obj, FIELD_MD5),
        )

    @staticmethod
    def from_json(text: str) -> "FileResponse":
        return FileResponse.from_dict(_parse_object(text))
