from __future__ import annotations

import hashlib
import io
import json
from typing import BinaryIO

from .constants import DEFAULT_CHUNK_SIZE, END_OF_STREAM, TYPE_CATALOG, TYPE_FILE, TYPE_PING, UNKNOWN_CONTENT_LENGTH
from .exceptions import TransferError
from .message import FileRequest, FileResponse
from .transport import ContentFileTransporter, SocketTransporter


def open_transporter(host: str, port: int, timeout: float | None = None) -> SocketTransporter:
    transporter = SocketTransporter()
    transporter.sock.settimeout(timeout)
    try:
        transporter.connect((host, port))
    except Exception:
        transporter.close()
        raise
    return transporter


def read_body(
    transporter: ContentFileTransporter,
    response: FileResponse,
    out: BinaryIO,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """Copy the payload following ``response`` into ``out`` and check its MD5.

    With an unknown content length the body runs to end of stream.
    """
    h = hashlib.md5()
    buf = bytearray(chunk_size)
    expected = response.content_length
    received = 0
    while expected == UNKNOWN_CONTENT_LENGTH or received < expected:
        want = chunk_size if expected == UNKNOWN_CONTENT_LENGTH else min(chunk_size, expected - received)
        n = transporter.read_raw_bytes(buf, 0, want)
        if n == END_OF_STREAM:
            if expected == UNKNOWN_CONTENT_LENGTH:
                break
            raise TransferError(f"stream ended after {received} of {expected} bytes")
        out.write(buf[:n])
        h.update(buf[:n])
        received += n

    if response.md5 and response.md5.lower() != h.hexdigest():
        raise TransferError(f"md5 mismatch: expected {response.md5}, got {h.hexdigest()}")
    return received


def _exchange(transporter: ContentFileTransporter, request: FileRequest) -> FileResponse:
    transporter.send_request(request)
    response = transporter.receive_response()
    if not response.ok:
        raise TransferError(f"request for {request.content_file_id!r} failed with status {response.status}")
    return response


def ping(transporter: ContentFileTransporter, authorization: str = "", client: str = "",
         persist_connection: bool = False) -> FileResponse:
    request = FileRequest(
        type=TYPE_PING,
        authorization=authorization,
        client=client,
        persist_connection=persist_connection,
    )
    transporter.send_request(request)
    return transporter.receive_response()


def fetch(
    transporter: ContentFileTransporter,
    content_file_id: str,
    out: BinaryIO,
    range_start: int = 0,
    range_end: int = -1,
    authorization: str = "",
    client: str = "",
    custom_data: str = "",
    persist_connection: bool = False,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> FileResponse:
    """Request one content file (or a byte range of it) and stream it into ``out``."""
    request = FileRequest(
        type=TYPE_FILE,
        content_file_id=content_file_id,
        range_start=range_start,
        range_end=range_end,
        authorization=authorization,
        client=client,
        custom_data=custom_data,
        persist_connection=persist_connection,
    )
    response = _exchange(transporter, request)
    read_body(transporter, response, out, chunk_size)
    return response


def fetch_catalog(
    transporter: ContentFileTransporter,
    page: int = -1,
    size: int = -1,
    authorization: str = "",
    client: str = "",
    persist_connection: bool = False,
) -> list[dict]:
    request = FileRequest(
        type=TYPE_CATALOG,
        authorization=authorization,
        client=client,
        page=page,
        size=size,
        persist_connection=persist_connection,
    )
    response = _exchange(transporter, request)
    body = io.BytesIO()
    read_body(transporter, response, body)
    return json.loads(body.getvalue().decode("utf-8"))
