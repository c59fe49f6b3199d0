from __future__ import annotations

import logging
import socket
import threading
from typing import Any, BinaryIO, Protocol, runtime_checkable

from .constants import END_OF_STREAM
from .exceptions import (
    AlreadyClosedError,
    AlreadyConnectedError,
    ConnectionError,
    NotConnectedError,
)
from .message import LENGTH_SIZE, FileRequest, FileResponse, decode_text, unpack_length

log = logging.getLogger(__name__)


@runtime_checkable
class ContentFileTransporter(Protocol):
    """Request/response framing plus raw payload bytes over one connection."""

    @property
    def is_closed(self) -> bool: ...

    def connect(self, address: Any) -> None: ...

    def send_request(self, request: FileRequest) -> None: ...

    def receive_request(self) -> FileRequest: ...

    def send_response(self, response: FileResponse) -> None: ...

    def receive_response(self) -> FileResponse: ...

    def send_raw_bytes(self, buffer, offset: int = 0, length: int | None = None) -> None: ...

    def read_raw_bytes(self, buffer, offset: int = 0, length: int | None = None) -> int: ...

    def get_input_stream(self) -> BinaryIO: ...

    def get_output_stream(self) -> BinaryIO: ...

    def close(self) -> None: ...


def _span(buffer, offset: int, length: int | None) -> memoryview:
    view = memoryview(buffer).cast("B")
    if length is None:
        length = len(view) - offset
    if offset < 0 or length < 0 or offset + length > len(view):
        raise ValueError(f"offset={offset} length={length} outside buffer of {len(view)} bytes")
    return view[offset : offset + length]


class SocketTransporter:
    """Content-file transporter over a stream socket.

    Every operation holds one lock for its whole duration, blocking I/O
    included, so frames and raw writes never interleave on the wire. The
    flip side is that close() waits behind a thread blocked in a receive:
    a stuck receive cannot be cancelled through this object. Shut the
    socket down from outside (``transporter.sock.shutdown(SHUT_RDWR)``)
    and the blocked call fails with ConnectionError.

    ``is_closed`` reads a flag that is set before any resource is released
    and never takes the lock.

    After a ConnectionError or DecodeError the framing state is unknown;
    close the transporter and open a new connection.
    """

    def __init__(self, sock: socket.socket | None = None):
        self._sock = sock if sock is not None else socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._lock = threading.Lock()
        self._closed = threading.Event()
        self._input: BinaryIO | None = None
        self._output: BinaryIO | None = None

        if self._sock.fileno() == -1:
            self._closed.set()
        elif self._is_socket_connected():
            self._bind_streams()

    def _is_socket_connected(self) -> bool:
        try:
            self._sock.getpeername()
        except OSError:
            return False
        return True

    def _bind_streams(self) -> None:
        self._input = self._sock.makefile("rb")
        self._output = self._sock.makefile("wb")

    def _ensure_open(self) -> None:
        if self._closed.is_set():
            raise AlreadyClosedError()

    def _ensure_usable(self) -> None:
        self._ensure_open()
        if self._input is None or self._output is None:
            raise NotConnectedError()

    @property
    def sock(self) -> socket.socket:
        return self._sock

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    def connect(self, address: Any) -> None:
        with self._lock:
            self._ensure_open()
            if self._input is not None:
                raise AlreadyConnectedError()
            try:
                self._sock.connect(address)
            except OSError as e:
                raise ConnectionError(f"connect to {address!r} failed: {e}") from e
            self._bind_streams()
            log.debug("transporter connected to %s", address)

    # ---- control plane ----

    def _write_frame(self, frame: bytes) -> None:
        try:
            self._output.write(frame)
            self._output.flush()
        except OSError as e:
            raise ConnectionError(f"write failed: {e}") from e

    def _read_exact(self, n: int) -> bytes:
        try:
            data = self._input.read(n)
        except OSError as e:
            raise ConnectionError(f"read failed: {e}") from e
        if len(data) < n:
            raise ConnectionError(f"stream closed by peer after {len(data)} of {n} bytes")
        return data

    def _read_frame_text(self) -> str:
        length = unpack_length(self._read_exact(LENGTH_SIZE))
        return decode_text(self._read_exact(length))

    def send_request(self, request: FileRequest) -> None:
        with self._lock:
            self._ensure_usable()
            self._write_frame(request.to_frame())

    def receive_request(self) -> FileRequest:
        with self._lock:
            self._ensure_usable()
            return FileRequest.from_json(self._read_frame_text())

    def send_response(self, response: FileResponse) -> None:
        with self._lock:
            self._ensure_usable()
            self._write_frame(response.to_frame())

    def receive_response(self) -> FileResponse:
        with self._lock:
            self._ensure_usable()
            return FileResponse.from_json(self._read_frame_text())

    # ---- data plane ----

    def send_raw_bytes(self, buffer, offset: int = 0, length: int | None = None) -> None:
        """Write ``length`` bytes of ``buffer`` starting at ``offset``, then flush."""
        with self._lock:
            self._ensure_usable()
            chunk = _span(buffer, offset, length)
            try:
                self._output.write(chunk)
                self._output.flush()
            except OSError as e:
                raise ConnectionError(f"write failed: {e}") from e

    def read_raw_bytes(self, buffer, offset: int = 0, length: int | None = None) -> int:
        """Read up to ``length`` bytes into ``buffer`` at ``offset``.

        Returns the count actually read, which may be short, or END_OF_STREAM
        once the peer has closed its side.
        """
        with self._lock:
            self._ensure_usable()
            target = _span(buffer, offset, length)
            if len(target) == 0:
                return 0
            try:
                n = self._input.readinto1(target)
            except OSError as e:
                raise ConnectionError(f"read failed: {e}") from e
            return n if n else END_OF_STREAM

    def get_input_stream(self) -> BinaryIO:
        with self._lock:
            self._ensure_usable()
            return self._input

    def get_output_stream(self) -> BinaryIO:
        with self._lock:
            self._ensure_usable()
            return self._output

    # ---- lifecycle ----

    def close(self) -> None:
        with self._lock:
            if self._closed.is_set():
                return
            self._closed.set()
            for name, resource in (
                ("input stream", self._input),
                ("output stream", self._output),
                ("socket", self._sock),
            ):
                if resource is None:
                    continue
                try:
                    resource.close()
                except Exception as e:
                    log.debug("ignoring error closing %s: %s", name, e)
            log.debug("transporter closed")

    def __enter__(self) -> "SocketTransporter":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
