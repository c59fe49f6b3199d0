from __future__ import annotations

import hashlib
import json
import logging
import os
import socket
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from .constants import (
    CLOSE_CONNECTION,
    DEFAULT_CHUNK_SIZE,
    OPEN_CONNECTION,
    STATUS_BAD_REQUEST,
    STATUS_INTERNAL_ERROR,
    STATUS_NOT_FOUND,
    STATUS_OK,
    STATUS_PARTIAL_CONTENT,
    STATUS_RANGE_NOT_SATISFIABLE,
    STATUS_UNAUTHORIZED,
    TYPE_CATALOG,
    TYPE_FILE,
    TYPE_PING,
)
from .exceptions import TransportError
from .message import FileRequest, FileResponse
from .transport import ContentFileTransporter, SocketTransporter

log = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def md5_range(path: Path, start: int, count: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    h = hashlib.md5()
    with open(path, "rb") as f:
        f.seek(start)
        remaining = count
        while remaining > 0:
            chunk = f.read(min(chunk_size, remaining))
            if not chunk:
                break
            h.update(chunk)
            remaining -= len(chunk)
    return h.hexdigest()


@dataclass(frozen=True, slots=True)
class ByteRange:
    start: int
    count: int

    @staticmethod
    def resolve(request: FileRequest, file_length: int) -> "ByteRange | None":
        """Clamp the request's inclusive range to the file; None if unsatisfiable."""
        start = max(0, request.range_start)
        end = request.range_end if request.range_end > -1 else file_length - 1
        end = min(end, file_length - 1)
        if file_length > 0 and start >= file_length:
            return None
        return ByteRange(start=start, count=max(0, end - start + 1))


class DirectoryContentServer:
    """Serves the regular files directly inside ``root``; a file's id is its name."""

    def __init__(self, root: str | os.PathLike, authorization: str = "", chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.root = Path(root)
        self.authorization = authorization
        self.chunk_size = chunk_size

    def lookup(self, content_file_id: str) -> Path | None:
        if not content_file_id or Path(content_file_id).name != content_file_id:
            return None
        path = self.root / content_file_id
        return path if path.is_file() else None

    def catalog(self) -> list[dict]:
        entries = []
        for path in sorted(p for p in self.root.iterdir() if p.is_file()):
            length = path.stat().st_size
            entries.append({
                "id": path.name,
                "name": path.name,
                "length": length,
                "md5": md5_range(path, 0, length, self.chunk_size),
            })
        return entries

    def handle(self, transporter: ContentFileTransporter) -> None:
        """Answer requests on one connection until the peer is done, then close it."""
        try:
            while True:
                request = transporter.receive_request()
                log.debug("request type=%d id=%r range=%d..%d", request.type,
                          request.content_file_id, request.range_start, request.range_end)
                self.serve(transporter, request)
                if not request.persist_connection:
                    break
        except TransportError as e:
            log.debug("connection ended: %s", e)
        finally:
            transporter.close()

    def _respond(self, transporter: ContentFileTransporter, request: FileRequest, status: int,
                 content_length: int = 0, md5: str = "") -> None:
        transporter.send_response(FileResponse(
            status=status,
            type=request.type,
            connection=OPEN_CONNECTION if request.persist_connection else CLOSE_CONNECTION,
            date=now_ms(),
            content_length=content_length,
            md5=md5,
        ))

    def serve(self, transporter: ContentFileTransporter, request: FileRequest) -> None:
        if self.authorization and request.authorization != self.authorization:
            self._respond(transporter, request, STATUS_UNAUTHORIZED)
        elif request.type == TYPE_PING:
            self._respond(transporter, request, STATUS_OK)
        elif request.type == TYPE_CATALOG:
            self._serve_catalog(transporter, request)
        elif request.type == TYPE_FILE:
            self._serve_file(transporter, request)
        else:
            self._respond(transporter, request, STATUS_BAD_REQUEST)

    def _serve_catalog(self, transporter: ContentFileTransporter, request: FileRequest) -> None:
        entries = self.catalog()
        if request.page >= 0 and request.size > 0:
            first = request.page * request.size
            entries = entries[first : first + request.size]
        body = json.dumps(entries).encode("utf-8")
        self._respond(transporter, request, STATUS_OK, len(body), hashlib.md5(body).hexdigest())
        transporter.send_raw_bytes(body)

    def _serve_file(self, transporter: ContentFileTransporter, request: FileRequest) -> None:
        path = self.lookup(request.content_file_id)
        if path is None:
            self._respond(transporter, request, STATUS_NOT_FOUND)
            return
        try:
            file_length = path.stat().st_size
            span = ByteRange.resolve(request, file_length)
            digest = md5_range(path, span.start, span.count, self.chunk_size) if span is not None else ""
        except OSError as e:
            log.warning("cannot read %s: %s", path.name, e)
            self._respond(transporter, request, STATUS_INTERNAL_ERROR)
            return
        if span is None:
            self._respond(transporter, request, STATUS_RANGE_NOT_SATISFIABLE)
            return

        status = STATUS_PARTIAL_CONTENT if request.is_ranged else STATUS_OK
        self._respond(transporter, request, status, span.count, digest)

        buf = bytearray(self.chunk_size)
        with open(path, "rb") as f:
            f.seek(span.start)
            remaining = span.count
            while remaining > 0:
                n = f.readinto(memoryview(buf)[: min(self.chunk_size, remaining)])
                if not n:
                    raise TransportError(f"{path.name} shrank while being served")
                transporter.send_raw_bytes(buf, 0, n)
                remaining -= n
        log.info("served %s bytes=%d start=%d", path.name, span.count, span.start)


class ContentServer:
    """Accepts TCP connections and hands each one to a DirectoryContentServer thread."""

    def __init__(self, handler: DirectoryContentServer, host: str = "0.0.0.0", port: int = 0,
                 accept_timeout: float = 0.2):
        self.handler = handler
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        if port != 0:
            self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.sock.bind((host, port))
        self.sock.listen(16)
        self.sock.settimeout(accept_timeout)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def address(self) -> tuple[str, int]:
        return self.sock.getsockname()

    def serve_forever(self) -> None:
        log.info("serving %s on %s:%d", self.handler.root, *self.address)
        try:
            while not self._stop.is_set():
                try:
                    conn, peer = self.sock.accept()
                except socket.timeout:
                    continue
                except OSError:
                    if self._stop.is_set():
                        break
                    raise
                conn.settimeout(None)
                log.debug("accepted connection from %s:%d", *peer)
                threading.Thread(
                    target=self.handler.handle,
                    args=(SocketTransporter(conn),),
                    daemon=True,
                ).start()
        finally:
            self.sock.close()

    def start(self) -> "ContentServer":
        self._thread = threading.Thread(target=self.serve_forever, daemon=True)
        self._thread.start()
        return self

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def __enter__(self) -> "ContentServer":
        return self.start()

    def __exit__(self, *exc) -> None:
        self.stop()
