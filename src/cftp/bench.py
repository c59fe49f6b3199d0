from __future__ import annotations

import hashlib
import io
import os
import tempfile
import time
from dataclasses import dataclass

from .client import fetch, open_transporter
from .constants import DEFAULT_CHUNK_SIZE
from .server import ContentServer, DirectoryContentServer


@dataclass(frozen=True, slots=True)
class BenchmarkResult:
    bytes_transferred: int
    duration_s: float
    throughput_mbps: float
    md5_ok: bool


def run_benchmark(*, size_bytes: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> BenchmarkResult:
    payload = os.urandom(size_bytes)

    with tempfile.TemporaryDirectory() as root:
        with open(os.path.join(root, "bench.bin"), "wb") as f:
            f.write(payload)

        server = ContentServer(DirectoryContentServer(root, chunk_size=chunk_size), host="127.0.0.1", port=0)
        host, port = server.address
        with server:
            out = io.BytesIO()
            start = time.perf_counter()
            with open_transporter(host, port, timeout=30.0) as transporter:
                response = fetch(transporter, "bench.bin", out, chunk_size=chunk_size)
            duration_s = max(0.001, time.perf_counter() - start)

    received = out.getvalue()
    md5_ok = response.md5 == hashlib.md5(payload).hexdigest() and received == payload
    return BenchmarkResult(
        bytes_transferred=len(received),
        duration_s=duration_s,
        throughput_mbps=(len(received) * 8 / 1_000_000) / duration_s,
        md5_ok=md5_ok,
    )
