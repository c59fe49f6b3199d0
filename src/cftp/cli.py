from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict

from .bench import run_benchmark
from .client import fetch, fetch_catalog, open_transporter, ping
from .constants import DEFAULT_CHUNK_SIZE, DEFAULT_PORT
from .server import ContentServer, DirectoryContentServer


def _emit(payload, as_json: bool) -> None:
    print(json.dumps(payload, indent=2) if as_json else payload)


def cmd_serve(args: argparse.Namespace) -> int:
    handler = DirectoryContentServer(args.root, authorization=args.auth, chunk_size=args.chunk_size)
    server = ContentServer(handler, host=args.host, port=args.port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    return 0


def cmd_fetch(args: argparse.Namespace) -> int:
    with open_transporter(args.host, args.port, timeout=args.timeout) as transporter:
        with open(args.out, "wb") as out:
            response = fetch(
                transporter,
                args.id,
                out,
                range_start=args.range_start,
                range_end=args.range_end,
                authorization=args.auth,
                chunk_size=args.chunk_size,
            )
    _emit({"role": "fetch", **response.to_dict()}, args.json)
    return 0


def cmd_ping(args: argparse.Namespace) -> int:
    with open_transporter(args.host, args.port, timeout=args.timeout) as transporter:
        response = ping(transporter, authorization=args.auth)
    _emit({"role": "ping", **response.to_dict()}, args.json)
    return 0 if response.ok else 1


def cmd_catalog(args: argparse.Namespace) -> int:
    with open_transporter(args.host, args.port, timeout=args.timeout) as transporter:
        entries = fetch_catalog(transporter, page=args.page, size=args.size, authorization=args.auth)
    _emit({"role": "catalog", "entries": entries}, args.json)
    return 0


def cmd_bench(args: argparse.Namespace) -> int:
    r = run_benchmark(size_bytes=args.size_bytes, chunk_size=args.chunk_size)
    _emit({"role": "bench", **asdict(r)}, args.json)
    return 0 if r.md5_ok else 1


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="cftp", description="Content file transfer over one TCP connection.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE)
        x.add_argument("--json", action="store_true")

    def add_peer(x: argparse.ArgumentParser) -> None:
        x.add_argument("--host", default="127.0.0.1")
        x.add_argument("--port", type=int, default=DEFAULT_PORT)
        x.add_argument("--auth", default="")
        x.add_argument("--timeout", type=float, default=None)

    serve = sub.add_parser("serve", help="serve the files of a directory")
    add_common(serve)
    serve.add_argument("--root", required=True)
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=DEFAULT_PORT)
    serve.add_argument("--auth", default="", help="required authorization token")
    serve.set_defaults(func=cmd_serve)

    fetch_p = sub.add_parser("fetch", help="download one content file")
    add_common(fetch_p)
    add_peer(fetch_p)
    fetch_p.add_argument("--id", required=True)
    fetch_p.add_argument("--out", required=True)
    fetch_p.add_argument("--range-start", type=int, default=0)
    fetch_p.add_argument("--range-end", type=int, default=-1)
    fetch_p.set_defaults(func=cmd_fetch)

    ping_p = sub.add_parser("ping")
    add_common(ping_p)
    add_peer(ping_p)
    ping_p.set_defaults(func=cmd_ping)

    catalog = sub.add_parser("catalog", help="list the files a server offers")
    add_common(catalog)
    add_peer(catalog)
    catalog.add_argument("--page", type=int, default=-1)
    catalog.add_argument("--size", type=int, default=-1)
    catalog.set_defaults(func=cmd_catalog)

    bench = sub.add_parser("bench", help="loopback throughput benchmark")
    add_common(bench)
    bench.add_argument("--size-bytes", type=int, default=5_000_000)
    bench.set_defaults(func=cmd_bench)

    args = p.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
