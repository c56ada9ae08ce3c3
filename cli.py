"""CLI for the snake move solver."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
from pathlib import Path
from typing import List, Optional

from snake_engine import DIRECTION_NAMES, pretty_print
from snake_server import RequestError, ServerConfig, decode_request, run_server
from snake_solver import WORKER_MODES, search_root, solve_best_move
from snake_telemetry import TelemetrySink, TCPLineSink, parse_host_port


def _format_scores(root_scores) -> str:
    return ", ".join(f"{DIRECTION_NAMES[d]}:{s:+.2f}" for d, s in root_scores)


def cmd_move(args: argparse.Namespace) -> int:
    if args.depth is not None and args.depth < 0:
        print("--depth must be >= 0")
        return 2
    if args.time_ms is not None and args.time_ms < 0:
        print("--time-ms must be >= 0")
        return 2

    try:
        with args.request.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except OSError as exc:
        print(f"cannot read {args.request}: {exc}")
        return 2
    except json.JSONDecodeError as exc:
        print(f"{args.request} is not valid JSON: {exc}")
        return 2

    try:
        board, timeout_ms = decode_request(payload)
    except RequestError as exc:
        print(f"bad request: {exc}")
        return 2

    if args.show:
        print(pretty_print(board))
        print()

    if args.depth is not None:
        outcome = search_root(board, args.depth, args.time_ms, workers=args.workers)
        if outcome is None:
            print("No result: time budget exhausted.")
            return 1
        print(f"Recommended: {DIRECTION_NAMES[outcome.best_move]} (score: {outcome.score:+.2f})")
        if args.explain:
            print(f"Root: {_format_scores(outcome.root_scores)}")
            print(f"Search: depth={args.depth} nodes={outcome.nodes}")
        return 0

    time_limit_ms = args.time_ms
    if time_limit_ms is None:
        time_limit_ms = max(0, timeout_ms - args.latency_slack_ms)

    sink: Optional[TelemetrySink] = None
    if args.telemetry:
        target = parse_host_port(args.telemetry)
        if target is None:
            print(f"--telemetry must be host:port, got {args.telemetry!r}")
            return 2
        sink = TCPLineSink(*target)
    try:
        result = solve_best_move(
            board,
            time_limit_ms=time_limit_ms,
            workers=args.workers,
            telemetry_sink=sink,
        )
    finally:
        if sink is not None:
            sink.close()

    status = "decided" if result.complete else "best so far"
    print(f"Recommended: {DIRECTION_NAMES[result.best_move]} (score: {result.score:+.2f}, {status})")
    if args.explain:
        if result.root_scores:
            print(f"Root: {_format_scores(result.root_scores)}")
        print(
            f"Search: depth={result.depth} complete={result.complete} "
            f"elapsed_ms={result.elapsed_ms} nodes={result.nodes}"
        )
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    try:
        config = ServerConfig.from_env()
    except ValueError as exc:
        print(str(exc))
        return 2
    overrides = {}
    if args.host is not None:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.workers is not None:
        overrides["workers"] = args.workers
    if overrides:
        config = dataclasses.replace(config, **overrides)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_server(config)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Snake move solver")
    sub = parser.add_subparsers(dest="command", required=True)

    move = sub.add_parser("move", help="solve one move request read from a JSON file")
    move.add_argument("request", type=Path, help="path to a move request (game/board/you JSON)")
    move.add_argument(
        "--time-ms",
        type=int,
        default=None,
        help="search budget in milliseconds (default: request timeout minus latency slack)",
    )
    move.add_argument(
        "--latency-slack-ms",
        type=int,
        default=ServerConfig.latency_slack_ms,
        help=f"subtracted from the request timeout (default: {ServerConfig.latency_slack_ms})",
    )
    move.add_argument("--depth", type=int, default=None, help="single fixed-depth search instead of deepening")
    move.add_argument("--workers", choices=WORKER_MODES, default="process", help="root parallelism (default: process)")
    move.add_argument("--show", action="store_true", help="print the decoded board")
    move.add_argument("--explain", action="store_true", help="print root scores and search stats")
    move.add_argument("--telemetry", default=None, help="stream telemetry as JSONL to host:port")
    move.set_defaults(handler=cmd_move)

    serve = sub.add_parser("serve", help="run the HTTP move server")
    serve.add_argument("--host", default=None, help="bind address (default: $HOST or 0.0.0.0)")
    serve.add_argument("--port", type=int, default=None, help="port (default: $PORT or 8000)")
    serve.add_argument("--workers", choices=WORKER_MODES, default=None, help="root parallelism")
    serve.add_argument("-v", "--verbose", action="store_true", help="log telemetry at DEBUG level")
    serve.set_defaults(handler=cmd_serve)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
