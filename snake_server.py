"""HTTP move server: decodes game requests into boards and answers with a searched move."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple
import logging
import os

from flask import Flask, jsonify, request

from snake_engine import (
    DIRECTION_NAMES,
    MAX_HEALTH,
    Board,
    add_snake,
    cell_index,
    new_board,
    place_food,
    place_hazard,
)
from snake_solver import WORKER_MODES, solve_best_move
from snake_telemetry import LoggingTelemetrySink

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 500
DEFAULT_PORT = 8000


class RequestError(ValueError):
    """Raised when a move request cannot be turned into a board."""


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    author: str = ""
    color: str = "#FF0000"
    head: str = "safe"
    tail: str = "block-bum"
    version: str = "1.0.0"
    latency_slack_ms: int = 375
    shout: str = "*aggressively yells*"
    workers: str = "process"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        env = os.environ if environ is None else environ
        defaults = cls()
        workers = env.get("SNAKE_WORKERS", defaults.workers)
        if workers not in WORKER_MODES:
            raise ValueError(f"SNAKE_WORKERS must be one of {', '.join(WORKER_MODES)}")
        return cls(
            host=env.get("HOST", defaults.host),
            port=_env_int(env, "PORT", defaults.port),
            author=env.get("SNAKE_AUTHOR", defaults.author),
            color=env.get("SNAKE_COLOR", defaults.color),
            head=env.get("SNAKE_HEAD", defaults.head),
            tail=env.get("SNAKE_TAIL", defaults.tail),
            latency_slack_ms=_env_int(env, "SNAKE_LATENCY_SLACK_MS", defaults.latency_slack_ms),
            workers=workers,
        )


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} is not a valid integer: {raw!r}") from None


def _point(board: Board, raw: Any) -> int:
    try:
        return cell_index(board, int(raw["x"]), int(raw["y"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise RequestError(f"bad coordinate {raw!r}: {exc}") from None


def _decode_body(board: Board, raw_body: Any) -> Tuple[List[int], int]:
    if not isinstance(raw_body, list) or not raw_body:
        raise RequestError("snake body must be a non-empty list")
    positions: List[int] = []
    queued = 0
    for raw in raw_body:
        cell = _point(board, raw)
        # Stacked segments at the tail are growth that has not unfolded yet.
        if positions and positions[-1] == cell:
            queued += 1
        else:
            positions.append(cell)
    return positions, queued


def _add_request_snake(board: Board, raw_snake: Any) -> None:
    if not isinstance(raw_snake, dict):
        raise RequestError("snake entries must be objects")
    positions, queued = _decode_body(board, raw_snake.get("body"))
    try:
        health = int(raw_snake.get("health", MAX_HEALTH))
    except (TypeError, ValueError):
        raise RequestError(f"bad health {raw_snake.get('health')!r}") from None
    try:
        add_snake(board, positions, max(0, min(MAX_HEALTH, health)), queued)
    except ValueError as exc:
        raise RequestError(str(exc)) from None


def decode_request(payload: Any) -> Tuple[Board, int]:
    if not isinstance(payload, dict):
        raise RequestError("request body must be a JSON object")
    raw_board = payload.get("board")
    you = payload.get("you")
    if not isinstance(raw_board, dict) or not isinstance(you, dict):
        raise RequestError("request needs 'board' and 'you' objects")
    try:
        board = new_board(int(raw_board["width"]), int(raw_board["height"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise RequestError(f"bad board dimensions: {exc}") from None

    for raw in raw_board.get("food") or []:
        place_food(board, _point(board, raw))
    for raw in raw_board.get("hazards") or []:
        place_hazard(board, _point(board, raw))

    _add_request_snake(board, you)
    you_id = you.get("id")
    for raw_snake in raw_board.get("snakes") or []:
        if isinstance(raw_snake, dict) and you_id is not None and raw_snake.get("id") == you_id:
            continue
        _add_request_snake(board, raw_snake)

    game = payload.get("game") or {}
    try:
        timeout_ms = int(game.get("timeout", DEFAULT_TIMEOUT_MS))
    except (AttributeError, TypeError, ValueError):
        raise RequestError("bad game timeout") from None
    return board, timeout_ms


def info_payload(config: ServerConfig) -> Dict[str, str]:
    return {
        "apiversion": "1",
        "author": config.author,
        "color": config.color,
        "head": config.head,
        "tail": config.tail,
        "version": config.version,
    }


def create_app(config: Optional[ServerConfig] = None) -> Flask:
    config = config if config is not None else ServerConfig()
    app = Flask(__name__)
    telemetry = LoggingTelemetrySink(logging.getLogger("snake_solver.telemetry"))

    @app.get("/")
    def index():
        return jsonify(info_payload(config))

    @app.post("/start")
    def start():
        data = request.get_json(silent=True) or {}
        logger.info("game started: %s", (data.get("game") or {}).get("id"))
        return ("", 200)

    @app.post("/end")
    def end():
        data = request.get_json(silent=True) or {}
        logger.info("game ended: %s", (data.get("game") or {}).get("id"))
        return ("", 200)

    @app.post("/move")
    def move():
        try:
            board, timeout_ms = decode_request(request.get_json(silent=True))
        except RequestError as exc:
            logger.warning("rejected move request: %s", exc)
            return jsonify({"error": str(exc)}), 400

        budget_ms = max(0, timeout_ms - config.latency_slack_ms)
        result = solve_best_move(
            board,
            time_limit_ms=budget_ms,
            workers=config.workers,
            telemetry_sink=telemetry,
        )
        move_name = DIRECTION_NAMES[result.best_move] if result.best_move is not None else "up"
        logger.info(
            "move=%s score=%.2f depth=%d nodes=%d elapsed_ms=%d",
            move_name,
            result.score,
            result.depth,
            result.nodes,
            result.elapsed_ms,
        )
        return jsonify({"move": move_name, "shout": config.shout})

    return app


def run_server(config: ServerConfig) -> None:
    app = create_app(config)
    logger.info("serving on %s:%d (workers=%s)", config.host, config.port, config.workers)
    app.run(host=config.host, port=config.port, debug=False, threaded=True)
