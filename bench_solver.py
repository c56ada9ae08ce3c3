"""Deterministic benchmark harness for the snake solver."""

from __future__ import annotations

import argparse
import gc
import math
import platform
import random
import statistics
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from snake_engine import (
    DIRECTION_NAMES,
    Board,
    add_start_snake,
    alive_count,
    apply_moves,
    legal_moves,
    new_board,
    place_food,
)
from snake_solver import board_key, key_to_board, search_root, solve_best_move


def _random_board(rng: random.Random, width: int, height: int, snakes: int, food: int) -> Board:
    board = new_board(width, height)
    cells = rng.sample(range(board.cells), snakes + food)
    for cell in cells[:snakes]:
        add_start_snake(board, cell)
    for cell in cells[snakes:]:
        place_food(board, cell)
    return board


def _generate_positions(
    *,
    positions: int,
    max_plies: int,
    width: int,
    height: int,
    snakes: int,
    food: int,
    seed: int,
) -> List[Board]:
    rng = random.Random(seed)
    out: List[Board] = []
    while len(out) < positions:
        board = _random_board(rng, width, height, snakes, food)
        plies = rng.randint(0, max_plies)
        for _ in range(plies):
            moves = []
            for idx, snake in enumerate(board.snakes):
                options = legal_moves(board, idx) if snake.health > 0 else []
                moves.append(rng.choice(options) if options else 0)
            apply_moves(board, moves)
            if board.snakes[0].health == 0 or alive_count(board) < 2:
                break
        if board.snakes[0].health > 0 and alive_count(board) >= 2:
            out.append(board)
    return out


def _load_positions(path: Path, limit: int) -> List[Board]:
    boards: List[Board] = []
    with path.open("r", encoding="utf-8") as handle:
        for line_no, raw in enumerate(handle, start=1):
            key = raw.strip()
            if not key:
                continue
            board = key_to_board(key)
            if board is None:
                raise ValueError(f"invalid board key at line {line_no}: {key!r}")
            if board.snakes[0].health == 0:
                continue
            boards.append(board)
            if len(boards) >= limit:
                break
    return boards


def _save_positions(path: Path, positions: Sequence[Board]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        for board in positions:
            handle.write(board_key(board) + "\n")


def _percentile(values: Sequence[float], percentile: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    if len(ordered) == 1:
        return float(ordered[0])
    rank = (len(ordered) - 1) * percentile
    lo = math.floor(rank)
    hi = math.ceil(rank)
    if lo == hi:
        return float(ordered[lo])
    frac = rank - lo
    return float(ordered[lo] * (1.0 - frac) + ordered[hi] * frac)


def _run_single_solve(
    *,
    board: Board,
    time_limit_ms: Optional[int],
    depth: Optional[int],
    workers: str,
):
    if depth is not None:
        start_ns = time.perf_counter_ns()
        outcome = search_root(board, depth, workers=workers)
        elapsed_ms = (time.perf_counter_ns() - start_ns) // 1_000_000
        if outcome is None:
            return {"best_move": None, "score": 0.0, "depth": depth, "elapsed_ms": elapsed_ms, "nodes": 0}
        return {
            "best_move": outcome.best_move,
            "score": outcome.score,
            "depth": depth,
            "elapsed_ms": int(elapsed_ms),
            "nodes": outcome.nodes,
        }
    result = solve_best_move(board, time_limit_ms=time_limit_ms, workers=workers)
    return {
        "best_move": result.best_move,
        "score": result.score,
        "depth": result.depth,
        "elapsed_ms": result.elapsed_ms,
        "nodes": result.nodes,
    }


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Deterministic snake solver benchmark")
    parser.add_argument("--positions", type=int, default=20, help="number of positions (default: 20)")
    parser.add_argument("--max-plies", type=int, default=12, help="max random plies from start (default: 12)")
    parser.add_argument("--width", type=int, default=11, help="board width (default: 11)")
    parser.add_argument("--height", type=int, default=11, help="board height (default: 11)")
    parser.add_argument("--snakes", type=int, default=2, help="snakes per board (default: 2)")
    parser.add_argument("--food", type=int, default=3, help="food cells per board (default: 3)")
    parser.add_argument("--seed", type=int, default=12345, help="random seed for position generation")
    parser.add_argument("--time-ms", type=int, default=300, help="budget for each timed solve (default: 300)")
    parser.add_argument("--depth", type=int, default=None, help="fixed search depth (disables --time-ms)")
    parser.add_argument(
        "--workers",
        choices=("process", "thread", "inline"),
        default="inline",
        help="root parallelism (default: inline)",
    )
    parser.add_argument("--repeat", type=int, default=1, help="benchmark repeats for p50/p95 summaries")
    parser.add_argument("--no-gc", action="store_true", help="disable GC during benchmark loop")
    parser.add_argument("--save-positions", type=Path, default=None, help="write sampled positions (board keys) to file")
    parser.add_argument("--load-positions", type=Path, default=None, help="load positions (board keys) from file")
    args = parser.parse_args(argv)

    if args.positions <= 0:
        print("--positions must be > 0")
        return 2
    if args.max_plies < 0:
        print("--max-plies must be >= 0")
        return 2
    if args.width <= 0 or args.height <= 0:
        print("--width and --height must be > 0")
        return 2
    if args.snakes < 2:
        print("--snakes must be >= 2")
        return 2
    if args.food < 0 or args.snakes + args.food > args.width * args.height:
        print("--food must be >= 0 and fit on the board with the snakes")
        return 2
    if args.repeat <= 0:
        print("--repeat must be > 0")
        return 2
    if args.depth is not None and args.depth < 0:
        print("--depth must be >= 0")
        return 2
    if args.load_positions is not None and not args.load_positions.exists():
        print(f"--load-positions not found: {args.load_positions}")
        return 2

    if args.load_positions is not None:
        try:
            positions = _load_positions(args.load_positions, args.positions)
        except ValueError as exc:
            print(f"failed to load positions: {exc}")
            return 2
        if not positions:
            print("--load-positions provided no usable positions")
            return 2
    else:
        positions = _generate_positions(
            positions=args.positions,
            max_plies=args.max_plies,
            width=args.width,
            height=args.height,
            snakes=args.snakes,
            food=args.food,
            seed=args.seed,
        )
    if args.save_positions is not None:
        _save_positions(args.save_positions, positions)

    mode = "depth" if args.depth is not None else "timed"
    time_limit_ms = None if mode != "timed" else args.time_ms

    print(
        f"python={sys.version.split()[0]} platform={platform.platform()} "
        f"mode={mode} workers={args.workers} repeats={args.repeat}"
    )
    print(f"rep idx depth nodes solver_ms wall_ms best score (positions={len(positions)} seed={args.seed})")

    gc_was_enabled = gc.isenabled()
    repeat_summaries: List[Dict[str, float]] = []
    if args.no_gc and gc_was_enabled:
        gc.disable()
    try:
        for rep in range(1, args.repeat + 1):
            total_nodes = 0
            total_solver_ms = 0
            deepest = 0
            wall_start_ns = time.perf_counter_ns()
            for idx, board in enumerate(positions, start=1):
                start_ns = time.perf_counter_ns()
                result = _run_single_solve(
                    board=board,
                    time_limit_ms=time_limit_ms,
                    depth=args.depth,
                    workers=args.workers,
                )
                wall_ms = (time.perf_counter_ns() - start_ns) // 1_000_000
                total_nodes += int(result["nodes"])
                total_solver_ms += int(result["elapsed_ms"])
                deepest = max(deepest, int(result["depth"]))
                best = DIRECTION_NAMES[result["best_move"]] if result["best_move"] is not None else "-"
                print(
                    f"{rep:>3d} {idx:03d} {int(result['depth']):>5d} {int(result['nodes']):>9d} "
                    f"{int(result['elapsed_ms']):>9d} {int(wall_ms):>7d} {best:>5} {float(result['score']):>+9.2f}"
                )

            total_wall_ms = max(1, (time.perf_counter_ns() - wall_start_ns) // 1_000_000)
            nps_wall = int(total_nodes * 1000 / total_wall_ms)
            repeat_summaries.append(
                {
                    "deepest": float(deepest),
                    "total_nodes": float(total_nodes),
                    "nps_wall": float(nps_wall),
                    "avg_nodes": total_nodes / len(positions),
                    "avg_solver_ms": total_solver_ms / len(positions),
                }
            )
            print(
                "summary "
                f"rep={rep} positions={len(positions)} deepest={deepest} total_nodes={total_nodes} "
                f"total_solver_ms={total_solver_ms} total_wall_ms={total_wall_ms} nps_wall={nps_wall} "
                f"avg_solver_ms={total_solver_ms / len(positions):.1f}"
            )
    finally:
        if args.no_gc and gc_was_enabled:
            gc.enable()

    if args.repeat > 1:
        for name in ("nps_wall", "avg_nodes", "avg_solver_ms", "deepest"):
            values = [summary[name] for summary in repeat_summaries]
            print(
                f"dist {name} min={min(values):.2f} p50={_percentile(values, 0.50):.2f} "
                f"p95={_percentile(values, 0.95):.2f} max={max(values):.2f} mean={statistics.fmean(values):.2f}"
            )

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
