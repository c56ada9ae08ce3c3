"""Paranoid alpha-beta search over simultaneous snake moves with a parallel root."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
import multiprocessing as mp
import queue
import threading
import time

from snake_engine import (
    DIRECTION_NAMES,
    PLACEHOLDER,
    Board,
    Direction,
    add_snake,
    apply_moves,
    copy_board,
    legal_moves,
    new_board,
    place_food,
    place_hazard,
    revert_moves,
)
from snake_telemetry import (
    IterationDoneEvent,
    IterationStartEvent,
    RootResultEvent,
    SearchEndEvent,
    SearchStartEvent,
    TelemetrySink,
    emit_dataclass_event,
)

INF = float("inf")
WIN = 10000.0
LOSS = -10000.0
DRAW = 0.0
OPEN_SPACE_WEIGHT = 5.0
HEALTH_CENTER = 50.0
HEALTH_DIVISOR = 5.0
MAX_ITERATIVE_DEPTH = 64
WORKER_MODES = ("process", "thread", "inline")
WORKER_POLL_S = 0.05
# How long past the deadline a root worker may run before it counts as lost.
WORKER_GRACE_S = 0.5


@dataclass
class _SearchContext:
    deadline: Optional[float]
    nodes: int = 0
    cutoffs: int = 0
    eval_calls: int = 0


@dataclass(frozen=True)
class SearchResult:
    best_move: Optional[Direction]
    score: float
    depth: int
    complete: bool
    elapsed_ms: int
    nodes: int
    root_scores: List[Tuple[Direction, float]] = field(default_factory=list)


@dataclass(frozen=True)
class _RootOutcome:
    best_move: Direction
    score: float
    root_scores: Tuple[Tuple[Direction, float], ...]
    nodes: int


def _make_deadline(time_budget_ms: Optional[float]) -> Optional[float]:
    if time_budget_ms is None:
        return None
    return time.monotonic() + time_budget_ms / 1000.0


def _out_of_time(context: _SearchContext) -> bool:
    return context.deadline is not None and time.monotonic() > context.deadline


# ---------------------------------------------------------------------------
# Board keys
# ---------------------------------------------------------------------------


def board_key(board: Board) -> str:
    """Compact text form: ``WxH|food|hazards|health:queued:cells;...``."""
    food = ",".join(str(cell) for cell, on in enumerate(board.food) if on)
    hazards = ",".join(str(cell) for cell, on in enumerate(board.hazards) if on)
    snakes = ";".join(
        f"{snake.health}:{snake.queued}:" + ",".join(str(cell) for cell in snake.positions)
        for snake in board.snakes
    )
    return f"{board.width}x{board.height}|{food}|{hazards}|{snakes}"


def _parse_cells(raw: str) -> List[int]:
    return [int(part) for part in raw.split(",")] if raw else []


def key_to_board(key: str) -> Optional[Board]:
    parts = key.strip().split("|")
    if len(parts) != 4:
        return None
    try:
        width_raw, height_raw = parts[0].split("x")
        board = new_board(int(width_raw), int(height_raw))
        for cell in _parse_cells(parts[1]):
            place_food(board, cell)
        for cell in _parse_cells(parts[2]):
            place_hazard(board, cell)
        if parts[3]:
            for raw_snake in parts[3].split(";"):
                health_raw, queued_raw, cells_raw = raw_snake.split(":")
                add_snake(board, _parse_cells(cells_raw), int(health_raw), int(queued_raw))
    except (ValueError, IndexError):
        return None
    if not board.snakes:
        return None
    return board


# ---------------------------------------------------------------------------
# Static evaluation
# ---------------------------------------------------------------------------


def _blocked(board: Board, cell: int) -> bool:
    for snake in board.snakes:
        if snake.body[cell]:
            return True
    return False


def cast_rays(board: Board, cell: int) -> int:
    width = board.width
    x, y = cell % width, cell // width
    total = 0
    for ny in range(y + 1, board.height):
        if _blocked(board, ny * width + x):
            break
        total += 1
    for nx in range(x + 1, width):
        if _blocked(board, y * width + nx):
            break
        total += 1
    for ny in range(y - 1, -1, -1):
        if _blocked(board, ny * width + x):
            break
        total += 1
    for nx in range(x - 1, -1, -1):
        if _blocked(board, y * width + nx):
            break
        total += 1
    return total


def _composite(board: Board, snake_index: int) -> float:
    snake = board.snakes[snake_index]
    space = cast_rays(board, snake.positions[0]) / (board.width + board.height)
    return (
        len(snake.positions)
        + snake.queued
        + space * OPEN_SPACE_WEIGHT
        + (snake.health - HEALTH_CENTER) / HEALTH_DIVISOR
    )


def evaluate(board: Board) -> float:
    self_dead = board.snakes[0].health == 0
    opponents = board.snakes[1:]
    others_dead = not any(snake.health > 0 for snake in opponents)
    if opponents:
        if self_dead and others_dead:
            return DRAW
        if self_dead:
            return LOSS
        if others_dead:
            return WIN
    elif self_dead:
        return LOSS

    own = _composite(board, 0)
    if not opponents:
        return own
    others = sum(
        _composite(board, idx)
        for idx in range(1, len(board.snakes))
        if board.snakes[idx].health > 0
    )
    return own - others / len(opponents)


# ---------------------------------------------------------------------------
# Alpha-beta
# ---------------------------------------------------------------------------


def candidate_moves(board: Board, snake_index: int) -> List[Direction]:
    # Every filtered-out direction is fatal, so a boxed-in agent plays one of them.
    return legal_moves(board, snake_index) or [PLACEHOLDER]


def maximize(
    board: Board,
    alpha: float,
    beta: float,
    depth: int,
    context: _SearchContext,
) -> Optional[float]:
    if _out_of_time(context):
        return None
    context.nodes += 1
    if board.snakes[0].health == 0:
        return LOSS
    if depth <= 0:
        context.eval_calls += 1
        return evaluate(board)

    for direction in candidate_moves(board, 0):
        score = minimize(board, [direction], alpha, beta, depth, context)
        if score is None:
            return None
        if score >= beta:
            context.cutoffs += 1
            return beta
        if score > alpha:
            alpha = score
    return alpha


def minimize(
    board: Board,
    moves: List[int],
    alpha: float,
    beta: float,
    depth: int,
    context: _SearchContext,
) -> Optional[float]:
    if _out_of_time(context):
        return None
    context.nodes += 1

    if len(moves) == len(board.snakes):
        changed = apply_moves(board, moves)
        score = maximize(board, alpha, beta, depth - 1, context)
        revert_moves(board, changed)
        if score is None:
            return None
        if score <= alpha:
            context.cutoffs += 1
            return alpha
        return min(beta, score)

    snake_index = len(moves)
    if board.snakes[snake_index].health == 0:
        options: List[Direction] = [PLACEHOLDER]
    else:
        options = candidate_moves(board, snake_index)

    for direction in options:
        moves.append(direction)
        score = minimize(board, moves, alpha, beta, depth, context)
        moves.pop()
        if score is None:
            return None
        if score <= alpha:
            context.cutoffs += 1
            return alpha
        if score < beta:
            beta = score
    return beta


def search_depth(
    board: Board,
    depth: int,
    alpha: float = -INF,
    beta: float = INF,
    time_budget_ms: Optional[float] = None,
) -> Optional[float]:
    context = _SearchContext(deadline=_make_deadline(time_budget_ms))
    return maximize(board, alpha, beta, max(0, depth), context)


# ---------------------------------------------------------------------------
# Root driver
# ---------------------------------------------------------------------------


def _search_branch(
    board: Board,
    direction: Direction,
    alpha: float,
    depth: int,
    deadline: Optional[float],
) -> Tuple[Optional[float], int]:
    context = _SearchContext(deadline=deadline)
    score = minimize(board, [direction], alpha, INF, depth, context)
    return score, context.nodes


def _root_worker(
    board: Board,
    index: int,
    direction: Direction,
    alpha: float,
    depth: int,
    deadline: Optional[float],
    channel: "mp.Queue[Tuple[int, Optional[float], int]]",
) -> None:
    score, nodes = _search_branch(board, direction, alpha, depth, deadline)
    channel.put((index, score, nodes))


def _collect(
    channel: "queue.Queue[Tuple[int, Optional[float], int]]",
    workers: List[Any],
    deadline: Optional[float],
) -> Tuple[List[Optional[float]], int]:
    """Read one result per worker; a worker that dies or overruns leaves a None score.

    ``workers`` are the started processes or threads, in the same order as the
    indices they report.
    """
    count = len(workers)
    scores: List[Optional[float]] = [None] * count
    reported = [False] * count
    nodes = 0
    while not all(reported):
        try:
            index, score, branch_nodes = channel.get(timeout=WORKER_POLL_S)
        except queue.Empty:
            if deadline is not None and time.monotonic() > deadline + WORKER_GRACE_S:
                return scores, nodes
            silent_exit = any(
                not reported[idx] and not worker.is_alive() for idx, worker in enumerate(workers)
            )
            if not silent_exit:
                continue
            # A worker that exited normally flushed its result before dying.
            try:
                index, score, branch_nodes = channel.get(timeout=WORKER_POLL_S)
            except queue.Empty:
                return scores, nodes
        scores[index] = score
        reported[index] = True
        nodes += branch_nodes
    return scores, nodes


def _run_processes(
    board: Board,
    moves: List[Direction],
    alpha: float,
    depth: int,
    deadline: Optional[float],
) -> Tuple[List[Optional[float]], int]:
    channel: "mp.Queue[Tuple[int, Optional[float], int]]" = mp.Queue()
    workers = []
    try:
        for index, direction in enumerate(moves):
            # The board is pickled into the child, which gives each branch its own copy.
            process = mp.Process(
                target=_root_worker,
                args=(board, index, direction, alpha, depth, deadline, channel),
                name=f"snake-root-{DIRECTION_NAMES[direction]}",
                daemon=True,
            )
            process.start()
            workers.append(process)
        return _collect(channel, workers, deadline)
    finally:
        for process in workers:
            process.join(timeout=WORKER_GRACE_S)
            if process.is_alive():
                process.terminate()
                process.join(timeout=WORKER_GRACE_S)
        channel.close()


def _run_threads(
    board: Board,
    moves: List[Direction],
    alpha: float,
    depth: int,
    deadline: Optional[float],
) -> Tuple[List[Optional[float]], int]:
    channel: "queue.Queue[Tuple[int, Optional[float], int]]" = queue.Queue()
    workers = []
    for index, direction in enumerate(moves):
        thread = threading.Thread(
            target=_root_worker,
            args=(copy_board(board), index, direction, alpha, depth, deadline, channel),
            name=f"snake-root-{DIRECTION_NAMES[direction]}",
            daemon=True,
        )
        thread.start()
        workers.append(thread)
    try:
        return _collect(channel, workers, deadline)
    finally:
        # Threads cannot be killed; an overrunning one is left to finish as a daemon.
        for thread in workers:
            thread.join(timeout=WORKER_GRACE_S)


def _run_inline(
    board: Board,
    moves: List[Direction],
    alpha: float,
    depth: int,
    deadline: Optional[float],
) -> Tuple[List[Optional[float]], int]:
    scores: List[Optional[float]] = []
    nodes = 0
    best = alpha
    for direction in moves:
        score, branch_nodes = _search_branch(copy_board(board), direction, best, depth, deadline)
        nodes += branch_nodes
        scores.append(score)
        if score is None:
            break
        best = max(best, score)
    return scores, nodes


_RUNNERS: Dict[str, Callable[..., Tuple[List[Optional[float]], int]]] = {
    "process": _run_processes,
    "thread": _run_threads,
    "inline": _run_inline,
}


def search_root(
    board: Board,
    depth: int,
    time_budget_ms: Optional[float] = None,
    workers: str = "process",
    deadline: Optional[float] = None,
) -> Optional[_RootOutcome]:
    if workers not in _RUNNERS:
        raise ValueError(f"workers must be one of {', '.join(WORKER_MODES)}")
    if time_budget_ms is not None and time_budget_ms < 0:
        return None
    if deadline is None:
        deadline = _make_deadline(time_budget_ms)

    moves = candidate_moves(board, 0)
    scores, nodes = _RUNNERS[workers](board, moves, -INF, max(0, depth), deadline)
    if len(scores) < len(moves) or any(score is None for score in scores):
        return None

    best_move = moves[0]
    best_score = -INF
    root_scores: List[Tuple[Direction, float]] = []
    for direction, score in zip(moves, scores):
        root_scores.append((direction, float(score)))
        if score > best_score:
            best_move, best_score = direction, float(score)
    return _RootOutcome(best_move, best_score, tuple(root_scores), nodes)


def best_move(
    board: Board,
    depth: int,
    time_budget_ms: Optional[float] = None,
    workers: str = "process",
) -> Optional[Tuple[Direction, float]]:
    outcome = search_root(board, depth, time_budget_ms, workers=workers)
    if outcome is None:
        return None
    return outcome.best_move, outcome.score


# ---------------------------------------------------------------------------
# Iterative deepening
# ---------------------------------------------------------------------------


def _fallback_move(board: Board) -> Direction:
    return candidate_moves(board, 0)[0]


def solve_best_move(
    board: Board,
    time_limit_ms: Optional[int] = None,
    start_depth: int = 1,
    max_depth: Optional[int] = None,
    workers: str = "process",
    progress_callback: Optional[Callable[[SearchResult], None]] = None,
    telemetry_sink: Optional[TelemetrySink] = None,
) -> SearchResult:
    if time_limit_ms is None and max_depth is None:
        max_depth = MAX_ITERATIVE_DEPTH
    start = time.monotonic()
    deadline = _make_deadline(time_limit_ms)
    depth = max(1, start_depth)
    total_nodes = 0
    best_result: Optional[SearchResult] = None
    reason = "timeout"

    emit_dataclass_event(
        telemetry_sink,
        "search_start",
        SearchStartEvent(
            board_key=board_key(board),
            time_limit_ms=time_limit_ms,
            start_depth=depth,
            workers=workers,
        ),
    )

    while max_depth is None or depth <= max_depth:
        if deadline is not None and time.monotonic() >= deadline:
            break
        emit_dataclass_event(telemetry_sink, "iteration_start", IterationStartEvent(depth=depth))
        outcome = search_root(board, depth, workers=workers, deadline=deadline)
        if outcome is None:
            break

        total_nodes += outcome.nodes
        for direction, score in outcome.root_scores:
            emit_dataclass_event(
                telemetry_sink,
                "root_result",
                RootResultEvent(depth=depth, move=DIRECTION_NAMES[direction], score=score),
            )
        complete = outcome.score in (WIN, LOSS)
        best_result = SearchResult(
            best_move=outcome.best_move,
            score=outcome.score,
            depth=depth,
            complete=complete,
            elapsed_ms=int((time.monotonic() - start) * 1000),
            nodes=total_nodes,
            root_scores=list(outcome.root_scores),
        )
        emit_dataclass_event(
            telemetry_sink,
            "iteration_done",
            IterationDoneEvent(
                depth=depth,
                score=outcome.score,
                best_move=DIRECTION_NAMES[outcome.best_move],
                nodes=outcome.nodes,
                elapsed_ms=best_result.elapsed_ms,
                root_scores=[(DIRECTION_NAMES[d], s) for d, s in outcome.root_scores],
            ),
        )
        if progress_callback is not None:
            progress_callback(best_result)
        if complete:
            reason = "decided"
            break
        depth += 1
    else:
        reason = "max_depth"

    if best_result is None:
        best_result = SearchResult(
            best_move=_fallback_move(board),
            score=0.0,
            depth=0,
            complete=False,
            elapsed_ms=int((time.monotonic() - start) * 1000),
            nodes=0,
        )
        reason = "fallback"

    emit_dataclass_event(
        telemetry_sink,
        "search_end",
        SearchEndEvent(
            best_move=DIRECTION_NAMES[best_result.best_move] if best_result.best_move is not None else None,
            score=best_result.score,
            depth=best_result.depth,
            complete=best_result.complete,
            nodes=best_result.nodes,
            elapsed_ms=best_result.elapsed_ms,
            reason=reason,
        ),
    )
    return best_result
