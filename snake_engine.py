"""Core rules engine for simultaneous-move snake boards with exact undo."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional, Sequence, Tuple

MAX_HEALTH = 100
START_QUEUED = 2


class Direction(IntEnum):
    UP = 0
    RIGHT = 1
    DOWN = 2
    LEFT = 3


DIRECTIONS: Tuple[Direction, ...] = (Direction.UP, Direction.RIGHT, Direction.DOWN, Direction.LEFT)
DIRECTION_NAMES: Tuple[str, ...] = ("up", "right", "down", "left")

# Direction played for eliminated agents and for agents left without a
# non-fatal option; its outcome does not matter.
PLACEHOLDER = Direction.UP


@dataclass
class Snake:
    positions: List[int]
    body: List[bool]
    health: int
    queued: int = 0

    @property
    def head(self) -> int:
        return self.positions[0]

    @property
    def tail(self) -> int:
        return self.positions[-1]

    @property
    def length(self) -> int:
        return len(self.positions)

    @property
    def alive(self) -> bool:
        return self.health > 0


@dataclass
class Board:
    width: int
    height: int
    snakes: List[Snake] = field(default_factory=list)
    food: List[bool] = field(default_factory=list)
    hazards: List[bool] = field(default_factory=list)

    @property
    def cells(self) -> int:
        return self.width * self.height


@dataclass(frozen=True)
class ChangedState:
    prev_healths: Tuple[int, ...]
    tail_positions: Tuple[int, ...]
    hit_inaccessible: Tuple[bool, ...]
    was_queued: Tuple[bool, ...]
    eaten_food: Tuple[bool, ...]


def new_board(width: int, height: int) -> Board:
    if width <= 0 or height <= 0:
        raise ValueError("board dimensions must be positive")
    cells = width * height
    return Board(width, height, [], [False] * cells, [False] * cells)


def cell_index(board: Board, x: int, y: int) -> int:
    if not (0 <= x < board.width and 0 <= y < board.height):
        raise ValueError(f"cell ({x}, {y}) is outside a {board.width}x{board.height} board")
    return y * board.width + x


def cell_coords(board: Board, cell: int) -> Tuple[int, int]:
    return cell % board.width, cell // board.width


def add_snake(
    board: Board,
    positions: Sequence[int],
    health: int = MAX_HEALTH,
    queued: int = 0,
) -> Snake:
    if not positions:
        raise ValueError("a snake needs at least one segment")
    if not 0 <= health <= MAX_HEALTH:
        raise ValueError(f"health must be 0..{MAX_HEALTH}")
    if queued < 0:
        raise ValueError("queued growth must be non-negative")
    body = [False] * board.cells
    for cell in positions:
        _check_cell(board, cell)
        body[cell] = True
    snake = Snake(list(positions), body, health, queued)
    board.snakes.append(snake)
    return snake


def _check_cell(board: Board, cell: int) -> None:
    # Negative indices would silently wrap onto the last row.
    if not 0 <= cell < board.cells:
        raise ValueError(f"cell {cell} is outside the board")


def add_start_snake(board: Board, cell: int) -> Snake:
    return add_snake(board, [cell], MAX_HEALTH, START_QUEUED)


def place_food(board: Board, cell: int) -> None:
    _check_cell(board, cell)
    board.food[cell] = True


def place_hazard(board: Board, cell: int) -> None:
    _check_cell(board, cell)
    board.hazards[cell] = True


def copy_board(board: Board) -> Board:
    return Board(
        board.width,
        board.height,
        [Snake(list(s.positions), list(s.body), s.health, s.queued) for s in board.snakes],
        list(board.food),
        list(board.hazards),
    )


def next_head(board: Board, head: int, direction: int) -> Optional[int]:
    """Cell reached from ``head`` moving ``direction``, or None when it leaves the board.

    Row wrap is checked explicitly: plain index arithmetic would carry a move
    off the right edge onto the start of the next row.
    """
    width = board.width
    x = head % width
    if direction == Direction.UP:
        cell = head + width
    elif direction == Direction.RIGHT:
        if x == width - 1:
            return None
        cell = head + 1
    elif direction == Direction.DOWN:
        cell = head - width
    elif direction == Direction.LEFT:
        if x == 0:
            return None
        cell = head - 1
    else:
        raise ValueError(f"invalid direction: {direction!r}")
    if cell < 0 or cell >= board.cells:
        return None
    return cell


def legal_moves(board: Board, snake_index: int) -> List[Direction]:
    snake = board.snakes[snake_index]
    tail = snake.positions[-1]
    tail_vacates = snake.queued == 0 and len(snake.positions) > 1
    moves: List[Direction] = []
    for direction in DIRECTIONS:
        cell = next_head(board, snake.positions[0], direction)
        if cell is None:
            continue
        if snake.body[cell] and not (tail_vacates and cell == tail):
            continue
        moves.append(direction)
    return moves


def apply_moves(board: Board, directions: Sequence[int]) -> ChangedState:
    if len(directions) != len(board.snakes):
        raise ValueError("need exactly one direction per snake")

    prev_healths: List[int] = []
    tail_positions: List[int] = []
    hit_inaccessible: List[bool] = []
    was_queued: List[bool] = []
    eaten_food: List[bool] = []
    on_food: List[int] = []

    for idx, snake in enumerate(board.snakes):
        prev_healths.append(snake.health)
        tail_positions.append(snake.positions[-1])
        hit_inaccessible.append(False)
        was_queued.append(snake.queued > 0)
        eaten_food.append(False)

        if snake.health == 0:
            continue

        head = next_head(board, snake.positions[0], directions[idx])
        if head is None:
            snake.health = 0
            hit_inaccessible[idx] = True
            continue

        positions = snake.positions
        # The vacating tail is freed before the test so a snake may chase it.
        vacated = positions[-1] if snake.queued == 0 else None
        if vacated is not None:
            snake.body[vacated] = False
        if snake.body[head]:
            if vacated is not None:
                snake.body[vacated] = True
            snake.health = 0
            hit_inaccessible[idx] = True
            continue
        if vacated is not None:
            positions.pop()
        else:
            snake.queued -= 1
        positions.insert(0, head)
        snake.body[head] = True
        snake.health -= 1

        if board.food[head]:
            # Health resets here; growth and the food itself go only to
            # snakes that survive the collision pass.
            snake.health = MAX_HEALTH
            on_food.append(idx)

    _resolve_collisions(board)

    for idx in on_food:
        snake = board.snakes[idx]
        if snake.health == 0:
            continue
        snake.queued += 1
        board.food[snake.positions[0]] = False
        eaten_food[idx] = True

    return ChangedState(
        tuple(prev_healths),
        tuple(tail_positions),
        tuple(hit_inaccessible),
        tuple(was_queued),
        tuple(eaten_food),
    )


def _resolve_collisions(board: Board) -> None:
    # Every pair is judged against the board as it stands after all heads moved;
    # eliminations are applied together so agent order never matters.
    live = [idx for idx, snake in enumerate(board.snakes) if snake.health > 0]
    eliminated = set()
    for idx in live:
        snake = board.snakes[idx]
        head = snake.positions[0]
        for other_idx in live:
            if other_idx == idx:
                continue
            other = board.snakes[other_idx]
            if other.positions[0] == head:
                if len(snake.positions) <= len(other.positions):
                    eliminated.add(idx)
            elif other.body[head]:
                eliminated.add(idx)
    for idx in eliminated:
        board.snakes[idx].health = 0


def revert_moves(board: Board, changed: ChangedState) -> None:
    for idx, snake in enumerate(board.snakes):
        if changed.prev_healths[idx] == 0:
            continue
        snake.health = changed.prev_healths[idx]
        if changed.hit_inaccessible[idx]:
            continue

        tail = changed.tail_positions[idx]
        head = snake.positions.pop(0)
        snake.body[head] = False
        snake.body[tail] = True
        if changed.was_queued[idx]:
            snake.queued += 1
        else:
            snake.positions.append(tail)
        if changed.eaten_food[idx]:
            snake.queued -= 1
            board.food[head] = True


def alive_count(board: Board) -> int:
    return sum(1 for snake in board.snakes if snake.alive)


def pretty_print(board: Board) -> str:
    """
    Plain-text grid, top row is y = height - 1 (moving up increases y).

      - Snake heads are shown as their agent index (0 is the controlled snake),
        bodies as lowercase letters a, b, c ... by agent index.
      - Eliminated snakes are drawn with 'x'.
      - Food is '*', hazards '~', empty cells '.'.
    """
    grid = ["~" if hazard else "." for hazard in board.hazards]
    for cell, has_food in enumerate(board.food):
        if has_food:
            grid[cell] = "*"
    for idx, snake in enumerate(board.snakes):
        body_char = "x" if snake.health == 0 else chr(ord("a") + idx % 26)
        for cell in snake.positions[1:]:
            grid[cell] = body_char
    for idx, snake in enumerate(board.snakes):
        grid[snake.positions[0]] = "x" if snake.health == 0 else str(idx % 10)

    lines = []
    for y in range(board.height - 1, -1, -1):
        row = grid[y * board.width : (y + 1) * board.width]
        lines.append(f"{y:>2} " + " ".join(row))
    lines.append("   " + " ".join(str(x % 10) for x in range(board.width)))
    status = ", ".join(
        f"{idx}: len={snake.length} hp={snake.health} queued={snake.queued}"
        for idx, snake in enumerate(board.snakes)
    )
    lines.append("")
    lines.append(f"Snakes: {status}" if status else "Snakes: none")
    return "\n".join(lines)
