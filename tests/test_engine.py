import itertools
import random
import unittest

from snake_engine import (
    Direction,
    add_snake,
    add_start_snake,
    apply_moves,
    cell_coords,
    cell_index,
    copy_board,
    legal_moves,
    new_board,
    next_head,
    place_food,
    place_hazard,
    pretty_print,
    revert_moves,
)

UP, RIGHT, DOWN, LEFT = Direction.UP, Direction.RIGHT, Direction.DOWN, Direction.LEFT


def cell(x, y, width=7):
    return y * width + x


def random_board(rng, width=7, height=7, snakes=2, food=3):
    board = new_board(width, height)
    cells = rng.sample(range(width * height), snakes + food)
    for c in cells[:snakes]:
        add_start_snake(board, c)
    for c in cells[snakes:]:
        place_food(board, c)
    return board


def assert_bitmaps_consistent(testcase, board):
    for snake in board.snakes:
        expected = [False] * board.cells
        for c in snake.positions:
            expected[c] = True
        testcase.assertEqual(snake.body, expected)


class TestBoardSetup(unittest.TestCase):
    def test_cell_index_is_row_major(self):
        board = new_board(7, 5)
        self.assertEqual(cell_index(board, 0, 0), 0)
        self.assertEqual(cell_index(board, 6, 0), 6)
        self.assertEqual(cell_index(board, 0, 1), 7)
        self.assertEqual(cell_coords(board, 33), (5, 4))
        with self.assertRaises(ValueError):
            cell_index(board, 7, 0)

    def test_add_snake_derives_bitmap(self):
        board = new_board(7, 7)
        snake = add_snake(board, [9, 8, 1], health=80, queued=1)
        self.assertEqual(snake.head, 9)
        self.assertEqual(snake.tail, 1)
        self.assertEqual(snake.length, 3)
        self.assertEqual([c for c, on in enumerate(snake.body) if on], [1, 8, 9])

    def test_add_snake_rejects_bad_input(self):
        board = new_board(7, 7)
        with self.assertRaises(ValueError):
            add_snake(board, [])
        with self.assertRaises(ValueError):
            add_snake(board, [49])
        with self.assertRaises(ValueError):
            add_snake(board, [0], health=101)
        with self.assertRaises(ValueError):
            add_snake(board, [0], queued=-1)

    def test_food_and_hazards_must_be_on_the_board(self):
        board = new_board(7, 7)
        for cell_value in (-1, 49):
            with self.subTest(cell=cell_value):
                with self.assertRaises(ValueError):
                    place_food(board, cell_value)
                with self.assertRaises(ValueError):
                    place_hazard(board, cell_value)
        self.assertFalse(any(board.food))
        self.assertFalse(any(board.hazards))

    def test_copy_board_is_independent(self):
        board = new_board(7, 7)
        add_start_snake(board, 0)
        clone = copy_board(board)
        self.assertEqual(clone, board)
        apply_moves(clone, [UP])
        self.assertNotEqual(clone, board)
        self.assertEqual(board.snakes[0].positions, [0])

    def test_invalid_direction_is_rejected(self):
        board = new_board(7, 7)
        add_start_snake(board, 10)
        with self.assertRaises(ValueError):
            next_head(board, 10, 4)
        with self.assertRaises(ValueError):
            apply_moves(board, [UP, UP])

    def test_pretty_print_marks_heads_and_food(self):
        board = new_board(5, 5)
        add_snake(board, [6, 1])
        add_snake(board, [18], health=0)
        place_food(board, 24)
        text = pretty_print(board)
        self.assertIn("0", text)
        self.assertIn("*", text)
        self.assertIn("x", text)
        self.assertIn("0: len=2 hp=100 queued=0", text)


class TestApplyMoves(unittest.TestCase):
    def test_wall_collisions_revert(self):
        board = new_board(7, 7)
        add_start_snake(board, 0)
        add_start_snake(board, 6)
        before = copy_board(board)
        changed = apply_moves(board, [DOWN, RIGHT])
        self.assertEqual(board.snakes[0].health, 0)
        self.assertEqual(board.snakes[1].health, 0)
        self.assertEqual(changed.hit_inaccessible, (True, True))
        revert_moves(board, changed)
        self.assertEqual(board, before)

    def test_row_wrap_always_eliminates(self):
        for width, height in ((7, 7), (5, 3), (11, 11)):
            for y in range(height):
                with self.subTest(width=width, y=y, direction="right"):
                    board = new_board(width, height)
                    add_snake(board, [y * width + width - 1])
                    apply_moves(board, [RIGHT])
                    self.assertEqual(board.snakes[0].health, 0)
                    self.assertEqual(board.snakes[0].positions, [y * width + width - 1])
                with self.subTest(width=width, y=y, direction="left"):
                    board = new_board(width, height)
                    add_snake(board, [y * width])
                    apply_moves(board, [LEFT])
                    self.assertEqual(board.snakes[0].health, 0)

    def test_plain_move_retracts_tail(self):
        board = new_board(7, 7)
        add_snake(board, [cell(2, 1), cell(1, 1), cell(0, 1)], health=50)
        changed = apply_moves(board, [UP])
        snake = board.snakes[0]
        self.assertEqual(snake.positions, [cell(2, 2), cell(2, 1), cell(1, 1)])
        self.assertEqual(snake.health, 49)
        assert_bitmaps_consistent(self, board)
        revert_moves(board, changed)
        self.assertEqual(snake.positions, [cell(2, 1), cell(1, 1), cell(0, 1)])
        self.assertEqual(snake.health, 50)

    def test_head_to_head_equal_length_eliminates_both(self):
        board = new_board(7, 7)
        add_start_snake(board, 0)
        add_start_snake(board, 2)
        before = copy_board(board)
        changed = apply_moves(board, [RIGHT, LEFT])
        self.assertEqual(board.snakes[0].health, 0)
        self.assertEqual(board.snakes[1].health, 0)
        revert_moves(board, changed)
        self.assertEqual(board, before)

    def test_head_to_head_shorter_snake_loses(self):
        board = new_board(7, 7)
        add_snake(board, [2, 1, 0])
        add_snake(board, [4])
        before = copy_board(board)
        changed = apply_moves(board, [RIGHT, LEFT])
        self.assertGreater(board.snakes[0].health, 0)
        self.assertEqual(board.snakes[1].health, 0)
        revert_moves(board, changed)
        self.assertEqual(board, before)

        board = new_board(7, 7)
        add_snake(board, [4])
        add_snake(board, [2, 1, 0])
        apply_moves(board, [LEFT, RIGHT])
        self.assertEqual(board.snakes[0].health, 0)
        self.assertGreater(board.snakes[1].health, 0)

    def test_body_collision(self):
        board = new_board(7, 7)
        add_start_snake(board, 0)
        add_start_snake(board, 8)
        apply_moves(board, [UP, UP])
        before = copy_board(board)
        changed = apply_moves(board, [RIGHT, UP])
        self.assertEqual(board.snakes[0].health, 0)
        self.assertGreater(board.snakes[1].health, 0)
        revert_moves(board, changed)
        self.assertEqual(board, before)

    def test_self_collision_restores_shape_before_death(self):
        board = new_board(7, 7)
        add_start_snake(board, 1)
        board.snakes[0].queued = 10
        add_start_snake(board, 6)
        apply_moves(board, [UP, UP])
        apply_moves(board, [LEFT, UP])
        apply_moves(board, [DOWN, UP])
        before = copy_board(board)
        self.assertEqual(board.snakes[0].positions, [0, 7, 8, 1])

        changed = apply_moves(board, [RIGHT, UP])
        snake = board.snakes[0]
        self.assertEqual(snake.health, 0)
        self.assertTrue(changed.hit_inaccessible[0])
        self.assertEqual(snake.positions, before.snakes[0].positions)
        self.assertEqual(snake.body, before.snakes[0].body)
        self.assertEqual(snake.queued, before.snakes[0].queued)
        revert_moves(board, changed)
        self.assertEqual(board, before)

    def test_self_collision_without_growth(self):
        board = new_board(7, 7)
        add_snake(board, [cell(1, 1), cell(1, 0), cell(0, 0), cell(0, 1), cell(0, 2)])
        before = copy_board(board)
        changed = apply_moves(board, [DOWN])
        self.assertEqual(board.snakes[0].health, 0)
        self.assertEqual(board.snakes[0].positions, before.snakes[0].positions)
        revert_moves(board, changed)
        self.assertEqual(board, before)

    def test_moving_into_vacating_tail_is_safe(self):
        board = new_board(7, 7)
        add_snake(board, [cell(1, 1), cell(1, 0), cell(0, 0), cell(0, 1)])
        before = copy_board(board)
        changed = apply_moves(board, [LEFT])
        self.assertGreater(board.snakes[0].health, 0)
        self.assertEqual(board.snakes[0].positions, [cell(0, 1), cell(1, 1), cell(1, 0), cell(0, 0)])
        assert_bitmaps_consistent(self, board)
        revert_moves(board, changed)
        self.assertEqual(board, before)

    def test_eating_food_and_revert(self):
        board = new_board(7, 7)
        add_snake(board, [cell(1, 0), cell(0, 0)], health=40)
        place_food(board, cell(2, 0))
        before = copy_board(board)
        changed = apply_moves(board, [RIGHT])
        snake = board.snakes[0]
        self.assertEqual(snake.health, 100)
        self.assertEqual(snake.queued, 1)
        self.assertFalse(board.food[cell(2, 0)])
        self.assertEqual(changed.eaten_food, (True,))
        revert_moves(board, changed)
        self.assertEqual(board, before)

        # The growth is spent on the next move: the tail stays put.
        apply_moves(board, [RIGHT])
        changed = apply_moves(board, [UP])
        self.assertEqual(board.snakes[0].positions, [cell(2, 1), cell(2, 0), cell(1, 0)])
        self.assertEqual(board.snakes[0].queued, 0)
        snapshot = copy_board(board)
        revert_moves(board, changed)
        self.assertEqual(board.snakes[0].queued, 1)
        changed = apply_moves(board, [UP])
        self.assertEqual(board, snapshot)

    def test_eating_while_growth_pending(self):
        board = new_board(7, 7)
        add_snake(board, [cell(3, 3)], health=10, queued=2)
        place_food(board, cell(3, 4))
        before = copy_board(board)
        changed = apply_moves(board, [UP])
        self.assertEqual(board.snakes[0].queued, 2)
        self.assertEqual(board.snakes[0].positions, [cell(3, 4), cell(3, 3)])
        revert_moves(board, changed)
        self.assertEqual(board, before)

    def test_starvation_and_revert(self):
        board = new_board(7, 7)
        add_snake(board, [cell(3, 3), cell(3, 2)], health=1)
        add_snake(board, [cell(6, 6)])
        before = copy_board(board)
        changed = apply_moves(board, [UP, LEFT])
        self.assertEqual(board.snakes[0].health, 0)
        self.assertFalse(changed.hit_inaccessible[0])
        revert_moves(board, changed)
        self.assertEqual(board, before)

    def test_food_contested_head_on_goes_to_survivor_in_any_order(self):
        short = ([1], RIGHT)
        long = ([3, 4, 5], LEFT)
        for order in ((short, long), (long, short)):
            with self.subTest(long_first=order[0] is long):
                board = new_board(7, 7)
                for positions, _ in order:
                    add_snake(board, positions, health=50)
                place_food(board, 2)
                before = copy_board(board)
                changed = apply_moves(board, [direction for _, direction in order])

                survivor = next(s for s in board.snakes if s.length == 3)
                loser = next(s for s in board.snakes if s.length == 1)
                self.assertEqual((survivor.health, survivor.queued, board.food[2]), (100, 1, False))
                self.assertEqual(loser.health, 0)
                self.assertEqual(loser.queued, 0)
                self.assertEqual(sum(changed.eaten_food), 1)
                revert_moves(board, changed)
                self.assertEqual(board, before)

    def test_food_stays_when_head_on_eliminates_both(self):
        board = new_board(7, 7)
        add_snake(board, [1], health=50)
        add_snake(board, [3], health=50)
        place_food(board, 2)
        before = copy_board(board)
        changed = apply_moves(board, [RIGHT, LEFT])
        self.assertEqual([s.health for s in board.snakes], [0, 0])
        self.assertTrue(board.food[2])
        self.assertEqual(changed.eaten_food, (False, False))
        revert_moves(board, changed)
        self.assertEqual(board, before)

    def test_food_saves_a_starving_snake(self):
        board = new_board(7, 7)
        add_snake(board, [cell(3, 3), cell(3, 2)], health=1)
        place_food(board, cell(3, 4))
        changed = apply_moves(board, [UP])
        self.assertEqual(board.snakes[0].health, 100)
        self.assertEqual(board.snakes[0].queued, 1)
        self.assertEqual(changed.eaten_food, (True,))

    def test_eliminated_snakes_are_frozen(self):
        board = new_board(7, 7)
        add_snake(board, [cell(3, 3)])
        add_snake(board, [cell(5, 5), cell(5, 4)], health=0)
        before = copy_board(board)
        changed = apply_moves(board, [UP, LEFT])
        self.assertEqual(board.snakes[1], before.snakes[1])
        revert_moves(board, changed)
        self.assertEqual(board, before)

    def test_three_way_collision_is_order_independent(self):
        # A and B meet head-on at equal length while C runs into B's neck.
        snakes = {
            "a": ([cell(2, 4), cell(1, 4)], RIGHT),
            "b": ([cell(3, 3), cell(3, 2)], UP),
            "c": ([cell(4, 3), cell(5, 3)], LEFT),
        }
        for order in itertools.permutations("abc"):
            with self.subTest(order=order):
                board = new_board(7, 7)
                for name in order:
                    add_snake(board, snakes[name][0])
                before = copy_board(board)
                changed = apply_moves(board, [snakes[name][1] for name in order])
                self.assertEqual([s.health for s in board.snakes], [0, 0, 0])
                revert_moves(board, changed)
                self.assertEqual(board, before)

    def test_random_apply_revert_is_exact(self):
        rng = random.Random(7)
        checked = 0
        for _ in range(40):
            board = random_board(rng, snakes=rng.randint(1, 4), food=rng.randint(0, 6))
            for _ in range(rng.randint(1, 25)):
                directions = [rng.choice(list(Direction)) for _ in board.snakes]
                before = copy_board(board)
                changed = apply_moves(board, directions)
                assert_bitmaps_consistent(self, board)
                revert_moves(board, changed)
                self.assertEqual(board, before)
                checked += 1
                # Advance with mostly legal moves so positions get interesting.
                advance = []
                for idx, snake in enumerate(board.snakes):
                    options = legal_moves(board, idx) if snake.health > 0 else []
                    advance.append(rng.choice(options) if options else UP)
                apply_moves(board, advance)
                if all(snake.health == 0 for snake in board.snakes):
                    break
        self.assertGreater(checked, 40)

    def test_nested_apply_revert_unwinds_in_order(self):
        rng = random.Random(3)
        board = random_board(rng, snakes=3, food=5)
        before = copy_board(board)
        stack = []
        for _ in range(12):
            directions = []
            for idx, snake in enumerate(board.snakes):
                options = legal_moves(board, idx) if snake.health > 0 else []
                directions.append(rng.choice(options) if options else UP)
            stack.append(apply_moves(board, directions))
        while stack:
            revert_moves(board, stack.pop())
        self.assertEqual(board, before)


class TestLegalMoves(unittest.TestCase):
    def test_corner_single_segment(self):
        board = new_board(7, 7)
        add_snake(board, [0])
        self.assertEqual(legal_moves(board, 0), [UP, RIGHT])
        board = new_board(7, 7)
        add_snake(board, [48])
        self.assertEqual(legal_moves(board, 0), [DOWN, LEFT])

    def test_single_segment_in_open_space_has_four_moves(self):
        board = new_board(7, 7)
        add_snake(board, [cell(3, 3)])
        self.assertEqual(legal_moves(board, 0), [UP, RIGHT, DOWN, LEFT])

    def test_excludes_own_neck(self):
        board = new_board(7, 7)
        add_snake(board, [cell(2, 1), cell(1, 1), cell(1, 0)])
        self.assertEqual(legal_moves(board, 0), [UP, RIGHT, DOWN])

    def test_tail_is_allowed_only_without_pending_growth(self):
        board = new_board(7, 7)
        add_snake(board, [cell(1, 1), cell(1, 0), cell(0, 0), cell(0, 1)])
        self.assertEqual(legal_moves(board, 0), [UP, RIGHT, LEFT])
        board.snakes[0].queued = 1
        self.assertEqual(legal_moves(board, 0), [UP, RIGHT])

    def test_ignores_other_snakes(self):
        board = new_board(7, 7)
        add_snake(board, [cell(3, 3)])
        add_snake(board, [cell(3, 4), cell(4, 4), cell(4, 3), cell(4, 2)])
        self.assertEqual(legal_moves(board, 0), [UP, RIGHT, DOWN, LEFT])

    def test_legal_moves_never_self_eliminate(self):
        rng = random.Random(19)
        for _ in range(60):
            board = random_board(rng, snakes=1, food=4)
            for _ in range(rng.randint(0, 30)):
                options = legal_moves(board, 0)
                if not options:
                    break
                for direction in options:
                    changed = apply_moves(board, [direction])
                    self.assertFalse(changed.hit_inaccessible[0])
                    revert_moves(board, changed)
                apply_moves(board, [rng.choice(options)])
                if board.snakes[0].health == 0:
                    break


if __name__ == "__main__":
    unittest.main()
