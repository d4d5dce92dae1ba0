"""
Tests for the 2048 board, actions and Gymnasium environment.
"""

import sys
import os
import numpy as np

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from game_2048 import (
    Action, ActionKind, Board, Game2048, NO_EFFECT, UP, DOWN, LEFT, RIGHT,
)
from agents import AgentConfig, AgentRole, create_agent


def checkerboard(a=1, b=2):
    return Board([a if (r + c) % 2 == 0 else b for r in range(4) for c in range(4)])


class TestBoard:
    def test_cell_positions_are_row_major(self):
        board = Board(range(16))
        assert board.cell_at(0) == 0
        assert board.cell_at(5) == 5
        assert board[15] == 15
        assert board.grid[1, 2] == 6

    def test_slide_left_merges_pairs(self):
        board = Board([1, 1, 2, 2] + [0] * 12)
        reward = board.slide(LEFT)
        assert reward == 4 + 8
        assert board.cells[:4].tolist() == [2, 3, 0, 0]

    def test_tile_merges_once_per_move(self):
        board = Board([1, 1, 1, 1] + [0] * 12)
        assert board.slide(LEFT) == 8
        assert board.cells[:4].tolist() == [2, 2, 0, 0]

    def test_slide_right(self):
        board = Board([1, 1, 2, 0] + [0] * 12)
        assert board.slide(RIGHT) == 4
        assert board.cells[:4].tolist() == [0, 0, 2, 2]

    def test_slide_up_and_down(self):
        cells = [0] * 16
        cells[4] = 3
        cells[12] = 3
        board = Board(cells)
        up = board.copy()
        assert up.slide(UP) == 16
        assert up[0] == 4 and up[4] == 0 and up[12] == 0

        down = board.copy()
        assert down.slide(DOWN) == 16
        assert down[12] == 4 and down[0] == 0 and down[4] == 0

    def test_no_effect_leaves_board_untouched(self):
        board = Board([1, 2, 0, 0] + [0] * 12)
        before = board.copy()
        assert board.slide(LEFT) == NO_EFFECT
        assert board.slide(UP) == NO_EFFECT
        assert board == before

    def test_slide_without_merge_has_zero_reward(self):
        board = Board([0, 0, 0, 1] + [0] * 12)
        assert board.slide(LEFT) == 0
        assert board[0] == 1

    def test_invalid_slide_raises(self):
        with pytest.raises(ValueError):
            Board().slide(4)

    def test_copy_is_independent(self):
        board = Board([1, 1] + [0] * 14)
        copy = board.copy()
        copy.slide(LEFT)
        copy.place(15, 3)
        assert board.cells[:2].tolist() == [1, 1]
        assert board[15] == 0

    def test_empty_cells_and_max_rank(self):
        board = Board([0, 3] + [1] * 13 + [0])
        assert board.empty_cells() == [0, 15]
        assert board.max_rank() == 3

    def test_has_legal_move(self):
        assert not checkerboard().has_legal_move()
        assert Board([1] + [0] * 15).has_legal_move()

    def test_str_shows_tile_values(self):
        text = str(Board([1, 11] + [0] * 14))
        assert "2048" in text
        assert "." in text


class TestAction:
    def test_none_is_falsy(self):
        action = Action.none()
        assert not action
        assert action.kind == ActionKind.NONE
        assert action.apply(Board()) == NO_EFFECT

    def test_slide_applies_to_board(self):
        board = Board([1, 1] + [0] * 14)
        action = Action.slide(LEFT)
        assert action
        assert action.apply(board) == 4
        assert board[0] == 2

    def test_place_on_empty_and_occupied_cell(self):
        board = Board()
        assert Action.place(3, 2).apply(board) == 0
        assert board[3] == 2
        assert Action.place(3, 1).apply(board) == NO_EFFECT
        assert board[3] == 2

    def test_str(self):
        assert str(Action.slide(UP)) == "#UP"
        assert str(Action.place(5, 2)) == "5+4"


class TestGame2048:
    def make_env(self, seed=0):
        environment = create_agent(AgentConfig(role=AgentRole.ENVIRONMENT, seed=seed))
        return Game2048(environment)

    def test_reset_places_two_tiles(self):
        env = self.make_env()
        obs, info = env.reset()
        assert obs.shape == (4, 4)
        assert np.count_nonzero(obs) == 2
        assert set(obs[obs > 0].tolist()) <= {1, 2}
        assert info["score"] == 0
        assert info["moves"] == 0

    def test_seeded_environment_is_reproducible(self):
        first, _ = self.make_env(seed=3).reset()
        second, _ = self.make_env(seed=3).reset()
        assert np.array_equal(first, second)

    def test_reset_with_seed_repeats_the_game(self):
        env = self.make_env(seed=0)
        runs = []
        for _ in range(3):
            obs, _ = env.reset(seed=123)
            boards = [obs]
            for op in (LEFT, UP, RIGHT, DOWN):
                boards.append(env.step(op)[0])
            runs.append(boards)
        for boards in runs[1:]:
            assert all(np.array_equal(a, b) for a, b in zip(boards, runs[0]))

    def test_reset_without_seed_continues_the_sequence(self):
        env = self.make_env(seed=5)
        env.reset()
        continued, _ = env.reset()
        fresh = self.make_env(seed=5)
        fresh.reset()
        expected, _ = fresh.reset()
        assert np.array_equal(continued, expected)

    def test_step_spawns_tile_after_legal_move(self):
        env = self.make_env()
        env.reset()
        env.board = Board([1, 1] + [0] * 14)
        obs, reward, terminated, truncated, info = env.step(LEFT)
        assert reward == 4.0
        assert info["grid_changed"]
        assert info["score"] == 4
        assert info["moves"] == 1
        assert np.count_nonzero(obs) == 2
        assert not terminated
        assert not truncated

    def test_illegal_move_changes_nothing(self):
        env = self.make_env()
        env.reset()
        env.board = Board([1] + [0] * 15)
        obs, reward, _, _, info = env.step(UP)
        assert reward == 0.0
        assert not info["grid_changed"]
        assert np.count_nonzero(obs) == 1

    def test_invalid_action_raises(self):
        env = self.make_env()
        env.reset()
        with pytest.raises(ValueError):
            env.step(7)
        with pytest.raises(ValueError):
            env.step("left")

    def test_terminates_when_no_move_left(self):
        env = self.make_env()
        env.reset()
        cells = checkerboard().cells.tolist()
        cells[0], cells[1] = 1, 1
        env.board = Board(cells)
        # merging the pair frees a cell which the environment refills
        _, _, terminated, _, info = env.step(LEFT)
        assert info["grid_changed"]
        assert terminated == (not env.board.has_legal_move())

    def test_max_tile(self):
        env = self.make_env()
        env.reset()
        env.board = Board([5] + [0] * 15)
        assert env.max_tile() == 32
        env.board = Board()
        assert env.max_tile() == 0
