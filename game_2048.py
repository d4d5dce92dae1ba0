"""
2048 Board and Gymnasium Environment
This module provides the 4x4 board used by the n-tuple agents (cell reads,
in-place slides, value copies) and an episode environment that follows the
Gymnasium interface.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Tuple, Dict, Any, List

import numpy as np
import gymnasium as gym
from gymnasium import spaces


# Reward returned by Board.slide when no tile moves
NO_EFFECT = -1

# Slide opcodes, enumerated in this order everywhere a search breaks ties
UP, DOWN, LEFT, RIGHT = 0, 1, 2, 3
OPCODES = (UP, DOWN, LEFT, RIGHT)
ACTION_NAMES = ["UP", "DOWN", "LEFT", "RIGHT"]

# (rank, probability) of a newly placed tile: rank 1 is a "2", rank 2 a "4"
SPAWN_DISTRIBUTION = ((1, 0.9), (2, 0.1))


class Board:
    """
    A 4x4 grid of tile ranks.

    Cells hold 0 for empty, otherwise log2 of the tile value. Positions
    0..15 are row-major: position p is row p // 4, column p % 4.
    """

    def __init__(self, cells=None):
        if cells is None:
            self.grid = np.zeros((4, 4), dtype=np.int32)
        else:
            self.grid = np.array(cells, dtype=np.int32).reshape(4, 4)

    def copy(self) -> "Board":
        """Return an independent copy of this board."""
        return Board(self.grid.copy())

    @property
    def cells(self) -> np.ndarray:
        """Flat (16,) view of the grid."""
        return self.grid.reshape(16)

    def cell_at(self, pos: int) -> int:
        return int(self.grid[pos // 4, pos % 4])

    __getitem__ = cell_at

    def place(self, pos: int, rank: int) -> None:
        self.grid[pos // 4, pos % 4] = rank

    def empty_cells(self) -> List[int]:
        return [int(p) for p in np.flatnonzero(self.cells == 0)]

    def max_rank(self) -> int:
        return int(self.grid.max())

    def slide(self, op: int) -> int:
        """
        Slide and merge tiles in place.

        Args:
            op: 0=up, 1=down, 2=left, 3=right

        Returns:
            Sum of the merged tile values, or NO_EFFECT if nothing moved
            (the board is left untouched in that case)
        """
        if op == LEFT:
            grid, reward = self._move_left(self.grid.copy())
        elif op == RIGHT:
            grid, reward = self._move_left(self.grid[:, ::-1].copy())
            grid = grid[:, ::-1]
        elif op == UP:
            grid, reward = self._move_left(self.grid.T.copy())
            grid = grid.T
        elif op == DOWN:
            grid, reward = self._move_left(self.grid.T[:, ::-1].copy())
            grid = grid[:, ::-1].T
        else:
            raise ValueError(f"Invalid slide: {op}")

        if np.array_equal(grid, self.grid):
            return NO_EFFECT

        self.grid = np.ascontiguousarray(grid)
        return reward

    def _move_left(self, grid: np.ndarray) -> Tuple[np.ndarray, int]:
        """Move and merge every row to the left."""
        reward = 0
        for i in range(4):
            row, row_reward = self._merge_line(grid[i, :])
            grid[i, :] = row
            reward += row_reward
        return grid, reward

    @staticmethod
    def _merge_line(line: np.ndarray) -> Tuple[np.ndarray, int]:
        """
        Merge a line (row or column) toward the beginning.

        Args:
            line: 1D array of tile ranks

        Returns:
            Tuple of (merged_line, reward)
        """
        reward = 0
        tiles = [int(x) for x in line if x != 0]

        merged = []
        i = 0
        while i < len(tiles):
            if i + 1 < len(tiles) and tiles[i] == tiles[i + 1]:
                merged_rank = tiles[i] + 1
                merged.append(merged_rank)
                reward += 2 ** merged_rank
                i += 2
            else:
                merged.append(tiles[i])
                i += 1

        padded_line = np.zeros(4, dtype=np.int32)
        padded_line[:len(merged)] = merged
        return padded_line, reward

    def has_legal_move(self) -> bool:
        """Check if any slide would change the board."""
        return any(self.copy().slide(op) != NO_EFFECT for op in OPCODES)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Board):
            return NotImplemented
        return bool(np.array_equal(self.grid, other.grid))

    def __repr__(self) -> str:
        return f"Board({self.cells.tolist()})"

    def __str__(self) -> str:
        lines = ["-" * 25]
        for i in range(4):
            row_str = ""
            for j in range(4):
                rank = self.grid[i, j]
                tile_value = "." if rank == 0 else str(2 ** rank)
                row_str += f"{tile_value:>6}"
            lines.append(row_str)
        lines.append("-" * 25)
        return "\n".join(lines)


class ActionKind(IntEnum):
    NONE = 0
    SLIDE = 1
    PLACE = 2


@dataclass(frozen=True)
class Action:
    """A move by either side: a player slide or an environment tile placement."""
    kind: ActionKind = ActionKind.NONE
    op: Optional[int] = None     # For slide
    pos: Optional[int] = None    # For place
    rank: Optional[int] = None   # For place

    @classmethod
    def none(cls) -> "Action":
        return cls()

    @classmethod
    def slide(cls, op: int) -> "Action":
        return cls(ActionKind.SLIDE, op=op)

    @classmethod
    def place(cls, pos: int, rank: int) -> "Action":
        return cls(ActionKind.PLACE, pos=pos, rank=rank)

    def __bool__(self) -> bool:
        return self.kind != ActionKind.NONE

    def apply(self, board: Board) -> int:
        """Apply to the board in place and return the reward."""
        if self.kind == ActionKind.SLIDE:
            return board.slide(self.op)
        if self.kind == ActionKind.PLACE:
            if board[self.pos] != 0:
                return NO_EFFECT
            board.place(self.pos, self.rank)
            return 0
        return NO_EFFECT

    def __str__(self) -> str:
        if self.kind == ActionKind.SLIDE:
            return f"#{ACTION_NAMES[self.op]}"
        if self.kind == ActionKind.PLACE:
            return f"{self.pos}+{2 ** self.rank}"
        return "(none)"


class Game2048(gym.Env):
    """
    2048 Game Environment compatible with Gymnasium API.

    The environment simulates the 2048 game where:
    - Actions: 0=up, 1=down, 2=left, 3=right
    - Observation: 4x4 grid of tile ranks
    - Reward: Sum of merged tiles in each step
    - Episode termination: When no more moves are possible

    New tiles are placed by an environment agent (anything with
    ``take_action(board) -> Action`` and ``seed(seed)`` methods), so the
    same spawning rule is shared with the search that reasons about it.
    """

    metadata = {"render_modes": ["human"], "render_fps": 4}

    def __init__(self, environment, render_mode: Optional[str] = None):
        """
        Initialize the 2048 game environment.

        Args:
            environment: Agent that places new tiles
            render_mode: Optional render mode ('human' or None)
        """
        super().__init__()

        self.environment = environment
        self.render_mode = render_mode

        self.board = Board()
        self.score: int = 0
        self.moves_made: int = 0

        self.action_space = spaces.Discrete(4)
        self.observation_space = spaces.Box(low=0, high=31, shape=(4, 4), dtype=np.int32)

    def _spawn_tile(self) -> bool:
        """Let the environment agent place a tile; False if it could not."""
        action = self.environment.take_action(self.board)
        return action.apply(self.board) != NO_EFFECT

    def _info(self, grid_changed: bool = False, game_over: bool = False) -> Dict[str, Any]:
        return {
            "score": self.score,
            "moves": self.moves_made,
            "grid_changed": grid_changed,
            "game_over": game_over,
        }

    def reset(self, seed: Optional[int] = None, options: Optional[Dict] = None) -> Tuple[np.ndarray, Dict[str, Any]]:
        """
        Reset the environment to a board with two tiles.

        Args:
            seed: Re-seeds the environment agent for reproducibility
            options: Optional configuration dictionary

        Returns:
            Tuple of (observation, info)
        """
        super().reset(seed=seed)
        if seed is not None:
            self.environment.seed(seed)

        self.board = Board()
        self.score = 0
        self.moves_made = 0

        self._spawn_tile()
        self._spawn_tile()

        return self.board.grid.copy(), self._info()

    def step(self, action: int) -> Tuple[np.ndarray, float, bool, bool, Dict[str, Any]]:
        """
        Execute one step of the environment.

        Args:
            action: 0=up, 1=down, 2=left, 3=right

        Returns:
            observation, reward, terminated, truncated, info
        """
        if not isinstance(action, (int, np.integer)):
            raise ValueError(f"Invalid action type: {type(action)}")

        if action < 0 or action >= self.action_space.n:
            raise ValueError(f"Invalid action: {action}")

        reward = self.board.slide(int(action))
        grid_changed = reward != NO_EFFECT

        if grid_changed:
            self.score += reward
            self.moves_made += 1
            self._spawn_tile()
        else:
            reward = 0

        terminated = not self.board.has_legal_move()

        return self.board.grid.copy(), float(reward), terminated, False, self._info(grid_changed, terminated)

    def render(self) -> Optional[str]:
        if self.render_mode == "human":
            output = f"\nScore: {self.score} | Moves: {self.moves_made}\n{self.board}"
            print(output)
            return output
        return None

    def max_tile(self) -> int:
        """Largest tile value on the board (0 when empty)."""
        rank = self.board.max_rank()
        return 2 ** rank if rank > 0 else 0
