"""
Agents for 2048: the tile-placing environment, baseline players and the
n-tuple TD learning player.

Every agent exposes the same episode contract:
    open_episode()            -- called before the first move of a game
    take_action(board)        -- returns an Action (falsy when it has none)
    close_episode()           -- called once the game is over
    seed(seed)                -- restarts the agent's random sequence
    close()                   -- called at shutdown
The role is chosen once from an AgentConfig by create_agent().
"""

import logging
import math
import shlex
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import numpy as np

from game_2048 import Action, Board, NO_EFFECT, OPCODES, SPAWN_DISTRIBUTION
from ntuple_network import DEFAULT_ALPHABET_SIZE, NTupleConfig, NTupleNetwork, WeightStore


logger = logging.getLogger(__name__)


class AgentRole(Enum):
    ENVIRONMENT = "environment"
    PLAYER = "player"
    TD_PLAYER = "td_player"


class PlayStyle(Enum):
    RANDOM = "random"
    GREEDY1 = "greedy1"
    GREEDY2 = "greedy2"


@dataclass
class AgentConfig:
    """
    Settings of one agent, validated once at construction.

    Attributes:
        name: Display name
        role: Which agent to build
        seed: Seed for the agent's random generator (None = nondeterministic)
        alpha: Learning rate of the TD player; 0 disables learning
        n_step: Horizon of the n-step TD target
        init: Pattern preset the weight tables are built for
        alphabet_size: Number of distinct ranks the tables can index
        load: Weight file read at construction
        save: Weight file written by close()
        style: Move selection of the baseline player
    """
    name: str = "unknown"
    role: AgentRole = AgentRole.PLAYER
    seed: Optional[int] = None
    alpha: float = 0.0
    n_step: int = 1
    init: str = "default"
    alphabet_size: int = DEFAULT_ALPHABET_SIZE
    load: Optional[str] = None
    save: Optional[str] = None
    style: PlayStyle = PlayStyle.RANDOM

    def __post_init__(self):
        self.role = AgentRole(self.role)
        self.style = PlayStyle(self.style)
        if self.alpha < 0:
            raise ValueError(f"alpha must be non-negative, got {self.alpha}")
        if self.n_step < 1:
            raise ValueError(f"n_step must be at least 1, got {self.n_step}")

    # key=value names understood by parse(), mapped to attribute names
    _KEYS = {
        "name": "name", "role": "role", "seed": "seed", "alpha": "alpha", "n": "n_step",
        "init": "init", "alphabet": "alphabet_size", "load": "load", "save": "save", "style": "style",
    }

    @classmethod
    def parse(cls, args: str = "", **defaults) -> "AgentConfig":
        """
        Build a config from a "key=value ..." string such as
        "alpha=0.0025 n=2 load=weights.bin save=weights.bin".

        A bare style name ("random", "greedy1", "greedy2") selects the
        baseline style. Keyword defaults are overridden by the string.
        """
        values = dict(defaults)
        for token in shlex.split(args):
            key, sep, value = token.partition("=")
            if not sep:
                if key in {style.value for style in PlayStyle}:
                    values["style"] = PlayStyle(key)
                    continue
                raise ValueError(f"Expected key=value, got {token!r}")
            if key not in cls._KEYS:
                raise ValueError(f"Unknown agent option: {key}")
            attr = cls._KEYS[key]
            if attr in ("seed", "n_step", "alphabet_size"):
                values[attr] = int(value)
            elif attr == "alpha":
                values[attr] = float(value)
            else:
                values[attr] = value
        return cls(**values)


class Agent:
    """Common episode contract; the default agent never acts."""

    def __init__(self, config: AgentConfig):
        self.config = config
        self.name = config.name
        self.role = config.role

    def open_episode(self) -> None:
        pass

    def close_episode(self) -> None:
        pass

    def seed(self, seed: Optional[int]) -> None:
        pass

    def take_action(self, board: Board) -> Action:
        return Action.none()

    def close(self) -> None:
        pass


class RandomEnvironment(Agent):
    """
    Adds a new random tile to an empty cell:
    rank 1 (a "2") with probability 0.9, rank 2 (a "4") with probability 0.1.
    """

    def __init__(self, config: AgentConfig):
        super().__init__(config)
        self.seed(config.seed)

    def seed(self, seed: Optional[int]) -> None:
        """Restart the tile sequence from seed."""
        self._rng = np.random.RandomState(seed)
        self._space = np.arange(16)

    def take_action(self, board: Board) -> Action:
        self._rng.shuffle(self._space)
        for pos in self._space:
            if board[pos] != 0:
                continue
            rank = 1 if self._rng.random_sample() < SPAWN_DISTRIBUTION[0][1] else 2
            return Action.place(int(pos), rank)
        return Action.none()


class BaselinePlayer(Agent):
    """
    Reward-only players used as baselines for the TD player.

    - random: first legal slide after shuffling the move order
    - greedy1: highest immediate reward
    - greedy2: highest reward of two consecutive slides
    """

    def __init__(self, config: AgentConfig):
        super().__init__(config)
        self._rng = np.random.RandomState(config.seed)
        self.style = config.style

    def take_action(self, board: Board) -> Action:
        if self.style == PlayStyle.RANDOM:
            op = self._first_legal(board)
        elif self.style == PlayStyle.GREEDY1:
            op = self._greedy1(board)
        else:
            op = self._greedy2(board)
        return Action.none() if op is None else Action.slide(op)

    def _first_legal(self, board: Board) -> Optional[int]:
        opcodes = list(OPCODES)
        self._rng.shuffle(opcodes)
        for op in opcodes:
            if board.copy().slide(op) != NO_EFFECT:
                return op
        return None

    @staticmethod
    def _greedy1(board: Board) -> Optional[int]:
        best_op, best_reward = None, NO_EFFECT
        for op in OPCODES:
            reward = board.copy().slide(op)
            if reward == NO_EFFECT:
                continue
            if reward > best_reward:
                best_op, best_reward = op, reward
        return best_op

    @staticmethod
    def _greedy2(board: Board) -> Optional[int]:
        best_op, best_reward = None, NO_EFFECT
        for op1 in OPCODES:
            after1 = board.copy()
            reward1 = after1.slide(op1)
            if reward1 == NO_EFFECT:
                continue
            for op2 in OPCODES:
                reward2 = after1.copy().slide(op2)
                if reward2 == NO_EFFECT:
                    continue
                if reward1 + reward2 > best_reward:
                    best_op, best_reward = op1, reward1 + reward2
        # a slid line ends in an empty cell, so every legal op1 has a legal op2
        return best_op


@dataclass
class HistoryStep:
    """Reward of a chosen move and the afterstate it produced."""
    reward: int
    after: Board


class TDPlayer(Agent):
    """
    N-tuple network player trained with n-step TD learning.

    Moves are chosen by a two-ply expectimax over afterstates: each legal
    slide scores its reward plus the expected best continuation over every
    tile the environment could place next. The chosen afterstates are
    recorded and learned from, last to first, when the episode closes.
    """

    def __init__(self, config: AgentConfig):
        super().__init__(config)
        self.alpha = config.alpha
        self.n_step = config.n_step

        weights = WeightStore(NTupleConfig.preset(config.init, config.alphabet_size))
        if config.load:
            weights.load(config.load)
        self.network = NTupleNetwork(weights)
        self.history: List[HistoryStep] = []

        logger.info(f"{self.name}: {len(weights)} tuples, alpha={self.alpha}, n_step={self.n_step}")

    def open_episode(self) -> None:
        self.history.clear()

    def best_score(self, state: Board) -> float:
        """Best reward + value over the slides of a board; -inf when none is legal."""
        best = -math.inf
        for op in OPCODES:
            after = state.copy()
            reward = after.slide(op)
            if reward == NO_EFFECT:
                continue
            score = reward + self.network.estimate(after)
            if score > best:
                best = score
        return best

    def expect_value(self, after: Board) -> float:
        """
        Expected best score after the environment places a tile.

        Each empty cell is equally likely; a dead continuation counts as
        -inf so the move leading to it loses every finite comparison.
        """
        empty = after.empty_cells()
        if not empty:
            return 0.0

        value = 0.0
        for pos in empty:
            for rank, prob in SPAWN_DISTRIBUTION:
                state = after.copy()
                state.place(pos, rank)
                value += prob * self.best_score(state) / len(empty)
        return value

    def take_action(self, board: Board) -> Action:
        best_op = None
        best_score = -math.inf
        best_step = None

        for op in OPCODES:
            after = board.copy()
            reward = after.slide(op)
            if reward == NO_EFFECT:
                continue

            score = reward + self.expect_value(after)
            if best_op is None or score > best_score:
                best_op, best_score = op, score
                best_step = HistoryStep(reward, after)

        if best_op is None:
            return Action.none()

        self.history.append(best_step)
        return Action.slide(best_op)

    def adjust(self, after: Board, target: float) -> None:
        """Move the estimate of an afterstate toward target."""
        error = target - self.network.estimate(after)
        self.network.adjust(after, self.alpha * error)

    def close_episode(self) -> None:
        """
        n-step TD update, walking the episode backward.

        The final afterstate learns toward 0. Earlier ones learn toward the
        next n rewards, plus the current estimate of the afterstate n steps
        ahead when the episode is long enough. Weights change in place, so a
        bootstrap estimate already reflects the updates made later in the
        episode.
        """
        if not self.history or self.alpha == 0:
            return

        size = len(self.history)
        self.adjust(self.history[-1].after, 0.0)
        for i in range(size - 2, -1, -1):
            target = float(sum(step.reward for step in self.history[i + 1:i + 1 + self.n_step]))
            if i + self.n_step < size:
                target += self.network.estimate(self.history[i + self.n_step].after)
            self.adjust(self.history[i].after, target)

    def close(self) -> None:
        if self.config.save:
            self.network.weights.save(self.config.save)


def create_agent(config: AgentConfig) -> Agent:
    """Build the agent for config.role."""
    if config.role == AgentRole.ENVIRONMENT:
        return RandomEnvironment(config)
    if config.role == AgentRole.TD_PLAYER:
        return TDPlayer(config)
    return BaselinePlayer(config)
