"""
N-Tuple Network for 2048

A linear value function built from lookup tables. Each n-tuple (pattern)
is a fixed set of board cells; the ranks found in those cells form a
feature code that indexes the pattern's own weight table. The value of a
board is the sum of the weights addressed by every pattern.

References:
  Szubert and Jaskowski, "Temporal difference learning of n-tuple networks
  for the game 2048", IEEE CIG 2014.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Tuple

import numpy as np

from game_2048 import Board


logger = logging.getLogger(__name__)

DEFAULT_ALPHABET_SIZE = 31

DEFAULT_PATTERNS: Tuple[Tuple[int, ...], ...] = (
    # five-cell tuples
    (0, 1, 2, 3, 4),
    (5, 6, 7, 10, 11),
    (8, 9, 12, 13, 14),
    (0, 1, 2, 3, 7),
    (4, 5, 6, 8, 9),
    (10, 11, 13, 14, 15),
    (1, 2, 3, 6, 7),
    (4, 5, 8, 9, 10),
    (11, 12, 13, 14, 15),
    (0, 1, 2, 4, 5),
    (6, 7, 9, 10, 11),
    (8, 12, 13, 14, 15),
    (0, 4, 8, 12, 13),
    (1, 2, 5, 6, 9),
    (7, 10, 11, 14, 15),
    (0, 1, 4, 8, 12),
    (5, 9, 10, 13, 14),
    (2, 3, 6, 7, 11),
    (2, 3, 7, 11, 15),
    (6, 9, 10, 13, 14),
    (0, 1, 4, 5, 8),
    (3, 7, 11, 14, 15),
    (1, 2, 5, 6, 10),
    (4, 8, 9, 12, 13),
    # rows and columns
    (0, 1, 2, 3),
    (4, 5, 6, 7),
    (8, 9, 10, 11),
    (12, 13, 14, 15),
    (0, 4, 8, 12),
    (1, 5, 9, 13),
    (2, 6, 10, 14),
    (3, 7, 11, 15),
)

PATTERN_PRESETS: Dict[str, Tuple[Tuple[int, ...], ...]] = {
    "default": DEFAULT_PATTERNS,
    "rows": DEFAULT_PATTERNS[24:],
}

# Weight file header
MAGIC = b"NTW1"
FORMAT_VERSION = 1


class WeightFileError(ValueError):
    """A weight file is malformed or was written for another configuration."""


@dataclass(frozen=True)
class NTupleConfig:
    """Alphabet size and ordered pattern definitions of a network."""
    alphabet_size: int = DEFAULT_ALPHABET_SIZE
    patterns: Tuple[Tuple[int, ...], ...] = DEFAULT_PATTERNS

    def __post_init__(self):
        if self.alphabet_size < 2:
            raise ValueError(f"alphabet_size must be at least 2, got {self.alphabet_size}")
        patterns = tuple(tuple(int(p) for p in pattern) for pattern in self.patterns)
        if not patterns:
            raise ValueError("at least one pattern is required")
        for pattern in patterns:
            if len(pattern) not in (4, 5):
                raise ValueError(f"pattern {pattern} must have 4 or 5 cells")
            if len(set(pattern)) != len(pattern):
                raise ValueError(f"pattern {pattern} repeats a cell")
            if any(p < 0 or p > 15 for p in pattern):
                raise ValueError(f"pattern {pattern} has a cell outside 0..15")
        object.__setattr__(self, "patterns", patterns)

    @classmethod
    def preset(cls, name: str, alphabet_size: int = DEFAULT_ALPHABET_SIZE) -> "NTupleConfig":
        if name not in PATTERN_PRESETS:
            raise ValueError(f"Unknown pattern preset: {name} (choose from {sorted(PATTERN_PRESETS)})")
        return cls(alphabet_size, PATTERN_PRESETS[name])

    def table_sizes(self) -> List[int]:
        return [self.alphabet_size ** len(pattern) for pattern in self.patterns]


class WeightStore:
    """
    Weight tables index-aligned with the configured patterns.

    Tables are dense float32 arrays of R^k entries, zero until learned.
    """

    def __init__(self, config: NTupleConfig):
        self.config = config
        self.tables: List[np.ndarray] = [np.zeros(size, dtype=np.float32) for size in config.table_sizes()]

    @classmethod
    def from_file(cls, config: NTupleConfig, path: str) -> "WeightStore":
        store = cls(config)
        store.load(path)
        return store

    def __len__(self) -> int:
        return len(self.tables)

    def __getitem__(self, index: int) -> np.ndarray:
        return self.tables[index]

    def _header(self) -> bytes:
        fields = [FORMAT_VERSION, self.config.alphabet_size, len(self.tables)]
        for pattern in self.config.patterns:
            fields.append(len(pattern))
            fields.extend(pattern)
        return MAGIC + np.array(fields, dtype="<u4").tobytes()

    def save(self, path: str) -> None:
        """Write the header followed by every table's raw weights."""
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(path, "wb") as f:
            f.write(self._header())
            for table in self.tables:
                f.write(table.astype("<f4").tobytes())

        logger.info(f"Weights saved to {path} ({len(self.tables)} tables)")

    def load(self, path: str) -> None:
        """
        Replace all tables with the ones stored at path.

        Files without the header (a bare uint32 table count followed by the
        tables) are read with sizes taken from this store's configuration.
        Nothing is replaced unless the whole file validates.

        Raises:
            OSError: The file cannot be read
            WeightFileError: The file does not match this configuration
        """
        with open(path, "rb") as f:
            data = f.read()

        if data[:4] == MAGIC:
            offset = self._check_header(data, path)
        else:
            offset = self._check_count(data, path)

        sizes = self.config.table_sizes()
        expected = offset + 4 * sum(sizes)
        if len(data) != expected:
            raise WeightFileError(f"{path}: expected {expected} bytes, found {len(data)}")

        tables = []
        for size in sizes:
            table = np.frombuffer(data, dtype="<f4", count=size, offset=offset)
            tables.append(table.astype(np.float32))
            offset += 4 * size

        self.tables = tables
        logger.info(f"Weights loaded from {path} ({len(tables)} tables)")

    def _check_count(self, data: bytes, path: str) -> int:
        if len(data) < 4:
            raise WeightFileError(f"{path}: missing table count")
        count = int(np.frombuffer(data, dtype="<u4", count=1)[0])
        if count != len(self.tables):
            raise WeightFileError(f"{path}: file has {count} tables, configuration has {len(self.tables)}")
        return 4

    def _check_header(self, data: bytes, path: str) -> int:
        header = self._header()
        if len(data) < 16:
            raise WeightFileError(f"{path}: truncated header")

        version, alphabet_size, count = (int(v) for v in np.frombuffer(data, dtype="<u4", count=3, offset=4))
        if version != FORMAT_VERSION:
            raise WeightFileError(f"{path}: unsupported format version {version}")
        if alphabet_size != self.config.alphabet_size:
            raise WeightFileError(
                f"{path}: alphabet size {alphabet_size} does not match configured {self.config.alphabet_size}")
        if count != len(self.tables):
            raise WeightFileError(f"{path}: file has {count} tables, configuration has {len(self.tables)}")
        if data[:len(header)] != header:
            raise WeightFileError(f"{path}: pattern definitions do not match the configuration")
        return len(header)


class NTupleNetwork:
    """
    Feature extraction and value estimation over a WeightStore.

    The feature code of a k-cell pattern is
        sum(rank(cell_i) * R^(k-1-i))
    so every rank assignment below R maps to a distinct index in [0, R^k).
    """

    def __init__(self, weights: WeightStore):
        self.weights = weights
        self.config = weights.config
        self.alphabet_size = self.config.alphabet_size

        self._positions = [np.array(pattern, dtype=np.intp) for pattern in self.config.patterns]
        self._place_values = [
            self.alphabet_size ** np.arange(len(pattern) - 1, -1, -1, dtype=np.int64)
            for pattern in self.config.patterns
        ]

    def _checked_cells(self, board: Board) -> np.ndarray:
        cells = board.cells.astype(np.int64)
        if cells.min() < 0 or cells.max() >= self.alphabet_size:
            raise ValueError(
                f"Board ranks must lie in [0, {self.alphabet_size}), got {cells.min()}..{cells.max()}")
        return cells

    def extract(self, board: Board, index: int) -> int:
        """Feature code of pattern `index` for this board."""
        cells = self._checked_cells(board)
        return int(cells[self._positions[index]] @ self._place_values[index])

    def features(self, board: Board) -> List[int]:
        """Feature codes of every pattern, in pattern order."""
        cells = self._checked_cells(board)
        return [int(cells[pos] @ pv) for pos, pv in zip(self._positions, self._place_values)]

    def estimate(self, board: Board) -> float:
        """Sum of the weights addressed by the board's feature codes."""
        value = np.float32(0.0)
        for table, code in zip(self.weights.tables, self.features(board)):
            value += table[code]
        return float(value)

    def adjust(self, board: Board, delta: float) -> None:
        """Add delta to every weight addressed by the board."""
        for table, code in zip(self.weights.tables, self.features(board)):
            table[code] += np.float32(delta)
