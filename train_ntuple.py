"""
Training script for 2048 using an n-tuple network and n-step TD learning.

A player agent plays episodes against a tile-placing environment agent.
After every episode the TD player learns from the afterstates it chose;
block summaries are logged as training progresses.

Usage:
    python train_ntuple.py --total 1000 --play "alpha=0.003125 n=1 save=weights.bin"
    python train_ntuple.py --total 100 --play "load=weights.bin"              # Evaluate
    python train_ntuple.py --total 100 --play "role=player greedy1"           # Baseline
"""

import json
import logging
import os
import sys
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
from tqdm import tqdm

from agents import Agent, AgentConfig, AgentRole, create_agent
from game_2048 import Game2048
from ntuple_network import WeightFileError


def setup_logging(log_dir: str = "logs") -> logging.Logger:
    """
    Setup logging to both console and file.

    Args:
        log_dir: Directory to store log files

    Returns:
        Configured logger
    """
    os.makedirs(log_dir, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_dir, f"training_{timestamp}.log")

    logger = logging.getLogger("train_ntuple")
    logger.setLevel(logging.INFO)

    # Remove existing handlers (in case of re-run)
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter('%(asctime)s | %(message)s', datefmt='%Y-%m-%d %H:%M:%S'))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter('%(message)s'))

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    # agent and weight-store messages go to the same handlers
    for name in ("agents", "ntuple_network"):
        child = logging.getLogger(name)
        child.setLevel(logging.INFO)
        child.handlers = logger.handlers[:]

    logger.info(f"Logging to: {log_file}")

    return logger


logger = logging.getLogger("train_ntuple")


def run_episode(env: Game2048, player: Agent) -> Dict[str, Any]:
    """
    Play one game to the end.

    The game ends when the player has no action or the board has no legal
    slide left.

    Returns:
        Episode statistics (score, length, max_tile, duration)
    """
    start = time.time()
    env.reset()
    player.open_episode()

    terminated = not env.board.has_legal_move()
    while not terminated:
        action = player.take_action(env.board)
        if not action:
            break
        _, _, terminated, _, info = env.step(action.op)
        if not info["grid_changed"]:
            raise RuntimeError(f"{player.name} chose an illegal move {action}")

    player.close_episode()

    return {
        'score': env.score,
        'length': env.moves_made,
        'max_tile': env.max_tile(),
        'duration': time.time() - start,
    }


class Statistics:
    """Per-episode results and block summaries."""

    MILESTONES = (512, 1024, 2048, 4096)

    def __init__(self):
        self.history: Dict[str, List[float]] = {
            'episode_scores': [],
            'episode_lengths': [],
            'max_tiles': [],
            'durations': [],
        }

    def __len__(self) -> int:
        return len(self.history['episode_scores'])

    def record(self, stats: Dict[str, Any]) -> None:
        self.history['episode_scores'].append(stats['score'])
        self.history['episode_lengths'].append(stats['length'])
        self.history['max_tiles'].append(stats['max_tile'])
        self.history['durations'].append(stats['duration'])

    def summary(self, last: Optional[int] = None) -> Dict[str, float]:
        """
        Summarize the last `last` episodes (all of them when None).

        Returns:
            avg/std/max score, median/best max tile, moves per second and the
            percentage of episodes reaching each milestone tile
        """
        if len(self) == 0:
            return {}
        window = slice(-last, None) if last else slice(None)
        scores = np.array(self.history['episode_scores'][window])
        lengths = np.array(self.history['episode_lengths'][window])
        tiles = np.array(self.history['max_tiles'][window])
        duration = float(np.sum(self.history['durations'][window]))

        summary = {
            'episodes': int(len(scores)),
            'avg_score': float(np.mean(scores)),
            'std_score': float(np.std(scores)),
            'max_score': int(np.max(scores)),
            'median_max_tile': int(np.median(tiles)),
            'max_tile': int(np.max(tiles)),
            'ops_per_sec': float(np.sum(lengths) / duration) if duration > 0 else 0.0,
        }
        for tile in self.MILESTONES:
            summary[f'pct_{tile}'] = float(np.mean(tiles >= tile) * 100)
        return summary

    def plot_training_curves(self, save_path: str = "plots/training_curves.png", window: int = 100) -> None:
        """Plot moving averages of score, max tile and episode length."""
        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        def moving_average(data, window):
            if len(data) < window:
                return data
            return np.convolve(data, np.ones(window) / window, mode='valid')

        fig, axes = plt.subplots(1, 3, figsize=(15, 4))

        axes[0].plot(moving_average(self.history['episode_scores'], window))
        axes[0].set_title('Episode Score')
        axes[0].set_xlabel('Episode')
        axes[0].set_ylabel('Score')
        axes[0].grid(True)

        axes[1].plot(moving_average(self.history['max_tiles'], window))
        axes[1].set_title('Max Tile')
        axes[1].set_xlabel('Episode')
        axes[1].set_ylabel('Max Tile Value')
        axes[1].grid(True)

        axes[2].plot(moving_average(self.history['episode_lengths'], window))
        axes[2].set_title('Episode Length')
        axes[2].set_xlabel('Episode')
        axes[2].set_ylabel('Moves')
        axes[2].grid(True)

        plt.tight_layout()
        plt.savefig(save_path, dpi=150)
        plt.close(fig)
        logger.info(f"Training curves saved to {save_path}")


def log_summary(episode: int, total: int, summary: Dict[str, float]) -> None:
    logger.info(f"\nEpisode {episode}/{total}")
    logger.info(f"  Avg Score (last {summary['episodes']}): {summary['avg_score']:.1f} ± {summary['std_score']:.1f}")
    logger.info(f"  Max Score: {summary['max_score']}")
    logger.info(f"  Median Max Tile: {summary['median_max_tile']}, Best Max Tile: {summary['max_tile']}")
    logger.info(f"  Speed: {summary['ops_per_sec']:.1f} moves/sec")
    logger.info("  " + " | ".join(f"{tile}+: {summary[f'pct_{tile}']:.1f}%" for tile in Statistics.MILESTONES))


def train(player: Agent, env: Game2048, total: int, block: int = 100, show_progress: bool = True) -> Statistics:
    """
    Play `total` episodes, logging a summary every `block` episodes.

    Returns:
        Statistics of every episode played
    """
    stats = Statistics()
    for episode in tqdm(range(1, total + 1), desc="Training", disable=not show_progress):
        stats.record(run_episode(env, player))
        if block and episode % block == 0:
            log_summary(episode, total, stats.summary(last=block))
    return stats


def main(
    total: int = 1000,
    block: int = 100,
    play_args: str = "",
    evil_args: str = "",
    seed: Optional[int] = None,
    plot_path: Optional[str] = None,
    stats_path: Optional[str] = None,
    log_dir: str = "logs",
) -> int:
    """Main training function; returns the process exit status."""
    setup_logging(log_dir)

    try:
        player_config = AgentConfig.parse(play_args, name="TD", role=AgentRole.TD_PLAYER, seed=seed)
        evil_config = AgentConfig.parse(evil_args, name="random", role=AgentRole.ENVIRONMENT, seed=seed)
        player = create_agent(player_config)
    except (OSError, WeightFileError) as e:
        logger.error(f"Cannot load weights: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Invalid agent configuration: {e}")
        return 1

    env = Game2048(create_agent(evil_config))

    logger.info(f"Player: {player.name} ({player.role.value}), environment: {env.environment.name}")
    logger.info(f"Episodes: {total}, block size: {block}")

    stats = train(player, env, total, block)

    try:
        player.close()
    except OSError as e:
        logger.error(f"Cannot save weights: {e}")
        return 1

    final_stats = stats.summary()
    if final_stats:
        log_summary(total, total, final_stats)

    if plot_path:
        stats.plot_training_curves(plot_path, window=max(1, min(block, total)))

    if stats_path:
        directory = os.path.dirname(stats_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(stats_path, 'w') as f:
            json.dump(final_stats, f, indent=2)

    return 0


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description='2048 N-Tuple TD Training')
    parser.add_argument('--total', type=int, default=1000,
                        help='Number of episodes to play')
    parser.add_argument('--block', type=int, default=100,
                        help='Episodes per logged summary')
    parser.add_argument('--play', type=str, default="",
                        help='Player options, e.g. "alpha=0.003125 n=2 load=w.bin save=w.bin"')
    parser.add_argument('--evil', type=str, default="",
                        help='Environment options, e.g. "seed=7"')
    parser.add_argument('--seed', type=int, default=None,
                        help='Seed for agents that do not set their own')
    parser.add_argument('--plot', type=str, default=None,
                        help='Save training curves to this path')
    parser.add_argument('--stats-json', type=str, default=None,
                        help='Save the final summary as JSON')
    parser.add_argument('--log-dir', type=str, default="logs",
                        help='Directory for log files')

    args = parser.parse_args()

    sys.exit(main(
        total=args.total,
        block=args.block,
        play_args=args.play,
        evil_args=args.evil,
        seed=args.seed,
        plot_path=args.plot,
        stats_path=args.stats_json,
        log_dir=args.log_dir,
    ))
