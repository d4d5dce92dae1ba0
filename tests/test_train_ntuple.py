"""
Tests for the episode driver, statistics and the training entry point.
"""

import sys
import os
import json
import logging
import numpy as np

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from agents import AgentConfig, AgentRole, PlayStyle, create_agent
from game_2048 import Game2048
from train_ntuple import Statistics, main, run_episode, setup_logging, train


def make_env(seed=0):
    return Game2048(create_agent(AgentConfig(role=AgentRole.ENVIRONMENT, seed=seed)))


class TestSetupLogging:
    def file_handlers(self, logger):
        return [h for h in logger.handlers if isinstance(h, logging.FileHandler)]

    def test_rerun_closes_previous_log_file(self, tmp_path):
        first = self.file_handlers(setup_logging(str(tmp_path / "first")))
        logger = setup_logging(str(tmp_path / "second"))
        assert len(first) == 1
        assert first[0].stream is None
        assert len(self.file_handlers(logger)) == 1
        assert self.file_handlers(logger)[0].stream is not None

    def test_agent_loggers_share_handlers(self, tmp_path):
        logger = setup_logging(str(tmp_path))
        assert logging.getLogger("agents").handlers == logger.handlers
        assert logging.getLogger("ntuple_network").handlers == logger.handlers


class TestRunEpisode:
    def test_baseline_plays_to_the_end(self):
        env = make_env(seed=5)
        player = create_agent(AgentConfig(style=PlayStyle.GREEDY1, seed=5))
        stats = run_episode(env, player)
        assert stats['length'] > 0
        assert stats['score'] == env.score
        assert stats['max_tile'] >= 4
        assert not env.board.has_legal_move()

    def test_seeded_episodes_are_reproducible(self):
        results = []
        for _ in range(2):
            player = create_agent(AgentConfig(style=PlayStyle.RANDOM, seed=11))
            results.append(run_episode(make_env(seed=11), player))
        assert results[0]['score'] == results[1]['score']
        assert results[0]['length'] == results[1]['length']

    def test_td_player_learns_from_episode(self):
        env = make_env(seed=2)
        player = create_agent(AgentConfig(role=AgentRole.TD_PLAYER, alpha=0.01, n_step=2,
                                          init="rows", alphabet_size=16, seed=2))
        stats = run_episode(env, player)
        assert len(player.history) == stats['length']
        assert any(table.any() for table in player.network.weights.tables)


class TestStatistics:
    def record_all(self, stats, tiles, scores):
        for tile, score in zip(tiles, scores):
            stats.record({'score': score, 'length': 10, 'max_tile': tile, 'duration': 0.5})

    def test_summary(self):
        stats = Statistics()
        self.record_all(stats, [256, 512, 1024, 2048], [1000, 3000, 5000, 7000])
        summary = stats.summary()
        assert len(stats) == 4
        assert summary['episodes'] == 4
        assert summary['avg_score'] == pytest.approx(4000)
        assert summary['max_score'] == 7000
        assert summary['max_tile'] == 2048
        assert summary['pct_512'] == pytest.approx(75.0)
        assert summary['pct_1024'] == pytest.approx(50.0)
        assert summary['pct_2048'] == pytest.approx(25.0)
        assert summary['pct_4096'] == pytest.approx(0.0)
        assert summary['ops_per_sec'] == pytest.approx(20.0)

    def test_summary_of_last_block(self):
        stats = Statistics()
        self.record_all(stats, [2048, 128, 256], [9000, 100, 300])
        summary = stats.summary(last=2)
        assert summary['episodes'] == 2
        assert summary['avg_score'] == pytest.approx(200)
        assert summary['max_tile'] == 256

    def test_empty_summary(self):
        assert Statistics().summary() == {}

    def test_plot_training_curves(self, tmp_path):
        stats = Statistics()
        self.record_all(stats, [128, 256, 512], [500, 1500, 4000])
        path = tmp_path / "plots" / "curves.png"
        stats.plot_training_curves(str(path), window=2)
        assert path.exists()


class TestTrain:
    def test_train_collects_every_episode(self):
        player = create_agent(AgentConfig(style=PlayStyle.GREEDY1, seed=1))
        stats = train(player, make_env(seed=1), total=3, block=2, show_progress=False)
        assert len(stats) == 3
        assert all(score >= 0 for score in stats.history['episode_scores'])

    def test_main_with_baseline(self, tmp_path):
        stats_path = tmp_path / "stats.json"
        plot_path = tmp_path / "curves.png"
        status = main(total=2, block=1, play_args="role=player greedy1", seed=3,
                      plot_path=str(plot_path), stats_path=str(stats_path), log_dir=str(tmp_path / "logs"))
        assert status == 0
        with open(stats_path) as f:
            summary = json.load(f)
        assert summary['episodes'] == 2
        assert plot_path.exists()
        assert any((tmp_path / "logs").iterdir())

    def test_main_saves_td_weights(self, tmp_path):
        weights = tmp_path / "weights.bin"
        status = main(total=1, block=1, seed=4, log_dir=str(tmp_path / "logs"),
                      play_args=f"init=rows alphabet=16 alpha=0.01 save={weights}")
        assert status == 0
        assert weights.exists()

        data = np.frombuffer(weights.read_bytes(), dtype="<u4", count=4, offset=0)
        assert data[2] == 16 and data[3] == 8

    def test_main_fails_on_missing_weights(self, tmp_path):
        status = main(total=1, play_args=f"init=rows alphabet=16 load={tmp_path / 'missing.bin'}",
                      log_dir=str(tmp_path / "logs"))
        assert status == 1

    def test_main_fails_on_bad_option(self, tmp_path):
        assert main(total=1, play_args="alpha=-1", log_dir=str(tmp_path / "logs")) == 1
