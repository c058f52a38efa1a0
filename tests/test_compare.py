import contextlib
import io
import os
import tempfile
import unittest

import numpy as np

from gridpole_rl.compare import main, parse_episode_stats, plot_runs
from gridpole_rl.config import TrainerConfig
from gridpole_rl.trainer import Trainer


def _write_training_log(path: str, seed: int, episodes: int = 3) -> list[float]:
    cfg = TrainerConfig.for_env(
        "gridworld", hidden_sizes=(16,), batch_size=8, replay_capacity=200, seed=seed, log_interval=1
    )
    trainer = Trainer(cfg)
    with open(path, "w", encoding="utf-8") as f, contextlib.redirect_stdout(f):
        return trainer.start_training(episodes)


class TestCompareRuns(unittest.TestCase):
    def test_parse_episode_stats_from_training_log(self):
        with tempfile.TemporaryDirectory() as td:
            path = os.path.join(td, "run.log")
            rewards = _write_training_log(path, seed=0)
            stats = parse_episode_stats(path)
        np.testing.assert_array_equal(stats["episode"], [1.0, 2.0, 3.0])
        np.testing.assert_allclose(stats["reward"], rewards, atol=1e-3)
        self.assertIn("avg_reward", stats)
        self.assertEqual(len(stats["epsilon"]), 3)

    def test_ignores_other_log_lines(self):
        with tempfile.TemporaryDirectory() as td:
            path = os.path.join(td, "mixed.log")
            with open(path, "w", encoding="utf-8") as f:
                f.write("[00:00:01] training_start env=gridworld episodes=2\n")
                f.write("[00:00:02] episode_stats episode=1 reward=-1.500 avg_reward=-1.500\n")
                f.write("[00:00:03] episode_stats reward=3.0\n")
            stats = parse_episode_stats(path)
        np.testing.assert_array_equal(stats["episode"], [1.0])
        np.testing.assert_array_equal(stats["reward"], [-1.5])

    def test_plot_runs_with_missing_field(self):
        runs = {"a": {"episode": np.arange(1.0, 6.0), "reward": np.linspace(-1.0, 1.0, 5)}}
        with tempfile.TemporaryDirectory() as td:
            out = plot_runs(runs, os.path.join(td, "plots", "cmp.png"), fields=("reward", "loss_mean"), smooth=3)
            self.assertTrue(out.exists())

    def test_main_compares_two_runs(self):
        with tempfile.TemporaryDirectory() as td:
            first, second = os.path.join(td, "seed0.log"), os.path.join(td, "seed1.log")
            _write_training_log(first, seed=0)
            _write_training_log(second, seed=1)
            output = os.path.join(td, "compare.png")
            with contextlib.redirect_stdout(io.StringIO()):
                out = main([f"baseline={first}", second, "--output", output, "--smooth", "2"])
            self.assertTrue(out.exists())

    def test_main_rejects_missing_or_empty_logs(self):
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(FileNotFoundError):
                main([os.path.join(td, "absent.log")])
            empty = os.path.join(td, "empty.log")
            with open(empty, "w", encoding="utf-8") as f:
                f.write("[00:00:01] training_start env=gridworld\n")
            with self.assertRaises(RuntimeError):
                main([empty, "--output", os.path.join(td, "x.png")])


if __name__ == "__main__":
    unittest.main()
