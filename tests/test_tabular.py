import unittest

import numpy as np

from gridpole_rl.tabular import TabularQLearner
from gridpole_rl.types import Transition


class TestTabularQLearner(unittest.TestCase):
    def test_terminal_update_moves_towards_reward(self):
        learner = TabularQLearner(grid_size=6, alpha=0.5, gamma=0.9)
        err = learner.update(Transition([4, 5], 1, [5, 5], 1.0, True))
        self.assertAlmostEqual(err, 1.0)
        self.assertAlmostEqual(learner.table[4, 5, 1], 0.5)

    def test_bootstrap_uses_best_next_action(self):
        learner = TabularQLearner(grid_size=6, alpha=1.0, gamma=0.9)
        learner.table[1, 0] = [0.0, 2.0, -1.0, 0.5]
        learner.update(Transition([0, 0], 1, [1, 0], -0.01, False))
        self.assertAlmostEqual(learner.table[0, 0, 1], -0.01 + 0.9 * 2.0)

    def test_q_values_and_greedy(self):
        learner = TabularQLearner(grid_size=6)
        learner.table[2, 3] = [0.0, 0.0, 0.0, 1.0]
        self.assertEqual(learner.greedy_action(np.array([2.0, 3.0])), 3)
        q = learner.q_values(np.array([[2.0, 3.0], [0.0, 0.0]]))
        self.assertEqual(q.shape, (2, 4))
        q[0, 3] = -5.0
        self.assertEqual(learner.table[2, 3, 3], 1.0)

    def test_invalid_alpha(self):
        with self.assertRaises(ValueError):
            TabularQLearner(grid_size=6, alpha=0.0)


if __name__ == "__main__":
    unittest.main()
