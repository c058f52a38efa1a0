import itertools
import unittest

from gridpole_sim.errors import ConfigurationError, InvalidActionError
from gridpole_sim.gridworld import DEFAULT_BLOCKS, GOAL_REWARD, STEP_REWARD, GridWorld


def _walk(env, actions):
    out = None
    for a in actions:
        out = env.step(a)
    return out


class TestGridWorld(unittest.TestCase):
    def test_reset_returns_start_cell(self):
        env = GridWorld()
        env.step(1)
        self.assertEqual(env.reset(), (0, 0))
        self.assertEqual(env.steps, 0)

    def test_layout_and_dynamics_are_deterministic(self):
        a, b = GridWorld(), GridWorld()
        actions = [1, 3, 3, 1, 0, 2, 1, 1, 3]
        self.assertEqual([a.step(x) for x in actions], [b.step(x) for x in actions])
        self.assertEqual(a.reset(), b.reset())
        with self.assertRaises(TypeError):
            GridWorld(seed=1)

    def test_down_five_then_right_five_reaches_goal(self):
        env = GridWorld(grid_size=6)
        env.reset()
        for _ in range(5):
            obs, reward, terminated, _ = env.step(1)
            self.assertFalse(terminated)
            self.assertAlmostEqual(reward, STEP_REWARD)
        self.assertEqual(obs, (5, 0))
        for _ in range(4):
            _, _, terminated, _ = env.step(3)
            self.assertFalse(terminated)
        obs, reward, terminated, truncated = env.step(3)
        self.assertEqual(obs, (5, 5))
        self.assertEqual(reward, GOAL_REWARD)
        self.assertTrue(terminated)
        self.assertFalse(truncated)

    def test_every_move_stays_in_bounds(self):
        env = GridWorld(grid_size=7)
        n = env.grid_size
        for row, col, action in itertools.product(range(n), range(n), range(4)):
            if (row, col) in env.blocks:
                continue
            env._agent_pos = (row, col)
            env.steps = 0
            obs, _, _, _ = env.step(action)
            self.assertTrue(0 <= obs[0] < n and 0 <= obs[1] < n, msg=f"{(row, col)} action={action} -> {obs}")

    def test_blocked_cell_does_not_move_agent(self):
        env = GridWorld()
        env.reset()
        _walk(env, [1, 3])  # (1, 1); (1, 2) is blocked
        self.assertEqual(env.agent_pos, (1, 1))
        obs, reward, terminated, _ = env.step(3)
        self.assertEqual(obs, (1, 1))
        self.assertAlmostEqual(reward, STEP_REWARD)
        self.assertFalse(terminated)
        self.assertEqual(env.steps, 3)

    def test_pit_terminates_with_death_reward(self):
        env = GridWorld(pit_death_reward=-2.5)
        env.reset()
        _walk(env, [3, 3, 3, 1, 1])  # (2, 3)
        obs, reward, terminated, _ = env.step(1)
        self.assertEqual(obs, (3, 3))
        self.assertEqual(reward, -2.5)
        self.assertTrue(terminated)

    def test_blocked_pit_still_terminates(self):
        env = GridWorld(blocks=DEFAULT_BLOCKS | {(3, 3)})
        env.reset()
        _walk(env, [3, 3, 3, 1, 1])
        obs, reward, terminated, _ = env.step(1)
        self.assertEqual(obs, (2, 3))
        self.assertEqual(reward, env.pit_death_reward)
        self.assertTrue(terminated)

    def test_truncates_after_max_steps(self):
        env = GridWorld()
        env.reset()
        truncated = False
        for _ in range(env.max_steps):
            _, _, terminated, truncated = env.step(0)  # bump into the top wall
            self.assertFalse(terminated)
        self.assertTrue(truncated)
        self.assertEqual(env.max_steps, 72)

    def test_invalid_actions_raise(self):
        env = GridWorld()
        for bad in (-1, 4, 1.0, True, "up", None):
            with self.assertRaises(InvalidActionError, msg=repr(bad)):
                env.step(bad)
        self.assertEqual(env.steps, 0)

    def test_invalid_configuration_raises(self):
        with self.assertRaises(ConfigurationError):
            GridWorld(grid_size=5)
        with self.assertRaises(ConfigurationError):
            GridWorld(pit=(0, 0))
        with self.assertRaises(ConfigurationError):
            GridWorld(blocks={(5, 5)})
        with self.assertRaises(ConfigurationError):
            GridWorld(blocks={(6, 0)})

    def test_snapshot_reports_layout(self):
        env = GridWorld(grid_size=8)
        snap = env.snapshot()
        self.assertEqual(snap["goal"], [7, 7])
        self.assertEqual(snap["pit"], [3, 3])
        self.assertEqual(snap["agent_pos"], [0, 0])
        self.assertEqual(snap["blocks"], [[1, 2], [2, 2], [4, 2]])
        self.assertEqual(snap["max_steps"], 128)


if __name__ == "__main__":
    unittest.main()
