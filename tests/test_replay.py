import unittest

import numpy as np

from gridpole_rl.replay import ReplayMemory, collate
from gridpole_rl.types import Transition
from gridpole_sim.errors import PreconditionError


def _t(i: int, done: bool = False) -> Transition:
    return Transition(state=[float(i), 0.0], action=i % 4, next_state=[float(i + 1), 0.0], reward=float(i), done=done)


class TestReplayMemory(unittest.TestCase):
    def test_fifo_eviction_at_capacity(self):
        memory = ReplayMemory(capacity=5, seed=0)
        for i in range(6):
            memory.push(_t(i))
        self.assertEqual(len(memory), 5)

        seen = {float(t.reward) for t in memory.sample(2000)}
        self.assertNotIn(0.0, seen)
        self.assertEqual(seen, {1.0, 2.0, 3.0, 4.0, 5.0})

    def test_sample_empty_raises(self):
        with self.assertRaises(PreconditionError):
            ReplayMemory(capacity=3).sample(1)

    def test_sample_with_replacement(self):
        memory = ReplayMemory(capacity=10, seed=1)
        memory.push(_t(7))
        batch = memory.sample(4)
        self.assertEqual(len(batch), 4)
        self.assertTrue(all(t is batch[0] for t in batch))

    def test_sample_is_deterministic_for_fixed_seed(self):
        a, b = ReplayMemory(capacity=50, seed=42), ReplayMemory(capacity=50, seed=42)
        for i in range(30):
            a.push(_t(i))
            b.push(_t(i))
        self.assertEqual([t.reward for t in a.sample(16)], [t.reward for t in b.sample(16)])

    def test_invalid_arguments(self):
        with self.assertRaises(ValueError):
            ReplayMemory(capacity=0)
        memory = ReplayMemory(capacity=2)
        memory.push(_t(0))
        with self.assertRaises(ValueError):
            memory.sample(0)

    def test_clear(self):
        memory = ReplayMemory(capacity=4)
        memory.push(_t(0))
        memory.clear()
        self.assertEqual(len(memory), 0)

    def test_undo_push_restores_evicted_transition(self):
        memory = ReplayMemory(capacity=3)
        for i in range(3):
            self.assertIsNone(memory.push(_t(i)))
        evicted = memory.push(_t(3))
        self.assertEqual(evicted.reward, 0.0)
        memory.undo_push(evicted)
        self.assertEqual([t.reward for t in memory._buffer], [0.0, 1.0, 2.0])

        memory.push(_t(4))
        memory.clear()
        with self.assertRaises(PreconditionError):
            memory.undo_push()

    def test_transition_is_an_immutable_copy(self):
        state = np.array([1.0, 2.0])
        t = Transition(state, 1, state, 0.5, True)
        state[0] = 99.0
        self.assertEqual(float(t.state[0]), 1.0)
        with self.assertRaises(ValueError):
            t.state[0] = 3.0

    def test_collate_shapes_and_dtypes(self):
        states, actions, rewards, next_states, dones = collate([_t(1), _t(2, done=True)])
        self.assertEqual(states.shape, (2, 2))
        self.assertEqual(states.dtype, np.float32)
        self.assertEqual(actions.dtype, np.int64)
        np.testing.assert_array_equal(actions, [1, 2])
        np.testing.assert_array_equal(rewards, [1.0, 2.0])
        np.testing.assert_array_equal(next_states[:, 0], [2.0, 3.0])
        np.testing.assert_array_equal(dones, [0.0, 1.0])


if __name__ == "__main__":
    unittest.main()
