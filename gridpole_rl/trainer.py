"""DQN trainer: cooperative episode loop with start/stop/resume and telemetry."""

from __future__ import annotations

import argparse
import threading
import time
from collections import deque
from dataclasses import replace
from datetime import datetime
from typing import Iterator, Sequence

import numpy as np
import torch
from torch.utils.tensorboard import SummaryWriter
from tqdm import tqdm

from gridpole_sim import ACTION_COUNTS, CartPole, GridWorld
from gridpole_sim.errors import ConfigurationError, PreconditionError

from .config import TrainerConfig, build_environment, flatten_config, load_config
from .dqn import DQNLearner
from .evaluate import evaluate_greedy, plot_reward_history
from .features import FeatureExtractor, LidarSensorExtractor, SensorFlags, make_extractor
from .replay import ReplayMemory
from .schedule import EpsilonSchedule
from .tabular import TabularQLearner
from .types import Telemetry, TrainerStatus, Transition


class Trainer:
    """Owns one environment, replay memory and learner, and runs the episode loop.

    Status goes IDLE -> RUNNING -> STOPPED (resumable) or back to IDLE once every
    requested episode finished. The loop can be pumped one environment step at a
    time through ``train_steps``/``resume_steps`` or run to completion with the
    blocking ``start_training``/``resume_training`` (e.g. on a worker thread).
    ``stop_training`` is a flag checked before every step and every episode.

    Hyperparameters may only be changed while the trainer is not RUNNING; this is
    the caller's responsibility.
    """

    def __init__(self, config: TrainerConfig | None = None, **overrides):
        cfg = config or TrainerConfig()
        if overrides:
            cfg = replace(cfg, **overrides)
        self.config = cfg.resolved()

        if self.config.seed is not None:
            torch.manual_seed(self.config.seed)
        self.device = self._resolve_device(self.config.device)

        self.env = build_environment(self.config)
        self.action_dim = ACTION_COUNTS[self.config.env]
        self.extractor = self._build_extractor(self.config)
        self.schedule = self._build_schedule(self.config)
        self.replay = ReplayMemory(self.config.replay_capacity, seed=self.config.seed)
        self.learner = self._build_learner(self.config, self.extractor.dim)

        self._rng = np.random.default_rng(self.config.seed)
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._status = TrainerStatus.IDLE
        self._episode_bar: tqdm | None = None
        self.last_error: BaseException | None = None

        self.episode_index = 0
        self.global_step = 0
        self.epsilon = self.schedule(0)
        self.episode_reward = 0.0
        self.last_episode_reward = 0.0
        self.explore_count = 0
        self.exploit_count = 0
        self.last_loss: float | None = None
        self.reward_history: deque[float] = deque(maxlen=self.config.reward_window)
        self.episode_rewards: list[float] = []
        self._obs = self.env.reset()
        self._episode_steps = 0
        self._episode_losses: list[float] = []

        self.tb_writer: SummaryWriter | None = None
        if self.config.tensorboard_logdir:
            run_timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.tb_writer = SummaryWriter(log_dir=f"{self.config.tensorboard_logdir}/run_{run_timestamp}")

        self._log(
            "trainer_init "
            f"env={self.config.env} learner={self.config.learner} features={self.config.features} "
            f"feature_dim={self.extractor.dim} actions={self.action_dim} "
            f"hidden_sizes={list(self.config.hidden_sizes)} lr={self.config.learning_rate} "
            f"gamma={self.config.gamma} batch_size={self.config.batch_size} "
            f"replay_capacity={self.config.replay_capacity} eps_start={self.config.eps_start} "
            f"eps_end={self.config.eps_end} eps_decay={self.config.eps_decay} "
            f"target_sync_every={self.config.target_sync_every} device={self.device.type}"
        )

    # ------------------------------------------------------------------ setup

    @staticmethod
    def _resolve_device(device_name: str) -> torch.device:
        name = device_name.lower()
        if name == "cpu":
            return torch.device("cpu")
        if name == "cuda":
            if not torch.cuda.is_available():
                raise ConfigurationError("Requested device cuda, but CUDA is not available")
            return torch.device("cuda")
        if name == "mps":
            if not (torch.backends.mps.is_available() and torch.backends.mps.is_built()):
                raise ConfigurationError("Requested device mps, but MPS is not available")
            return torch.device("mps")
        raise ConfigurationError("device must be one of: cpu, cuda, mps")

    def _build_extractor(self, config: TrainerConfig) -> FeatureExtractor:
        metadata = self.env.metadata if isinstance(self.env, GridWorld) else None
        return make_extractor(config.features, metadata=metadata, flags=config.sensor_flags, dim=CartPole.STATE_SIZE)

    @staticmethod
    def _build_schedule(config: TrainerConfig) -> EpsilonSchedule:
        return EpsilonSchedule(start=config.eps_start, end=config.eps_end, decay_steps=config.eps_decay)

    def _build_learner(self, config: TrainerConfig, input_dim: int) -> DQNLearner | TabularQLearner:
        if config.learner == "table":
            return TabularQLearner(
                grid_size=config.grid_size,
                action_dim=self.action_dim,
                alpha=config.learning_rate,
                gamma=config.gamma,
            )
        return DQNLearner(
            input_dim=input_dim,
            action_dim=self.action_dim,
            hidden_sizes=config.hidden_sizes,
            learning_rate=config.learning_rate,
            gamma=config.gamma,
            grad_clip=config.grad_clip,
            target_sync_every=config.target_sync_every,
            device=self.device,
        )

    def _log(self, message: str) -> None:
        ts = datetime.now().strftime("%H:%M:%S")
        text = f"[{ts}] {message}"
        if self._episode_bar is not None:
            self._episode_bar.write(text)
        else:
            print(text, flush=True)

    # ----------------------------------------------------------- queries

    @property
    def status(self) -> TrainerStatus:
        return self._status

    @property
    def rolling_average_reward(self) -> float:
        if not self.reward_history:
            return 0.0
        return float(sum(self.reward_history) / len(self.reward_history))

    def get_q_values(self, raw_state) -> np.ndarray:
        """Q-values of the online learner for a raw observation. Safe between steps."""
        with self._lock:
            return self.learner.q_values(self.extractor(raw_state))

    def q_value_grid(self) -> dict[tuple[int, int], list[float]]:
        """Q vectors for every GridWorld cell that is not blocked, the pit or the goal."""
        if not isinstance(self.env, GridWorld):
            raise PreconditionError("Per-cell Q-values are only defined for GridWorld")
        with self._lock:
            meta = self.env.metadata
            cells = [
                (r, c)
                for r in range(meta.grid_size)
                for c in range(meta.grid_size)
                if (r, c) not in meta.blocks and (r, c) != meta.pit and (r, c) != meta.goal
            ]
            q = self.learner.q_values(np.stack([self.extractor(cell) for cell in cells]))
            return {cell: [float(v) for v in q[i]] for i, cell in enumerate(cells)}

    def telemetry(self, include_q_values: bool = False) -> Telemetry:
        with self._lock:
            return self._telemetry_locked(include_q_values, episode_done=False)

    def _telemetry_locked(self, include_q_values: bool, episode_done: bool) -> Telemetry:
        q_values = None
        if include_q_values and isinstance(self.env, GridWorld):
            q_values = self.q_value_grid()
        return Telemetry(
            status=self._status,
            episode_index=self.episode_index,
            global_step=self.global_step,
            epsilon=self.epsilon,
            episode_reward=self.episode_reward,
            last_episode_reward=self.last_episode_reward,
            rolling_average_reward=self.rolling_average_reward,
            reward_history=list(self.reward_history),
            explore_count=self.explore_count,
            exploit_count=self.exploit_count,
            last_loss=self.last_loss,
            episode_done=episode_done,
            q_values=q_values,
        )

    # --------------------------------------------------- environment commands

    def reset(self):
        with self._lock:
            self._require_not_running("reset")
            self._obs = self.env.reset()
            return self._obs

    def step(self, action: int):
        with self._lock:
            self._require_not_running("step")
            result = self.env.step(action)
            self._obs = result[0]
            return result

    def _require_not_running(self, what: str) -> None:
        if self._status is TrainerStatus.RUNNING:
            raise PreconditionError(f"Cannot {what} the environment while training is running")

    # ------------------------------------------------------ hyperparameters

    def update_hyperparameters(
        self,
        *,
        learning_rate: float | None = None,
        hidden_sizes: Sequence[int] | None = None,
        sensor_flags: SensorFlags | None = None,
        eps_decay: float | None = None,
        gamma: float | None = None,
    ) -> None:
        """Apply hyperparameter changes. Only call while IDLE or STOPPED.

        New layer widths rebuild both networks. New sensor flags rebuild the
        feature extractor; with lidar features they also clear replay memory,
        whose features were encoded with the old flags.
        """
        with self._lock:
            changes = {}
            if learning_rate is not None:
                changes["learning_rate"] = float(learning_rate)
            if hidden_sizes is not None:
                changes["hidden_sizes"] = tuple(int(h) for h in hidden_sizes)
            if sensor_flags is not None:
                changes["sensor_flags"] = sensor_flags
            if eps_decay is not None:
                changes["eps_decay"] = float(eps_decay)
            if gamma is not None:
                changes["gamma"] = float(gamma)
            if not changes:
                return
            new_cfg = replace(self.config, **changes)
            new_cfg.validate()

            if eps_decay is not None:
                self.schedule = self._build_schedule(new_cfg)
            if sensor_flags is not None:
                # Only lidar features depend on the flags; other encodings stay valid.
                if isinstance(self.extractor, LidarSensorExtractor):
                    self.replay.clear()
                self.extractor = self._build_extractor(new_cfg)
            rebuild = isinstance(self.learner, DQNLearner) and (
                hidden_sizes is not None or self.learner.input_dim != self.extractor.dim
            )
            if rebuild:
                self.learner = self._build_learner(new_cfg, self.extractor.dim)
            else:
                if learning_rate is not None:
                    if isinstance(self.learner, DQNLearner):
                        self.learner.set_learning_rate(new_cfg.learning_rate)
                    else:
                        self.learner.alpha = new_cfg.learning_rate
                if gamma is not None:
                    self.learner.gamma = new_cfg.gamma

            self.config = new_cfg
            self._log("hyperparameters_updated " + " ".join(f"{k}={v}" for k, v in changes.items()))

    # --------------------------------------------------------- run control

    def train_steps(self, episode_count: int) -> Iterator[Telemetry]:
        """IDLE -> RUNNING. Returns an iterator doing one environment step per item.

        Counters, epsilon and reward history restart from zero; network weights and
        replay memory carry over from any previous run.
        """
        with self._lock:
            if self._status is not TrainerStatus.IDLE:
                raise PreconditionError(f"start_training requires status idle, got {self._status.value}")
            self._check_episode_count(episode_count)
            self.extractor.validate()

            self.episode_index = 0
            self.global_step = 0
            self.epsilon = self.schedule(0)
            self.last_episode_reward = 0.0
            self.reward_history.clear()
            self.episode_rewards = []
            self._stop_event.clear()
            self._status = TrainerStatus.RUNNING
            self._log(f"training_start episodes={episode_count}")
        return self._primed_loop(int(episode_count))

    def resume_steps(self, episode_count: int) -> Iterator[Telemetry]:
        """STOPPED -> RUNNING, continuing the global step counter (and so epsilon)."""
        with self._lock:
            if self._status is not TrainerStatus.STOPPED:
                raise PreconditionError(f"resume_training requires status stopped, got {self._status.value}")
            self._check_episode_count(episode_count)
            self.extractor.validate()

            self._stop_event.clear()
            self._status = TrainerStatus.RUNNING
            self._log(
                f"training_resume episodes={episode_count} episode={self.episode_index} "
                f"global_step={self.global_step} epsilon={self.schedule(self.global_step):.3f}"
            )
        return self._primed_loop(int(episode_count))

    def start_training(self, episode_count: int) -> list[float]:
        """Blocking run; returns the rewards of all episodes finished in this run."""
        return self._drive(self.train_steps(episode_count), episode_count)

    def resume_training(self, episode_count: int) -> list[float]:
        return self._drive(self.resume_steps(episode_count), episode_count)

    def start_in_background(self, episode_count: int, resume: bool = False) -> threading.Thread:
        """Run the blocking loop on a daemon thread. State errors are raised here, eagerly."""
        steps = self.resume_steps(episode_count) if resume else self.train_steps(episode_count)

        def _worker() -> None:
            try:
                self._drive(steps, episode_count)
            except Exception as exc:
                self.last_error = exc
                raise

        self.last_error = None
        thread = threading.Thread(target=_worker, name="gridpole-trainer", daemon=True)
        thread.start()
        return thread

    def stop_training(self) -> None:
        """Request a cooperative halt; observed before the next environment step."""
        self._stop_event.set()

    @staticmethod
    def _check_episode_count(episode_count: int) -> None:
        if int(episode_count) < 0:
            raise ConfigurationError("episode_count must be >= 0")

    def _drive(self, steps: Iterator[Telemetry], episode_count: int) -> list[float]:
        try:
            if self.config.progress:
                self._episode_bar = tqdm(
                    total=int(episode_count),
                    desc=f"DQN {self.config.env} episodes",
                    unit="ep",
                    mininterval=1.0,
                    maxinterval=5.0,
                )
            for _ in steps:
                # Suspension point: lets other threads (UI, stop requests) run.
                time.sleep(self.config.step_delay)
        finally:
            steps.close()
            if self._episode_bar is not None:
                self._episode_bar.close()
                self._episode_bar = None
        return list(self.episode_rewards)

    # ------------------------------------------------------------ the loop

    def _primed_loop(self, episode_count: int) -> Iterator[Telemetry]:
        steps = self._loop(episode_count)
        next(steps)
        return steps

    def _loop(self, episode_count: int) -> Iterator[Telemetry | None]:
        finished = False
        try:
            # Priming stop: from here on close() always reaches the finally block.
            yield None
            for _ in range(episode_count):
                if self._stop_event.is_set():
                    break
                with self._lock:
                    self._begin_episode()
                done = False
                while not done:
                    if self._stop_event.is_set():
                        break
                    with self._lock:
                        done = self._step_once()
                        include_q = done or self.global_step % self.config.telemetry_interval == 0
                        telemetry = self._telemetry_locked(include_q, episode_done=done)
                    yield telemetry
                if not done:
                    break
            else:
                finished = True
        finally:
            with self._lock:
                self._status = TrainerStatus.IDLE if finished else TrainerStatus.STOPPED
                if finished:
                    self._log(
                        f"training_done episodes={self.episode_index} global_step={self.global_step} "
                        f"avg_reward={self.rolling_average_reward:.3f}"
                    )
                else:
                    self._log(f"training_stopped episode={self.episode_index} global_step={self.global_step}")
                if self.tb_writer is not None:
                    self.tb_writer.flush()

    def _begin_episode(self) -> None:
        self._obs = self.env.reset()
        self.episode_reward = 0.0
        self.explore_count = 0
        self.exploit_count = 0
        self._episode_steps = 0
        self._episode_losses = []

    def _select_action(self, features: np.ndarray, eps: float) -> int:
        if self._rng.random() < eps:
            self.explore_count += 1
            return int(self._rng.integers(self.action_dim))
        self.exploit_count += 1
        return self.learner.greedy_action(features)

    def _learn(self, transition: Transition) -> float | None:
        if isinstance(self.learner, TabularQLearner):
            return self.learner.update(transition)
        evicted = self.replay.push(transition)
        if len(self.replay) < self.config.batch_size:
            return None
        try:
            return self.learner.optimize(self.replay.sample(self.config.batch_size))
        except Exception:
            self.replay.undo_push(evicted)
            raise

    def _step_once(self) -> bool:
        eps = self.schedule(self.global_step)
        self.epsilon = eps
        features = self.extractor(self._obs)
        action = self._select_action(features, eps)

        next_obs, reward, terminated, truncated = self.env.step(action)
        done = bool(terminated or truncated)
        transition = Transition(features, action, self.extractor(next_obs), reward, done)
        loss = self._learn(transition)
        if loss is not None:
            self.last_loss = loss
            self._episode_losses.append(loss)

        self._obs = next_obs
        self.episode_reward += float(reward)
        self._episode_steps += 1
        self.global_step += 1
        if done:
            self._finish_episode()
        return done

    def _finish_episode(self) -> None:
        self.episode_index += 1
        self.last_episode_reward = self.episode_reward
        self.reward_history.append(self.episode_reward)
        self.episode_rewards.append(self.episode_reward)
        avg = self.rolling_average_reward
        loss_mean = float(np.mean(self._episode_losses)) if self._episode_losses else 0.0

        if self.tb_writer is not None:
            step = self.episode_index
            self.tb_writer.add_scalar("train/episode_reward", self.episode_reward, step)
            self.tb_writer.add_scalar("train/rolling_avg_reward", avg, step)
            self.tb_writer.add_scalar("train/epsilon", self.epsilon, step)
            self.tb_writer.add_scalar("train/loss_mean", loss_mean, step)
            self.tb_writer.add_scalar("train/explore_count", self.explore_count, step)
            self.tb_writer.add_scalar("train/exploit_count", self.exploit_count, step)
            self.tb_writer.add_scalar("train/episode_steps", self._episode_steps, step)

        if self.config.log_interval > 0 and self.episode_index % self.config.log_interval == 0:
            self._log(
                "episode_stats "
                f"episode={self.episode_index} global_step={self.global_step} "
                f"steps={self._episode_steps} reward={self.episode_reward:.3f} avg_reward={avg:.3f} "
                f"epsilon={self.epsilon:.3f} explore={self.explore_count} exploit={self.exploit_count} "
                f"loss_mean={loss_mean:.4f}"
            )

        if self._episode_bar is not None:
            self._episode_bar.update(1)
            self._episode_bar.set_postfix(
                {
                    "steps": self._episode_steps,
                    "ret": f"{self.episode_reward:.2f}",
                    "avg": f"{avg:.2f}",
                    "eps": f"{self.epsilon:.2f}",
                }
            )

    def close(self) -> None:
        if self.tb_writer is not None:
            self.tb_writer.flush()
            self.tb_writer.close()
            self.tb_writer = None


# ---------------------------------------------------------------------- CLI


def build_parser(defaults: dict | None = None) -> argparse.ArgumentParser:
    d = defaults or {}
    p = argparse.ArgumentParser(description="Train a DQN agent on GridWorld or CartPole")
    p.add_argument("--config", type=str, default=None, help="Path to YAML config (env/features/network/training)")
    p.add_argument("--env", choices=["gridworld", "cartpole"], default=d.get("env", "gridworld"))
    p.add_argument("--episodes", type=int, default=d.get("episodes"), help="Episodes to train (required if no --config)")
    p.add_argument("--grid-size", type=int, default=d.get("grid_size", 6))
    p.add_argument("--pit-death-reward", type=float, default=d.get("pit_death_reward", -1.0))
    p.add_argument("--angle-threshold-degrees", type=float, default=d.get("angle_threshold_degrees", 45.0))
    p.add_argument("--learner", choices=["dqn", "table"], default=d.get("learner", "dqn"))
    p.add_argument("--features", choices=["raw", "distance", "lidar", "identity"], default=d.get("features"))
    p.add_argument(
        "--disable-sensor",
        action="append",
        default=[k for k, v in (d.get("sensor_flags") or {}).items() if not v],
        choices=["goal_localization", "straight_sensors", "diagonal_sensors", "pit_distance"],
        help="Turn off one lidar sensor group (repeatable)",
    )
    p.add_argument("--hidden-sizes", type=int, nargs="*", default=d.get("hidden_sizes", [128, 128]))
    p.add_argument("--lr", type=float, default=d.get("learning_rate"))
    p.add_argument("--gamma", type=float, default=d.get("gamma", 0.99))
    p.add_argument("--batch-size", type=int, default=d.get("batch_size", 64))
    p.add_argument("--replay-capacity", type=int, default=d.get("replay_capacity", 10_000))
    p.add_argument("--eps-start", type=float, default=d.get("eps_start"))
    p.add_argument("--eps-end", type=float, default=d.get("eps_end"))
    p.add_argument("--eps-decay", type=float, default=d.get("eps_decay"))
    p.add_argument("--target-sync-every", type=int, default=d.get("target_sync_every", 200))
    p.add_argument("--grad-clip", type=float, default=d.get("grad_clip", 5.0))
    p.add_argument("--reward-window", type=int, default=d.get("reward_window", 10))
    p.add_argument("--telemetry-interval", type=int, default=d.get("telemetry_interval", 10), help="Attach Q-values to telemetry every N steps")
    p.add_argument("--step-delay", type=float, default=d.get("step_delay", 0.0), help="Seconds to sleep after each env step")
    p.add_argument("--device", type=str, default=d.get("device", "cpu"), choices=["cpu", "cuda", "mps"])
    p.add_argument("--seed", type=int, default=d.get("seed"))
    p.add_argument("--log-interval", type=int, default=d.get("log_interval", 10))
    p.add_argument("--tensorboard-logdir", default=d.get("tensorboard_logdir"))
    p.add_argument("--progress", action=argparse.BooleanOptionalAction, default=d.get("progress", True))
    p.add_argument("--eval-episodes", type=int, default=d.get("eval_episodes", 0), help="Greedy evaluation episodes after training")
    p.add_argument("--plot", type=str, default=d.get("plot"), help="Write a reward-history PNG to this path")
    return p


def config_from_args(args: argparse.Namespace) -> TrainerConfig:
    flags = SensorFlags.from_dict({name: False for name in (args.disable_sensor or [])})
    return TrainerConfig(
        env=args.env,
        grid_size=args.grid_size,
        pit_death_reward=args.pit_death_reward,
        angle_threshold_degrees=args.angle_threshold_degrees,
        learner=args.learner,
        features=args.features,
        sensor_flags=flags,
        hidden_sizes=tuple(args.hidden_sizes),
        learning_rate=args.lr,
        gamma=args.gamma,
        batch_size=args.batch_size,
        replay_capacity=args.replay_capacity,
        eps_start=args.eps_start,
        eps_end=args.eps_end,
        eps_decay=args.eps_decay,
        target_sync_every=args.target_sync_every,
        grad_clip=args.grad_clip,
        reward_window=args.reward_window,
        telemetry_interval=args.telemetry_interval,
        step_delay=args.step_delay,
        log_interval=args.log_interval,
        progress=args.progress,
        tensorboard_logdir=args.tensorboard_logdir,
        seed=args.seed,
        device=args.device,
    ).resolved()


def main(argv: Sequence[str] | None = None) -> None:
    # Pre-parse to get --config
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", type=str, default=None)
    pre_args, _ = pre.parse_known_args(argv)

    defaults = {}
    if pre_args.config:
        defaults = flatten_config(load_config(pre_args.config))

    parser = build_parser(defaults)
    args = parser.parse_args(argv)
    if args.episodes is None:
        parser.error("--episodes required (or set training.episodes in --config)")

    trainer = Trainer(config_from_args(args))
    try:
        rewards = trainer.start_training(args.episodes)
    except KeyboardInterrupt:
        rewards = list(trainer.episode_rewards)
        trainer._log("interrupted by user, training stopped")
    finally:
        trainer.close()

    if args.eval_episodes > 0:
        metrics = evaluate_greedy(trainer, args.eval_episodes)
        trainer._log(
            "eval_stats "
            f"episodes={metrics.episodes} success_rate={metrics.success_rate:.3f} "
            f"steps_mean={metrics.steps_mean:.2f} return_mean={metrics.return_mean:.3f}"
        )
    if args.plot:
        path = plot_reward_history(rewards, args.plot, window=trainer.config.reward_window)
        trainer._log(f"plot_saved path={path}")


if __name__ == "__main__":
    main()
