"""Compare ``episode_stats`` curves across several ``gridpole-train`` logs."""

from __future__ import annotations

import argparse
import re
from pathlib import Path
from typing import Sequence

import matplotlib
import matplotlib.pyplot as plt
import numpy as np

from .evaluate import rolling_mean

matplotlib.use("Agg")

EPISODE_STATS = "episode_stats"
DEFAULT_FIELDS = ("avg_reward", "reward", "epsilon", "loss_mean")
TITLES = {
    "avg_reward": "Rolling Average Reward",
    "reward": "Episode Reward",
    "epsilon": "Epsilon",
    "loss_mean": "Mean Loss",
    "steps": "Episode Steps",
    "explore": "Explore Actions",
    "exploit": "Exploit Actions",
}

_KEY_VALUE = re.compile(r"(\w+)=(-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)")


def parse_episode_stats(log_path: str | Path) -> dict[str, np.ndarray]:
    """Collect every numeric ``key=value`` of the episode_stats lines into columns."""
    columns: dict[str, list[float]] = {}
    with open(log_path, "r", encoding="utf-8") as f:
        for line in f:
            _, sep, rest = line.partition(EPISODE_STATS)
            if not sep:
                continue
            values = dict(_KEY_VALUE.findall(rest))
            if "episode" not in values:
                continue
            for key, value in values.items():
                columns.setdefault(key, []).append(float(value))
    return {key: np.asarray(vals, dtype=np.float64) for key, vals in columns.items()}


def _parse_run(arg: str) -> tuple[str, Path]:
    # "label=path" or just "path" (label = file stem)
    label, sep, path = arg.partition("=")
    if not sep:
        path, label = arg, Path(arg).stem
    return label, Path(path)


def plot_runs(
    runs: dict[str, dict[str, np.ndarray]],
    output: str | Path,
    fields: Sequence[str] = DEFAULT_FIELDS,
    smooth: int = 0,
) -> Path:
    """One subplot per field, one line per run, x = episode index."""
    out = Path(output)
    out.parent.mkdir(parents=True, exist_ok=True)
    fig, axes = plt.subplots(len(fields), 1, figsize=(10, 3.2 * len(fields)), squeeze=False)

    for ax, field in zip(axes[:, 0], fields):
        plotted = False
        for label, stats in runs.items():
            if field not in stats or "episode" not in stats:
                continue
            y = stats[field]
            if smooth > 1:
                y = rolling_mean(y, smooth)
            ax.plot(stats["episode"], y, linewidth=1.8, label=label)
            plotted = True
        ax.set_title(TITLES.get(field, field))
        ax.set_xlabel("Episode")
        ax.grid(True, alpha=0.3)
        if plotted:
            ax.legend()
        else:
            ax.text(0.5, 0.5, "No Data", ha="center", va="center")

    fig.tight_layout()
    fig.savefig(out, dpi=140)
    plt.close(fig)
    return out


def main(argv: Sequence[str] | None = None) -> Path:
    parser = argparse.ArgumentParser(description="Compare episode_stats curves from gridpole-train logs")
    parser.add_argument("logs", nargs="+", help="Log files, optionally as label=path")
    parser.add_argument("--fields", nargs="+", default=list(DEFAULT_FIELDS), help="episode_stats keys to plot")
    parser.add_argument("--smooth", type=int, default=0, help="Rolling mean window (0/1 = off)")
    parser.add_argument("--output", default="media/compare_runs.png", help="Output image path")
    args = parser.parse_args(argv)

    runs: dict[str, dict[str, np.ndarray]] = {}
    for arg in args.logs:
        label, path = _parse_run(arg)
        if not path.exists():
            raise FileNotFoundError(f"Log not found: {path}")
        stats = parse_episode_stats(path)
        if not stats:
            raise RuntimeError(f"No episode_stats found in log: {path}")
        runs[label] = stats

    out = plot_runs(runs, args.output, fields=args.fields, smooth=args.smooth)
    print(f"Saved: {out.resolve()}")
    return out


if __name__ == "__main__":
    main()
