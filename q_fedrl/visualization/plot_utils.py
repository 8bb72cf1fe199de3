"""
Plotting utilities for federated Q-learning runs.

All plots are 150 DPI, bbox_inches='tight', with consistent style.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np

try:
    import matplotlib
    matplotlib.use("Agg")  # non-interactive backend
    import matplotlib.pyplot as plt
    MPL_AVAILABLE = True
except ImportError:
    MPL_AVAILABLE = False


# ── Style config ──────────────────────────────────────────────────────
STYLE_CONFIG = {
    "figure.figsize": (10, 6),
    "figure.dpi": 150,
    "figure.facecolor": "white",
    "axes.grid": True,
    "grid.alpha": 0.3,
    "font.size": 10,
    "axes.titlesize": 14,
    "axes.labelsize": 12,
    "legend.fontsize": 10,
    "lines.linewidth": 2,
    "lines.markersize": 8,
}

# Colour palette
COLORS = {
    "reward": "#4363d8",      # blue
    "federation": "#e6194B",  # red
    "success": "#3cb44b",     # green
    "delta": "#f58231",       # orange
    "epsilon": "#911eb4",     # purple
    "neutral": "#aaaaaa",     # grey
}


def _require_mpl():
    if not MPL_AVAILABLE:
        raise ImportError(
            "matplotlib is required for plotting. "
            "Install with: pip install matplotlib"
        )


def _apply_style():
    """Apply rcParams."""
    plt.rcParams.update(STYLE_CONFIG)


def _smooth(values: Sequence[float], window: int = 10) -> np.ndarray:
    """Moving-average smoothing."""
    arr = np.asarray(values, dtype=float)
    if len(arr) < window:
        return arr
    kernel = np.ones(window) / window
    return np.convolve(arr, kernel, mode="valid")


def _add_info_box(ax, text: str, loc: str = "upper right"):
    """Add a semi-transparent info box to the axes."""
    props = dict(boxstyle="round,pad=0.4", facecolor="white", alpha=0.85,
                 edgecolor="#cccccc")
    anchors = {
        "upper right": (0.98, 0.98, "right", "top"),
        "upper left": (0.02, 0.98, "left", "top"),
        "lower right": (0.98, 0.02, "right", "bottom"),
    }
    x, y, ha, va = anchors.get(loc, anchors["upper right"])
    ax.text(x, y, text, transform=ax.transAxes, fontsize=8,
            verticalalignment=va, horizontalalignment=ha, bbox=props,
            family="monospace")


def _save(fig, out_path: Union[str, Path]):
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    fig.tight_layout()
    fig.savefig(str(out_path), dpi=150, bbox_inches="tight")
    plt.close(fig)


# ─────────────────────────────────────────────────────────────────────
# Plot Functions
# ─────────────────────────────────────────────────────────────────────

def plot_learning_curves(
    rewards: Sequence[float],
    out_path: Union[str, Path] = "learning_curves.png",
    federation_episodes: Optional[Sequence[float]] = None,
    smooth_window: int = 10,
    title: str = "Learning Curve",
):
    """Episode reward with smoothing and federation round markers.

    Args:
        rewards: Reward per finished episode, in order.
        federation_episodes: Episode index at which each round fired.
    """
    _require_mpl()
    _apply_style()

    fig, ax = plt.subplots(figsize=(12, 6))
    episodes = list(range(1, len(rewards) + 1))
    ax.plot(episodes, rewards, alpha=0.25, color=COLORS["reward"])
    if len(rewards) >= smooth_window:
        smoothed = _smooth(rewards, smooth_window)
        x_sm = list(range(smooth_window, len(rewards) + 1))
        ax.plot(x_sm, smoothed, color=COLORS["reward"],
                label=f"Reward (smoothed, w={smooth_window})")
    else:
        ax.plot(episodes, rewards, color=COLORS["reward"], label="Reward")

    for i, ep in enumerate(federation_episodes or []):
        ax.axvline(x=ep, color=COLORS["federation"], linestyle=":", alpha=0.5,
                   label="Federation" if i == 0 else None)

    ax.set_xlabel("Episode")
    ax.set_ylabel("Episode Reward")
    ax.legend(loc="upper left")
    ax.set_title(title)
    _save(fig, out_path)


def plot_federation_deltas(
    rounds: List[Dict[str, Any]],
    out_path: Union[str, Path] = "federation_deltas.png",
    convergence_threshold: float = 0.01,
    title: str = "Model Change per Federation Round",
):
    """Average and maximum table change per round (log scale).

    Args:
        rounds: FederationRound.summary() dicts.
    """
    _require_mpl()
    _apply_style()

    fig, ax = plt.subplots(figsize=(10, 6))
    if rounds:
        x = [r["round"] for r in rounds]
        avg = [max(r["avg_delta"], 1e-12) for r in rounds]
        mx = [max(r["max_delta"], 1e-12) for r in rounds]
        ax.semilogy(x, avg, "o-", color=COLORS["delta"], label="avg Δ")
        ax.semilogy(x, mx, "s--", color=COLORS["neutral"], label="max Δ")
        converged = [r["round"] for r in rounds if r.get("converged")]
        if converged:
            _add_info_box(ax, f"converged at round {converged[0]}")
    ax.axhline(y=convergence_threshold, color="red", linestyle="--", alpha=0.5,
               label=f"threshold = {convergence_threshold}")
    ax.set_xlabel("Round")
    ax.set_ylabel("Δ (log scale)")
    ax.legend()
    ax.set_title(title)
    _save(fig, out_path)


def plot_evaluation_rewards(
    rewards: Sequence[float],
    stats: Optional[Dict[str, float]] = None,
    out_path: Union[str, Path] = "evaluation_rewards.png",
    title: str = "Frozen-Policy Evaluation",
):
    """Histogram of evaluation episode rewards with summary statistics."""
    _require_mpl()
    _apply_style()

    fig, ax = plt.subplots(figsize=(10, 6))
    bins = min(20, max(len(rewards), 1))
    ax.hist(rewards, bins=bins, color=COLORS["success"], alpha=0.75,
            edgecolor="white")
    if stats:
        ax.axvline(x=stats["avg_reward"], color=COLORS["federation"],
                   linestyle="--", label="mean")
        _add_info_box(
            ax,
            f"avg = {stats['avg_reward']:.2f}\n"
            f"std = {stats['std_reward']:.2f}\n"
            f"success = {100 * stats['success_rate']:.0f}%\n"
            f"consistency = {stats['consistency']:.2f}",
        )
        ax.legend(loc="upper left")
    ax.set_xlabel("Episode Reward")
    ax.set_ylabel("Count")
    ax.set_title(title)
    _save(fig, out_path)


def plot_epsilon_schedule(
    n_episodes: int,
    epsilon_start: float = 0.2,
    epsilon_min: float = 0.001,
    epsilon_decay: float = 0.995,
    out_path: Union[str, Path] = "epsilon_schedule.png",
    title: str = "Exploration Schedule (ε-Greedy)",
):
    """Visualise epsilon decay over episodes."""
    _require_mpl()
    _apply_style()

    epsilons = []
    eps = epsilon_start
    for _ in range(n_episodes):
        epsilons.append(eps)
        eps = max(epsilon_min, eps * epsilon_decay)

    fig, ax = plt.subplots(figsize=(10, 5))
    ax.plot(range(1, n_episodes + 1), epsilons, color=COLORS["epsilon"])
    ax.axhline(y=epsilon_min, color="red", linestyle="--", alpha=0.5,
               label=f"ε_min = {epsilon_min}")

    # Mark when epsilon hits minimum
    for i, e in enumerate(epsilons):
        if abs(e - epsilon_min) < 1e-9:
            ax.axvline(x=i + 1, color="green", linestyle=":", alpha=0.4)
            _add_info_box(ax, f"ε reaches minimum\nat episode {i + 1}")
            break

    ax.set_xlabel("Episode")
    ax.set_ylabel("ε (exploration rate)")
    ax.legend()
    ax.set_title(title)
    _save(fig, out_path)


# ─────────────────────────────────────────────────────────────────────
# JSON helpers
# ─────────────────────────────────────────────────────────────────────

def _make_serializable(obj: Any) -> Any:
    """Recursively convert numpy types for JSON serialization."""
    if isinstance(obj, dict):
        return {str(k): _make_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_make_serializable(v) for v in obj]
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    return obj


def save_results_json(
    results: Dict[str, Any],
    out_path: Union[str, Path],
):
    """Save run results to JSON with numpy-safe conversion."""
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with open(out_path, "w") as f:
        json.dump(_make_serializable(results), f, indent=2)
