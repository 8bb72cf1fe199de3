#!/usr/bin/env python3
"""Federated Q-learning experiment runner.

Trains a client population on one of the example environments,
switches to inference, evaluates the aggregated policy and writes
metrics, the checkpoint and plots to an output directory.

Usage:
    # Grid world, 4 clients, federation every 50 episodes
    python experiments/run_federated_training.py --env grid --clients 4 --episodes 300

    # Async corridor with the plateau trigger
    python experiments/run_federated_training.py --env corridor --strategy performance

    # Evaluate a saved checkpoint only
    python experiments/run_federated_training.py --env grid --phase eval \
        --checkpoint-dir outputs/grid_4c
"""

import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import argparse
import asyncio
import logging
import time
from datetime import datetime

import numpy as np

from q_fedrl.config import FedRLConfig
from q_fedrl.envs import ContinuousCorridor, GridWorld
from q_fedrl.federated.persistence import JsonFilePersistence
from q_fedrl.logging_utils import configure_logging
from q_fedrl.metrics.kpi import KPIDefinition, MetricsConfig
from q_fedrl.monitor import TrainingMonitor
from q_fedrl.session import FederatedSession
from q_fedrl.visualization import (
    MPL_AVAILABLE,
    plot_epsilon_schedule,
    plot_evaluation_rewards,
    plot_federation_deltas,
    plot_learning_curves,
    save_results_json,
)


def make_env(name: str):
    """Build the named example environment and its KPI configuration."""
    if name == "grid":
        env = GridWorld(size=5, max_steps=100)
        metrics_config = MetricsConfig(
            is_successful=env.reached_goal,
            kpis={
                "distance_to_goal": KPIDefinition(
                    compute=lambda s: abs(env.goal[0] - s.x) + abs(env.goal[1] - s.y),
                    aggregate="min",
                    display="Distance to goal",
                ),
            },
        )
        return env, metrics_config

    env = ContinuousCorridor()
    metrics_config = MetricsConfig(
        is_successful=lambda state, record: state.position >= 1.0,
        kpis={
            "max_position": KPIDefinition(compute=lambda s: s.position, aggregate="max"),
            "top_speed": KPIDefinition(compute=lambda s: abs(s.velocity), aggregate="max"),
        },
    )
    return env, metrics_config


def create_config(args) -> FedRLConfig:
    config = FedRLConfig(seed=args.seed)
    config.training.n_clients = args.clients
    config.training.app_name = f"q-fedrl-{args.env}"
    config.federation.auto_federate = not args.no_federation
    config.federation.federation_interval = args.interval
    config.federation.strategy = args.strategy
    config.federation.weighting = args.weighting
    config.evaluation.default_test_episodes = args.test_episodes
    return config


def run_training(args, output_dir: Path) -> dict:
    """Train, switch to inference and evaluate.

    Returns:
        Dict with training and evaluation metrics.
    """
    print(f"\n{'=' * 60}")
    print(f"q-fedrl: env={args.env}, clients={args.clients}, episodes={args.episodes}")
    print(f"{'=' * 60}")

    env, metrics_config = make_env(args.env)
    config = create_config(args)
    monitor = TrainingMonitor(history_size=10_000, delta_history_size=1_000)
    session = FederatedSession(
        env,
        config,
        persistence=JsonFilePersistence(output_dir, app_name=config.training.app_name),
        metrics_config=metrics_config,
        on_episode_end=monitor.on_episode_end,
        on_federation=monitor.on_federation,
        notify=lambda message: print(f"  {message}"),
    )
    print(f"  Actions: {len(env.actions)} ({', '.join(env.actions)})")
    print(f"  Trigger: {config.federation.strategy}, "
          f"auto={'on' if config.federation.auto_federate else 'off'}, "
          f"interval={config.federation.federation_interval}")

    start_time = time.time()
    result = asyncio.run(session.trainer.train(n_episodes=args.episodes, log_every=args.log_every))
    train_time = time.time() - start_time

    if result.n_rounds == 0:
        print("  No automatic rounds ran; federating once before evaluation")
        session.federate()

    session.switch_to_inference()
    evaluation = asyncio.run(session.evaluate(args.test_episodes))
    session.export_model()

    rewards = result.episode_rewards
    avg_final_reward = float(np.mean(rewards[-100:])) if rewards else 0.0
    rounds = [r.summary() for r in session.coordinator.history]
    converged_round = next((r["round"] for r in rounds if r["converged"]), None)

    metrics = {
        "env": args.env,
        "n_clients": args.clients,
        "seed": args.seed,
        "strategy": args.strategy,
        "weighting": args.weighting,
        "n_ticks": result.n_ticks,
        "n_episodes": result.n_episodes,
        "n_rounds": session.coordinator.round_number,
        "converged_round": converged_round,
        "final_epsilon": result.final_epsilon,
        "avg_final_reward": avg_final_reward,
        "global_states": len(session.inference_agent.get_model()) if session.inference_agent else 0,
        "evaluation": evaluation.summary() if evaluation else None,
        "evaluation_kpis": evaluation.kpis if evaluation else None,
        "train_seconds": train_time,
        "timestamp": datetime.now().isoformat(),
    }

    save_results_json(metrics, output_dir / "metrics.json")
    save_results_json({"rounds": rounds}, output_dir / "rounds.json")
    (output_dir / "history.csv").write_text(monitor.export("csv"))
    config.save(output_dir / "config.json")

    if MPL_AVAILABLE and not args.no_plots:
        plot_learning_curves(
            rewards,
            out_path=output_dir / "learning_curves.png",
            federation_episodes=[m["episode"] for m in monitor.federation_marks],
            title=f"Learning Curve ({args.env}, {args.clients} clients)",
        )
        plot_federation_deltas(
            rounds,
            out_path=output_dir / "federation_deltas.png",
            convergence_threshold=config.federation.convergence_threshold,
        )
        plot_epsilon_schedule(
            args.episodes,
            epsilon_start=config.agent.epsilon_start,
            epsilon_min=config.agent.epsilon_min,
            epsilon_decay=config.agent.epsilon_decay,
            out_path=output_dir / "epsilon_schedule.png",
        )
        if evaluation is not None:
            plot_evaluation_rewards(
                [r.total_reward for r in evaluation.episodes],
                stats=evaluation.stats,
                out_path=output_dir / "evaluation_rewards.png",
            )

    print(f"\n--- Results Summary ---")
    print(f"  Episodes:          {metrics['n_episodes']}")
    print(f"  Rounds:            {metrics['n_rounds']}")
    print(f"  Converged round:   {metrics['converged_round']}")
    print(f"  Avg Final Reward:  {metrics['avg_final_reward']:.3f}")
    print(f"  Global states:     {metrics['global_states']}")
    if evaluation is not None:
        print(f"  Eval reward:       {evaluation.avg_reward:.3f} ± {evaluation.std_reward:.3f}")
        print(f"  Eval success:      {100 * evaluation.success_rate:.0f}%")
        print(f"  Eval consistency:  {evaluation.consistency:.2f}")
    print(f"  Runtime:           {train_time:.1f}s")
    print(f"\n  Saved to: {output_dir}")

    return metrics


def run_evaluation_only(args, checkpoint_dir: Path) -> dict:
    """Evaluate the latest checkpoint in ``checkpoint_dir`` without training."""
    print(f"\n{'=' * 60}")
    print(f"q-fedrl evaluation: env={args.env}, checkpoint={checkpoint_dir}")
    print(f"{'=' * 60}")

    env, metrics_config = make_env(args.env)
    config = create_config(args)
    session = FederatedSession(
        env,
        config,
        persistence=JsonFilePersistence(checkpoint_dir, app_name=config.training.app_name),
        metrics_config=metrics_config,
        notify=lambda message: print(f"  {message}"),
    )
    if not session.persistence.has_checkpoint():
        print(f"  No checkpoint at {session.persistence.latest_path}")
        return {}

    # FedAvg of identical client tables is that table.
    session.load_checkpoint()
    session.switch_to_inference()

    evaluation = asyncio.run(session.evaluate(args.test_episodes))
    if evaluation is None:
        return {}
    metrics = {
        "env": args.env,
        "checkpoint": str(session.persistence.latest_path),
        "evaluation": evaluation.summary(),
        "evaluation_kpis": evaluation.kpis,
        "timestamp": datetime.now().isoformat(),
    }
    save_results_json(metrics, checkpoint_dir / "eval_metrics.json")

    print(f"\n--- Evaluation Results ---")
    print(f"  Avg Reward:   {evaluation.avg_reward:.3f} ± {evaluation.std_reward:.3f}")
    print(f"  Success:      {100 * evaluation.success_rate:.0f}%")
    print(f"  Consistency:  {evaluation.consistency:.2f}")
    return metrics


def main():
    parser = argparse.ArgumentParser(description="Federated Q-learning experiment runner")
    parser.add_argument("--env", type=str, default="grid", choices=["grid", "corridor"],
                        help="Example environment")
    parser.add_argument("--phase", type=str, default="train", choices=["train", "eval"],
                        help="Train then evaluate, or evaluate a checkpoint")
    parser.add_argument("--clients", type=int, default=4, help="Number of clients")
    parser.add_argument("--episodes", type=int, default=300,
                        help="Target average episodes per client")
    parser.add_argument("--interval", type=int, default=50,
                        help="Average episodes between federation rounds")
    parser.add_argument("--strategy", type=str, default="episodes",
                        choices=["episodes", "performance"], help="Federation trigger")
    parser.add_argument("--weighting", type=str, default="uniform",
                        choices=["uniform", "samples"], help="FedAvg client weighting")
    parser.add_argument("--no-federation", action="store_true",
                        help="Disable automatic federation rounds")
    parser.add_argument("--test-episodes", type=int, default=50,
                        help="Evaluation episodes")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--log-every", type=int, default=50,
                        help="Average episodes between progress logs")
    parser.add_argument("--output-dir", type=str, default=None,
                        help="Override output directory")
    parser.add_argument("--checkpoint-dir", type=str, default=None,
                        help="Checkpoint directory (required for eval phase)")
    parser.add_argument("--no-plots", action="store_true", help="Skip figures")
    parser.add_argument("--log-level", type=str, default="INFO", help="Console log level")

    args = parser.parse_args()

    if args.phase == "train":
        output_dir = (
            Path(args.output_dir) if args.output_dir
            else Path("outputs") / f"{args.env}_{args.clients}c"
        )
        output_dir.mkdir(parents=True, exist_ok=True)
        configure_logging(args.log_level, log_file=output_dir / "run.log")
        run_training(args, output_dir)
    else:
        if not args.checkpoint_dir:
            parser.error("--checkpoint-dir is required for eval phase")
        configure_logging(args.log_level)
        run_evaluation_only(args, Path(args.checkpoint_dir))

    logging.shutdown()


if __name__ == "__main__":
    main()
