"""Tests for the training monitor and plotting helpers."""

import asyncio
import json

import pytest

from q_fedrl.config import FedRLConfig
from q_fedrl.federated.aggregation import ModelDelta
from q_fedrl.monitor import TrainingMonitor
from q_fedrl.rl.environment import StepResult
from q_fedrl.rl.train import FederatedTrainer
from q_fedrl.visualization import plot_utils


class CoinEnv:
    actions = ("heads", "tails")

    def reset(self, client_id, previous_observation=None):
        return "flip"

    def get_state(self, observation):
        return observation

    def step(self, observation, action):
        return StepResult("flip", 1.0 if action == 0 else -1.0, True)


def delta(avg, converged=False):
    return ModelDelta(
        total_delta=avg, avg_delta=avg, max_delta=avg, states_changed=1,
        total_states=1, relative_delta=0.0, converged=converged,
    )


class TestTrainingMonitor:
    """Bounded history and exports."""

    def test_record_episode(self):
        monitor = TrainingMonitor()
        monitor.record_episode(1.0, True, q_value_avg=0.5)
        entry = monitor.record_episode(-1.0, False)
        assert entry["episode"] == 2
        assert entry["success_rate"] == pytest.approx(0.5)
        assert monitor.rewards() == [1.0, -1.0]

    def test_history_bounded(self):
        monitor = TrainingMonitor(history_size=3, delta_history_size=10)
        for i in range(5):
            monitor.record_episode(float(i), False)
        assert monitor.rewards() == [2.0, 3.0, 4.0]
        assert monitor.episode_total == 5
        assert monitor.federation_marks.maxlen == 3

    def test_record_federation(self):
        monitor = TrainingMonitor()
        monitor.record_episode(1.0, True)
        mark = monitor.record_federation(1, delta(0.002, converged=True), [0.5, 0.25])
        assert mark == {
            "round": 1,
            "episode": 1,
            "avg_delta": 0.002,
            "max_delta": 0.002,
            "converged": True,
            "client_deltas": [0.5, 0.25],
        }
        assert monitor.summary()["last_avg_delta"] == 0.002

    def test_csv_export(self):
        monitor = TrainingMonitor()
        monitor.record_episode(2.5, True, q_value_avg=0.125)
        lines = monitor.export("csv").splitlines()
        assert lines[0] == "episode,reward,successRate,qValueAvg"
        assert lines[1] == "1,2.500,1.000,0.125"

    def test_json_export(self):
        monitor = TrainingMonitor()
        monitor.record_episode(1.0, True)
        monitor.record_federation(1, delta(0.5))
        data = json.loads(monitor.export("json"))
        assert len(data["history"]) == 1
        assert data["federation"][0]["round"] == 1

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            TrainingMonitor().export("xml")

    def test_reset(self):
        monitor = TrainingMonitor()
        monitor.record_episode(1.0, True)
        monitor.reset()
        assert monitor.summary()["episodes"] == 0
        assert monitor.rewards() == []

    def test_plugs_into_trainer(self):
        monitor = TrainingMonitor()
        config = FedRLConfig()
        config.training.n_clients = 2
        config.federation.auto_federate = True
        config.federation.federation_interval = 2
        trainer = FederatedTrainer(
            CoinEnv(),
            config,
            on_episode_end=monitor.on_episode_end,
            on_federation=monitor.on_federation,
        )
        asyncio.run(trainer.train(n_episodes=4, verbose=False))
        assert monitor.episode_total == 8
        assert [m["round"] for m in monitor.federation_marks] == [1, 2]
        assert {e["client"] for e in monitor.history} == {0, 1}


@pytest.mark.skipif(not plot_utils.MPL_AVAILABLE, reason="matplotlib not installed")
class TestPlots:
    """Figures are written to disk."""

    def test_learning_curves(self, tmp_path):
        out = tmp_path / "curves.png"
        plot_utils.plot_learning_curves(
            [float(i % 7) for i in range(60)],
            federation_episodes=[20, 40],
            out_path=out,
        )
        assert out.exists()

    def test_results_json(self, tmp_path):
        out = tmp_path / "results.json"
        plot_utils.save_results_json({"rounds": [{"avg_delta": 0.1}]}, out)
        assert json.loads(out.read_text())["rounds"][0]["avg_delta"] == 0.1
