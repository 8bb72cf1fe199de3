"""Training history for dashboards and post-run analysis.

The monitor's ``on_episode_end`` and ``on_federation`` methods match the
trainer hook signatures, so a monitor can be plugged straight into a
FederatedTrainer or FederatedSession.
"""

import csv
import io
import json
from collections import deque
from typing import Any, Deque, Dict, List, Optional

import numpy as np


class TrainingMonitor:
    """Bounded per-episode and per-round history.

    Attributes:
        history: Recent episode entries (episode, client, reward,
            success_rate, q_value_avg).
        federation_marks: Recent federation entries (round, episode,
            avg_delta, max_delta, converged, client_deltas).
    """

    def __init__(self, history_size: int = 300, delta_history_size: int = 50):
        self.history_size = history_size
        self.history: Deque[Dict[str, Any]] = deque(maxlen=history_size)
        self.federation_marks: Deque[Dict[str, Any]] = deque(
            maxlen=min(delta_history_size, history_size)
        )
        self.episode_total = 0
        self.success_total = 0

    def record_episode(
        self,
        reward: float,
        success: bool,
        q_value_avg: float = 0.0,
        client_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Append one finished episode."""
        self.episode_total += 1
        self.success_total += int(bool(success))
        entry = {
            "episode": self.episode_total,
            "client": client_id,
            "reward": float(reward),
            "success_rate": self.success_total / self.episode_total,
            "q_value_avg": float(q_value_avg),
        }
        self.history.append(entry)
        return entry

    def record_federation(self, round_number: int, delta, client_deltas: Optional[List[float]] = None) -> Dict[str, Any]:
        """Append one federation round."""
        mark = {
            "round": int(round_number),
            "episode": self.episode_total,
            "avg_delta": float(delta.avg_delta),
            "max_delta": float(delta.max_delta),
            "converged": bool(delta.converged),
            "client_deltas": list(client_deltas or []),
        }
        self.federation_marks.append(mark)
        return mark

    def on_episode_end(self, client, record) -> None:
        self.record_episode(
            reward=record.total_reward,
            success=record.success,
            q_value_avg=client.agent.mean_q_value(),
            client_id=client.client_id,
        )

    def on_federation(self, global_model, round_number, delta) -> None:
        self.record_federation(round_number, delta)

    def rewards(self) -> List[float]:
        return [e["reward"] for e in self.history]

    def summary(self) -> Dict[str, Any]:
        rewards = self.rewards()
        return {
            "episodes": self.episode_total,
            "success_rate": self.success_total / self.episode_total if self.episode_total else 0.0,
            "recent_avg_reward": float(np.mean(rewards)) if rewards else 0.0,
            "rounds": len(self.federation_marks),
            "last_avg_delta": self.federation_marks[-1]["avg_delta"] if self.federation_marks else None,
        }

    def export_csv(self) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(["episode", "reward", "successRate", "qValueAvg"])
        for e in self.history:
            writer.writerow([
                e["episode"],
                f"{e['reward']:.3f}",
                f"{e['success_rate']:.3f}",
                f"{e['q_value_avg']:.3f}",
            ])
        return buf.getvalue()

    def export_json(self) -> str:
        return json.dumps(
            {"history": list(self.history), "federation": list(self.federation_marks)},
            indent=2,
        )

    def export(self, fmt: str = "csv") -> str:
        if fmt == "csv":
            return self.export_csv()
        if fmt == "json":
            return self.export_json()
        raise ValueError(f"Unknown export format: {fmt!r}")

    def reset(self) -> None:
        self.history.clear()
        self.federation_marks.clear()
        self.episode_total = 0
        self.success_total = 0
