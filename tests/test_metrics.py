"""Tests for KPI tracking.

Verifies aggregators, tracker validation, per-step accumulation,
failure recovery and cross-episode statistics.
"""

import math

import pytest

from q_fedrl.errors import KPIConfigError
from q_fedrl.metrics.kpi import (
    AGGREGATORS,
    EpisodeRecord,
    EpisodeTracker,
    KPIDefinition,
    MetricsConfig,
    aggregate_episodes,
    format_kpi,
    reward_based_config,
)


class TestAggregators:
    """Built-in reductions."""

    def test_values(self):
        values = [1.0, 0.0, 3.0]
        assert AGGREGATORS["sum"](values) == 4.0
        assert AGGREGATORS["avg"](values) == pytest.approx(4.0 / 3.0)
        assert AGGREGATORS["max"](values) == 3.0
        assert AGGREGATORS["min"](values) == 0.0
        assert AGGREGATORS["last"](values) == 3.0
        assert AGGREGATORS["first"](values) == 1.0
        assert AGGREGATORS["count"](values) == 2.0
        assert AGGREGATORS["percentage"]([1.0, 0.0, 1.0, 0.0]) == pytest.approx(50.0)

    def test_empty(self):
        for name in ("sum", "avg", "max", "last", "first", "count", "percentage"):
            assert AGGREGATORS[name]([]) == 0.0
        assert math.isinf(AGGREGATORS["min"]([]))


class TestTrackerValidation:
    """Configuration errors surface at construction."""

    def test_unknown_aggregator(self):
        config = MetricsConfig(kpis={"x": KPIDefinition(compute=lambda s: 1, aggregate="median")})
        with pytest.raises(KPIConfigError):
            EpisodeTracker(config)

    def test_unknown_aggregator_is_value_error(self):
        config = MetricsConfig(kpis={"x": KPIDefinition(compute=lambda s: 1, aggregate="median")})
        with pytest.raises(ValueError):
            EpisodeTracker(config)

    def test_non_callable_compute(self):
        config = MetricsConfig(kpis={"x": KPIDefinition(compute=42)})
        with pytest.raises(TypeError):
            EpisodeTracker(config)


class TestEpisodeTracker:
    """Per-episode lifecycle."""

    def setup_method(self):
        self.config = MetricsConfig(
            kpis={
                "distance": KPIDefinition(compute=lambda s: s["dist"], aggregate="min"),
                "on_target": KPIDefinition(compute=lambda s: 1 if s["dist"] < 1 else 0, aggregate="sum"),
            },
            is_successful=lambda state, record: record.kpis["distance"] < 1,
            summary_metrics=lambda record: {"reward_per_step": record.total_reward / record.steps},
        )
        self.tracker = EpisodeTracker(self.config)

    def _play(self, distances, rewards):
        record = self.tracker.init()
        for dist, reward in zip(distances, rewards):
            self.tracker.step(record, {"dist": dist}, 0, reward)
        return self.tracker.finalize(record, {"dist": distances[-1]})

    def test_init_is_empty(self):
        record = self.tracker.init()
        assert record.steps == 0
        assert record.total_reward == 0.0
        assert record.kpi_values == {"distance": [], "on_target": []}

    def test_accumulates(self):
        record = self._play([3.0, 0.5, 2.0], [-1.0, 5.0, -1.0])
        assert record.steps == 3
        assert record.total_reward == pytest.approx(3.0)
        assert record.kpi_values["distance"] == [3.0, 0.5, 2.0]
        assert record.kpis == {"distance": 0.5, "on_target": 1.0}
        assert len(record.trajectory) == 3
        assert record.trajectory[1]["kpis"]["on_target"] == 1.0

    def test_success_predicate(self):
        assert self._play([3.0, 0.5], [0.0, 0.0]).success
        assert not self._play([3.0, 2.0], [10.0, 10.0]).success

    def test_summary_metrics(self):
        record = self._play([3.0, 0.5], [2.0, 4.0])
        assert record.summary == {"reward_per_step": pytest.approx(3.0)}

    def test_kpi_error_counts_as_zero(self):
        tracker = EpisodeTracker(MetricsConfig(kpis={
            "fragile": KPIDefinition(compute=lambda s: s["missing"], aggregate="sum"),
        }))
        record = tracker.init()
        tracker.step(record, {}, 0, 1.0)
        tracker.step(record, {"missing": 2.0}, 0, 1.0)
        tracker.finalize(record, {})
        assert record.kpi_values["fragile"] == [0.0, 2.0]
        assert record.steps == 2

    def test_failing_success_predicate(self):
        def boom(state, record):
            raise RuntimeError("nope")

        tracker = EpisodeTracker(MetricsConfig(is_successful=boom))
        record = tracker.init()
        tracker.step(record, {}, 0, 5.0)
        assert tracker.finalize(record, {}).success is False

    def test_failing_summary(self):
        tracker = EpisodeTracker(MetricsConfig(summary_metrics=lambda r: 1 / 0))
        record = tracker.init()
        assert tracker.finalize(record, {}).summary == {}

    def test_default_success_is_positive_reward(self):
        tracker = EpisodeTracker()
        record = tracker.init()
        tracker.step(record, {}, 0, 0.5)
        assert tracker.finalize(record, {}).success
        record = tracker.init()
        tracker.step(record, {}, 0, -0.5)
        assert not tracker.finalize(record, {}).success

    def test_reward_based_config(self):
        tracker = EpisodeTracker(reward_based_config())
        record = tracker.init()
        tracker.step(record, {}, 0, 2.0)
        assert tracker.finalize(record, {}).success

    def test_trajectory_optional(self):
        tracker = EpisodeTracker(record_trajectory=False)
        record = tracker.init()
        tracker.step(record, {"x": 1}, 0, 1.0)
        assert record.trajectory == []


class TestHelpers:
    """Formatting and cross-episode aggregation."""

    def test_format_default(self):
        assert format_kpi(3.14159, KPIDefinition(compute=lambda s: 0)) == "3.14"
        assert format_kpi("n/a", KPIDefinition(compute=lambda s: 0)) == "n/a"

    def test_format_custom(self):
        kpi = KPIDefinition(compute=lambda s: 0, format=lambda v, s: f"{v:.0f}/{s['total']}")
        assert format_kpi(3, kpi, {"total": 8}) == "3/8"

    def test_aggregate_episodes(self):
        records = [
            EpisodeRecord(steps=10, total_reward=5.0, success=True, kpis={"k": 1.0}),
            EpisodeRecord(steps=20, total_reward=-1.0, success=False, kpis={"k": 3.0}),
        ]
        stats = aggregate_episodes(records)
        assert stats["episodes"] == 2
        assert stats["success_count"] == 1
        assert stats["success_rate"] == pytest.approx(0.5)
        assert stats["avg_reward"] == pytest.approx(2.0)
        assert stats["avg_steps"] == pytest.approx(15.0)
        assert stats["kpis"]["k"] == {"avg": 2.0, "min": 1.0, "max": 3.0}

    def test_aggregate_no_episodes(self):
        assert aggregate_episodes([]) == {}
