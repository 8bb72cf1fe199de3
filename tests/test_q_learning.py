"""Tests for the discretizer and the tabular Q-learning agent.

Verifies bucket boundaries, the TD update rule, epsilon-greedy tie
breaking, epsilon decay, inference purity and model value semantics.
"""

import math

import numpy as np
import pytest

from q_fedrl.config import AgentConfig
from q_fedrl.rl.discretizer import StateDiscretizer, discretize, discretize_state
from q_fedrl.rl.q_learning import (
    TabularQAgent,
    select_action,
    softmax_select,
    td_error,
    update_q_value,
)


class TestDiscretize:
    """Bucket mapping and clamping."""

    def test_min_maps_to_first_bucket(self):
        assert discretize(0.0, 10, 0.0, 1.0) == 0

    def test_max_maps_to_last_bucket(self):
        """The upper edge belongs to the last bucket, not bucket ``bins``."""
        assert discretize(1.0, 10, 0.0, 1.0) == 9

    def test_out_of_range_clamps(self):
        assert discretize(-5.0, 4, 0.0, 1.0) == 0
        assert discretize(7.0, 4, 0.0, 1.0) == 3

    def test_infinite_inputs_clamp(self):
        assert discretize(math.inf, 10, 0.0, 1.0) == 9
        assert discretize(-math.inf, 10, 0.0, 1.0) == 0
        assert discretize_state([math.inf, -math.inf], [4, 4], [0, 0], [1, 1]) == "3,0"

    def test_nan_maps_to_first_bucket(self):
        assert discretize(math.nan, 10, 0.0, 1.0) == 0

    def test_midpoint(self):
        assert discretize(0.5, 4, 0.0, 1.0) == 2

    def test_degenerate_range(self):
        assert discretize(3.0, 5, 1.0, 1.0) == 0

    def test_state_key_order(self):
        assert discretize_state([0.5, 9.0], [4, 3], [0, 0], [1, 10]) == "2,2"
        assert discretize_state([0.0, 1.0], [2, 2], [0, 0], [1, 1]) == "0,1"


class TestStateDiscretizer:
    """Reusable discretizer wrapper."""

    def test_call(self):
        disc = StateDiscretizer(bins=[10, 5], mins=[0.0, -1.0], maxs=[1.0, 1.0])
        assert disc([0.95, 0.0]) == "9,2"

    def test_n_states(self):
        disc = StateDiscretizer(bins=[10, 5], mins=[0, 0], maxs=[1, 1])
        assert disc.n_states == 50
        assert disc.n_dims == 2

    def test_length_mismatch_rejected(self):
        with pytest.raises(ValueError):
            StateDiscretizer(bins=[2, 2], mins=[0], maxs=[1, 1])

    def test_wrong_observation_size(self):
        disc = StateDiscretizer(bins=[2], mins=[0], maxs=[1])
        with pytest.raises(ValueError):
            disc([0.1, 0.2])


class TestUpdateRule:
    """Scalar TD update."""

    def test_known_value(self):
        new_q = update_q_value(0.5, 10.0, 0.8, alpha=0.1, gamma=0.9)
        assert new_q == pytest.approx(1.522)

    def test_zero_alpha_keeps_value(self):
        assert update_q_value(3.0, 10.0, 5.0, alpha=0.0, gamma=0.9) == 3.0

    def test_full_alpha_no_discount_sets_reward(self):
        assert update_q_value(3.0, 7.0, 100.0, alpha=1.0, gamma=0.0) == pytest.approx(7.0)

    def test_td_error(self):
        assert td_error(1.0, 0.5, 2.0, 0.5) == pytest.approx(1.5)


class TestActionSelection:
    """Pure selection helpers."""

    def test_greedy_ties_go_to_lowest_index(self):
        rng = np.random.default_rng(0)
        assert select_action([1.0, 3.0, 3.0], 0.0, rng) == 1
        assert select_action([0.0, 0.0, 0.0], 0.0, rng) == 0

    def test_full_exploration_covers_actions(self):
        rng = np.random.default_rng(0)
        picks = {select_action([0.0, 1.0, 0.0], 1.0, rng) for _ in range(200)}
        assert picks == {0, 1, 2}

    def test_softmax_prefers_higher_values(self):
        rng = np.random.default_rng(1)
        picks = [softmax_select([0.0, 5.0], 0.5, rng) for _ in range(200)]
        assert sum(picks) > 180

    def test_softmax_zero_temperature_is_greedy(self):
        rng = np.random.default_rng(1)
        assert softmax_select([0.0, 2.0, 1.0], 0.0, rng) == 1


class TestTabularQAgent:
    """Agent behaviour."""

    def setup_method(self):
        self.config = AgentConfig(alpha=0.1, gamma=0.9, epsilon_start=0.5,
                                  epsilon_decay=0.5, epsilon_min=0.1, n_actions=3)
        self.agent = TabularQAgent(self.config, seed=42)

    def test_unseen_state_is_zero_and_materialized(self):
        q = self.agent.get_q_values("new")
        np.testing.assert_array_equal(q, np.zeros(3))
        assert "new" in self.agent.get_model()

    def test_learn_updates_one_entry(self):
        self.agent.q_table["s"] = np.array([0.5, 0.0, 0.0])
        self.agent.q_table["t"] = np.array([0.0, 0.8, 0.2])
        error = self.agent.learn("s", 0, 10.0, "t")
        assert error == pytest.approx(10.0 + 0.9 * 0.8 - 0.5)
        assert self.agent.q_table["s"][0] == pytest.approx(1.522)
        np.testing.assert_array_equal(self.agent.q_table["s"][1:], [0.0, 0.0])
        np.testing.assert_array_equal(self.agent.q_table["t"], [0.0, 0.8, 0.2])

    def test_learn_materializes_next_state(self):
        self.agent.learn("a", 1, 1.0, "b")
        model = self.agent.get_model()
        assert set(model) == {"a", "b"}
        assert model["a"][1] == pytest.approx(0.1)

    def test_epsilon_decay_monotone_with_floor(self):
        values = [self.agent.epsilon]
        for _ in range(20):
            self.agent.decay_epsilon()
            values.append(self.agent.epsilon)
        assert all(b <= a for a, b in zip(values, values[1:]))
        assert min(values) == pytest.approx(0.1)

    def test_reset_restores_epsilon_and_clears_table(self):
        self.agent.learn("a", 0, 1.0, "b")
        self.agent.decay_epsilon()
        self.agent.reset()
        assert self.agent.epsilon == pytest.approx(0.5)
        assert self.agent.n_states == 0

    def test_get_model_is_a_copy(self):
        self.agent.learn("a", 0, 1.0, "b")
        model = self.agent.get_model()
        model["a"][0] = 999.0
        model["zzz"] = np.ones(3)
        assert self.agent.q_table["a"][0] == pytest.approx(0.1)
        assert "zzz" not in self.agent.q_table

    def test_set_model_is_a_copy(self):
        table = {"a": [1.0, 2.0, 3.0]}
        self.agent.set_model(table)
        table["a"][0] = -1.0
        assert self.agent.get_q_values("a")[0] == pytest.approx(1.0)

    def test_set_model_pads_short_rows(self):
        self.agent.set_model({"a": [1.0]})
        np.testing.assert_array_equal(self.agent.get_q_values("a"), [1.0, 0.0, 0.0])

    def test_greedy_choice(self):
        agent = TabularQAgent(AgentConfig(epsilon_start=0.0, epsilon_min=0.0, n_actions=3))
        agent.set_model({"s": [0.0, 2.0, 2.0]})
        assert agent.choose_action("s") == 1

    def test_update_hyperparameters(self):
        self.agent.update_hyperparameters(alpha=0.5, gamma=0.1)
        assert self.agent.config.alpha == 0.5
        assert self.agent.config.gamma == 0.1
        assert self.config.alpha == 0.1  # caller's config untouched


class TestInferenceMode:
    """Frozen agents neither learn nor explore."""

    def setup_method(self):
        self.agent = TabularQAgent(
            AgentConfig(epsilon_start=1.0, epsilon_min=1.0, n_actions=2), seed=3
        )
        self.agent.set_model({"s": [0.0, 1.0], "t": [2.0, 0.0]})
        self.agent.set_inference_mode(True)

    def test_learn_is_noop(self):
        before = self.agent.get_model()
        for _ in range(50):
            assert self.agent.learn("s", 0, 100.0, "t") == 0.0
            self.agent.learn("unseen", 1, -5.0, "other")
        after = self.agent.get_model()
        assert set(before) == set(after)
        for key in before:
            assert before[key].tobytes() == after[key].tobytes()

    def test_choose_action_is_greedy_despite_epsilon(self):
        assert self.agent.epsilon == 1.0
        assert all(self.agent.choose_action("s") == 1 for _ in range(50))
        assert all(self.agent.choose_action("t") == 0 for _ in range(50))

    def test_choose_action_does_not_grow_table(self):
        self.agent.choose_action("never-seen")
        assert self.agent.n_states == 2

    def test_decay_is_noop(self):
        self.agent.decay_epsilon()
        assert self.agent.epsilon == 1.0
