"""Tests for configuration and logging setup."""

import logging

import pytest

from q_fedrl.config import AgentConfig, FederationConfig, FedRLConfig
from q_fedrl.logging_utils import LevelFilter, configure_logging


class TestFedRLConfig:
    """Defaults, validation and JSON persistence."""

    def test_defaults(self):
        config = FedRLConfig()
        assert config.agent.alpha == 0.1
        assert config.agent.gamma == 0.95
        assert config.agent.epsilon_start == 0.2
        assert config.agent.epsilon_min == 0.001
        assert config.federation.federation_interval == 100
        assert not config.federation.auto_federate
        assert config.federation.strategy == "episodes"
        assert config.evaluation.default_test_episodes == 50

    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            FedRLConfig(federation=FederationConfig(strategy="random"))

    def test_unknown_weighting(self):
        with pytest.raises(ValueError):
            FedRLConfig(federation=FederationConfig(weighting="loss"))

    def test_no_actions(self):
        with pytest.raises(ValueError):
            FedRLConfig(agent=AgentConfig(n_actions=0))

    def test_dict_roundtrip(self):
        config = FedRLConfig(seed=7)
        config.federation.auto_federate = True
        restored = FedRLConfig.from_dict(config.to_dict())
        assert restored.seed == 7
        assert restored.federation.auto_federate
        assert restored.evaluation.test_episode_options == config.evaluation.test_episode_options

    def test_save_load(self, tmp_path):
        config = FedRLConfig()
        config.training.n_clients = 9
        path = tmp_path / "nested" / "config.json"
        config.save(path)
        assert FedRLConfig.load(path).training.n_clients == 9


class TestLogging:
    """Handler installation."""

    def _restore(self, saved, level):
        root = logging.getLogger()
        for handler in list(root.handlers):
            root.removeHandler(handler)
            if handler not in saved:
                handler.close()
        for handler in saved:
            root.addHandler(handler)
        root.setLevel(level)

    def test_level_filter(self):
        level_filter = LevelFilter(["info", "ERROR"])
        info = logging.LogRecord("x", logging.INFO, "", 0, "m", None, None)
        debug = logging.LogRecord("x", logging.DEBUG, "", 0, "m", None, None)
        assert level_filter.filter(info)
        assert not level_filter.filter(debug)

    def test_file_handler_filters_levels(self, tmp_path):
        root = logging.getLogger()
        saved, level = list(root.handlers), root.level
        log_file = tmp_path / "logs" / "run.log"
        try:
            configure_logging("DEBUG", log_file=log_file, file_levels=["WARNING"])
            log = logging.getLogger("q_fedrl.test")
            log.info("quiet")
            log.warning("loud")
            for handler in root.handlers:
                handler.flush()
        finally:
            self._restore(saved, level)
        text = log_file.read_text(encoding="utf-8")
        assert "loud" in text
        assert "quiet" not in text

    def test_console_only(self):
        root = logging.getLogger()
        saved, level = list(root.handlers), root.level
        try:
            configure_logging(logging.WARNING)
            handlers = list(root.handlers)
        finally:
            self._restore(saved, level)
        assert len(handlers) == 1
        assert handlers[0].level == logging.WARNING
