"""
Tests for Configuration and Logging
===================================
"""

import logging

import pytest

from modules.utils.config import Config
from modules.utils.logger import GestureLogger, setup_logging


@pytest.fixture(autouse=True)
def fresh_config():
    Config.reset()
    yield
    Config.reset()


class TestConfig:
    """Test suite for the YAML configuration manager."""

    def test_missing_file_uses_defaults(self, tmp_path):
        config = Config().load(config_path=str(tmp_path / "missing.yaml"))

        assert config.training["epochs"] == 50
        assert config.training["learning_rate"] == pytest.approx(0.2)
        assert config.inference["interval_ms"] == 125
        assert config.artifacts["name"] == "gesture-model"

    def test_file_overrides_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("training:\n  epochs: 10\ninference:\n  interval_ms: 250\n")

        config = Config().load(config_path=str(path))

        assert config.get("training.epochs") == 10
        assert config.get("training.batch_size") == 32
        assert config.get("inference.interval_ms") == 250

    def test_overrides_win(self, tmp_path):
        config = Config().load(config_path=str(tmp_path / "missing.yaml"),
                               overrides={"camera": {"device_id": 2}})
        assert config.camera["device_id"] == 2
        assert config.camera["width"] == 640

    def test_singleton(self, tmp_path):
        Config().load(config_path=str(tmp_path / "missing.yaml"))
        assert Config() is Config()

    def test_get_default(self):
        assert Config().get("nope.missing", "fallback") == "fallback"

    def test_validation_warnings(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("training:\n  epochs: many\n")

        config = Config().load(config_path=str(path))
        warnings = config._validate()

        assert any("training.epochs" in w for w in warnings)

    def test_bundled_config_loads(self):
        config = Config().load()
        assert config._validate() == []
        assert config.model["input_size"] == 63

    def test_as_dict_is_a_copy(self, tmp_path):
        config = Config().load(config_path=str(tmp_path / "missing.yaml"))
        data = config.as_dict()
        data["training"]["epochs"] = 1
        assert config.training["epochs"] == 50


class TestGestureLogger:
    """Test suite for the label-event consumer."""

    def test_records_sequence(self):
        gesture_logger = GestureLogger(max_sequence=2)
        gesture_logger.on_label_changed(previous=None, label="open", confidence=0.9)
        gesture_logger.on_label_changed(previous="open", label="closed", confidence=0.8)
        gesture_logger.on_label_changed(previous="closed", label="open", confidence=0.7)

        assert gesture_logger.sequence == ["closed", "open"]
        assert gesture_logger.total_changes == 2

    def test_last_observed(self):
        gesture_logger = GestureLogger()
        gesture_logger.on_label_observed(label="open", confidence=0.6)
        assert gesture_logger.last_observed == ("open", 0.6)


def test_setup_logging_file(tmp_path):
    log_file = tmp_path / "logs" / "trainer.log"
    root = setup_logging(level="DEBUG", log_file=str(log_file))
    try:
        logging.getLogger("test").debug("hello")
        assert log_file.exists()
        assert root.level == logging.DEBUG
    finally:
        for handler in list(root.handlers):
            handler.close()
            root.removeHandler(handler)
