"""Unit tests for lsmsimulator logging configuration."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import lsmsimulator
from lsmsimulator.logging_config import LOGGER_NAME, JsonFormatter, _get_level, _get_logger


class TestSilentByDefault:
    def test_import_produces_no_log_output(self, capfd):
        import importlib

        importlib.reload(lsmsimulator)
        lsmsimulator.Simulator().run_until(1.0)

        captured = capfd.readouterr()
        assert captured.out == ""
        assert captured.err == ""

    def test_logger_has_null_handler(self):
        logger = logging.getLogger(LOGGER_NAME)
        assert any(isinstance(h, logging.NullHandler) for h in logger.handlers)


class TestEnableConsoleLogging:
    def test_adds_stream_handler_and_sets_level(self):
        lsmsimulator.enable_console_logging(level="DEBUG")

        logger = _get_logger()
        assert any(type(h) is logging.StreamHandler for h in logger.handlers)
        assert logger.level == logging.DEBUG

    def test_outputs_to_stderr(self, capfd):
        lsmsimulator.enable_console_logging(level="INFO")
        lsmsimulator.Simulator()

        captured = capfd.readouterr()
        assert "Simulator reset" in captured.err

    def test_custom_format(self, capfd):
        lsmsimulator.enable_console_logging(level="INFO", format="[CUSTOM] %(message)s")
        logging.getLogger(f"{LOGGER_NAME}.test").info("hello")

        captured = capfd.readouterr()
        assert "[CUSTOM] hello" in captured.err


class TestEnableFileLogging:
    def test_writes_to_file(self, tmp_path):
        path = tmp_path / "nested" / "lsm.log"
        handler = lsmsimulator.enable_file_logging(path, level="INFO")

        logging.getLogger(f"{LOGGER_NAME}.test").info("file message")
        handler.flush()

        assert "file message" in path.read_text()

    def test_rotation_settings(self, tmp_path):
        handler = lsmsimulator.enable_file_logging(tmp_path / "lsm.log", max_bytes=1000, backup_count=2)
        assert handler.maxBytes == 1000
        assert handler.backupCount == 2


class TestJsonLogging:
    def test_formatter_output(self):
        record = logging.LogRecord(
            name="lsmsimulator.simulation",
            level=logging.WARNING,
            pathname=__file__,
            lineno=1,
            msg="stall of %.1fs",
            args=(0.5,),
            exc_info=None,
        )
        data = json.loads(JsonFormatter().format(record))
        assert data["level"] == "WARNING"
        assert data["logger"] == "lsmsimulator.simulation"
        assert data["message"] == "stall of 0.5s"
        assert "timestamp" in data

    def test_json_to_file(self, tmp_path):
        path = tmp_path / "lsm.jsonl"
        handler = lsmsimulator.enable_json_logging(level="INFO", path=path)
        logging.getLogger(f"{LOGGER_NAME}.test").info("structured")
        handler.flush()

        line = path.read_text().strip().splitlines()[-1]
        assert json.loads(line)["message"] == "structured"


class TestConfigureFromEnv:
    def test_no_env_does_nothing(self, monkeypatch):
        monkeypatch.delenv("LSMSIM_LOGGING", raising=False)
        monkeypatch.delenv("LSMSIM_LOG_FILE", raising=False)
        before = list(_get_logger().handlers)

        lsmsimulator.configure_from_env()

        assert _get_logger().handlers == before

    def test_level_from_env(self, monkeypatch):
        monkeypatch.setenv("LSMSIM_LOGGING", "debug")
        monkeypatch.delenv("LSMSIM_LOG_FILE", raising=False)
        monkeypatch.delenv("LSMSIM_LOG_JSON", raising=False)

        lsmsimulator.configure_from_env()

        assert _get_logger().level == logging.DEBUG

    def test_file_from_env(self, monkeypatch, tmp_path):
        path = tmp_path / "env.log"
        monkeypatch.delenv("LSMSIM_LOGGING", raising=False)
        monkeypatch.setenv("LSMSIM_LOG_FILE", str(path))
        monkeypatch.delenv("LSMSIM_LOG_JSON", raising=False)

        lsmsimulator.configure_from_env()
        logging.getLogger(f"{LOGGER_NAME}.test").info("from env")
        for handler in _get_logger().handlers:
            handler.flush()

        assert Path(path).exists()
        assert "from env" in path.read_text()


class TestLevels:
    def test_get_level(self):
        assert _get_level("warning") == logging.WARNING
        assert _get_level(logging.ERROR) == logging.ERROR
        assert _get_level("nonsense") == logging.INFO

    def test_set_level(self):
        lsmsimulator.set_level("ERROR")
        assert _get_logger().level == logging.ERROR

    def test_set_module_level(self):
        lsmsimulator.set_module_level("storage.lsm_tree", "DEBUG")
        assert logging.getLogger("lsmsimulator.storage.lsm_tree").level == logging.DEBUG
        logging.getLogger("lsmsimulator.storage.lsm_tree").setLevel(logging.NOTSET)

    def test_disable_logging(self, capfd):
        lsmsimulator.enable_console_logging(level="DEBUG")
        lsmsimulator.disable_logging()
        logging.getLogger(f"{LOGGER_NAME}.test").error("should not appear")

        captured = capfd.readouterr()
        assert "should not appear" not in captured.err
        assert all(isinstance(h, logging.NullHandler) for h in _get_logger().handlers)
