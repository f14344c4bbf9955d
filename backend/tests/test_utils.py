"""Tests for the logging and error utilities."""

import json
import logging

import pytest
import structlog

from utils import (
    ShutdownTimeoutError,
    StartupError,
    UploadServerError,
    configure_logging,
    get_logger,
)


@pytest.fixture
def restore_root_logger():
    """Put the stdlib root logger back the way the test found it."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.mark.usefixtures("restore_root_logger")
class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_json_output_goes_to_stdout(self, capsys):
        configure_logging(json_logs=True, log_level="INFO")

        get_logger("tests.json").info("file_uploaded", filename="a.txt")

        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "file_uploaded"
        assert record["filename"] == "a.txt"
        assert record["level"] == "info"
        assert record["logger"] == "tests.json"
        assert "timestamp" in record

    def test_errors_go_to_stderr(self, capsys):
        configure_logging(json_logs=True, log_level="INFO")

        get_logger("tests.stderr").error("error shutting down http server")

        captured = capsys.readouterr()
        assert "error shutting down http server" in captured.err
        assert "error shutting down http server" not in captured.out

    def test_level_filters_records(self, capsys):
        configure_logging(json_logs=True, log_level="WARNING")

        get_logger("tests.level").info("quiet")
        get_logger("tests.level").warning("loud")

        out = capsys.readouterr().out
        assert "quiet" not in out
        assert "loud" in out

    def test_context_vars_are_merged(self, capsys):
        configure_logging(json_logs=True)
        structlog.contextvars.bind_contextvars(request_id="ctx-1")

        get_logger("tests.ctx").info("request_completed")

        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert record["request_id"] == "ctx-1"

    def test_console_renderer_in_development(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "development")

        configure_logging()

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)

    def test_json_renderer_in_production(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")

        configure_logging()

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_unknown_level_falls_back_to_info(self):
        configure_logging(json_logs=True, log_level="chatty")

        assert logging.getLogger().level == logging.INFO


class TestErrors:
    """Tests for the exception hierarchy."""

    def test_message_and_details(self):
        error = StartupError("error listening on :3000", details={"listen_addr": ":3000"})

        assert str(error) == "error listening on :3000"
        assert error.message == "error listening on :3000"
        assert error.details == {"listen_addr": ":3000"}

    def test_details_default_to_empty(self):
        assert ShutdownTimeoutError("too slow").details == {}

    @pytest.mark.parametrize("cls", [StartupError, ShutdownTimeoutError])
    def test_share_base_class(self, cls):
        assert issubclass(cls, UploadServerError)
        with pytest.raises(UploadServerError):
            raise cls("boom")
