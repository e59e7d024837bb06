from __future__ import annotations

import json
import logging
import signal
import sys
import threading
from collections.abc import Callable, Iterator
from unittest.mock import MagicMock, patch

import pytest

from configsync.src.__main__ import JSONFormatter, main, redact_sensitive_text
from configsync.src.lifecycle import StartupAbortedError


@pytest.fixture(autouse=True)
def _restore_root_logging() -> Iterator[None]:
    handlers = list(logging.root.handlers)
    level = logging.root.level
    yield
    logging.root.handlers[:] = handlers
    logging.root.setLevel(level)


class TestJSONFormatter:
    """Tests for the structured JSON log formatter."""

    def _make_record(
        self,
        msg: str = "test message",
        level: int = logging.INFO,
        exc_info: object = None,
    ) -> logging.LogRecord:
        return logging.LogRecord(
            name="test.logger",
            level=level,
            pathname="test.py",
            lineno=1,
            msg=msg,
            args=(),
            exc_info=exc_info,  # type: ignore[arg-type]
        )

    def test_format_produces_valid_json(self) -> None:
        parsed = json.loads(JSONFormatter().format(self._make_record()))

        assert parsed["msg"] == "test message"
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "test.logger"
        assert "ts" in parsed
        assert "thread" in parsed

    def test_format_includes_error_on_exception(self) -> None:
        try:
            raise ValueError("boom")
        except ValueError:
            record = self._make_record(exc_info=sys.exc_info())

        parsed = json.loads(JSONFormatter().format(record))

        assert "ValueError" in parsed["error"]
        assert "boom" in parsed["error"]

    def test_format_omits_error_when_no_exception(self) -> None:
        parsed = json.loads(JSONFormatter().format(self._make_record()))

        assert "error" not in parsed

    def test_format_is_single_line(self) -> None:
        output = JSONFormatter().format(self._make_record(msg="line one\nline two"))

        assert output.count("\n") == 0

    def test_format_redacts_sensitive_values(self) -> None:
        record = self._make_record(
            msg="password=hunter2 Authorization: Bearer abc.def.ghi url=/x?access_token=qwerty"
        )

        message = json.loads(JSONFormatter().format(record))["msg"]

        assert "[REDACTED]" in message
        assert "hunter2" not in message
        assert "abc.def.ghi" not in message
        assert "qwerty" not in message


def test_redact_leaves_plain_text_untouched() -> None:
    text = "Bootstrapped 2/2 repository ConfigMap(s) in namespace ci"
    assert redact_sensitive_text(text) == text


def _capture_signals() -> tuple[dict[int, Callable[[int, object], None]], Callable[..., object]]:
    handlers: dict[int, Callable[[int, object], None]] = {}

    def tracking_signal(signum: int, handler: Callable[[int, object], None]) -> object:
        handlers[signum] = handler
        return signal.SIG_DFL

    return handlers, tracking_signal


class TestMainEntrypoint:
    """Integration-style tests for the main() function wiring."""

    def test_main_starts_and_stops_lifecycle_on_signal(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        monkeypatch.setenv("HEALTH_PORT", "9091")
        monkeypatch.setenv("NEXUS_URL", "http://nexus:8081")
        handlers, tracking_signal = _capture_signals()

        mock_lifecycle = MagicMock()
        mock_lifecycle.ready = threading.Event()
        mock_lifecycle.start.side_effect = lambda: handlers[signal.SIGTERM](signal.SIGTERM, None)

        with (
            patch("configsync.src.__main__.signal.signal", side_effect=tracking_signal),
            patch(
                "configsync.src.__main__.ConfigSyncLifecycle", return_value=mock_lifecycle
            ) as mock_lifecycle_cls,
            patch("configsync.src.__main__.NexusClient") as mock_nexus_cls,
            patch("configsync.src.__main__.start_health_server") as mock_health,
        ):
            mock_health.return_value = MagicMock()
            exit_code = main()

        assert exit_code == 0
        assert set(handlers) == {signal.SIGTERM, signal.SIGINT}
        mock_lifecycle.start.assert_called_once()
        mock_lifecycle.stop.assert_called_once()
        assert mock_health.call_args.kwargs["port"] == 9091
        assert mock_health.call_args.kwargs["ready"] is mock_lifecycle.ready
        assert mock_health.call_args.kwargs["watcher_counts"] is mock_lifecycle.watcher_counts
        assert mock_nexus_cls.call_args.kwargs["base_url"] == "http://nexus:8081"
        nexus = mock_nexus_cls.return_value
        assert mock_lifecycle_cls.call_args.kwargs["reconciler"] is nexus
        assert mock_lifecycle_cls.call_args.kwargs["security"] is nexus
        mock_health.return_value.shutdown.assert_called_once()

    def test_main_returns_error_when_startup_aborts(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("LOG_LEVEL", "CRITICAL")
        _, tracking_signal = _capture_signals()
        mock_lifecycle = MagicMock()
        mock_lifecycle.start.side_effect = StartupAbortedError("no cluster")

        with (
            patch("configsync.src.__main__.signal.signal", side_effect=tracking_signal),
            patch("configsync.src.__main__.ConfigSyncLifecycle", return_value=mock_lifecycle),
            patch("configsync.src.__main__.NexusClient"),
            patch("configsync.src.__main__.start_health_server") as mock_health,
        ):
            exit_code = main()

        assert exit_code == 1
        mock_lifecycle.stop.assert_called_once()
        mock_health.return_value.shutdown.assert_called_once()

    def test_main_rejects_invalid_configuration(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOG_LEVEL", "CRITICAL")
        monkeypatch.setenv("REPOSITORY_SELECTOR", "not-a-selector")

        with (
            patch("configsync.src.__main__.ConfigSyncLifecycle") as mock_lifecycle_cls,
            patch("configsync.src.__main__.start_health_server") as mock_health,
        ):
            exit_code = main()

        assert exit_code == 2
        mock_lifecycle_cls.assert_not_called()
        mock_health.assert_not_called()
