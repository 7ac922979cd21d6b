"""Tests for hook guards and Sentry helpers (decorators.py, sentry/setup.py)."""

from unittest.mock import MagicMock, patch

import pytest

from flow_slack.config import SentryConfig
from flow_slack.decorators import capture_errors, track_performance
from flow_slack.sentry import setup as sentry_setup


class TestCaptureErrors:
    def test_returns_value(self):
        @capture_errors(hook_name="hook")
        def hook():
            return 42

        assert hook() == 42

    def test_swallows_and_logs(self, caplog):
        @capture_errors(hook_name="on_flow_complete")
        def hook():
            raise RuntimeError("bad payload")

        assert hook() is None
        assert "Error in on_flow_complete: bad payload" in caplog.text

    def test_reraise(self):
        @capture_errors(reraise=True)
        def hook():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            hook()

    @patch("flow_slack.decorators.capture_exception")
    def test_reports_with_hook_tag(self, mock_capture):
        @capture_errors(hook_name="on_task_complete", tags={"mode": "bot"})
        def hook():
            raise RuntimeError("x")

        hook()
        kwargs = mock_capture.call_args[1]
        assert kwargs["tags"] == {"hook": "on_task_complete", "mode": "bot"}

    def test_defaults_to_function_name(self, caplog):
        @capture_errors()
        def on_flow_begin():
            raise RuntimeError("y")

        on_flow_begin()
        assert "Error in on_flow_begin" in caplog.text


class TestTrackPerformance:
    @patch("flow_slack.decorators.time")
    def test_warns_when_slow(self, mock_time, caplog):
        mock_time.monotonic.side_effect = [0.0, 12.5]

        @track_performance(operation_name="upload_file", warn_threshold_seconds=10)
        def upload():
            return True

        assert upload() is True
        assert "upload_file took 12.50 seconds" in caplog.text

    @patch("flow_slack.decorators.time")
    def test_quiet_when_fast(self, mock_time, caplog):
        mock_time.monotonic.side_effect = [0.0, 0.2]

        @track_performance()
        def send():
            return True

        send()
        assert "took" not in caplog.text


class TestSentry:
    def test_not_configured(self):
        assert sentry_setup.init_sentry(SentryConfig()) is False
        assert not sentry_setup.is_initialized()

    def test_helpers_are_noops_before_init(self):
        assert sentry_setup.capture_exception(RuntimeError("x")) is None
        sentry_setup.add_breadcrumb("hello")
        sentry_setup.set_run_context({"run_name": "r"})

    def test_init_once(self):
        fake_sdk = MagicMock()
        with patch.dict("sys.modules", {"sentry_sdk": fake_sdk, "sentry_sdk.integrations.logging": MagicMock()}):
            config = SentryConfig(dsn="https://key@sentry.example/1", environment="test")
            assert sentry_setup.init_sentry(config, run_name="happy_turing") is True
            assert sentry_setup.init_sentry(config) is True

        fake_sdk.init.assert_called_once()
        assert fake_sdk.init.call_args[1]["environment"] == "test"
        fake_sdk.set_tag.assert_any_call("run_name", "happy_turing")

    def test_capture_uses_new_scope(self):
        fake_sdk = MagicMock()
        fake_sdk.capture_exception.return_value = "event-1"
        sentry_setup._sentry_initialized = True

        with patch.dict("sys.modules", {"sentry_sdk": fake_sdk}):
            event_id = sentry_setup.capture_exception(RuntimeError("x"), tags={"hook": "on_flow_error"})

        assert event_id == "event-1"
        scope = fake_sdk.new_scope.return_value.__enter__.return_value
        scope.set_level.assert_called_once_with("warning")
        scope.set_tag.assert_called_once_with("hook", "on_flow_error")
