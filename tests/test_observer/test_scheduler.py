"""Tests for deferred task scheduling on real timer threads (scheduler.py)."""

import logging
import threading

from flow_slack.scheduler import TimerScheduler


class TestTimerScheduler:
    def test_runs_task_after_delay(self):
        done = threading.Event()

        TimerScheduler().schedule(0.01, done.set)

        assert done.wait(5)

    def test_negative_delay_runs_immediately(self):
        done = threading.Event()

        TimerScheduler().schedule(-1, done.set)

        assert done.wait(5)

    def test_cancel_before_fire(self):
        ran = threading.Event()

        handle = TimerScheduler().schedule(0.3, ran.set)
        handle.cancel()

        assert not ran.wait(0.8)

    def test_timer_is_named_daemon(self):
        handle = TimerScheduler(name="slack-progress").schedule(60, lambda: None)
        try:
            assert handle.daemon
            assert handle.name == "slack-progress"
        finally:
            handle.cancel()

    def test_task_error_logged_at_debug(self, caplog):
        caplog.set_level(logging.DEBUG, logger="flow_slack.scheduler")

        def task():
            raise RuntimeError("chat.update timed out")

        handle = TimerScheduler().schedule(0, task)
        handle.join(5)

        records = [r for r in caplog.records if r.name == "flow_slack.scheduler"]
        assert len(records) == 1
        assert records[0].levelno == logging.DEBUG
        assert "Deferred task failed: chat.update timed out" in records[0].getMessage()
