"""Deferred task scheduling for throttled progress updates and enrichment."""

import logging
import threading
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class ScheduledTask(Protocol):
    """Handle returned by a scheduler."""

    def cancel(self) -> None:
        ...


class TimerScheduler:
    """
    Runs single-shot tasks after a delay on daemon timer threads.

    Daemon threads never keep the host process alive after the run ends.
    """

    def __init__(self, name: str = "slack-deferred"):
        self.name = name

    def schedule(self, delay: float, task: Callable[[], None]) -> ScheduledTask:
        """
        Schedule ``task`` to run once after ``delay`` seconds.

        Returns:
            Handle whose ``cancel()`` prevents the task from running
        """
        timer = threading.Timer(max(delay, 0.0), self._run, args=(task,))
        timer.name = self.name
        timer.daemon = True
        timer.start()
        return timer

    def _run(self, task: Callable[[], None]) -> None:
        try:
            task()
        except Exception as e:
            logger.debug("Slack plugin: Deferred task failed: %s", e)
