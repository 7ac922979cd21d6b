"""
Slack Notification Observer

Subscribes to pipeline lifecycle callbacks and turns them into Slack
notifications: start/complete/error messages, throttled in-place progress
updates, emoji reactions on the start message and file uploads.

Notification failures are logged (and reported to Sentry when configured)
but never reach the host engine. The only exception allowed out of this
module is ConfigurationError, raised from on_flow_create.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

import requests

from .config import ConfigurationError, SlackConfig
from .decorators import capture_errors
from .deeplink import DeepLinkProvider, NullDeepLinkProvider
from .extension import register_observer
from .scheduler import ScheduledTask, TimerScheduler
from .sentry.setup import add_breadcrumb, init_sentry, set_run_context
from .slack.blocks import SlackMessageBuilder
from .slack.sender import SlackSender
from .types import TraceRecord, WorkflowMetadata, WorkflowSession

logger = logging.getLogger(__name__)

# Seconds to wait before re-rendering the start message with the run page link
DEEP_LINK_DELAY = 5.0

# Longest wait for another thread's progress edit before the final one
FINAL_UPDATE_TIMEOUT = 30.0


class ProgressCounter:
    """Thread-safe, monotonically increasing counter."""

    def __init__(self, value: int = 0):
        self._value = value
        self._lock = threading.Lock()

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def get(self) -> int:
        with self._lock:
            return self._value

    def advance_to(self, value: int) -> int:
        """Raise the count to ``value``; never lowers it."""
        with self._lock:
            self._value = max(self._value, int(value))
            return self._value


class SlackObserver:
    """
    Notification coordinator for one pipeline run.

    Usage:
        observer = SlackObserver()
        observer.on_flow_create(session)
        observer.on_flow_begin()
        ...
        observer.on_flow_complete()
    """

    def __init__(
        self,
        scheduler: Optional[TimerScheduler] = None,
        clock: Callable[[], float] = time.monotonic,
        http_session: Optional[requests.Session] = None,
    ):
        """
        Initialize observer.

        Args:
            scheduler: Runs deferred progress updates and link enrichment
            clock: Monotonic time source in seconds (overridable in tests)
            http_session: HTTP session handed to the sender (used by tests)
        """
        self.session: Optional[WorkflowSession] = None
        self.config: Optional[SlackConfig] = None
        self.sender: Optional[SlackSender] = None
        self.message_builder: Optional[SlackMessageBuilder] = None

        self._scheduler = scheduler or TimerScheduler()
        self._clock = clock
        self._http_session = http_session
        self._deep_link_provider: DeepLinkProvider = NullDeepLinkProvider()

        self.submitted = ProgressCounter()
        self.completed = ProgressCounter()
        self.cached = ProgressCounter()
        self.failed = ProgressCounter()

        self._start_message_ts: Optional[str] = None
        self._start_channel: Optional[str] = None
        self._start_time = 0.0

        # Guards the throttle state and the in-flight edit below
        self._progress_lock = threading.Lock()
        self._last_update = 0.0
        self._pending_progress: Optional[ScheduledTask] = None
        self._terminated = False

        # Thread currently editing the start message, and whether it owes another send
        self._progress_idle = threading.Condition(self._progress_lock)
        self._sending_thread: Optional[int] = None
        self._resend = False

        self._terminal_lock = threading.Lock()
        self._terminal_handled = False
        self._start_reaction_applied = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        """True once a sender and message builder exist for this run."""
        return self.config is not None and self.sender is not None and self.message_builder is not None

    @property
    def metadata(self) -> WorkflowMetadata:
        return self.session.metadata if self.session else WorkflowMetadata()

    @property
    def start_message_ts(self) -> Optional[str]:
        return self._start_message_ts

    @property
    def progress_active(self) -> bool:
        """Progress updates edit the start message, so they need one and an editable sender."""
        return (
            self.is_active
            and self.config.on_progress.enabled
            and self.sender.supports_updates
            and self._start_message_ts is not None
        )

    def thread_ts(self) -> Optional[str]:
        """Thread anchor for follow-up messages, when threading is enabled."""
        if not self.is_active or not self.config.use_threads:
            return None
        return self.sender.thread_ts

    # ------------------------------------------------------------------
    # Flow lifecycle
    # ------------------------------------------------------------------

    def on_flow_create(self, session: WorkflowSession) -> None:
        """
        Resolve configuration and send the start notification.

        Raises:
            ConfigurationError: malformed configuration, or failed startup
                validation with ``failOnInvalidConfig`` set
        """
        self.session = session
        self.config = SlackConfig.from_mapping(session.config)
        register_observer(self)

        if self.config is None or not self.config.is_configured:
            logger.debug("Slack plugin: Not configured or disabled, notifications will not be sent")
            return

        init_sentry(self.config.sentry, run_name=session.metadata.run_name)
        set_run_context(session.to_dict())

        self.sender = self.config.create_sender(session=self._http_session)
        self.message_builder = SlackMessageBuilder(self.config, session.metadata)
        if self.config.platform.enabled and session.deep_link_provider is not None:
            self._deep_link_provider = session.deep_link_provider

        self._start_time = self._clock()
        self._last_update = self._start_time
        logger.debug("Slack plugin: Initialized successfully")

        if self.config.validate_on_startup:
            self._validate_connection()

        self._send_start_notification()

    def _validate_connection(self) -> None:
        if self.sender.validate():
            logger.debug("Slack plugin: Connection validated")
            return

        message = "Slack plugin: Connection validation failed - check the token, webhook URL and channel"
        if self.config.fail_on_invalid_config:
            raise ConfigurationError(message)
        logger.warning("%s. Notifications may not be delivered.", message)

    @capture_errors(hook_name="on_flow_create")
    def _send_start_notification(self) -> None:
        if not self.config.on_start.enabled:
            return

        deep_link = self.deep_link()
        payload = self.message_builder.build_start_message(deep_link=deep_link)
        if self.sender.send_message(payload):
            self._start_message_ts = self.sender.thread_ts
            self._start_channel = payload.get("channel")
            logger.debug("Slack plugin: Sent workflow start notification")

        if self.config.on_progress.enabled:
            if self.progress_active:
                logger.debug("Slack plugin: Progress updates enabled every %s", self.config.on_progress.interval)
            else:
                logger.debug("Slack plugin: Progress updates need a bot token and a delivered start message")

        if deep_link is None and self._start_message_ts and self._can_enrich():
            self._scheduler.schedule(DEEP_LINK_DELAY, self._enrich_start_message)

    @capture_errors(hook_name="on_flow_begin")
    def on_flow_begin(self) -> None:
        if not self.is_active:
            return

        reactions = self.config.reactions
        if reactions.enabled and self._start_message_ts:
            if self.sender.add_reaction(reactions.on_start, self._start_message_ts, self._start_channel):
                self._start_reaction_applied = True

    @capture_errors(hook_name="on_flow_complete")
    def on_flow_complete(self) -> None:
        """
        Called once the run has finished.

        A run that finishes without success (e.g. cancelled) is reported
        as an error.
        """
        if not self.is_active or not self._begin_terminal():
            return

        success = self.metadata.success
        self._finish_progress()

        if success:
            self._notify(
                self.config.on_complete.enabled,
                lambda ts: self.message_builder.build_complete_message(thread_ts=ts, deep_link=self.deep_link()),
                self.config.on_complete.files,
                "complete",
            )
        else:
            self._notify(
                self.config.on_error.enabled,
                lambda ts: self.message_builder.build_error_message(thread_ts=ts, deep_link=self.deep_link()),
                self.config.on_error.files,
                "error",
            )
        self._apply_terminal_reaction(success)

    @capture_errors(hook_name="on_flow_error")
    def on_flow_error(self, trace: Optional[TraceRecord] = None) -> None:
        if not self.is_active or not self._begin_terminal():
            return

        self._finish_progress()
        self._notify(
            self.config.on_error.enabled,
            lambda ts: self.message_builder.build_error_message(trace, thread_ts=ts, deep_link=self.deep_link()),
            self.config.on_error.files,
            "error",
        )
        self._apply_terminal_reaction(False)

    def _begin_terminal(self) -> bool:
        """Only the first terminal callback of a run is handled."""
        with self._terminal_lock:
            if self._terminal_handled:
                return False
            self._terminal_handled = True
            return True

    def _notify(
        self,
        enabled: bool,
        build: Callable[[Optional[str]], Any],
        files: Sequence[str],
        event: str,
    ) -> None:
        if not enabled:
            return

        thread_ts = self.thread_ts()
        self.sender.send_message(build(thread_ts))
        logger.debug("Slack plugin: Sent workflow %s notification", event)
        self.upload_files(files, thread_ts)

    # ------------------------------------------------------------------
    # Task events
    # ------------------------------------------------------------------

    @capture_errors(hook_name="on_task_submit")
    def on_task_submit(self, trace: Optional[TraceRecord] = None) -> None:
        self.submitted.increment()
        self._record_progress()

    @capture_errors(hook_name="on_task_complete")
    def on_task_complete(self, trace: Optional[TraceRecord] = None) -> None:
        if trace is not None and getattr(trace, "failed", False):
            self.failed.increment()
        else:
            self.completed.increment()
        self._record_progress()

    @capture_errors(hook_name="on_task_cached")
    def on_task_cached(self, trace: Optional[TraceRecord] = None) -> None:
        self.cached.increment()
        self._record_progress()

    # ------------------------------------------------------------------
    # Progress throttle
    # ------------------------------------------------------------------

    def _record_progress(self) -> None:
        """
        Send now if the interval has elapsed since the last update, otherwise
        make sure exactly one deferred update is pending. Events arriving
        while an update is pending are folded into it.
        """
        if not self.progress_active:
            return

        with self._progress_lock:
            if self._terminated or self._pending_progress is not None:
                return

            now = self._clock()
            interval = self.config.on_progress.interval_seconds
            elapsed = now - self._last_update
            if elapsed < interval:
                self._pending_progress = self._scheduler.schedule(interval - elapsed, self._deferred_progress)
                return
            self._last_update = now

        self._publish_progress()

    def _deferred_progress(self) -> None:
        with self._progress_lock:
            self._pending_progress = None
            if self._terminated:
                return
            self._last_update = self._clock()

        self._publish_progress()

    def _publish_progress(self, wait: bool = False) -> None:
        """
        Edit the start message with at most one edit in flight.

        A request made while another edit is in flight is handed to the
        thread sending it, which sends once more after its own post. The
        latest counters are therefore always posted last. With ``wait``
        the caller blocks until another thread's edit has gone out.
        """
        current = threading.get_ident()
        with self._progress_lock:
            if self._sending_thread is not None:
                self._resend = True
                if wait and self._sending_thread != current:
                    self._progress_idle.wait_for(
                        lambda: self._sending_thread is None,
                        timeout=FINAL_UPDATE_TIMEOUT,
                    )
                return
            self._sending_thread = current

        while True:
            self.send_progress_update()
            with self._progress_lock:
                if not self._resend:
                    self._sending_thread = None
                    self._progress_idle.notify_all()
                    return
                self._resend = False

    def send_progress_update(self) -> bool:
        """Edit the start message with the current counters."""
        if not self.progress_active:
            return False

        try:
            payload = self.message_builder.build_progress_message(
                submitted=self.submitted.get(),
                completed=self.completed.get(),
                cached=self.cached.get(),
                failed=self.failed.get(),
                elapsed_seconds=self._clock() - self._start_time,
                channel=self._start_channel,
                deep_link=self.deep_link(),
            )
            return self.sender.update_message(payload, self._start_message_ts)

        except Exception as e:
            logger.debug("Slack plugin: Failed to send progress update: %s", e)
            return False

    def _finish_progress(self) -> None:
        """Stop throttling, reconcile counters with the final stats and send one last update."""
        with self._progress_lock:
            self._terminated = True
            pending, self._pending_progress = self._pending_progress, None

        if pending is not None:
            pending.cancel()

        if not self.progress_active:
            return

        stats = self.metadata.stats
        if stats is not None:
            self.completed.advance_to(stats.succeeded)
            self.cached.advance_to(stats.cached)
            self.failed.advance_to(stats.failed)
        self.submitted.advance_to(self.completed.get() + self.failed.get())

        self._publish_progress(wait=True)

    # ------------------------------------------------------------------
    # Reactions
    # ------------------------------------------------------------------

    def _apply_terminal_reaction(self, success: bool) -> None:
        reactions = self.config.reactions
        if not reactions.enabled or not self._start_message_ts:
            return

        if self._start_reaction_applied:
            self.sender.remove_reaction(reactions.on_start, self._start_message_ts, self._start_channel)
            self._start_reaction_applied = False

        emoji = reactions.on_success if success else reactions.on_error
        self.sender.add_reaction(emoji, self._start_message_ts, self._start_channel)

    # ------------------------------------------------------------------
    # Deep links
    # ------------------------------------------------------------------

    def deep_link(self) -> Optional[str]:
        """URL of the run page on the monitoring platform, if known yet."""
        if not self.is_active or not self.config.platform.enabled:
            return None
        try:
            return self._deep_link_provider.try_get_deep_link(self.metadata.run_id)
        except Exception as e:
            logger.debug("Slack plugin: Deep link lookup failed: %s", e)
            return None

    def _can_enrich(self) -> bool:
        return (
            self.config.platform.enabled
            and self.sender.supports_updates
            and not isinstance(self._deep_link_provider, NullDeepLinkProvider)
        )

    def _enrich_start_message(self) -> None:
        """Re-render the start message once the run page link is available."""
        with self._progress_lock:
            if self._terminated:
                return

        deep_link = self.deep_link()
        if deep_link is None:
            logger.debug("Slack plugin: Deep link still unavailable, start message left as is")
            return

        add_breadcrumb("Adding deep link to start message", data={"url": deep_link})
        # Once progress has started the start message shows counters, keep them
        if self.progress_active and self.submitted.get() + self.cached.get() > 0:
            self._publish_progress()
            return

        payload = self.message_builder.build_start_message(deep_link=deep_link)
        if self.sender.update_message(payload, self._start_message_ts):
            logger.debug("Slack plugin: Added deep link to start message")

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def upload_files(self, files: Sequence[str], thread_ts: Optional[str] = None) -> int:
        """
        Upload each file, skipping any that fail.

        Returns:
            Number of files uploaded
        """
        uploaded = 0
        for file_path in files or []:
            try:
                path = Path(file_path).expanduser()
                if self.sender.upload_file(path, thread_ts=thread_ts):
                    uploaded += 1
                    logger.debug("Slack plugin: Uploaded file %s", file_path)
            except Exception as e:
                logger.warning("Slack plugin: Failed to upload file %s: %s", file_path, e)
        return uploaded


class SlackFactory:
    """Creates the observers the host engine registers for a run."""

    def create(self, session: Optional[WorkflowSession] = None) -> List[SlackObserver]:
        return [SlackObserver()]
