"""
Slack Block Kit Message Builders

Turns workflow events into Block Kit message documents. Pure functions,
no I/O: deep links and thread anchors are handed in by the caller.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..config import (
    DEFAULT_COMPLETE_MESSAGE,
    DEFAULT_ERROR_MESSAGE,
    DEFAULT_START_MESSAGE,
    SlackConfig,
)
from ..types import EventKind, TraceRecord, WorkflowMetadata, format_duration

logger = logging.getLogger(__name__)

# Long free text is capped; not configurable.
MAX_TEXT_LENGTH = 2000
ELLIPSIS = "..."

FIELD_RUN_NAME = "runName"
FIELD_STATUS = "status"
FIELD_DURATION = "duration"
FIELD_FAILED_PROCESS = "failedProcess"
FIELD_TASKS = "tasks"
FIELD_WORK_DIR = "workDir"
FIELD_COMMAND_LINE = "commandLine"
FIELD_ERROR_MESSAGE = "errorMessage"

# Fields each event kind can show, in display order.
EVENT_FIELDS = {
    EventKind.STARTED: [FIELD_RUN_NAME, FIELD_STATUS, FIELD_WORK_DIR, FIELD_COMMAND_LINE],
    EventKind.COMPLETED: [FIELD_RUN_NAME, FIELD_DURATION, FIELD_STATUS, FIELD_TASKS, FIELD_COMMAND_LINE],
    EventKind.FAILED: [
        FIELD_RUN_NAME,
        FIELD_DURATION,
        FIELD_STATUS,
        FIELD_FAILED_PROCESS,
        FIELD_ERROR_MESSAGE,
        FIELD_COMMAND_LINE,
    ],
}

DEFAULT_TEXT = {
    EventKind.STARTED: DEFAULT_START_MESSAGE,
    EventKind.COMPLETED: DEFAULT_COMPLETE_MESSAGE,
    EventKind.FAILED: DEFAULT_ERROR_MESSAGE,
    EventKind.PROGRESS: "⏳ *Pipeline running*",
}

STATUS_TEXT = {
    EventKind.STARTED: "🚀 Running",
    EventKind.COMPLETED: "✅ Success",
    EventKind.FAILED: "❌ Failed",
    EventKind.PROGRESS: "⏳ Running",
}

DEEP_LINK_LABEL = "View in Seqera Platform"


def _divider() -> Dict[str, str]:
    """Create a divider block."""
    return {"type": "divider"}


def _section(text: str) -> Dict[str, Any]:
    """Create a section block with markdown."""
    return {
        "type": "section",
        "text": {"type": "mrkdwn", "text": text},
    }


def _field(title: str, value: str) -> Dict[str, str]:
    """Create a markdown field for a fields section."""
    return {"type": "mrkdwn", "text": f"*{title}*\n{value}"}


def _fields_section(fields: List[Dict[str, str]]) -> Dict[str, Any]:
    """Create a section block with a field table."""
    return {"type": "section", "fields": fields}


def _context(elements: List[str]) -> Dict[str, Any]:
    """Create a context block."""
    return {
        "type": "context",
        "elements": [{"type": "mrkdwn", "text": e} for e in elements],
    }


def _command_line_section(command_line: str) -> Dict[str, Any]:
    return _section(f"*Command Line*\n```{command_line}```")


def _work_dir_section(work_dir: str) -> Dict[str, Any]:
    return _section(f"*Work Directory*\n`{work_dir}`")


def _error_section(error_message: str) -> Dict[str, Any]:
    return _section(f"*Error Message*\n```{truncate(error_message)}```")


def _actions(url: str, label: str = DEEP_LINK_LABEL) -> Dict[str, Any]:
    """Create an actions block with a single link button."""
    return {
        "type": "actions",
        "elements": [
            {
                "type": "button",
                "text": {"type": "plain_text", "text": label, "emoji": True},
                "url": url,
                "style": "primary",
            }
        ],
    }


def truncate(text: str, limit: int = MAX_TEXT_LENGTH) -> str:
    """Cap text at ``limit`` characters, marking truncation with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[:limit] + ELLIPSIS


def format_timestamp(moment: datetime) -> str:
    """Footer timestamp, e.g. ``Mar 4, 2025 at 3:07 PM``."""
    hour = moment.hour % 12 or 12
    return f"{moment:%b} {moment.day}, {moment.year} at {hour}:{moment:%M %p}"


def select_fields(kind: EventKind, include_fields: Optional[Sequence[str]]) -> List[str]:
    """
    Resolve which fields an event shows.

    An unset or empty list means every field the event supports; a
    non-empty list is an exact allow-list.
    """
    available = EVENT_FIELDS.get(kind, [])
    if not include_fields:
        return list(available)

    unknown = [name for name in include_fields if name not in available]
    if unknown:
        logger.debug("Slack plugin: Ignoring fields not shown for %s events: %s", kind.value, unknown)
    return [name for name in available if name in include_fields]


def header_text(message: Any, kind: EventKind) -> str:
    if isinstance(message, str) and message:
        return message
    return DEFAULT_TEXT[kind]


class SlackMessageBuilder:
    """
    Builds Block Kit message documents for workflow events.

    Usage:
        builder = SlackMessageBuilder(config, metadata)
        payload = builder.build_complete_message(thread_ts=ts)
        sender.send_message(payload)
    """

    def __init__(
        self,
        config: SlackConfig,
        metadata: Optional[WorkflowMetadata] = None,
        clock=datetime.now,
    ):
        """
        Initialize message builder.

        Args:
            config: Resolved Slack configuration
            metadata: Live workflow metadata (read-only)
            clock: Returns the footer time (overridable in tests)
        """
        self.config = config
        self.metadata = metadata or WorkflowMetadata()
        self._clock = clock

    # ------------------------------------------------------------------
    # Lifecycle events
    # ------------------------------------------------------------------

    def build_start_message(
        self,
        thread_ts: Optional[str] = None,
        channel: Optional[str] = None,
        deep_link: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Build message for the workflow started event."""
        settings = self.config.on_start
        channel = channel or settings.channel

        if isinstance(settings.message, Mapping):
            return self._build_custom_message(
                settings.message, EventKind.STARTED, settings.include_fields,
                settings.show_footer, None, thread_ts, channel, deep_link,
            )

        fields = select_fields(EventKind.STARTED, settings.include_fields)
        if not settings.include_fields and not settings.include_command_line:
            fields.remove(FIELD_COMMAND_LINE)

        text = header_text(settings.message, EventKind.STARTED)
        blocks = self._render(EventKind.STARTED, text, fields, settings.show_footer, None, deep_link)
        return self._payload(blocks, text, thread_ts, channel)

    def build_complete_message(
        self,
        thread_ts: Optional[str] = None,
        channel: Optional[str] = None,
        deep_link: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Build message for the workflow completed event."""
        settings = self.config.on_complete
        channel = channel or settings.channel

        if isinstance(settings.message, Mapping):
            return self._build_custom_message(
                settings.message, EventKind.COMPLETED, settings.include_fields,
                settings.show_footer, None, thread_ts, channel, deep_link,
            )

        fields = select_fields(EventKind.COMPLETED, settings.include_fields)
        if not settings.include_fields:
            if not settings.include_resource_usage:
                fields.remove(FIELD_TASKS)
            if not settings.include_command_line:
                fields.remove(FIELD_COMMAND_LINE)

        text = header_text(settings.message, EventKind.COMPLETED)
        blocks = self._render(EventKind.COMPLETED, text, fields, settings.show_footer, None, deep_link)
        return self._payload(blocks, text, thread_ts, channel)

    def build_error_message(
        self,
        error_record: Optional[TraceRecord] = None,
        thread_ts: Optional[str] = None,
        channel: Optional[str] = None,
        deep_link: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Build message for the workflow failed event."""
        settings = self.config.on_error
        channel = channel or settings.channel

        if isinstance(settings.message, Mapping):
            return self._build_custom_message(
                settings.message, EventKind.FAILED, settings.include_fields,
                settings.show_footer, error_record, thread_ts, channel, deep_link,
            )

        fields = select_fields(EventKind.FAILED, settings.include_fields)
        if not settings.include_fields and not settings.include_command_line:
            fields.remove(FIELD_COMMAND_LINE)

        text = header_text(settings.message, EventKind.FAILED)
        blocks = self._render(EventKind.FAILED, text, fields, settings.show_footer, error_record, deep_link)
        return self._payload(blocks, text, thread_ts, channel)

    def build_progress_message(
        self,
        submitted: int,
        completed: int,
        cached: int,
        failed: int,
        elapsed_seconds: float,
        thread_ts: Optional[str] = None,
        channel: Optional[str] = None,
        deep_link: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Build an in-place progress update for the start message.

        Args:
            submitted: Tasks submitted so far
            completed: Tasks completed so far
            cached: Tasks served from cache
            failed: Tasks failed
            elapsed_seconds: Time since the run started
            thread_ts: Thread anchor, if any
            channel: Channel holding the start message
            deep_link: Run page URL, if known

        Returns:
            Message document
        """
        text = DEFAULT_TEXT[EventKind.PROGRESS]
        blocks = [_section(text), _divider()]

        fields = [
            _field("Run Name", self.metadata.run_name or "Unknown run"),
            _field("Submitted", str(submitted)),
            _field("Completed", str(completed)),
            _field("Cached", str(cached)),
            _field("Failed", str(failed)),
            _field("Elapsed", format_duration(elapsed_seconds)),
        ]
        blocks.append(_fields_section(fields))

        if deep_link:
            blocks.append(_actions(deep_link))

        blocks.append(_context([f":hourglass_flowing_sand: Last updated {format_timestamp(self._clock())}"]))
        return self._payload(blocks, f"{text}: {completed} completed, {failed} failed", thread_ts, channel)

    # ------------------------------------------------------------------
    # Messages sent from pipeline code
    # ------------------------------------------------------------------

    def build_simple_message(self, text: str, thread_ts: Optional[str] = None) -> Dict[str, Any]:
        """Build a plain text message."""
        return self._payload([_section(text)], text, thread_ts)

    def build_rich_message(self, options: Mapping[str, Any], thread_ts: Optional[str] = None) -> Dict[str, Any]:
        """
        Build a message with a field table.

        Args:
            options: ``message`` (required) and ``fields``, a list of
                ``{title, value, short}`` mappings

        Raises:
            ValueError: if ``message`` is missing
        """
        if not options.get("message"):
            raise ValueError("Message text is required")

        text = str(options["message"])
        blocks = [_section(text)]

        fields = [
            _field(str(f.get("title", "")), str(f.get("value", "")))
            for f in options.get("fields") or []
        ]
        if fields:
            blocks.append(_divider())
            blocks.append(_fields_section(fields))

        return self._payload(blocks, text, thread_ts)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _build_custom_message(
        self,
        custom: Mapping[str, Any],
        kind: EventKind,
        event_fields: Sequence[str],
        show_footer: bool,
        error_record: Optional[TraceRecord],
        thread_ts: Optional[str],
        channel: Optional[str],
        deep_link: Optional[str],
    ) -> Dict[str, Any]:
        """Build a message from a ``{text, color, includeFields, customFields}`` mapping."""
        text = custom.get("text") or DEFAULT_TEXT[kind]
        include = custom.get("includeFields") or event_fields
        fields = select_fields(kind, include)

        extra = [
            _field(str(f.get("title", "")), str(f.get("value", "")))
            for f in custom.get("customFields") or []
        ]
        blocks = self._render(kind, text, fields, show_footer, error_record, deep_link, extra)

        payload = self._payload(blocks, text, thread_ts, channel)
        color = custom.get("color")
        if color:
            payload["attachments"] = [{"color": color, "blocks": payload.pop("blocks")}]
        return payload

    def _render(
        self,
        kind: EventKind,
        text: str,
        fields: Sequence[str],
        show_footer: bool,
        error_record: Optional[TraceRecord] = None,
        deep_link: Optional[str] = None,
        extra_fields: Optional[List[Dict[str, str]]] = None,
    ) -> List[Dict[str, Any]]:
        meta = self.metadata
        blocks = [_section(text)]

        table = []
        if FIELD_RUN_NAME in fields:
            table.append(_field("Run Name", meta.run_name or "Unknown run"))
        if FIELD_DURATION in fields:
            table.append(_field("Duration", meta.duration_str))
        if FIELD_STATUS in fields:
            table.append(_field("Status", STATUS_TEXT[kind]))
        if FIELD_FAILED_PROCESS in fields and error_record is not None:
            process = error_record.get("process")
            if process:
                table.append(_field("Failed Process", f"`{process}`"))
        if FIELD_TASKS in fields and meta.stats is not None:
            summary = meta.stats.summary()
            if summary:
                table.append(_field("Tasks", summary))
        table.extend(extra_fields or [])

        if table:
            blocks.append(_divider())
            blocks.append(_fields_section(table))

        if FIELD_WORK_DIR in fields and meta.work_dir:
            blocks.append(_work_dir_section(meta.work_dir))
        if FIELD_ERROR_MESSAGE in fields:
            blocks.append(_divider())
            blocks.append(_error_section(meta.error_message or "Unknown error"))
        if FIELD_COMMAND_LINE in fields and meta.command_line:
            blocks.append(_command_line_section(meta.command_line))

        if deep_link:
            blocks.append(_actions(deep_link))

        if show_footer:
            blocks.append(_divider())
            blocks.append(_context([format_timestamp(self._clock())]))

        return blocks

    def _payload(
        self,
        blocks: List[Dict[str, Any]],
        text: str,
        thread_ts: Optional[str] = None,
        channel: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Wrap blocks in the message envelope."""
        payload: Dict[str, Any] = {
            "blocks": blocks,
            "text": text,  # Fallback for notifications
        }
        channel = channel or self.config.bot_channel
        if channel and self.config.is_bot:
            payload["channel"] = channel
        if thread_ts:
            payload["thread_ts"] = thread_ts
        return payload
