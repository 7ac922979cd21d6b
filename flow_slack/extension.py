"""
Pipeline Functions

Functions pipeline code calls to post its own messages and files. They use
the sender, message builder and thread of the run's active observer, and
never raise into pipeline code.

Usage:
    from flow_slack import slack_message, slack_file_upload

    slack_message("Analysis starting for sample A1")
    slack_message({"message": "Analysis complete", "fields": [{"title": "Sample", "value": "A1"}]})
    slack_file_upload({"file": "results/report.html", "title": "Report"})
"""

import atexit
import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Optional, Union

from .decorators import capture_errors

if TYPE_CHECKING:
    from .observer import SlackObserver

logger = logging.getLogger(__name__)

# Single slot holding the observer of the current run
_active_observer: Optional["SlackObserver"] = None
_registry_lock = threading.Lock()


def register_observer(observer: "SlackObserver") -> None:
    """Make ``observer`` the target of the pipeline functions."""
    global _active_observer
    with _registry_lock:
        _active_observer = observer


def get_active_observer() -> Optional["SlackObserver"]:
    with _registry_lock:
        return _active_observer


def clear_active_observer() -> None:
    global _active_observer
    with _registry_lock:
        _active_observer = None


atexit.register(clear_active_observer)


def _observer_for(action: str) -> Optional["SlackObserver"]:
    observer = get_active_observer()
    if observer is None:
        logger.debug("Slack plugin: Observer not initialized, skipping %s", action)
        return None
    if not observer.is_active:
        logger.debug("Slack plugin: Not configured, skipping %s", action)
        return None
    return observer


@capture_errors(hook_name="slack_message")
def slack_message(message: Union[str, Mapping[str, Any]]) -> bool:
    """
    Send a message to Slack.

    Args:
        message: Plain text, or a mapping with ``message`` (required) and
            ``fields``, a list of ``{title, value, short}`` mappings

    Returns:
        True if the message was delivered
    """
    if isinstance(message, Mapping) and not message.get("message"):
        logger.error("Slack plugin: 'message' parameter is required for rich messages")
        return False

    observer = _observer_for("message")
    if observer is None:
        return False

    thread_ts = observer.thread_ts()
    if isinstance(message, Mapping):
        payload = observer.message_builder.build_rich_message(message, thread_ts=thread_ts)
    else:
        payload = observer.message_builder.build_simple_message(str(message), thread_ts=thread_ts)

    sent = observer.sender.send_message(payload)
    logger.debug("Slack plugin: Sent custom message")
    return sent


@capture_errors(hook_name="slack_file_upload")
def slack_file_upload(file: Union[str, Path, Mapping[str, Any]]) -> bool:
    """
    Upload a file to Slack.

    Args:
        file: Path, or a mapping with ``file`` (required) and optional
            ``title``, ``comment`` and ``filename``

    Returns:
        True if the file was shared
    """
    options: Mapping[str, Any] = file if isinstance(file, Mapping) else {"file": file}
    if not options.get("file"):
        logger.error("Slack plugin: 'file' parameter is required for file upload")
        return False

    observer = _observer_for("file upload")
    if observer is None:
        return False

    path = Path(options["file"]).expanduser()
    uploaded = observer.sender.upload_file(
        path,
        title=options.get("title"),
        comment=options.get("comment"),
        filename=options.get("filename"),
        thread_ts=observer.thread_ts(),
    )
    if uploaded:
        logger.debug("Slack plugin: Uploaded file %s", path.name)
    return uploaded
