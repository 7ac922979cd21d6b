"""
Slack Bot Sender

Web API sender using a bot token. Supports threading, in-place updates,
reactions and file uploads.
"""

import logging
import os
import threading
from typing import Any, Dict, Optional

import requests

from ..decorators import track_performance
from .sender import DEFAULT_TIMEOUT, ErrorLogDeduper, FilePath, SlackSender
from .users import SLACK_API_URL, SlackUserResolver

logger = logging.getLogger(__name__)

# Slack allows more, uploads are capped at 100MB
MAX_FILE_SIZE = 100 * 1024 * 1024
UPLOAD_TIMEOUT = 30

# Reaction errors that mean the desired state already holds
BENIGN_REACTION_ERRORS = {"already_reacted", "no_reaction"}


class BotSlackSender(SlackSender):
    """
    Sends messages through the Slack Web API.

    The timestamp of the first message delivered in the run becomes the
    thread anchor; later sends never replace it.

    Usage:
        sender = BotSlackSender("xoxb-...", "C0123456789")
        sender.send_message(payload)
        sender.upload_file("results/report.html", thread_ts=sender.thread_ts)
    """

    def __init__(
        self,
        bot_token: str,
        channel_id: str,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        resolver: Optional[SlackUserResolver] = None,
    ):
        """
        Initialize bot sender.

        Args:
            bot_token: Bot User OAuth Token (xoxb-...)
            channel_id: Default channel for messages, reactions and uploads
            session: HTTP session (injected by tests)
            timeout: Request timeout in seconds
            resolver: Mention resolver; one is created when omitted
        """
        self._bot_token = bot_token
        self._channel_id = channel_id
        self._session = session or requests.Session()
        self._session.headers.update({"Authorization": f"Bearer {bot_token}"})
        self._timeout = timeout
        self._resolver = resolver or SlackUserResolver(bot_token, session=self._session, timeout=timeout)
        self._errors = ErrorLogDeduper(logger)
        self._thread_ts: Optional[str] = None
        self._thread_lock = threading.Lock()

    @property
    def supports_updates(self) -> bool:
        return True

    @property
    def thread_ts(self) -> Optional[str]:
        return self._thread_ts

    @property
    def channel_id(self) -> str:
        return self._channel_id

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    @track_performance(operation_name="chat.postMessage")
    def send_message(self, payload: Dict[str, Any]) -> bool:
        """
        Post a message document with ``chat.postMessage``.

        Returns:
            True if Slack accepted the message
        """
        try:
            body = self._prepare(payload)
            data = self._post("chat.postMessage", body)
            if data is None:
                return False

            ts = data.get("ts")
            if ts:
                self._capture_thread_ts(ts)
            logger.debug("Slack notification sent successfully")
            return True

        except Exception as e:
            self._errors.error(f"Slack plugin: Error sending bot message: {e}")
            return False

    def update_message(self, payload: Dict[str, Any], message_ts: str) -> bool:
        """
        Replace the content of an existing message with ``chat.update``.

        Args:
            payload: New message document
            message_ts: Timestamp of the message to edit
        """
        try:
            body = self._prepare(payload)
            body.pop("thread_ts", None)
            body["ts"] = message_ts
            return self._post("chat.update", body) is not None

        except Exception as e:
            self._errors.error(f"Slack plugin: Error updating message: {e}")
            return False

    def _prepare(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = self._resolver.resolve_payload(payload) if self._resolver else dict(payload)
        body.setdefault("channel", self._channel_id)
        return body

    def _capture_thread_ts(self, ts: str) -> None:
        with self._thread_lock:
            if self._thread_ts is None:
                self._thread_ts = ts
                logger.debug("Slack plugin: Captured thread timestamp: %s", ts)

    # ------------------------------------------------------------------
    # Reactions
    # ------------------------------------------------------------------

    def add_reaction(self, emoji: str, message_ts: str, channel: Optional[str] = None) -> bool:
        return self._react("reactions.add", emoji, message_ts, channel)

    def remove_reaction(self, emoji: str, message_ts: str, channel: Optional[str] = None) -> bool:
        return self._react("reactions.remove", emoji, message_ts, channel)

    def _react(self, method: str, emoji: str, message_ts: str, channel: Optional[str]) -> bool:
        try:
            response = self._session.post(
                SLACK_API_URL + method,
                json={"channel": channel or self._channel_id, "name": emoji, "timestamp": message_ts},
                timeout=self._timeout,
            )
            if response.status_code != 200:
                logger.debug("Slack plugin: %s '%s' failed - HTTP %s", method, emoji, response.status_code)
                return False

            data = response.json()
            if data.get("ok"):
                return True

            error = data.get("error")
            if error in BENIGN_REACTION_ERRORS:
                logger.debug("Slack plugin: %s '%s': %s", method, emoji, error)
                return True

            hint = " (add reactions:write scope to your Slack app)" if error == "missing_scope" else ""
            logger.warning("Slack plugin: %s '%s' failed: %s%s", method, emoji, error, hint)
            return False

        except Exception as e:
            logger.debug("Slack plugin: %s '%s' failed: %s", method, emoji, e)
            return False

    # ------------------------------------------------------------------
    # File uploads
    # ------------------------------------------------------------------

    @track_performance(operation_name="upload_file", warn_threshold_seconds=60.0)
    def upload_file(
        self,
        path: Optional[FilePath],
        title: Optional[str] = None,
        comment: Optional[str] = None,
        filename: Optional[str] = None,
        thread_ts: Optional[str] = None,
    ) -> bool:
        """
        Upload a file and share it to the channel.

        Three steps, each of which must succeed before the next:
            1. ``files.getUploadURLExternal`` reserves an upload URL and file id
            2. the bytes are POSTed to that URL
            3. ``files.completeUploadExternal`` shares the file

        Args:
            path: File to upload
            title: Title shown in Slack (defaults to the filename)
            comment: Initial comment posted with the file
            filename: Override the filename shown in Slack
            thread_ts: Thread to post the file into

        Returns:
            True if the file was shared
        """
        try:
            size = self._check_upload(path)
            if size is None:
                return False

            filename = filename or os.path.basename(os.fspath(path))
            title = title or filename

            upload = self._get_upload_url(filename, size)
            if upload is None:
                return False

            if not self._upload_content(upload["upload_url"], path):
                return False

            if not self._complete_upload(upload["file_id"], title, comment, thread_ts):
                return False

            logger.debug("Slack plugin: Successfully uploaded file: %s", filename)
            return True

        except Exception as e:
            self._errors.error(f"Slack plugin: Error uploading file: {e}")
            return False

    def _check_upload(self, path: Optional[FilePath]) -> Optional[int]:
        """Pre-flight checks. Returns the file size, or None to skip the upload."""
        if path is None or not os.fspath(path):
            logger.error("Slack plugin: File path is required for file upload")
            return None
        if not os.path.isfile(path):
            logger.error("Slack plugin: File not found: %s", path)
            return None
        if not os.access(path, os.R_OK):
            logger.error("Slack plugin: File is not readable: %s", path)
            return None

        size = os.path.getsize(path)
        if size == 0:
            logger.error("Slack plugin: Cannot upload empty file: %s", path)
            return None
        if size > MAX_FILE_SIZE:
            logger.error(
                "Slack plugin: File exceeds maximum size of %dMB: %s",
                MAX_FILE_SIZE // (1024 * 1024),
                path,
            )
            return None
        return size

    def _get_upload_url(self, filename: str, length: int) -> Optional[Dict[str, Any]]:
        response = self._session.get(
            SLACK_API_URL + "files.getUploadURLExternal",
            params={"filename": filename, "length": length},
            timeout=self._timeout,
        )
        if response.status_code != 200:
            logger.error("Slack plugin: Failed to get upload URL - HTTP %s: %s", response.status_code, response.text)
            return None

        data = response.json()
        if not data.get("ok"):
            logger.error("Slack plugin: Failed to get upload URL - API error: %s", data.get("error"))
            return None
        return data

    def _upload_content(self, upload_url: str, path: FilePath) -> bool:
        with open(path, "rb") as stream:
            # None drops the session's bot token for the pre-signed URL
            response = self._session.post(
                upload_url,
                data=stream,
                headers={"Content-Type": "application/octet-stream", "Authorization": None},
                timeout=UPLOAD_TIMEOUT,
            )

        if response.status_code != 200:
            logger.error(
                "Slack plugin: Failed to upload file content - HTTP %s: %s",
                response.status_code,
                response.text,
            )
            return False
        return True

    def _complete_upload(
        self,
        file_id: str,
        title: str,
        comment: Optional[str],
        thread_ts: Optional[str],
    ) -> bool:
        body: Dict[str, Any] = {
            "files": [{"id": file_id, "title": title}],
            "channel_id": self._channel_id,
        }
        if comment:
            body["initial_comment"] = comment
        if thread_ts:
            body["thread_ts"] = thread_ts

        logger.debug("Slack plugin: completeUpload payload: %s", body)
        response = self._session.post(
            SLACK_API_URL + "files.completeUploadExternal",
            json=body,
            timeout=self._timeout,
        )
        if response.status_code != 200:
            logger.error(
                "Slack plugin: Failed to complete file upload - HTTP %s: %s",
                response.status_code,
                response.text,
            )
            return False

        data = response.json()
        if not data.get("ok"):
            logger.error("Slack plugin: Failed to complete file upload - API error: %s", data.get("error"))
            return False
        return True

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> bool:
        """
        Check the token with ``auth.test``.

        Returns:
            True only when Slack confirms the token
        """
        try:
            response = self._session.post(SLACK_API_URL + "auth.test", timeout=self._timeout)
            if response.status_code != 200:
                logger.warning("Slack plugin: Token validation failed - HTTP %s", response.status_code)
                return False

            data = response.json()
            if not data.get("ok"):
                logger.warning("Slack plugin: Token validation failed - API error: %s", data.get("error"))
                return False

            logger.debug("Slack plugin: Authenticated as %s in team %s", data.get("user"), data.get("team"))
            return True

        except Exception as e:
            logger.warning("Slack plugin: Token validation failed: %s", e)
            return False

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _post(self, method: str, body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """POST JSON to a Web API method. Returns the response data when ``ok``."""
        logger.debug("Slack plugin: Sending %s payload: %s", method, body)
        response = self._session.post(SLACK_API_URL + method, json=body, timeout=self._timeout)

        if response.status_code != 200:
            self._errors.error(f"Slack plugin: {method} HTTP {response.status_code}: {response.text}")
            return None

        data = response.json()
        if not data.get("ok"):
            self._errors.error(f"Slack plugin: {method} API error: {data.get('error')}")
            return None
        return data
