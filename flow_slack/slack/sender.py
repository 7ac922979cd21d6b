"""
Slack Senders

Delivery contract shared by the webhook and bot senders. Every operation
logs its own failures and reports success as a bool; none of them raise.
"""

import logging
import threading
from abc import ABC, abstractmethod
from os import PathLike
from typing import Any, Dict, Optional, Set, Union

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10

FilePath = Union[str, PathLike]


class ErrorLogDeduper:
    """Logs each distinct error message once per run."""

    def __init__(self, log: logging.Logger = logger):
        self._log = log
        self._seen: Set[str] = set()
        self._lock = threading.Lock()

    def error(self, message: str) -> bool:
        """
        Log ``message`` at error level unless it was already logged.

        Returns:
            True if the message was logged
        """
        with self._lock:
            if message in self._seen:
                return False
            self._seen.add(message)
        self._log.error(message)
        return True


class SlackSender(ABC):
    """Delivers message documents and files to Slack."""

    @property
    @abstractmethod
    def supports_updates(self) -> bool:
        """Whether sent messages can be edited in place (needed for progress)."""
        pass

    @property
    @abstractmethod
    def thread_ts(self) -> Optional[str]:
        """Timestamp of the first message delivered this run, if known."""
        pass

    @abstractmethod
    def send_message(self, payload: Dict[str, Any]) -> bool:
        pass

    @abstractmethod
    def update_message(self, payload: Dict[str, Any], message_ts: str) -> bool:
        pass

    @abstractmethod
    def add_reaction(self, emoji: str, message_ts: str, channel: Optional[str] = None) -> bool:
        """React to a message; ``channel`` defaults to the sender's channel."""
        pass

    @abstractmethod
    def remove_reaction(self, emoji: str, message_ts: str, channel: Optional[str] = None) -> bool:
        pass

    @abstractmethod
    def upload_file(
        self,
        path: Optional[FilePath],
        title: Optional[str] = None,
        comment: Optional[str] = None,
        filename: Optional[str] = None,
        thread_ts: Optional[str] = None,
    ) -> bool:
        pass

    @abstractmethod
    def validate(self) -> bool:
        """Check the connection/credentials. True when usable."""
        pass

    def close(self) -> None:
        """Release HTTP resources."""


class WebhookSlackSender(SlackSender):
    """
    Sends messages to an Incoming Webhook.

    Webhooks are one-way: no message timestamps come back, so threading,
    in-place updates, reactions and uploads are unavailable.
    """

    def __init__(
        self,
        webhook_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._webhook_url = webhook_url
        self._session = session or requests.Session()
        self._timeout = timeout
        self._errors = ErrorLogDeduper(logger)

    @property
    def supports_updates(self) -> bool:
        return False

    @property
    def thread_ts(self) -> Optional[str]:
        return None

    def send_message(self, payload: Dict[str, Any]) -> bool:
        """
        Post a message document to the webhook.

        Returns:
            True if Slack answered HTTP 200
        """
        try:
            response = self._session.post(
                self._webhook_url,
                json=payload,
                timeout=self._timeout,
            )
            if response.status_code != 200:
                self._errors.error(f"Slack webhook HTTP {response.status_code}: {response.text}")
                return False

            logger.debug("Slack notification sent successfully")
            return True

        except Exception as e:
            self._errors.error(f"Slack plugin: Error sending message: {e}")
            return False

    def update_message(self, payload: Dict[str, Any], message_ts: str) -> bool:
        logger.debug("Slack plugin: Message updates are not supported with webhooks")
        return False

    def add_reaction(self, emoji: str, message_ts: str, channel: Optional[str] = None) -> bool:
        logger.debug("Slack plugin: Reactions are not supported with webhooks")
        return False

    def remove_reaction(self, emoji: str, message_ts: str, channel: Optional[str] = None) -> bool:
        logger.debug("Slack plugin: Reactions are not supported with webhooks")
        return False

    def upload_file(
        self,
        path: Optional[FilePath],
        title: Optional[str] = None,
        comment: Optional[str] = None,
        filename: Optional[str] = None,
        thread_ts: Optional[str] = None,
    ) -> bool:
        logger.warning(
            "Slack plugin: File upload is not supported with webhooks. "
            "Please configure a bot token to upload files."
        )
        return False

    def validate(self) -> bool:
        logger.info(
            "Slack plugin: Webhook connections have limited validation - "
            "token and channel checks are not available"
        )
        return True

    def close(self) -> None:
        self._session.close()
