"""Tests for the webhook sender and error de-duplication (sender.py)."""

import logging
from unittest.mock import MagicMock

import requests

from flow_slack.slack.sender import ErrorLogDeduper, WebhookSlackSender

WEBHOOK_URL = "https://hooks.slack.com/services/T000/B000/XXXX"


class TestErrorLogDeduper:
    def test_logs_each_message_once(self):
        log = MagicMock(spec=logging.Logger)
        deduper = ErrorLogDeduper(log)

        assert deduper.error("boom") is True
        assert deduper.error("boom") is False
        assert deduper.error("other") is True
        assert log.error.call_count == 2


class TestWebhookSend:
    def test_posts_payload(self, http_session, response):
        http_session.post.return_value = response(text="ok")
        sender = WebhookSlackSender(WEBHOOK_URL, session=http_session)

        assert sender.send_message({"text": "hi", "blocks": []}) is True
        http_session.post.assert_called_once_with(WEBHOOK_URL, json={"text": "hi", "blocks": []}, timeout=10)

    def test_no_auth_header(self, http_session):
        WebhookSlackSender(WEBHOOK_URL, session=http_session)
        http_session.headers.update.assert_not_called()

    def test_http_error_logged_once(self, http_session, response, caplog):
        http_session.post.return_value = response(status_code=404, text="no_service")
        sender = WebhookSlackSender(WEBHOOK_URL, session=http_session)

        assert sender.send_message({"text": "a"}) is False
        assert sender.send_message({"text": "b"}) is False
        assert caplog.text.count("Slack webhook HTTP 404: no_service") == 1

    def test_network_error_swallowed(self, http_session, caplog):
        http_session.post.side_effect = requests.ConnectionError("connection refused")
        sender = WebhookSlackSender(WEBHOOK_URL, session=http_session)

        assert sender.send_message({"text": "a"}) is False
        assert "connection refused" in caplog.text

    def test_no_thread_identity(self, http_session):
        sender = WebhookSlackSender(WEBHOOK_URL, session=http_session)
        sender.send_message({"text": "a"})
        assert sender.thread_ts is None


class TestWebhookUnsupported:
    def test_updates_and_reactions_are_noops(self, http_session):
        sender = WebhookSlackSender(WEBHOOK_URL, session=http_session)

        assert sender.supports_updates is False
        assert sender.update_message({"text": "a"}, "1.2") is False
        assert sender.add_reaction("rocket", "1.2") is False
        assert sender.remove_reaction("rocket", "1.2") is False
        http_session.post.assert_not_called()

    def test_upload_warns(self, http_session, tmp_path, caplog):
        report = tmp_path / "report.html"
        report.write_text("<html></html>")
        sender = WebhookSlackSender(WEBHOOK_URL, session=http_session)

        assert sender.upload_file(report) is False
        assert "not supported with webhooks" in caplog.text
        http_session.post.assert_not_called()

    def test_validate_is_trivially_true(self, http_session):
        assert WebhookSlackSender(WEBHOOK_URL, session=http_session).validate() is True
        http_session.post.assert_not_called()
