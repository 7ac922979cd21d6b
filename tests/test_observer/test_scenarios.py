"""End-to-end notification scenarios with a fake Slack API."""

import pytest

from flow_slack.observer import SlackObserver

THREAD_TS = "1712345678.000200"
UPLOAD_URL = "https://files.slack.com/upload/v1/xyz"


def field_titles(payload):
    titles = []
    for block in payload["blocks"]:
        for field in block.get("fields", []):
            titles.append(field["text"].split("\n")[0].strip("*"))
    return titles


@pytest.fixture
def fake_slack(http_session, response):
    """Routes Web API calls and records them in order."""
    calls = []

    def post(url, **kwargs):
        calls.append(("POST", url, kwargs))
        if url == UPLOAD_URL:
            return response(status_code=200, text="OK")
        if url.endswith("chat.postMessage"):
            return response(json_data={"ok": True, "ts": THREAD_TS if len(calls) == 1 else "1712345999.000300"})
        return response(json_data={"ok": True})

    def get(url, **kwargs):
        calls.append(("GET", url, kwargs))
        return response(json_data={"ok": True, "upload_url": UPLOAD_URL, "file_id": "F07REPORT"})

    http_session.post.side_effect = post
    http_session.get.side_effect = get
    return calls


class TestWebhookScenario:
    def test_complete_only(self, scheduler, clock, http_session, make_session, webhook_config):
        webhook_config["slack"].update({"onStart": {"enabled": False}, "onComplete": {"enabled": True}})
        observer = SlackObserver(scheduler=scheduler, clock=clock, http_session=http_session)

        observer.on_flow_create(make_session(webhook_config))
        observer.on_flow_begin()
        http_session.post.assert_not_called()

        observer.on_flow_complete()

        assert http_session.post.call_count == 1
        url = http_session.post.call_args[0][0]
        payload = http_session.post.call_args[1]["json"]
        assert url == "https://hooks.slack.com/services/T000/B000/XXXX"
        assert payload["blocks"][0]["text"]["text"] == "✅ *Pipeline completed successfully*"
        titles = field_titles(payload)
        assert {"Run Name", "Duration", "Status"} <= set(titles)


class TestBotScenario:
    def test_complete_then_upload_in_thread(
        self, scheduler, clock, http_session, make_session, bot_config, fake_slack, tmp_path, monkeypatch
    ):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "report.html").write_text("<html>results</html>")
        bot_config["slack"].update({"useThreads": True, "onComplete": {"files": ["report.html"]}})

        observer = SlackObserver(scheduler=scheduler, clock=clock, http_session=http_session)
        observer.on_flow_create(make_session(bot_config))
        observer.on_flow_complete()

        steps = [(method, url.rsplit("/", 1)[-1]) for method, url, _ in fake_slack]
        assert steps == [
            ("POST", "chat.postMessage"),
            ("POST", "chat.postMessage"),
            ("GET", "files.getUploadURLExternal"),
            ("POST", "xyz"),
            ("POST", "files.completeUploadExternal"),
        ]

        complete_message = fake_slack[1][2]["json"]
        assert complete_message["thread_ts"] == THREAD_TS

        complete_upload = fake_slack[4][2]["json"]
        assert complete_upload["thread_ts"] == THREAD_TS
        assert complete_upload["files"] == [{"id": "F07REPORT", "title": "report.html"}]
        assert observer.sender.thread_ts == THREAD_TS

    def test_missing_file_is_skipped(
        self, scheduler, clock, http_session, make_session, bot_config, fake_slack, tmp_path, caplog
    ):
        report = tmp_path / "report.html"
        report.write_text("<html>results</html>")
        bot_config["slack"]["onError"] = {"files": [str(tmp_path / "missing.log"), str(report)]}

        observer = SlackObserver(scheduler=scheduler, clock=clock, http_session=http_session)
        observer.on_flow_create(make_session(bot_config))
        observer.on_flow_error()

        uploads = [url for method, url, _ in fake_slack if url.endswith("files.completeUploadExternal")]
        assert len(uploads) == 1
        assert "File not found" in caplog.text

    def test_uploads_count(self, scheduler, clock, http_session, make_session, bot_config, fake_slack, tmp_path):
        files = []
        for name in ("a.txt", "b.txt"):
            path = tmp_path / name
            path.write_text(name)
            files.append(str(path))

        observer = SlackObserver(scheduler=scheduler, clock=clock, http_session=http_session)
        observer.on_flow_create(make_session(bot_config))

        assert observer.upload_files(files, thread_ts=observer.thread_ts()) == 2
