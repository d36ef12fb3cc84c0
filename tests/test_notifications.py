"""Tests for ralph.notifications module."""

import json
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError

import pytest

from ralph import notifications


class TestBuildPayload:
    def test_fields(self):
        payload = notifications.build_payload("session_start", "Starting session for demo")
        assert payload["event"] == "session_start"
        assert payload["message"] == "Starting session for demo"
        assert "T" in payload["timestamp"]

    def test_long_message_truncated(self):
        payload = notifications.build_payload("session_failed", "x" * 2000)
        assert len(payload["message"]) == notifications.MAX_MESSAGE_LENGTH + 3

    def test_unknown_event(self):
        with pytest.raises(ValueError):
            notifications.build_payload("session_paused", "")


class TestSendWebhook:
    """Tests for delivery, with urlopen patched out."""

    def test_no_url_is_noop(self):
        with patch("ralph.notifications.urlopen") as mock_open:
            assert notifications.send_webhook(None, "session_start", "hi") is False
        mock_open.assert_not_called()

    def test_posts_json(self):
        response = MagicMock(status=200)
        response.__enter__.return_value = response
        with patch("ralph.notifications.urlopen", return_value=response) as mock_open:
            assert notifications.send_webhook("http://hook.local/x", "session_complete", "done")

        req = mock_open.call_args[0][0]
        assert req.get_method() == "POST"
        assert req.full_url == "http://hook.local/x"
        assert req.get_header("Content-type") == "application/json"
        assert json.loads(req.data)["event"] == "session_complete"

    @pytest.mark.parametrize("error", [
        URLError("connection refused"),
        HTTPError("http://hook.local/x", 500, "Server Error", {}, None),
        TimeoutError("timed out"),
    ])
    def test_failures_are_logged_not_raised(self, error, caplog):
        with patch("ralph.notifications.urlopen", side_effect=error):
            assert notifications.send_webhook("http://hook.local/x", "session_failed", "boom") is False
        assert "session_failed" in caplog.text

    def test_notify_helpers(self):
        with patch("ralph.notifications.send_webhook") as mock_send:
            notifications.notify_start("http://h", "demo")
            notifications.notify_complete("http://h", 4)
            notifications.notify_failed("http://h", "stuck: loop")
        events = [c.args[1] for c in mock_send.call_args_list]
        assert events == ["session_start", "session_complete", "session_failed"]
        assert mock_send.call_args_list[1].args[2] == "Session complete after 4 iteration(s)"
