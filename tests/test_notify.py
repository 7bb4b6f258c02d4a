import logging
from unittest.mock import MagicMock, patch

import requests

from sysmond.notify import DesktopSink, HomeAssistantSink, Notifier, build_notifier


class ListSink:
    def __init__(self):
        self.delivered = []

    def deliver(self, title, body, attribution):
        self.delivered.append((title, body, attribution))


class BrokenSink:
    def deliver(self, title, body, attribution):
        raise ConnectionError("unreachable")


def test_notify_logs_line(caplog):
    caplog.set_level(logging.INFO, logger="sysmond.notify")
    Notifier().notify("sysmond", "Cooling down: 70°C", "cpu_temp_safety")

    assert "[Notification] sysmond (cpu_temp_safety): Cooling down: 70°C" in caplog.text


def test_notify_timestamp_prefix(caplog):
    caplog.set_level(logging.INFO, logger="sysmond.notify")
    sink = ListSink()
    Notifier([sink], background=False).notify("sysmond", "Running...", include_timestamp=True)

    assert " | Notification] sysmond: Running..." in caplog.text
    title, body, attribution = sink.delivered[0]
    assert body.startswith("[") and body.endswith("] Running...")


def test_failing_sink_does_not_raise(caplog):
    sink = ListSink()
    notifier = Notifier([BrokenSink(), sink], background=False)

    notifier.notify("sysmond", "Shutdown failed", level=logging.ERROR)

    assert sink.delivered == [("sysmond", "Shutdown failed", None)]
    assert "BrokenSink delivery failed" in caplog.text


def test_background_delivery_returns_immediately():
    sink = ListSink()
    with patch("sysmond.notify.threading.Thread") as thread:
        Notifier([sink]).notify("sysmond", "hello")

    thread.assert_called_once()
    assert thread.call_args.kwargs["daemon"] is True
    thread.return_value.start.assert_called_once()


def test_home_assistant_posts_with_token(monkeypatch):
    monkeypatch.setenv("HA_TOKEN", "secret")
    response = MagicMock()
    with patch("sysmond.notify.requests.post", return_value=response) as post:
        HomeAssistantSink("http://ha.local:8123/", service="mobile_app_phone").deliver(
            "sysmond", "Reached critical temperature: 81°C", "cpu_temp_safety"
        )

    url = post.call_args[0][0]
    assert url == "http://ha.local:8123/api/services/notify/mobile_app_phone"
    assert post.call_args.kwargs["headers"]["Authorization"] == "Bearer secret"
    assert post.call_args.kwargs["json"] == {
        "title": "sysmond",
        "message": "Reached critical temperature: 81°C (cpu_temp_safety)",
    }
    response.raise_for_status.assert_called_once()


def test_home_assistant_http_error_is_contained(monkeypatch, caplog):
    monkeypatch.setenv("HA_TOKEN", "secret")
    response = MagicMock()
    response.raise_for_status.side_effect = requests.HTTPError("401 Unauthorized")
    notifier = Notifier([HomeAssistantSink("http://ha.local:8123")], background=False)

    with patch("sysmond.notify.requests.post", return_value=response):
        notifier.notify("sysmond", "Running...")

    assert "401 Unauthorized" in caplog.text


def test_desktop_sink_runs_notify_send(monkeypatch):
    monkeypatch.delenv("SUDO_UID", raising=False)
    monkeypatch.delenv("SUDO_GID", raising=False)
    with patch("sysmond.notify.subprocess.run") as run:
        DesktopSink().deliver("sysmond", "Power status is unknown.", "power")

    assert run.call_args[0][0] == ["notify-send", "-a", "power", "sysmond", "Power status is unknown."]


def test_desktop_sink_targets_sudo_user(monkeypatch):
    monkeypatch.setenv("SUDO_UID", "1000")
    monkeypatch.setenv("SUDO_GID", "1000")
    with patch("sysmond.notify.os.geteuid", return_value=0), patch(
        "sysmond.notify.subprocess.run"
    ) as run:
        DesktopSink().deliver("sysmond", "Running...", None)

    cmd = run.call_args[0][0]
    assert cmd[:3] == ["sudo", "-u", "#1000"]
    assert run.call_args.kwargs["env"]["DBUS_SESSION_BUS_ADDRESS"] == "unix:path=/run/user/1000/bus"


def test_build_notifier():
    notifier = build_notifier({"desktop": False, "home_assistant": {"url": "http://ha"}})
    assert [type(s) for s in notifier.sinks] == [HomeAssistantSink]

    assert build_notifier({"desktop": False}).sinks == []
