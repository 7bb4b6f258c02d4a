"""Operator notifications: log line plus desktop and Home Assistant sinks."""

import logging
import os
import subprocess
import threading
from datetime import datetime
from typing import List, Optional

import requests

from .utils import get_original_user, user_session_env

logger = logging.getLogger(__name__)


class DesktopSink:
    """Show a desktop notification through ``notify-send``."""

    def __init__(self, command_timeout: int = 5):
        self.command_timeout = command_timeout

    def deliver(self, title: str, body: str, attribution: Optional[str]) -> None:
        cmd = ["notify-send"]
        if attribution:
            cmd += ["-a", attribution]
        cmd += [title, body]

        env = None
        user_info = get_original_user()
        if user_info is not None and os.geteuid() == 0:
            # Root has no session bus; deliver to the user who ran sudo
            uid, _ = user_info
            cmd = ["sudo", "-u", f"#{uid}", "--preserve-env=DBUS_SESSION_BUS_ADDRESS"] + cmd
            env = user_session_env(uid)

        subprocess.run(
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
            timeout=self.command_timeout,
            env=env,
        )


class HomeAssistantSink:
    """Send a notification through a Home Assistant ``notify`` service."""

    def __init__(
        self,
        url: str,
        service: str = "notify",
        token_env: str = "HA_TOKEN",
        timeout: int = 5,
    ):
        self.url = f"{url.rstrip('/')}/api/services/notify/{service}"
        self.token_env = token_env
        self.timeout = timeout

    def deliver(self, title: str, body: str, attribution: Optional[str]) -> None:
        token = os.environ.get(self.token_env)
        if not token:
            raise RuntimeError(f"{self.token_env} not found in environment")

        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        message = f"{body} ({attribution})" if attribution else body

        response = requests.post(
            self.url,
            headers=headers,
            json={"title": title, "message": message},
            timeout=self.timeout,
        )
        response.raise_for_status()


class Notifier:
    """
    Deliver titled messages to the operator.

    Every message is logged synchronously; sink delivery happens on daemon
    threads so a slow or failing sink never blocks the caller.
    """

    def __init__(self, sinks: Optional[List] = None, background: bool = True):
        self.sinks = list(sinks or [])
        self.background = background

    def notify(
        self,
        title: str,
        body: Optional[str] = None,
        attribution: Optional[str] = None,
        include_timestamp: bool = False,
        level: int = logging.INFO,
    ) -> None:
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        line = f"[{stamp + ' | ' if include_timestamp else ''}Notification] {title}"
        if attribution:
            line += f" ({attribution})"
        if body:
            line += f": {body}"
        logger.log(level, line)

        text = f"[{stamp}] {body or ''}" if include_timestamp else (body or "")

        for sink in self.sinks:
            if self.background:
                threading.Thread(
                    target=self._deliver,
                    args=(sink, title, text, attribution),
                    name=f"notify-{type(sink).__name__}",
                    daemon=True,
                ).start()
            else:
                self._deliver(sink, title, text, attribution)

    @staticmethod
    def _deliver(sink, title: str, body: str, attribution: Optional[str]) -> None:
        try:
            sink.deliver(title, body, attribution)
        except Exception as e:
            logger.warning(f"{type(sink).__name__} delivery failed: {e}")


def build_notifier(notify_cfg: dict) -> Notifier:
    """Create a notifier from the ``notifications`` config section."""
    sinks = []

    if notify_cfg.get("desktop", True):
        sinks.append(DesktopSink())

    ha_cfg = notify_cfg.get("home_assistant") or {}
    if ha_cfg.get("url"):
        sinks.append(
            HomeAssistantSink(
                url=ha_cfg["url"],
                service=ha_cfg.get("service", "notify"),
                token_env=ha_cfg.get("token_env", "HA_TOKEN"),
                timeout=ha_cfg.get("timeout", 5),
            )
        )

    return Notifier(sinks)
