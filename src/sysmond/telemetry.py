"""Optional telemetry: append selected system journal entries to a text file."""

import json
import logging
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from .lifecycle import DAEMON_NAME, CancellationToken
from .notify import Notifier

logger = logging.getLogger(__name__)

WORKER_NAME = "telemetry"

PRIORITY_NAMES = {
    "0": "Emergency",
    "1": "Alert",
    "2": "Critical",
    "3": "Error",
    "4": "Warning",
    "5": "Notice",
    "6": "Information",
    "7": "Debug",
}


def format_entry(entry: Dict[str, str]) -> str:
    """Render one ``journalctl -o json`` record as a telemetry block."""
    usec = entry.get("__REALTIME_TIMESTAMP")
    generated = (
        datetime.fromtimestamp(int(usec) / 1_000_000).isoformat(sep=" ", timespec="seconds")
        if usec
        else "unknown"
    )
    return (
        "[Event]\n"
        f"Source: {entry.get('SYSLOG_IDENTIFIER', 'unknown')}\n"
        f"Type: {PRIORITY_NAMES.get(str(entry.get('PRIORITY')), 'Unknown')}\n"
        f"Generated at: {generated}\n"
        f"ID: {entry.get('MESSAGE_ID', '')}\n"
        f"Message: \"{entry.get('MESSAGE', '')}\"\n"
    )


class JournalReader:
    """Read journal entries for one syslog identifier after a cursor."""

    def __init__(self, identifier: str = "kernel", command_timeout: int = 10):
        self.identifier = identifier
        self.command_timeout = command_timeout
        self.cursor: Optional[str] = None

    def _query(self, extra: List[str]) -> List[Dict[str, str]]:
        result = subprocess.run(
            ["journalctl", "--no-pager", "-q", "-o", "json", "-t", self.identifier] + extra,
            capture_output=True,
            text=True,
            check=True,
            timeout=self.command_timeout,
        )
        entries = []
        for line in result.stdout.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                logger.debug(f"Skipping malformed journal line: {line[:80]}")
        return entries

    def mark_position(self) -> None:
        """Start reading after the newest existing entry."""
        entries = self._query(["-n", "1"])
        if entries:
            self.cursor = entries[-1].get("__CURSOR")

    def read_new(self) -> List[Dict[str, str]]:
        extra = ["--after-cursor", self.cursor] if self.cursor else []
        entries = self._query(extra)
        if entries:
            self.cursor = entries[-1].get("__CURSOR", self.cursor)
        return entries


class TelemetryCollector:
    """
    Append a start marker and new journal entries to the telemetry file.

    A failed append suspends collection for the rest of the run; the worker
    still waits for cancellation like its siblings.
    """

    def __init__(
        self,
        path: Path,
        reader: JournalReader,
        notifier: Notifier,
        token: CancellationToken,
        poll_interval: float = 5.0,
        started_at: Optional[datetime] = None,
    ):
        self.path = Path(path)
        self.reader = reader
        self.notifier = notifier
        self.token = token
        self.poll_interval = poll_interval
        self.started_at = started_at or datetime.now()
        self.suspended = False

    def _notify(self, body: str) -> None:
        self.notifier.notify(
            DAEMON_NAME, body, WORKER_NAME, include_timestamp=True, level=logging.ERROR
        )

    def _header(self) -> str:
        return f"{{daemon_started_at: {self.started_at.isoformat(sep=' ', timespec='seconds')}}}\n"

    def _append(self, text: str) -> None:
        with open(self.path, "a") as f:
            f.write(text)

    def run(self) -> int:
        """Worker entry point."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._notify(
                f"Couldn't create the missing directories for the telemetry file: \"{self.path}\""
            )

        try:
            self._append(self._header())
        except OSError as e:
            self._notify(
                f"Couldn't write or append data to the telemetry file: \"{self.path}\"\n\"{e}\""
            )
            return 0

        try:
            self.reader.mark_position()
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            logger.warning(f"Couldn't read the system journal: {e}")

        while not self.token.wait(self.poll_interval):
            if not self.suspended:
                self.collect()

        logger.info("Cancellation observed, stopping telemetry")
        return 0

    def collect(self) -> int:
        """Append entries written since the last call; returns how many."""
        try:
            entries = self.reader.read_new()
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            logger.warning(f"Couldn't read the system journal: {e}")
            return 0

        if not entries:
            return 0

        text = "".join(format_entry(entry) for entry in entries)
        try:
            if not self.path.exists():
                text = self._header() + text
            self._append(text)
        except OSError as e:
            self._notify(
                f"Couldn't write or append data to the telemetry file: \"{self.path}\"\n"
                f"\"{e}\"\nSuspending telemetry..."
            )
            self.suspended = True
            return 0

        return len(entries)
