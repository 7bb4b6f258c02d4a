"""AC/battery power-source transition alerts."""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from .lifecycle import DAEMON_NAME, CancellationToken
from .notify import Notifier

logger = logging.getLogger(__name__)

WORKER_NAME = "power_supply_switch_alerter"

LINE_SUPPLY_TYPES = ("Mains", "USB")


class PowerLineStatus(Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


class PowerEventKind(Enum):
    STATUS_CHANGE = "status_change"
    SUSPEND = "suspend"
    RESUME = "resume"


@dataclass(frozen=True)
class PowerStatus:
    line: PowerLineStatus
    charging: bool = False


@dataclass(frozen=True)
class PowerEvent:
    kind: PowerEventKind


PowerCallback = Callable[[PowerEvent], None]


def read_power_status(supply_root: Path) -> PowerStatus:
    """Summarize ``/sys/class/power_supply`` into a line status."""
    line_supplies = []
    charging = False

    for supply in sorted(Path(supply_root).glob("*")):
        try:
            supply_type = (supply / "type").read_text().strip()
        except OSError:
            continue

        if supply_type in LINE_SUPPLY_TYPES:
            try:
                line_supplies.append((supply / "online").read_text().strip() == "1")
            except OSError:
                continue
        elif supply_type == "Battery":
            try:
                charging = charging or (supply / "status").read_text().strip() == "Charging"
            except OSError:
                continue

    if not line_supplies:
        return PowerStatus(PowerLineStatus.UNKNOWN, charging)
    if any(line_supplies):
        return PowerStatus(PowerLineStatus.ONLINE, charging)
    return PowerStatus(PowerLineStatus.OFFLINE, charging)


class PowerSupplyWatcher:
    """
    Event source for power-supply changes.

    A background thread polls sysfs and sends a STATUS_CHANGE event to every
    subscriber when the summarized status changes. The thread runs only while
    somebody is subscribed.
    """

    def __init__(self, supply_root: str = "/sys/class/power_supply", poll_interval: float = 2.0):
        self.supply_root = Path(supply_root)
        self.poll_interval = poll_interval
        self._subscribers: List[PowerCallback] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def status(self) -> PowerStatus:
        return read_power_status(self.supply_root)

    def subscribe(self, callback: PowerCallback) -> PowerStatus:
        """
        Register ``callback`` for STATUS_CHANGE events.

        Returns:
            The status changes are detected against from now on
        """
        with self._lock:
            self._subscribers.append(callback)
            baseline = self.status()
            if self._thread is None:
                self._stop.clear()
                self._thread = threading.Thread(
                    target=self._watch,
                    args=(baseline,),
                    name="power-supply-watcher",
                    daemon=True,
                )
                self._thread.start()
            return baseline

    def unsubscribe(self, callback: PowerCallback) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)
            thread = self._thread if not self._subscribers else None
            if thread is not None:
                self._thread = None
                self._stop.set()

        if thread is not None:
            thread.join()

    def _watch(self, last: PowerStatus) -> None:
        while not self._stop.wait(self.poll_interval):
            current = self.status()
            if current == last:
                continue
            last = current

            with self._lock:
                subscribers = list(self._subscribers)
            for callback in subscribers:
                try:
                    callback(PowerEvent(PowerEventKind.STATUS_CHANGE))
                except Exception:
                    logger.exception("Power event subscriber failed")


def describe(status: PowerStatus) -> str:
    """Human-readable message for a line status."""
    if status.line == PowerLineStatus.UNKNOWN:
        return "Power status is unknown."
    if status.line == PowerLineStatus.ONLINE:
        charging = " (Battery in charge)" if status.charging else ""
        return f"Computer is now running on AC{charging} power."
    return "Computer is now running on battery power."


class PowerSourceMonitor:
    """Notify the operator whenever the machine switches between AC and battery."""

    def __init__(self, source: PowerSupplyWatcher, notifier: Notifier, token: CancellationToken):
        self.source = source
        self.notifier = notifier
        self.token = token

    def on_event(self, event: PowerEvent) -> None:
        if event.kind != PowerEventKind.STATUS_CHANGE:
            return
        self.notifier.notify(
            DAEMON_NAME, describe(self.source.status()), WORKER_NAME, include_timestamp=True
        )

    def run(self) -> int:
        """Worker entry point: baseline report, then wait for cancellation."""
        baseline = self.source.subscribe(self.on_event)
        try:
            self.notifier.notify(
                DAEMON_NAME, describe(baseline), WORKER_NAME, include_timestamp=True
            )
            self.token.wait()
        finally:
            self.source.unsubscribe(self.on_event)

        logger.info("Cancellation observed, stopping power source monitor")
        return 0
