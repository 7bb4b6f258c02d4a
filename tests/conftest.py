from pathlib import Path
from typing import List, Optional

import pytest

from sysmond.hardware import ThermalReading
from sysmond.lifecycle import CancellationToken
from sysmond.store import FlagStore


class FakeSensor:
    """Returns the scripted temperatures, then repeats the last one."""

    def __init__(self, temps: List[Optional[float]], token: Optional[CancellationToken] = None):
        self.temps = list(temps)
        self.calls = 0
        self.token = token

    def sample(self) -> Optional[ThermalReading]:
        index = min(self.calls, len(self.temps) - 1)
        self.calls += 1
        # Stop the controller once the script is exhausted
        if self.token is not None and self.calls >= len(self.temps):
            self.token.cancel()
        temp = self.temps[index]
        if temp is None:
            return None
        return ThermalReading(value=temp, source="fake")


class RecordingNotifier:
    def __init__(self):
        self.messages = []

    def notify(self, title, body=None, attribution=None, include_timestamp=False, level=None):
        self.messages.append(body or "")

    def bodies_containing(self, text: str) -> List[str]:
        return [m for m in self.messages if text in m]


class FakeShutdownAgent:
    def __init__(self, succeed: bool = True, store: Optional[FlagStore] = None):
        self.succeed = succeed
        self.store = store
        self.requests = []
        self.flag_at_request = []

    def request_shutdown(self, kind=None, reason=None) -> bool:
        self.requests.append((kind, reason))
        if self.store is not None:
            self.flag_at_request.append(self.store._read_file().get("unsafe_shutdown_pending"))
        return self.succeed


@pytest.fixture()
def store(tmp_path: Path) -> FlagStore:
    s = FlagStore(tmp_path / "state.yaml")
    s.load()
    return s


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def token() -> CancellationToken:
    return CancellationToken()
