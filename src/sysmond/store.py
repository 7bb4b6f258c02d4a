"""Persistent typed key-value store for flags and thresholds."""

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import yaml

logger = logging.getLogger(__name__)

UNSAFE_SHUTDOWN_PENDING = "unsafe_shutdown_pending"
SAFE_CPU_TEMPERATURE = "safe_cpu_temperature"
CRITICAL_CPU_TEMPERATURE = "critical_cpu_temperature"
DANGEROUS_CPU_TEMPERATURE = "dangerous_cpu_temperature"
TELEMETRY_FILE_LOCATION = "telemetry_file_location"

CRITICAL_MARGIN = 5.0
SAFE_MARGIN = 15.0

# Returns a replacement value, or None to keep the stored one
Validator = Callable[[Any, Dict[str, Any]], Optional[Any]]


class StoreError(Exception):
    """Flag store read or write failure."""

    pass


@dataclass(frozen=True)
class StoreEntry:
    """Declaration of a stored value."""

    name: str
    kind: type
    default: Any
    validator: Optional[Validator] = None

    def accepts(self, value: Any) -> bool:
        """Check whether a raw stored value matches the declared kind."""
        if value is None:
            return False
        if self.kind is bool:
            return isinstance(value, bool)
        if isinstance(value, bool):
            return False
        if self.kind is float:
            return isinstance(value, (int, float))
        return isinstance(value, self.kind)


def _clamp_critical(value: Any, snapshot: Dict[str, Any]) -> Optional[float]:
    dangerous = snapshot.get(DANGEROUS_CPU_TEMPERATURE)
    if dangerous is not None and value > dangerous - CRITICAL_MARGIN:
        return dangerous - CRITICAL_MARGIN
    return None


def _clamp_safe(value: Any, snapshot: Dict[str, Any]) -> Optional[float]:
    critical = snapshot.get(CRITICAL_CPU_TEMPERATURE)
    if critical is not None and value > critical - SAFE_MARGIN:
        return critical - SAFE_MARGIN
    return None


# Order matters: validators see the entries loaded before them
DEFAULT_ENTRIES: List[StoreEntry] = [
    StoreEntry(UNSAFE_SHUTDOWN_PENDING, bool, False),
    StoreEntry(DANGEROUS_CPU_TEMPERATURE, float, 85.0),
    StoreEntry(CRITICAL_CPU_TEMPERATURE, float, 80.0, _clamp_critical),
    StoreEntry(SAFE_CPU_TEMPERATURE, float, 65.0, _clamp_safe),
    StoreEntry(TELEMETRY_FILE_LOCATION, str, "/var/log/sysmond/telemetry.txt"),
]


class FlagStore:
    """
    YAML-file backed store of typed values.

    ``load()`` builds an in-memory snapshot, writing back defaults for absent
    or mistyped entries and persisting validator corrections. ``set()`` is
    durable: the file is replaced atomically and re-read to verify.
    """

    def __init__(self, path: Path, entries: Sequence[StoreEntry] = DEFAULT_ENTRIES):
        self.path = Path(path)
        self.entries = {entry.name: entry for entry in entries}
        self._snapshot: Optional[Dict[str, Any]] = None

    def load(self) -> Dict[str, Any]:
        """
        Read the store and apply defaults and validators.

        Returns:
            Snapshot of every declared entry

        Raises:
            StoreError: If the file cannot be read, parsed or written back
        """
        raw = self._read_file()
        snapshot: Dict[str, Any] = {}
        dirty = False

        for entry in self.entries.values():
            value = raw.get(entry.name)

            if not entry.accepts(value):
                if entry.name in raw:
                    logger.warning(
                        f"Store entry {entry.name}={value!r} is not {entry.kind.__name__}, "
                        f"resetting to {entry.default!r}"
                    )
                value = entry.default
                dirty = True
            elif entry.validator is not None:
                corrected = entry.validator(value, snapshot)
                if corrected is not None:
                    logger.warning(
                        f"Store entry {entry.name}={value!r} corrected to {corrected!r}"
                    )
                    value = corrected
                    dirty = True

            if entry.kind is float:
                value = float(value)
            snapshot[entry.name] = value

        if dirty:
            raw.update(snapshot)
            self._write_file(raw)

        self._snapshot = snapshot
        return dict(snapshot)

    def get(self, name: str) -> Any:
        """Get a value from the loaded snapshot."""
        if name not in self.entries:
            raise KeyError(f"Unknown store entry: {name}")
        if self._snapshot is None:
            self.load()
        return self._snapshot[name]

    def set(self, name: str, value: Any) -> None:
        """
        Persist a value.

        Raises:
            StoreError: If the write fails or does not read back
        """
        entry = self.entries.get(name)
        if entry is None:
            raise KeyError(f"Unknown store entry: {name}")
        if not entry.accepts(value):
            raise StoreError(f"{name} expects {entry.kind.__name__}, got {value!r}")

        raw = self._read_file()
        raw[name] = value
        self._write_file(raw)

        # Verify
        if self._read_file().get(name) != value:
            raise StoreError(f"{name} did not persist in {self.path}")

        if self._snapshot is not None:
            self._snapshot[name] = value

    def _read_file(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            return {}
        except (OSError, yaml.YAMLError) as e:
            raise StoreError(f"Couldn't read {self.path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise StoreError(f"{self.path} does not contain a mapping")
        return data

    def _write_file(self, data: Dict[str, Any]) -> None:
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", dir=str(self.path.parent)
            )
            with os.fdopen(fd, "w") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
            self._fsync_dir()
        except OSError as e:
            raise StoreError(f"Couldn't write {self.path}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

    def _fsync_dir(self) -> None:
        dir_fd = os.open(str(self.path.parent), os.O_RDONLY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)
