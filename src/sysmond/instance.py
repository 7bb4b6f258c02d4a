"""Single-instance enforcement through an exclusive lock file."""

import fcntl
import logging
import os
from pathlib import Path
from typing import Dict, Optional

from .utils import process_executable

logger = logging.getLogger(__name__)


class InstanceLock:
    """
    System-wide exclusive lock held for the whole daemon run.

    The holder records its PID and the executable of its parent process in
    the lock file so a second invocation can tell the operator who started
    the running instance.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> bool:
        """
        Try to take the lock without blocking.

        Returns:
            True if this process now holds the lock
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.path), os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            return False

        self._fd = fd
        parent = process_executable(os.getppid()) or ""
        os.ftruncate(fd, 0)
        os.write(fd, f"pid={os.getpid()}\nparent={parent}\n".encode())
        return True

    def holder(self) -> Dict[str, str]:
        """Best-effort details written by the current lock holder."""
        info = {}
        try:
            text = self.path.read_text()
        except OSError:
            return info

        for line in text.splitlines():
            key, sep, value = line.partition("=")
            if sep and value:
                info[key.strip()] = value.strip()
        return info

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    def __enter__(self) -> "InstanceLock":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
