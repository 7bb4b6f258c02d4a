"""Privileged host shutdown and reboot."""

import logging
import os
import shutil
import subprocess
from enum import Enum
from typing import List, Optional

logger = logging.getLogger(__name__)


class ShutdownKind(Enum):
    SHUTDOWN = "poweroff"
    REBOOT = "reboot"
    HALT = "halt"


class ShutdownReason(Enum):
    """Reason recorded alongside the request (shown in the shutdown wall message)."""

    THERMAL = "CPU temperature exceeded safe limits"
    POWER = "Power supply failure"
    PLANNED = "Planned maintenance"
    OTHER = "Requested by sysmond"


class ShutdownAgent:
    """
    Ask systemd to power off or reboot the host.

    When not running as root, the first request checks once that ``sudo``
    can be used without a password; if it cannot, every request fails.
    """

    def __init__(
        self,
        use_sudo: bool = True,
        dry_run: bool = False,
        command_timeout: int = 10,
    ):
        self.use_sudo = use_sudo
        self.dry_run = dry_run
        self.command_timeout = command_timeout
        self._elevation: Optional[List[str]] = None

    def _elevate(self) -> Optional[List[str]]:
        """
        Command prefix granting shutdown privileges.

        Returns:
            [] when already root, ["sudo", "-n"] when passwordless sudo works,
            None when elevation is impossible
        """
        if self._elevation is not None:
            return self._elevation

        if os.geteuid() == 0:
            self._elevation = []
            return self._elevation

        if not self.use_sudo or shutil.which("sudo") is None:
            return None

        try:
            subprocess.run(
                ["sudo", "-n", "true"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=True,
                timeout=self.command_timeout,
            )
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            logger.error(f"Privilege elevation failed: {e}")
            return None

        self._elevation = ["sudo", "-n"]
        return self._elevation

    def request_shutdown(
        self,
        kind: ShutdownKind = ShutdownKind.SHUTDOWN,
        reason: ShutdownReason = ShutdownReason.THERMAL,
    ) -> bool:
        """
        Request a host power transition.

        Returns:
            True if systemd accepted the request
        """
        if self.dry_run:
            logger.warning(f"Dry run, not executing: systemctl {kind.value} ({reason.value})")
            return True

        prefix = self._elevate()
        if prefix is None:
            logger.error(f"Cannot {kind.value}: insufficient privileges")
            return False

        cmd = prefix + ["systemctl", kind.value, f"--message={reason.value}"]

        logger.critical(f"Requesting {kind.value}: {reason.value}")
        try:
            subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.command_timeout,
            )
        except subprocess.CalledProcessError as e:
            logger.error(f"systemctl {kind.value} failed: {e.stderr.strip() if e.stderr else e}")
            return False
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            logger.error(f"systemctl {kind.value} failed: {e}")
            return False

        return True
