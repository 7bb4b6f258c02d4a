"""Utility functions for sysmond."""

import os
from pathlib import Path
from typing import Dict, Optional, Tuple


def get_original_user() -> Optional[Tuple[int, int]]:
    """
    Get the UID and GID of the user who invoked sudo.

    Returns:
        Tuple of (uid, gid) if running under sudo, None otherwise
    """
    sudo_uid = os.environ.get("SUDO_UID")
    sudo_gid = os.environ.get("SUDO_GID")

    if sudo_uid and sudo_gid:
        return (int(sudo_uid), int(sudo_gid))
    return None


def user_session_env(uid: int) -> Dict[str, str]:
    """Environment needed to reach a user's desktop session bus."""
    env = dict(os.environ)
    runtime_dir = f"/run/user/{uid}"
    env["XDG_RUNTIME_DIR"] = runtime_dir
    env["DBUS_SESSION_BUS_ADDRESS"] = f"unix:path={runtime_dir}/bus"
    return env


def process_executable(pid: int) -> Optional[str]:
    """Best-effort path of the executable running as ``pid``."""
    proc = Path("/proc") / str(pid)
    try:
        return os.readlink(proc / "exe")
    except OSError:
        pass

    try:
        comm = (proc / "comm").read_text().strip()
    except OSError:
        return None
    return comm or None
