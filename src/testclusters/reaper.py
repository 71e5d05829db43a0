"""Reaper collaborator.

The reaper guarantees node processes are eventually killed even when the
normal teardown never runs. Nodes only tell it about pids; they never
query it.

PidFileReaper records one pid file per node in a directory; reap() kills
whatever is still listed there, e.g. after the test JVM or a CI job was
aborted.
"""

import logging
import os
import signal
import time
from pathlib import Path
from typing import Protocol

from testclusters.paths import safe_name

logger = logging.getLogger(__name__)


class Reaper(Protocol):
    def register_pid(self, node_id: str, pid: int) -> None: ...

    def unregister(self, node_id: str) -> None: ...


class PidFileReaper:
    """Reaper backed by ``<directory>/<node id>.pid`` files."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def pid_file(self, node_id: str) -> Path:
        return self.directory / f"{safe_name(node_id)}.pid"

    def register_pid(self, node_id: str, pid: int) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self.pid_file(node_id).write_text(f"{pid}\n")
        logger.debug("Registered pid %d for %s", pid, node_id)

    def unregister(self, node_id: str) -> None:
        try:
            self.pid_file(node_id).unlink()
        except FileNotFoundError:
            pass


def _read_pid(pid_file: Path) -> int | None:
    """Read PID from file. Returns None if file doesn't exist or is invalid."""
    try:
        return int(pid_file.read_text().strip())
    except (FileNotFoundError, ValueError):
        return None


def _process_alive(pid: int) -> bool:
    """Check if process with given PID exists."""
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        return True  # Process exists but we can't signal it


def _kill_process(pid: int, timeout: float = 5.0) -> bool:
    """Kill process: SIGKILL, then wait for it to disappear.

    Returns True if process was stopped.
    """
    if not _process_alive(pid):
        return True
    try:
        os.kill(pid, getattr(signal, 'SIGKILL', signal.SIGTERM))
    except ProcessLookupError:
        return True

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not _process_alive(pid):
            return True
        time.sleep(0.2)
    return not _process_alive(pid)


def reap(directory: Path) -> list[int]:
    """Kill every process still registered in directory.

    Returns:
        PIDs that were found alive and killed
    """
    directory = Path(directory)
    if not directory.is_dir():
        return []

    killed = []
    for pid_file in sorted(directory.glob('*.pid')):
        pid = _read_pid(pid_file)
        if pid is not None and _process_alive(pid):
            logger.warning("Reaping leftover process %d (%s)", pid, pid_file.stem)
            if _kill_process(pid):
                killed.append(pid)
            else:
                logger.error("Failed to kill leftover process %d", pid)
                continue
        pid_file.unlink(missing_ok=True)
    return killed
