"""Common utilities for running node tooling."""

import logging
import subprocess
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform.startswith('win')


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: int = 600,
    env: Optional[dict] = None,
    input_text: Optional[str] = None,
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr)."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
            input=input_text if input_text is not None else '',
            check=False  # We handle return codes explicitly
        )
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return -1, '', f'Command timed out after {timeout}s'
    except OSError as e:
        return -1, '', str(e)


def wait_until(
    predicate: Callable[[], bool],
    timeout: float,
    interval: float = 0.5,
) -> bool:
    """Poll predicate until it returns True or timeout seconds pass."""
    deadline = time.monotonic() + timeout
    while True:
        if predicate():
            return True
        if time.monotonic() >= deadline:
            return False
        time.sleep(interval)


def append_build_message(log_file: Path, message: str) -> None:
    """Append a build-side progress line to a node's stdout log."""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(timezone.utc).isoformat()
    with open(log_file, 'a', encoding='utf-8') as f:
        f.write(f"[{timestamp}] [BUILD] {message}\n")
