"""Summaries of node log files on teardown.

A single pass over the log keeps the last N messages and counts every
distinct error and warning. Lines that don't start a new log entry are
folded into the previous message so stack traces stay together.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from testclusters.errors import IOFailure

logger = logging.getLogger(__name__)

TAIL_LOG_MESSAGES_COUNT = 40
LOG_ENTRY_DELIMITER = '['
MESSAGES_WE_DONT_CARE_ABOUT = (
    "Option UseConcMarkSweepGC was deprecated",
    "is a pre-release version of Elasticsearch",
    "max virtual memory areas vm.max_map_count",
)


def normalize_log_line(line: str) -> str:
    """Cut everything before the level so the same message dedups across timestamps."""
    if 'ERROR' in line:
        return line[line.index('ERROR'):]
    if 'WARN' in line:
        return line[line.index('WARN'):]
    return line


@dataclass
class LogSummary:
    """Result of summarize().

    Attributes:
        ring: Last messages in chronological order, ignored ones removed
        aggregate: Normalized error/warning message -> occurrences, first seen first
    """
    ring: list[str] = field(default_factory=list)
    aggregate: dict[str, int] = field(default_factory=dict)

    def tail(self) -> list[str]:
        """Ring messages that aren't already reported in the aggregate."""
        return [m for m in self.ring if normalize_log_line(m) not in self.aggregate]

    @property
    def is_empty(self) -> bool:
        return not self.ring and not self.aggregate


def summarize(
    log_file: Path,
    tail_size: int = TAIL_LOG_MESSAGES_COUNT,
    ignore: Iterable[str] = MESSAGES_WE_DONT_CARE_ABOUT,
) -> LogSummary:
    """Read log_file once and summarize it.

    Raises:
        IOFailure: If the file can't be read
    """
    if tail_size < 1:
        raise ValueError(f"tail_size must be positive, got {tail_size}")
    ignore = tuple(ignore)
    ring: deque[str] = deque(maxlen=tail_size)
    aggregate: dict[str, int] = {}

    def classify(message: str):
        normalized = normalize_log_line(message)
        if any(s in normalized for s in ignore):
            return
        if 'ERROR' in normalized or 'WARN' in normalized:
            aggregate[normalized] = aggregate.get(normalized, 0) + 1

    try:
        with open(log_file, encoding='utf-8', errors='replace') as f:
            for raw in f:
                line = raw.rstrip('\r\n')
                if ring and not line.startswith(LOG_ENTRY_DELIMITER):
                    ring[-1] = f"{ring[-1]}\n{line}"
                    continue
                if ring:
                    classify(ring[-1])
                ring.append(line)
    except OSError as e:
        raise IOFailure("Tailing log", log_file, str(e)) from e

    if ring:
        classify(ring[-1])

    kept = [m for m in ring if not any(s in m for s in ignore)]
    return LogSummary(ring=kept, aggregate=aggregate)


def _quote(message: str) -> str:
    return "» " + message.replace("\n", "\n»  ")


def log_summary(
    description: str,
    log_file: Path,
    node: str,
    tail_size: int = TAIL_LOG_MESSAGES_COUNT,
    ignore: Iterable[str] = MESSAGES_WE_DONT_CARE_ABOUT,
    out: Optional[logging.Logger] = None,
) -> LogSummary:
    """Summarize log_file and write the report to a logger."""
    out = out or logger
    summary = summarize(log_file, tail_size, ignore)

    if not summary.is_empty:
        out.error("\n=== %s `%s` ===", description, node)
    if summary.aggregate:
        out.warning("\n»    ↓ errors and warnings from %s ↓", log_file)
        for message, count in summary.aggregate.items():
            out.warning(_quote(message))
            if count > 1:
                out.warning("»   ↑ repeated %d times ↑", count)

    tail = summary.tail()
    if tail:
        out.warning("»   ↓ last %d non error or warning messages from %s ↓", tail_size, log_file)
        for message in tail:
            out.warning(_quote(message))
    return summary
