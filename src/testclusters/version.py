"""Comparable server versions and the thresholds that drive default settings."""

import re
from dataclasses import dataclass
from functools import total_ordering

_VERSION_RE = re.compile(r'^v?(\d+)\.(\d+)\.(\d+)(?:-(.+))?$')


@total_ordering
@dataclass(frozen=True)
class Version:
    """A semver-like version, e.g. ``7.4.0`` or ``8.0.0-SNAPSHOT``.

    Qualifiers are kept for display but ignored when comparing.
    """
    major: int
    minor: int
    revision: int
    qualifier: str = ''

    @classmethod
    def parse(cls, value) -> 'Version':
        if isinstance(value, Version):
            return value
        match = _VERSION_RE.match(str(value).strip())
        if not match:
            raise ValueError(f"Invalid version format: {value!r}")
        major, minor, revision, qualifier = match.groups()
        return cls(int(major), int(minor), int(revision), qualifier or '')

    def _key(self) -> tuple:
        return (self.major, self.minor, self.revision)

    def __eq__(self, other):
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other):
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self):
        return hash(self._key())

    def on_or_after(self, other) -> bool:
        return self >= Version.parse(other)

    def before(self, other) -> bool:
        return self < Version.parse(other)

    def __str__(self) -> str:
        base = f"{self.major}.{self.minor}.{self.revision}"
        return f"{base}-{self.qualifier}" if self.qualifier else base


# Thresholds for version-conditional defaults
TRANSPORT_PORT_RENAMED = Version(6, 7, 0)
FLOOD_STAGE_MAJOR = 6
REAL_MEMORY_BREAKER_MAJOR = 7
SLOW_TASK_LOGGING_MAJOR = 8
