"""Exceptions raised while configuring and running test cluster nodes.

Every failure surfaces immediately to the caller. The only bounded
retries are readiness re-polling and graceful-to-forceful termination.
"""

from pathlib import Path
from typing import Optional, Union


class TestClustersError(Exception):
    """Base exception for test cluster errors."""

    # keep pytest from collecting this as a test class
    __test__ = False


class ConfigurationFrozen(TestClustersError):
    """Configuration was mutated after freeze()."""


class IncompleteConfiguration(TestClustersError):
    """freeze() was called without java home or distributions."""


class InvalidConfiguration(TestClustersError):
    """A configuration value was rejected when it was declared."""


class IllegalOverride(TestClustersError):
    """User settings redefine a protected default key."""

    def __init__(self, keys, node: str = ''):
        self.keys = sorted(keys)
        super().__init__(
            f"Testclusters does not allow the following settings to be changed: "
            f"{self.keys} for {node}"
        )


class MissingDistribution(TestClustersError):
    """The extracted distribution directory is missing or not a directory."""


class MissingSourceFile(TestClustersError):
    """A declared source file does not exist."""


class InvalidDestination(TestClustersError):
    """An extra config file destination escapes the config directory."""


class ToolNotFound(TestClustersError):
    """A bin script does not exist in the distribution."""


class ToolFailed(TestClustersError):
    """A bin script exited with a non-zero status."""

    def __init__(self, tool: str, returncode: int, output: str = ''):
        self.tool = tool
        self.returncode = returncode
        self.output = output
        message = f"`{tool}` failed with exit code {returncode}"
        if output:
            message += f":\n{output}"
        super().__init__(message)


class EnvironmentConflict(TestClustersError):
    """User environment overwrites a variable the node requires."""


class InvalidJvmArgument(TestClustersError):
    """A JVM argument must be configured as a system property instead."""


class NotFrozen(TestClustersError):
    """start() was called before freeze()."""


class AlreadyRunning(TestClustersError):
    """start() was called while a process is active."""


class NoActiveProcess(TestClustersError):
    """An operation needs a running process but none was started."""


class ProcessNotTerminated(TestClustersError):
    """The process was still alive after a forced kill."""


class ProcessDied(TestClustersError):
    """The node process exited while readiness was being awaited."""


class NoMoreVersions(TestClustersError):
    """upgrade() was called on the last distribution."""


class ReadinessTimeout(TestClustersError):
    """A readiness condition was not met before the deadline."""

    def __init__(self, condition: str, message: str):
        self.condition = condition
        super().__init__(message)


class IOFailure(TestClustersError):
    """A filesystem operation failed.

    The original OSError is chained as __cause__.
    """

    def __init__(self, operation: str, path: Union[str, Path], detail: Optional[str] = None):
        self.operation = operation
        self.path = Path(path)
        message = f"{operation} failed for {path}"
        if detail:
            message += f": {detail}"
        super().__init__(message)
