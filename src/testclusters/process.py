"""Launching, supervising and terminating the node's OS process.

Termination walks the process tree explicitly: children are terminated
before their parent, since on some platforms the visible process is only a
wrapper around the real server process.
"""

import logging
import subprocess
from pathlib import Path
from typing import Mapping, Optional

import psutil

from testclusters.errors import (
    EnvironmentConflict,
    InvalidJvmArgument,
    IOFailure,
    ProcessNotTerminated,
)
from testclusters.paths import WorkingPaths
from testclusters.reaper import Reaper
from testclusters.spec import FrozenNodeSpec, resolve_all

logger = logging.getLogger(__name__)

ES_DESTROY_TIMEOUT = 20  # seconds
JAVA_HEAP_OPTS = '-Xms512m -Xmx512m -ea -esa'
SYSTEM_PROPERTY_PREFIX = '-D'
HOSTNAME_OVERRIDE = 'LinuxDarwinHostname'
COMPUTERNAME_OVERRIDE = 'WindowsComputername'


def build_environment(spec: FrozenNodeSpec, paths: WorkingPaths, argline: str = '') -> dict[str, str]:
    """Environment for the node process and its bin scripts.

    Nothing is inherited from the calling process, for reproducibility.

    Raises:
        InvalidJvmArgument: If a JVM argument is really a system property
        EnvironmentConflict: If user environment overwrites a base variable
    """
    for argument in spec.jvm_args:
        if argument.startswith(SYSTEM_PROPERTY_PREFIX):
            raise InvalidJvmArgument(
                f"Invalid jvm argument `{argument}` configure as systemProperty instead "
                f"for node{{{spec.path}:{spec.name}}}"
            )

    system_properties = ' '.join(
        f"{SYSTEM_PROPERTY_PREFIX}{key}={value}"
        for key, value in resolve_all(spec.system_properties).items()
    )
    java_opts = ' '.join(
        part for part in (JAVA_HEAP_OPTS, system_properties, ' '.join(spec.jvm_args), argline.strip())
        if part
    )
    environment = {
        'JAVA_HOME': str(spec.java_home.absolute()),
        'ES_PATH_CONF': str(paths.config_dir),
        'ES_JAVA_OPTS': java_opts,
        'ES_TMPDIR': str(paths.tmp_dir),
        # Windows defaults to c:\windows despite ES_TMPDIR
        'TMP': str(paths.tmp_dir),
        'HOSTNAME': HOSTNAME_OVERRIDE,
        'COMPUTERNAME': COMPUTERNAME_OVERRIDE,
    }

    conflicts = set(spec.environment) & set(environment)
    if conflicts:
        raise EnvironmentConflict(
            f"testcluster does not allow overwriting the following env vars {sorted(conflicts)} "
            f"for node{{{spec.path}:{spec.name}}}"
        )
    environment.update(resolve_all(spec.environment))
    return environment


def is_alive(handle: psutil.Process) -> bool:
    """True while the process exists and hasn't exited into a zombie."""
    try:
        return handle.is_running() and handle.status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        return True  # exists but we can't inspect it


def _describe(handle: psutil.Process) -> str:
    try:
        cmdline = ' '.join(f"'{arg}'" for arg in handle.cmdline())
    except psutil.Error:
        cmdline = '-'
    return f"pid:`{handle.pid}` commandLine:`{cmdline or '-'}`"


class ProcessSupervisor:
    """Owns the node's OS process: launch, registration and termination."""

    def __init__(self, reaper: Reaper, node_id: str, destroy_timeout: float = ES_DESTROY_TIMEOUT):
        self.reaper = reaper
        self.node_id = node_id
        self.destroy_timeout = destroy_timeout

    def start(
        self,
        command: list[str],
        environment: Mapping[str, str],
        working_dir: Path,
        stdout_file: Path,
        stderr_file: Path,
    ) -> subprocess.Popen:
        """Launch the process with output appended to the given files."""
        logger.info("Running `%s` in `%s` for %s", ' '.join(command), working_dir, self.node_id)
        logger.debug("Environment for %s: %s", self.node_id, dict(environment))
        try:
            stdout_file.parent.mkdir(parents=True, exist_ok=True)
            with open(stdout_file, 'ab') as out, open(stderr_file, 'ab') as err:
                process = subprocess.Popen(
                    command,
                    cwd=working_dir,
                    env=dict(environment),
                    stdin=subprocess.DEVNULL,
                    stdout=out,
                    stderr=err,
                )
        except OSError as e:
            raise IOFailure("Starting process", command[0], str(e)) from e

        self.reaper.register_pid(self.node_id, process.pid)
        return process

    def terminate(self, handle: Optional[psutil.Process], forcibly: bool) -> None:
        """Terminate a process and all its children, then unregister it.

        Returns immediately when the process is no longer running.

        Raises:
            ProcessNotTerminated: If a process survives the forced kill or may not be signalled
        """
        if handle is not None:
            self._terminate_tree(handle, forcibly)
        self.reaper.unregister(self.node_id)

    def _terminate_tree(self, handle: psutil.Process, forcibly: bool) -> None:
        if not is_alive(handle):
            logger.info("Process %s was not running when we tried to terminate it.", handle.pid)
            return

        try:
            children = handle.children()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            children = []
        for child in children:
            self._terminate_tree(child, forcibly)

        logger.info(
            "Terminating elasticsearch process %s: %s",
            'forcibly' if forcibly else 'gracefully', _describe(handle),
        )
        try:
            if forcibly:
                handle.kill()
            else:
                handle.terminate()
                self._wait_for_exit(handle)
                if not is_alive(handle):
                    return
                logger.info(
                    "process did not terminate after %s seconds, stopping it forcefully",
                    self.destroy_timeout,
                )
                handle.kill()
        except psutil.NoSuchProcess:
            return
        except psutil.AccessDenied as e:
            raise ProcessNotTerminated(
                f"Not permitted to terminate elasticsearch process {handle.pid} for {self.node_id}"
            ) from e

        self._wait_for_exit(handle)
        if is_alive(handle):
            raise ProcessNotTerminated(
                f"Was not able to terminate elasticsearch process {handle.pid} for {self.node_id}"
            )

    def _wait_for_exit(self, handle: psutil.Process) -> None:
        try:
            handle.wait(timeout=self.destroy_timeout)
        except psutil.TimeoutExpired:
            logger.info("Timed out waiting for process %s to exit", handle.pid)
        except psutil.NoSuchProcess:
            pass
