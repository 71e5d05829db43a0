"""Lifecycle of a single test cluster node.

States: UNCONFIGURED -> CONFIGURED -> FROZEN -> {STOPPED <-> RUNNING}.
The node is configured through ``node.spec`` until freeze(); after that
it can be started, stopped, restarted and upgraded to the next declared
distribution for rolling upgrade tests.

start() and stop() are serialized with a per-node lock since both touch
the process handle and the working directory.
"""

import logging
import subprocess
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

import psutil

from testclusters.common import IS_WINDOWS, append_build_message
from testclusters.config import get_jvm_argline
from testclusters.errors import (
    AlreadyRunning,
    IOFailure,
    MissingDistribution,
    NoActiveProcess,
    NoMoreVersions,
    NotFrozen,
)
from testclusters.logtail import log_summary
from testclusters.paths import WorkingPaths
from testclusters.process import ProcessSupervisor, build_environment
from testclusters.readiness import ReadinessGate, files_exist_with_delay, readiness_timeout
from testclusters.reaper import Reaper
from testclusters.settings import build_config, copy_distribution_config, write_config
from testclusters.spec import DEFAULT_USER, DistributionPointer, FrozenNodeSpec, NodeSpec
from testclusters.tools import (
    BinScriptRunner,
    copy_extra_config_files,
    install_keystore,
    install_modules,
    install_plugins,
    install_users,
)
from testclusters.version import Version
from testclusters.workdir import WorkingDirectoryManager

logger = logging.getLogger(__name__)

UPGRADED_MARKER_SETTING = 'node.attr.upgraded'
SECURITY_ENABLED_SETTING = 'xpack.security.enabled'
HTTP_SSL_SETTING = 'xpack.security.http.ssl.enabled'
HTTP_SSL_CA_SETTING = 'xpack.security.http.ssl.certificate_authorities'
HTTP_SSL_CERT_SETTING = 'xpack.security.http.ssl.certificate'
HTTP_SSL_KEYSTORE_SETTING = 'xpack.security.http.ssl.keystore.path'
HTTP_SSL_KEYSTORE_PASSWORD = 'xpack.security.http.ssl.keystore.secure_password'


class NodeState(Enum):
    UNCONFIGURED = 'unconfigured'
    CONFIGURED = 'configured'
    FROZEN = 'frozen'
    STOPPED = 'stopped'
    RUNNING = 'running'


def read_ports_file(path: Path) -> list[str]:
    try:
        return [line.strip() for line in path.read_text(encoding='utf-8').splitlines()]
    except OSError as e:
        raise IOFailure("Reading ports file", path, str(e)) from e


class ElasticsearchNode:
    """One managed server process used as a test fixture."""

    def __init__(
        self,
        path: str,
        name: str,
        reaper: Reaper,
        working_dir_base: Path,
        argline: Optional[str] = None,
    ):
        self.spec = NodeSpec(path, name)
        self.paths = WorkingPaths.create(working_dir_base, name)
        self.reaper = reaper
        self.argline = get_jvm_argline() if argline is None else argline
        self.workdir = WorkingDirectoryManager(self.paths)
        self.supervisor = ProcessSupervisor(reaper, str(self))
        self.wait_conditions = {'ports files': self._check_ports_files_exist_with_delay}
        self._frozen: Optional[FrozenNodeSpec] = None
        self._pointer: Optional[DistributionPointer] = None
        self._process: Optional[subprocess.Popen] = None
        self._started = False
        self._lock = threading.RLock()

    def __str__(self) -> str:
        return f"node{{{self.spec.path}:{self.spec.name}}}"

    def __repr__(self) -> str:
        return f"<ElasticsearchNode {self} {self.state.value}>"

    @property
    def name(self) -> str:
        return self.spec.name_customization(self.spec.name)

    @property
    def state(self) -> NodeState:
        if self._frozen is None:
            if self.spec.java_home is None or not self.spec.distributions:
                return NodeState.UNCONFIGURED
            return NodeState.CONFIGURED
        if self._process is not None:
            return NodeState.RUNNING
        return NodeState.STOPPED if self._started else NodeState.FROZEN

    @property
    def frozen_spec(self) -> FrozenNodeSpec:
        if self._frozen is None:
            raise NotFrozen(f"Configuration of {self} is not locked yet, call freeze() first")
        return self._frozen

    @property
    def distribution_index(self) -> int:
        return self._pointer.index if self._pointer is not None else 0

    @property
    def version(self) -> Version:
        distributions = self._frozen.distributions if self._frozen else self.spec.distributions
        return Version.parse(distributions[self.distribution_index].get_version())

    @property
    def config_dir(self) -> Path:
        return self.paths.config_dir

    def freeze(self) -> FrozenNodeSpec:
        """Lock the configuration. Further spec mutations raise ConfigurationFrozen."""
        if self._frozen is None:
            self._frozen = self.spec.freeze()
            self._pointer = DistributionPointer(count=len(self._frozen.distributions))
        return self._frozen

    def _log_to_process_stdout(self, message: str) -> None:
        try:
            append_build_message(self.paths.stdout_file, message)
        except OSError as e:
            raise IOFailure("Writing build message", self.paths.stdout_file, str(e)) from e

    def _extracted_distribution_dir(self) -> Path:
        distribution = self.frozen_spec.distributions[self.distribution_index]
        extracted = Path(distribution.get_extracted())
        if not extracted.exists():
            raise MissingDistribution(f"Can not start {self}, missing: {extracted}")
        if not extracted.is_dir():
            raise MissingDistribution(f"Can not start {self}, is not a directory: {extracted}")
        return extracted

    def _is_security_enabled(self) -> bool:
        return self.frozen_spec.setting_value(SECURITY_ENABLED_SETTING, 'true').strip().lower() == 'true'

    def _command(self) -> list[str]:
        if IS_WINDOWS:
            return ['cmd', '/c', str(self.paths.distro_dir / 'bin' / 'elasticsearch.bat')]
        return [str(self.paths.distro_dir / 'bin' / 'elasticsearch')]

    def start(self) -> None:
        """Set up the working directory and launch the node.

        Does not wait for readiness; call wait_for_all_conditions() after.
        """
        with self._lock:
            spec = self.frozen_spec
            if self._process is not None:
                raise AlreadyRunning(f"{self} is already running (pid {self._process.pid})")
            logger.info("Starting `%s`", self)

            extracted = self._extracted_distribution_dir()
            self.workdir.prepare(extracted)
            self._log_to_process_stdout(f"Configured working directory: {self.paths.working_dir}")

            version = self.version
            write_config(self.paths.config_file, build_config(spec, self.paths, version))
            copied = copy_distribution_config(self.paths.distro_dir / 'config', self.paths.config_dir)
            self._log_to_process_stdout(
                f"Copying additional config files from distro {[p.name for p in copied]}"
            )

            environment = build_environment(spec, self.paths, self.argline)
            runner = BinScriptRunner(self.paths.distro_dir, environment)

            if spec.plugins:
                self._log_to_process_stdout(f"Installing {len(spec.plugins)} plugins")
                install_plugins(runner, spec.plugins)

            if spec.keystore_settings or spec.keystore_files:
                self._log_to_process_stdout(
                    f"Adding {len(spec.keystore_settings)} keystore settings "
                    f"and {len(spec.keystore_files)} keystore files"
                )
                install_keystore(runner, spec.keystore_settings, spec.keystore_files)

            install_modules(self.paths.distro_dir, spec.modules, version, spec.test_distribution)

            if spec.extra_config_files:
                self._log_to_process_stdout(
                    f"Setting up {len(spec.extra_config_files)} additional config files"
                )
                copy_extra_config_files(self.paths.config_dir, spec.extra_config_files)

            if self._is_security_enabled():
                credentials = spec.credentials or (DEFAULT_USER,)
                self._log_to_process_stdout(f"Setting up {len(credentials)} users")
                install_users(runner, credentials)

            self._log_to_process_stdout("Starting Elasticsearch process")
            self._process = self.supervisor.start(
                self._command(),
                environment,
                self.paths.working_dir,
                self.paths.stdout_file,
                self.paths.stderr_file,
            )
            self._started = True

    def _process_handle(self) -> Optional[psutil.Process]:
        if self._process is None or self._process.poll() is not None:
            return None
        try:
            return psutil.Process(self._process.pid)
        except psutil.NoSuchProcess:
            return None

    def stop(self, tail_logs: bool) -> None:
        """Kill the node, optionally reporting its logs.

        Test clusters are not reused, so there is no graceful shutdown. When
        start() failed before a process existed, stop(True) is a no-op so
        teardown can run unconditionally.

        Raises:
            NoActiveProcess: If no process is running and tail_logs is False
        """
        with self._lock:
            self._log_to_process_stdout("Stopping node")
            for ports_file in self.paths.port_files:
                try:
                    ports_file.unlink()
                except FileNotFoundError:
                    pass
                except OSError as e:
                    raise IOFailure("Deleting ports file", ports_file, str(e)) from e

            if self._process is None:
                if tail_logs:
                    return
                raise NoActiveProcess(f"Can't stop `{self}` as it was not started or already stopped.")

            logger.info("Stopping `%s`, tailLogs: %s", self, tail_logs)
            self.supervisor.terminate(self._process_handle(), forcibly=True)
            self._process.poll()
            if tail_logs:
                log_summary("Standard output of node", self.paths.stdout_file, str(self))
                log_summary("Standard error of node", self.paths.stderr_file, str(self))
            self._process = None

    def restart(self) -> None:
        logger.info("Restarting %s", self)
        with self._lock:
            self.stop(False)
            self.start()

    def upgrade(self) -> None:
        """Move a running node to the next distribution.

        Raises:
            NoMoreVersions: If the node already runs the last distribution
        """
        with self._lock:
            spec = self.frozen_spec
            pointer = self._pointer
            if not pointer.has_next:
                raise NoMoreVersions(f"Ran out of versions to go to for {self}")
            next_version = spec.distributions[pointer.index + 1].get_version()
            self._log_to_process_stdout(f"Switch version from {self.version} to {next_version}")
            self.stop(False)
            self._pointer = pointer.advance()
            self._frozen = spec.with_setting(UPGRADED_MARKER_SETTING, 'true')
            self.start()

    def is_process_alive(self) -> bool:
        if self._process is None:
            raise NoActiveProcess(
                f"Can't wait for `{self}` as it's not started. Does the task use the cluster?"
            )
        return self._process.poll() is None

    def _check_ports_files_exist_with_delay(self) -> bool:
        return files_exist_with_delay(self.paths.http_ports_file, self.paths.transport_ports_file)

    def readiness_timeout(self) -> float:
        return readiness_timeout(self.frozen_spec.setup_work_units)

    def wait_for_all_conditions(self, started_at: Optional[float] = None) -> None:
        """Block until the node is up.

        Raises:
            ReadinessTimeout: If a condition isn't met in time
            ProcessDied: If the node exits while waiting
        """
        gate = ReadinessGate(str(self), is_alive=self.is_process_alive)
        gate.wait_for(
            self.wait_conditions,
            self.readiness_timeout(),
            started_at if started_at is not None else time.monotonic(),
        )

    @property
    def http_socket_uri(self) -> str:
        return self.all_http_socket_uris[0]

    @property
    def transport_port_uri(self) -> str:
        return self.all_transport_port_uris[0]

    @property
    def all_http_socket_uris(self) -> list[str]:
        return read_ports_file(self.paths.http_ports_file)

    @property
    def all_transport_port_uris(self) -> list[str]:
        return read_ports_file(self.paths.transport_ports_file)

    def log_lines(self) -> Iterator[str]:
        with open(self.paths.stdout_file, encoding='utf-8', errors='replace') as f:
            for line in f:
                yield line.rstrip('\n')

    def _cluster_name(self) -> str:
        settings = self._frozen.settings if self._frozen is not None else self.spec.settings
        value = settings.get('cluster.name')
        return value.resolve() if value is not None else self.name

    @property
    def server_log(self) -> Path:
        return self.paths.logs_dir / f"{self._cluster_name()}_server.json"

    @property
    def audit_log(self) -> Path:
        return self.paths.logs_dir / f"{self._cluster_name()}_audit.json"

    def is_http_ssl_enabled(self) -> bool:
        return self.frozen_spec.setting_value(HTTP_SSL_SETTING, 'false').strip().lower() == 'true'

    def configure_http_wait(self, waiter) -> None:
        """Pass TLS hints from the node's settings to an HTTP readiness waiter."""
        spec = self.frozen_spec
        certificate_authorities = None
        for key in (HTTP_SSL_CA_SETTING, HTTP_SSL_CERT_SETTING):
            if (value := spec.setting_value(key)) is not None:
                certificate_authorities = self.config_dir / value
        trust_store = None
        if (value := spec.setting_value(HTTP_SSL_KEYSTORE_SETTING)) is not None:
            trust_store = self.config_dir / value
        trust_store_password = None
        if HTTP_SSL_KEYSTORE_PASSWORD in spec.keystore_settings:
            trust_store_password = spec.keystore_settings[HTTP_SSL_KEYSTORE_PASSWORD].resolve()
        waiter.configure(
            certificate_authorities=certificate_authorities,
            trust_store=trust_store,
            trust_store_password=trust_store_password,
        )
