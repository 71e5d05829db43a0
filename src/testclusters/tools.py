"""One-shot setup against the node's bundled tooling.

Plugins, secret store entries and users are installed by running the
distribution's own bin scripts before the node starts. Modules and extra
config files are plain file operations.
"""

import logging
import shutil
import zipfile
from pathlib import Path
from typing import Iterable, Mapping, Optional

from testclusters.common import IS_WINDOWS, run_command
from testclusters.errors import (
    InvalidConfiguration,
    IOFailure,
    MissingSourceFile,
    ToolFailed,
    ToolNotFound,
)
from testclusters.spec import LazyValue, TestDistribution, check_config_destination
from testclusters.version import Version

logger = logging.getLogger(__name__)

PLUGIN_TOOL = 'elasticsearch-plugin'
KEYSTORE_TOOL = 'elasticsearch-keystore'
USERS_TOOL = 'elasticsearch-users'


class BinScriptRunner:
    """Runs scripts from ``<distro>/bin`` with the node's environment."""

    def __init__(self, distro_dir: Path, environment: Mapping[str, str], timeout: int = 600):
        self.distro_dir = distro_dir
        self.environment = dict(environment)
        self.timeout = timeout

    def _command(self, tool: str, args: Iterable[str]) -> list[str]:
        bin_dir = self.distro_dir / 'bin'
        if not (bin_dir / tool).exists() and not (bin_dir / f'{tool}.bat').exists():
            raise ToolNotFound(
                f"Can't run bin script: `{tool}` does not exist. "
                f"Is this the distribution you expect it to be?"
            )
        if IS_WINDOWS:
            return ['cmd', '/c', f'bin\\{tool}.bat', *args]
        return [str(bin_dir / tool), *args]

    def run(self, tool: str, *args: str, input_text: Optional[str] = None) -> str:
        """Run a bin script, returning its stdout.

        Raises:
            ToolNotFound: If neither the script nor its .bat exists
            ToolFailed: If the script exits non-zero
        """
        cmd = self._command(tool, args)
        rc, out, err = run_command(
            cmd,
            cwd=self.distro_dir,
            timeout=self.timeout,
            env=self.environment,
            input_text=input_text or '',
        )
        if rc != 0:
            logger.error("`%s` exited with %d", tool, rc)
            raise ToolFailed(tool, rc, (out + err).strip())
        return out


def install_plugins(runner: BinScriptRunner, plugins: Iterable[str]) -> None:
    for plugin in plugins:
        logger.info("Installing plugin %s", plugin)
        runner.run(PLUGIN_TOOL, 'install', '--batch', plugin)


def install_keystore(
    runner: BinScriptRunner,
    settings: Mapping[str, LazyValue],
    files: Mapping[str, Path],
) -> None:
    """Create the secret store and add settings and files to it.

    Does nothing when neither settings nor files are configured.
    """
    if not settings and not files:
        return
    runner.run(KEYSTORE_TOOL, 'create')
    for key, value in settings.items():
        runner.run(KEYSTORE_TOOL, 'add', '-x', key, input_text=value.resolve())
    for key, file in files.items():
        if not file.exists():
            raise MissingSourceFile(f"supplied keystore file {file} does not exist")
        runner.run(KEYSTORE_TOOL, 'add-file', key, str(file.absolute()))


def install_users(runner: BinScriptRunner, credentials: Iterable[Mapping[str, str]]) -> None:
    for cred in credentials:
        logger.info("Adding user %s with role %s", cred['username'], cred['role'])
        runner.run(USERS_TOOL, 'useradd', cred['username'], '-p', cred['password'], '-r', cred['role'])


def module_destination(modules_dir: Path, module: Path, version: Version) -> Path:
    """Directory a module artifact is installed to, e.g. ``modules/reindex``."""
    name = module.name.replace('.zip', '').replace(f'-{version}', '').replace('-SNAPSHOT', '')
    return modules_dir / name


def install_modules(
    distro_dir: Path,
    modules: Iterable[Path],
    version: Version,
    test_distribution: TestDistribution,
) -> list[Path]:
    """Install modules the integ-test distribution does not already bundle.

    Returns:
        Destinations that were installed
    """
    modules = list(modules)
    if test_distribution != TestDistribution.INTEG_TEST:
        logger.info(
            "Not installing %d module(s) since the %s distribution already has them",
            len(modules), test_distribution.value,
        )
        return []

    installed = []
    for module in modules:
        destination = module_destination(distro_dir / 'modules', module, version)
        if destination.exists():
            continue
        try:
            if module.name.lower().endswith('.zip'):
                with zipfile.ZipFile(module) as archive:
                    archive.extractall(destination)
            elif module.is_dir():
                shutil.copytree(module, destination)
            else:
                raise InvalidConfiguration(f"Not a valid module {module}")
        except (OSError, zipfile.BadZipFile) as e:
            raise IOFailure("Installing module", module, str(e)) from e
        installed.append(destination)
    return installed


def copy_extra_config_files(config_dir: Path, files: Mapping[str, Path]) -> None:
    """Copy user supplied files into the config directory, replacing existing ones."""
    for destination, source in files.items():
        check_config_destination(destination)
        if not source.exists():
            raise MissingSourceFile(
                f"Can't create extra config file from {source} as it does not exist"
            )
        target = config_dir / destination
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy(source, target)
        except OSError as e:
            raise IOFailure("Copying extra config file", target, str(e)) from e
        logger.info("Added extra config file %s", destination)
