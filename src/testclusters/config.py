"""Node definitions and environment-driven settings.

A node can be described in YAML instead of code:

    name: node-0
    path: ":qa:rolling-upgrade"
    java_home: /usr/lib/jvm/java-11
    test_distribution: default
    distributions:
      - version: 6.8.0
        path: build/distributions/elasticsearch-6.8.0
      - version: 7.4.0
        path: build/distributions/elasticsearch-7.4.0
    settings:
      cluster.name: rolling
    keystore:
      bootstrap.password: changeme
    users:
      - username: admin
        password: admin-password

Relative paths are resolved against the YAML file's directory.

Environment variables:
- TESTS_JVM_ARGLINE: extra JVM arguments appended to ES_JAVA_OPTS
- TESTCLUSTERS_BASE_DIR: base directory for node working directories
- TESTCLUSTERS_REAPER_DIR: directory for reaper pid files
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml

from testclusters.errors import TestClustersError
from testclusters.spec import ExtractedDistribution, NodeSpec, TestDistribution


class ConfigError(TestClustersError):
    """Configuration error."""


def get_jvm_argline() -> str:
    return os.environ.get('TESTS_JVM_ARGLINE', '')


def get_base_dir() -> Path:
    """Base directory under which every node gets its working directory."""
    if env_path := os.environ.get('TESTCLUSTERS_BASE_DIR'):
        return Path(env_path)
    return Path.cwd() / 'build' / 'testclusters'


def get_reaper_dir() -> Path:
    if env_path := os.environ.get('TESTCLUSTERS_REAPER_DIR'):
        return Path(env_path)
    return get_base_dir() / 'reaper'


@dataclass
class NodeDefinition:
    """Parsed YAML node definition."""
    name: str
    source: Path
    path: str = ':'
    java_home: Optional[str] = None
    distributions: list = field(default_factory=list)
    test_distribution: str = TestDistribution.INTEG_TEST.value
    settings: dict = field(default_factory=dict)
    keystore: dict = field(default_factory=dict)
    keystore_files: dict = field(default_factory=dict)
    system_properties: dict = field(default_factory=dict)
    environment: dict = field(default_factory=dict)
    jvm_args: list = field(default_factory=list)
    extra_config_files: dict = field(default_factory=dict)
    plugins: list = field(default_factory=list)
    modules: list = field(default_factory=list)
    users: list = field(default_factory=list)

    def _resolve(self, value) -> Path:
        path = Path(os.path.expanduser(str(value)))
        return path if path.is_absolute() else self.source.parent / path

    def _resolve_plugin(self, value: str) -> object:
        # URIs and plugin names pass through, paths become file URIs
        if '://' in value or ('/' not in value and not value.endswith('.zip')):
            return value
        return self._resolve(value)

    def apply(self, spec: NodeSpec) -> None:
        """Declare everything in this definition on spec."""
        if self.java_home:
            spec.set_java_home(self._resolve(self.java_home))
        for entry in self.distributions:
            if not isinstance(entry, dict) or 'version' not in entry or 'path' not in entry:
                raise ConfigError(
                    f"{self.source}: each distribution needs 'version' and 'path', got {entry!r}"
                )
            spec.add_distribution(
                ExtractedDistribution(self._resolve(entry['path']), str(entry['version']))
            )
        try:
            spec.set_test_distribution(TestDistribution(self.test_distribution))
        except ValueError:
            valid = ', '.join(t.value for t in TestDistribution)
            raise ConfigError(
                f"{self.source}: invalid test_distribution '{self.test_distribution}' (valid: {valid})"
            ) from None

        for key, value in self.settings.items():
            spec.setting(key, _scalar(value))
        for key, value in self.keystore.items():
            spec.keystore(key, _scalar(value))
        for key, value in self.keystore_files.items():
            spec.keystore_file(key, self._resolve(value))
        for key, value in self.system_properties.items():
            spec.system_property(key, _scalar(value))
        for key, value in self.environment.items():
            spec.env(key, _scalar(value))
        spec.add_jvm_args(*self.jvm_args)
        for destination, source in self.extra_config_files.items():
            spec.extra_config_file(destination, self._resolve(source))
        for plugin in self.plugins:
            spec.plugin(self._resolve_plugin(str(plugin)))
        for module in self.modules:
            spec.module(self._resolve(module))
        for user in self.users:
            if not isinstance(user, dict):
                raise ConfigError(f"{self.source}: user entries must be mappings, got {user!r}")
            spec.user(**{k: str(v) for k, v in user.items()})


def _scalar(value):
    # YAML booleans become True/False, the server only accepts lowercase
    if isinstance(value, bool):
        return str(value).lower()
    return value


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_node_definition(path: Path) -> NodeDefinition:
    """Load a node definition from YAML.

    Raises:
        ConfigError: If the file is missing, malformed or has unknown keys
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Node definition not found: {path}")
    try:
        data = _parse_yaml(path)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")

    # empty sections parse as None
    data = {key: value for key, value in data.items() if value is not None}
    known = {f.name for f in fields(NodeDefinition)} - {'source'}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"{path}: unknown keys {sorted(unknown)}")
    if not data.get('name'):
        raise ConfigError(f"{path}: 'name' is required")
    return NodeDefinition(source=path.absolute(), **data)
