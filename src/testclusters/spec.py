"""Node specification: the mutable builder and its frozen snapshot.

A NodeSpec collects everything a test declares about a node (distributions,
settings, secret store entries, environment, artifacts, users). Calling
freeze() hands back a FrozenNodeSpec; afterwards the builder rejects every
mutator with ConfigurationFrozen.

Settings-like values may be literal strings or callables. Callables are
wrapped as Deferred and only evaluated when a config file is written or an
environment is built, at most once per value.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Mapping, Optional, Protocol, Union

from testclusters.errors import (
    ConfigurationFrozen,
    IncompleteConfiguration,
    InvalidConfiguration,
    InvalidDestination,
    NoMoreVersions,
)
from testclusters.version import Version

logger = logging.getLogger(__name__)

USER_KEYS = ('username', 'password', 'role')
DEFAULT_USER = {
    'username': 'test_user',
    'password': 'x-pack-test-password',
    'role': 'superuser',
}


@dataclass(frozen=True)
class Literal:
    value: str

    def resolve(self) -> str:
        return self.value


@dataclass(frozen=True)
class Deferred:
    """A value computed on demand, e.g. a password generated by an earlier step.

    The supplier runs on the first resolve(), later calls return that result.
    """
    supplier: Callable[[], object]
    _resolved: list = field(default_factory=list, init=False, repr=False, compare=False)

    def resolve(self) -> str:
        if not self._resolved:
            self._resolved.append(str(self.supplier()))
        return self._resolved[0]


LazyValue = Union[Literal, Deferred]


def lazy(value) -> LazyValue:
    """Wrap a literal or a zero-argument callable."""
    if isinstance(value, (Literal, Deferred)):
        return value
    if callable(value):
        return Deferred(value)
    return Literal(str(value))


def resolve_all(values: Mapping[str, LazyValue]) -> dict[str, str]:
    return {key: value.resolve() for key, value in values.items()}


def check_config_destination(destination: str) -> None:
    """Raise InvalidDestination unless destination stays inside the config directory."""
    path = Path(destination)
    # anchor also catches drive-relative and rooted paths on Windows
    if path.anchor:
        raise InvalidDestination(f"extra config file destination must be relative, was {destination}")
    if '..' in path.parts:
        raise InvalidDestination(f"extra config file destination can't contain '..', was {destination}")


class TestDistribution(Enum):
    """Flavor of distribution the node runs."""
    __test__ = False

    INTEG_TEST = 'integ_test'
    DEFAULT = 'default'
    OSS = 'oss'


class Distribution(Protocol):
    """An extracted distribution, provided by the download/extract machinery."""

    def get_extracted(self) -> Path: ...

    def get_version(self) -> Version: ...


@dataclass(frozen=True)
class ExtractedDistribution:
    """A distribution that already sits extracted on disk."""
    extracted: Path
    version: Version

    def __post_init__(self):
        object.__setattr__(self, 'extracted', Path(self.extracted))
        object.__setattr__(self, 'version', Version.parse(self.version))

    def get_extracted(self) -> Path:
        return self.extracted

    def get_version(self) -> Version:
        return self.version


@dataclass(frozen=True)
class DistributionPointer:
    """Index of the current distribution. Only ever moves forward."""
    count: int
    index: int = 0

    @property
    def has_next(self) -> bool:
        return self.index + 1 < self.count

    def advance(self) -> 'DistributionPointer':
        if not self.has_next:
            raise NoMoreVersions(
                f"Ran out of versions to go to (at {self.index + 1} of {self.count})"
            )
        return replace(self, index=self.index + 1)


@dataclass(frozen=True)
class FrozenNodeSpec:
    """Immutable snapshot of a NodeSpec, produced by NodeSpec.freeze()."""
    path: str
    name: str
    distributions: tuple
    test_distribution: TestDistribution
    java_home: Path
    settings: Mapping[str, LazyValue]
    keystore_settings: Mapping[str, LazyValue]
    keystore_files: Mapping[str, Path]
    system_properties: Mapping[str, LazyValue]
    environment: Mapping[str, LazyValue]
    jvm_args: tuple
    extra_config_files: Mapping[str, Path]
    plugins: tuple
    modules: tuple
    credentials: tuple
    name_customization: Callable[[str], str] = field(default=lambda name: name, compare=False)

    @property
    def setup_work_units(self) -> int:
        """Number of one-shot setup steps that compete with process boot."""
        return (
            len(self.plugins)
            + len(self.keystore_files)
            + len(self.keystore_settings)
            + len(self.credentials)
        )

    def with_setting(self, key: str, value) -> 'FrozenNodeSpec':
        """Return a copy with one more setting; used by upgrade()."""
        settings = dict(self.settings)
        settings[key] = lazy(value)
        return replace(self, settings=MappingProxyType(settings))

    def setting_value(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.settings.get(key)
        return value.resolve() if value is not None else default


class NodeSpec:
    """Mutable declaration of a single test node."""

    def __init__(self, path: str, name: str):
        self.path = path
        self.name = name
        self.distributions: list = []
        self.test_distribution = TestDistribution.INTEG_TEST
        self.java_home: Optional[Path] = None
        self.settings: dict[str, LazyValue] = {}
        self.keystore_settings: dict[str, LazyValue] = {}
        self.keystore_files: dict[str, Path] = {}
        self.system_properties: dict[str, LazyValue] = {}
        self.environment: dict[str, LazyValue] = {}
        self.jvm_args: list[str] = []
        self.extra_config_files: dict[str, Path] = {}
        self.plugins: list[str] = []
        self.modules: list[Path] = []
        self.credentials: list[dict] = []
        self.name_customization: Callable[[str], str] = lambda name: name
        self._frozen = False

    def __str__(self) -> str:
        return f"node{{{self.path}:{self.name}}}"

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def _check_frozen(self):
        if self._frozen:
            raise ConfigurationFrozen(
                f"Configuration for {self} can not be altered, already locked"
            )

    def add_distribution(self, distribution: Distribution) -> None:
        self._check_frozen()
        self.distributions.append(distribution)

    def set_distributions(self, distributions) -> None:
        self._check_frozen()
        self.distributions = list(distributions)

    def set_test_distribution(self, test_distribution: TestDistribution) -> None:
        self._check_frozen()
        self.test_distribution = TestDistribution(test_distribution)

    def set_java_home(self, java_home) -> None:
        self._check_frozen()
        java_home = Path(java_home)
        if not java_home.exists():
            raise InvalidConfiguration(f"java home for `{self}` does not exist: `{java_home}`")
        self.java_home = java_home

    def setting(self, key: str, value) -> None:
        self._check_frozen()
        self.settings[key] = lazy(value)

    def keystore(self, key: str, value) -> None:
        self._check_frozen()
        self.keystore_settings[key] = lazy(value)

    def keystore_file(self, key: str, file) -> None:
        self._check_frozen()
        self.keystore_files[key] = Path(file)

    def system_property(self, key: str, value) -> None:
        self._check_frozen()
        self.system_properties[key] = lazy(value)

    def env(self, key: str, value) -> None:
        self._check_frozen()
        self.environment[key] = lazy(value)

    def add_jvm_args(self, *values: str) -> None:
        self._check_frozen()
        self.jvm_args.extend(str(v) for v in values)

    def extra_config_file(self, destination: str, source) -> None:
        self._check_frozen()
        check_config_destination(destination)
        self.extra_config_files[destination] = Path(source)

    def plugin(self, plugin) -> None:
        """Declare a plugin by URI or local archive path."""
        self._check_frozen()
        location = plugin.resolve().as_uri() if isinstance(plugin, Path) else str(plugin)
        if location in self.plugins:
            raise InvalidConfiguration(f"Plugin already configured for installation {location}")
        self.plugins.append(location)

    def module(self, module) -> None:
        self._check_frozen()
        self.modules.append(Path(module))

    def user(self, **user_spec: str) -> None:
        self._check_frozen()
        unknown = set(user_spec) - set(USER_KEYS)
        if unknown:
            raise InvalidConfiguration(f"Unknown keys in user definition {sorted(unknown)} for {self}")
        self.credentials.append({key: user_spec.get(key, DEFAULT_USER[key]) for key in USER_KEYS})

    def set_name_customization(self, customizer: Callable[[str], str]) -> None:
        self._check_frozen()
        self.name_customization = customizer

    def freeze(self) -> FrozenNodeSpec:
        """Lock the configuration and return its immutable snapshot."""
        if not self.distributions:
            raise IncompleteConfiguration(f"no distribution set when configuring test cluster `{self}`")
        if self.java_home is None:
            raise IncompleteConfiguration(f"no java home set when configuring test cluster `{self}`")
        logger.info("Locking configuration of `%s`", self)
        self._frozen = True
        return FrozenNodeSpec(
            path=self.path,
            name=self.name,
            distributions=tuple(self.distributions),
            test_distribution=self.test_distribution,
            java_home=self.java_home,
            settings=MappingProxyType(dict(self.settings)),
            keystore_settings=MappingProxyType(dict(self.keystore_settings)),
            keystore_files=MappingProxyType(dict(self.keystore_files)),
            system_properties=MappingProxyType(dict(self.system_properties)),
            environment=MappingProxyType(dict(self.environment)),
            jvm_args=tuple(self.jvm_args),
            extra_config_files=MappingProxyType(dict(self.extra_config_files)),
            plugins=tuple(self.plugins),
            modules=tuple(self.modules),
            credentials=tuple(MappingProxyType(dict(c)) for c in self.credentials),
            name_customization=self.name_customization,
        )
