"""Generation of the node's configuration file.

The final configuration is the user's settings followed by the defaults
the node always runs with. Defaults may not be redefined by the user,
except for the keys in OVERRIDABLE_SETTINGS.
"""

import logging
import shutil
from pathlib import Path
from typing import Callable, Optional

from testclusters.errors import IllegalOverride, IOFailure
from testclusters.paths import WorkingPaths, safe_name
from testclusters.spec import FrozenNodeSpec, resolve_all
from testclusters.version import (
    FLOOD_STAGE_MAJOR,
    REAL_MEMORY_BREAKER_MAJOR,
    SLOW_TASK_LOGGING_MAJOR,
    TRANSPORT_PORT_RENAMED,
    Version,
)

logger = logging.getLogger(__name__)

OVERRIDABLE_SETTINGS = ('path.repo', 'discovery.seed_providers')

Condition = Optional[Callable[[Version], bool]]

# (condition, key, value) evaluated in order; None applies to every version.
VERSIONED_DEFAULTS: tuple[tuple[Condition, str, str], ...] = (
    (None, 'node.attr.testattr', 'test'),
    (None, 'node.portsfile', 'true'),
    (None, 'http.port', '0'),
    (lambda v: v.on_or_after(TRANSPORT_PORT_RENAMED), 'transport.port', '0'),
    (lambda v: v.before(TRANSPORT_PORT_RENAMED), 'transport.tcp.port', '0'),
    # absurdly low so nodes without much free disk don't fail tests
    (None, 'cluster.routing.allocation.disk.watermark.low', '1b'),
    (None, 'cluster.routing.allocation.disk.watermark.high', '1b'),
    (None, 'script.max_compilations_rate', '2048/1m'),
    (lambda v: v.major >= FLOOD_STAGE_MAJOR,
     'cluster.routing.allocation.disk.watermark.flood_stage', '1b'),
    # the real memory breaker depends on memory we have no control over
    (lambda v: v.major >= REAL_MEMORY_BREAKER_MAJOR, 'indices.breaker.total.use_real_memory', 'false'),
    (None, 'discovery.initial_state_timeout', '0s'),
    (None, 'logger.org.elasticsearch.action.support.master.TransportMasterNodeAction', 'TRACE'),
    (None, 'logger.org.elasticsearch.cluster.metadata.MetaDataCreateIndexService', 'TRACE'),
    (None, 'logger.org.elasticsearch.cluster.service', 'DEBUG'),
    (None, 'logger.org.elasticsearch.cluster.coordination', 'DEBUG'),
    (None, 'logger.org.elasticsearch.gateway.MetaStateService', 'TRACE'),
    (lambda v: v.major >= SLOW_TASK_LOGGING_MAJOR, 'cluster.service.slow_task_logging_threshold', '5s'),
    (lambda v: v.major >= SLOW_TASK_LOGGING_MAJOR, 'cluster.service.slow_master_task_logging_threshold', '5s'),
)


def default_config(spec: FrozenNodeSpec, paths: WorkingPaths, version: Version) -> dict[str, str]:
    """Settings every node gets for the given version."""
    defaults: dict[str, str] = {}
    node_name = spec.name_customization(safe_name(spec.name))
    if node_name is not None:
        defaults['node.name'] = node_name
    defaults['path.repo'] = str(paths.repo_dir)
    defaults['path.data'] = str(paths.data_dir)
    defaults['path.logs'] = str(paths.logs_dir)
    defaults['path.shared_data'] = str(paths.shared_data_dir)
    for condition, key, value in VERSIONED_DEFAULTS:
        if condition is None or condition(version):
            defaults[key] = value
    return defaults


def build_config(spec: FrozenNodeSpec, paths: WorkingPaths, version: Version) -> dict[str, str]:
    """Compute the ordered configuration: user settings first, then defaults.

    Raises:
        IllegalOverride: If a user setting redefines a protected default
    """
    defaults = default_config(spec, paths, version)
    settings = resolve_all(spec.settings)

    overridden = (set(defaults) & set(settings)) - set(OVERRIDABLE_SETTINGS)
    if overridden:
        raise IllegalOverride(overridden, f"node{{{spec.path}:{spec.name}}}")

    config = dict(settings)
    for key, value in defaults.items():
        if key not in config:
            config[key] = value
    return config


def write_config(config_file: Path, config: dict[str, str]) -> None:
    """Write `key: value` lines, replacing any previous file."""
    try:
        config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(config_file, 'w', encoding='utf-8') as f:
            for key, value in config.items():
                f.write(f"{key}: {value}\n")
    except OSError as e:
        raise IOFailure("Writing config file", config_file, str(e)) from e
    logger.info("Written config file: %s", config_file)


def copy_distribution_config(distro_config_dir: Path, config_dir: Path) -> list[Path]:
    """Copy bundled config files that aren't already present in config_dir.

    Returns:
        Destination paths that were copied
    """
    if not distro_config_dir.is_dir():
        return []
    copied = []
    try:
        for source in sorted(distro_config_dir.iterdir()):
            destination = config_dir / source.name
            if destination.exists():
                continue
            if source.is_dir():
                shutil.copytree(source, destination)
            else:
                shutil.copy2(source, destination)
            copied.append(destination)
    except OSError as e:
        raise IOFailure("Copying distribution config", distro_config_dir, str(e)) from e
    return copied
