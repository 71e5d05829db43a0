"""Tests for settings.py - config file generation."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest
from testclusters.errors import IllegalOverride
from testclusters.paths import WorkingPaths
from testclusters.settings import (
    build_config,
    copy_distribution_config,
    default_config,
    write_config,
)
from testclusters.spec import ExtractedDistribution, NodeSpec
from testclusters.version import Version


def _frozen(java_home, tmp_path, **settings):
    spec = NodeSpec(':qa', 'node 0')
    spec.set_java_home(java_home)
    spec.add_distribution(ExtractedDistribution(tmp_path, '7.4.0'))
    for key, value in settings.items():
        spec.setting(key, value)
    return spec.freeze()


@pytest.fixture
def paths(tmp_path):
    return WorkingPaths.create(tmp_path / 'clusters', 'node 0')


class TestDefaultConfig:
    """Test version-conditional defaults."""

    def test_paths_and_name(self, java_home, tmp_path, paths):
        """Node name and path settings come from the working directory."""
        config = default_config(_frozen(java_home, tmp_path), paths, Version(7, 4, 0))
        assert config['node.name'] == 'node-0'
        assert config['path.repo'] == str(paths.repo_dir)
        assert config['path.data'] == str(paths.data_dir)
        assert config['path.logs'] == str(paths.logs_dir)
        assert config['path.shared_data'] == str(paths.shared_data_dir)

    def test_name_customization(self, java_home, tmp_path, paths):
        """The name customization is applied to the safe name."""
        spec = NodeSpec(':qa', 'node 0')
        spec.set_java_home(java_home)
        spec.add_distribution(ExtractedDistribution(tmp_path, '7.4.0'))
        spec.set_name_customization(lambda name: f"{name}-v2")
        config = default_config(spec.freeze(), paths, Version(7, 4, 0))
        assert config['node.name'] == 'node-0-v2'

    def test_unconditional(self, java_home, tmp_path, paths):
        """Keys every version gets."""
        config = default_config(_frozen(java_home, tmp_path), paths, Version(5, 6, 0))
        assert config['node.portsfile'] == 'true'
        assert config['http.port'] == '0'
        assert config['node.attr.testattr'] == 'test'
        assert config['cluster.routing.allocation.disk.watermark.low'] == '1b'
        assert config['cluster.routing.allocation.disk.watermark.high'] == '1b'
        assert config['script.max_compilations_rate'] == '2048/1m'
        assert config['discovery.initial_state_timeout'] == '0s'
        assert config['logger.org.elasticsearch.cluster.service'] == 'DEBUG'

    def test_before_6_7(self, java_home, tmp_path, paths):
        """Old versions use the old transport port key and no flood stage before 6."""
        config = default_config(_frozen(java_home, tmp_path), paths, Version(5, 6, 0))
        assert config['transport.tcp.port'] == '0'
        assert 'transport.port' not in config
        assert 'cluster.routing.allocation.disk.watermark.flood_stage' not in config
        assert 'indices.breaker.total.use_real_memory' not in config

    def test_6_8(self, java_home, tmp_path, paths):
        """6.7+ uses transport.port, 6.x gets flood stage."""
        config = default_config(_frozen(java_home, tmp_path), paths, Version(6, 8, 0))
        assert config['transport.port'] == '0'
        assert 'transport.tcp.port' not in config
        assert config['cluster.routing.allocation.disk.watermark.flood_stage'] == '1b'
        assert 'indices.breaker.total.use_real_memory' not in config

    def test_7(self, java_home, tmp_path, paths):
        """7.x disables the real memory circuit breaker."""
        config = default_config(_frozen(java_home, tmp_path), paths, Version(7, 4, 0))
        assert config['indices.breaker.total.use_real_memory'] == 'false'
        assert 'cluster.service.slow_task_logging_threshold' not in config

    def test_8(self, java_home, tmp_path, paths):
        """8.x lowers the slow task logging thresholds."""
        config = default_config(_frozen(java_home, tmp_path), paths, Version(8, 0, 0))
        assert config['cluster.service.slow_task_logging_threshold'] == '5s'
        assert config['cluster.service.slow_master_task_logging_threshold'] == '5s'


class TestBuildConfig:
    """Test merging user settings with defaults."""

    def test_user_settings_first(self, java_home, tmp_path, paths):
        """User settings come before defaults, in declaration order."""
        spec = _frozen(java_home, tmp_path, **{'cluster.name': 'c1', 'xpack.security.enabled': 'false'})
        config = build_config(spec, paths, Version(7, 4, 0))
        keys = list(config)
        assert keys[:2] == ['cluster.name', 'xpack.security.enabled']
        assert 'node.name' in keys[2:]

    def test_illegal_override(self, java_home, tmp_path, paths):
        """Redefining a protected default fails and names the key."""
        spec = _frozen(java_home, tmp_path, **{'http.port': '9200', 'node.name': 'x'})
        with pytest.raises(IllegalOverride) as exc_info:
            build_config(spec, paths, Version(7, 4, 0))
        assert exc_info.value.keys == ['http.port', 'node.name']
        assert 'http.port' in str(exc_info.value)

    def test_overridable_keys(self, java_home, tmp_path, paths):
        """path.repo and discovery.seed_providers may be redefined."""
        spec = _frozen(java_home, tmp_path, **{'path.repo': '/shared/repo'})
        config = build_config(spec, paths, Version(7, 4, 0))
        assert config['path.repo'] == '/shared/repo'
        assert list(config)[0] == 'path.repo'

    def test_deferred_resolved_at_build(self, java_home, tmp_path, paths):
        """Deferred settings are evaluated when the config is built."""
        state = {'value': 'first'}
        spec = _frozen(java_home, tmp_path, **{'cluster.name': lambda: state['value']})
        state['value'] = 'second'
        assert build_config(spec, paths, Version(7, 4, 0))['cluster.name'] == 'second'


class TestWriteConfig:
    """Test write_config."""

    def test_writes_key_value_lines(self, tmp_path):
        """One `key: value` line per setting, in order."""
        config_file = tmp_path / 'config' / 'elasticsearch.yml'
        write_config(config_file, {'a.b': '1', 'c': 'x y'})
        assert config_file.read_text() == "a.b: 1\nc: x y\n"

    def test_replaces_previous_file(self, tmp_path):
        """An existing file is overwritten."""
        config_file = tmp_path / 'elasticsearch.yml'
        config_file.write_text("stale: true\n")
        write_config(config_file, {'fresh': 'true'})
        assert config_file.read_text() == "fresh: true\n"


class TestCopyDistributionConfig:
    """Test copy_distribution_config."""

    def test_does_not_overwrite(self, tmp_path):
        """Files already in the config dir win over bundled ones."""
        source = tmp_path / 'distro-config'
        source.mkdir()
        (source / 'elasticsearch.yml').write_text('bundled')
        (source / 'jvm.options').write_text('-Xss1m')
        (source / 'jvm.options.d').mkdir()
        config_dir = tmp_path / 'config'
        config_dir.mkdir()
        (config_dir / 'elasticsearch.yml').write_text('generated')

        copied = copy_distribution_config(source, config_dir)

        assert (config_dir / 'elasticsearch.yml').read_text() == 'generated'
        assert (config_dir / 'jvm.options').read_text() == '-Xss1m'
        assert (config_dir / 'jvm.options.d').is_dir()
        assert sorted(p.name for p in copied) == ['jvm.options', 'jvm.options.d']

    def test_missing_source(self, tmp_path):
        """A distribution without a config dir copies nothing."""
        assert copy_distribution_config(tmp_path / 'missing', tmp_path) == []
