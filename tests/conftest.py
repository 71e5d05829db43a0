"""Shared pytest fixtures for testclusters tests."""

import stat
import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

# Records every tool invocation in <working dir>/tool-calls.log
TOOL_STUB = """#!/bin/sh
PATH=/usr/bin:/bin
export PATH
echo "${0##*/} $*" >> "$ES_PATH_CONF/../tool-calls.log"
"""

# Writes the ports files like a real node would, then idles until killed
SERVER_STUB = """#!/bin/sh
PATH=/usr/bin:/bin
export PATH
echo "[2019-01-01T00:00:00,000][INFO ][o.e.n.Node] starting with JAVA_HOME=$JAVA_HOME"
echo "[2019-01-01T00:00:01,000][WARN ][o.e.b.BootstrapChecks] max virtual memory areas vm.max_map_count is too low"
printf '127.0.0.1:9300\\n' > "$ES_PATH_CONF/../logs/transport.ports"
printf '127.0.0.1:9200\\n[::1]:9200\\n' > "$ES_PATH_CONF/../logs/http.ports"
exec sleep 60
"""

# Writes the ports files and exits right away
EXITING_SERVER_STUB = """#!/bin/sh
printf '127.0.0.1:9300\\n' > "$ES_PATH_CONF/../logs/transport.ports"
printf '127.0.0.1:9200\\n' > "$ES_PATH_CONF/../logs/http.ports"
exit 0
"""

# Dies before it ever gets to write ports files
CRASHING_SERVER_STUB = """#!/bin/sh
echo "[2019-01-01T00:00:00,000][ERROR][o.e.b.Bootstrap] Exception"
echo "java.lang.IllegalStateException: failed to obtain node locks"
exit 1
"""


def _write_script(path: Path, content: str) -> None:
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def create_distribution(root: Path, version: str = '7.4.0', server: str = SERVER_STUB) -> Path:
    """Create an extracted distribution at root, wrapped in a single top-level folder.

    Returns:
        The extracted directory (what a Distribution hands out)
    """
    top = root / f'elasticsearch-{version}'
    for d in ['bin', 'config', 'lib', 'modules']:
        (top / d).mkdir(parents=True, exist_ok=True)

    _write_script(top / 'bin' / 'elasticsearch', server)
    for tool in ['elasticsearch-plugin', 'elasticsearch-keystore', 'elasticsearch-users']:
        _write_script(top / 'bin' / tool, TOOL_STUB)

    (top / 'config' / 'elasticsearch.yml').write_text("# bundled config, never used\n")
    (top / 'config' / 'jvm.options').write_text("-Xss1m\n")
    (top / 'config' / 'log4j2.properties').write_text("status = error\n")
    (top / 'lib' / 'elasticsearch.jar').write_bytes(b'PK\x03\x04')
    return root


@pytest.fixture
def java_home(tmp_path):
    """An existing (empty) java home directory."""
    path = tmp_path / 'jdk'
    path.mkdir()
    return path


@pytest.fixture
def distribution(tmp_path):
    """Extracted 7.4.0 distribution with stub bin scripts."""
    return create_distribution(tmp_path / 'distributions' / '7.4.0')


@pytest.fixture
def old_distribution(tmp_path):
    """Extracted 6.6.0 distribution with stub bin scripts."""
    return create_distribution(tmp_path / 'distributions' / '6.6.0', version='6.6.0')


@pytest.fixture
def exiting_distribution(tmp_path):
    """Extracted distribution whose server writes ports files and exits 0."""
    return create_distribution(tmp_path / 'distributions' / 'exit', server=EXITING_SERVER_STUB)


@pytest.fixture
def crashing_distribution(tmp_path):
    """Extracted distribution whose server exits right away."""
    return create_distribution(tmp_path / 'distributions' / 'crash', server=CRASHING_SERVER_STUB)


@pytest.fixture
def reaper_dir(tmp_path):
    return tmp_path / 'reaper'


@pytest.fixture
def base_dir(tmp_path):
    return tmp_path / 'testclusters'
