"""Derived filesystem layout of a node's working directory."""

import re
from dataclasses import dataclass
from pathlib import Path


def safe_name(name: str) -> str:
    """Make a node name usable as a directory name."""
    name = re.sub(r'^[^a-zA-Z0-9]+', '', name)
    return re.sub(r'[^a-zA-Z0-9.]+', '-', name)


@dataclass(frozen=True)
class WorkingPaths:
    """All paths of one node, computed once from (base dir, node name)."""
    working_dir: Path
    distro_dir: Path
    config_file: Path
    repo_dir: Path
    data_dir: Path
    logs_dir: Path
    shared_data_dir: Path
    tmp_dir: Path
    transport_ports_file: Path
    http_ports_file: Path
    stdout_file: Path
    stderr_file: Path

    @classmethod
    def create(cls, base_dir, name: str) -> 'WorkingPaths':
        working_dir = (Path(base_dir) / safe_name(name)).absolute()
        logs = working_dir / 'logs'
        return cls(
            working_dir=working_dir,
            distro_dir=working_dir / 'distro',
            config_file=working_dir / 'config' / 'elasticsearch.yml',
            repo_dir=working_dir / 'repo',
            data_dir=working_dir / 'data',
            logs_dir=logs,
            shared_data_dir=working_dir / 'sharedData',
            tmp_dir=working_dir / 'tmp',
            transport_ports_file=logs / 'transport.ports',
            http_ports_file=logs / 'http.ports',
            stdout_file=logs / 'es.stdout.log',
            stderr_file=logs / 'es.stderr.log',
        )

    @property
    def config_dir(self) -> Path:
        return self.config_file.parent

    @property
    def port_files(self) -> tuple:
        return (self.http_ports_file, self.transport_ports_file)
