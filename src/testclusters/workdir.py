"""Working directory management.

Each node gets its own copy of the extracted distribution, built from hard
links so that creating a node costs no more than walking the tree. The
shared extracted directory is only ever read.
"""

import logging
import os
import shutil
from pathlib import Path

from testclusters.errors import IOFailure
from testclusters.paths import WorkingPaths

logger = logging.getLogger(__name__)


def delete_tree(path: Path) -> None:
    """Remove a directory tree if it exists."""
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()
    except OSError as e:
        raise IOFailure("Deleting", path, str(e)) from e


def link_tree(source_root: Path, destination_root: Path) -> int:
    """Equivalent of ``cp -lr`` minus the archive's top level directory.

    Distribution archives wrap everything in a single folder, so
    ``source_root/elasticsearch-7.4.0/bin/x`` becomes ``destination_root/bin/x``.
    Permissions are left alone so the links can be replaced later.

    Returns:
        Number of files linked
    """
    delete_tree(destination_root)
    linked = 0
    try:
        destination_root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise IOFailure("Creating directory", destination_root, str(e)) from e

    def _raise(error: OSError):
        raise IOFailure("Walking source", source_root, str(error)) from error

    for dirpath, dirnames, filenames in os.walk(source_root, onerror=_raise):
        dirnames.sort()
        relative = Path(dirpath).relative_to(source_root)
        # skip the source root, strip the wrapper folder
        if not relative.parts:
            continue
        target_dir = destination_root.joinpath(*relative.parts[1:])
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailure("Creating directory", target_dir, str(e)) from e

        for filename in sorted(filenames):
            source = Path(dirpath) / filename
            destination = target_dir / filename
            try:
                os.link(source, destination)
            except OSError as e:
                # does not work across devices, e.g. network drives
                raise IOFailure(
                    "Creating hard link", destination, f"pointing to {source}: {e}"
                ) from e
            linked += 1
    return linked


class WorkingDirectoryManager:
    """Builds and refreshes one node's working directory."""

    def __init__(self, paths: WorkingPaths):
        self.paths = paths
        self.is_configured = False

    def prepare(self, extracted_distro_dir: Path) -> None:
        """Set up the working directory for a start.

        The whole working directory is wiped only on the first start of this
        manager's lifetime. Every start relinks the distribution and recreates
        the config directory, so restarts keep data and logs.
        """
        if not self.is_configured:
            logger.info("Configuring working directory: %s", self.paths.working_dir)
            delete_tree(self.paths.working_dir)
            self.is_configured = True

        count = link_tree(extracted_distro_dir, self.paths.distro_dir)
        logger.debug("Linked %d files from %s", count, extracted_distro_dir)

        delete_tree(self.paths.config_dir)
        for directory in (
            self.paths.config_dir,
            self.paths.repo_dir,
            self.paths.data_dir,
            self.paths.logs_dir,
            self.paths.tmp_dir,
        ):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise IOFailure("Creating directory", directory, str(e)) from e
