"""Tests for workdir.py - hard-linked working directories."""

import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest
from testclusters.errors import IOFailure
from testclusters.paths import WorkingPaths
from testclusters.workdir import WorkingDirectoryManager, delete_tree, link_tree


class TestLinkTree:
    """Test link_tree."""

    def test_strips_top_level_folder(self, distribution, tmp_path):
        """The archive's wrapper folder is not part of the copy."""
        destination = tmp_path / 'distro'
        count = link_tree(distribution, destination)
        assert (destination / 'bin' / 'elasticsearch').is_file()
        assert (destination / 'config' / 'jvm.options').is_file()
        assert not (destination / 'elasticsearch-7.4.0').exists()
        assert count == 8

    def test_files_are_hard_links(self, distribution, tmp_path):
        """Files share their inode with the extracted distribution."""
        destination = tmp_path / 'distro'
        link_tree(distribution, destination)
        source = distribution / 'elasticsearch-7.4.0' / 'lib' / 'elasticsearch.jar'
        assert os.path.samefile(source, destination / 'lib' / 'elasticsearch.jar')
        assert os.stat(source).st_nlink == 2

    def test_keeps_empty_directories(self, distribution, tmp_path):
        """Empty directories are recreated."""
        destination = tmp_path / 'distro'
        link_tree(distribution, destination)
        assert (destination / 'modules').is_dir()

    def test_replaces_destination(self, distribution, tmp_path):
        """Linking twice gives the same tree without leftovers."""
        destination = tmp_path / 'distro'
        link_tree(distribution, destination)
        (destination / 'stale.txt').write_text('x')
        link_tree(distribution, destination)
        assert not (destination / 'stale.txt').exists()
        assert (destination / 'bin' / 'elasticsearch').is_file()

    def test_missing_source(self, tmp_path):
        """A missing source directory is an IOFailure."""
        with pytest.raises(IOFailure):
            link_tree(tmp_path / 'missing', tmp_path / 'distro')


class TestDeleteTree:
    """Test delete_tree."""

    def test_missing_is_noop(self, tmp_path):
        """Deleting a missing path does nothing."""
        delete_tree(tmp_path / 'missing')

    def test_deletes_file_and_dir(self, tmp_path):
        """Files and directory trees are removed."""
        (tmp_path / 'd' / 'e').mkdir(parents=True)
        (tmp_path / 'f').write_text('x')
        delete_tree(tmp_path / 'd')
        delete_tree(tmp_path / 'f')
        assert not (tmp_path / 'd').exists()
        assert not (tmp_path / 'f').exists()


class TestWorkingDirectoryManager:
    """Test WorkingDirectoryManager.prepare."""

    def test_first_prepare_wipes_working_dir(self, distribution, tmp_path):
        """Leftovers from a previous run are removed on first start."""
        paths = WorkingPaths.create(tmp_path / 'clusters', 'node-0')
        paths.data_dir.mkdir(parents=True)
        (paths.data_dir / 'leftover').write_text('x')

        manager = WorkingDirectoryManager(paths)
        manager.prepare(distribution)

        assert manager.is_configured
        assert not (paths.data_dir / 'leftover').exists()
        for directory in (paths.config_dir, paths.repo_dir, paths.data_dir, paths.logs_dir, paths.tmp_dir):
            assert directory.is_dir()
        assert (paths.distro_dir / 'bin' / 'elasticsearch').is_file()

    def test_second_prepare_keeps_data(self, distribution, old_distribution, tmp_path):
        """Restarts keep data and logs but get a fresh config dir and distro."""
        paths = WorkingPaths.create(tmp_path / 'clusters', 'node-0')
        manager = WorkingDirectoryManager(paths)
        manager.prepare(old_distribution)
        (paths.data_dir / 'index').write_text('x')
        (paths.logs_dir / 'es.stdout.log').write_text('log')
        (paths.config_dir / 'elasticsearch.yml').write_text('old')

        manager.prepare(distribution)

        assert (paths.data_dir / 'index').exists()
        assert (paths.logs_dir / 'es.stdout.log').exists()
        assert not (paths.config_dir / 'elasticsearch.yml').exists()
        source = distribution / 'elasticsearch-7.4.0' / 'lib' / 'elasticsearch.jar'
        assert os.path.samefile(source, paths.distro_dir / 'lib' / 'elasticsearch.jar')
