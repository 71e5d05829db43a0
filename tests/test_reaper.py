"""Tests for reaper.py - pid file registration and reaping."""

import os
import subprocess
import sys
import threading
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest
from testclusters.common import IS_WINDOWS
from testclusters.reaper import (
    PidFileReaper,
    _kill_process,
    _process_alive,
    _read_pid,
    reap,
)


class TestPidFileReaper:
    """Tests for registration."""

    def test_register_writes_pid_file(self, reaper_dir):
        """register_pid writes one file per node."""
        reaper = PidFileReaper(reaper_dir)
        reaper.register_pid('node{:qa:node-0}', 4242)
        pid_file = reaper.pid_file('node{:qa:node-0}')
        assert pid_file.parent == reaper_dir
        assert pid_file.name == 'node-qa-node-0-.pid'
        assert pid_file.read_text() == '4242\n'

    def test_unregister_removes_pid_file(self, reaper_dir):
        """unregister removes the file."""
        reaper = PidFileReaper(reaper_dir)
        reaper.register_pid('n', 1)
        reaper.unregister('n')
        assert not reaper.pid_file('n').exists()

    def test_unregister_unknown(self, reaper_dir):
        """Unregistering twice is fine."""
        PidFileReaper(reaper_dir).unregister('never-registered')


class TestPidHelpers:
    """Tests for PID file I/O and process checks."""

    def test_read_pid(self, tmp_path):
        """Valid, missing and garbage pid files."""
        (tmp_path / 'ok.pid').write_text('123\n')
        (tmp_path / 'bad.pid').write_text('abc')
        assert _read_pid(tmp_path / 'ok.pid') == 123
        assert _read_pid(tmp_path / 'bad.pid') is None
        assert _read_pid(tmp_path / 'missing.pid') is None

    def test_current_process_alive(self):
        """The test process is alive."""
        assert _process_alive(os.getpid()) is True

    def test_permission_error_means_alive(self):
        """PermissionError means process exists but we can't signal it."""
        with patch('os.kill', side_effect=PermissionError):
            assert _process_alive(1) is True

    def test_kill_dead_process(self):
        """Killing a process that's gone succeeds."""
        with patch('testclusters.reaper._process_alive', return_value=False):
            assert _kill_process(999999) is True


class TestReap:
    """Tests for reap()."""

    def test_missing_directory(self, tmp_path):
        """Nothing to reap without a directory."""
        assert reap(tmp_path / 'missing') == []

    def test_stale_and_invalid_files_removed(self, reaper_dir):
        """Pid files of dead processes are cleaned up."""
        reaper = PidFileReaper(reaper_dir)
        reaper.register_pid('dead', 4194304)
        (reaper_dir / 'garbage.pid').write_text('nope')
        with patch('testclusters.reaper._process_alive', return_value=False):
            assert reap(reaper_dir) == []
        assert list(reaper_dir.glob('*.pid')) == []

    @pytest.mark.skipif(IS_WINDOWS, reason="uses POSIX commands")
    def test_kills_leftover_process(self, reaper_dir):
        """Live registered processes are killed."""
        process = subprocess.Popen(['sleep', '30'])
        # reap the child as soon as it dies so it doesn't linger as a zombie
        waiter = threading.Thread(target=process.wait, daemon=True)
        waiter.start()
        PidFileReaper(reaper_dir).register_pid('node{:leftover}', process.pid)

        assert reap(reaper_dir) == [process.pid]

        waiter.join(timeout=5)
        assert process.returncode is not None
        assert list(reaper_dir.glob('*.pid')) == []
