"""Tests for the polling change detector."""

import os
import shutil
from pathlib import Path

import pytest

from helpers import wait_for
from hotserve.config import WatchConfig
from hotserve.events import EventType
from hotserve.monitor import (
    DirectoryMonitor,
    MonitorError,
    diff_snapshots,
    is_excluded,
    take_snapshot,
)


class TestExclusion:
    """Tests for the shared exclusion rule."""

    def test_hidden_and_dependency_dirs_are_excluded(self):
        config = WatchConfig()
        assert is_excluded(Path(".git/HEAD"), config) is True
        assert is_excluded(Path("a/.cache/file.js"), config) is True
        assert is_excluded(Path("node_modules/lib/index.js"), config) is True
        assert is_excluded(Path(".env"), config) is True

    def test_backup_suffixes_are_excluded(self):
        config = WatchConfig()
        assert is_excluded(Path("index.html~"), config) is True
        assert is_excluded(Path("css/site.css.tmp"), config) is True

    def test_regular_paths_are_kept(self):
        config = WatchConfig()
        assert is_excluded(Path("index.html"), config) is False
        assert is_excluded(Path("assets/app.js"), config) is False
        assert is_excluded(Path("my.node_modules.txt"), config) is False

    def test_custom_exclude_dirs(self):
        config = WatchConfig(exclude_dirs=["dist"])
        assert is_excluded(Path("dist/bundle.js"), config) is True
        assert is_excluded(Path("node_modules/lib.js"), config) is False


class TestSnapshot:
    """Tests for snapshot capture and diffing."""

    def test_snapshot_skips_excluded_entries(self, site):
        snapshot = take_snapshot(site, WatchConfig())
        relative = {path.relative_to(site).as_posix() for path in snapshot}
        assert relative == {"index.html", "style.css", "docs/index.html", "assets/app.js"}

    def test_snapshot_of_missing_root_raises(self, tmp_path):
        with pytest.raises(OSError):
            take_snapshot(tmp_path / "missing", WatchConfig())

    def test_diff_reports_created_modified_deleted(self, tmp_path):
        a, b, c = tmp_path / "a", tmp_path / "b", tmp_path / "c"
        old = {a: 1.0, b: 1.0}
        new = {a: 2.0, c: 1.0}

        events = {(event.event_type, event.path) for event in diff_snapshots(old, new)}

        assert events == {
            (EventType.MODIFIED, a),
            (EventType.CREATED, c),
            (EventType.DELETED, b),
        }

    def test_diff_ignores_older_or_equal_mtime(self, tmp_path):
        path = tmp_path / "a"
        assert diff_snapshots({path: 5.0}, {path: 5.0}) == []
        assert diff_snapshots({path: 5.0}, {path: 4.0}) == []


class TestDirectoryMonitor:
    """Tests for the polling monitor."""

    def _monitor(self, root):
        received = []
        monitor = DirectoryMonitor(root, WatchConfig(poll_interval=0.05), received.append)
        monitor.prime()
        return monitor, received

    def test_no_change_emits_nothing(self, site):
        monitor, received = self._monitor(site)
        assert monitor.poll_once() is None
        assert received == []

    def test_new_file_emits_one_event(self, site):
        monitor, received = self._monitor(site)
        (site / "about.html").write_text("<html></html>")

        event = monitor.poll_once()

        assert event is not None
        assert received == [event]
        assert site / "about.html" in event.paths
        assert monitor.poll_once() is None

    def test_modified_and_deleted_files(self, site):
        monitor, received = self._monitor(site)
        css = site / "style.css"
        stat = css.stat()
        os.utime(css, (stat.st_atime, stat.st_mtime + 10))
        (site / "assets" / "app.js").unlink()

        event = monitor.poll_once()

        kinds = {(change.event_type, change.path.name) for change in event.changes}
        assert kinds == {(EventType.MODIFIED, "style.css"), (EventType.DELETED, "app.js")}
        assert len(received) == 1

    def test_changes_in_excluded_dirs_are_ignored(self, site):
        monitor, received = self._monitor(site)
        (site / ".git" / "index").write_text("x")
        (site / "node_modules" / "pkg").mkdir()
        (site / "node_modules" / "pkg" / "index.js").write_text("x")
        (site / "hidden-dir").mkdir()
        (site / "hidden-dir" / ".swap").write_text("x")
        (site / "notes.txt~").write_text("x")

        assert monitor.poll_once() is None
        assert received == []

    def test_initial_snapshot_failure_is_fatal(self, tmp_path):
        monitor = DirectoryMonitor(tmp_path / "missing", WatchConfig(), lambda event: None)
        with pytest.raises(MonitorError):
            monitor.prime()

    def test_scan_failure_during_poll_is_transient(self, site):
        monitor, received = self._monitor(site)
        shutil.rmtree(site)

        assert monitor.poll_once() is None
        assert monitor.stats.scan_errors == 1

        site.mkdir()
        event = monitor.poll_once()
        assert event is not None
        assert all(change.event_type is EventType.DELETED for change in event.changes)

    def test_background_thread_detects_changes(self, site):
        received = []
        monitor = DirectoryMonitor(site, WatchConfig(poll_interval=0.05), received.append)
        monitor.start()
        try:
            (site / "new.js").write_text("x")
            assert wait_for(lambda: len(received) >= 1)
        finally:
            monitor.stop()
        assert monitor.stats.cycles >= 1
