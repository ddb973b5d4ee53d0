"""Tests for PolicyFileWatcher."""

from __future__ import annotations

from pathlib import Path

import pytest
from watchdog.events import FileModifiedEvent, FileMovedEvent

from designagent.policy.engine import PolicyEngine
from designagent.policy.watcher import PolicyFileWatcher, _PolicyFileHandler

GOOD = """
version: "1"
rules:
  - name: watched
    condition: "true"
    action: warn
    message: "watched"
"""

BAD = """
version: "1"
rules:
  - name: broken
    condition: "true"
    action: warn
"""


@pytest.fixture
def policy_file(tmp_path: Path) -> Path:
    path = tmp_path / "policy.yaml"
    path.write_text(GOOD)
    return path


class TestPolicyFileWatcherReload:
    """Tests for reload()."""

    def test_reload_installs_rules(self, policy_file: Path) -> None:
        """A valid file replaces the engine's rules."""
        engine = PolicyEngine()
        watcher = PolicyFileWatcher(engine, policy_file)
        assert watcher.reload() is True
        assert [r.name for r in engine.get_rules()] == ["watched"]
        assert watcher.reload_count == 1
        assert watcher.last_error is None

    def test_invalid_reload_keeps_previous_rules(self, policy_file: Path) -> None:
        """An invalid document is rejected and the last good rules stay."""
        engine = PolicyEngine()
        watcher = PolicyFileWatcher(engine, policy_file)
        watcher.reload()

        policy_file.write_text(BAD)
        assert watcher.reload() is False
        assert [r.name for r in engine.get_rules()] == ["watched"]
        assert watcher.last_error is not None and "message" in watcher.last_error


class TestPolicyFileHandler:
    """Tests for event filtering."""

    def test_modified_event_for_policy_file_reloads(self, policy_file: Path) -> None:
        """Modifications of the watched file trigger a reload."""
        watcher = PolicyFileWatcher(PolicyEngine(), policy_file)
        handler = _PolicyFileHandler(watcher)
        handler.on_modified(FileModifiedEvent(str(policy_file)))
        assert watcher.reload_count == 1

    def test_other_files_ignored(self, policy_file: Path) -> None:
        """Events for sibling files are ignored."""
        watcher = PolicyFileWatcher(PolicyEngine(), policy_file)
        handler = _PolicyFileHandler(watcher)
        handler.on_modified(FileModifiedEvent(str(policy_file.parent / "other.yaml")))
        assert watcher.reload_count == 0

    def test_atomic_save_via_rename(self, policy_file: Path) -> None:
        """A temp file renamed over the policy file triggers a reload."""
        watcher = PolicyFileWatcher(PolicyEngine(), policy_file)
        handler = _PolicyFileHandler(watcher)
        handler.on_moved(FileMovedEvent(str(policy_file) + ".tmp", str(policy_file)))
        assert watcher.reload_count == 1


class TestPolicyFileWatcherLifecycle:
    """Tests for start/stop."""

    def test_start_loads_and_stop(self, policy_file: Path) -> None:
        """start() loads once and runs the observer until stop()."""
        engine = PolicyEngine()
        watcher = PolicyFileWatcher(engine, policy_file)
        watcher.start()
        try:
            assert watcher.is_running
            assert engine.get_rules()[0].name == "watched"
            # Second start is a no-op
            watcher.start()
            assert watcher.reload_count == 1
        finally:
            watcher.stop()
        assert not watcher.is_running
