"""Hot reload of policy documents.

This module provides:
- PolicyFileWatcher: Watches a policy YAML file with watchdog and reloads
  the PolicyEngine when it changes

A document that fails validation is logged and ignored; the engine keeps
the last good rule set.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from designagent.policy.types import PolicyConfigError

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

    from designagent.policy.engine import PolicyEngine

logger = logging.getLogger(__name__)


class _PolicyFileHandler(FileSystemEventHandler):
    """Forwards events for one file to the watcher."""

    def __init__(self, watcher: PolicyFileWatcher) -> None:
        super().__init__()
        self._watcher = watcher

    def on_modified(self, event: FileSystemEvent) -> None:
        self._maybe_reload(event.src_path)

    def on_created(self, event: FileSystemEvent) -> None:
        self._maybe_reload(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Editors often save by renaming a temp file over the original
        self._maybe_reload(getattr(event, "dest_path", event.src_path))

    def _maybe_reload(self, src_path: str | bytes) -> None:
        if isinstance(src_path, bytes):
            src_path = src_path.decode()
        if Path(src_path).resolve() == self._watcher.path:
            self._watcher.reload()


class PolicyFileWatcher:
    """Reloads a PolicyEngine whenever its policy file changes.

    Usage:
        watcher = PolicyFileWatcher(engine, Path("policy.yaml"))
        watcher.start()  # loads the file once, then watches it
        ...
        watcher.stop()
    """

    def __init__(self, engine: PolicyEngine, path: Path) -> None:
        self._engine = engine
        self.path = path.expanduser().resolve()
        self._observer: BaseObserver | None = None
        self._lock = threading.Lock()
        self.reload_count = 0
        self.last_error: str | None = None

    @property
    def is_running(self) -> bool:
        """Check if the observer is running."""
        return self._observer is not None and self._observer.is_alive()

    def reload(self) -> bool:
        """Reload the engine from the file.

        Returns:
            True if the new rule set was installed.
        """
        with self._lock:
            try:
                self._engine.load_file(self.path)
            except PolicyConfigError as e:
                self.last_error = str(e)
                logger.error("Policy reload rejected, keeping previous rules: %s", e)
                return False
            self.reload_count += 1
            self.last_error = None
            return True

    def start(self) -> None:
        """Load the file and start watching its directory."""
        if self.is_running:
            logger.warning("PolicyFileWatcher already running")
            return

        self.reload()
        observer = Observer()
        observer.schedule(_PolicyFileHandler(self), str(self.path.parent), recursive=False)
        observer.start()
        self._observer = observer
        logger.info("Watching policy file %s", self.path)

    def stop(self) -> None:
        """Stop watching."""
        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            self._observer = None
            logger.info("Stopped watching policy file %s", self.path)
