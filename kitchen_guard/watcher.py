"""Project file watcher feeding change batches to the engine."""

import logging
import re
import threading
from pathlib import Path
from typing import Callable, Iterable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

# Paths (relative to the project, POSIX separators) that trigger a run
DEFAULT_WATCH_PATTERNS = (
    r"(^|/)test/.+",
    r"^recipes/.+\.rb$",
    r"^attributes/.+\.rb$",
    r"^files/.+",
    r"^templates/.+",
    r"^providers/.+\.rb$",
    r"^resources/.+\.rb$",
    r"^libraries/.+\.rb$",
    r"^metadata\.rb$",
    r"(^|/)\.kitchen[^/]*\.yml$",
)

# Kitchen keeps instance state in .kitchen/; writing it must not retrigger runs
IGNORED_DIRECTORIES = (".kitchen", ".git")


class ProjectWatcher:
    """Watches a kitchen project and delivers changed paths in debounced batches.

    Every relevant event restarts the debounce timer; when it fires, all paths
    collected so far are passed to the callback as one batch, in the order they
    were first seen.

    Thread Safety:
        The watchdog Observer runs in a separate thread and the callback is
        invoked from the debounce timer thread, so it must be thread-safe.

    Example:
        ```python
        guard = KitchenGuard(options)
        watcher = ProjectWatcher(".", on_files_changed=guard.on_files_changed)
        watcher.start()
        # ... block until interrupted ...
        watcher.stop()
        ```
    """

    def __init__(
        self,
        project_dir: str,
        on_files_changed: Callable[[list[str]], object],
        debounce_seconds: float = 0.3,
        watch_patterns: Iterable[str] = DEFAULT_WATCH_PATTERNS,
    ):
        """Initialize the project watcher.

        Args:
            project_dir: Kitchen project directory (resolved to an absolute path)
            on_files_changed: Callback receiving a list of project-relative paths
            debounce_seconds: Quiet period after the last event before the batch
                is delivered
            watch_patterns: Regexes matched against project-relative paths; a
                path is kept if any pattern matches
        """
        self.project_dir = Path(project_dir).resolve()
        self.on_files_changed = on_files_changed
        self.debounce_seconds = debounce_seconds
        self.watch_patterns = [re.compile(pattern) for pattern in watch_patterns]

        self.observer: Observer | None = None
        self._event_handler = _ProjectEventHandler(self)
        self._lock = threading.Lock()

        # Debouncing state (protected by lock)
        self._pending_paths: dict[str, None] = {}
        self._timer: threading.Timer | None = None

        logger.debug(f"ProjectWatcher initialized for: {self.project_dir}")

    def start(self) -> None:
        """Start watching the project directory recursively.

        Raises:
            RuntimeError: If watcher is already running
            OSError: If the directory cannot be watched
        """
        with self._lock:
            if self.observer is not None:
                raise RuntimeError("ProjectWatcher is already running")

            self.observer = Observer()
            try:
                self.observer.schedule(self._event_handler, str(self.project_dir), recursive=True)
            except OSError as e:
                self.observer = None
                raise OSError(f"Cannot watch project directory {self.project_dir}: {e}") from e

            self.observer.start()
            logger.info(f"ProjectWatcher started monitoring: {self.project_dir}")

    def stop(self) -> None:
        """Stop watching and drop any pending batch. Safe to call repeatedly."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending_paths.clear()

            if self.observer is not None:
                self.observer.stop()
                self.observer.join(timeout=2.0)
                self.observer = None
                logger.info("ProjectWatcher stopped")

    def relative_path(self, path: Path) -> str | None:
        """Project-relative POSIX path, or None if the path is outside the project."""
        try:
            return path.resolve().relative_to(self.project_dir).as_posix()
        except ValueError:
            return None

    def is_relevant(self, relative: str) -> bool:
        parts = relative.split("/")
        if any(part in IGNORED_DIRECTORIES for part in parts[:-1]):
            return False
        return any(pattern.search(relative) for pattern in self.watch_patterns)

    def _handle_file_change(self, file_path: Path) -> None:
        """Queue a changed file and restart the debounce timer."""
        relative = self.relative_path(file_path)
        if relative is None or not self.is_relevant(relative):
            logger.debug(f"Ignoring change to: {file_path}")
            return

        with self._lock:
            self._pending_paths.setdefault(relative, None)
            if self._timer is not None:
                self._timer.cancel()

            timer = threading.Timer(self.debounce_seconds, self._flush)
            timer.daemon = True
            self._timer = timer
            timer.start()
            logger.debug(f"Queued {relative}, delivering batch in {self.debounce_seconds}s")

    def _flush(self) -> None:
        with self._lock:
            paths = list(self._pending_paths)
            self._pending_paths.clear()
            self._timer = None

        if not paths:
            return

        logger.info(f"Detected changes in {len(paths)} file(s)")
        try:
            self.on_files_changed(paths)
        except Exception as e:
            logger.error(f"Error in on_files_changed callback: {e}", exc_info=True)


class _ProjectEventHandler(FileSystemEventHandler):
    """Forwards created/modified/moved file events to the ProjectWatcher."""

    def __init__(self, watcher: ProjectWatcher):
        super().__init__()
        self.watcher = watcher

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._handle_event(event.src_path)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._handle_event(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Editors often save by writing a temp file and renaming it over the target
        if not event.is_directory and hasattr(event, "dest_path"):
            self._handle_event(event.dest_path)

    def _handle_event(self, path) -> None:
        try:
            if isinstance(path, bytes):
                path = path.decode()
            self.watcher._handle_file_change(Path(path))
        except Exception as e:
            logger.error(f"Error handling file system event for {path}: {e}", exc_info=True)
