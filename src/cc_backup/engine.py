"""Capture engine: watches session logs and keeps exports up to date.

Two event sources feed the same per-file routine: filesystem notifications
from ``watchfiles`` and a fixed-interval rescan, which catches anything the
notifications miss.
"""

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any

from watchfiles import Change, watch

from cc_backup.config import AGENT_FILE_PREFIX, LOG_FILE_SUFFIX, Config
from cc_backup.index import rebuild_index
from cc_backup.models import ExportFormat, Session
from cc_backup.parser import assemble_session, parse_file
from cc_backup.renderer import file_name, render

logger = logging.getLogger("cc_backup.engine")

# How long stop() waits for in-flight work before giving up on a thread
STOP_JOIN_TIMEOUT = 30.0


def is_log_file(path: Path) -> bool:
    """True for top-level session logs; subagent logs are skipped."""
    return path.suffix == LOG_FILE_SUFFIX and not path.name.startswith(AGENT_FILE_PREFIX)


class CaptureEngine:
    """Mirrors session logs under ``source_root`` into ``output_root``.

    Progress (last exported byte size per log file) lives in memory only;
    after a restart every file is exported again, which is safe because
    artifact names and contents are deterministic.
    """

    def __init__(self, config: Config, clock: Callable[[], datetime] | None = None):
        self._config = config
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._progress: dict[Path, int] = {}
        self._state_lock = threading.Lock()
        self._file_locks: dict[Path, threading.Lock] = {}
        self._stop_event = threading.Event()
        self._watch_thread: threading.Thread | None = None
        self._poll_thread: threading.Thread | None = None
        self._running = False
        self.exports = 0
        self.errors = 0

    @property
    def config(self) -> Config:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def progress(self) -> MappingProxyType:
        with self._state_lock:
            return MappingProxyType(dict(self._progress))

    def update_config(self, config: Config) -> None:
        """Swap settings in place; the running watch is left as is."""
        self._config = config
        logger.info("Configuration updated")

    def reset_progress(self) -> None:
        with self._state_lock:
            self._progress.clear()

    def start(self) -> bool:
        """Start watching. Returns False if the source directory is missing."""
        if self._running:
            logger.warning("Already watching")
            return True

        config = self._config
        try:
            config.output_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create output directory: {e}")

        if not config.source_root.is_dir():
            logger.warning(f"Claude projects directory not found: {config.source_root}")
            return False

        logger.info(f"Starting watcher on: {config.source_root}")

        self._stop_event = threading.Event()
        self._watch_thread = threading.Thread(
            target=self._watch_loop,
            args=(config.source_root, self._stop_event),
            name="cc-backup-watch",
            daemon=True,
        )
        self._poll_thread = threading.Thread(
            target=self._poll_loop,
            args=(self._stop_event,),
            name="cc-backup-poll",
            daemon=True,
        )
        self._watch_thread.start()
        self._poll_thread.start()

        # Capture files that existed before the watcher came up
        self.scan()

        self._running = True
        logger.info("Watcher started")
        return True

    def stop(self) -> None:
        """Stop both event sources and wait for in-flight work."""
        if not self._running:
            return

        self._stop_event.set()
        for thread in (self._watch_thread, self._poll_thread):
            if thread is not None and thread is not threading.current_thread():
                thread.join(timeout=STOP_JOIN_TIMEOUT)
        self._watch_thread = None
        self._poll_thread = None
        self._running = False
        logger.info("Watcher stopped")

    def status(self) -> dict[str, Any]:
        with self._state_lock:
            tracked = len(self._progress)
        return {
            "running": self._running,
            "source_root": str(self._config.source_root),
            "output_root": str(self._config.output_root),
            "tracked_files": tracked,
            "exports": self.exports,
            "errors": self.errors,
        }

    def _watch_filter(self, change: Change, path: str) -> bool:
        # Deletions are never mirrored
        return change != Change.deleted and is_log_file(Path(path))

    def _watch_loop(self, source_root: Path, stop_event: threading.Event) -> None:
        try:
            for changes in watch(
                source_root,
                watch_filter=self._watch_filter,
                stop_event=stop_event,
                recursive=True,
                raise_interrupt=False,
            ):
                for _, path_str in sorted(changes, key=lambda c: c[1]):
                    if stop_event.is_set():
                        return
                    self.process_file(Path(path_str))
        except Exception as e:
            logger.error(f"File watcher error: {e}")

    def _poll_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._config.poll_interval):
            self.scan()

    def scan(self) -> int:
        """Check every log file under the source root. Returns exports done."""
        source_root = self._config.source_root
        try:
            project_dirs = sorted(p for p in source_root.iterdir() if p.is_dir())
        except OSError as e:
            logger.debug(f"Scan skipped: {e}")
            return 0

        exported = 0
        for project_dir in project_dirs:
            try:
                paths = sorted(project_dir.iterdir())
            except OSError as e:
                logger.debug(f"Cannot list {project_dir}: {e}")
                continue
            for path in paths:
                if is_log_file(path) and self.process_file(path):
                    exported += 1
        return exported

    def _lock_for(self, path: Path) -> threading.Lock:
        with self._state_lock:
            lock = self._file_locks.get(path)
            if lock is None:
                lock = self._file_locks[path] = threading.Lock()
            return lock

    def process_file(self, path: Path) -> bool:
        """Export one log file if it grew since the last export.

        Returns True when artifacts were written. Errors are logged and
        never propagate; the file is retried on the next change or poll.
        """
        path = Path(path)
        if not is_log_file(path):
            return False

        with self._lock_for(path):
            return self._process(path)

    def _process(self, path: Path) -> bool:
        config = self._config
        try:
            size = path.stat().st_size
            with self._state_lock:
                last_size = self._progress.get(path, 0)
            if size <= last_size:
                return False

            logger.info(f"Processing: {path.name}")

            # Whole file is re-read; dedup and stable names make this idempotent
            content = path.read_text(encoding="utf-8", errors="replace")
            messages = parse_file(content, now=self._clock())
            if not messages:
                return False

            session = assemble_session(path, messages)
            self.export_session(path.parent.name, session, config)

            with self._state_lock:
                self._progress[path] = size
                self.exports += 1
        except Exception as e:
            with self._state_lock:
                self.errors += 1
            logger.error(f"Error processing {path}: {e}")
            return False

        project_output_dir = config.output_root / path.parent.name
        try:
            rebuild_index(project_output_dir, now=self._clock())
        except Exception as e:
            logger.error(f"Error updating index: {e}")
        return True

    def export_session(self, project_name: str, session: Session, config: Config | None = None) -> list[Path]:
        """Write every enabled artifact for a session. Returns written paths."""
        config = config or self._config
        project_output_dir = config.output_root / project_name
        project_output_dir.mkdir(parents=True, exist_ok=True)

        written = []
        for fmt in ExportFormat:
            if fmt not in config.formats:
                continue
            target = project_output_dir / file_name(session, fmt)
            content = render(session, fmt, exported_at=self._clock())
            # Lone surrogates from split emoji become "?" instead of failing the export
            target.write_text(content, encoding="utf-8", errors="replace")
            logger.info(f"Saved: {target.name}")
            written.append(target)
        return written
