"""File watcher service using watchfiles.

Watches the transcript tree and triggers a full rescan whenever a
session log is added, modified or removed.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterable, Optional

from watchfiles import Change, awatch

logger = logging.getLogger("tokenviz.watcher")

WATCHED_SUFFIX = ".jsonl"


def has_relevant_changes(changes: Iterable[tuple[Change, str]]) -> bool:
    """True when any change touches a transcript file."""
    for change_type, path_str in changes:
        if Path(path_str).suffix != WATCHED_SUFFIX:
            continue
        if change_type in (Change.added, Change.modified, Change.deleted):
            return True
    return False


class FileWatcher:
    """Background watcher that rescans the logs root on change."""

    def __init__(self):
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False

    async def start(self, engine, logs_root: Path) -> None:
        """Start watching ``logs_root`` in a background task."""
        if self._running:
            logger.warning("File watcher already running")
            return
        if not logs_root.exists():
            logger.warning(f"Logs root {logs_root} does not exist, watcher not started")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop(engine, logs_root, self._stop_event))
        logger.info(f"File watcher started for {logs_root}")

    async def stop(self) -> None:
        """Stop the file watcher."""
        self._running = False
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._stop_event = None
        logger.info("File watcher stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _watch_loop(self, engine, logs_root: Path, stop_event: asyncio.Event) -> None:
        try:
            async for changes in awatch(logs_root, stop_event=stop_event):
                if not self._running:
                    break
                if not has_relevant_changes(changes):
                    continue
                logger.info(f"Detected {len(changes)} file changes, rescanning...")
                try:
                    await engine.rescan(trigger="watcher")
                except Exception as e:
                    logger.error(f"Rescan after file change failed: {e}")
        except asyncio.CancelledError:
            logger.info("File watcher task cancelled")
        except Exception as e:
            logger.error(f"File watcher error: {e}")
        finally:
            self._running = False


# Singleton instance
file_watcher = FileWatcher()
