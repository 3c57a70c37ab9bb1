from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Set

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .models import BuildConfig, RunReport
from .pipeline import run_build
from .services.backup import BackupManager
from .services.discovery import is_watched_path


logger = logging.getLogger(__name__)

BuildCallable = Callable[..., Awaitable[RunReport]]


class WatchState(str, Enum):
    idle = "idle"
    rebuilding = "rebuilding"


class ChangeKind(str, Enum):
    add = "add"
    change = "change"
    unlink = "unlink"


class SourceEventHandler(FileSystemEventHandler):
    """Forwards source-file events from the observer thread to the event loop."""

    def __init__(self, config: BuildConfig, loop: asyncio.AbstractEventLoop, notify: Callable[[ChangeKind, Path], None]) -> None:
        super().__init__()
        self.config = config
        self.loop = loop
        self.notify = notify

    def _forward(self, kind: ChangeKind, raw_path: Any) -> None:
        if isinstance(raw_path, bytes):
            raw_path = raw_path.decode()
        path = Path(raw_path)
        if not is_watched_path(path, self.config):
            return
        self.loop.call_soon_threadsafe(self.notify, kind, path)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(ChangeKind.add, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(ChangeKind.change, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(ChangeKind.unlink, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(ChangeKind.unlink, event.src_path)
            self._forward(ChangeKind.add, event.dest_path)


class WatchOrchestrator:
    """Rebuilds on source changes, at most one rebuild at a time.

    Events arriving while a rebuild is running are dropped rather than
    queued; the next event after it finishes triggers a fresh build.
    """

    def __init__(
        self,
        config: BuildConfig,
        *,
        build: BuildCallable = run_build,
        observer_factory: Callable[[], Any] = Observer,
    ) -> None:
        self.config = config
        self.build = build
        self.observer_factory = observer_factory
        self.state = WatchState.idle
        self.backups: Optional[BackupManager] = None
        self.last_report: Optional[RunReport] = None
        self._tasks: Set["asyncio.Task[bool]"] = set()

    def scope_for(self, kind: Optional[ChangeKind], changed: Optional[Path]) -> Optional[list]:
        if changed is None or kind is ChangeKind.unlink or not self.config.separate_builds:
            return None
        return [changed]

    async def request_rebuild(self, changed: Optional[Path] = None, kind: Optional[ChangeKind] = None) -> bool:
        """Run one rebuild unless one is already in flight; True when it ran."""
        if self.state is WatchState.rebuilding:
            logger.debug("evt=rebuild_dropped path=%s", changed)
            return False
        self.state = WatchState.rebuilding
        self.backups = BackupManager(enabled=self.config.backup_originals and not self.config.dry_run)
        files = self.scope_for(kind, changed)
        logger.info("Rebuilding %s", changed if files else "all files")
        try:
            self.last_report = await self.build(self.config, files=files, backups=self.backups)
        except Exception as exc:  # noqa: BLE001
            logger.error("Rebuild failed: %s", exc)
            restored = await self.backups.restore_all()
            if restored:
                logger.info("Restored %d file(s) after failed rebuild", restored)
        finally:
            self.backups.discard()
            self.backups = None
            self.state = WatchState.idle
        return True

    def _on_change(self, kind: ChangeKind, path: Path) -> None:
        logger.info("File %s: %s", kind.value, path)
        task = asyncio.ensure_future(self.request_rebuild(path, kind))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def run(self, stop_event: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        handler = SourceEventHandler(self.config, loop, self._on_change)
        observer = self.observer_factory()
        observer.schedule(handler, str(self.config.input_root), recursive=self.config.recursive)
        observer.start()
        logger.info("Watching %s for changes", self.config.input_root)
        try:
            await self.request_rebuild()
            await stop_event.wait()
        finally:
            try:
                observer.stop()
                await asyncio.to_thread(observer.join)
            except Exception as exc:  # noqa: BLE001
                logger.error("Error stopping file watcher: %s", exc)
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)
            logger.info("Stopped watching %s", self.config.input_root)
