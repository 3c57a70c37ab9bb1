from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, List


logger = logging.getLogger(__name__)


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def _write_text(path: Path, content: str) -> None:
    path.write_text(content, encoding="utf-8")


class BackupManager:
    """In-memory snapshots of source files for one run.

    Snapshots are keyed by resolved path and never written anywhere; they are
    dropped with :meth:`discard` when the run that owns them ends.
    """

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._snapshots: Dict[Path, str] = {}

    @property
    def tracked(self) -> List[Path]:
        return list(self._snapshots)

    def has_backup(self, path: Path) -> bool:
        return Path(path).resolve() in self._snapshots

    async def backup(self, path: Path) -> None:
        if not self.enabled:
            return
        key = Path(path).resolve()
        try:
            content = await asyncio.to_thread(_read_text, key)
        except OSError as exc:
            logger.warning("Failed to backup %s: %s", key, exc)
            return
        self._snapshots[key] = content
        logger.debug("evt=backup path=%s bytes=%d", key, len(content))

    async def restore(self, path: Path) -> bool:
        key = Path(path).resolve()
        content = self._snapshots.get(key)
        if content is None:
            return False
        try:
            await asyncio.to_thread(_write_text, key, content)
        except OSError as exc:
            logger.error("Failed to restore %s: %s", key, exc)
            return False
        logger.info("Restored %s", key)
        return True

    async def restore_all(self) -> int:
        """Restore every snapshot concurrently; returns how many were restored."""
        paths = list(self._snapshots)
        if not paths:
            return 0
        logger.info("Restoring %d original file(s)...", len(paths))
        results = await asyncio.gather(*(self.restore(p) for p in paths), return_exceptions=True)
        restored = 0
        for path, result in zip(paths, results):
            if isinstance(result, BaseException):
                logger.error("Failed to restore %s: %s", path, result)
            elif result:
                restored += 1
        return restored

    def discard(self) -> None:
        self._snapshots.clear()
