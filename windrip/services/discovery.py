from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List

from ..models import BuildConfig, DiscoveryError


logger = logging.getLogger(__name__)


def _is_excluded(path: Path, config: BuildConfig) -> bool:
    relative = path.relative_to(config.input_root)
    if any(part in config.ignore for part in relative.parts[:-1]):
        return True
    output_root = config.output_root
    return path == output_root or output_root in path.parents


def _raise(exc: OSError) -> None:
    raise exc


def _walk(root: Path, ignore: List[str]):
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        dirnames[:] = sorted(d for d in dirnames if d not in ignore)
        for name in filenames:
            yield Path(dirpath) / name


def discover_files(config: BuildConfig) -> List[Path]:
    """Sorted absolute paths of every source file the run should consider."""
    root = config.input_root
    extensions = {ext.lower() for ext in config.file_extensions}
    found: List[Path] = []
    try:
        if config.recursive:
            candidates = _walk(root, config.ignore)
        else:
            candidates = (entry for entry in root.iterdir() if entry.is_file())
        for candidate in candidates:
            if candidate.suffix.lstrip(".").lower() not in extensions:
                continue
            if _is_excluded(candidate, config):
                continue
            found.append(candidate.resolve())
    except OSError as exc:
        raise DiscoveryError(f"Failed to scan {root}: {exc}") from exc
    found.sort()
    logger.debug("evt=discovered root=%s files=%d", root, len(found))
    return found


def is_watched_path(path: Path, config: BuildConfig) -> bool:
    """Whether a filesystem event for ``path`` concerns a source file."""
    path = Path(path).resolve()
    if path.suffix.lstrip(".").lower() not in {ext.lower() for ext in config.file_extensions}:
        return False
    try:
        return not _is_excluded(path, config)
    except ValueError:
        return False
