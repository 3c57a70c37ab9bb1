"""Sidecar-backed change detection for class sets.

The digest used for the skip decision comes from the static class set only,
computed before any rendering, so a page whose only change is a class added
by its own scripts at runtime is treated as unchanged. Callers rely on this
fast skip; do not switch it to post-render classes.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Iterable, Optional

from ..models import BuildConfig


logger = logging.getLogger(__name__)

DIGEST_SEPARATOR = " "


def class_digest(classes: Iterable[str]) -> str:
    payload = DIGEST_SEPARATOR.join(sorted(classes))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def artifact_stem(config: BuildConfig, source: Path) -> str:
    """Output name for a source file: its path under the input root with ``/`` as ``__``."""
    source = Path(source).resolve()
    try:
        relative = source.relative_to(config.input_root)
    except ValueError:
        return source.name
    return "__".join(relative.parts)


class ChangeDetector:
    def __init__(self, config: BuildConfig) -> None:
        self.config = config

    def sidecar_path(self, source: Optional[Path] = None) -> Path:
        """Per-file sidecar in separate mode, the single batch sidecar otherwise."""
        if self.config.separate_builds and source is not None:
            return self.config.output_root / f"{artifact_stem(self.config, source)}{self.config.hash_file}"
        return self.config.output_root / self.config.hash_file

    def read(self, source: Optional[Path] = None) -> Optional[str]:
        path = self.sidecar_path(source)
        try:
            return path.read_text(encoding="utf-8").strip() or None
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Could not read hash sidecar %s: %s", path, exc)
            return None

    def is_unchanged(self, digest: str, source: Optional[Path] = None) -> bool:
        return self.read(source) == digest

    async def record(self, digest: str, source: Optional[Path] = None) -> Path:
        path = self.sidecar_path(source)
        path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_text, digest, encoding="utf-8")
        logger.debug("evt=hash_recorded sidecar=%s digest=%s", path, digest[:8])
        return path
