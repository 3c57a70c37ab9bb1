from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

import csscompressor

from ..models import BuildArtifact, BuildConfig
from .change_detector import artifact_stem


logger = logging.getLogger(__name__)


@dataclass
class MinifyResult:
    styles: str


class CssMinifier:
    def minify(self, css: str) -> MinifyResult:
        return MinifyResult(styles=csscompressor.compress(css))


def _unique_scripts(scripts: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(s for s in scripts if s))


class BuildAssembler:
    """Writes CSS/JS artifacts, one pair per source or one merged pair per run."""

    def __init__(self, config: BuildConfig, minifier: Optional[CssMinifier] = None) -> None:
        self.config = config
        self.minifier = minifier or CssMinifier()
        self._batch_css: List[str] = []
        self._batch_scripts: List[str] = []

    def artifact_for(self, source: Optional[Path] = None) -> BuildArtifact:
        out = self.config.output_root
        if self.config.separate_builds and source is not None:
            stem = artifact_stem(self.config, source)
            return BuildArtifact(out / f"{stem}.css", out / f"{stem}.js", source=Path(source).resolve())
        return BuildArtifact(out / self.config.css_output, out / self.config.js_output)

    def _finalize_css(self, css: str) -> str:
        if not self.config.minify:
            return css
        try:
            return self.minifier.minify(css).styles
        except Exception as exc:  # noqa: BLE001
            logger.warning("CSS minification failed, writing unminified output: %s", exc)
            return css

    async def _write(self, artifact: BuildArtifact, css: str, scripts: Iterable[str]) -> BuildArtifact:
        css_text = self._finalize_css(css)
        js_text = "\n".join(_unique_scripts(scripts))
        artifact.css_path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(artifact.css_path.write_text, css_text, encoding="utf-8")
        await asyncio.to_thread(artifact.js_path.write_text, js_text, encoding="utf-8")
        logger.debug(
            "evt=artifact_written css=%s js=%s css_bytes=%d js_bytes=%d",
            artifact.css_path.name,
            artifact.js_path.name,
            len(css_text),
            len(js_text),
        )
        return artifact

    async def write_separate(self, source: Path, css: str, scripts: Iterable[str]) -> BuildArtifact:
        return await self._write(self.artifact_for(source), css, scripts)

    def add_to_batch(self, css: str, scripts: Iterable[str]) -> None:
        self._batch_css.append(css)
        self._batch_scripts.extend(scripts)

    @property
    def batch_size(self) -> int:
        return len(self._batch_css)

    async def write_batch(self) -> BuildArtifact:
        artifact = await self._write(self.artifact_for(), "\n".join(self._batch_css), self._batch_scripts)
        self._batch_css = []
        self._batch_scripts = []
        return artifact
