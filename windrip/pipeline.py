"""One build run: discover, render, assemble and rewrite.

Fatal problems (missing input directory, failed scan, server or browser
that will not start) surface before any source file is touched. After that
each file is processed on its own: a failing file is restored and reported
while the remaining files carry on.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any, AsyncContextManager, Callable, Iterable, List, Optional

import httpx

from .models import BuildConfig, InputDirectoryError, RunReport, SourceFile
from .services.assembler import BuildAssembler, CssMinifier
from .services.backup import BackupManager
from .services.change_detector import ChangeDetector, class_digest
from .services.content_server import ContentServer, page_url
from .services.discovery import discover_files
from .services.extractor import extract_classes
from .services.renderer import DynamicRenderer, launch_browser
from .services.rewriter import ContentRewriter


logger = logging.getLogger(__name__)

BrowserFactory = Callable[[BuildConfig], AsyncContextManager[Any]]
ServerFactory = Callable[[BuildConfig], AsyncContextManager[Any]]


def _short(digest: str) -> str:
    return digest[:8]


class BuildRun:
    """State of a single run; use :func:`run_build` rather than this directly."""

    def __init__(
        self,
        config: BuildConfig,
        *,
        backups: BackupManager,
        minifier: Optional[CssMinifier] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config
        self.backups = backups
        self.http_client = http_client
        self.detector = ChangeDetector(config)
        self.assembler = BuildAssembler(config, minifier=minifier)
        self.rewriter = ContentRewriter(config)
        self.report = RunReport(dry_run=config.dry_run)
        self._contents: dict[Path, str] = {}
        self._batch_sources: List[SourceFile] = []
        self._static_batch_digest: Optional[str] = None

    async def load(self, paths: Iterable[Path]) -> List[SourceFile]:
        sources: List[SourceFile] = []
        for path in paths:
            try:
                content = await asyncio.to_thread(path.read_text, encoding="utf-8")
            except OSError as exc:
                self._fail(path, exc)
                continue
            classes = extract_classes(content)
            self._contents[path] = content
            sources.append(SourceFile(path=path, classes=classes, digest=class_digest(classes)))
            logger.debug("evt=static_extract path=%s classes=%d", path, len(classes))
        return sources

    def select_pending(self, sources: List[SourceFile]) -> List[SourceFile]:
        """Drop sources whose static classes match their recorded digest."""
        if not self.config.separate_builds:
            batch_digest = self.batch_digest(sources)
            self._static_batch_digest = batch_digest
            if sources and not self.report.errors and self.detector.is_unchanged(batch_digest):
                logger.info("No class changes detected (hash %s); skipping build", _short(batch_digest))
                self.report.skipped.extend(s.path for s in sources)
                return []
            return sources

        pending: List[SourceFile] = []
        for source in sources:
            if self.detector.is_unchanged(source.digest, source.path):
                logger.info("Skipping %s (no class changes)", source.path)
                self.report.skipped.append(source.path)
            else:
                pending.append(source)
        return pending

    @staticmethod
    def batch_digest(sources: Iterable[SourceFile]) -> str:
        classes = set()
        for source in sources:
            classes |= source.classes
        return class_digest(classes)

    def _fail(self, path: Path, exc: BaseException) -> None:
        message = f"Error processing {path}: {exc}"
        logger.error(message)
        self.report.errors.append(message)

    async def process(self, source: SourceFile, renderer: DynamicRenderer) -> None:
        path = source.path
        logger.info("Processing %s", path)
        try:
            await self.backups.backup(path)
            await self.rewriter.apply_bootstrap(path, self._contents.get(path))
            result = await renderer.render(page_url(self.config, path))
            source.classes |= result.classes
            source.css = result.css
            source.scripts = result.scripts
            if self.config.separate_builds:
                artifact = await self.assembler.write_separate(path, source.css, source.scripts)
                await self.rewriter.apply_links(path, artifact)
                await self.detector.record(source.digest, path)
                self.report.artifacts.append(artifact)
            else:
                self.assembler.add_to_batch(source.css, source.scripts)
                self._batch_sources.append(source)
        except Exception as exc:  # noqa: BLE001
            self._fail(path, exc)
            await self._restore(path)
            return
        self.report.processed.append(path)
        logger.info(
            "evt=file_done path=%s classes=%d attempts=%d hash=%s",
            path,
            len(source.classes),
            result.attempts,
            _short(source.digest),
        )

    async def finish_batch(self, sources: List[SourceFile]) -> None:
        if self.config.separate_builds:
            return
        artifact = await self.assembler.write_batch()
        self.report.artifacts.append(artifact)
        for source in self._batch_sources:
            try:
                await self.rewriter.apply_links(source.path, artifact)
            except OSError as exc:
                self._fail(source.path, exc)
                self.report.processed.remove(source.path)
                await self._restore(source.path)
        if self.report.errors:
            logger.warning("Batch hash not recorded because some files failed")
            return
        await self.detector.record(self._static_batch_digest or self.batch_digest(sources))

    async def _restore(self, path: Path) -> None:
        if not await self.backups.restore(path):
            logger.warning("No backup available to restore %s", path)

    def dry_run(self, pending: List[SourceFile]) -> None:
        for source in pending:
            logger.info("Would process %s with hash %s", source.path, _short(source.digest))
            self.report.processed.append(source.path)

    def summarize(self) -> None:
        report = self.report
        if report.errors:
            logger.warning("Build finished with %d error(s):", len(report.errors))
            for message in report.errors:
                logger.warning("  %s", message)
        logger.info(
            "evt=run_done status=%s processed=%d skipped=%d errors=%d artifacts=%d",
            report.status.value,
            len(report.processed),
            len(report.skipped),
            len(report.errors),
            len(report.artifacts),
        )


async def run_build(
    config: BuildConfig,
    *,
    files: Optional[Iterable[Path]] = None,
    backups: Optional[BackupManager] = None,
    browser_factory: Optional[BrowserFactory] = None,
    server_factory: Optional[ServerFactory] = None,
    minifier: Optional[CssMinifier] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> RunReport:
    """Run one build and return its report.

    ``files`` limits the run to the given sources instead of discovering
    them. A caller passing its own ``backups`` keeps ownership of it: the
    snapshots are left in place for the caller to restore or discard.
    """
    root = config.input_root
    if not root.is_dir():
        raise InputDirectoryError(f"Input directory not found: {root}")

    paths = sorted(Path(p).resolve() for p in files) if files is not None else discover_files(config)
    owns_backups = backups is None
    if backups is None:
        backups = BackupManager(enabled=config.backup_originals and not config.dry_run)

    run = BuildRun(config, backups=backups, minifier=minifier, http_client=http_client)
    if not paths:
        logger.info("No matching files found in %s", root)
        return run.report
    logger.info("Found %d file(s) to consider in %s", len(paths), root)

    sources = await run.load(paths)
    pending = run.select_pending(sources)

    if config.dry_run:
        run.dry_run(pending)
        run.summarize()
        return run.report

    if not pending:
        run.summarize()
        return run.report

    try:
        config.output_root.mkdir(parents=True, exist_ok=True)
        async with AsyncExitStack() as stack:
            await stack.enter_async_context((server_factory or ContentServer)(config))
            browser = await stack.enter_async_context((browser_factory or launch_browser)(config))
            renderer = DynamicRenderer(browser, config, http_client=http_client)
            for source in pending:
                await run.process(source, renderer)
            await run.finish_batch(sources)
    except BaseException:
        restored = await backups.restore_all()
        logger.error("Build aborted; restored %d file(s)", restored)
        raise
    finally:
        if owns_backups:
            backups.discard()

    run.summarize()
    return run.report
