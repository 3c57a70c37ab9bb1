"""Serves the input directory to the browser during a run.

Plain markup is served in-process by a FastAPI app with ``StaticFiles``.
Sources that need a server-side runtime (PHP, Twig) are served by an
external command, ``php -S`` unless ``server_command`` says otherwise.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from pathlib import Path
from typing import Any, List, Optional

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from ..models import BuildConfig, ServerStartError


logger = logging.getLogger(__name__)

HOST = "localhost"
POLL_INTERVAL_SEC = 0.1


def base_url(config: BuildConfig) -> str:
    return f"http://{HOST}:{config.port}"


def page_url(config: BuildConfig, path: Path) -> str:
    relative = Path(path).resolve().relative_to(config.input_root)
    return f"{base_url(config)}/{relative.as_posix()}"


def resolve_server_command(config: BuildConfig) -> Optional[List[str]]:
    """Argument vector of the external server, or ``None`` for the built-in one."""
    if config.server_command:
        return shlex.split(config.server_command)
    if config.has_dynamic_sources():
        return ["php", "-S", f"{HOST}:{config.port}"]
    return None


def create_static_app(directory: Path) -> FastAPI:
    app = FastAPI(title="windrip content server", docs_url=None, redoc_url=None, openapi_url=None)
    app.mount("/", StaticFiles(directory=str(directory), html=True), name="content")
    return app


class ContentServer:
    def __init__(self, config: BuildConfig) -> None:
        self.config = config
        self.command = resolve_server_command(config)
        self._process: Optional[asyncio.subprocess.Process] = None
        self._server: Optional[uvicorn.Server] = None
        self._task: Optional["asyncio.Task[Any]"] = None

    @property
    def url(self) -> str:
        return base_url(self.config)

    async def __aenter__(self) -> "ContentServer":
        try:
            await self.start()
        except BaseException:
            await self.stop()
            raise
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        if self.command:
            await self._spawn(self.command)
        else:
            await self._serve_builtin()
        await self._wait_until_ready()
        logger.info("Content server ready at %s", self.url)

    async def _spawn(self, command: List[str]) -> None:
        logger.info("Starting server: %s", " ".join(command))
        try:
            self._process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(self.config.input_root),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ServerStartError(f"Failed to start server '{' '.join(command)}': {exc}") from exc

    async def _serve_builtin(self) -> None:
        app = create_static_app(self.config.input_root)
        server_config = uvicorn.Config(app, host=HOST, port=self.config.port, log_config=None, log_level="warning")
        self._server = uvicorn.Server(server_config)
        self._task = asyncio.create_task(self._server.serve())
        logger.debug("evt=builtin_server_started root=%s port=%d", self.config.input_root, self.config.port)

    def _exit_reason(self) -> Optional[str]:
        if self._process is not None and self._process.returncode is not None:
            return f"server process exited with code {self._process.returncode}"
        if self._task is not None and self._task.done():
            exc = None if self._task.cancelled() else self._task.exception()
            return f"built-in server stopped: {exc or 'exited'}"
        return None

    async def _wait_until_ready(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.server_start_timeout_sec
        last_error: Optional[str] = None
        async with httpx.AsyncClient(timeout=1.0) as client:
            while loop.time() < deadline:
                reason = self._exit_reason()
                if reason:
                    raise ServerStartError(f"Failed to start server: {reason}")
                try:
                    await client.get(self.url + "/")
                except httpx.HTTPError as exc:
                    last_error = str(exc) or type(exc).__name__
                    await asyncio.sleep(POLL_INTERVAL_SEC)
                    continue
                return
        raise ServerStartError(
            f"Server did not respond at {self.url} within {self.config.server_start_timeout_sec:.1f}s"
            + (f": {last_error}" if last_error else "")
        )

    async def stop(self) -> None:
        if self._process is not None and self._process.returncode is None:
            self._process.terminate()
            try:
                await asyncio.wait_for(self._process.wait(), timeout=5)
            except asyncio.TimeoutError:
                logger.warning("Server process did not exit, killing it")
                self._process.kill()
                await self._process.wait()
        self._process = None

        if self._server is not None:
            self._server.should_exit = True
        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=5)
            except asyncio.TimeoutError:
                self._task.cancel()
            except Exception as exc:  # noqa: BLE001
                logger.debug("evt=builtin_server_error error=%s", exc)
        self._server = None
        self._task = None
