import asyncio
import inspect
from pathlib import Path
from typing import Any

import pytest

from windrip.models import BuildConfig


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    func: Any = pyfuncitem.obj
    if inspect.iscoroutinefunction(func):
        kwargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
        loop = asyncio.new_event_loop()
        try:
            loop.run_until_complete(func(**kwargs))
        finally:
            loop.close()
        return True
    return None


@pytest.fixture
def site(tmp_path: Path) -> Path:
    root = tmp_path / "src"
    root.mkdir()
    return root


@pytest.fixture
def make_config(tmp_path: Path, site: Path):
    def _make(**overrides: Any) -> BuildConfig:
        values: dict[str, Any] = {
            "input_dir": site,
            "output_dir": tmp_path / "windrip",
            "engine_config_file": tmp_path / "missing.config.js",
            "retry_backoff_sec": 0,
            "settle_ms": 0,
            "file_extensions": ["html"],
        }
        values.update(overrides)
        return BuildConfig(**values)

    return _make
