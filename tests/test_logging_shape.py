import logging
from pathlib import Path

import pytest

from windrip import logging_config
from windrip.pipeline import run_build

from .test_pipeline import FakeBrowser, _write_site, fake_server


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "message", None, None)


def test_debug_filter_keeps_only_windrip_debug() -> None:
    debug_filter = logging_config._WindripDebugFilter()
    assert debug_filter.filter(_record("windrip.pipeline", logging.DEBUG))
    assert not debug_filter.filter(_record("httpx", logging.DEBUG))
    assert debug_filter.filter(_record("httpx", logging.WARNING))


def test_configure_logging_is_idempotent(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []
    monkeypatch.setattr(logging_config, "_CONFIGURED", False)
    monkeypatch.setattr(logging_config, "dictConfig", lambda config: calls.append(config))

    logging_config.configure_logging("debug")
    logging_config.configure_logging("info")

    assert len(calls) == 1
    assert calls[0]["loggers"][""]["level"] == "DEBUG"
    assert calls[0]["loggers"]["uvicorn.access"]["propagate"] is False


@pytest.mark.asyncio
async def test_pipeline_emits_structured_events(make_config, site: Path, caplog: pytest.LogCaptureFixture) -> None:
    _write_site(site)
    caplog.set_level(logging.DEBUG)

    await run_build(make_config(), browser_factory=FakeBrowser(failing=[]).factory, server_factory=fake_server)

    messages = [r.getMessage() for r in caplog.records if r.name.startswith("windrip.")]
    assert any(m.startswith("evt=static_extract ") for m in messages)
    assert any(m.startswith("evt=file_done ") and "attempts=1" in m for m in messages)
    assert any(m.startswith("evt=run_done status=completed ") for m in messages)
