import logging
from typing import Any, Dict, List, Optional

import httpx
import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from windrip.models import RenderError
from windrip.services.renderer import AttemptState, DynamicRenderer, backoff_delay

URL = "http://localhost:7890/index.html"


def _payload(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "css": ".p-4 { padding: 1rem; }\n",
        "unreadable": [],
        "stylesheets": [],
        "scripts": ["console.log(1)", "console.log(1)", "// External: http://localhost:7890/app.js"],
        "classes": ["p-4", "w-1/2", "added-at-runtime"],
    }
    payload.update(overrides)
    return payload


class FakePage:
    def __init__(self, payload: Dict[str, Any], error: Optional[Exception] = None, ready: bool = True) -> None:
        self.payload = payload
        self.error = error
        self.ready = ready
        self.calls: List[str] = []

    def set_default_navigation_timeout(self, timeout: int) -> None:
        self.calls.append(f"nav_timeout:{timeout}")

    def on(self, event: str, callback: Any) -> None:
        self.calls.append(f"on:{event}")

    async def goto(self, url: str, wait_until: str, timeout: int) -> None:
        self.calls.append(f"goto:{wait_until}")
        if self.error is not None:
            raise self.error

    async def wait_for_selector(self, selector: str, state: str, timeout: int) -> None:
        self.calls.append(f"selector:{selector}:{state}")

    async def wait_for_timeout(self, timeout: int) -> None:
        self.calls.append("settle")

    async def wait_for_function(self, expression: str, timeout: int) -> None:
        if not self.ready:
            raise PlaywrightTimeoutError("ready signal not seen")

    async def evaluate(self, script: str, arg: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append("evaluate")
        return self.payload


class FakeContext:
    def __init__(self, page: FakePage) -> None:
        self.page = page
        self.closed = False

    async def new_page(self) -> FakePage:
        return self.page

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self, pages: List[FakePage]) -> None:
        self.pages = list(pages)
        self.contexts: List[FakeContext] = []

    async def new_context(self) -> FakeContext:
        page = self.pages.pop(0) if len(self.pages) > 1 else self.pages[0]
        context = FakeContext(page)
        self.contexts.append(context)
        return context


def test_backoff_grows_linearly() -> None:
    assert backoff_delay(1, 1.0) == 1.0
    assert backoff_delay(2, 1.0) == 2.0
    assert backoff_delay(3, 0.5) == 1.5
    assert backoff_delay(2, 0) == 0


@pytest.mark.asyncio
async def test_render_collects_css_scripts_and_classes(make_config) -> None:
    browser = FakeBrowser([FakePage(_payload())])
    renderer = DynamicRenderer(browser, make_config(settle_ms=50))

    result = await renderer.render(URL)

    assert result.css.startswith(".p-4")
    assert result.scripts == ["console.log(1)", "// External: http://localhost:7890/app.js"]
    assert result.classes == {"p-4", "added-at-runtime"}
    assert result.attempts == 1
    assert browser.contexts[0].closed
    assert browser.contexts[0].page.calls[:4] == ["nav_timeout:30000", "on:console", "goto:networkidle", "selector:[class]:attached"]
    assert "settle" in browser.contexts[0].page.calls


@pytest.mark.asyncio
async def test_retries_in_fresh_contexts_then_succeeds(monkeypatch: pytest.MonkeyPatch, make_config) -> None:
    delays: List[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr("windrip.services.renderer.asyncio.sleep", fake_sleep)
    pages = [
        FakePage(_payload(), error=RuntimeError("net::ERR_CONNECTION_REFUSED")),
        FakePage(_payload(), error=RuntimeError("navigation timeout")),
        FakePage(_payload()),
    ]
    browser = FakeBrowser(pages)
    renderer = DynamicRenderer(browser, make_config(retries=3, retry_backoff_sec=1.0))

    result = await renderer.render(URL)

    assert result.attempts == 3
    assert delays == [1.0, 2.0]
    assert len(browser.contexts) == 3
    assert all(context.closed for context in browser.contexts)
    assert [a.state for a in renderer.history] == [AttemptState.failed, AttemptState.failed, AttemptState.succeeded]


@pytest.mark.asyncio
async def test_exhausted_retries_raise_render_error(make_config) -> None:
    browser = FakeBrowser([FakePage(_payload(), error=RuntimeError("boom"))])
    renderer = DynamicRenderer(browser, make_config(retries=2))

    with pytest.raises(RenderError) as excinfo:
        await renderer.render(URL)

    assert str(excinfo.value) == f"Failed to process {URL} after 2 attempts: boom"
    assert excinfo.value.attempts == 2
    assert len(browser.contexts) == 2
    assert all(context.closed for context in browser.contexts)


@pytest.mark.asyncio
async def test_missing_ready_signal_is_tolerated(make_config) -> None:
    browser = FakeBrowser([FakePage(_payload(), ready=False)])
    renderer = DynamicRenderer(browser, make_config())

    result = await renderer.render(URL)

    assert result.attempts == 1
    assert "p-4" in result.classes


@pytest.mark.asyncio
async def test_unreadable_stylesheets_are_warnings(make_config, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING)
    payload = _payload(unreadable=["https://fonts.example.com/font.css"])
    renderer = DynamicRenderer(FakeBrowser([FakePage(payload)]), make_config())

    result = await renderer.render(URL)

    assert result.css
    assert any("fonts.example.com" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_external_stylesheets_are_inlined(make_config, caplog: pytest.LogCaptureFixture) -> None:
    requested: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        if request.url.path == "/css/site.css":
            return httpx.Response(200, text=".site { color: red; }")
        return httpx.Response(404, text="missing")

    payload = _payload(
        stylesheets=[
            "http://localhost:7890/css/site.css",
            "http://localhost:7890/css/gone.css",
            "https://cdn.example.com/lib.css",
            "http://localhost:7890/windrip/index.html.css",
        ]
    )
    caplog.set_level(logging.WARNING)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        renderer = DynamicRenderer(FakeBrowser([FakePage(payload)]), make_config(include_external=True), http_client=client)
        result = await renderer.render(URL)

    assert "/* External CSS from: http://localhost:7890/css/site.css */" in result.css
    assert ".site { color: red; }" in result.css
    assert requested == ["http://localhost:7890/css/site.css", "http://localhost:7890/css/gone.css"]
    assert any("gone.css" in r.getMessage() for r in caplog.records)
