from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import urljoin, urlsplit

import httpx
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from ..models import BrowserLaunchError, BuildConfig, RenderError, RenderResult
from .extractor import is_valid_class


logger = logging.getLogger(__name__)

CLASSED_ELEMENT_SELECTOR = "[class]"

# Runs inside the page. Returns class-selector rules (including those nested in
# @media/@supports), unreadable stylesheet hrefs, scripts and live classes.
COLLECT_PAGE_SCRIPT = """
async ({ runtimeUrl, ownMarkers, configGlobal }) => {
    const tokenRe = /^[A-Za-z0-9_][A-Za-z0-9_\\-:]*$/;
    const collectRules = (rules) => {
        let out = '';
        for (const rule of rules) {
            if (rule.selectorText !== undefined) {
                if (rule.selectorText.trim().startsWith('.')) out += rule.cssText + '\\n';
                continue;
            }
            if (!rule.cssRules) continue;
            let prelude = null;
            if (rule.type === CSSRule.MEDIA_RULE) prelude = '@media ' + rule.media.mediaText;
            else if (rule.type === CSSRule.SUPPORTS_RULE) prelude = '@supports ' + rule.conditionText;
            if (prelude === null) continue;
            const inner = collectRules(rule.cssRules);
            if (inner) out += prelude + ' {\\n' + inner + '}\\n';
        }
        return out;
    };
    let css = '';
    const unreadable = [];
    for (const sheet of Array.from(document.styleSheets)) {
        try {
            css += collectRules(sheet.cssRules);
        } catch (e) {
            unreadable.push(sheet.href || '(inline)');
        }
    }
    const stylesheets = Array.from(document.querySelectorAll('link[rel~="stylesheet"]'))
        .map((link) => link.href)
        .filter(Boolean);
    const scripts = [];
    document.querySelectorAll('script').forEach((s) => {
        if (s.src) {
            if (s.src.includes(runtimeUrl) || ownMarkers.some((m) => s.src.includes(m))) return;
            scripts.push('// External: ' + s.src);
        } else if (s.textContent && !s.textContent.includes(configGlobal)) {
            const body = s.textContent.trim();
            if (body) scripts.push(body);
        }
    });
    const classes = new Set();
    document.querySelectorAll('[class]').forEach((el) => {
        el.classList.forEach((cls) => {
            if (tokenRe.test(cls)) classes.add(cls);
        });
    });
    return { css, unreadable, stylesheets, scripts, classes: Array.from(classes) };
}
"""


class AttemptState(str, Enum):
    attempting = "attempting"
    succeeded = "succeeded"
    failed = "failed"


@dataclass(frozen=True)
class RenderAttempt:
    number: int
    state: AttemptState = AttemptState.attempting
    error: Optional[str] = None

    def succeed(self) -> "RenderAttempt":
        return RenderAttempt(self.number, AttemptState.succeeded)

    def fail(self, exc: BaseException) -> "RenderAttempt":
        return RenderAttempt(self.number, AttemptState.failed, f"{type(exc).__name__}: {exc}")


def backoff_delay(attempt: int, base: float = 1.0) -> float:
    """Seconds to wait after failed attempt ``attempt`` (1-based)."""
    return max(0.0, base) * max(0, attempt)


def _same_origin(url: str, page_url: str) -> bool:
    a, b = urlsplit(url), urlsplit(page_url)
    return (a.scheme, a.hostname, a.port) == (b.scheme, b.hostname, b.port)


def _unique(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))


def own_output_markers(config: BuildConfig) -> List[str]:
    """URL fragments identifying files this tool wrote itself."""
    return [f"/{config.output_dir.name}/", config.js_output, config.css_output]


class DynamicRenderer:
    """Renders pages in a fresh browser context per attempt and harvests styles."""

    def __init__(
        self,
        browser: Any,
        config: BuildConfig,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.browser = browser
        self.config = config
        self.http_client = http_client
        self.own_markers = own_output_markers(config)
        self.history: List[RenderAttempt] = []

    async def render(self, url: str) -> RenderResult:
        self.history = []
        retries = self.config.retries
        for number in range(1, retries + 1):
            attempt = RenderAttempt(number)
            self.history.append(attempt)
            try:
                result = await self._render_once(url)
            except Exception as exc:  # noqa: BLE001
                self.history[-1] = attempt.fail(exc)
                if number >= retries:
                    raise RenderError(url, retries, str(exc)) from exc
                delay = backoff_delay(number, self.config.retry_backoff_sec)
                logger.info(
                    "evt=render_retry url=%s attempt=%d/%d delay=%.2f reason=%s",
                    url,
                    number + 1,
                    retries,
                    delay,
                    exc,
                )
                await asyncio.sleep(delay)
                continue
            self.history[-1] = attempt.succeed()
            result.attempts = number
            logger.debug("evt=render_done url=%s attempt=%d classes=%d", url, number, len(result.classes))
            return result
        raise RenderError(url, retries, "no attempts made")

    async def _render_once(self, url: str) -> RenderResult:
        context = await self.browser.new_context()
        try:
            page = await context.new_page()
            page.set_default_navigation_timeout(self.config.timeout_ms)
            page.on("console", self._on_console)
            await page.goto(url, wait_until="networkidle", timeout=self.config.timeout_ms)
            await page.wait_for_selector(
                CLASSED_ELEMENT_SELECTOR,
                state="attached",
                timeout=self.config.selector_timeout_ms,
            )
            if self.config.settle_ms:
                await page.wait_for_timeout(self.config.settle_ms)
            if self.config.ready_signal:
                try:
                    await page.wait_for_function(self.config.ready_signal, timeout=self.config.ready_timeout_ms)
                except PlaywrightTimeoutError:
                    logger.debug("evt=ready_signal_absent url=%s", url)
            payload: Dict[str, Any] = await page.evaluate(
                COLLECT_PAGE_SCRIPT,
                {
                    "runtimeUrl": self.config.runtime_url,
                    "ownMarkers": self.own_markers,
                    "configGlobal": "tailwind.config",
                },
            )
        finally:
            await context.close()

        for href in payload.get("unreadable") or []:
            logger.warning("Could not access stylesheet %s (cross-origin); skipping", href)

        css = payload.get("css") or ""
        if self.config.include_external:
            css += await self._inline_external(url, payload.get("stylesheets") or [])

        return RenderResult(
            css=css,
            scripts=_unique([s for s in payload.get("scripts") or [] if s]),
            classes={c for c in payload.get("classes") or [] if is_valid_class(c)},
        )

    def _on_console(self, message: Any) -> None:
        if message.type == "error":
            logger.debug("evt=browser_console_error text=%s", message.text)

    def _is_own_output(self, href: str) -> bool:
        path = urlsplit(href).path
        return any(marker in path for marker in self.own_markers)

    async def _inline_external(self, page_url: str, hrefs: List[str]) -> str:
        targets = []
        for href in _unique(hrefs):
            absolute = urljoin(page_url, href)
            if not _same_origin(absolute, page_url):
                logger.debug("evt=external_css_skipped href=%s reason=cross_origin", absolute)
                continue
            if self._is_own_output(absolute):
                continue
            targets.append(absolute)
        if not targets:
            return ""

        chunks: List[str] = []
        client = self.http_client or httpx.AsyncClient(timeout=self.config.timeout_ms / 1000)
        try:
            for href in targets:
                try:
                    response = await client.get(href)
                except httpx.HTTPError as exc:
                    logger.warning("Error fetching external CSS %s: %s", href, exc)
                    continue
                if response.status_code != 200:
                    logger.warning("Failed to fetch external CSS %s (%s)", href, response.status_code)
                    continue
                chunks.append(f"\n/* External CSS from: {href} */\n{response.text}\n")
        finally:
            if client is not self.http_client:
                await client.aclose()
        return "".join(chunks)


@asynccontextmanager
async def launch_browser(config: BuildConfig) -> AsyncIterator[Any]:
    """Headless Chromium for the duration of a run; always closed on exit."""
    async with async_playwright() as playwright:
        try:
            browser = await playwright.chromium.launch(
                headless=True,
                args=["--no-sandbox", "--disable-setuid-sandbox"],
            )
        except PlaywrightError as exc:
            raise BrowserLaunchError(f"Failed to launch browser: {exc}") from exc
        logger.debug("evt=browser_launched")
        try:
            yield browser
        finally:
            try:
                await browser.close()
            except PlaywrightError as exc:
                logger.warning("Failed to close browser: %s", exc)

