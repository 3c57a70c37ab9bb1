"""Source-file rewrites around a render.

Before rendering, the CSS engine runtime and its configuration are injected
so the page compiles its utility classes in the browser. After rendering,
those bootstrap tags are removed again and the page is pointed at the build
artifacts. Both rewrites are plain text substitutions; when the markers they
look for are missing they fall back to the document start instead of
failing.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

from ..models import BuildArtifact, BuildConfig


logger = logging.getLogger(__name__)

CONFIG_GLOBAL = "tailwind.config"

_HEAD_CLOSE_RE = re.compile(r"</head\s*>", re.IGNORECASE)
_HEAD_OPEN_RE = re.compile(r"<head(?:\s[^>]*)?>", re.IGNORECASE)
_SCRIPT_CLOSE_RE = re.compile(r"</(script)", re.IGNORECASE)
_CONFIG_SCRIPT_RE = re.compile(
    r"<script\b[^>]*>(?:(?!</script>).)*?" + re.escape(CONFIG_GLOBAL) + r"(?:(?!</script>).)*?</script>\s*",
    re.IGNORECASE | re.DOTALL,
)
_MODULE_PREFIX_RE = re.compile(r"^\s*(?:module\.exports\s*=\s*|export\s+default\s+)")
_EXTERNAL_STYLESHEET_RE = re.compile(r"<link\b[^>]*href=[\"'][^\"']*\.css(?:\?[^\"']*)?[\"'][^>]*>\s*", re.IGNORECASE)


def escape_script_text(text: str) -> str:
    """Keep ``text`` from closing the ``<script>`` element that wraps it."""
    return _SCRIPT_CLOSE_RE.sub(r"<\\/\1", text)


def resolve_engine_config(config_file: Optional[Path], fallback: Optional[str]) -> Optional[str]:
    """Return the engine configuration source to embed, or ``None``.

    An external config file wins when it exists and holds an object literal
    (after dropping a ``module.exports =`` / ``export default`` prefix).
    Otherwise the inline fallback is used if it is valid JSON.
    """
    if config_file is not None:
        try:
            raw = Path(config_file).read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("evt=engine_config_missing path=%s", config_file)
        except OSError as exc:
            logger.warning("Could not read engine config %s: %s", config_file, exc)
        else:
            body = _MODULE_PREFIX_RE.sub("", raw).strip().rstrip(";").strip()
            if body.startswith("{") and body.endswith("}"):
                return body
            logger.warning("Ignoring malformed engine config %s", config_file)

    if fallback:
        try:
            json.loads(fallback)
        except ValueError:
            logger.warning("Invalid fallback engine config: %s", fallback)
            return None
        return fallback.strip()
    return None


def bootstrap_tags(runtime_url: str, engine_config: Optional[str]) -> str:
    tags = f'<script src="{runtime_url}"></script>'
    if engine_config:
        tags += f"<script>{CONFIG_GLOBAL} = {escape_script_text(engine_config)}</script>"
    return tags


def inject_bootstrap(content: str, runtime_url: str, engine_config: Optional[str]) -> str:
    if runtime_url in content:
        return content
    tags = bootstrap_tags(runtime_url, engine_config)
    head_close = _HEAD_CLOSE_RE.search(content)
    if head_close:
        return content[: head_close.start()] + tags + content[head_close.start() :]
    return tags + content


def _relative_posix(target: Path, start: Path) -> str:
    return Path(os.path.relpath(target, start)).as_posix()


def _runtime_script_re(runtime_url: str) -> "re.Pattern[str]":
    parts = urlsplit(runtime_url)
    needle = parts.netloc + parts.path if parts.netloc else runtime_url
    return re.compile(
        r"<script\b[^>]*src=[\"'][^\"']*" + re.escape(needle) + r"[^\"']*[\"'][^>]*>\s*</script>\s*",
        re.IGNORECASE,
    )


def _build_tag_res(css_href: str, js_href: str) -> "tuple[re.Pattern[str], re.Pattern[str]]":
    """Patterns for previously inserted tags; the arguments are regex fragments matching the href."""
    link = re.compile(
        r"<link\b[^>]*href=[\"']" + css_href + r"[\"'][^>]*>\s*",
        re.IGNORECASE,
    )
    script = re.compile(
        r"<script\b[^>]*src=[\"']" + js_href + r"[\"'][^>]*>\s*</script>\s*",
        re.IGNORECASE,
    )
    return link, script


def rewrite_links(
    content: str,
    *,
    source: Path,
    output_dir: Path,
    css_path: Path,
    js_path: Path,
    runtime_url: str,
    unlink_external: bool = False,
) -> str:
    """Point ``content`` at its build artifacts; applying it twice changes nothing."""
    content = _runtime_script_re(runtime_url).sub("", content)
    content = _CONFIG_SCRIPT_RE.sub("", content)

    source_dir = Path(source).resolve().parent
    output_rel = _relative_posix(Path(output_dir).resolve(), source_dir)
    if output_rel != ".":
        prefix = re.escape(f"{output_rel}/")
        link_re, script_re = _build_tag_res(prefix + r"[^\"']*\.css", prefix + r"[^\"']*\.js")
    else:
        link_re, script_re = _build_tag_res(re.escape(Path(css_path).name), re.escape(Path(js_path).name))
    content = script_re.sub("", link_re.sub("", content))

    if unlink_external:
        content = _EXTERNAL_STYLESHEET_RE.sub("", content)

    css_rel = _relative_posix(Path(css_path).resolve(), source_dir)
    js_rel = _relative_posix(Path(js_path).resolve(), source_dir)
    insertion = f'<link rel="stylesheet" href="{css_rel}"><script src="{js_rel}"></script>'

    head_close = _HEAD_CLOSE_RE.search(content)
    if head_close:
        before = content[: head_close.start()].rstrip()
        after = content[head_close.start() :].lstrip()
        return before + insertion + after
    head_open = _HEAD_OPEN_RE.search(content)
    if head_open:
        before = content[: head_open.end()].rstrip()
        after = content[head_open.end() :].lstrip()
        return before + insertion + after
    return f"<head>{insertion}</head>" + content


class ContentRewriter:
    """File-level bootstrap injection and link rewriting for one configuration."""

    def __init__(self, config: BuildConfig) -> None:
        self.config = config
        self._engine_config: Optional[str] = None
        self._engine_config_loaded = False

    @property
    def engine_config(self) -> Optional[str]:
        if not self._engine_config_loaded:
            self._engine_config = resolve_engine_config(
                self.config.engine_config_file, self.config.engine_config_fallback
            )
            self._engine_config_loaded = True
        return self._engine_config

    def bootstrap(self, content: str) -> str:
        return inject_bootstrap(content, self.config.runtime_url, self.engine_config)

    def link(self, content: str, source: Path, artifact: BuildArtifact) -> str:
        return rewrite_links(
            content,
            source=source,
            output_dir=self.config.output_root,
            css_path=artifact.css_path,
            js_path=artifact.js_path,
            runtime_url=self.config.runtime_url,
            unlink_external=self.config.unlink_external,
        )

    async def apply_bootstrap(self, path: Path, content: Optional[str] = None) -> bool:
        """Write the bootstrapped document to ``path``; False when nothing changed."""
        if content is None:
            content = await asyncio.to_thread(Path(path).read_text, encoding="utf-8")
        updated = self.bootstrap(content)
        if updated == content:
            return False
        await asyncio.to_thread(Path(path).write_text, updated, encoding="utf-8")
        logger.debug("evt=bootstrap_injected path=%s", path)
        return True

    async def apply_links(self, path: Path, artifact: BuildArtifact) -> None:
        content = await asyncio.to_thread(Path(path).read_text, encoding="utf-8")
        updated = self.link(content, path, artifact)
        if updated != content:
            await asyncio.to_thread(Path(path).write_text, updated, encoding="utf-8")
        logger.debug("evt=links_rewritten path=%s css=%s js=%s", path, artifact.css_path.name, artifact.js_path.name)
