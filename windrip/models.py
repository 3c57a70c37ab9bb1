from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Set

from pydantic import BaseModel, Field, confloat, conint, field_validator


DEFAULT_FILE_EXTENSIONS = ["html", "php", "twig", "jsx", "vue", "svelte"]
DYNAMIC_EXTENSIONS = ("php", "twig")
EXTENSION_RE = re.compile(r"^[A-Za-z0-9]+$")


class WindripError(RuntimeError):
    """Base class for errors raised by the build pipeline."""


class InputDirectoryError(WindripError):
    pass


class DiscoveryError(WindripError):
    pass


class ServerStartError(WindripError):
    pass


class BrowserLaunchError(WindripError):
    pass


class RenderError(WindripError):
    """Raised once every render attempt for a page has failed."""

    def __init__(self, url: str, attempts: int, reason: str) -> None:
        super().__init__(f"Failed to process {url} after {attempts} attempts: {reason}")
        self.url = url
        self.attempts = attempts
        self.reason = reason


class BuildConfig(BaseModel):
    # Locations
    input_dir: Path = Path("src")
    output_dir: Path = Path("windrip")
    css_output: str = "build.css"
    js_output: str = "build.js"
    hash_file: str = ".csshash"
    file_extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_FILE_EXTENSIONS))
    ignore: List[str] = Field(default_factory=lambda: ["node_modules", ".git"])
    recursive: bool = True

    # CSS engine bootstrap
    runtime_url: str = "https://cdn.tailwindcss.com"
    engine_config_file: Path = Path("tailwind.config.js")
    engine_config_fallback: Optional[str] = '{"theme": {"extend": {}}, "plugins": []}'

    # Content server
    port: conint(ge=1, le=65535) = 7890
    server_command: Optional[str] = None
    server_start_timeout_sec: confloat(ge=0.5, le=120.0) = 10.0

    # Rendering
    timeout_ms: conint(ge=1000, le=600000) = 30000
    retries: conint(ge=1, le=10) = 3
    retry_backoff_sec: confloat(ge=0.0, le=60.0) = 1.0
    selector_timeout_ms: conint(ge=0, le=60000) = 5000
    settle_ms: conint(ge=0, le=60000) = 200
    ready_signal: Optional[str] = "window.windripReady === true"
    ready_timeout_ms: conint(ge=0, le=60000) = 2000
    include_external: bool = False

    # Output
    separate_builds: bool = True
    minify: bool = False
    unlink_external: bool = False
    backup_originals: bool = True
    dry_run: bool = False
    verbose: bool = False

    @field_validator("file_extensions")
    @classmethod
    def _check_extensions(cls, value: List[str]) -> List[str]:
        cleaned = [ext.strip().lstrip(".") for ext in value if ext and ext.strip()]
        if not cleaned:
            raise ValueError("at least one file extension is required")
        bad = [ext for ext in cleaned if not EXTENSION_RE.match(ext)]
        if bad:
            raise ValueError(f"file extensions must be alphanumeric: {', '.join(bad)}")
        return cleaned

    @property
    def input_root(self) -> Path:
        return self.input_dir.resolve()

    @property
    def output_root(self) -> Path:
        return self.output_dir.resolve()

    def has_dynamic_sources(self) -> bool:
        return any(ext in DYNAMIC_EXTENSIONS for ext in self.file_extensions)


@dataclass
class RenderResult:
    css: str = ""
    scripts: List[str] = field(default_factory=list)
    classes: Set[str] = field(default_factory=set)
    attempts: int = 1


@dataclass(frozen=True)
class BuildArtifact:
    css_path: Path
    js_path: Path
    source: Optional[Path] = None


@dataclass
class SourceFile:
    path: Path
    classes: Set[str] = field(default_factory=set)
    css: str = ""
    scripts: List[str] = field(default_factory=list)
    digest: str = ""

    @property
    def extension(self) -> str:
        return self.path.suffix.lstrip(".").lower()


class RunStatus(str, Enum):
    completed = "completed"
    completed_with_errors = "completed_with_errors"
    skipped = "skipped"
    dry_run = "dry_run"


@dataclass
class RunReport:
    processed: List[Path] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    artifacts: List[BuildArtifact] = field(default_factory=list)
    dry_run: bool = False

    @property
    def status(self) -> RunStatus:
        if self.dry_run:
            return RunStatus.dry_run
        if self.errors:
            return RunStatus.completed_with_errors
        if not self.processed:
            return RunStatus.skipped
        return RunStatus.completed
