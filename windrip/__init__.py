"""Top-level package exports with lazy loading.

Playwright, watchdog and the server stack are imported only when the
corresponding attribute is requested, so ``windrip.services.extractor`` and
the other pure helpers stay importable without the browser tooling.
"""

from importlib import import_module
from typing import Any

__version__ = "0.1.0"

_EXPORTS = {
    "BackupManager": ".services.backup",
    "BuildConfig": ".models",
    "WatchOrchestrator": ".watcher",
    "extract_classes": ".services.extractor",
    "load_config": ".settings",
    "run_build": ".pipeline",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:
    if name not in _EXPORTS:
        raise AttributeError(name)
    module = import_module(_EXPORTS[name], __name__)
    return getattr(module, name)
