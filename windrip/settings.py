from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from .models import BuildConfig, WindripError


logger = logging.getLogger(__name__)

ENV_PATH = Path(".env")
CONFIG_PATH = Path("windrip.config.json")
ENV_PREFIX = "WINDRIP_"

# Fields given as comma-separated lists in the environment.
LIST_FIELDS = ("file_extensions", "ignore")


class ConfigError(WindripError):
    pass


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def read_config_file(path: Path) -> Dict[str, Any]:
    """Options from a JSON config file; a missing or malformed file yields ``{}``."""
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring malformed config file %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config file %s: expected a JSON object", path)
        return {}
    known = set(BuildConfig.model_fields)
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning("Unknown options in %s: %s", path, ", ".join(unknown))
    return {key: value for key, value in data.items() if key in known}


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """``WINDRIP_<FIELD>`` variables mapped onto config fields."""
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = {}
    for name in BuildConfig.model_fields:
        raw = environ.get(ENV_PREFIX + name.upper())
        if raw is None or raw == "":
            continue
        values[name] = _split_list(raw) if name in LIST_FIELDS else raw
    return values


def load_config(
    overrides: Optional[Mapping[str, Any]] = None,
    config_path: Optional[Path] = None,
) -> BuildConfig:
    """Build the run configuration.

    Order of precedence (highest first):
    - explicit ``overrides`` (command-line flags)
    - ``WINDRIP_*`` environment variables, including those from ``.env``
    - the JSON config file
    - ``BuildConfig`` defaults
    """
    load_dotenv(ENV_PATH, override=False)
    values: Dict[str, Any] = {}
    values.update(read_config_file(config_path or CONFIG_PATH))
    values.update(env_overrides())
    values.update({key: value for key, value in (overrides or {}).items() if value is not None})
    try:
        return BuildConfig(**values)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
