import json
import logging
from pathlib import Path

import pytest

from windrip import settings
from windrip.settings import ConfigError, env_overrides, load_config


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in list(settings.os.environ):
        if name.startswith(settings.ENV_PREFIX):
            monkeypatch.delenv(name)
    monkeypatch.setattr(settings, "ENV_PATH", tmp_path / ".env")


def test_defaults_without_file_or_env(tmp_path: Path) -> None:
    config = load_config(config_path=tmp_path / "absent.json")
    assert config.input_dir == Path("src")
    assert config.port == 7890
    assert config.separate_builds is True


def test_precedence_overrides_env_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_file = tmp_path / "windrip.config.json"
    config_file.write_text(json.dumps({"port": 8001, "retries": 5, "minify": True}), encoding="utf-8")
    monkeypatch.setenv("WINDRIP_PORT", "8002")
    monkeypatch.setenv("WINDRIP_RETRIES", "4")

    config = load_config({"port": 8003, "retries": None}, config_path=config_file)

    assert config.port == 8003
    assert config.retries == 4
    assert config.minify is True


def test_dotenv_file_is_loaded(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("WINDRIP_OUTPUT_DIR", raising=False)
    (tmp_path / ".env").write_text("WINDRIP_OUTPUT_DIR=dist\n", encoding="utf-8")

    config = load_config(config_path=tmp_path / "absent.json")

    assert config.output_dir == Path("dist")


def test_list_fields_from_env() -> None:
    values = env_overrides({"WINDRIP_FILE_EXTENSIONS": "html, .php ,vue", "WINDRIP_MINIFY": ""})
    assert values == {"file_extensions": ["html", ".php", "vue"]}


def test_malformed_config_file_is_ignored(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING)
    config_file = tmp_path / "windrip.config.json"
    config_file.write_text("{not json", encoding="utf-8")

    config = load_config(config_path=config_file)

    assert config.port == 7890
    assert any("Ignoring malformed config file" in r.getMessage() for r in caplog.records)


def test_invalid_values_raise_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config({"retries": 11}, config_path=tmp_path / "absent.json")
    with pytest.raises(ConfigError):
        load_config({"file_extensions": ["ht-ml"]}, config_path=tmp_path / "absent.json")
    with pytest.raises(ConfigError):
        load_config({"timeout_ms": 500}, config_path=tmp_path / "absent.json")
