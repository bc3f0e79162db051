"""Tests for report_kit.config — TOML layering, env overrides, master key lookup."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from report_kit.config import AppConfig, EngineConfig, load_config

_ENV_VARS = (
    "REPORT_KIT_DB_PATH",
    "REPORT_KIT_LOG_LEVEL",
    "REPORT_KIT_MAX_CONCURRENCY",
    "REPORT_KIT_REDISTRIBUTABLE_SOURCES",
    "REPORT_KIT_DEBUG",
    "REPORT_KIT_DATASET_TIMEOUT",
    "REPORT_KIT_STRICT_VALIDATION",
    "REPORT_KIT_MASTER_KEY",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_default_config_loads() -> None:
    config = load_config()
    assert config.engine.max_concurrency == 4
    assert config.policy.strict_validation is True
    assert config.policy.redistributable_allowlist == ["alternativeme", "binance", "coinlore", "defillama"]
    assert config.vault.master_key_env == "REPORT_KIT_MASTER_KEY"


def test_local_toml_overrides(tmp_path: Path) -> None:
    base = _write(tmp_path / "default.toml", "[engine]\nmax_concurrency = 4\n[logging]\nlevel = 'INFO'\n")
    _write(tmp_path / "local.toml", "[engine]\nmax_concurrency = 8\n")
    config = load_config(base)
    assert config.engine.max_concurrency == 8
    assert config.logging.level == "INFO"


def test_env_overrides(tmp_path: Path, monkeypatch) -> None:
    base = _write(tmp_path / "default.toml", "[project]\ndebug = false\n")
    monkeypatch.setenv("REPORT_KIT_DB_PATH", ":memory:")
    monkeypatch.setenv("REPORT_KIT_LOG_LEVEL", "debug")
    monkeypatch.setenv("REPORT_KIT_MAX_CONCURRENCY", "2")
    monkeypatch.setenv("REPORT_KIT_REDISTRIBUTABLE_SOURCES", "CoinLore, binance")
    monkeypatch.setenv("REPORT_KIT_DEBUG", "true")
    monkeypatch.setenv("REPORT_KIT_STRICT_VALIDATION", "no")
    monkeypatch.setenv("REPORT_KIT_DATASET_TIMEOUT", "7.5")

    config = load_config(base)

    assert config.database.db_path == ":memory:"
    assert config.logging.level == "DEBUG"
    assert config.engine.max_concurrency == 2
    assert config.policy.enforce_allowlist is True
    assert config.policy.redistributable_allowlist == ["binance", "coinlore"]
    assert config.debug is True
    assert config.policy.strict_validation is False
    assert config.engine.dataset_timeout_seconds == 7.5


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.toml")


def test_invalid_values_rejected() -> None:
    with pytest.raises(ValidationError):
        EngineConfig(max_concurrency=0)
    with pytest.raises(ValidationError):
        EngineConfig(dataset_timeout_seconds=0)


def test_master_key_comes_from_environment_only(monkeypatch) -> None:
    config = AppConfig()
    assert config.master_key() is None
    monkeypatch.setenv("REPORT_KIT_MASTER_KEY", "  s3cret  ")
    assert config.master_key() == "s3cret"
    assert "s3cret" not in str(config.model_dump())
