"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — local secrets and env overrides (gitignored)
  4. Environment variables        — ``REPORT_KIT_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

The vault master key is never stored in TOML.  ``VaultConfig.master_key_env``
names the environment variable that holds it; ``AppConfig.master_key()``
reads it lazily so the secret never ends up in ``model_dump()`` output.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/report_kit.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class EngineConfig(BaseModel):
    """Execution engine concurrency, timeout, and cache settings."""

    model_config = ConfigDict(frozen=True)

    max_concurrency: int = 4
    dataset_timeout_seconds: float = 20.0
    rate_limit_backoff_seconds: float = 2.0
    cache_max_ttl_seconds: float = 300.0
    http_timeout_seconds: float = 15.0

    @field_validator("max_concurrency")
    @classmethod
    def positive_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {v}.")
        return v

    @field_validator(
        "dataset_timeout_seconds", "http_timeout_seconds",
    )
    @classmethod
    def positive_timeout(cls, v: float) -> float:
        if v <= 0.0:
            raise ValueError(f"Timeouts must be > 0, got {v}.")
        return v

    @field_validator("rate_limit_backoff_seconds", "cache_max_ttl_seconds")
    @classmethod
    def non_negative(cls, v: float) -> float:
        if v < 0.0:
            raise ValueError(f"Value must be >= 0.0, got {v}.")
        return v


class PolicyConfig(BaseModel):
    """Redistribution policy settings.

    Attributes:
        sources_config_path:      Path to the source classification TOML.
        strict_validation:        If True, a display-only source requested for
                                  download fails validation.  If False the
                                  violation is a validation warning and the
                                  dataset is excluded at assembly time.
        enforce_allowlist:        If True, redistributable sources must also be
                                  listed in ``redistributable_allowlist`` to be
                                  downloadable.
        redistributable_allowlist: Source IDs verified as redistributable.
    """

    model_config = ConfigDict(frozen=True)

    sources_config_path: str = "config/sources.toml"
    strict_validation: bool = True
    enforce_allowlist: bool = False
    redistributable_allowlist: list[str] = []

    @field_validator("redistributable_allowlist")
    @classmethod
    def normalize_allowlist(cls, v: list[str]) -> list[str]:
        return sorted({s.strip().lower() for s in v if s.strip()})


class VaultConfig(BaseModel):
    """Key vault settings.  Only the *name* of the secret's env var lives here."""

    model_config = ConfigDict(frozen=True)

    master_key_env: str = "REPORT_KIT_MASTER_KEY"


class ReportingConfig(BaseModel):
    """Where ``run-recipe`` writes artifacts."""

    model_config = ConfigDict(frozen=True)

    output_dir: str = "data/outputs"


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/report_kit.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class AppConfig(BaseModel):
    """Complete application configuration.

    Constructed by ``load_config()`` which merges TOML + .env + env vars.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    engine: EngineConfig = EngineConfig()
    policy: PolicyConfig = PolicyConfig()
    vault: VaultConfig = VaultConfig()
    reporting: ReportingConfig = ReportingConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False

    def master_key(self) -> Optional[str]:
        """Return the vault master key from the environment, or ``None``."""
        value = os.environ.get(self.vault.master_key_env, "").strip()
        return value or None


# ── Loader ────────────────────────────────────────────────────────────────────

_SECTIONS: dict[str, type[BaseModel]] = {
    "database": DatabaseConfig,
    "engine": EngineConfig,
    "policy": PolicyConfig,
    "vault": VaultConfig,
    "reporting": ReportingConfig,
    "logging": LoggingConfig,
}


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _csv(value: str) -> list[str]:
    return [part for part in value.split(",") if part.strip()]


# env var → (section or None for top level, field, parser)
ENV_OVERRIDES: dict[str, tuple[Optional[str], str, Callable[[str], Any]]] = {
    "REPORT_KIT_DB_PATH": ("database", "db_path", str),
    "REPORT_KIT_LOG_LEVEL": ("logging", "level", str),
    "REPORT_KIT_MAX_CONCURRENCY": ("engine", "max_concurrency", int),
    "REPORT_KIT_DATASET_TIMEOUT": ("engine", "dataset_timeout_seconds", float),
    "REPORT_KIT_STRICT_VALIDATION": ("policy", "strict_validation", _truthy),
    "REPORT_KIT_REDISTRIBUTABLE_SOURCES": ("policy", "redistributable_allowlist", _csv),
    "REPORT_KIT_DEBUG": (None, "debug", _truthy),
}


def project_root() -> Path:
    """Nearest ancestor of this package holding ``pyproject.toml``."""
    here = Path(__file__).resolve().parent
    for candidate in (here, *here.parents[:4]):
        if (candidate / "pyproject.toml").exists():
            return candidate
    return here.parent


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Read ``default.toml`` (+ sibling ``local.toml``), ``.env`` and env vars.

    Raises:
        FileNotFoundError: ``config_path`` (or the default file) is missing.
        pydantic.ValidationError: A merged value fails validation.
    """
    root = project_root()
    load_dotenv(dotenv_path=root / ".env", override=False)

    path = Path(config_path) if config_path is not None else root / "config" / "default.toml"
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}\n"
            "Create config/default.toml or pass --config."
        )

    raw = _read_toml(path)
    local = path.with_name("local.toml")
    if local.exists():
        raw = _deep_merge(raw, _read_toml(local))

    _apply_env_overrides(raw, os.environ)
    return _build_app_config(raw)


def _read_toml(path: Path) -> dict[str, Any]:
    with path.open("rb") as fh:
        return tomllib.load(fh)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _apply_env_overrides(raw: dict[str, Any], environ: Mapping[str, str]) -> None:
    """Write every set ``ENV_OVERRIDES`` variable into ``raw`` in place.

    Setting ``REPORT_KIT_REDISTRIBUTABLE_SOURCES`` also turns on
    ``policy.enforce_allowlist``.
    """
    for name, (section, field, parse) in ENV_OVERRIDES.items():
        value = environ.get(name)
        if not value:
            continue
        target = raw if section is None else raw.setdefault(section, {})
        target[field] = parse(value)
        if name == "REPORT_KIT_REDISTRIBUTABLE_SOURCES":
            raw["policy"]["enforce_allowlist"] = True


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    debug = raw.get("debug", raw.get("project", {}).get("debug", False))
    sections = {name: model(**raw.get(name, {})) for name, model in _SECTIONS.items()}
    return AppConfig(debug=debug, **sections)
