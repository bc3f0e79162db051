"""
Source classification registry.

Loads SourceClassification objects from config/sources.toml (or a
caller-supplied path) and provides lookup utilities.

Usage
-----
    from report_kit.governance.registry import load_source_registry

    registry = load_source_registry("config/sources.toml")
    coingecko = registry.get("coingecko")
    enabled = registry.get_enabled_sources()

Unlike a module-level cache, the registry is an explicit object handed to the
validator, engine and assembler, so tests can build one from a temporary TOML
file or directly from ``SourceClassification`` instances.

TOML structure expected in sources.toml
----------------------------------------
    [sources.<source_id>]
    source_id    = "coingecko"
    display_name = "CoinGecko"
    license      = "display-only"
    ...

    [sources.<source_id>.rate_limit]
    requests_per_minute = 30
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Iterable, Optional, Union

from report_kit.errors import SourceConfigurationError
from report_kit.governance.models import RateLimitConfig, SourceClassification

_PROJECT_ROOT = Path(__file__).parent.parent.parent


def _default_sources_path() -> Path:
    """Return the default path to config/sources.toml."""
    return _PROJECT_ROOT / "config" / "sources.toml"


def _parse_source(source_id: str, raw: dict) -> SourceClassification:
    """Parse one [sources.<id>] block into a SourceClassification instance.

    Args:
        source_id: The key from the TOML table (used as fallback for source_id).
        raw:       The raw TOML dict for this source block.

    Raises:
        pydantic.ValidationError: If any field fails validation.
    """
    return SourceClassification(
        source_id=raw.get("source_id", source_id),
        display_name=raw.get("display_name", source_id),
        license=raw.get("license", "display-only"),
        attribution=raw.get("attribution", ""),
        attribution_url=raw.get("attribution_url", ""),
        refresh_interval_seconds=raw.get("refresh_interval_seconds", 300),
        credential_tiers=tuple(raw.get("credential_tiers", ["none"])),
        requires_auth=raw.get("requires_auth", False),
        enabled=raw.get("enabled", True),
        timeout_seconds=raw.get("timeout_seconds", 15.0),
        rate_limit=RateLimitConfig(**raw.get("rate_limit", {})),
    )


class SourceRegistry:
    """Immutable lookup of source classifications keyed by source_id."""

    def __init__(self, sources: Iterable[SourceClassification]) -> None:
        self._sources: dict[str, SourceClassification] = {}
        for source in sources:
            if source.source_id in self._sources:
                raise ValueError(f"Duplicate source classification: '{source.source_id}'.")
            self._sources[source.source_id] = source

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._sources

    def __len__(self) -> int:
        return len(self._sources)

    def get(self, source_id: str) -> SourceClassification:
        """Look up a classification by ID.

        Raises:
            SourceConfigurationError: If source_id has no classification.
        """
        try:
            return self._sources[source_id]
        except KeyError:
            available = sorted(self._sources)
            raise SourceConfigurationError(
                source_id, f"Available sources: {available}"
            ) from None

    def find(self, source_id: str) -> Optional[SourceClassification]:
        return self._sources.get(source_id)

    def list_sources(self) -> list[SourceClassification]:
        """Return all classifications sorted by source_id."""
        return sorted(self._sources.values(), key=lambda s: s.source_id)

    def get_enabled_sources(self) -> list[SourceClassification]:
        return [s for s in self.list_sources() if s.enabled]


def load_source_registry(sources_path: Optional[Union[str, Path]] = None) -> SourceRegistry:
    """Load and parse sources.toml into a ``SourceRegistry``.

    Args:
        sources_path: Path to the sources TOML file.  Relative paths that do
                      not exist from the working directory are resolved
                      against the project root.

    Raises:
        FileNotFoundError: If the file does not exist.
        tomllib.TOMLDecodeError: If the TOML is malformed.
        pydantic.ValidationError: If a classification fails validation.
    """
    if sources_path is None:
        resolved = _default_sources_path()
    else:
        resolved = Path(sources_path)
        if not resolved.is_absolute() and not resolved.exists():
            resolved = _PROJECT_ROOT / resolved

    if not resolved.exists():
        raise FileNotFoundError(
            f"Source registry file not found: {resolved}\n"
            "Expected at config/sources.toml.  "
            "Set policy.sources_config_path in default.toml to override."
        )

    with open(resolved, "rb") as f:
        raw = tomllib.load(f)

    sources_raw: dict = raw.get("sources", {})
    return SourceRegistry(_parse_source(sid, block) for sid, block in sources_raw.items())
