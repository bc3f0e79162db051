"""
Redistribution policy gate.

Decides whether data from a set of sources may be used for a given purpose:

  display   — shown transiently (JSON preview).  Every classified source is
              allowed.
  download  — written into a downloadable workbook.  ``display-only`` sources
              are always refused.  ``redistributable`` sources are allowed,
              unless allowlist enforcement is on and the source has not been
              added to ``redistributable_allowlist``.

The same rule decides what may enter the dataset cache: only
``redistributable`` data is ever stored.

The gate is consulted three times along the execution path:
  1. RecipeValidator  — early rejection before any network I/O.
  2. ExecutionEngine  — per-dataset re-check; violators are skipped.
  3. ReportAssembler  — re-check immediately before a workbook is written;
                        violators are excluded with a warning.

The policy holds no mutable state and needs no locking.
"""

from __future__ import annotations

from typing import Iterable, Optional, Union

from report_kit.errors import PolicyViolation
from report_kit.governance.models import Purpose, SourceClassification
from report_kit.governance.registry import SourceRegistry

PurposeLike = Union[Purpose, str]


def _coerce_purpose(purpose: PurposeLike) -> Purpose:
    try:
        return Purpose(purpose)
    except ValueError:
        raise ValueError(
            f"Unknown purpose '{purpose}'. Expected one of {[p.value for p in Purpose]}."
        ) from None


class RedistributionPolicy:
    """Allow/deny gate over the source registry.

    Args:
        registry:          Source classifications.
        allowlist:         Source IDs verified as redistributable.
        enforce_allowlist: If True, a redistributable source must also appear
                           in ``allowlist`` to be downloadable.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        allowlist: Optional[Iterable[str]] = None,
        enforce_allowlist: bool = False,
    ) -> None:
        self._registry = registry
        self._allowlist = frozenset(s.strip().lower() for s in (allowlist or []) if s.strip())
        self._enforce_allowlist = enforce_allowlist

    @property
    def registry(self) -> SourceRegistry:
        return self._registry

    def block_reason(self, source_id: str, purpose: PurposeLike) -> Optional[str]:
        """Return why ``source_id`` may not be used for ``purpose``, or None.

        Raises:
            SourceConfigurationError: If the source has no classification.
        """
        source = self._registry.get(source_id)
        if _coerce_purpose(purpose) == Purpose.DISPLAY:
            return None

        if not source.is_redistributable:
            return (
                f"{source.display_name} data is display-only and cannot be included in "
                "downloads. A Data Redistribution License is required for exports."
            )

        if self._enforce_allowlist and source.source_id not in self._allowlist:
            return (
                f"Source \"{source.source_id}\" is not in the redistributable sources allowlist."
            )

        return None

    def is_allowed(self, source_id: str, purpose: PurposeLike) -> bool:
        return self.block_reason(source_id, purpose) is None

    def assert_allowed(self, source_ids: Iterable[str], purpose: PurposeLike) -> None:
        """Check every source as a set; one disallowed member fails the whole call.

        Raises:
            PolicyViolation: Listing every disallowed source and the first reason.
            SourceConfigurationError: If any source has no classification.
        """
        purpose = _coerce_purpose(purpose)
        unique = sorted(set(source_ids))
        blocked: list[tuple[str, str]] = []
        for source_id in unique:
            reason = self.block_reason(source_id, purpose)
            if reason is not None:
                blocked.append((source_id, reason))

        if blocked:
            raise PolicyViolation(
                source_ids=[sid for sid, _ in blocked],
                purpose=purpose.value,
                reason=blocked[0][1],
            )

    def is_cacheable(self, source: Union[str, SourceClassification]) -> bool:
        """True if data from ``source`` may be stored in the dataset cache."""
        if isinstance(source, str):
            source = self._registry.get(source)
        return source.is_redistributable
