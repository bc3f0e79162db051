"""
ASCII terminal formatters for governance CLI commands.

  list-sources   (format_source_table)
  list-kinds     (format_kind_table)
  validate-recipe / run-recipe  (format_messages)
"""

from __future__ import annotations

from typing import Iterable

from report_kit.governance.models import SourceClassification
from report_kit.recipe.catalog import DatasetKind


# ── Helpers ───────────────────────────────────────────────────────────────────


def _bool_icon(v: bool) -> str:
    return "Yes" if v else "No"


def _enabled_badge(enabled: bool) -> str:
    return "[ENABLED] " if enabled else "[disabled]"


# ── Tables ────────────────────────────────────────────────────────────────────


def format_source_table(sources: list[SourceClassification]) -> str:
    """Registry summary for `list-sources`.

    Columns: Status | Source ID | Display Name | License | Tiers | Auth | Refresh(s)
    """
    if not sources:
        return "  (no sources registered)\n"

    header = (
        f"  {'Status':<11} {'Source ID':<15} {'Display Name':<16} "
        f"{'License':<16} {'Tiers':<15} {'Auth':<5} {'Refresh(s)':<10}"
    )
    sep = "  " + "-" * (len(header) - 2)

    rows = [header, sep]
    for s in sources:
        rows.append(
            f"  {_enabled_badge(s.enabled):<11} {s.source_id:<15} {s.display_name:<16} "
            f"{s.license.value:<16} {','.join(s.credential_tiers):<15} "
            f"{_bool_icon(s.requires_auth):<5} {s.refresh_interval_seconds:<10}"
        )

    rows.append("")
    return "\n".join(rows)


def format_kind_table(kinds: list[DatasetKind]) -> str:
    """Catalogue table for `list-kinds`."""
    if not kinds:
        return "  (no dataset kinds registered)\n"

    header = f"  {'Kind':<22} {'Provider':<14} {'Min plan':<9} {'Coins':<11} Description"
    sep = "  " + "-" * (len(header) + 20)

    rows = [header, sep]
    for k in kinds:
        rows.append(
            f"  {k.kind:<22} {k.provider:<14} {k.min_plan:<9} {k.coin_requirement:<11} {k.description}"
        )

    rows.append("")
    return "\n".join(rows)


def format_messages(label: str, messages: Iterable[str]) -> str:
    """Indented ``[LABEL]`` lines, or an empty string when there are none."""
    return "\n".join(f"  [{label}] {m}" for m in messages)
