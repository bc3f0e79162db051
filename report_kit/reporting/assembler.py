"""
Report assembly: ``ExecutionResult`` → exportable ``Artifact``.

Formats
-------
json   (preview / display)   The execution result as JSON-ready data plus the
                             attributions of every source that contributed
                             rows.  Display-only data is included.
excel  (download)            A workbook with one sheet per succeeded dataset
                             and a ``_report`` summary sheet.  Each dataset is
                             re-checked against the redistribution policy for
                             ``download``; refused datasets get no sheet and
                             one warning citing the policy reason.

The ``_report`` sheet also records execution time, datasets executed, total
rows and the recipe as compact JSON, so a saved workbook can be re-run.

The assembler never fetches anything and never mutates the result.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from report_kit.governance.models import Purpose
from report_kit.governance.redistribution import RedistributionPolicy
from report_kit.governance.registry import SourceRegistry
from report_kit.models.execution import DatasetResult, ExecutionResult
from report_kit.models.recipe import Recipe
from report_kit.recipe.validator import purpose_for_format
from report_kit.reporting.workbook import (
    REPORT_SHEET,
    SheetData,
    render_workbook,
    sanitize_sheet_name,
)
from report_kit.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
JSON_MEDIA_TYPE = "application/json"


@dataclass(frozen=True)
class Artifact:
    """Assembled report.

    Attributes:
        format:            ``excel`` or ``json``.
        filename:          Suggested file name (slugified recipe name).
        media_type:        MIME type for the HTTP boundary.
        content:           Workbook bytes (excel only).
        payload:           JSON-ready dict (json only).
        warnings:          Execution warnings followed by assembly warnings.
        excluded_datasets: Succeeded datasets left out by the policy re-check.
        generated_at:      Timestamp written into the artifact.
    """

    format: str
    filename: str
    media_type: str
    generated_at: datetime
    content: Optional[bytes] = None
    payload: Optional[dict[str, Any]] = None
    warnings: tuple[str, ...] = ()
    excluded_datasets: tuple[str, ...] = ()
    sheet_names: dict[str, str] = field(default_factory=dict)


def slugify(name: str, fallback: str = "report") -> str:
    """Lower-case, hyphen-separated file stem for ``name``."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or fallback


def recipe_json(recipe: Recipe) -> str:
    """Compact, key-sorted recipe JSON; feeding it back re-runs the report."""
    return json.dumps(recipe.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))


class ReportAssembler:
    """Turns execution results into preview payloads or download workbooks."""

    def __init__(self, policy: RedistributionPolicy, registry: SourceRegistry) -> None:
        self._policy = policy
        self._registry = registry

    def assemble(
        self,
        recipe: Recipe,
        result: ExecutionResult,
        format: str,
        generated_at: Optional[datetime] = None,
    ) -> Artifact:
        """Assemble ``result`` into an artifact of ``format``.

        Raises:
            ValueError: For an unknown format.
        """
        purpose = purpose_for_format(format)
        generated_at = generated_at or utcnow().replace(microsecond=0)
        if purpose == Purpose.DISPLAY:
            return self._preview(recipe, result, format, generated_at)
        return self._download(recipe, result, format, generated_at)

    # ── Preview ───────────────────────────────────────────────────────────────

    def _preview(
        self,
        recipe: Recipe,
        result: ExecutionResult,
        format: str,
        generated_at: datetime,
    ) -> Artifact:
        payload = result.model_dump(mode="json")
        payload["recipe_name"] = recipe.name
        payload["generated_at"] = generated_at.isoformat()
        payload["attributions"] = self._attributions(result.datasets)
        return Artifact(
            format=format,
            filename=f"{slugify(recipe.name, recipe.id)}.json",
            media_type=JSON_MEDIA_TYPE,
            generated_at=generated_at,
            payload=payload,
            warnings=result.warnings,
        )

    # ── Download ──────────────────────────────────────────────────────────────

    def _download(
        self,
        recipe: Recipe,
        result: ExecutionResult,
        format: str,
        generated_at: datetime,
    ) -> Artifact:
        warnings = list(result.warnings)
        excluded: dict[str, str] = {}
        included: list[DatasetResult] = []

        for dataset in result.datasets:
            if not dataset.succeeded:
                continue
            reason = self._policy.block_reason(dataset.source_provider, Purpose.DOWNLOAD)
            if reason is not None:
                excluded[dataset.dataset_id] = reason
                warnings.append(f"Dataset {dataset.dataset_id}: {reason}")
                logger.info(
                    "Excluding dataset '%s' (%s) from download.",
                    dataset.dataset_id, dataset.source_provider,
                )
                continue
            included.append(dataset)

        taken = {REPORT_SHEET.lower()}
        sheet_names: dict[str, str] = {}
        sheets: list[SheetData] = []
        for dataset in included:
            name = sanitize_sheet_name(dataset.dataset_id, taken)
            sheet_names[dataset.dataset_id] = name
            sheets.append(SheetData(name=name, columns=dataset.columns, rows=dataset.rows))

        summary = self._summary_rows(recipe, result, generated_at, sheet_names, excluded, included)
        content = render_workbook(summary, sheets, generated_at, title=recipe.name)
        logger.info(
            "Assembled workbook for '%s' | sheets=%d | excluded=%d | %d bytes",
            recipe.id, len(sheets), len(excluded), len(content),
        )
        return Artifact(
            format=format,
            filename=f"{slugify(recipe.name, recipe.id)}.xlsx",
            media_type=XLSX_MEDIA_TYPE,
            generated_at=generated_at,
            content=content,
            warnings=tuple(warnings),
            excluded_datasets=tuple(excluded),
            sheet_names=sheet_names,
        )

    def _summary_rows(
        self,
        recipe: Recipe,
        result: ExecutionResult,
        generated_at: datetime,
        sheet_names: dict[str, str],
        excluded: dict[str, str],
        included: list[DatasetResult],
    ) -> list[list[Any]]:
        rows: list[list[Any]] = [
            ["Report", recipe.name],
            ["Recipe ID", recipe.id],
            ["Generated at (UTC)", generated_at],
            ["Executed at (UTC)", result.metadata.executed_at],
            ["Execution time (ms)", result.metadata.execution_time_ms],
            ["Datasets executed", result.metadata.datasets_executed],
            ["Total rows", result.metadata.total_rows],
            ["Recipe JSON", recipe_json(recipe)],
            [],
            ["Dataset", "Kind", "Provider", "Status", "Rows", "Fetched at (UTC)", "Sheet / note"],
        ]
        for dataset in result.datasets:
            if dataset.dataset_id in sheet_names:
                note = sheet_names[dataset.dataset_id]
                status = dataset.status.value
            elif dataset.dataset_id in excluded:
                note = excluded[dataset.dataset_id]
                status = "excluded_by_policy"
            else:
                note = dataset.error.message if dataset.error is not None else ""
                status = dataset.status.value
            rows.append([
                dataset.dataset_id,
                dataset.kind,
                dataset.source_provider,
                status,
                len(dataset.rows) if dataset.dataset_id in sheet_names else 0,
                dataset.fetched_at,
                note,
            ])

        attributions = self._attributions(included)
        if attributions:
            rows.append([])
            rows.append(["Attributions"])
            for item in attributions:
                rows.append([item["source"], item["attribution"], item["url"] or ""])
        return rows

    def _attributions(self, datasets) -> list[dict[str, Optional[str]]]:
        """One entry per source that contributed rows, in first-seen order."""
        seen: dict[str, dict[str, Optional[str]]] = {}
        for dataset in datasets:
            if not dataset.succeeded or dataset.source_provider in seen:
                continue
            source = self._registry.find(dataset.source_provider)
            if source is None or not source.attribution:
                continue
            seen[source.source_id] = {
                "source": source.display_name,
                "attribution": source.attribution,
                "url": source.attribution_url,
            }
        return list(seen.values())
