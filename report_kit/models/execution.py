"""
Execution output models.

``DatasetResult`` is the outcome of one ``DatasetSpec``; ``ExecutionResult``
aggregates them in recipe order together with run-level errors, warnings and
metadata.  Column types are semantic (``ColumnType``) rather than
provider-specific, so the report assembler never inspects upstream payloads.

Invariant enforced on ``DatasetResult``: ``rows`` is non-empty if and only if
``status == success``, and ``error`` is set if and only if it is not.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, model_validator

from report_kit.errors import DatasetErrorCode
from report_kit.governance.models import Purpose
from report_kit.models.credentials import CredentialTier


class ColumnType(str, Enum):
    """Semantic column types; drive workbook number formats."""

    TEXT      = "text"
    INTEGER   = "integer"
    NUMBER    = "number"
    CURRENCY  = "currency"
    PERCENT   = "percent"
    TIMESTAMP = "timestamp"
    DATE      = "date"
    BOOLEAN   = "boolean"


class ColumnDef(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: ColumnType = ColumnType.TEXT


class NormalizedTable(BaseModel):
    """Uniform tabular shape every provider normalizer produces."""

    model_config = ConfigDict(frozen=True)

    columns: tuple[ColumnDef, ...]
    rows: tuple[dict[str, Any], ...] = ()

    @model_validator(mode="after")
    def rows_match_columns(self) -> "NormalizedTable":
        names = [c.name for c in self.columns]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate column names: {names}.")
        allowed = set(names)
        for row in self.rows:
            extra = set(row) - allowed
            if extra:
                raise ValueError(f"Row has keys not declared as columns: {sorted(extra)}.")
        return self


class DatasetStatus(str, Enum):
    SUCCESS           = "success"
    FAILED            = "failed"
    SKIPPED_BY_POLICY = "skipped_by_policy"


class DatasetError(BaseModel):
    """Error descriptor attached to a failed or skipped dataset."""

    model_config = ConfigDict(frozen=True)

    code: DatasetErrorCode
    message: str
    provider: Optional[str] = None


class DatasetResult(BaseModel):
    """Result of executing one dataset.

    Attributes:
        dataset_id:      Matches ``DatasetSpec.id``.
        kind:            Dataset kind.
        status:          success, failed, or skipped_by_policy.
        rows:            Records keyed by column name (empty unless success).
        columns:         Ordered column definitions.
        source_provider: Provider the dataset resolved to.
        fetched_at:      When the data was fetched upstream (cached value on hits).
        from_cache:      True if served from the dataset cache.
        credential_tier: Credential tier used for the fetch, if any was attempted.
        attribution:     Attribution text required by the source.
        error:           Set when status is not success.
    """

    model_config = ConfigDict(frozen=True)

    dataset_id: str
    kind: str
    status: DatasetStatus
    rows: tuple[dict[str, Any], ...] = ()
    columns: tuple[ColumnDef, ...] = ()
    source_provider: str
    fetched_at: Optional[datetime] = None
    from_cache: bool = False
    credential_tier: Optional[CredentialTier] = None
    attribution: str = ""
    error: Optional[DatasetError] = None

    @model_validator(mode="after")
    def status_consistency(self) -> "DatasetResult":
        succeeded = self.status == DatasetStatus.SUCCESS
        if succeeded and not self.rows:
            raise ValueError(f"Dataset '{self.dataset_id}': success requires at least one row.")
        if not succeeded and self.rows:
            raise ValueError(f"Dataset '{self.dataset_id}': rows must be empty when {self.status.value}.")
        if succeeded and self.error is not None:
            raise ValueError(f"Dataset '{self.dataset_id}': success must not carry an error.")
        if not succeeded and self.error is None:
            raise ValueError(f"Dataset '{self.dataset_id}': {self.status.value} requires an error.")
        return self

    @property
    def succeeded(self) -> bool:
        return self.status == DatasetStatus.SUCCESS


class ExecutionMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    datasets_attempted: int = 0
    datasets_executed: int = 0
    datasets_succeeded: int = 0
    datasets_failed: int = 0
    datasets_skipped: int = 0
    cache_hits: int = 0
    total_rows: int = 0
    executed_at: Optional[datetime] = None
    execution_time_ms: int = 0


class ExecutionResult(BaseModel):
    """Aggregate outcome of one recipe execution.

    ``datasets`` preserves recipe order regardless of completion order.
    ``success`` is True iff at least one dataset succeeded and no mandatory
    dataset failed or was skipped.
    """

    model_config = ConfigDict(frozen=True)

    recipe_id: str
    purpose: Purpose
    datasets: tuple[DatasetResult, ...]
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    success: bool
    metadata: ExecutionMetadata

    def get(self, dataset_id: str) -> DatasetResult:
        for result in self.datasets:
            if result.dataset_id == dataset_id:
                return result
        raise KeyError(f"No dataset '{dataset_id}' in execution result for '{self.recipe_id}'.")
