"""
Calling layer: one report request from recipe to artifact.

``ReportService.run()`` wires the pieces in the order the engine expects:

  1. plan lookup        PlanLookup.get_user_plan(user_id)
  2. validation         RecipeValidator.validate(recipe, purpose, plan)
                        → PlanIncompatibleError when plan is the only problem,
                          RecipeValidationError otherwise
  3. credentials        decrypt the user's keys into an ExecutionContext
  4. execution          ExecutionEngine.execute(resolved recipe, context, purpose)
  5. assembly           ReportAssembler.assemble(...)
  6. usage              UsageRecorder.record_usage_event(...) once per run

The decrypted ``ExecutionContext`` is local to ``run()`` and is dropped
before assembly starts.  HTTP routing and authentication live outside this
package; ``user_id`` arrives already authenticated.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import httpx

from report_kit.config import AppConfig
from report_kit.engine.cache import TtlCache
from report_kit.engine.executor import EngineSettings, ExecutionEngine
from report_kit.errors import PlanIncompatibleError, RecipeValidationError
from report_kit.governance.redistribution import RedistributionPolicy
from report_kit.governance.registry import SourceRegistry, load_source_registry
from report_kit.interfaces import CredentialStore, PlanLookup, UsageRecorder
from report_kit.models.execution import ExecutionResult
from report_kit.models.recipe import Recipe
from report_kit.models.usage import UsageEvent
from report_kit.providers import build_adapters
from report_kit.providers.base import USER_AGENT
from report_kit.recipe.validator import RecipeValidator, ValidationResult, purpose_for_format
from report_kit.reporting.assembler import Artifact, ReportAssembler
from report_kit.vault.credentials import build_execution_context
from report_kit.vault.key_vault import KeyVault

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReportRequest:
    """A report request as received from the HTTP boundary.

    Attributes:
        user_id: Authenticated caller.
        recipe:  Recipe as authored (unresolved).
        format:  ``excel`` (download) or ``json`` (preview).
    """

    user_id: str
    recipe: Recipe
    format: str = "json"


@dataclass(frozen=True)
class ReportOutcome:
    artifact: Artifact
    result: ExecutionResult
    validation: ValidationResult


class ReportService:
    """Runs report requests end to end.

    Args:
        engine:           Execution engine.
        validator:        Recipe validator.
        assembler:        Report assembler.
        vault:            Key vault for decrypting stored keys.
        plan_lookup:      Source of user plan tiers.
        credential_store: Encrypted key store, or None for keyless runs.
        usage_recorder:   Usage sink, or None to skip usage events.
    """

    def __init__(
        self,
        engine: ExecutionEngine,
        validator: RecipeValidator,
        assembler: ReportAssembler,
        vault: KeyVault,
        plan_lookup: PlanLookup,
        credential_store: Optional[CredentialStore] = None,
        usage_recorder: Optional[UsageRecorder] = None,
    ) -> None:
        self.engine = engine
        self.validator = validator
        self.assembler = assembler
        self._vault = vault
        self._plan_lookup = plan_lookup
        self._credential_store = credential_store
        self._usage_recorder = usage_recorder

    # ── Construction ──────────────────────────────────────────────────────────

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        conn: sqlite3.Connection,
        client: httpx.AsyncClient,
        registry: Optional[SourceRegistry] = None,
        cache: Optional[TtlCache] = None,
    ) -> "ReportService":
        """Build a service backed by SQLite repositories on ``conn``.

        The caller owns ``conn`` and ``client`` and closes them.
        """
        from report_kit.db.repositories import (
            ProviderKeyRepository,
            UsageEventRepository,
            UserPlanRepository,
        )

        registry = registry or load_source_registry(config.policy.sources_config_path)
        policy = RedistributionPolicy(
            registry,
            allowlist=config.policy.redistributable_allowlist,
            enforce_allowlist=config.policy.enforce_allowlist,
        )
        key_repo = ProviderKeyRepository(conn)
        engine = ExecutionEngine(
            adapters=build_adapters(client, registry, default_timeout=config.engine.http_timeout_seconds),
            registry=registry,
            policy=policy,
            cache=cache,
            settings=EngineSettings.from_config(config.engine),
            credential_store=key_repo,
        )
        return cls(
            engine=engine,
            validator=RecipeValidator(registry, policy, strict_policy=config.policy.strict_validation),
            assembler=ReportAssembler(policy, registry),
            vault=KeyVault(config.master_key()),
            plan_lookup=UserPlanRepository(conn),
            credential_store=key_repo,
            usage_recorder=UsageEventRepository(conn),
        )

    # ── Operations ────────────────────────────────────────────────────────────

    def validate(self, request: ReportRequest) -> ValidationResult:
        """Validate ``request.recipe`` for its format and the caller's plan."""
        purpose = purpose_for_format(request.format)
        plan = self._plan_lookup.get_user_plan(request.user_id)
        return self.validator.validate(request.recipe, purpose, plan)

    async def run(
        self,
        request: ReportRequest,
        cancel_event: Optional[asyncio.Event] = None,
        deadline_seconds: Optional[float] = None,
        generated_at: Optional[datetime] = None,
    ) -> ReportOutcome:
        """Validate, execute and assemble one report.

        Raises:
            ValueError: Unknown output format.
            PlanIncompatibleError: The caller's plan is the only obstacle.
            RecipeValidationError: Any other violated constraint (all listed).
            SourceConfigurationError: A provider has no classification.
            VaultUnavailableError: Stored keys exist but no master key is set.
        """
        purpose = purpose_for_format(request.format)
        plan = self._plan_lookup.get_user_plan(request.user_id)
        validation = self.validator.validate(request.recipe, purpose, plan)

        if not validation.valid:
            if validation.plan_only_failure and validation.plan_check is not None:
                raise PlanIncompatibleError(
                    validation.plan_check.required_plan,
                    validation.plan_check.reason or "",
                )
            raise RecipeValidationError(validation.errors, validation.warnings)

        recipe = validation.resolved_recipe
        assert recipe is not None

        context = build_execution_context(plan, self._credential_store, self._vault)
        try:
            result = await self.engine.execute(
                recipe, context, purpose,
                cancel_event=cancel_event,
                deadline_seconds=deadline_seconds,
            )
        finally:
            del context

        artifact = self.assembler.assemble(recipe, result, request.format, generated_at=generated_at)
        self._record_usage(request, result)
        return ReportOutcome(artifact=artifact, result=result, validation=validation)

    def _record_usage(self, request: ReportRequest, result: ExecutionResult) -> None:
        if self._usage_recorder is None:
            return
        meta = result.metadata
        tiers = {
            d.source_provider: d.credential_tier.value
            for d in result.datasets
            if d.credential_tier is not None
        }
        self._usage_recorder.record_usage_event(
            UsageEvent(
                user_id=request.user_id,
                recipe_id=result.recipe_id,
                metadata={
                    "format": request.format,
                    "success": result.success,
                    "datasets_succeeded": meta.datasets_succeeded,
                    "datasets_failed": meta.datasets_failed,
                    "datasets_skipped": meta.datasets_skipped,
                    "cache_hits": meta.cache_hits,
                    "total_rows": meta.total_rows,
                    "execution_time_ms": meta.execution_time_ms,
                    "credential_tiers": tiers,
                },
                created_at=meta.executed_at,
            )
        )


def build_http_client(config: AppConfig) -> httpx.AsyncClient:
    """Shared async client for all provider adapters."""
    return httpx.AsyncClient(
        timeout=config.engine.http_timeout_seconds,
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        follow_redirects=True,
    )
