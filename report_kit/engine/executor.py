"""
Recipe execution engine.

``ExecutionEngine.execute()`` turns a validated recipe into an
``ExecutionResult`` by fetching every dataset concurrently through the
provider adapters.

Per-dataset pipeline
--------------------
  1. Classification   — every dataset's source is looked up before anything
                        runs; a missing classification raises
                        ``SourceConfigurationError`` and nothing is fetched.
  2. Policy re-check  — a source the redistribution policy refuses for the
                        purpose is ``skipped_by_policy`` with a warning.
  3. Credential tier  — ``resolve_credential()`` picks NoKey / DemoKey /
                        ProKey; no usable tier fails the dataset with
                        ``CredentialRequired`` without network I/O.
  4. Plan limits      — coin lists are capped and OHLCV lookbacks clamped
                        (each with a warning).
  5. Cache            — hits skip I/O and keep their original ``fetched_at``.
                        Only redistributable data is stored.
  6. Fetch            — bounded by ``asyncio.Semaphore(max_concurrency)``,
                        each attempt under ``asyncio.wait_for``.  RateLimited
                        gets exactly one retry after a fixed backoff taken
                        *outside* the semaphore.  AuthError invalidates the
                        stored key.  Nothing raised by one dataset reaches
                        its siblings.
  7. Normalize        — adapter-specific mapping onto ``columns`` / ``rows``.
                        Zero rows is recorded as ``ProviderNotFound``.

Results are written into a pre-sized list by recipe index, so
``ExecutionResult.datasets`` always follows recipe order; errors and
warnings are derived from that list afterwards for the same reason.

Cancellation
------------
Setting ``cancel_event`` or reaching ``deadline_seconds`` cancels every
in-flight fetch.  Datasets that had not finished are ``failed`` with
``Cancelled``; finished ones are kept.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Hashable, Iterable, Mapping, Optional, Union

from report_kit.errors import (
    PROVIDER_KIND_TO_CODE,
    DatasetErrorCode,
    ProviderError,
    ProviderErrorKind,
    RecipeValidationError,
    SourceConfigurationError,
)
from report_kit.engine.cache import TtlCache
from report_kit.governance.models import Purpose, SourceClassification
from report_kit.governance.redistribution import RedistributionPolicy
from report_kit.governance.registry import SourceRegistry
from report_kit.interfaces import CredentialStore
from report_kit.models.credentials import Credential, ExecutionContext, NoKey
from report_kit.models.execution import (
    DatasetError,
    DatasetResult,
    DatasetStatus,
    ExecutionMetadata,
    ExecutionResult,
    NormalizedTable,
)
from report_kit.models.recipe import DatasetSpec, Recipe
from report_kit.providers.base import FetchParams, ProviderAdapter
from report_kit.recipe.catalog import DATASET_KINDS, DatasetKind
from report_kit.utils.time_utils import parse_timeframe_days, utcnow
from report_kit.vault.credentials import resolve_credential

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineSettings:
    """Process-wide engine limits (see ``[engine]`` in config/default.toml)."""

    max_concurrency: int = 4
    dataset_timeout_seconds: float = 20.0
    rate_limit_backoff_seconds: float = 2.0
    cache_max_ttl_seconds: float = 300.0

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {self.max_concurrency}.")

    @classmethod
    def from_config(cls, engine_config) -> "EngineSettings":
        return cls(
            max_concurrency=engine_config.max_concurrency,
            dataset_timeout_seconds=engine_config.dataset_timeout_seconds,
            rate_limit_backoff_seconds=engine_config.rate_limit_backoff_seconds,
            cache_max_ttl_seconds=engine_config.cache_max_ttl_seconds,
        )


@dataclass(frozen=True)
class _Job:
    """Everything needed to fetch one dataset, resolved before dispatch."""

    index: int
    spec: DatasetSpec
    source: SourceClassification
    adapter: ProviderAdapter
    credential: Credential
    params: FetchParams
    cache_key: Hashable
    cacheable: bool
    cache_ttl: float


class ExecutionEngine:
    """Concurrent, failure-isolated recipe executor.

    Args:
        adapters:         Provider id → adapter.
        registry:         Source classifications.
        policy:           Redistribution gate.
        cache:            Shared dataset cache (a private one if omitted).
        settings:         Concurrency, timeout, backoff and cache limits.
        credential_store: Store told to invalidate keys a provider rejects.
        kinds:            Dataset kind catalogue (defaults to ``DATASET_KINDS``).
        sleep:            Awaitable sleep used for the rate-limit backoff.
        monotonic:        Clock for execution timing.
        now:              UTC wall clock for ``fetched_at`` / ``executed_at``.
    """

    def __init__(
        self,
        adapters: Mapping[str, ProviderAdapter],
        registry: SourceRegistry,
        policy: RedistributionPolicy,
        cache: Optional[TtlCache] = None,
        settings: Optional[EngineSettings] = None,
        credential_store: Optional[CredentialStore] = None,
        kinds: Optional[Iterable[DatasetKind]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._adapters = dict(adapters)
        self._registry = registry
        self._policy = policy
        self._cache = cache if cache is not None else TtlCache()
        self._settings = settings or EngineSettings()
        self._credential_store = credential_store
        self._kinds: dict[str, DatasetKind] = {
            k.kind: k for k in (kinds if kinds is not None else DATASET_KINDS)
        }
        self._sleep = sleep
        self._monotonic = monotonic
        self._now = now

    # ── Public API ────────────────────────────────────────────────────────────

    async def execute(
        self,
        recipe: Recipe,
        context: ExecutionContext,
        purpose: Union[Purpose, str],
        cancel_event: Optional[asyncio.Event] = None,
        deadline_seconds: Optional[float] = None,
    ) -> ExecutionResult:
        """Execute every dataset in ``recipe`` and aggregate the results.

        Raises:
            SourceConfigurationError: If a dataset's provider has no
                classification or no adapter.  Raised before any I/O.
            RecipeValidationError: If a dataset kind is unknown.
        """
        purpose = Purpose(purpose)
        resolved = self._resolve_sources(recipe)
        executed_at = self._now()
        logger.info(
            "Executing recipe '%s' | datasets=%d | purpose=%s | plan=%s",
            recipe.id, len(recipe.datasets), purpose.value, context.plan,
        )

        results: list[Optional[DatasetResult]] = [None] * len(recipe.datasets)
        warnings: list[list[str]] = [[] for _ in recipe.datasets]
        jobs: list[_Job] = []
        for index, (spec, entry, source, adapter) in enumerate(resolved):
            outcome = self._prepare(
                index, recipe, spec, entry, source, adapter, context, purpose, warnings[index]
            )
            if isinstance(outcome, DatasetResult):
                results[index] = outcome
            else:
                jobs.append(outcome)

        started = self._monotonic()
        semaphore = asyncio.Semaphore(self._settings.max_concurrency)
        tasks: dict[int, asyncio.Task] = {
            job.index: asyncio.create_task(
                self._run_job(job, context, semaphore), name=f"dataset:{job.spec.id}"
            )
            for job in jobs
        }
        try:
            await self._wait_for_tasks(list(tasks.values()), cancel_event, deadline_seconds)
        finally:
            unfinished = [t for t in tasks.values() if not t.done()]
            for task in unfinished:
                task.cancel()
            if unfinished:
                await asyncio.gather(*unfinished, return_exceptions=True)
        elapsed_ms = int(round((self._monotonic() - started) * 1000))

        for job in jobs:
            task = tasks[job.index]
            if task.cancelled():
                results[job.index] = self._failed(
                    job.spec, job.source, DatasetErrorCode.CANCELLED,
                    "Execution was cancelled before this dataset completed.",
                    credential=job.credential,
                )
            else:
                results[job.index] = task.result()

        final = [r for r in results if r is not None]
        return self._aggregate(recipe, purpose, final, warnings, executed_at, elapsed_ms)

    # ── Preparation ───────────────────────────────────────────────────────────

    def _resolve_sources(
        self, recipe: Recipe
    ) -> list[tuple[DatasetSpec, DatasetKind, SourceClassification, ProviderAdapter]]:
        resolved = []
        for spec in recipe.datasets:
            entry = self._kinds.get(spec.kind)
            if entry is None:
                raise RecipeValidationError(
                    [f"Dataset {spec.id}: unknown kind '{spec.kind}'. Known kinds: {sorted(self._kinds)}"]
                )
            source = self._registry.get(entry.provider)
            adapter = self._adapters.get(entry.provider)
            if adapter is None:
                raise SourceConfigurationError(entry.provider, "No provider adapter is registered.")
            resolved.append((spec, entry, source, adapter))
        return resolved

    def _prepare(
        self,
        index: int,
        recipe: Recipe,
        spec: DatasetSpec,
        entry: DatasetKind,
        source: SourceClassification,
        adapter: ProviderAdapter,
        context: ExecutionContext,
        purpose: Purpose,
        warnings: list[str],
    ) -> Union[DatasetResult, _Job]:
        if not source.enabled:
            reason = f"Source '{source.source_id}' is disabled."
            warnings.append(f"Dataset {spec.id}: {reason}")
            return self._skipped(spec, source, reason)

        reason = self._policy.block_reason(source.source_id, purpose)
        if reason is not None:
            warnings.append(f"Dataset {spec.id}: {reason}")
            logger.info("Dataset '%s' skipped by policy (%s).", spec.id, source.source_id)
            return self._skipped(spec, source, reason)

        credential = resolve_credential(source, context)
        if credential is None:
            return self._failed(
                spec, source, DatasetErrorCode.CREDENTIAL_REQUIRED,
                f"{source.display_name} requires an API key ({'/'.join(source.credential_tiers)}); "
                "none is stored for this user.",
            )

        params = self._fetch_params(recipe, spec, entry, context, warnings)
        cacheable = self._policy.is_cacheable(source)
        return _Job(
            index=index,
            spec=spec,
            source=source,
            adapter=adapter,
            credential=credential,
            params=params,
            cache_key=(spec.kind, params, source.source_id),
            cacheable=cacheable,
            cache_ttl=float(min(source.refresh_interval_seconds, self._settings.cache_max_ttl_seconds)),
        )

    def _fetch_params(
        self,
        recipe: Recipe,
        spec: DatasetSpec,
        entry: DatasetKind,
        context: ExecutionContext,
        warnings: list[str],
    ) -> FetchParams:
        limits = context.limits
        coin_ids = spec.coin_ids if entry.needs_coins else ()
        if entry.coin_requirement == "first_coin":
            coin_ids = coin_ids[:1]
        if len(coin_ids) > limits.max_coins_per_dataset:
            warnings.append(
                f"Dataset {spec.id}: only the first {limits.max_coins_per_dataset} of "
                f"{len(coin_ids)} coins are fetched on the {context.plan} plan."
            )
            coin_ids = coin_ids[: limits.max_coins_per_dataset]

        days: Optional[int] = None
        if entry.series:
            days = parse_timeframe_days(spec.timeframe or entry.default_timeframe or "30d")
            if entry.kind.startswith("ohlcv") and days > limits.max_ohlcv_days:
                warnings.append(
                    f"Dataset {spec.id}: lookback clamped from {days} to "
                    f"{limits.max_ohlcv_days} days on the {context.plan} plan."
                )
                days = limits.max_ohlcv_days

        return FetchParams(
            coin_ids=tuple(coin_ids),
            currency=recipe.currency,
            days=days,
            limit=spec.limit,
            metrics=spec.metrics,
        )

    # ── Execution ─────────────────────────────────────────────────────────────

    async def _wait_for_tasks(
        self,
        tasks: list[asyncio.Task],
        cancel_event: Optional[asyncio.Event],
        deadline_seconds: Optional[float],
    ) -> None:
        """Wait until every task finishes, the event is set, or the deadline passes."""
        if not tasks:
            return
        loop = asyncio.get_running_loop()
        deadline_at = loop.time() + deadline_seconds if deadline_seconds is not None else None
        cancel_waiter = (
            asyncio.ensure_future(cancel_event.wait()) if cancel_event is not None else None
        )
        pending: set[asyncio.Future] = set(tasks)
        try:
            while pending:
                timeout = None
                if deadline_at is not None:
                    timeout = deadline_at - loop.time()
                    if timeout <= 0:
                        logger.warning("Execution deadline reached; cancelling %d dataset(s).", len(pending))
                        return
                watch = pending | {cancel_waiter} if cancel_waiter is not None else pending
                done, _ = await asyncio.wait(watch, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
                if cancel_waiter is not None and cancel_waiter in done:
                    logger.warning("Execution cancelled by caller; cancelling %d dataset(s).", len(pending - done))
                    return
                pending -= done
        finally:
            if cancel_waiter is not None and not cancel_waiter.done():
                cancel_waiter.cancel()

    async def _run_job(
        self,
        job: _Job,
        context: ExecutionContext,
        semaphore: asyncio.Semaphore,
    ) -> DatasetResult:
        try:
            if not job.cacheable:
                return await self._fetch(job, context, semaphore)
            try:
                async with self._cache.lock_for(job.cache_key):
                    hit = self._cache.get(job.cache_key)
                    if hit is not None:
                        logger.debug("Dataset '%s' served from cache.", job.spec.id)
                        return self._succeeded(job, hit.table, hit.fetched_at, from_cache=True)
                    return await self._fetch(job, context, semaphore)
            finally:
                self._cache.release_lock(job.cache_key)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Dataset '%s' failed unexpectedly.", job.spec.id)
            return self._failed(
                job.spec, job.source, DatasetErrorCode.PROVIDER_UNKNOWN,
                f"Unexpected error: {type(exc).__name__}", credential=job.credential,
            )

    async def _fetch(
        self,
        job: _Job,
        context: ExecutionContext,
        semaphore: asyncio.Semaphore,
    ) -> DatasetResult:
        retried = False
        while True:
            try:
                async with semaphore:
                    payload = await asyncio.wait_for(
                        job.adapter.fetch(job.spec, job.params, job.credential),
                        timeout=self._settings.dataset_timeout_seconds,
                    )
                table = job.adapter.normalize(payload, job.spec, job.params)
            except asyncio.TimeoutError:
                return self._failed(
                    job.spec, job.source, DatasetErrorCode.PROVIDER_TIMEOUT,
                    f"{job.source.display_name} did not respond within "
                    f"{self._settings.dataset_timeout_seconds:g}s.",
                    credential=job.credential,
                )
            except ProviderError as exc:
                if exc.kind == ProviderErrorKind.RATE_LIMITED and not retried:
                    retried = True
                    logger.info(
                        "Dataset '%s': %s rate limited; retrying once in %.1fs.",
                        job.spec.id, job.source.source_id, self._settings.rate_limit_backoff_seconds,
                    )
                    await self._sleep(self._settings.rate_limit_backoff_seconds)
                    continue
                if exc.kind == ProviderErrorKind.AUTH_ERROR:
                    self._invalidate(job, context)
                return self._failed(
                    job.spec, job.source, PROVIDER_KIND_TO_CODE[exc.kind], str(exc),
                    credential=job.credential,
                )
            break

        if not table.rows:
            return self._failed(
                job.spec, job.source, DatasetErrorCode.PROVIDER_NOT_FOUND,
                f"{job.source.display_name} returned no rows for this dataset.",
                credential=job.credential,
            )

        fetched_at = self._now()
        if job.cacheable:
            self._cache.put(job.cache_key, table, fetched_at, job.cache_ttl)
        return self._succeeded(job, table, fetched_at, from_cache=False)

    def _invalidate(self, job: _Job, context: ExecutionContext) -> None:
        if isinstance(job.credential, NoKey) or self._credential_store is None:
            return
        logger.warning(
            "%s rejected the stored %s key for user %s; marking it invalid.",
            job.source.display_name, job.credential.tier.value, context.user_id,
        )
        try:
            self._credential_store.invalidate_key(context.user_id, job.source.source_id)
        except Exception:
            logger.exception(
                "Could not invalidate %s key for user %s.", job.source.source_id, context.user_id
            )

    # ── Result construction ───────────────────────────────────────────────────

    def _succeeded(
        self,
        job: _Job,
        table: NormalizedTable,
        fetched_at: datetime,
        from_cache: bool,
    ) -> DatasetResult:
        return DatasetResult(
            dataset_id=job.spec.id,
            kind=job.spec.kind,
            status=DatasetStatus.SUCCESS,
            rows=table.rows,
            columns=table.columns,
            source_provider=job.source.source_id,
            fetched_at=fetched_at,
            from_cache=from_cache,
            credential_tier=job.credential.tier,
            attribution=job.source.attribution,
        )

    def _failed(
        self,
        spec: DatasetSpec,
        source: SourceClassification,
        code: DatasetErrorCode,
        message: str,
        credential: Optional[Credential] = None,
    ) -> DatasetResult:
        return DatasetResult(
            dataset_id=spec.id,
            kind=spec.kind,
            status=DatasetStatus.FAILED,
            source_provider=source.source_id,
            credential_tier=credential.tier if credential is not None else None,
            attribution=source.attribution,
            error=DatasetError(code=code, message=message, provider=source.source_id),
        )

    def _skipped(self, spec: DatasetSpec, source: SourceClassification, reason: str) -> DatasetResult:
        return DatasetResult(
            dataset_id=spec.id,
            kind=spec.kind,
            status=DatasetStatus.SKIPPED_BY_POLICY,
            source_provider=source.source_id,
            attribution=source.attribution,
            error=DatasetError(
                code=DatasetErrorCode.POLICY_VIOLATION, message=reason, provider=source.source_id
            ),
        )

    def _aggregate(
        self,
        recipe: Recipe,
        purpose: Purpose,
        results: list[DatasetResult],
        warnings_by_index: list[list[str]],
        executed_at: datetime,
        elapsed_ms: int,
    ) -> ExecutionResult:
        errors: list[str] = []
        warnings: list[str] = [w for ws in warnings_by_index for w in ws]
        for result in results:
            if result.status == DatasetStatus.FAILED and result.error is not None:
                errors.append(f"Dataset {result.dataset_id}: {result.error.code.value}: {result.error.message}")

        succeeded = [r for r in results if r.succeeded]
        failed = [r for r in results if r.status == DatasetStatus.FAILED]
        skipped = [r for r in results if r.status == DatasetStatus.SKIPPED_BY_POLICY]
        mandatory_ids = {s.id for s in recipe.datasets if s.mandatory}
        mandatory_missed = [r.dataset_id for r in results if r.dataset_id in mandatory_ids and not r.succeeded]
        success = bool(succeeded) and not mandatory_missed

        metadata = ExecutionMetadata(
            datasets_attempted=len(results),
            datasets_executed=len(results) - len(skipped),
            datasets_succeeded=len(succeeded),
            datasets_failed=len(failed),
            datasets_skipped=len(skipped),
            cache_hits=sum(1 for r in succeeded if r.from_cache),
            total_rows=sum(len(r.rows) for r in succeeded),
            executed_at=executed_at,
            execution_time_ms=elapsed_ms,
        )
        logger.info(
            "Recipe '%s' finished | success=%s | ok=%d failed=%d skipped=%d | cache_hits=%d | %dms",
            recipe.id, success, metadata.datasets_succeeded, metadata.datasets_failed,
            metadata.datasets_skipped, metadata.cache_hits, elapsed_ms,
        )
        if mandatory_missed:
            errors.append(f"Mandatory dataset(s) did not succeed: {', '.join(mandatory_missed)}")

        return ExecutionResult(
            recipe_id=recipe.id,
            purpose=purpose,
            datasets=tuple(results),
            errors=tuple(errors),
            warnings=tuple(warnings),
            success=success,
            metadata=metadata,
        )
