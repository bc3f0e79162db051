"""
Recipe validation.

``RecipeValidator.validate()`` is a pure function of the recipe, the
requested purpose and the caller's plan: it performs no network I/O and never
touches credentials, so it can run before a single key is decrypted.

Checks, in order
----------------
1. Structure   — id, name, version "1.0", non-empty datasets, unique dataset
                 ids, resolvable kinds, coins present where the kind needs
                 them, parseable timeframes, enabled sources.  A kind whose
                 provider has no source classification raises
                 ``SourceConfigurationError`` (configuration error, not a
                 validation message).
2. Policy      — per-dataset redistribution pre-check for the purpose implied
                 by the output format.  Errors when ``strict_policy`` is on,
                 warnings otherwise.
3. Plan        — ``check_plan_compatibility()`` plus plan limits: too many
                 datasets or coins are errors; a lookback beyond the plan's
                 OHLCV window is a warning (the engine clamps it).

Every violated constraint is collected; nothing short-circuits except the
configuration error above.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

from report_kit.governance.models import Purpose
from report_kit.governance.redistribution import RedistributionPolicy
from report_kit.governance.registry import SourceRegistry
from report_kit.models.plan import PLAN_LIMITS, PlanLimits, UserPlan, plan_rank
from report_kit.models.recipe import RECIPE_VERSION, DatasetSpec, Recipe
from report_kit.recipe.catalog import DATASET_KINDS, DatasetKind
from report_kit.utils.time_utils import parse_timeframe_days

logger = logging.getLogger(__name__)

FORMAT_PURPOSE: dict[str, Purpose] = {
    "excel": Purpose.DOWNLOAD,
    "json":  Purpose.DISPLAY,
}


def purpose_for_format(output_format: str) -> Purpose:
    """Map an output format (``excel`` / ``json``) to its redistribution purpose.

    Raises:
        ValueError: For unknown formats.
    """
    try:
        return FORMAT_PURPOSE[output_format]
    except KeyError:
        raise ValueError(
            f"Unknown output format '{output_format}'. Expected one of {sorted(FORMAT_PURPOSE)}."
        ) from None


# ── Result types ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PlanCheck:
    """Outcome of comparing a recipe's required plan with the caller's.

    Attributes:
        compatible:    True if the caller's plan can run every dataset.
        required_plan: Lowest plan that can run the whole recipe.
        reason:        Names the offending dataset and tier when incompatible.
    """

    compatible: bool
    required_plan: str
    reason: Optional[str] = None


@dataclass(frozen=True)
class ValidationResult:
    """Full outcome of ``RecipeValidator.validate()``.

    ``resolved_recipe`` is a copy of the input with every known dataset's
    ``provider`` and default ``timeframe`` filled in.  It is None only when
    the recipe is invalid.
    """

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    resolved_recipe: Optional[Recipe] = None
    plan_check: Optional[PlanCheck] = None

    @property
    def plan_only_failure(self) -> bool:
        """True if the sole problem is plan incompatibility."""
        return (
            self.plan_check is not None
            and not self.plan_check.compatible
            and self.errors == [self.plan_check.reason]
        )


# ── Validator ─────────────────────────────────────────────────────────────────


class RecipeValidator:
    """Schema, policy and plan checks for recipes.

    Args:
        registry:      Source classifications.
        policy:        Redistribution gate.
        kinds:         Dataset kind catalogue (defaults to ``DATASET_KINDS``).
        strict_policy: If True, redistribution violations are errors;
                       otherwise they are warnings.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        policy: RedistributionPolicy,
        kinds: Optional[Iterable[DatasetKind]] = None,
        strict_policy: bool = True,
    ) -> None:
        self._registry = registry
        self._policy = policy
        self._kinds: dict[str, DatasetKind] = {
            k.kind: k for k in (kinds if kinds is not None else DATASET_KINDS)
        }
        self._strict_policy = strict_policy

    def validate(
        self,
        recipe: Recipe,
        purpose: Union[Purpose, str],
        plan: Optional[Union[UserPlan, str]] = None,
    ) -> ValidationResult:
        """Validate ``recipe`` for ``purpose`` and, if given, ``plan``.

        Raises:
            SourceConfigurationError: If a dataset kind's provider has no
                source classification.
        """
        purpose = Purpose(purpose)
        errors: list[str] = []
        warnings: list[str] = []

        # Fail on configuration gaps before reporting anything else.
        for spec in recipe.datasets:
            entry = self._kinds.get(spec.kind)
            if entry is not None:
                self._registry.get(entry.provider)

        resolved = self._check_structure(recipe, errors, warnings)
        self._check_policy(recipe, purpose, errors, warnings)

        plan_check: Optional[PlanCheck] = None
        if plan is not None:
            tier, limits = _plan_tier_and_limits(plan)
            plan_check = self.check_plan_compatibility(recipe, tier)
            if not plan_check.compatible and plan_check.reason:
                errors.append(plan_check.reason)
            self._check_limits(recipe, tier, limits, errors, warnings)

        self._attribution_warnings(recipe, warnings)

        valid = not errors
        if not valid:
            logger.info(
                "Recipe '%s' failed validation with %d error(s).", recipe.id, len(errors)
            )
        return ValidationResult(
            valid=valid,
            errors=errors,
            warnings=warnings,
            resolved_recipe=resolved if valid else None,
            plan_check=plan_check,
        )

    def check_plan_compatibility(self, recipe: Recipe, plan: str) -> PlanCheck:
        """Compare the most demanding dataset kind with the caller's plan.

        The reason names the specific dataset and the tier it needs.
        """
        caller_rank = plan_rank(plan)
        worst: Optional[tuple[DatasetSpec, DatasetKind]] = None
        for spec in recipe.datasets:
            entry = self._kinds.get(spec.kind)
            if entry is None:
                continue
            if worst is None or plan_rank(entry.min_plan) > plan_rank(worst[1].min_plan):
                worst = (spec, entry)

        required = worst[1].min_plan if worst else "free"
        if worst is None or plan_rank(required) <= caller_rank:
            return PlanCheck(compatible=True, required_plan=required)

        spec, entry = worst
        return PlanCheck(
            compatible=False,
            required_plan=required,
            reason=f"Dataset {spec.id} ({spec.kind}) requires {required.capitalize()} plan",
        )

    # ── Check stages ──────────────────────────────────────────────────────────

    def _check_structure(
        self, recipe: Recipe, errors: list[str], warnings: list[str]
    ) -> Recipe:
        if not recipe.id.strip():
            errors.append("Recipe ID is required")
        if not recipe.name.strip():
            errors.append("Recipe name is required")
        if recipe.version != RECIPE_VERSION:
            errors.append(f'Recipe version must be "{RECIPE_VERSION}"')
        if not recipe.datasets:
            errors.append("At least one dataset is required")

        seen_ids: set[str] = set()
        resolved_specs: list[DatasetSpec] = []
        for index, spec in enumerate(recipe.datasets):
            label = spec.id or f"#{index}"
            if not spec.id:
                errors.append(f"Dataset {index} is missing an id")
            elif spec.id in seen_ids:
                errors.append(f"Duplicate dataset ID: {spec.id}")
            seen_ids.add(spec.id)

            entry = self._kinds.get(spec.kind)
            if entry is None:
                errors.append(
                    f"Dataset {label}: unknown kind '{spec.kind}'. "
                    f"Known kinds: {sorted(self._kinds)}"
                )
                resolved_specs.append(spec)
                continue

            source = self._registry.get(entry.provider)
            if not source.enabled:
                errors.append(f"Dataset {label}: source '{source.source_id}' is disabled")

            if entry.coin_requirement == "addresses" and not spec.coin_ids:
                errors.append(f"Dataset {label}: kind '{spec.kind}' requires at least one address")
            elif entry.needs_coins and not spec.coin_ids:
                errors.append(
                    f"Dataset {label}: kind '{spec.kind}' requires at least one coin identifier"
                )
            elif entry.coin_requirement == "first_coin" and len(spec.coin_ids) > 1:
                warnings.append(
                    f"Dataset {label}: kind '{spec.kind}' uses only the first coin "
                    f"('{spec.coin_ids[0]}'); {len(spec.coin_ids) - 1} ignored"
                )
            elif not entry.needs_coins and spec.coin_ids:
                warnings.append(f"Dataset {label}: coin identifiers are ignored for kind '{spec.kind}'")

            timeframe = spec.timeframe
            if entry.series:
                timeframe = timeframe or entry.default_timeframe
                try:
                    parse_timeframe_days(timeframe or "")
                except ValueError as exc:
                    errors.append(f"Dataset {label}: {exc}")
            elif spec.timeframe:
                warnings.append(f"Dataset {label}: timeframe is ignored for kind '{spec.kind}'")

            resolved_specs.append(
                spec.model_copy(update={"provider": entry.provider, "timeframe": timeframe})
            )

        return recipe.model_copy(update={"datasets": tuple(resolved_specs)})

    def _check_policy(
        self,
        recipe: Recipe,
        purpose: Purpose,
        errors: list[str],
        warnings: list[str],
    ) -> None:
        for spec in recipe.datasets:
            entry = self._kinds.get(spec.kind)
            if entry is None:
                continue
            reason = self._policy.block_reason(entry.provider, purpose)
            if reason is None:
                continue
            message = f"Dataset {spec.id}: {reason}"
            if self._strict_policy:
                errors.append(message)
            else:
                warnings.append(f"{message} It will be excluded from the {purpose.value}.")

    def _check_limits(
        self,
        recipe: Recipe,
        tier: str,
        limits: PlanLimits,
        errors: list[str],
        warnings: list[str],
    ) -> None:
        if len(recipe.datasets) > limits.max_datasets_per_recipe:
            errors.append(
                f"Recipe has {len(recipe.datasets)} datasets; the {tier} plan allows at most "
                f"{limits.max_datasets_per_recipe}"
            )
        for spec in recipe.datasets:
            entry = self._kinds.get(spec.kind)
            if entry is None:
                continue
            if entry.needs_coins and len(spec.coin_ids) > limits.max_coins_per_dataset:
                errors.append(
                    f"Dataset {spec.id}: {len(spec.coin_ids)} coins requested; the {tier} plan "
                    f"allows at most {limits.max_coins_per_dataset} per dataset"
                )
            if entry.kind.startswith("ohlcv"):
                try:
                    days = parse_timeframe_days(spec.timeframe or entry.default_timeframe or "")
                except ValueError:
                    continue
                if days > limits.max_ohlcv_days:
                    warnings.append(
                        f"Dataset {spec.id}: {days}-day lookback exceeds the {tier} plan limit; "
                        f"it will be clamped to {limits.max_ohlcv_days} days"
                    )

    def _attribution_warnings(self, recipe: Recipe, warnings: list[str]) -> None:
        seen: set[str] = set()
        for spec in recipe.datasets:
            entry = self._kinds.get(spec.kind)
            if entry is None or entry.provider in seen:
                continue
            seen.add(entry.provider)
            source = self._registry.get(entry.provider)
            if "none" in source.credential_tiers and source.attribution:
                warnings.append(
                    f"Dataset {spec.id}: requires attribution to {source.display_name}"
                )


def _plan_tier_and_limits(plan: Union[UserPlan, str]) -> tuple[str, PlanLimits]:
    if isinstance(plan, UserPlan):
        return plan.tier, plan.limits
    plan_rank(plan)
    return plan, PLAN_LIMITS[plan]
