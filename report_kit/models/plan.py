"""
Plan tiers and their limits.

The engine only *consumes* a tier; subscription storage lives outside this
package (see ``report_kit.interfaces.PlanLookup``).  ``PLAN_LIMITS`` mirrors
the entitlement table used by the web application.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator

PlanTier = Literal["free", "pro", "premium"]
PLAN_ORDER: tuple[str, ...] = ("free", "pro", "premium")


def plan_rank(tier: str) -> int:
    """Return the ordinal of ``tier`` (free=0, pro=1, premium=2).

    Raises:
        ValueError: If ``tier`` is not a known plan.
    """
    try:
        return PLAN_ORDER.index(tier)
    except ValueError:
        raise ValueError(f"Unknown plan tier '{tier}'. Expected one of {list(PLAN_ORDER)}.") from None


class PlanLimits(BaseModel):
    """Quantitative limits attached to a plan tier.

    Attributes:
        max_coins_per_dataset:   Coin identifiers accepted per dataset.
        max_ohlcv_days:          Longest OHLCV lookback; longer requests are clamped.
        max_datasets_per_recipe: Datasets accepted per recipe.
    """

    model_config = ConfigDict(frozen=True)

    max_coins_per_dataset: int
    max_ohlcv_days: int
    max_datasets_per_recipe: int

    @field_validator("max_coins_per_dataset", "max_ohlcv_days", "max_datasets_per_recipe")
    @classmethod
    def positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Plan limits must be >= 1, got {v}.")
        return v


PLAN_LIMITS: dict[str, PlanLimits] = {
    "free":    PlanLimits(max_coins_per_dataset=10,  max_ohlcv_days=7,   max_datasets_per_recipe=5),
    "pro":     PlanLimits(max_coins_per_dataset=100, max_ohlcv_days=365, max_datasets_per_recipe=25),
    "premium": PlanLimits(max_coins_per_dataset=500, max_ohlcv_days=730, max_datasets_per_recipe=100),
}


class UserPlan(BaseModel):
    """A user's plan tier as returned by ``PlanLookup.get_user_plan``."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    tier: PlanTier = "free"
    limits: PlanLimits = PLAN_LIMITS["free"]

    @classmethod
    def for_tier(cls, user_id: str, tier: str) -> "UserPlan":
        plan_rank(tier)
        return cls(user_id=user_id, tier=tier, limits=PLAN_LIMITS[tier])
