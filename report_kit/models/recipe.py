"""
Recipe and dataset specification models.

A ``Recipe`` is the user-authored, declarative description of a report: an
ordered list of ``DatasetSpec`` entries plus a target currency.  Recipes are
frozen; the validator returns a *resolved copy* with each dataset's
``provider`` filled in from the kind catalogue rather than mutating the
submitted recipe.

Structural problems (empty dataset list, duplicate ids, unknown kinds) are
deliberately NOT rejected at model construction: ``RecipeValidator`` reports
every violated constraint at once instead of failing on the first.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

RECIPE_VERSION = "1.0"


class DatasetSpec(BaseModel):
    """One unit of requested data within a recipe.

    Attributes:
        id:        Identifier unique within the recipe; names the workbook sheet.
        kind:      Dataset kind from the catalogue (e.g. ``"price"``, ``"ohlcv"``).
        coin_ids:  Ordered, de-duplicated coin identifiers (or addresses for
                   on-chain kinds).
        metrics:   Requested metric columns; empty means all.
        timeframe: Lookback such as ``"30d"``; only meaningful for series kinds.
        limit:     Optional row cap for listing kinds.
        mandatory: If True, this dataset failing makes the whole run fail.
        provider:  Assigned by the validator; authors leave it unset.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    kind: str
    coin_ids: tuple[str, ...] = ()
    metrics: tuple[str, ...] = ()
    timeframe: Optional[str] = None
    limit: Optional[int] = None
    mandatory: bool = False
    provider: Optional[str] = None

    @field_validator("id", "kind")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()

    @field_validator("coin_ids", "metrics")
    @classmethod
    def dedupe_preserving_order(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for item in v:
            item = item.strip()
            if item:
                seen.setdefault(item, None)
        return tuple(seen)

    @field_validator("limit")
    @classmethod
    def positive_limit(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError(f"limit must be >= 1, got {v}.")
        return v


class Recipe(BaseModel):
    """A declarative report definition.

    Attributes:
        id:          Recipe identifier.
        name:        Display name; the workbook file name is derived from it.
        description: Free text.
        version:     Schema version; only ``"1.0"`` is accepted.
        datasets:    Ordered dataset specs.  Result order follows this order.
        currency:    Quote currency for price-like kinds.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    version: str = RECIPE_VERSION
    datasets: tuple[DatasetSpec, ...] = ()
    currency: str = "usd"

    @field_validator("currency")
    @classmethod
    def lower_currency(cls, v: str) -> str:
        return v.strip().lower() or "usd"

    @property
    def required_plan(self) -> str:
        """Lowest plan tier able to run every dataset kind in this recipe."""
        from report_kit.recipe.catalog import required_plan_for

        return required_plan_for(self)
