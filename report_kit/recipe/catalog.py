"""
Dataset kind catalogue.

Every ``DatasetSpec.kind`` must resolve to exactly one ``DatasetKind`` entry
here; the entry fixes which provider serves it and the lowest plan tier
allowed to request it.  The validator consults this table, the engine uses
it to pick an adapter, and ``list-kinds`` prints it.

Coin requirements
-----------------
none        The kind is a listing; ``coin_ids`` is ignored.
coins       One or more coin identifiers are required.
first_coin  A coin is required; only the first is used (one series per dataset).
addresses   One or more on-chain addresses are required.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from report_kit.models.plan import PLAN_ORDER, plan_rank

if TYPE_CHECKING:
    from report_kit.models.recipe import Recipe


@dataclass(frozen=True)
class DatasetKind:
    """Catalogue entry for one dataset kind.

    Attributes:
        kind:              Recipe-facing identifier.
        provider:          Source id; must be classified in sources.toml.
        min_plan:          Lowest plan tier allowed to request this kind.
        coin_requirement:  One of none / coins / first_coin / addresses.
        series:            True if ``timeframe`` is a lookback bounded by
                           ``PlanLimits.max_ohlcv_days``.
        default_timeframe: Lookback used when the author gives none.
        description:       Shown by ``list-kinds``.
    """

    kind: str
    provider: str
    min_plan: str
    coin_requirement: str = "none"
    series: bool = False
    default_timeframe: Optional[str] = None
    description: str = ""

    @property
    def needs_coins(self) -> bool:
        return self.coin_requirement != "none"


# ── Catalogue ─────────────────────────────────────────────────────────────────

DATASET_KINDS: list[DatasetKind] = [
    DatasetKind("price",                "coinlore",      "free",    "coins",
                description="Latest price, market cap and 24h change per coin."),
    DatasetKind("global-market",        "coinlore",      "free",
                description="Global market totals and dominance."),
    DatasetKind("ohlcv",                "binance",       "free",    "first_coin", series=True,
                default_timeframe="30d", description="Daily OHLCV candles for one coin."),
    DatasetKind("ohlcv-intraday",       "binance",       "pro",     "first_coin", series=True,
                default_timeframe="2d", description="Hourly OHLCV candles for one coin."),
    DatasetKind("market-snapshot",      "coingecko",     "free",    "coins",
                description="Market snapshot per coin (price, volume, supply, ATH)."),
    DatasetKind("nft-collection",       "coingecko",     "free",
                description="NFT collection listing."),
    DatasetKind("defi-protocols",       "defillama",     "free",
                description="DeFi protocols ranked by total value locked."),
    DatasetKind("defi-chains",          "defillama",     "free",
                description="Total value locked per chain."),
    DatasetKind("fear-greed",           "alternativeme", "free",    series=True,
                default_timeframe="30d", description="Crypto Fear & Greed Index history."),
    DatasetKind("address-transactions", "etherscan",     "premium", "addresses",
                description="Normal transactions for Ethereum addresses."),
]

_BY_KIND: dict[str, DatasetKind] = {k.kind: k for k in DATASET_KINDS}


def get_kind(kind: str) -> Optional[DatasetKind]:
    """Return the catalogue entry for ``kind``, or None if unknown."""
    return _BY_KIND.get(kind)


def kind_names() -> list[str]:
    return [k.kind for k in DATASET_KINDS]


def providers_in_catalog() -> list[str]:
    return sorted({k.provider for k in DATASET_KINDS})


def required_plan_for(recipe: "Recipe") -> str:
    """Highest minimum plan among the recipe's known dataset kinds.

    Unknown kinds are ignored here; the validator reports them separately.
    """
    required = PLAN_ORDER[0]
    for spec in recipe.datasets:
        entry = get_kind(spec.kind)
        if entry is not None and plan_rank(entry.min_plan) > plan_rank(required):
            required = entry.min_plan
    return required
