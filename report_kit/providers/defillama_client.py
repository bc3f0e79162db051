"""
DeFi Llama adapter — free public API, no key.

API:   https://api.llama.fi/
Docs:  https://defillama.com/docs/api

Kinds served
------------
defi-protocols  GET /protocols   (sorted by TVL, top ``limit`` rows, default 50)
defi-chains     GET /v2/chains   (sorted by TVL, top ``limit`` rows, default all)
"""

from __future__ import annotations

from typing import Any, ClassVar, Optional

from report_kit.models.credentials import Credential
from report_kit.models.execution import ColumnDef, ColumnType, NormalizedTable
from report_kit.models.recipe import DatasetSpec
from report_kit.providers.base import (
    FetchParams,
    ProviderAdapter,
    RawPayload,
    select_metrics,
    to_float,
)

_PROTOCOL_COLUMNS = (
    ColumnDef(name="name", type=ColumnType.TEXT),
    ColumnDef(name="slug", type=ColumnType.TEXT),
    ColumnDef(name="symbol", type=ColumnType.TEXT),
    ColumnDef(name="category", type=ColumnType.TEXT),
    ColumnDef(name="chain", type=ColumnType.TEXT),
    ColumnDef(name="tvl_usd", type=ColumnType.CURRENCY),
    ColumnDef(name="change_1d_pct", type=ColumnType.PERCENT),
    ColumnDef(name="change_7d_pct", type=ColumnType.PERCENT),
    ColumnDef(name="market_cap_usd", type=ColumnType.CURRENCY),
)

_CHAIN_COLUMNS = (
    ColumnDef(name="name", type=ColumnType.TEXT),
    ColumnDef(name="token_symbol", type=ColumnType.TEXT),
    ColumnDef(name="tvl_usd", type=ColumnType.CURRENCY),
    ColumnDef(name="gecko_id", type=ColumnType.TEXT),
)


class DefiLlamaAdapter(ProviderAdapter):
    """Adapter for the DeFi Llama TVL API."""

    provider_id: ClassVar[str] = "defillama"
    supported_kinds: ClassVar[frozenset[str]] = frozenset({"defi-protocols", "defi-chains"})

    BASE_URL: ClassVar[str] = "https://api.llama.fi"
    DEFAULT_PROTOCOL_LIMIT: ClassVar[int] = 50

    async def fetch(
        self,
        spec: DatasetSpec,
        params: FetchParams,
        credential: Credential,
    ) -> RawPayload:
        self._check_kind(spec)
        if spec.kind == "defi-chains":
            return await self._get_json(f"{self.BASE_URL}/v2/chains")
        return await self._get_json(f"{self.BASE_URL}/protocols")

    def normalize(
        self,
        payload: RawPayload,
        spec: DatasetSpec,
        params: FetchParams,
    ) -> NormalizedTable:
        if not isinstance(payload, list):
            raise self._shape_error(f"{spec.kind} payload is not a list")
        items = sorted(
            (p for p in payload if isinstance(p, dict)),
            key=lambda p: to_float(p.get("tvl")) or 0.0,
            reverse=True,
        )

        if spec.kind == "defi-chains":
            if params.limit:
                items = items[: params.limit]
            rows = [
                {
                    "name": c.get("name"),
                    "token_symbol": c.get("tokenSymbol"),
                    "tvl_usd": to_float(c.get("tvl")),
                    "gecko_id": c.get("gecko_id"),
                }
                for c in items
            ]
            return select_metrics(_CHAIN_COLUMNS, rows, params.metrics, ("name",))

        items = items[: params.limit or self.DEFAULT_PROTOCOL_LIMIT]
        rows = [
            {
                "name": p.get("name"),
                "slug": p.get("slug"),
                "symbol": p.get("symbol"),
                "category": p.get("category"),
                "chain": p.get("chain"),
                "tvl_usd": to_float(p.get("tvl")),
                "change_1d_pct": _pct(p.get("change_1d")),
                "change_7d_pct": _pct(p.get("change_7d")),
                "market_cap_usd": to_float(p.get("mcap")),
            }
            for p in items
        ]
        return select_metrics(_PROTOCOL_COLUMNS, rows, params.metrics, ("name", "slug"))


def _pct(value: Any) -> Optional[float]:
    number = to_float(value)
    return number / 100.0 if number is not None else None
