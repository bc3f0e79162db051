"""
CoinLore adapter — free public API, no key.

API:   https://api.coinlore.net/api/
Docs:  https://www.coinlore.com/cryptocurrency-data-api

Kinds served
------------
price          GET /tickers/?start=N&limit=100   (paged until every coin is found)
global-market  GET /global/

CoinLore keys coins by numeric id; recipes use slug ids such as
``"bitcoin"``.  The price fetch walks the ranked ticker listing and matches
each ticker's ``nameid`` (slug) or ``symbol`` against the requested ids.
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
    to_int,
)

_PRICE_COLUMNS = (
    ColumnDef(name="coin_id", type=ColumnType.TEXT),
    ColumnDef(name="symbol", type=ColumnType.TEXT),
    ColumnDef(name="name", type=ColumnType.TEXT),
    ColumnDef(name="rank", type=ColumnType.INTEGER),
    ColumnDef(name="price_usd", type=ColumnType.CURRENCY),
    ColumnDef(name="market_cap_usd", type=ColumnType.CURRENCY),
    ColumnDef(name="volume_24h_usd", type=ColumnType.CURRENCY),
    ColumnDef(name="change_1h_pct", type=ColumnType.PERCENT),
    ColumnDef(name="change_24h_pct", type=ColumnType.PERCENT),
    ColumnDef(name="change_7d_pct", type=ColumnType.PERCENT),
    ColumnDef(name="circulating_supply", type=ColumnType.NUMBER),
)

_GLOBAL_COLUMNS = (
    ColumnDef(name="coins_count", type=ColumnType.INTEGER),
    ColumnDef(name="active_markets", type=ColumnType.INTEGER),
    ColumnDef(name="total_market_cap_usd", type=ColumnType.CURRENCY),
    ColumnDef(name="total_volume_usd", type=ColumnType.CURRENCY),
    ColumnDef(name="btc_dominance_pct", type=ColumnType.PERCENT),
    ColumnDef(name="eth_dominance_pct", type=ColumnType.PERCENT),
    ColumnDef(name="market_cap_change_pct", type=ColumnType.PERCENT),
    ColumnDef(name="volume_change_pct", type=ColumnType.PERCENT),
)


class CoinLoreAdapter(ProviderAdapter):
    """Adapter for the CoinLore public API."""

    provider_id: ClassVar[str] = "coinlore"
    supported_kinds: ClassVar[frozenset[str]] = frozenset({"price", "global-market"})

    BASE_URL: ClassVar[str] = "https://api.coinlore.net/api"
    PAGE_SIZE: ClassVar[int] = 100
    MAX_PAGES: ClassVar[int] = 5

    async def fetch(
        self,
        spec: DatasetSpec,
        params: FetchParams,
        credential: Credential,
    ) -> RawPayload:
        self._check_kind(spec)
        if spec.kind == "global-market":
            return await self._get_json(f"{self.BASE_URL}/global/")

        wanted = {c.lower() for c in params.coin_ids}
        found: list[dict[str, Any]] = []
        for page in range(self.MAX_PAGES):
            body = await self._get_json(
                f"{self.BASE_URL}/tickers/",
                params={"start": page * self.PAGE_SIZE, "limit": self.PAGE_SIZE},
            )
            tickers = body.get("data") if isinstance(body, dict) else None
            if not tickers:
                break
            for ticker in tickers:
                keys = {str(ticker.get("nameid", "")).lower(), str(ticker.get("symbol", "")).lower()}
                if keys & wanted:
                    found.append(ticker)
            if len(found) >= len(wanted):
                break
        return found

    def normalize(
        self,
        payload: RawPayload,
        spec: DatasetSpec,
        params: FetchParams,
    ) -> NormalizedTable:
        if spec.kind == "global-market":
            return self._normalize_global(payload, params)
        return self._normalize_price(payload, params)

    def _normalize_price(self, payload: RawPayload, params: FetchParams) -> NormalizedTable:
        if not isinstance(payload, list):
            raise self._shape_error("ticker listing is not a list")

        by_id: dict[str, dict[str, Any]] = {}
        for ticker in payload:
            for key in (str(ticker.get("nameid", "")).lower(), str(ticker.get("symbol", "")).lower()):
                by_id.setdefault(key, ticker)

        rows = []
        for coin_id in params.coin_ids:
            ticker = by_id.get(coin_id.lower())
            if ticker is None:
                continue
            rows.append({
                "coin_id": coin_id,
                "symbol": ticker.get("symbol"),
                "name": ticker.get("name"),
                "rank": to_int(ticker.get("rank")),
                "price_usd": to_float(ticker.get("price_usd")),
                "market_cap_usd": to_float(ticker.get("market_cap_usd")),
                "volume_24h_usd": to_float(ticker.get("volume24")),
                "change_1h_pct": _pct(ticker.get("percent_change_1h")),
                "change_24h_pct": _pct(ticker.get("percent_change_24h")),
                "change_7d_pct": _pct(ticker.get("percent_change_7d")),
                "circulating_supply": to_float(ticker.get("csupply")),
            })
        return select_metrics(_PRICE_COLUMNS, rows, params.metrics, ("coin_id", "symbol"))

    def _normalize_global(self, payload: RawPayload, params: FetchParams) -> NormalizedTable:
        if not isinstance(payload, list):
            raise self._shape_error("global payload is not a list")
        rows = [
            {
                "coins_count": to_int(item.get("coins_count")),
                "active_markets": to_int(item.get("active_markets")),
                "total_market_cap_usd": to_float(item.get("total_mcap")),
                "total_volume_usd": to_float(item.get("total_volume")),
                "btc_dominance_pct": _pct(item.get("btc_d")),
                "eth_dominance_pct": _pct(item.get("eth_d")),
                "market_cap_change_pct": _pct(item.get("mcap_change")),
                "volume_change_pct": _pct(item.get("volume_change")),
            }
            for item in payload
            if isinstance(item, dict)
        ]
        return select_metrics(_GLOBAL_COLUMNS, rows, params.metrics, ())


def _pct(value: Any) -> Optional[float]:
    """CoinLore reports percentages as whole numbers ("1.25" = 1.25%)."""
    number = to_float(value)
    return number / 100.0 if number is not None else None
