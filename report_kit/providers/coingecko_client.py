"""
CoinGecko adapter — display-only source with three credential tiers.

Base URLs and auth headers per tier
-----------------------------------
  ProKey   https://pro-api.coingecko.com/api/v3   header x-cg-pro-api-key
  DemoKey  https://api.coingecko.com/api/v3       header x-cg-demo-api-key
  NoKey    https://api.coingecko.com/api/v3       (no header, tight public limits)

Kinds served
------------
market-snapshot  GET /coins/markets?vs_currency=usd&ids=bitcoin,ethereum
nft-collection   GET /nfts/list?per_page=N&page=1

CoinGecko data is licensed for display only; the redistribution policy keeps
it out of workbooks and out of the cache.
"""

from __future__ import annotations

from typing import ClassVar

from report_kit.models.credentials import Credential, DemoKey, ProKey
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

_MARKET_COLUMNS = (
    ColumnDef(name="coin_id", type=ColumnType.TEXT),
    ColumnDef(name="symbol", type=ColumnType.TEXT),
    ColumnDef(name="name", type=ColumnType.TEXT),
    ColumnDef(name="market_cap_rank", type=ColumnType.INTEGER),
    ColumnDef(name="current_price", type=ColumnType.CURRENCY),
    ColumnDef(name="market_cap", type=ColumnType.CURRENCY),
    ColumnDef(name="total_volume", type=ColumnType.CURRENCY),
    ColumnDef(name="price_change_24h_pct", type=ColumnType.PERCENT),
    ColumnDef(name="circulating_supply", type=ColumnType.NUMBER),
    ColumnDef(name="ath", type=ColumnType.CURRENCY),
    ColumnDef(name="last_updated", type=ColumnType.TEXT),
)

_NFT_COLUMNS = (
    ColumnDef(name="collection_id", type=ColumnType.TEXT),
    ColumnDef(name="name", type=ColumnType.TEXT),
    ColumnDef(name="symbol", type=ColumnType.TEXT),
    ColumnDef(name="asset_platform", type=ColumnType.TEXT),
    ColumnDef(name="contract_address", type=ColumnType.TEXT),
)


class CoinGeckoAdapter(ProviderAdapter):
    """Adapter for the CoinGecko v3 API."""

    provider_id: ClassVar[str] = "coingecko"
    supported_kinds: ClassVar[frozenset[str]] = frozenset({"market-snapshot", "nft-collection"})

    PUBLIC_BASE_URL: ClassVar[str] = "https://api.coingecko.com/api/v3"
    PRO_BASE_URL: ClassVar[str] = "https://pro-api.coingecko.com/api/v3"
    DEFAULT_NFT_LIMIT: ClassVar[int] = 50

    def endpoint(self, credential: Credential) -> tuple[str, dict[str, str]]:
        """Return (base_url, auth_headers) for the resolved credential tier."""
        if isinstance(credential, ProKey):
            return self.PRO_BASE_URL, {"x-cg-pro-api-key": credential.secret.get_secret_value()}
        if isinstance(credential, DemoKey):
            return self.PUBLIC_BASE_URL, {"x-cg-demo-api-key": credential.secret.get_secret_value()}
        return self.PUBLIC_BASE_URL, {}

    async def fetch(
        self,
        spec: DatasetSpec,
        params: FetchParams,
        credential: Credential,
    ) -> RawPayload:
        self._check_kind(spec)
        base_url, headers = self.endpoint(credential)
        if spec.kind == "nft-collection":
            return await self._get_json(
                f"{base_url}/nfts/list",
                params={"per_page": min(params.limit or self.DEFAULT_NFT_LIMIT, 250), "page": 1},
                headers=headers,
            )
        return await self._get_json(
            f"{base_url}/coins/markets",
            params={
                "vs_currency": params.currency,
                "ids": ",".join(params.coin_ids),
                "price_change_percentage": "24h",
            },
            headers=headers,
        )

    def normalize(
        self,
        payload: RawPayload,
        spec: DatasetSpec,
        params: FetchParams,
    ) -> NormalizedTable:
        if not isinstance(payload, list):
            raise self._shape_error(f"{spec.kind} payload is not a list")

        if spec.kind == "nft-collection":
            rows = [
                {
                    "collection_id": item.get("id"),
                    "name": item.get("name"),
                    "symbol": item.get("symbol"),
                    "asset_platform": item.get("asset_platform_id"),
                    "contract_address": item.get("contract_address"),
                }
                for item in payload
                if isinstance(item, dict)
            ]
            return select_metrics(_NFT_COLUMNS, rows, params.metrics, ("collection_id", "name"))

        by_id = {item.get("id"): item for item in payload if isinstance(item, dict)}
        rows = []
        for coin_id in params.coin_ids:
            item = by_id.get(coin_id)
            if item is None:
                continue
            change = to_float(item.get("price_change_percentage_24h"))
            rows.append({
                "coin_id": coin_id,
                "symbol": item.get("symbol"),
                "name": item.get("name"),
                "market_cap_rank": to_int(item.get("market_cap_rank")),
                "current_price": to_float(item.get("current_price")),
                "market_cap": to_float(item.get("market_cap")),
                "total_volume": to_float(item.get("total_volume")),
                "price_change_24h_pct": change / 100.0 if change is not None else None,
                "circulating_supply": to_float(item.get("circulating_supply")),
                "ath": to_float(item.get("ath")),
                "last_updated": item.get("last_updated"),
            })
        return select_metrics(_MARKET_COLUMNS, rows, params.metrics, ("coin_id", "symbol"))
