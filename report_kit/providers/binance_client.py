"""
Binance public market-data adapter — klines (OHLCV), no key.

API:   https://api.binance.com/api/v3/klines?symbol=BTCUSDT&interval=1d&limit=30
Docs:  https://developers.binance.com/docs/binance-spot-api-docs/rest-api

Kinds served
------------
ohlcv           Daily candles, ``limit`` = lookback days.
ohlcv-intraday  Hourly candles, ``limit`` = lookback days * 24.

Binance caps ``limit`` at 1000.  Coin slugs are mapped to exchange base
assets through ``SYMBOLS``; an unmapped id is used upper-cased as the base
asset (so recipes may also pass ``"btc"`` directly).

Quirks
------
  HTTP 400 with code -1121 ("Invalid symbol")  → NotFound
  HTTP 418 (IP auto-ban after ignoring 429s)   → RateLimited
"""

from __future__ import annotations

from typing import ClassVar, Optional

import httpx

from report_kit.errors import ProviderError, ProviderErrorKind
from report_kit.models.credentials import Credential
from report_kit.models.execution import ColumnDef, ColumnType, NormalizedTable
from report_kit.models.recipe import DatasetSpec
from report_kit.providers.base import (
    FetchParams,
    ProviderAdapter,
    RawPayload,
    parse_retry_after,
    select_metrics,
    to_float,
    to_int,
)
from report_kit.utils.time_utils import from_epoch_ms

_OHLCV_COLUMNS = (
    ColumnDef(name="open_time", type=ColumnType.TIMESTAMP),
    ColumnDef(name="open", type=ColumnType.CURRENCY),
    ColumnDef(name="high", type=ColumnType.CURRENCY),
    ColumnDef(name="low", type=ColumnType.CURRENCY),
    ColumnDef(name="close", type=ColumnType.CURRENCY),
    ColumnDef(name="volume", type=ColumnType.NUMBER),
    ColumnDef(name="quote_volume", type=ColumnType.CURRENCY),
    ColumnDef(name="trades", type=ColumnType.INTEGER),
)


class BinanceAdapter(ProviderAdapter):
    """Adapter for Binance spot klines."""

    provider_id: ClassVar[str] = "binance"
    supported_kinds: ClassVar[frozenset[str]] = frozenset({"ohlcv", "ohlcv-intraday"})

    BASE_URL: ClassVar[str] = "https://api.binance.com/api/v3"
    MAX_LIMIT: ClassVar[int] = 1000

    # coin slug → Binance base asset
    SYMBOLS: ClassVar[dict[str, str]] = {
        "bitcoin":       "BTC",
        "ethereum":      "ETH",
        "binancecoin":   "BNB",
        "solana":        "SOL",
        "ripple":        "XRP",
        "cardano":       "ADA",
        "dogecoin":      "DOGE",
        "tron":          "TRX",
        "polkadot":      "DOT",
        "litecoin":      "LTC",
        "chainlink":     "LINK",
        "avalanche-2":   "AVAX",
        "matic-network": "MATIC",
        "uniswap":       "UNI",
        "stellar":       "XLM",
    }

    # recipe currency → Binance quote asset
    QUOTES: ClassVar[dict[str, str]] = {
        "usd": "USDT",
        "usdt": "USDT",
        "eur": "EUR",
        "btc": "BTC",
    }

    def trading_pair(self, coin_id: str, currency: str) -> str:
        base = self.SYMBOLS.get(coin_id.lower(), coin_id.upper())
        quote = self.QUOTES.get(currency.lower(), "USDT")
        return f"{base}{quote}"

    async def fetch(
        self,
        spec: DatasetSpec,
        params: FetchParams,
        credential: Credential,
    ) -> RawPayload:
        self._check_kind(spec)
        if not params.coin_ids:
            raise ProviderError(
                ProviderErrorKind.NOT_FOUND, "No coin given for OHLCV", provider=self.provider_id
            )
        days = params.days or 30
        if spec.kind == "ohlcv-intraday":
            interval, limit = "1h", days * 24
        else:
            interval, limit = "1d", days
        return await self._get_json(
            f"{self.BASE_URL}/klines",
            params={
                "symbol": self.trading_pair(params.coin_ids[0], params.currency),
                "interval": interval,
                "limit": min(limit, self.MAX_LIMIT),
            },
        )

    def normalize(
        self,
        payload: RawPayload,
        spec: DatasetSpec,
        params: FetchParams,
    ) -> NormalizedTable:
        if not isinstance(payload, list):
            raise self._shape_error("klines payload is not a list")
        rows = []
        for kline in payload:
            if not isinstance(kline, list) or len(kline) < 9:
                raise self._shape_error("kline entry has fewer than 9 fields")
            rows.append({
                "open_time": from_epoch_ms(kline[0]),
                "open": to_float(kline[1]),
                "high": to_float(kline[2]),
                "low": to_float(kline[3]),
                "close": to_float(kline[4]),
                "volume": to_float(kline[5]),
                "quote_volume": to_float(kline[7]),
                "trades": to_int(kline[8]),
            })
        return select_metrics(_OHLCV_COLUMNS, rows, params.metrics, ("open_time",))

    def _classify(self, response: httpx.Response) -> Optional[ProviderError]:
        if response.status_code == 418:
            return ProviderError(
                ProviderErrorKind.RATE_LIMITED,
                "binance responded with HTTP 418 (rate-limit ban)",
                provider=self.provider_id,
                status_code=418,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        if response.status_code == 400 and _binance_code(response) == -1121:
            return ProviderError(
                ProviderErrorKind.NOT_FOUND,
                "binance does not list the requested trading pair",
                provider=self.provider_id,
                status_code=400,
            )
        return super()._classify(response)


def _binance_code(response: httpx.Response) -> Optional[int]:
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get("code") if isinstance(body, dict) else None
