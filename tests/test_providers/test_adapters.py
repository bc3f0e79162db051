"""
Tests for the six provider adapters against ``httpx.MockTransport``.

Each test captures the outgoing requests so URL, query and auth headers
can be asserted without network access.
"""

import asyncio
from datetime import date, datetime, timezone

import httpx
import pytest
from pydantic import SecretStr

from report_kit.errors import ProviderError, ProviderErrorKind
from report_kit.models.credentials import DemoKey, NoKey, ProKey
from report_kit.models.execution import ColumnType
from report_kit.models.recipe import DatasetSpec
from report_kit.providers.alternative_client import AlternativeMeAdapter
from report_kit.providers.base import FetchParams
from report_kit.providers.binance_client import BinanceAdapter
from report_kit.providers.coingecko_client import CoinGeckoAdapter
from report_kit.providers.coinlore_client import CoinLoreAdapter
from report_kit.providers.defillama_client import DefiLlamaAdapter
from report_kit.providers.etherscan_client import EtherscanAdapter


def run_adapter(adapter_cls, handler, spec, params, credential=None):
    """Fetch and normalize through ``adapter_cls``; return (table, requests)."""
    requests: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(recording)) as client:
            adapter = adapter_cls(client, timeout=2.0)
            payload = await adapter.fetch(spec, params, credential or NoKey())
            return adapter.normalize(payload, spec, params)

    return asyncio.run(scenario()), requests


def fetch_error(adapter_cls, handler, spec, params, credential=None) -> ProviderError:
    with pytest.raises(ProviderError) as info:
        run_adapter(adapter_cls, handler, spec, params, credential)
    return info.value


# ── CoinLore ──────────────────────────────────────────────────────────────────

TICKERS = [
    {"id": "90", "symbol": "BTC", "name": "Bitcoin", "nameid": "bitcoin", "rank": 1,
     "price_usd": "65000.12", "percent_change_24h": "1.25", "percent_change_1h": "0.10",
     "percent_change_7d": "-2.00", "market_cap_usd": "1280000000000", "volume24": 31000000000,
     "csupply": "19700000.00"},
    {"id": "80", "symbol": "ETH", "name": "Ethereum", "nameid": "ethereum", "rank": 2,
     "price_usd": "3200.50", "percent_change_24h": "-0.50", "percent_change_1h": "",
     "percent_change_7d": "4.00", "market_cap_usd": "385000000000", "volume24": 15000000000,
     "csupply": "120000000.00"},
]


class TestCoinLore:
    def test_price_matches_slugs_in_requested_order(self):
        def handler(request):
            return httpx.Response(200, json={"data": TICKERS, "info": {"coins_num": 2}})

        spec = DatasetSpec(id="prices", kind="price", coin_ids=("ethereum", "bitcoin"))
        table, requests = run_adapter(
            CoinLoreAdapter, handler, spec, FetchParams(coin_ids=("ethereum", "bitcoin"))
        )

        assert [r["coin_id"] for r in table.rows] == ["ethereum", "bitcoin"]
        btc = table.rows[1]
        assert btc["price_usd"] == 65000.12
        assert btc["change_24h_pct"] == pytest.approx(0.0125)
        assert btc["rank"] == 1
        assert table.rows[0]["change_1h_pct"] is None
        assert len(requests) == 1
        assert requests[0].url.path == "/api/tickers/"
        assert requests[0].url.params["start"] == "0"

    def test_price_pages_until_found(self):
        def handler(request):
            start = int(request.url.params["start"])
            if start == 0:
                return httpx.Response(200, json={"data": [TICKERS[0]]})
            if start == 100:
                return httpx.Response(200, json={"data": [TICKERS[1]]})
            return httpx.Response(200, json={"data": []})

        params = FetchParams(coin_ids=("bitcoin", "ethereum"))
        table, requests = run_adapter(
            CoinLoreAdapter, handler, DatasetSpec(id="p", kind="price"), params
        )
        assert len(table.rows) == 2
        assert len(requests) == 2

    def test_metrics_projection(self):
        params = FetchParams(coin_ids=("bitcoin",), metrics=("price_usd",))
        table, _ = run_adapter(
            CoinLoreAdapter, lambda r: httpx.Response(200, json={"data": TICKERS}),
            DatasetSpec(id="p", kind="price"), params,
        )
        assert [c.name for c in table.columns] == ["coin_id", "symbol", "price_usd"]
        assert table.columns[2].type == ColumnType.CURRENCY

    def test_global_market(self):
        body = [{"coins_count": 12000, "active_markets": 30000, "total_mcap": 2.4e12,
                 "total_volume": 9.1e10, "btc_d": "52.10", "eth_d": "16.40",
                 "mcap_change": "1.2", "volume_change": "-3.0"}]
        table, requests = run_adapter(
            CoinLoreAdapter, lambda r: httpx.Response(200, json=body),
            DatasetSpec(id="g", kind="global-market"), FetchParams(),
        )
        assert requests[0].url.path == "/api/global/"
        assert table.rows[0]["btc_dominance_pct"] == pytest.approx(0.521)
        assert table.rows[0]["coins_count"] == 12000


# ── Binance ───────────────────────────────────────────────────────────────────

KLINE = [1709251200000, "61000.0", "63000.0", "60500.0", "62500.5", "1234.5",
         1709337599999, "76543210.1", 98765, "600.0", "37000000.0", "0"]


class TestBinance:
    def test_daily_klines(self):
        spec = DatasetSpec(id="btc", kind="ohlcv", coin_ids=("bitcoin",))
        params = FetchParams(coin_ids=("bitcoin",), days=7)
        table, requests = run_adapter(
            BinanceAdapter, lambda r: httpx.Response(200, json=[KLINE]), spec, params
        )
        query = requests[0].url.params
        assert requests[0].url.path == "/api/v3/klines"
        assert query["symbol"] == "BTCUSDT"
        assert query["interval"] == "1d"
        assert query["limit"] == "7"
        row = table.rows[0]
        assert row["open_time"] == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert row["close"] == 62500.5
        assert row["trades"] == 98765

    def test_intraday_limit_is_hours_capped(self):
        spec = DatasetSpec(id="btc", kind="ohlcv-intraday", coin_ids=("eth",))
        params = FetchParams(coin_ids=("eth",), currency="eur", days=365)
        _, requests = run_adapter(BinanceAdapter, lambda r: httpx.Response(200, json=[KLINE]), spec, params)
        query = requests[0].url.params
        assert query["symbol"] == "ETHEUR"
        assert query["interval"] == "1h"
        assert query["limit"] == "1000"

    def test_418_is_rate_limited(self):
        error = fetch_error(
            BinanceAdapter, lambda r: httpx.Response(418, headers={"Retry-After": "60"}),
            DatasetSpec(id="btc", kind="ohlcv"), FetchParams(coin_ids=("bitcoin",), days=7),
        )
        assert error.kind == ProviderErrorKind.RATE_LIMITED
        assert error.retry_after == 60.0

    def test_invalid_symbol_is_not_found(self):
        error = fetch_error(
            BinanceAdapter,
            lambda r: httpx.Response(400, json={"code": -1121, "msg": "Invalid symbol."}),
            DatasetSpec(id="x", kind="ohlcv"), FetchParams(coin_ids=("nosuchcoin",), days=7),
        )
        assert error.kind == ProviderErrorKind.NOT_FOUND

    def test_short_kline_is_shape_error(self):
        error = fetch_error(
            BinanceAdapter, lambda r: httpx.Response(200, json=[[1, 2, 3]]),
            DatasetSpec(id="btc", kind="ohlcv"), FetchParams(coin_ids=("bitcoin",), days=7),
        )
        assert error.kind == ProviderErrorKind.UNKNOWN
        assert "fewer than 9 fields" in str(error)


# ── CoinGecko ─────────────────────────────────────────────────────────────────

MARKETS = [{"id": "bitcoin", "symbol": "btc", "name": "Bitcoin", "market_cap_rank": 1,
            "current_price": 65000, "market_cap": 1.28e12, "total_volume": 3.1e10,
            "price_change_percentage_24h": 2.5, "circulating_supply": 19700000,
            "ath": 73750, "last_updated": "2024-03-01T12:00:00.000Z"}]


class TestCoinGecko:
    @pytest.mark.parametrize(
        "credential, host, header",
        [
            (ProKey(secret=SecretStr("cg-pro-key")), "pro-api.coingecko.com", "x-cg-pro-api-key"),
            (DemoKey(secret=SecretStr("cg-demo-key")), "api.coingecko.com", "x-cg-demo-api-key"),
            (NoKey(), "api.coingecko.com", None),
        ],
    )
    def test_tier_selects_host_and_header(self, credential, host, header):
        spec = DatasetSpec(id="snap", kind="market-snapshot", coin_ids=("bitcoin",))
        table, requests = run_adapter(
            CoinGeckoAdapter, lambda r: httpx.Response(200, json=MARKETS),
            spec, FetchParams(coin_ids=("bitcoin",)), credential,
        )
        request = requests[0]
        assert request.url.host == host
        assert request.url.params["ids"] == "bitcoin"
        for name in ("x-cg-pro-api-key", "x-cg-demo-api-key"):
            if name == header:
                assert request.headers[name] == credential.secret.get_secret_value()
            else:
                assert name not in request.headers
        assert table.rows[0]["price_change_24h_pct"] == pytest.approx(0.025)

    def test_nft_listing(self):
        body = [{"id": "cryptopunks", "name": "CryptoPunks", "symbol": "PUNK",
                 "asset_platform_id": "ethereum", "contract_address": "0xb47e"}]
        table, requests = run_adapter(
            CoinGeckoAdapter, lambda r: httpx.Response(200, json=body),
            DatasetSpec(id="nfts", kind="nft-collection"), FetchParams(limit=10),
        )
        assert requests[0].url.path == "/api/v3/nfts/list"
        assert requests[0].url.params["per_page"] == "10"
        assert table.rows[0]["collection_id"] == "cryptopunks"

    def test_auth_failure_message_has_no_key(self):
        error = fetch_error(
            CoinGeckoAdapter, lambda r: httpx.Response(401),
            DatasetSpec(id="snap", kind="market-snapshot"), FetchParams(coin_ids=("bitcoin",)),
            DemoKey(secret=SecretStr("cg-demo-secret")),
        )
        assert error.kind == ProviderErrorKind.AUTH_ERROR
        assert "cg-demo-secret" not in str(error)
        assert "coingecko.com" not in str(error)


# ── DeFi Llama ────────────────────────────────────────────────────────────────


class TestDefiLlama:
    def test_chains_sorted_by_tvl_and_limited(self):
        body = [
            {"name": "Tron", "tokenSymbol": "TRX", "tvl": 8.0e9, "gecko_id": "tron"},
            {"name": "Ethereum", "tokenSymbol": "ETH", "tvl": 6.0e10, "gecko_id": "ethereum"},
            {"name": "Solana", "tokenSymbol": "SOL", "tvl": 5.0e9, "gecko_id": "solana"},
        ]
        table, requests = run_adapter(
            DefiLlamaAdapter, lambda r: httpx.Response(200, json=body),
            DatasetSpec(id="chains", kind="defi-chains"), FetchParams(limit=2),
        )
        assert requests[0].url.path == "/v2/chains"
        assert [r["name"] for r in table.rows] == ["Ethereum", "Tron"]

    def test_protocols_percentages(self):
        body = [{"name": "Lido", "slug": "lido", "symbol": "LDO", "category": "Liquid Staking",
                 "chain": "Multi-Chain", "tvl": 3.0e10, "change_1d": 1.5, "change_7d": -2.0,
                 "mcap": 2.0e9}]
        table, _ = run_adapter(
            DefiLlamaAdapter, lambda r: httpx.Response(200, json=body),
            DatasetSpec(id="protocols", kind="defi-protocols"), FetchParams(),
        )
        assert table.rows[0]["change_1d_pct"] == pytest.approx(0.015)
        assert table.rows[0]["market_cap_usd"] == 2.0e9

    def test_not_found(self):
        error = fetch_error(
            DefiLlamaAdapter, lambda r: httpx.Response(404),
            DatasetSpec(id="chains", kind="defi-chains"), FetchParams(),
        )
        assert error.kind == ProviderErrorKind.NOT_FOUND


# ── Alternative.me ────────────────────────────────────────────────────────────


class TestAlternativeMe:
    def test_history_is_chronological(self):
        body = {"name": "Fear and Greed Index", "data": [
            {"value": "72", "value_classification": "Greed", "timestamp": "1709337600"},
            {"value": "65", "value_classification": "Greed", "timestamp": "1709251200"},
        ]}
        table, requests = run_adapter(
            AlternativeMeAdapter, lambda r: httpx.Response(200, json=body),
            DatasetSpec(id="fng", kind="fear-greed"), FetchParams(days=7),
        )
        assert requests[0].url.params["limit"] == "7"
        assert [r["date"] for r in table.rows] == [date(2024, 3, 1), date(2024, 3, 2)]
        assert table.rows[1]["value"] == 72

    def test_missing_data_is_shape_error(self):
        error = fetch_error(
            AlternativeMeAdapter, lambda r: httpx.Response(200, json={"metadata": {}}),
            DatasetSpec(id="fng", kind="fear-greed"), FetchParams(days=7),
        )
        assert "missing 'data'" in str(error)


# ── Etherscan ─────────────────────────────────────────────────────────────────

ETHERSCAN_KEY = DemoKey(secret=SecretStr("ES-KEY-1234"))


class TestEtherscan:
    def test_transactions_per_address(self):
        tx = {"hash": "0xh1", "blockNumber": "19000000", "timeStamp": "1709251200",
              "from": "0xa", "to": "0xb", "value": "1500000000000000000", "gasUsed": "21000",
              "isError": "0"}

        def handler(request):
            if request.url.params["address"] == "0xa":
                return httpx.Response(200, json={"status": "1", "message": "OK", "result": [tx]})
            return httpx.Response(200, json={"status": "0", "message": "No transactions found", "result": []})

        params = FetchParams(coin_ids=("0xa", "0xempty"), limit=25)
        table, requests = run_adapter(
            EtherscanAdapter, handler, DatasetSpec(id="txs", kind="address-transactions"),
            params, ETHERSCAN_KEY,
        )
        assert len(requests) == 2
        assert requests[0].url.params["apikey"] == "ES-KEY-1234"
        assert requests[0].url.params["offset"] == "25"
        assert len(table.rows) == 1
        row = table.rows[0]
        assert row["value_eth"] == pytest.approx(1.5)
        assert row["is_error"] is False
        assert row["timestamp"] == datetime(2024, 3, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "body, kind",
        [
            ({"status": "0", "message": "NOTOK", "result": "Invalid API Key"}, ProviderErrorKind.AUTH_ERROR),
            ({"status": "0", "message": "NOTOK", "result": "Max rate limit reached"},
             ProviderErrorKind.RATE_LIMITED),
            ({"status": "0", "message": "NOTOK", "result": "Error! Invalid address format"},
             ProviderErrorKind.UNKNOWN),
        ],
    )
    def test_body_errors(self, body, kind):
        error = fetch_error(
            EtherscanAdapter, lambda r: httpx.Response(200, json=body),
            DatasetSpec(id="txs", kind="address-transactions"), FetchParams(coin_ids=("0xa",)),
            ETHERSCAN_KEY,
        )
        assert error.kind == kind
        assert "ES-KEY-1234" not in str(error)

    def test_requires_key(self):
        calls = []
        error = fetch_error(
            EtherscanAdapter, lambda r: calls.append(r) or httpx.Response(200),
            DatasetSpec(id="txs", kind="address-transactions"), FetchParams(coin_ids=("0xa",)),
        )
        assert error.kind == ProviderErrorKind.AUTH_ERROR
        assert calls == []

    def test_http_error_message_omits_query_key(self):
        error = fetch_error(
            EtherscanAdapter, lambda r: httpx.Response(503),
            DatasetSpec(id="txs", kind="address-transactions"), FetchParams(coin_ids=("0xa",)),
            ETHERSCAN_KEY,
        )
        assert error.kind == ProviderErrorKind.UNKNOWN
        assert "ES-KEY-1234" not in str(error)
