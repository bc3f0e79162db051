"""
Tests for providers/base.py — status mapping, transport errors, helpers.
"""

import asyncio

import httpx
import pytest

from report_kit.errors import ProviderError, ProviderErrorKind
from report_kit.models.credentials import NoKey
from report_kit.models.execution import ColumnDef
from report_kit.models.recipe import DatasetSpec
from report_kit.providers import build_adapters
from report_kit.providers.base import (
    FetchParams,
    error_for_response,
    parse_retry_after,
    select_metrics,
    to_float,
    to_int,
)
from report_kit.providers.defillama_client import DefiLlamaAdapter


def _response(status: int, headers=None) -> httpx.Response:
    return httpx.Response(status, headers=headers, request=httpx.Request("GET", "https://example.test/x"))


class TestStatusMapping:
    @pytest.mark.parametrize(
        "status, kind",
        [
            (401, ProviderErrorKind.AUTH_ERROR),
            (403, ProviderErrorKind.AUTH_ERROR),
            (404, ProviderErrorKind.NOT_FOUND),
            (429, ProviderErrorKind.RATE_LIMITED),
            (500, ProviderErrorKind.UNKNOWN),
            (502, ProviderErrorKind.UNKNOWN),
        ],
    )
    def test_status_to_kind(self, status, kind):
        error = error_for_response("defillama", _response(status))
        assert error is not None
        assert error.kind == kind
        assert error.status_code == status
        assert error.provider == "defillama"

    def test_success_is_not_an_error(self):
        assert error_for_response("defillama", _response(200)) is None

    def test_retry_after_is_parsed(self):
        error = error_for_response("defillama", _response(429, headers={"Retry-After": "12"}))
        assert error.retry_after == 12.0

    @pytest.mark.parametrize("value, expected", [("5", 5.0), ("-3", 0.0), ("", None), (None, None),
                                                 ("Wed, 21 Oct 2015 07:28:00 GMT", None)])
    def test_parse_retry_after(self, value, expected):
        assert parse_retry_after(value) == expected


class TestTransportErrors:
    def _fetch(self, handler):
        async def scenario():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                adapter = DefiLlamaAdapter(client, timeout=1.0)
                return await adapter.fetch(DatasetSpec(id="c", kind="defi-chains"), FetchParams(), NoKey())

        return asyncio.run(scenario())

    def test_timeout_maps_to_timeout_kind(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ProviderError) as info:
            self._fetch(handler)
        assert info.value.kind == ProviderErrorKind.TIMEOUT

    def test_connection_error_maps_to_unknown(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ProviderError) as info:
            self._fetch(handler)
        assert info.value.kind == ProviderErrorKind.UNKNOWN
        assert "api.llama.fi" not in str(info.value)

    def test_non_json_body(self):
        with pytest.raises(ProviderError, match="not JSON"):
            self._fetch(lambda request: httpx.Response(200, text="<html>"))

    def test_wrong_kind_is_rejected(self):
        async def scenario():
            async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))) as client:
                adapter = DefiLlamaAdapter(client)
                await adapter.fetch(DatasetSpec(id="p", kind="price"), FetchParams(), NoKey())

        with pytest.raises(ProviderError, match="does not serve dataset kind 'price'"):
            asyncio.run(scenario())


class TestHelpers:
    def test_numeric_coercion(self):
        assert to_float("1.5") == 1.5
        assert to_float("") is None
        assert to_float("n/a") is None
        assert to_int("42.0") == 42
        assert to_int(None) is None

    def test_select_metrics_keeps_keys_and_requested(self):
        columns = [ColumnDef(name="name"), ColumnDef(name="tvl"), ColumnDef(name="mcap")]
        rows = [{"name": "a", "tvl": 1.0, "mcap": 2.0}]
        table = select_metrics(columns, rows, ("tvl", "bogus"), ("name",))
        assert [c.name for c in table.columns] == ["name", "tvl"]
        assert table.rows == ({"name": "a", "tvl": 1.0},)

    def test_select_metrics_without_request_keeps_all(self):
        columns = [ColumnDef(name="name"), ColumnDef(name="tvl")]
        table = select_metrics(columns, [{"name": "a", "tvl": 1.0}], (), ("name",))
        assert [c.name for c in table.columns] == ["name", "tvl"]


def test_build_adapters_uses_registry_timeouts(registry):
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    adapters = build_adapters(client, registry, default_timeout=3.0)
    assert sorted(adapters) == sorted(
        ["coinlore", "binance", "coingecko", "defillama", "alternativeme", "etherscan"]
    )
    assert adapters["defillama"]._timeout == registry.get("defillama").timeout_seconds
    assert build_adapters(client)["binance"]._timeout == 15.0
