"""
Etherscan adapter — address transaction history, API key required.

API:   https://api.etherscan.io/v2/api?chainid=1&module=account&action=txlist
Docs:  https://docs.etherscan.io/

Etherscan answers almost every request with HTTP 200 and reports failures in
the body (``{"status": "0", "message": "NOTOK", "result": "<reason>"}``).
``_raise_for_body`` maps those reasons onto provider error kinds:

  "Invalid API Key" / "Missing API Key"   → AuthError
  "Max rate limit reached"                → RateLimited
  "No transactions found"                 → empty result (not an error here)
  anything else with status "0"           → Unknown

Addresses are fetched one after another within the dataset.
"""

from __future__ import annotations

from typing import Any, ClassVar

from report_kit.errors import ProviderError, ProviderErrorKind
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
from report_kit.utils.time_utils import from_epoch_s

_WEI_PER_ETH = 10**18

_TX_COLUMNS = (
    ColumnDef(name="address", type=ColumnType.TEXT),
    ColumnDef(name="hash", type=ColumnType.TEXT),
    ColumnDef(name="block_number", type=ColumnType.INTEGER),
    ColumnDef(name="timestamp", type=ColumnType.TIMESTAMP),
    ColumnDef(name="from", type=ColumnType.TEXT),
    ColumnDef(name="to", type=ColumnType.TEXT),
    ColumnDef(name="value_eth", type=ColumnType.NUMBER),
    ColumnDef(name="gas_used", type=ColumnType.INTEGER),
    ColumnDef(name="is_error", type=ColumnType.BOOLEAN),
)


class EtherscanAdapter(ProviderAdapter):
    """Adapter for the Etherscan account API (Ethereum mainnet)."""

    provider_id: ClassVar[str] = "etherscan"
    supported_kinds: ClassVar[frozenset[str]] = frozenset({"address-transactions"})

    BASE_URL: ClassVar[str] = "https://api.etherscan.io/v2/api"
    CHAIN_ID: ClassVar[int] = 1
    DEFAULT_LIMIT: ClassVar[int] = 100

    async def fetch(
        self,
        spec: DatasetSpec,
        params: FetchParams,
        credential: Credential,
    ) -> RawPayload:
        self._check_kind(spec)
        if not isinstance(credential, (DemoKey, ProKey)):
            raise ProviderError(
                ProviderErrorKind.AUTH_ERROR,
                "etherscan requires an API key",
                provider=self.provider_id,
            )
        api_key = credential.secret.get_secret_value()

        results: list[tuple[str, list[dict[str, Any]]]] = []
        for address in params.coin_ids:
            body = await self._get_json(
                self.BASE_URL,
                params={
                    "chainid": self.CHAIN_ID,
                    "module": "account",
                    "action": "txlist",
                    "address": address,
                    "startblock": 0,
                    "endblock": 99999999,
                    "page": 1,
                    "offset": params.limit or self.DEFAULT_LIMIT,
                    "sort": "desc",
                    "apikey": api_key,
                },
            )
            results.append((address, self._raise_for_body(body)))
        return results

    def _raise_for_body(self, body: Any) -> list[dict[str, Any]]:
        if not isinstance(body, dict):
            raise self._shape_error("response is not an object")
        result = body.get("result")
        if str(body.get("status")) == "1" and isinstance(result, list):
            return result

        message = str(body.get("message", ""))
        detail = str(result or "")
        lowered = f"{message} {detail}".lower()
        if "no transactions found" in lowered:
            return []
        if "api key" in lowered:
            kind = ProviderErrorKind.AUTH_ERROR
        elif "rate limit" in lowered:
            kind = ProviderErrorKind.RATE_LIMITED
        else:
            kind = ProviderErrorKind.UNKNOWN
        # detail is Etherscan's own error text; it never echoes the key.
        raise ProviderError(kind, f"etherscan: {detail or message}", provider=self.provider_id)

    def normalize(
        self,
        payload: RawPayload,
        spec: DatasetSpec,
        params: FetchParams,
    ) -> NormalizedTable:
        if not isinstance(payload, list):
            raise self._shape_error("expected a list of (address, transactions)")
        rows = []
        for address, transactions in payload:
            for tx in transactions:
                value = to_float(tx.get("value"))
                rows.append({
                    "address": address,
                    "hash": tx.get("hash"),
                    "block_number": to_int(tx.get("blockNumber")),
                    "timestamp": from_epoch_s(tx["timeStamp"]) if tx.get("timeStamp") else None,
                    "from": tx.get("from"),
                    "to": tx.get("to"),
                    "value_eth": value / _WEI_PER_ETH if value is not None else None,
                    "gas_used": to_int(tx.get("gasUsed")),
                    "is_error": str(tx.get("isError", "0")) == "1",
                })
        return select_metrics(_TX_COLUMNS, rows, params.metrics, ("address", "hash"))
