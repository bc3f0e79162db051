"""
Provider adapters — one uniform fetch capability per upstream data source.

Submodules:
  base               — ProviderAdapter ABC, FetchParams, HTTP status mapping
  coinlore_client    — CoinLore prices and global market (public)
  binance_client     — Binance klines / OHLCV (public)
  coingecko_client   — CoinGecko markets and NFTs (display-only; pro/demo/public)
  defillama_client   — DeFi Llama protocols and chains (public)
  alternative_client — Alternative.me Fear & Greed Index (public)
  etherscan_client   — Etherscan address transactions (key required)

User keys never come from the environment here; they are decrypted per run
from the credential store and passed to ``fetch()`` as a credential variant.
"""

from __future__ import annotations

from typing import Optional

import httpx

from report_kit.governance.registry import SourceRegistry
from report_kit.providers.alternative_client import AlternativeMeAdapter
from report_kit.providers.base import FetchParams, ProviderAdapter
from report_kit.providers.binance_client import BinanceAdapter
from report_kit.providers.coingecko_client import CoinGeckoAdapter
from report_kit.providers.coinlore_client import CoinLoreAdapter
from report_kit.providers.defillama_client import DefiLlamaAdapter
from report_kit.providers.etherscan_client import EtherscanAdapter

ADAPTER_CLASSES: tuple[type[ProviderAdapter], ...] = (
    CoinLoreAdapter,
    BinanceAdapter,
    CoinGeckoAdapter,
    DefiLlamaAdapter,
    AlternativeMeAdapter,
    EtherscanAdapter,
)


def build_adapters(
    client: httpx.AsyncClient,
    registry: Optional[SourceRegistry] = None,
    default_timeout: float = 15.0,
) -> dict[str, ProviderAdapter]:
    """Instantiate every adapter on a shared client, keyed by provider id.

    Per-source ``timeout_seconds`` from the registry override ``default_timeout``.
    """
    adapters: dict[str, ProviderAdapter] = {}
    for cls in ADAPTER_CLASSES:
        timeout = default_timeout
        if registry is not None:
            source = registry.find(cls.provider_id)
            if source is not None:
                timeout = source.timeout_seconds
        adapters[cls.provider_id] = cls(client, timeout=timeout)
    return adapters


__all__ = [
    "ADAPTER_CLASSES",
    "AlternativeMeAdapter",
    "BinanceAdapter",
    "CoinGeckoAdapter",
    "CoinLoreAdapter",
    "DefiLlamaAdapter",
    "EtherscanAdapter",
    "FetchParams",
    "ProviderAdapter",
    "build_adapters",
]
