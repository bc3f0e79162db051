"""
report_kit — recipe execution and report assembly for crypto market data.

A recipe names datasets (price, OHLCV, DeFi TVL, ...); the engine fetches
them concurrently from third-party providers under the caller's own API
keys, enforces each source's redistribution licence, and assembles a
workbook (download) or JSON preview.
"""

__version__ = "0.1.0"
