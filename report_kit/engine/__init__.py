"""
Recipe execution.

Modules:
  executor — ExecutionEngine: concurrent, failure-isolated dataset fetching.
  cache    — TtlCache: short-TTL cache for redistributable dataset tables.
"""

from report_kit.engine.cache import CacheEntry, TtlCache
from report_kit.engine.executor import EngineSettings, ExecutionEngine

__all__ = ["CacheEntry", "EngineSettings", "ExecutionEngine", "TtlCache"]
