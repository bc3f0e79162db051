"""
Shared pytest fixtures for the report_kit test suite.

Provides:
  - ``registry`` / ``policy``: a hermetic source registry mirroring the six
    classified providers (see ``fakes.make_sources``).
  - ``fake_adapters``: one scripted ``FakeAdapter`` per provider id.
  - ``free_context``: a keyless execution context on the free plan.
  - ``in_memory_db``: a fresh in-memory SQLite connection with the schema applied.
"""

from __future__ import annotations

import sqlite3
from typing import Generator

import pytest

from fakes import PROVIDER_IDS, FakeAdapter, context_for, make_sources
from report_kit.db.schema import apply_schema
from report_kit.governance.redistribution import RedistributionPolicy
from report_kit.governance.registry import SourceRegistry
from report_kit.models.credentials import ExecutionContext


# ── Registry and policy ───────────────────────────────────────────────────────

@pytest.fixture
def registry() -> SourceRegistry:
    return SourceRegistry(make_sources())


@pytest.fixture
def policy(registry: SourceRegistry) -> RedistributionPolicy:
    return RedistributionPolicy(registry)


# ── Engine doubles ────────────────────────────────────────────────────────────

@pytest.fixture
def fake_adapters() -> dict[str, FakeAdapter]:
    return {pid: FakeAdapter(pid) for pid in PROVIDER_IDS}


@pytest.fixture
def free_context() -> ExecutionContext:
    return context_for("free")


# ── Database fixture ──────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the schema applied.

    Foreign key enforcement is ON.  Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    apply_schema(conn)
    yield conn
    conn.close()
