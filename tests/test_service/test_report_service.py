"""
End-to-end tests for report_kit.service.ReportService.

Most tests wire the service by hand around ``FakeAdapter`` doubles and the
in-memory SQLite repositories; the last one goes through
``ReportService.from_config`` with real adapters on an ``httpx.MockTransport``.
"""

from __future__ import annotations

import asyncio
import io
from datetime import datetime, timezone

import httpx
import pytest
from openpyxl import load_workbook

from fakes import read_sheet_names
from report_kit.config import AppConfig
from report_kit.db.repositories import (
    ProviderKeyRepository,
    UsageEventRepository,
    UserPlanRepository,
)
from report_kit.engine.executor import ExecutionEngine
from report_kit.errors import PlanIncompatibleError, RecipeValidationError
from report_kit.models.credentials import DemoKey, ProviderKeyRecord
from report_kit.models.recipe import DatasetSpec, Recipe
from report_kit.recipe.validator import RecipeValidator
from report_kit.reporting.assembler import ReportAssembler
from report_kit.reporting.workbook import REPORT_SHEET
from report_kit.service import ReportRequest, ReportService
from report_kit.vault.key_vault import KeyVault, key_hint

MASTER_KEY = "service-test-master-key"
GENERATED_AT = datetime(2024, 3, 1, 12, 5, tzinfo=timezone.utc)


@pytest.fixture
def vault() -> KeyVault:
    return KeyVault(MASTER_KEY)


def _service(registry, policy, fake_adapters, conn, vault, strict: bool = True) -> ReportService:
    key_repo = ProviderKeyRepository(conn)
    return ReportService(
        engine=ExecutionEngine(fake_adapters, registry, policy, credential_store=key_repo),
        validator=RecipeValidator(registry, policy, strict_policy=strict),
        assembler=ReportAssembler(policy, registry),
        vault=vault,
        plan_lookup=UserPlanRepository(conn),
        credential_store=key_repo,
        usage_recorder=UsageEventRepository(conn),
    )


def _run(service: ReportService, request: ReportRequest):
    return asyncio.run(service.run(request, generated_at=GENERATED_AT))


def _recipe(*datasets: DatasetSpec) -> Recipe:
    return Recipe(id="market", name="Market Report", datasets=datasets)


# ── Happy paths ───────────────────────────────────────────────────────────────


def test_download_run_writes_workbook_and_usage(
    registry, policy, fake_adapters, in_memory_db, vault
) -> None:
    service = _service(registry, policy, fake_adapters, in_memory_db, vault)
    recipe = _recipe(
        DatasetSpec(id="prices", kind="price", coin_ids=("bitcoin", "ethereum")),
        DatasetSpec(id="fng", kind="fear-greed"),
    )

    outcome = _run(service, ReportRequest(user_id="alice", recipe=recipe, format="excel"))

    assert outcome.result.success
    assert outcome.artifact.filename == "market-report.xlsx"
    assert read_sheet_names(outcome.artifact.content) == [REPORT_SHEET, "prices", "fng"]
    assert outcome.validation.valid
    assert recipe.datasets[0].provider is None

    (event,) = UsageEventRepository(in_memory_db).list_for_user("alice")
    assert event.recipe_id == "market"
    assert event.metadata["format"] == "excel"
    assert event.metadata["success"] is True
    assert event.metadata["datasets_succeeded"] == 2
    assert event.metadata["credential_tiers"] == {"coinlore": "none", "alternativeme": "none"}


def test_free_plan_preview_of_price_and_ohlcv(
    registry, policy, fake_adapters, in_memory_db, vault
) -> None:
    service = _service(registry, policy, fake_adapters, in_memory_db, vault)
    recipe = _recipe(
        DatasetSpec(id="btc", kind="price", coin_ids=("bitcoin",)),
        DatasetSpec(id="eth_ohlcv", kind="ohlcv", coin_ids=("ethereum",), timeframe="30d"),
    )

    outcome = _run(service, ReportRequest(user_id="alice", recipe=recipe, format="json"))

    result = outcome.result
    assert result.success
    assert [d.status.value for d in result.datasets] == ["success", "success"]
    assert result.metadata.datasets_executed == 2
    assert result.metadata.datasets_succeeded == 2
    assert [d.dataset_id for d in result.datasets] == ["btc", "eth_ohlcv"]
    assert fake_adapters["binance"].fetched_ids() == ["eth_ohlcv"]
    assert outcome.artifact.payload["metadata"]["datasets_executed"] == 2


def test_lenient_policy_skips_display_only_dataset(
    registry, policy, fake_adapters, in_memory_db, vault
) -> None:
    service = _service(registry, policy, fake_adapters, in_memory_db, vault, strict=False)
    recipe = _recipe(
        DatasetSpec(id="prices", kind="price", coin_ids=("bitcoin",)),
        DatasetSpec(id="nfts", kind="nft-collection"),
    )

    outcome = _run(service, ReportRequest(user_id="alice", recipe=recipe, format="excel"))

    assert any("It will be excluded from the download." in w for w in outcome.validation.warnings)
    assert outcome.result.get("nfts").status.value == "skipped_by_policy"
    assert fake_adapters["coingecko"].calls == []
    assert len(outcome.artifact.warnings) == 1
    assert outcome.artifact.warnings[0].startswith("Dataset nfts: CoinGecko data is display-only")
    assert read_sheet_names(outcome.artifact.content) == [REPORT_SHEET, "prices"]


def test_stored_key_is_decrypted_for_the_run(
    registry, policy, fake_adapters, in_memory_db, vault
) -> None:
    ProviderKeyRepository(in_memory_db).save_key(
        ProviderKeyRecord(
            user_id="alice", provider="coingecko", key_type="demo",
            ciphertext=vault.encrypt("CG-demo-key-5678"), key_hint=key_hint("CG-demo-key-5678"),
        )
    )
    service = _service(registry, policy, fake_adapters, in_memory_db, vault)
    recipe = _recipe(DatasetSpec(id="snap", kind="market-snapshot", coin_ids=("bitcoin",)))

    outcome = _run(service, ReportRequest(user_id="alice", recipe=recipe, format="json"))

    (_, _, credential), = fake_adapters["coingecko"].calls
    assert isinstance(credential, DemoKey)
    assert credential.secret.get_secret_value() == "CG-demo-key-5678"
    assert outcome.artifact.payload["datasets"][0]["credential_tier"] == "demo"
    assert "CG-demo-key-5678" not in str(outcome.artifact.payload)


def test_undecryptable_key_is_invalidated_and_public_tier_used(
    registry, policy, fake_adapters, in_memory_db
) -> None:
    repo = ProviderKeyRepository(in_memory_db)
    repo.save_key(
        ProviderKeyRecord(
            user_id="alice", provider="coingecko", key_type="pro",
            ciphertext=KeyVault("some-other-master").encrypt("CG-pro-key"),
        )
    )
    service = _service(registry, policy, fake_adapters, in_memory_db, KeyVault(MASTER_KEY))
    recipe = _recipe(DatasetSpec(id="snap", kind="market-snapshot", coin_ids=("bitcoin",)))

    outcome = _run(service, ReportRequest(user_id="alice", recipe=recipe, format="json"))

    assert outcome.result.get("snap").credential_tier.value == "none"
    assert not repo.get_key("alice", "coingecko").is_valid


# ── Rejections ────────────────────────────────────────────────────────────────


def test_plan_incompatible(registry, policy, fake_adapters, in_memory_db, vault) -> None:
    service = _service(registry, policy, fake_adapters, in_memory_db, vault)
    recipe = _recipe(DatasetSpec(id="hourly", kind="ohlcv-intraday", coin_ids=("bitcoin",)))

    with pytest.raises(PlanIncompatibleError) as info:
        _run(service, ReportRequest(user_id="alice", recipe=recipe, format="json"))

    assert info.value.required_plan == "pro"
    assert info.value.reason == "Dataset hourly (ohlcv-intraday) requires Pro plan"
    assert fake_adapters["binance"].calls == []
    assert UsageEventRepository(in_memory_db).list_for_user("alice") == []


def test_plan_upgrade_unlocks_recipe(registry, policy, fake_adapters, in_memory_db, vault) -> None:
    UserPlanRepository(in_memory_db).set_user_plan("alice", "pro")
    service = _service(registry, policy, fake_adapters, in_memory_db, vault)
    recipe = _recipe(DatasetSpec(id="hourly", kind="ohlcv-intraday", coin_ids=("bitcoin",)))

    outcome = _run(service, ReportRequest(user_id="alice", recipe=recipe, format="json"))

    assert outcome.result.success


def test_strict_policy_rejects_display_only_download(
    registry, policy, fake_adapters, in_memory_db, vault
) -> None:
    service = _service(registry, policy, fake_adapters, in_memory_db, vault)
    recipe = _recipe(
        DatasetSpec(id="nfts", kind="nft-collection"),
        DatasetSpec(id="dup", kind="defi-chains"),
        DatasetSpec(id="dup", kind="defi-chains"),
    )

    with pytest.raises(RecipeValidationError) as info:
        _run(service, ReportRequest(user_id="alice", recipe=recipe, format="excel"))

    assert "Duplicate dataset ID: dup" in info.value.errors
    assert any(e.startswith("Dataset nfts: CoinGecko data is display-only") for e in info.value.errors)
    assert all(adapter.calls == [] for adapter in fake_adapters.values())


def test_unknown_format(registry, policy, fake_adapters, in_memory_db, vault) -> None:
    service = _service(registry, policy, fake_adapters, in_memory_db, vault)
    recipe = _recipe(DatasetSpec(id="chains", kind="defi-chains"))
    with pytest.raises(ValueError):
        _run(service, ReportRequest(user_id="alice", recipe=recipe, format="csv"))


# ── Wiring from configuration ─────────────────────────────────────────────────


def test_from_config_with_real_adapters(in_memory_db, monkeypatch) -> None:
    monkeypatch.delenv("REPORT_KIT_MASTER_KEY", raising=False)

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.llama.fi":
            return httpx.Response(200, json=[
                {"name": "Ethereum", "tokenSymbol": "ETH", "tvl": 6.0e10, "gecko_id": "ethereum"},
            ])
        if request.url.host == "api.alternative.me":
            return httpx.Response(200, json={"data": [
                {"value": "55", "value_classification": "Greed", "timestamp": "1709251200"},
            ]})
        return httpx.Response(404)

    recipe = _recipe(
        DatasetSpec(id="chains", kind="defi-chains"),
        DatasetSpec(id="fng", kind="fear-greed", timeframe="7d"),
        DatasetSpec(id="prices", kind="price", coin_ids=("bitcoin",)),
    )

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            service = ReportService.from_config(AppConfig(), in_memory_db, client)
            return await service.run(
                ReportRequest(user_id="bob", recipe=recipe, format="excel"), generated_at=GENERATED_AT
            )

    outcome = asyncio.run(scenario())

    assert outcome.result.success
    assert outcome.result.get("prices").error.code.value == "ProviderNotFound"
    assert read_sheet_names(outcome.artifact.content) == [REPORT_SHEET, "chains", "fng"]
    ws = load_workbook(io.BytesIO(outcome.artifact.content))["fng"]
    assert [c.value for c in ws[1]] == ["date", "value", "classification"]
    assert ws["B2"].value == 55
    (event,) = UsageEventRepository(in_memory_db).list_for_user("bob")
    assert event.metadata["datasets_failed"] == 1
