"""
Tests for governance/redistribution.py — the display / download gate.
"""

import pytest

from report_kit.errors import PolicyViolation, SourceConfigurationError
from report_kit.governance.models import Purpose
from report_kit.governance.redistribution import RedistributionPolicy


class TestBlockReason:
    def test_display_always_allowed(self, policy):
        for source_id in ("coinlore", "coingecko", "etherscan"):
            assert policy.block_reason(source_id, Purpose.DISPLAY) is None

    def test_redistributable_allowed_for_download(self, policy):
        assert policy.block_reason("coinlore", "download") is None
        assert policy.is_allowed("defillama", Purpose.DOWNLOAD)

    def test_display_only_blocked_for_download(self, policy):
        reason = policy.block_reason("coingecko", Purpose.DOWNLOAD)
        assert reason is not None
        assert "CoinGecko data is display-only" in reason
        assert "Data Redistribution License" in reason

    def test_unknown_source_is_configuration_error(self, policy):
        with pytest.raises(SourceConfigurationError):
            policy.block_reason("mystery", Purpose.DISPLAY)

    def test_unknown_purpose_rejected(self, policy):
        with pytest.raises(ValueError, match="Unknown purpose"):
            policy.block_reason("coinlore", "broadcast")


class TestAllowlist:
    def test_enforced_allowlist_blocks_unlisted(self, registry):
        policy = RedistributionPolicy(registry, allowlist=["coinlore"], enforce_allowlist=True)
        assert policy.is_allowed("coinlore", Purpose.DOWNLOAD)
        reason = policy.block_reason("binance", Purpose.DOWNLOAD)
        assert reason == 'Source "binance" is not in the redistributable sources allowlist.'

    def test_unenforced_allowlist_is_ignored(self, registry):
        policy = RedistributionPolicy(registry, allowlist=["coinlore"], enforce_allowlist=False)
        assert policy.is_allowed("binance", Purpose.DOWNLOAD)

    def test_allowlist_never_unblocks_display_only(self, registry):
        policy = RedistributionPolicy(registry, allowlist=["coingecko"], enforce_allowlist=True)
        assert not policy.is_allowed("coingecko", Purpose.DOWNLOAD)


class TestAssertAllowed:
    def test_all_allowed_passes(self, policy):
        policy.assert_allowed(["coinlore", "binance", "coinlore"], Purpose.DOWNLOAD)

    def test_one_blocked_fails_whole_set(self, policy):
        with pytest.raises(PolicyViolation) as exc_info:
            policy.assert_allowed(["coinlore", "etherscan", "coingecko"], Purpose.DOWNLOAD)
        exc = exc_info.value
        assert exc.source_ids == ["coingecko", "etherscan"]
        assert exc.purpose == "download"
        assert "CoinGecko" in exc.reason

    def test_display_set_passes(self, policy):
        policy.assert_allowed(["coingecko", "etherscan"], Purpose.DISPLAY)


class TestCacheable:
    def test_only_redistributable_is_cacheable(self, policy, registry):
        assert policy.is_cacheable("coinlore")
        assert policy.is_cacheable(registry.get("alternativeme"))
        assert not policy.is_cacheable("coingecko")
        assert not policy.is_cacheable("etherscan")
