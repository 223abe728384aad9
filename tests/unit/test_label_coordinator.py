"""
Unit tests for the Label Query Coordinator (services/label_coordinator.py)

Tests:
- Resolution order (local, cache, remote, mock)
- Negative caching
- Rate-limit and failure fallback
- Remote row selection
- Batch resolution
"""

import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from holder_risk.core.config import LabelConfig
from holder_risk.core.exceptions import LookupFailure
from holder_risk.core.label_store import LabelStore
from holder_risk.core.types import LabelSourceKind
from holder_risk.services.label_coordinator import select_remote_label
from holder_risk.services.mock_labels import (
    MockLabelStrategy,
    NoMockLabels,
    RandomExchangeMockLabels,
    StaticMockLabels,
    build_mock_strategy,
)


UNLABELED = "0x9999999999999999999999999999999999999999"
BINANCE = "0x3f5ce5fbfe3e9af3971dd833d26ba9b5c936f0be"


class TestResolutionOrder:
    """Test the local -> cache -> remote -> mock order"""

    @pytest.mark.asyncio
    async def test_local_store_wins(self, make_coordinator, label_source):
        """Test that a local label never reaches the remote source"""
        coordinator = make_coordinator(label_source)

        record = await coordinator.resolve_label(BINANCE.upper().replace("0X", "0x"))

        assert record.source == LabelSourceKind.LOCAL
        label_source.query_address_labels.assert_not_called()

    @pytest.mark.asyncio
    async def test_remote_result_is_cached(self, make_coordinator, label_source, metrics_collector):
        """Test that a second lookup is served from the cache"""
        label_source.query_address_labels.return_value = [
            {"owner_key": "kucoin", "custody_owner": "KuCoin", "blockchain": "bnb"}
        ]
        coordinator = make_coordinator(label_source)

        first = await coordinator.resolve_label(UNLABELED)
        second = await coordinator.resolve_label(UNLABELED)

        assert first.custody_owner == "KuCoin"
        assert first.source == LabelSourceKind.REMOTE
        assert second is first
        assert label_source.query_address_labels.await_count == 1
        assert metrics_collector.get_counter("label_cache_hits") == 1

    @pytest.mark.asyncio
    async def test_negative_result_is_cached(self, make_coordinator, label_source):
        """Test that an empty remote answer is cached as None"""
        coordinator = make_coordinator(label_source)

        assert await coordinator.resolve_label(UNLABELED) is None
        assert await coordinator.resolve_label(UNLABELED) is None
        assert label_source.query_address_labels.await_count == 1
        assert coordinator.stats()["cached_negatives"] == 1

    @pytest.mark.asyncio
    async def test_no_remote_source_uses_mock(self, make_coordinator):
        """Test that a missing remote source falls through to the mock strategy"""
        mock = StaticMockLabels({UNLABELED: {"owner_key": "okex", "custody_owner": "OKEx"}})
        coordinator = make_coordinator(None, mock_strategy=mock)

        record = await coordinator.resolve_label(UNLABELED)

        assert record.source == LabelSourceKind.MOCK
        assert record.custody_owner == "OKEx"
        assert coordinator.stats()["remote_available"] is False

    @pytest.mark.asyncio
    async def test_unconfigured_remote_source_uses_mock(self, make_coordinator, label_source):
        """Test that a remote source without credentials is never called"""
        label_source.is_configured = False
        coordinator = make_coordinator(label_source)

        assert await coordinator.resolve_label(UNLABELED) is None
        label_source.query_address_labels.assert_not_called()


class TestFallbacks:
    """Test rate limiting and remote failures"""

    @pytest.mark.asyncio
    async def test_rate_limited_request_uses_mock(self, make_coordinator, label_source, metrics_collector):
        """Test that a rejected request is answered by the mock strategy"""
        mock = StaticMockLabels({
            "0x0000000000000000000000000000000000000002": {"owner_key": "bybit", "custody_owner": "Bybit"}
        })
        coordinator = make_coordinator(label_source, max_requests=1, mock_strategy=mock)

        await coordinator.resolve_label("0x0000000000000000000000000000000000000001")
        record = await coordinator.resolve_label("0x0000000000000000000000000000000000000002")

        assert record.source == LabelSourceKind.MOCK
        assert label_source.query_address_labels.await_count == 1
        assert metrics_collector.get_counter("label_rate_limited") == 1

    @pytest.mark.asyncio
    async def test_remote_failure_falls_back_and_never_raises(self, make_coordinator, label_source, metrics_collector):
        """Test that a failing remote query degrades to the mock strategy"""
        label_source.query_address_labels.side_effect = LookupFailure("boom", source="dune")
        coordinator = make_coordinator(label_source)

        record = await coordinator.resolve_label(UNLABELED)

        assert record is None
        assert metrics_collector.get_counter("label_remote_failures") == 1

    @pytest.mark.asyncio
    async def test_unexpected_remote_error_is_contained(self, make_coordinator, label_source):
        label_source.query_address_labels.side_effect = RuntimeError("socket closed")
        coordinator = make_coordinator(label_source)

        assert await coordinator.resolve_label(UNLABELED) is None


class TestSelectRemoteLabel:
    """Test remote row selection"""

    def test_custody_owner_row_preferred(self):
        rows = [
            {"owner_key": "some_fund", "custody_owner": None, "blockchain": "bnb"},
            {"owner_key": "binance", "custody_owner": "Binance", "blockchain": "bnb"},
        ]

        record = select_remote_label(rows)

        assert record.custody_owner == "Binance"

    def test_owner_key_row_when_no_custody(self):
        rows = [{"owner_key": "wintermute", "custody_owner": None, "blockchain": "ethereum"}]

        assert select_remote_label(rows).owner_key == "wintermute"

    def test_other_chains_filtered(self):
        """Test that rows on non-target chains are ignored"""
        rows = [{"owner_key": "binance", "custody_owner": "Binance", "blockchain": "solana"}]

        assert select_remote_label(rows) is None
        assert select_remote_label(rows, ["solana"]).custody_owner == "Binance"

    def test_empty_rows(self):
        assert select_remote_label([]) is None
        assert select_remote_label(None) is None


class TestBatchResolution:
    """Test resolve_many"""

    @pytest.mark.asyncio
    async def test_delay_between_addresses_only(self, make_coordinator, label_source):
        """Test that the delay is applied between, not after, addresses"""
        sleep = AsyncMock()
        coordinator = make_coordinator(label_source, sleep=sleep, batch_delay_ms=1000)
        addresses = [f"0x{i:040x}" for i in range(1, 4)]

        results = await coordinator.resolve_many(addresses)

        assert list(results) == addresses
        assert sleep.await_count == 2
        sleep.assert_awaited_with(1.0)

    @pytest.mark.asyncio
    async def test_failure_records_none_and_continues(self, make_coordinator, label_source):
        """Test that one failing address does not abort the batch"""
        coordinator = make_coordinator(label_source)
        original = coordinator.resolve_label

        async def flaky(address):
            if address.endswith("2"):
                raise RuntimeError("unexpected")
            return await original(address)

        coordinator.resolve_label = flaky
        results = await coordinator.resolve_many([BINANCE, "0x" + "2" * 40])

        assert results[BINANCE].custody_owner == "Binance"
        assert results["0x" + "2" * 40] is None


class TestCoordinatorMaintenance:
    """Test stats, cache clearing and store replacement"""

    @pytest.mark.asyncio
    async def test_clear_cache(self, make_coordinator, label_source):
        coordinator = make_coordinator(label_source)
        await coordinator.resolve_label(UNLABELED)

        coordinator.clear_cache()
        await coordinator.resolve_label(UNLABELED)

        assert label_source.query_address_labels.await_count == 2

    @pytest.mark.asyncio
    async def test_replace_store(self, make_coordinator, label_source):
        """Test that a replaced store is consulted and the cache is dropped"""
        coordinator = make_coordinator(label_source)
        await coordinator.resolve_label(UNLABELED)

        coordinator.replace_store(LabelStore.from_records([
            {"wallet_address": UNLABELED, "owner_key": "treasury"}
        ]))
        record = await coordinator.resolve_label(UNLABELED)

        assert record.owner_key == "treasury"
        assert coordinator.stats()["cache_size"] == 0


class TestMockStrategies:
    """Test the injectable fallback strategies"""

    def test_no_mock(self):
        assert NoMockLabels().synthesize(UNLABELED) is None

    def test_random_strategy_is_seeded(self):
        """Test that equal seeds give equal labels"""
        first = RandomExchangeMockLabels(random.Random(7), hit_rate=0.5)
        second = RandomExchangeMockLabels(random.Random(7), hit_rate=0.5)
        addresses = [f"0x{i:040x}" for i in range(50)]

        assert [first.synthesize(a) for a in addresses] == [second.synthesize(a) for a in addresses]

    def test_random_strategy_hit_rate_bounds(self):
        always = RandomExchangeMockLabels(random.Random(1), hit_rate=1.0)
        never = RandomExchangeMockLabels(random.Random(1), hit_rate=0.0)

        assert always.synthesize(UNLABELED).source == LabelSourceKind.MOCK
        assert never.synthesize(UNLABELED) is None

    def test_random_strategy_with_stubbed_rng(self):
        rng = MagicMock()
        rng.random.return_value = 0.1
        rng.choice.return_value = ("huobi", "Huobi")

        record = RandomExchangeMockLabels(rng, hit_rate=0.3).synthesize(UNLABELED)

        assert record.custody_owner == "Huobi"
        assert record.blockchain == "bnb"

    @pytest.mark.parametrize("name,cls", [
        ("none", NoMockLabels),
        ("static", StaticMockLabels),
        ("random", RandomExchangeMockLabels),
    ])
    def test_build_from_config(self, name, cls):
        strategy = build_mock_strategy(LabelConfig(mock_strategy=name))

        assert isinstance(strategy, cls)
        assert isinstance(strategy, MockLabelStrategy)
        assert strategy.name == name

    def test_base_strategy_is_abstract(self):
        with pytest.raises(NotImplementedError):
            MockLabelStrategy().synthesize(UNLABELED)

    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            build_mock_strategy(LabelConfig(mock_strategy="always"))
