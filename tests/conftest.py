"""
Pytest configuration and shared fixtures
These fixtures are available to all test files
"""

from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import yaml

from holder_risk.core.label_store import LabelStore
from holder_risk.core.metrics import MetricsCollector
from holder_risk.core.rate_limiter import SlidingWindowRateLimiter
from holder_risk.core.types import Transaction
from holder_risk.services.label_coordinator import LabelQueryCoordinator


SUBJECT = "0x1111111111111111111111111111111111111111"
DAY = 86400
# Midnight UTC, so day-bucket arithmetic in tests is predictable
BASE_TS = 1_699_920_000


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def subject() -> str:
    """Address under analysis in behavior tests"""
    return SUBJECT


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def metrics_collector() -> MetricsCollector:
    """
    Create fresh metrics collector for each test

    Returns clean MetricsCollector instance
    """
    collector = MetricsCollector()
    yield collector
    collector.reset()


@pytest.fixture
def make_tx() -> Callable[..., Transaction]:
    """
    Factory for Transaction objects

    Usage: make_tx(sender, receiver, timestamp, token="0xtoken0")
    """
    def _make(from_address: str, to_address: str, timestamp: int,
              token: str = "0xtoken0", value: int = 10 ** 18) -> Transaction:
        return Transaction(
            from_address=from_address.lower(),
            to_address=to_address.lower(),
            contract_address=token,
            timestamp=timestamp,
            value=value,
            token_decimal=18,
        )
    return _make


@pytest.fixture
def market_maker_transactions(make_tx) -> List[Transaction]:
    """
    120 transfers: 40 incoming / 80 outgoing, 30 minutes apart, 6 tokens
    """
    txs = []
    for i in range(120):
        token = f"0xtoken{i % 6}"
        ts = BASE_TS + i * 1800
        if i % 3 == 0:
            txs.append(make_tx(f"0xpeer{i:036d}", SUBJECT, ts, token))
        else:
            txs.append(make_tx(SUBJECT, f"0xpeer{i:036d}", ts, token))
    return txs


@pytest.fixture
def vesting_transactions(make_tx) -> List[Transaction]:
    """12 outgoing releases exactly 30 days apart"""
    return [
        make_tx(SUBJECT, "0x2222222222222222222222222222222222222222", BASE_TS + i * 30 * DAY)
        for i in range(12)
    ]


@pytest.fixture
def label_records() -> List[Dict[str, Any]]:
    """Sample local label dataset rows"""
    return [
        {
            "wallet_address": "0x3F5CE5FBFE3E9AF3971DD833D26BA9B5C936F0BE",
            "owner_key": "binance",
            "custody_owner": "Binance",
            "blockchain": "bnb",
        },
        {
            "wallet_address": "0x4444444444444444444444444444444444444444",
            "owner_key": "project_team_vesting",
            "custody_owner": None,
            "blockchain": "bnb",
        },
        {
            "wallet_address": "0x5555555555555555555555555555555555555555",
            "owner_key": "wintermute",
            "custody_owner": None,
            "blockchain": "ethereum",
        },
    ]


@pytest.fixture
def label_store(label_records) -> LabelStore:
    return LabelStore.from_records(label_records)


@pytest.fixture
def label_source() -> MagicMock:
    """Remote label source answering with no rows"""
    source = MagicMock()
    source.is_configured = True
    source.query_address_labels = AsyncMock(return_value=[])
    return source


@pytest.fixture
def chain_source() -> MagicMock:
    """Chain data source with no history and no code"""
    source = MagicMock()
    source.is_configured = True
    source.get_transactions = AsyncMock(return_value=[])
    source.is_contract = AsyncMock(return_value=False)
    return source


@pytest.fixture
def make_coordinator(label_store, metrics_collector, fake_clock):
    """Factory for a LabelQueryCoordinator with deterministic collaborators"""
    def _make(label_source: Optional[Any] = None, max_requests: int = 100, **kwargs):
        return LabelQueryCoordinator(
            store=kwargs.pop("store", label_store),
            label_source=label_source,
            rate_limiter=SlidingWindowRateLimiter(max_requests, 60.0, clock=fake_clock),
            metrics=metrics_collector,
            sleep=kwargs.pop("sleep", AsyncMock()),
            **kwargs
        )
    return _make


@pytest.fixture
def test_config_dict() -> Dict[str, Any]:
    """
    Sample configuration dictionary for testing

    Returns valid config that can be modified per test
    """
    return {
        "labels": {
            "query_id": 42,
            "target_chains": ["BNB", "ethereum"],
            "mock_strategy": "static",
            "static_labels": {
                "0xabc": {"owner_key": "okex", "custody_owner": "OKEx"}
            },
            "batch_delay_ms": 250,
        },
        "rate_limit": {"max_requests": 10, "window_s": 30},
        "classifier": {
            "label_confidence_threshold": 0.7,
            "batch_size": 3,
            "batch_delay_s": 0.5,
        },
        "concentration": {"whale_threshold": 2.5, "top_n_levels": [1, 3]},
        "supply": {"decimals": 9, "total_supply_raw": 1000000000000},
        "logging": {"level": "DEBUG", "format": "console", "output_file": None},
    }


@pytest.fixture
def test_config_file(test_config_dict, tmp_path):
    """
    Create a temporary config file for testing

    Returns path to temporary YAML config file
    """
    config_file = tmp_path / "test_config.yml"
    with open(config_file, 'w') as f:
        yaml.dump(test_config_dict, f)

    return str(config_file)


def pytest_configure(config):
    """Register custom pytest markers"""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires network)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running (>5 seconds)"
    )
