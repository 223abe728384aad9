"""
Fallback label strategies used when the remote label source cannot answer
"""

import random
from typing import Any, Dict, Optional

from holder_risk.core.config import LabelConfig
from holder_risk.core.types import LabelRecord, LabelSourceKind, normalize_address


MOCK_EXCHANGES = (
    ("binance", "Binance"),
    ("coinbase", "Coinbase"),
    ("okex", "OKEx"),
    ("huobi", "Huobi"),
    ("bybit", "Bybit"),
    ("kucoin", "KuCoin"),
)


class MockLabelStrategy:
    """Synthesizes a label for an address the remote source could not answer"""

    name = "base"

    def synthesize(self, address: str) -> Optional[LabelRecord]:
        raise NotImplementedError


class NoMockLabels(MockLabelStrategy):
    """Never synthesizes a label"""

    name = "none"

    def synthesize(self, address: str) -> Optional[LabelRecord]:
        return None


class StaticMockLabels(MockLabelStrategy):
    """Fixed address -> label map, for deterministic runs and tests"""

    name = "static"

    def __init__(self, labels: Optional[Dict[str, Dict[str, Any]]] = None):
        """
        Args:
            labels: address -> {owner_key, custody_owner, blockchain}
        """
        self._labels: Dict[str, LabelRecord] = {}
        for address, data in (labels or {}).items():
            self._labels[normalize_address(address)] = LabelRecord(
                owner_key=data.get("owner_key"),
                custody_owner=data.get("custody_owner"),
                blockchain=data.get("blockchain", "bnb"),
                source=LabelSourceKind.MOCK,
            )

    def synthesize(self, address: str) -> Optional[LabelRecord]:
        return self._labels.get(normalize_address(address))


class RandomExchangeMockLabels(MockLabelStrategy):
    """
    Labels a fraction of addresses as a random major exchange

    Driven by an injected random.Random so runs can be reproduced.
    """

    name = "random"

    def __init__(self, rng: Optional[random.Random] = None, hit_rate: float = 0.3):
        if not 0.0 <= hit_rate <= 1.0:
            raise ValueError("hit_rate must be within [0, 1]")
        self.rng = rng or random.Random()
        self.hit_rate = hit_rate

    def synthesize(self, address: str) -> Optional[LabelRecord]:
        if self.rng.random() >= self.hit_rate:
            return None

        owner_key, custody_owner = self.rng.choice(MOCK_EXCHANGES)
        return LabelRecord(
            owner_key=owner_key,
            custody_owner=custody_owner,
            blockchain="bnb",
            source=LabelSourceKind.MOCK,
        )


def build_mock_strategy(config: LabelConfig) -> MockLabelStrategy:
    """Mock strategy selected by labels.mock_strategy"""
    if config.mock_strategy == "static":
        return StaticMockLabels(config.static_labels)
    if config.mock_strategy == "random":
        return RandomExchangeMockLabels(
            rng=random.Random(config.mock_seed),
            hit_rate=config.mock_hit_rate
        )
    if config.mock_strategy == "none":
        return NoMockLabels()
    raise ValueError(f"Unknown mock strategy: {config.mock_strategy}")
