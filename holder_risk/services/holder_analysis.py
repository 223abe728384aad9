"""
Holder risk analysis

Snapshot -> holder set on the adjusted supply -> classification of the
selected holders + concentration report over all circulating holders, or
over non-exchange holders when exchanges are excluded.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from holder_risk.clients.bscscan_client import BscScanClient
from holder_risk.clients.dune_client import DuneLabelClient
from holder_risk.core.concentration import ConcentrationRiskEngine
from holder_risk.core.config import AnalysisConfig
from holder_risk.core.label_store import LabelStore
from holder_risk.core.logger import get_logger
from holder_risk.core.rate_limiter import SlidingWindowRateLimiter
from holder_risk.core.supply import HolderSet, build_holder_set
from holder_risk.core.types import (
    Classification, ClassificationResult, ConcentrationReport, HolderRecord, LabelRecord
)
from holder_risk.services.classifier import ClassificationResolver, match_label
from holder_risk.services.label_coordinator import LabelQueryCoordinator
from holder_risk.services.mock_labels import build_mock_strategy

logger = get_logger(__name__)


HOLDING_BUCKETS = (
    (10.0, "large"),
    (1.0, "medium"),
    (0.1, "small"),
    (0.0, "micro"),
)

# Weight per classification when ranking non-exchange holders by risk
RISK_WEIGHTS = {
    Classification.CEX: 1,
    Classification.TEAM_VESTING: 2,
    Classification.MARKET_MAKERS: 3,
    Classification.UNKNOWN: 4,
}

TOP_RISK_HOLDERS = 10


def holding_bucket(percentage: float) -> str:
    for floor, bucket in HOLDING_BUCKETS:
        if percentage >= floor:
            return bucket
    return HOLDING_BUCKETS[-1][1]


def holding_distribution(holders: Sequence[HolderRecord]) -> Dict[str, int]:
    """Holder counts per holding bucket"""
    distribution = {bucket: 0 for _, bucket in HOLDING_BUCKETS}
    for holder in holders:
        distribution[holding_bucket(holder.percentage)] += 1
    return distribution


def risk_distribution(
    holders: Sequence[HolderRecord],
    results: Sequence[ClassificationResult]
) -> Dict[str, Dict[str, int]]:
    """Classification counts inside each holding bucket"""
    distribution = {
        bucket: {c.value: 0 for c in Classification}
        for _, bucket in HOLDING_BUCKETS
    }
    for holder, result in zip(holders, results):
        distribution[holding_bucket(holder.percentage)][result.classification.value] += 1
    return distribution


def top_risk_holders(
    holders: Sequence[HolderRecord],
    results: Sequence[ClassificationResult],
    limit: int = TOP_RISK_HOLDERS
) -> List[Dict[str, Any]]:
    """Non-exchange holders ranked by classification weight x holding percentage"""
    ranked = [
        {
            "address": holder.address,
            "classification": result.classification.value,
            "confidence": result.confidence,
            "percentage": holder.percentage,
            "risk_score": RISK_WEIGHTS[result.classification] * holder.percentage,
        }
        for holder, result in zip(holders, results)
        if result.classification != Classification.CEX
    ]
    ranked.sort(key=lambda r: r["risk_score"], reverse=True)
    return ranked[:limit]


def is_exchange_label(label: Optional[LabelRecord]) -> bool:
    match = match_label(label)
    return match is not None and match.category == Classification.CEX


async def find_exchange_holders(
    coordinator: LabelQueryCoordinator,
    addresses: Sequence[str]
) -> Dict[str, LabelRecord]:
    """Resolve labels for every address and keep the exchange ones"""
    labels = await coordinator.resolve_many(addresses)
    return {
        address: label for address, label in labels.items()
        if is_exchange_label(label)
    }


def exchange_labels_from_results(results: Sequence[ClassificationResult]) -> Dict[str, LabelRecord]:
    """Exchange labels already seen while classifying"""
    return {
        result.address: result.label for result in results
        if is_exchange_label(result.label)
    }


@dataclass
class HolderRiskReport:
    """Combined classification and concentration view of one snapshot"""
    holder_set: HolderSet
    analyzed_holders: List[HolderRecord]
    classifications: List[ClassificationResult]
    classification_summary: Dict[str, Any]
    concentration: ConcentrationReport
    holding_distribution: Dict[str, int]
    risk_distribution: Dict[str, Dict[str, int]]
    top_risk_holders: List[Dict[str, Any]] = field(default_factory=list)
    filters: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "supply": self.holder_set.to_dict(),
            "filters": dict(self.filters),
            "total_holders_analyzed": len(self.analyzed_holders),
            "classification_summary": self.classification_summary,
            "holding_distribution": self.holding_distribution,
            "risk_distribution": self.risk_distribution,
            "top_risk_holders": self.top_risk_holders,
            "concentration": self.concentration.to_dict(),
            "details": [
                {**result.to_dict(), "holder": holder.to_dict()}
                for holder, result in zip(self.analyzed_holders, self.classifications)
            ],
        }


class HolderRiskAnalyzer:
    """Runs classification and concentration analysis over a holder snapshot"""

    def __init__(self, classifier: ClassificationResolver, config: Optional[AnalysisConfig] = None):
        self.classifier = classifier
        self.config = config or AnalysisConfig()
        self._clients: List[Any] = []

    @classmethod
    def from_config(cls, config: AnalysisConfig) -> "HolderRiskAnalyzer":
        """
        Wire the label store, API clients, coordinator and classifier

        Raises:
            DataUnavailable: If the configured label dataset cannot be read
        """
        label_config = config.label_config
        store = LabelStore.load(label_config.dataset_path) if label_config.dataset_path else LabelStore()

        dune = DuneLabelClient.from_config(config.client_config, label_config)
        bscscan = BscScanClient.from_config(config.client_config)

        coordinator = LabelQueryCoordinator(
            store=store,
            label_source=dune,
            rate_limiter=SlidingWindowRateLimiter(
                max_requests=config.rate_limit_config.max_requests,
                window_s=config.rate_limit_config.window_s
            ),
            mock_strategy=build_mock_strategy(label_config),
            target_chains=label_config.target_chains,
            batch_delay_ms=label_config.batch_delay_ms,
        )
        classifier = ClassificationResolver(
            coordinator,
            chain_source=bscscan,
            config=config.classifier_config,
        )

        analyzer = cls(classifier, config)
        analyzer._clients = [dune, bscscan]
        logger.info(
            "holder_risk_analyzer_ready",
            local_labels=len(store),
            dune_configured=dune.is_configured,
            bscscan_configured=bscscan.is_configured,
            mock_strategy=label_config.mock_strategy
        )
        return analyzer

    async def analyze(
        self,
        snapshot: Sequence[Dict[str, Any]],
        total_supply_raw: Optional[Any] = None,
        min_percentage: float = 0.0,
        top_n: int = 0,
        exclude_exchanges: Optional[bool] = None
    ) -> HolderRiskReport:
        """
        Analyze one holder snapshot

        Args:
            snapshot: Ordered rows of {address, balance_raw | balance, ...}
            total_supply_raw: Declared total supply in minor units; falls back
                to supply.total_supply_raw, then to the snapshot sum
            min_percentage: Classify only holders at or above this share
            top_n: Classify only the N largest holders (0 = all)
            exclude_exchanges: Resolve labels for every circulating holder and
                compute concentration over non-exchange holders only;
                defaults to concentration.exclude_exchanges

        Raises:
            DataUnavailable: On malformed snapshot rows or a non-positive
                adjusted supply
        """
        supply_config = self.config.supply_config
        concentration_config = self.config.concentration_config
        if exclude_exchanges is None:
            exclude_exchanges = concentration_config.exclude_exchanges

        holder_set = build_holder_set(
            snapshot,
            total_supply_raw=(
                total_supply_raw if total_supply_raw is not None
                else supply_config.total_supply_raw
            ),
            decimals=supply_config.decimals,
            burn_addresses=supply_config.burn_addresses,
            locked_addresses=supply_config.locked_addresses,
        )

        selected = [h for h in holder_set.holders if h.percentage >= min_percentage]
        if top_n > 0:
            selected = selected[:top_n]

        logger.info(
            "holder_analysis_started",
            holders=len(holder_set.holders),
            selected=len(selected),
            min_percentage=min_percentage,
            top_n=top_n,
            exclude_exchanges=exclude_exchanges
        )

        # Labels resolved here are cached by the coordinator for classification
        if exclude_exchanges:
            holder_set.mark_exchange_holders(await find_exchange_holders(
                self.classifier.coordinator, [h.address for h in holder_set.holders]
            ))

        results = await self.classifier.classify_many([h.address for h in selected])

        if not exclude_exchanges:
            holder_set.mark_exchange_holders(exchange_labels_from_results(results))

        engine = ConcentrationRiskEngine(
            holder_set.non_exchange_holders if exclude_exchanges else holder_set.holders,
            float(holder_set.adjusted_supply),
            whale_threshold=concentration_config.whale_threshold,
            top_n_levels=concentration_config.top_n_levels,
        )

        report = HolderRiskReport(
            holder_set=holder_set,
            analyzed_holders=selected,
            classifications=results,
            classification_summary=self.classifier.summarize(results),
            concentration=engine.report(),
            holding_distribution=holding_distribution(selected),
            risk_distribution=risk_distribution(selected, results),
            top_risk_holders=top_risk_holders(selected, results),
            filters={
                "min_percentage": min_percentage,
                "top_n": top_n,
                "exclude_exchanges": exclude_exchanges,
            },
        )

        summary = report.classification_summary["classifications"]
        logger.info(
            "holder_analysis_completed",
            analyzed=len(selected),
            exchange_holders=len(holder_set.exchange_holders),
            risk_score=report.concentration.composite_risk_score,
            risk_band=report.concentration.risk_band,
            **{k.lower(): v for k, v in summary.items()}
        )
        return report

    async def close(self):
        """Close API client sessions opened by from_config()"""
        for client in self._clients:
            await client.close()
