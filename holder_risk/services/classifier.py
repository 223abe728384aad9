"""
Classification Resolver

Combines label evidence and on-chain behavior into one ClassificationResult
per address:

    LABEL_LOOKUP -> LABEL_RESOLVED (strong label, chain skipped)
                 -> CHAIN_FETCH -> BEHAVIOR_ANALYSIS -> MERGE -> DONE

Collaborator failures never escape classify(); the result degrades to the
best evidence gathered and names the path in source/reason.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from holder_risk.core.config import ClassifierConfig
from holder_risk.core.label_store import LabelStore
from holder_risk.core.logger import get_logger
from holder_risk.core.metrics import LatencyTimer, MetricsCollector, get_metrics
from holder_risk.core.pattern_analyzer import Thresholds, analyze_all
from holder_risk.core.types import (
    Classification, ClassificationResult, LabelMatch, LabelRecord,
    PATTERN_CLASSIFICATION, ResultSource, Transaction, normalize_address
)
from holder_risk.services.label_coordinator import LabelQueryCoordinator

logger = get_logger(__name__)


ANY_VALUE = "*"

EXCHANGE_KEYWORDS = (
    "binance", "coinbase", "okx", "okex", "huobi", "htx", "kraken", "bybit",
    "kucoin", "gate.io", "gateio", "bitfinex", "poloniex", "bitstamp",
    "gemini", "crypto.com", "mexc", "bitget", "upbit", "bithumb", "exchange",
)

TEAM_VESTING_KEYWORDS = (
    "team", "vesting", "timelock", "escrow", "foundation", "treasury",
    "advisor", "multisig", "reserve",
)

MARKET_MAKER_KEYWORDS = (
    "market_maker", "marketmaker", "market maker", "wintermute", "jump",
    "amber", "gsr", "dwf", "cumberland", "amm", "uniswap", "pancakeswap",
    "sushiswap", "liquidity",
)


@dataclass(frozen=True)
class LabelRule:
    """Keyword rule evaluated against one label field"""
    category: Classification
    field: str
    patterns: Tuple[str, ...]
    confidence: float


# Evaluated in order; first hit wins
LABEL_RULES: Tuple[LabelRule, ...] = (
    LabelRule(Classification.CEX, "custody_owner", EXCHANGE_KEYWORDS, 0.9),
    LabelRule(Classification.CEX, "custody_owner", (ANY_VALUE,), 0.8),
    LabelRule(Classification.TEAM_VESTING, "owner_key", TEAM_VESTING_KEYWORDS, 0.85),
    LabelRule(Classification.MARKET_MAKERS, "owner_key", MARKET_MAKER_KEYWORDS, 0.8),
    LabelRule(Classification.CEX, "owner_key", EXCHANGE_KEYWORDS, 0.8),
)


def match_label(label: Optional[LabelRecord],
                rules: Sequence[LabelRule] = LABEL_RULES) -> Optional[LabelMatch]:
    """First rule whose pattern occurs (case-insensitive) in its field"""
    if label is None:
        return None

    for rule in rules:
        value = getattr(label, rule.field, None)
        if not value:
            continue
        lowered = str(value).lower()
        for pattern in rule.patterns:
            if pattern == ANY_VALUE or pattern in lowered:
                return LabelMatch(
                    category=rule.category,
                    matched_pattern=str(value) if pattern == ANY_VALUE else pattern,
                    confidence=rule.confidence,
                    field=rule.field,
                )
    return None


def parse_transactions(rows: Optional[Sequence[Any]]) -> Tuple[List[Transaction], int]:
    """Chain API rows -> Transactions, plus the number of rows skipped"""
    transactions: List[Transaction] = []
    skipped = 0
    for row in rows or []:
        if isinstance(row, Transaction):
            transactions.append(row)
            continue
        try:
            transactions.append(Transaction.from_api(row))
        except (KeyError, ValueError, TypeError, AttributeError):
            skipped += 1
    return transactions, skipped


class ClassificationResolver:
    """Label-first, behavior-second address classifier"""

    def __init__(
        self,
        coordinator: LabelQueryCoordinator,
        chain_source=None,
        config: Optional[ClassifierConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Args:
            coordinator: Label Query Coordinator
            chain_source: Object with async get_transactions(address, limit)
                and async is_contract(address)
            config: Classifier settings
            metrics: Metrics collector (process-wide by default)
            sleep: Awaitable sleep used between batch groups
        """
        self.coordinator = coordinator
        self.chain_source = chain_source
        self.config = config or ClassifierConfig()
        self.metrics = metrics or get_metrics()
        self._sleep = sleep
        self._results: Dict[str, ClassificationResult] = {}

    @property
    def chain_available(self) -> bool:
        if self.chain_source is None:
            return False
        return bool(getattr(self.chain_source, "is_configured", True))

    async def _call(self, awaitable, timeout: Optional[float] = None):
        return await asyncio.wait_for(
            awaitable, timeout=timeout or self.config.collaborator_timeout_s
        )

    async def classify(self, address: str) -> ClassificationResult:
        """
        Classify one address; never raises

        Results are memoized until replace_labels(), except source=error
        and results whose label lookup failed.
        """
        normalized = normalize_address(address)
        cached = self._results.get(normalized)
        if cached is not None:
            return cached

        try:
            with LatencyTimer(self.metrics, "classify_address"):
                result = await self._classify(normalized)
        except Exception as e:
            logger.error("classification_failed", address=normalized, error=str(e), exc_info=True)
            result = ClassificationResult(
                address=normalized,
                source=ResultSource.ERROR,
                reason=f"classification failed: {e}",
            )

        if result.source != ResultSource.ERROR and not result.label_failed:
            self._results[normalized] = result

        self.metrics.increment_counter(
            "classifications",
            labels={"category": result.classification.value, "source": result.source.value}
        )
        logger.info(
            "address_classified",
            address=normalized,
            classification=result.classification.value,
            confidence=round(result.confidence, 4),
            source=result.source.value
        )
        return result

    async def _classify(self, address: str) -> ClassificationResult:
        evidence: List[str] = []

        # LABEL_LOOKUP
        label: Optional[LabelRecord] = None
        label_error: Optional[str] = None
        try:
            label = await self._call(
                self.coordinator.resolve_label(address), self.config.label_timeout_s
            )
        except Exception as e:
            label_error = str(e) or type(e).__name__
            logger.warning(
                "label_lookup_failed",
                address=address,
                error=label_error,
                error_type=type(e).__name__
            )
            evidence.append(f"label lookup failed: {label_error}")

        result = await self._classify_with_label(address, label, evidence)
        if label_error is None:
            return result

        # Unknown without label evidence is an error, not a negative
        result.label_failed = True
        failure = f"label lookup failed: {label_error}"
        result.reason = f"{failure}; {result.reason}" if result.reason else failure
        if result.classification == Classification.UNKNOWN:
            result.source = ResultSource.ERROR
        return result

    async def _classify_with_label(
        self,
        address: str,
        label: Optional[LabelRecord],
        evidence: List[str]
    ) -> ClassificationResult:
        match = match_label(label)
        if match:
            evidence.append(
                f"label {match.field} matched '{match.matched_pattern}' "
                f"({label.source.value})"
            )

        if (match and match.confidence >= self.config.label_confidence_threshold
                and self.config.skip_chain_analysis_on_label_hit):
            return ClassificationResult(
                address=address,
                classification=match.category,
                confidence=match.confidence,
                source=ResultSource.LABEL,
                evidence=evidence,
                label=label,
            )

        # CHAIN_FETCH
        if not self.chain_available:
            return self._without_chain_data(address, match, label, evidence,
                                            "chain data source not configured")

        try:
            rows = await self._call(
                self.chain_source.get_transactions(address, self.config.transaction_limit)
            )
        except Exception as e:
            logger.warning("transaction_fetch_failed", address=address, error=str(e))
            evidence.append(f"transaction fetch failed: {e}")
            return self._without_chain_data(address, match, label, evidence,
                                            "transaction fetch failed", failed=True)

        transactions, skipped = parse_transactions(rows)
        if skipped:
            evidence.append(f"{skipped} malformed transaction rows skipped")
        if not transactions:
            return self._without_chain_data(address, match, label, evidence,
                                            "no transaction history")

        # BEHAVIOR_ANALYSIS
        outgoing = sum(1 for tx in transactions if tx.from_address == address)
        is_contract = False
        if outgoing >= Thresholds.VESTING_MIN_OUTGOING:
            try:
                is_contract = bool(await self._call(self.chain_source.is_contract(address)))
            except Exception as e:
                logger.warning("contract_probe_failed", address=address, error=str(e))
                evidence.append(f"contract probe failed, treated as not a contract: {e}")

        scores = analyze_all(transactions, address, is_contract)

        # MERGE
        result = ClassificationResult(
            address=address,
            evidence=evidence,
            label=label,
            pattern_scores=scores,
            transaction_count=len(transactions),
        )

        if match:
            result.classification = match.category
            result.confidence = match.confidence
            result.source = ResultSource.LABEL
            return result

        behavior = [s for s in scores.values() if s.matches]
        if not behavior:
            result.reason = "no pattern matched"
            return result

        best = max(behavior, key=lambda s: s.score)
        result.classification = PATTERN_CLASSIFICATION[best.kind]
        result.confidence = min(1.0, best.score * 0.8)
        result.source = ResultSource.BEHAVIOR
        result.evidence.extend(best.evidence)
        return result

    def _without_chain_data(
        self,
        address: str,
        match: Optional[LabelMatch],
        label: Optional[LabelRecord],
        evidence: List[str],
        reason: str,
        failed: bool = False
    ) -> ClassificationResult:
        if match:
            return ClassificationResult(
                address=address,
                classification=match.category,
                confidence=match.confidence * 0.9,
                source=ResultSource.LABEL_NO_CHAIN_DATA,
                evidence=evidence,
                reason=reason,
                label=label,
            )
        return ClassificationResult(
            address=address,
            source=ResultSource.ERROR if failed else ResultSource.BEHAVIOR,
            evidence=evidence,
            reason=reason,
            label=label,
        )

    async def classify_many(self, addresses: Sequence[str]) -> List[ClassificationResult]:
        """
        Classify addresses in concurrent groups of batch_size with a delay
        between groups; results keep input order
        """
        addresses = list(addresses)
        size = self.config.batch_size
        results: List[ClassificationResult] = []
        groups = (len(addresses) + size - 1) // size

        for start in range(0, len(addresses), size):
            group = addresses[start:start + size]
            logger.info(
                "classification_group_started",
                group=start // size + 1,
                groups=groups,
                addresses=len(group)
            )

            # Repeated addresses in a group share one classification
            unique = list(dict.fromkeys(normalize_address(a) for a in group))
            outcomes = await asyncio.gather(
                *(self.classify(address) for address in unique),
                return_exceptions=True
            )
            by_address = {}
            for address, outcome in zip(unique, outcomes):
                if isinstance(outcome, Exception):
                    outcome = ClassificationResult(
                        address=address,
                        source=ResultSource.ERROR,
                        reason=f"classification failed: {outcome}",
                    )
                by_address[address] = outcome
            results.extend(by_address[normalize_address(a)] for a in group)

            if start + size < len(addresses) and self.config.batch_delay_s > 0:
                await self._sleep(self.config.batch_delay_s)

        return results

    def replace_labels(self, store: LabelStore) -> None:
        """Swap the label set; memoized results are dropped"""
        self.coordinator.replace_store(store)
        self._results.clear()
        logger.info("classifier_labels_replaced", labels=len(store))

    @staticmethod
    def summarize(results: Sequence[ClassificationResult]) -> Dict[str, Any]:
        """Counts per classification and per confidence bucket"""
        summary: Dict[str, Any] = {
            "total": len(results),
            "classifications": {c.value: 0 for c in Classification},
            "high_confidence": 0,
            "medium_confidence": 0,
            "low_confidence": 0,
        }

        for result in results:
            summary["classifications"][result.classification.value] += 1
            if result.confidence >= 0.8:
                summary["high_confidence"] += 1
            elif result.confidence >= 0.5:
                summary["medium_confidence"] += 1
            else:
                summary["low_confidence"] += 1

        return summary
