"""
Label Query Coordinator

Resolves an address label from, in order: the local label store, the
coordinator cache, the rate-limited remote label source, and finally the
configured mock strategy. Outcomes (including None) are cached for the
coordinator's lifetime.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Sequence

from holder_risk.core.config import DEFAULT_TARGET_CHAINS
from holder_risk.core.exceptions import LookupFailure
from holder_risk.core.label_store import LabelStore
from holder_risk.core.logger import get_logger
from holder_risk.core.metrics import LatencyTimer, MetricsCollector, get_metrics
from holder_risk.core.rate_limiter import SlidingWindowRateLimiter
from holder_risk.core.types import LabelRecord, LabelSourceKind, normalize_address
from holder_risk.services.mock_labels import MockLabelStrategy, NoMockLabels

logger = get_logger(__name__)


def select_remote_label(
    rows: Sequence[Dict[str, Any]],
    target_chains: Iterable[str] = DEFAULT_TARGET_CHAINS
) -> Optional[LabelRecord]:
    """
    Pick the label row to keep from a remote answer

    Rows on other chains are dropped; the first row with a custody owner
    wins, else the first with an owner key.
    """
    chains = {c.lower() for c in target_chains}
    candidates = [
        row for row in rows or []
        if isinstance(row, dict)
        and (not row.get("blockchain") or str(row["blockchain"]).lower() in chains)
    ]

    chosen = next((r for r in candidates if r.get("custody_owner")), None)
    if chosen is None:
        chosen = next((r for r in candidates if r.get("owner_key")), None)
    if chosen is None:
        return None

    return LabelRecord(
        owner_key=chosen.get("owner_key") or None,
        custody_owner=chosen.get("custody_owner") or None,
        blockchain=chosen.get("blockchain") or None,
        source=LabelSourceKind.REMOTE,
    )


class LabelQueryCoordinator:
    """Local store -> cache -> rate-limited remote -> mock"""

    def __init__(
        self,
        store: Optional[LabelStore] = None,
        label_source=None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        mock_strategy: Optional[MockLabelStrategy] = None,
        target_chains: Iterable[str] = DEFAULT_TARGET_CHAINS,
        batch_delay_ms: int = 1000,
        metrics: Optional[MetricsCollector] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Args:
            store: Local label store
            label_source: Object with async query_address_labels(address);
                None when no remote credentials are configured
            rate_limiter: Limiter gating remote queries
            mock_strategy: Fallback when the remote source cannot answer
            target_chains: Chains accepted from remote rows
            batch_delay_ms: Delay between addresses in resolve_many
            metrics: Metrics collector (process-wide by default)
            sleep: Awaitable sleep used for the batch delay
        """
        self.store = store or LabelStore()
        self.label_source = label_source
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self.mock_strategy = mock_strategy or NoMockLabels()
        self.target_chains = [c.lower() for c in target_chains]
        self.batch_delay_ms = batch_delay_ms
        self.metrics = metrics or get_metrics()
        self._sleep = sleep
        self._cache: Dict[str, Optional[LabelRecord]] = {}

    @property
    def remote_available(self) -> bool:
        if self.label_source is None:
            return False
        return bool(getattr(self.label_source, "is_configured", True))

    async def resolve_label(self, address: str) -> Optional[LabelRecord]:
        """
        Resolve a label for one address; never raises

        Returns:
            LabelRecord or None when no source knows the address
        """
        normalized = normalize_address(address)

        local = self.store.get(normalized)
        if local is not None:
            self.metrics.increment_counter("label_lookups", labels={"source": "local"})
            return local

        if normalized in self._cache:
            self.metrics.increment_counter("label_cache_hits")
            return self._cache[normalized]

        record = await self._resolve_uncached(normalized)
        self._cache[normalized] = record
        return record

    async def _resolve_uncached(self, address: str) -> Optional[LabelRecord]:
        if not self.remote_available:
            logger.debug("label_remote_unavailable", address=address)
            return self._mock(address, reason="no_remote_source")

        if not await self.rate_limiter.try_acquire():
            self.metrics.increment_counter("label_rate_limited")
            logger.warning("label_rate_limited", address=address, **self.rate_limiter.get_stats())
            return self._mock(address, reason="rate_limited")

        try:
            with LatencyTimer(self.metrics, "label_remote_query"):
                rows = await self.label_source.query_address_labels(address)
        except Exception as e:
            failure = e if isinstance(e, LookupFailure) else LookupFailure(str(e), source="labels")
            self.metrics.increment_counter("label_remote_failures")
            logger.warning(
                "label_remote_query_failed",
                address=address,
                error=str(failure),
                error_type=type(e).__name__
            )
            return self._mock(address, reason="remote_failure")

        record = select_remote_label(rows, self.target_chains)
        self.metrics.increment_counter(
            "label_lookups",
            labels={"source": "remote" if record else "none"}
        )
        logger.debug(
            "label_remote_resolved",
            address=address,
            rows=len(rows or []),
            owner=record.custody_owner or record.owner_key if record else None
        )
        return record

    def _mock(self, address: str, reason: str) -> Optional[LabelRecord]:
        record = self.mock_strategy.synthesize(address)
        self.metrics.increment_counter(
            "label_lookups",
            labels={"source": "mock" if record else "none"}
        )
        if record is not None:
            logger.debug(
                "label_mock_synthesized",
                address=address,
                reason=reason,
                strategy=getattr(self.mock_strategy, "name", type(self.mock_strategy).__name__)
            )
        return record

    async def resolve_many(self, addresses: Sequence[str]) -> Dict[str, Optional[LabelRecord]]:
        """
        Resolve labels sequentially with a fixed delay between addresses

        A failure on one address records None and the batch continues.
        """
        results: Dict[str, Optional[LabelRecord]] = {}
        addresses = list(addresses)

        for index, address in enumerate(addresses):
            try:
                results[normalize_address(address)] = await self.resolve_label(address)
            except Exception as e:
                logger.error("label_batch_item_failed", address=address, error=str(e))
                results[normalize_address(address)] = None

            if self.batch_delay_ms > 0 and index < len(addresses) - 1:
                await self._sleep(self.batch_delay_ms / 1000)

        found = sum(1 for r in results.values() if r is not None)
        logger.info("label_batch_resolved", addresses=len(results), labeled=found)
        return results

    def stats(self) -> Dict[str, Any]:
        limiter = self.rate_limiter.get_stats()
        return {
            "cache_size": len(self._cache),
            "cached_negatives": sum(1 for r in self._cache.values() if r is None),
            "local_labels": len(self.store),
            "recent_requests": limiter["recent_requests"],
            "remaining_quota": limiter["remaining"],
            "remote_available": self.remote_available,
        }

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("label_cache_cleared")

    def replace_store(self, store: LabelStore) -> None:
        """Swap the local label store and drop cached outcomes"""
        self.store = store
        self._cache.clear()
