"""
Behavioral pattern scoring over an address's token transfers

Three independent analyzers (CEX custody, market maker, team/vesting).
Each is a pure function of (transactions, address); the team/vesting
analyzer additionally takes the result of the contract probe.
"""

import math
from typing import Dict, List, Sequence

from holder_risk.core.types import (
    PatternKind, PatternScore, Transaction, normalize_address
)


SECONDS_PER_DAY = 86400


class Thresholds:
    # CEX custody
    CEX_MIN_TRANSACTIONS = 50
    CEX_DEPOSIT_RATIO = 0.6
    CEX_MIN_COUNTERPARTIES = 50
    CEX_MIN_TOKENS = 10
    CEX_HEAVY_INCOMING = 100
    CEX_HEAVY_DEPOSIT_RATIO = 0.7
    CEX_MATCH_SCORE = 0.6

    # Market maker
    MM_MIN_TRANSACTIONS = 100
    MM_BIDIRECTIONAL_RATIO = 0.3
    MM_MAX_MEAN_INTERVAL = 3600  # seconds
    MM_MIN_TOKENS = 5
    MM_MIN_DAILY_TXS = 10
    MM_MATCH_SCORE = 0.7

    # Team / vesting
    VESTING_MIN_OUTGOING = 10
    VESTING_REGULARITY = 0.7
    VESTING_PERIODS = (7 * SECONDS_PER_DAY, 30 * SECONDS_PER_DAY)
    VESTING_PERIOD_TOLERANCE = 0.2
    VESTING_PERIODICITY = 0.6
    VESTING_MATCH_SCORE = 0.7


def _split_directions(transactions: Sequence[Transaction], address: str):
    subject = normalize_address(address)
    incoming = [tx for tx in transactions if tx.to_address == subject]
    outgoing = [tx for tx in transactions if tx.from_address == subject]
    return incoming, outgoing


def _intervals(timestamps: Sequence[int]) -> List[int]:
    ordered = sorted(timestamps)
    return [b - a for a, b in zip(ordered, ordered[1:])]


def _unique_tokens(transactions: Sequence[Transaction]) -> int:
    return len({tx.contract_address for tx in transactions})


def regularity_score(intervals: Sequence[float]) -> float:
    """
    1 - min(stddev / mean, 1) over intervals

    Returns 0 for fewer than 2 intervals or a zero mean.
    """
    if len(intervals) < 2:
        return 0.0

    mean = sum(intervals) / len(intervals)
    if mean <= 0:
        return 0.0

    variance = sum((i - mean) ** 2 for i in intervals) / len(intervals)
    return 1 - min(math.sqrt(variance) / mean, 1.0)


def periodicity_score(intervals: Sequence[float], period: float,
                      tolerance: float = Thresholds.VESTING_PERIOD_TOLERANCE) -> float:
    """Fraction of intervals strictly within +-tolerance of the period"""
    if not intervals:
        return 0.0

    close = sum(1 for i in intervals if abs(i - period) < period * tolerance)
    return close / len(intervals)


def analyze_cex_pattern(transactions: Sequence[Transaction], address: str) -> PatternScore:
    """
    Score deposit-heavy, high-fan-in custody behavior

    Args:
        transactions: Transfers touching the address
        address: Subject address

    Returns:
        PatternScore, matches when score >= 0.6
    """
    result = PatternScore(kind=PatternKind.CEX)
    total = len(transactions)
    result.stats["total_transactions"] = total

    if total < Thresholds.CEX_MIN_TRANSACTIONS:
        result.reason = (
            f"insufficient transactions: {total} < {Thresholds.CEX_MIN_TRANSACTIONS}"
        )
        return result

    incoming, outgoing = _split_directions(transactions, address)
    directional = len(incoming) + len(outgoing)
    deposit_ratio = len(incoming) / directional if directional else 0.0
    counterparties = len(
        {tx.from_address for tx in incoming} | {tx.to_address for tx in outgoing}
    )
    tokens = _unique_tokens(transactions)

    score = 0.0
    if deposit_ratio >= Thresholds.CEX_DEPOSIT_RATIO:
        score += 0.3
        result.evidence.append(f"deposit ratio {deposit_ratio * 100:.1f}%")
    if counterparties >= Thresholds.CEX_MIN_COUNTERPARTIES:
        score += 0.2
        result.evidence.append(f"{counterparties} unique counterparties")
    if tokens >= Thresholds.CEX_MIN_TOKENS:
        score += 0.2
        result.evidence.append(f"{tokens} distinct tokens")
    if (len(incoming) > Thresholds.CEX_HEAVY_INCOMING
            and deposit_ratio > Thresholds.CEX_HEAVY_DEPOSIT_RATIO):
        score += 0.3
        result.evidence.append(f"{len(incoming)} incoming transfers, deposit heavy")

    result.score = round(score, 4)
    result.matches = result.score >= Thresholds.CEX_MATCH_SCORE
    result.stats.update({
        "deposit_ratio": deposit_ratio,
        "incoming": len(incoming),
        "outgoing": len(outgoing),
        "unique_counterparties": counterparties,
        "unique_tokens": tokens,
    })
    return result


def analyze_market_maker_pattern(transactions: Sequence[Transaction], address: str) -> PatternScore:
    """
    Score two-sided, high-frequency, multi-token trading

    Returns:
        PatternScore, matches when score >= 0.7
    """
    result = PatternScore(kind=PatternKind.MARKET_MAKER)
    total = len(transactions)
    result.stats["total_transactions"] = total

    if total < Thresholds.MM_MIN_TRANSACTIONS:
        result.reason = (
            f"insufficient transactions: {total} < {Thresholds.MM_MIN_TRANSACTIONS}"
        )
        return result

    incoming, outgoing = _split_directions(transactions, address)
    if incoming and outgoing:
        bidirectional_ratio = min(len(incoming), len(outgoing)) / max(len(incoming), len(outgoing))
    else:
        bidirectional_ratio = 0.0

    timestamps = [tx.timestamp for tx in transactions]
    intervals = _intervals(timestamps)
    mean_interval = sum(intervals) / len(intervals) if intervals else None

    tokens = _unique_tokens(transactions)

    first_day = min(timestamps) // SECONDS_PER_DAY
    last_day = max(timestamps) // SECONDS_PER_DAY
    active_days = max(last_day - first_day + 1, 1)
    daily_txs = total / active_days

    score = 0.0
    if bidirectional_ratio >= Thresholds.MM_BIDIRECTIONAL_RATIO:
        score += 0.3
        result.evidence.append(f"bidirectional ratio {bidirectional_ratio * 100:.1f}%")
    if mean_interval is not None and mean_interval <= Thresholds.MM_MAX_MEAN_INTERVAL:
        score += 0.25
        result.evidence.append(f"high frequency: mean interval {round(mean_interval / 60)} min")
    if tokens >= Thresholds.MM_MIN_TOKENS:
        score += 0.2
        result.evidence.append(f"{tokens} distinct tokens")
    if daily_txs >= Thresholds.MM_MIN_DAILY_TXS:
        score += 0.25
        result.evidence.append(f"{daily_txs:.1f} transactions per active day")

    result.score = round(score, 4)
    result.matches = result.score >= Thresholds.MM_MATCH_SCORE
    result.stats.update({
        "bidirectional_ratio": bidirectional_ratio,
        "mean_interval_s": mean_interval if mean_interval is not None else 0.0,
        "unique_tokens": tokens,
        "active_days": active_days,
        "daily_transactions": daily_txs,
    })
    return result


def analyze_team_vesting_pattern(
    transactions: Sequence[Transaction],
    address: str,
    is_contract: bool = False
) -> PatternScore:
    """
    Score scheduled outgoing releases from a contract

    Args:
        transactions: Transfers touching the address
        address: Subject address
        is_contract: Contract probe result for the subject

    Returns:
        PatternScore, matches when score >= 0.7
    """
    result = PatternScore(kind=PatternKind.TEAM_VESTING)
    _, outgoing = _split_directions(transactions, address)
    result.stats["total_outgoing"] = len(outgoing)

    if len(outgoing) < Thresholds.VESTING_MIN_OUTGOING:
        result.reason = (
            f"insufficient outgoing transactions: {len(outgoing)} < "
            f"{Thresholds.VESTING_MIN_OUTGOING}"
        )
        return result

    intervals = _intervals([tx.timestamp for tx in outgoing])
    regularity = regularity_score(intervals)
    if regularity == 0.0:
        result.stats["regularity_degenerate"] = 1.0

    period_scores: Dict[int, float] = {
        period: periodicity_score(intervals, period)
        for period in Thresholds.VESTING_PERIODS
    }
    best_period = max(period_scores, key=lambda p: period_scores[p])
    periodicity = period_scores[best_period]

    score = 0.0
    if is_contract:
        score += 0.4
        result.evidence.append("subject is a contract")
    if regularity >= Thresholds.VESTING_REGULARITY:
        score += 0.3
        result.evidence.append(f"release regularity {regularity * 100:.1f}%")
    if periodicity > Thresholds.VESTING_PERIODICITY:
        score += 0.3
        result.evidence.append(
            f"periodic releases every ~{best_period // SECONDS_PER_DAY} days "
            f"({periodicity * 100:.0f}% of intervals)"
        )

    result.score = round(score, 4)
    result.matches = result.score >= Thresholds.VESTING_MATCH_SCORE
    result.stats.update({
        "is_contract": 1.0 if is_contract else 0.0,
        "regularity": regularity,
        "weekly_periodicity": period_scores[Thresholds.VESTING_PERIODS[0]],
        "monthly_periodicity": period_scores[Thresholds.VESTING_PERIODS[1]],
        "mean_amount": sum(tx.amount for tx in outgoing) / len(outgoing),
    })
    return result


def analyze_all(
    transactions: Sequence[Transaction],
    address: str,
    is_contract: bool = False
) -> Dict[PatternKind, PatternScore]:
    """Run the three analyzers"""
    return {
        PatternKind.CEX: analyze_cex_pattern(transactions, address),
        PatternKind.MARKET_MAKER: analyze_market_maker_pattern(transactions, address),
        PatternKind.TEAM_VESTING: analyze_team_vesting_pattern(transactions, address, is_contract),
    }
