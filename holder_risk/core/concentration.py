"""
Holder concentration risk engine

Top-N shares, HHI, Gini coefficient, whale flags and a composite risk
score, all measured against one declared supply base.
"""

from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from holder_risk.core.exceptions import DataUnavailable
from holder_risk.core.logger import get_logger
from holder_risk.core.types import (
    ConcentrationReport, HolderRecord, TopNShare, WhaleFlag
)

logger = get_logger(__name__)


DEFAULT_WHALE_THRESHOLD = 5.0
DEFAULT_TOP_N_LEVELS = (1, 5, 10, 20, 50, 100)

# Relative slack for float sums of Decimal-derived balances
SUPPLY_TOLERANCE = 1e-9

HHI_BANDS: Tuple[Tuple[float, str, str], ...] = (
    (2500, "high", "Ownership is highly concentrated; price manipulation risk"),
    (1500, "medium", "Some concentration; watch the large holders"),
    (0, "low", "Ownership is dispersed; market structure is stable"),
)

GINI_BANDS: Tuple[Tuple[float, str], ...] = (
    (0.7, "extreme"),
    (0.5, "high"),
    (0.3, "moderate"),
    (0.0, "relatively equal"),
)

WHALE_LEVELS: Tuple[Tuple[float, str], ...] = (
    (20.0, "extreme"),
    (10.0, "high"),
    (5.0, "medium"),
)

RISK_BANDS: Tuple[Tuple[float, str, str], ...] = (
    (80, "very-high", "Invest with extreme caution; severe concentration risk"),
    (60, "high", "Watch large holder movements closely; significant risk"),
    (40, "medium", "Monitor concentration changes regularly"),
    (20, "low", "Concentration is relatively healthy; risk is manageable"),
    (0, "very-low", "Holdings are well distributed; concentration risk is very low"),
)


def hhi_band(hhi: float) -> Tuple[str, str]:
    """(band, description) for an HHI value"""
    for floor, band, description in HHI_BANDS:
        if hhi >= floor:
            return band, description
    return HHI_BANDS[-1][1], HHI_BANDS[-1][2]


def gini_band(gini: float) -> str:
    for floor, band in GINI_BANDS:
        if gini >= floor:
            return band
    return GINI_BANDS[-1][1]


def whale_level(percentage: float) -> str:
    """Highest applicable whale level, "low" below 5%"""
    for floor, level in WHALE_LEVELS:
        if percentage >= floor:
            return level
    return "low"


def risk_band(score: float) -> Tuple[str, str]:
    """(band, advisory) for a composite risk score"""
    for floor, band, advisory in RISK_BANDS:
        if score >= floor:
            return band, advisory
    return RISK_BANDS[-1][1], RISK_BANDS[-1][2]


def gini_coefficient(balances: Sequence[float]) -> float:
    """
    Gini coefficient of non-negative balances

    G = sum((2i - n - 1) * b_i) / (n * sum(b)) over ascending b, i 1-based.
    Empty or zero-sum input gives 0.
    """
    n = len(balances)
    if n == 0:
        return 0.0

    ordered = sorted(balances)
    total = sum(ordered)
    if total <= 0:
        return 0.0

    numerator = sum((2 * i - n - 1) * b for i, b in enumerate(ordered, start=1))
    return min(1.0, max(0.0, numerator / (n * total)))


def format_balance(balance: float) -> str:
    """Compact token amount, e.g. 1.25B / 3.40M / 12.00K"""
    if balance >= 1e9:
        return f"{balance / 1e9:.2f}B"
    if balance >= 1e6:
        return f"{balance / 1e6:.2f}M"
    if balance >= 1e3:
        return f"{balance / 1e3:.2f}K"
    return f"{balance:.2f}"


class ConcentrationRiskEngine:
    """
    Concentration statistics over a holder set

    Holders are re-sorted descending by balance (stable on input order),
    re-ranked, and their percentages recomputed against the engine's supply.
    Results are memoized until replace_holders() is called.
    """

    def __init__(
        self,
        holders: Sequence[HolderRecord],
        supply: float,
        whale_threshold: float = DEFAULT_WHALE_THRESHOLD,
        top_n_levels: Sequence[int] = DEFAULT_TOP_N_LEVELS
    ):
        """
        Args:
            holders: Holder positions, any order
            supply: Adjusted circulating supply in whole tokens (> 0)
            whale_threshold: Percentage at or above which a holder is a whale
            top_n_levels: N values reported in the top-N table

        Raises:
            DataUnavailable: On non-positive supply, negative balances or
                balances that add up to more than the supply
        """
        self.whale_threshold = whale_threshold
        self.top_n_levels = tuple(top_n_levels)
        self._holders: List[HolderRecord] = []
        self._supply = 0.0
        self._cache: Dict[Any, Any] = {}
        self.replace_holders(holders, supply)

    @property
    def holders(self) -> List[HolderRecord]:
        return list(self._holders)

    @property
    def supply(self) -> float:
        return self._supply

    def replace_holders(self, holders: Sequence[HolderRecord], supply: Optional[float] = None) -> None:
        """
        Swap in a new holder set (and optionally a new supply); clears memoized results

        Raises:
            DataUnavailable: On non-positive supply, negative balances or
                balances that add up to more than the supply
        """
        new_supply = self._supply if supply is None else supply
        if new_supply is None or new_supply <= 0:
            raise DataUnavailable(f"Supply must be positive, got {new_supply}")

        for holder in holders:
            if holder.balance is None or holder.balance < 0:
                raise DataUnavailable(
                    f"Invalid balance for holder {holder.address}: {holder.balance}"
                )

        held = sum(holder.balance for holder in holders)
        if held > new_supply * (1 + SUPPLY_TOLERANCE):
            raise DataUnavailable(
                f"Holder balances ({held}) exceed the supply ({new_supply})"
            )

        ordered = sorted(holders, key=lambda h: h.balance, reverse=True)
        self._holders = [
            replace(holder, rank=rank, percentage=holder.balance / new_supply * 100)
            for rank, holder in enumerate(ordered, start=1)
        ]
        self._supply = float(new_supply)
        self._cache.clear()

        logger.debug(
            "concentration_holders_replaced",
            holders=len(self._holders),
            supply=self._supply
        )

    def _memo(self, key, compute):
        if key not in self._cache:
            self._cache[key] = compute()
        return self._cache[key]

    def top_n_share(self, n: int) -> TopNShare:
        """Combined balance and share of the n largest holders"""
        def compute():
            if n <= 0 or n > len(self._holders):
                return TopNShare(n=n, balance=0.0, percentage=0.0, count=0)
            balance = sum(h.balance for h in self._holders[:n])
            return TopNShare(
                n=n,
                balance=balance,
                percentage=balance / self._supply * 100,
                count=n
            )
        return self._memo(("top_n", n), compute)

    def hhi(self) -> float:
        """Herfindahl-Hirschman index over all holders, in [0, 10000]"""
        return self._memo(
            "hhi",
            lambda: sum((h.balance / self._supply * 100) ** 2 for h in self._holders)
        )

    def gini(self) -> float:
        return self._memo("gini", lambda: gini_coefficient([h.balance for h in self._holders]))

    def whales(self) -> List[WhaleFlag]:
        """Holders at or above the whale threshold, largest first"""
        def compute():
            return [
                WhaleFlag(
                    holder=h,
                    risk_level=whale_level(h.percentage),
                    balance_formatted=format_balance(h.balance)
                )
                for h in self._holders
                if h.percentage >= self.whale_threshold
            ]
        return list(self._memo("whales", compute))

    def composite_risk(self) -> Tuple[float, List[str]]:
        """
        Composite risk score in [0, 100] and the factors that raised it
        """
        def compute():
            score = 0.0
            factors: List[str] = []

            hhi = self.hhi()
            if hhi >= 2500:
                score += 40
                factors.append("HHI indicates high concentration")
            elif hhi >= 1500:
                score += 25
                factors.append("HHI indicates moderate concentration")
            else:
                score += 10

            whales = self.whales()
            major = sum(1 for w in whales if w.percentage >= 10)
            minor = sum(1 for w in whales if 5 <= w.percentage < 10)
            score += major * 20 + minor * 10
            if major:
                factors.append(f"{major} address(es) hold more than 10%")
            if minor:
                factors.append(f"{minor} address(es) hold 5-10%")

            gini = self.gini()
            if gini >= 0.7:
                score += 30
                factors.append("Gini coefficient indicates extreme inequality")
            elif gini >= 0.5:
                score += 20
                factors.append("Gini coefficient indicates high inequality")
            elif gini >= 0.3:
                score += 10

            return min(score, 100.0), factors
        score, factors = self._memo("composite", compute)
        return score, list(factors)

    def report(self) -> ConcentrationReport:
        """Full concentration report"""
        def compute():
            hhi = self.hhi()
            band, description = hhi_band(hhi)
            gini = self.gini()
            whales = self.whales()
            score, factors = self.composite_risk()
            level, advisory = risk_band(score)

            report = ConcentrationReport(
                total_holders=len(self._holders),
                supply=self._supply,
                top_n_shares={n: self.top_n_share(n) for n in self.top_n_levels},
                hhi=hhi,
                hhi_band=band,
                hhi_description=description,
                gini=gini,
                gini_band=gini_band(gini),
                whale_threshold=self.whale_threshold,
                whales=whales,
                whales_share_percentage=sum(w.percentage for w in whales),
                composite_risk_score=score,
                risk_band=level,
                recommendation=advisory,
                risk_factors=factors,
                top_holder_percentage=self._holders[0].percentage if self._holders else 0.0,
            )
            if 10 not in report.top_n_shares:
                report.top_n_shares[10] = self.top_n_share(10)

            logger.info(
                "concentration_report_computed",
                holders=report.total_holders,
                hhi=round(hhi, 2),
                gini=round(gini, 4),
                whales=len(whales),
                risk_score=score,
                risk_band=level
            )
            return report
        return self._memo("report", compute)
