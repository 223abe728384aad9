"""
Data types for holder classification and concentration analysis
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional
from enum import Enum


class LabelSourceKind(str, Enum):
    """Where a label record came from"""
    LOCAL = "local"
    REMOTE = "remote"
    MOCK = "mock"


class PatternKind(str, Enum):
    """Behavioral pattern analyzers"""
    CEX = "CEX"
    MARKET_MAKER = "MarketMaker"
    TEAM_VESTING = "TeamVesting"


class Classification(str, Enum):
    """Holder classification taxonomy"""
    CEX = "CEX"
    MARKET_MAKERS = "MarketMakers"
    TEAM_VESTING = "TeamVesting"
    UNKNOWN = "Unknown"


class ResultSource(str, Enum):
    """Which evidence path produced a classification"""
    LABEL = "label"
    BEHAVIOR = "behavior"
    LABEL_NO_CHAIN_DATA = "label_no_chain_data"
    ERROR = "error"


# Behavior pattern -> classification it supports
PATTERN_CLASSIFICATION = {
    PatternKind.CEX: Classification.CEX,
    PatternKind.MARKET_MAKER: Classification.MARKET_MAKERS,
    PatternKind.TEAM_VESTING: Classification.TEAM_VESTING,
}


def normalize_address(address: str) -> str:
    """Lower-case and strip an address"""
    return (address or "").strip().lower()


@dataclass(frozen=True)
class LabelRecord:
    """Attribution of an address to a known entity"""
    owner_key: Optional[str]
    custody_owner: Optional[str]
    blockchain: Optional[str]
    source: LabelSourceKind

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_key": self.owner_key,
            "custody_owner": self.custody_owner,
            "blockchain": self.blockchain,
            "source": self.source.value,
        }


@dataclass(frozen=True)
class Transaction:
    """Token transfer touching the subject address"""
    from_address: str
    to_address: str
    contract_address: str
    timestamp: int  # unix seconds
    value: int = 0  # minor units
    token_decimal: int = 18

    @classmethod
    def from_api(cls, row: Dict[str, Any]) -> "Transaction":
        """
        Build from a chain API row

        Args:
            row: {from, to, contractAddress, timeStamp, value, tokenDecimal}

        Raises:
            KeyError, ValueError, TypeError: if the row is malformed
        """
        return cls(
            from_address=normalize_address(row["from"]),
            to_address=normalize_address(row["to"]),
            contract_address=normalize_address(row.get("contractAddress", "")),
            timestamp=int(row["timeStamp"]),
            value=int(row.get("value") or 0),
            token_decimal=int(row.get("tokenDecimal") or 18),
        )

    @property
    def amount(self) -> float:
        """Value in whole tokens"""
        return self.value / (10 ** self.token_decimal)


@dataclass
class PatternScore:
    """Result of one behavioral pattern analyzer"""
    kind: PatternKind
    score: float = 0.0
    matches: bool = False
    evidence: List[str] = field(default_factory=list)
    stats: Dict[str, float] = field(default_factory=dict)
    reason: Optional[str] = None  # set for insufficient-data negatives

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "score": self.score,
            "matches": self.matches,
            "evidence": list(self.evidence),
            "stats": dict(self.stats),
            "reason": self.reason,
        }


@dataclass(frozen=True)
class LabelMatch:
    """Label keyword table hit"""
    category: Classification
    matched_pattern: str
    confidence: float
    field: str


@dataclass
class ClassificationResult:
    """Final classification of one address"""
    address: str
    classification: Classification = Classification.UNKNOWN
    confidence: float = 0.0
    source: ResultSource = ResultSource.BEHAVIOR
    evidence: List[str] = field(default_factory=list)
    reason: Optional[str] = None
    label: Optional[LabelRecord] = None
    pattern_scores: Dict[PatternKind, PatternScore] = field(default_factory=dict)
    transaction_count: int = 0
    label_failed: bool = False  # label lookup raised or timed out; never memoized

    def __post_init__(self):
        self.confidence = min(1.0, max(0.0, self.confidence))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "classification": self.classification.value,
            "confidence": self.confidence,
            "source": self.source.value,
            "evidence": list(self.evidence),
            "reason": self.reason,
            "label": self.label.to_dict() if self.label else None,
            "pattern_scores": {
                kind.value: score.to_dict()
                for kind, score in self.pattern_scores.items()
            },
            "transaction_count": self.transaction_count,
            "label_failed": self.label_failed,
        }


@dataclass
class HolderRecord:
    """Holder position measured against the declared supply base"""
    address: str
    balance: float
    rank: int = 0
    percentage: float = 0.0
    balance_raw: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TopNShare:
    """Combined share of the N largest holders"""
    n: int
    balance: float
    percentage: float
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class WhaleFlag:
    """Holder above the whale threshold"""
    holder: HolderRecord
    risk_level: str
    balance_formatted: str = ""

    @property
    def percentage(self) -> float:
        return self.holder.percentage

    def to_dict(self) -> Dict[str, Any]:
        data = self.holder.to_dict()
        data["risk_level"] = self.risk_level
        data["balance_formatted"] = self.balance_formatted
        return data


@dataclass
class ConcentrationReport:
    """Full concentration analysis of a holder set"""
    total_holders: int
    supply: float
    top_n_shares: Dict[int, TopNShare]
    hhi: float
    hhi_band: str
    hhi_description: str
    gini: float
    gini_band: str
    whale_threshold: float
    whales: List[WhaleFlag]
    whales_share_percentage: float
    composite_risk_score: float
    risk_band: str
    recommendation: str
    risk_factors: List[str] = field(default_factory=list)
    top_holder_percentage: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": {
                "total_holders": self.total_holders,
                "supply": self.supply,
            },
            "top_n_shares": {
                f"top{n}": share.to_dict() for n, share in self.top_n_shares.items()
            },
            "hhi": {
                "value": self.hhi,
                "band": self.hhi_band,
                "description": self.hhi_description,
                "normalized": self.hhi / 100,
            },
            "gini": {"value": self.gini, "band": self.gini_band},
            "whales": {
                "threshold": self.whale_threshold,
                "total": len(self.whales),
                "share_percentage": self.whales_share_percentage,
                "holders": [whale.to_dict() for whale in self.whales],
            },
            "overall_risk": {
                "score": self.composite_risk_score,
                "band": self.risk_band,
                "recommendation": self.recommendation,
                "factors": list(self.risk_factors),
            },
            "snapshot": {
                "top_holder_percentage": self.top_holder_percentage,
                "top10_percentage": self.top_n_shares[10].percentage
                if 10 in self.top_n_shares else None,
            },
        }
