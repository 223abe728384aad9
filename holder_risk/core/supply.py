"""
Supply normalization for holder snapshots

Converts raw integer balances to whole tokens, separates burn and
protocol-locked holders and measures everyone else against the adjusted
circulating supply (total - burned - locked).
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Sequence

from holder_risk.core.exceptions import DataUnavailable
from holder_risk.core.logger import get_logger
from holder_risk.core.types import (
    HolderRecord, LabelRecord, LabelSourceKind, normalize_address
)

logger = get_logger(__name__)


BURN_ADDRESS_PATTERNS = (
    re.compile(r"^0x0+$"),
    re.compile(r"^0x0+dead$"),
    re.compile(r"^0x0+[1-9a-f]$"),
)

BALANCE_KEYS = ("balance_raw", "balanceRaw", "balance")


def is_burn_address(address: str, burn_addresses: Iterable[str] = ()) -> bool:
    """Explicit burn list or one of the zero/dead address patterns"""
    normalized = normalize_address(address)
    if normalized in {normalize_address(a) for a in burn_addresses}:
        return True
    return any(p.match(normalized) for p in BURN_ADDRESS_PATTERNS)


def to_token_units(raw: Any, decimals: int) -> Decimal:
    """
    Raw integer amount (minor units) -> whole tokens

    Raises:
        DataUnavailable: If raw is not a non-negative integer amount
    """
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError) as e:
        raise DataUnavailable(f"Malformed balance: {raw!r}") from e

    if not value.is_finite() or value < 0 or value != value.to_integral_value():
        raise DataUnavailable(f"Malformed balance: {raw!r}")

    return value / (Decimal(10) ** decimals)


@dataclass
class HolderSet:
    """Holders measured on the adjusted circulating supply"""
    holders: List[HolderRecord]
    total_supply: Decimal
    burned: Decimal
    locked: Decimal
    adjusted_supply: Decimal
    burn_holders: List[HolderRecord] = field(default_factory=list)
    locked_holders: List[HolderRecord] = field(default_factory=list)
    zero_balance_count: int = 0
    # Circulating holders labeled as exchange custody; a subset of holders
    exchange_holders: List[HolderRecord] = field(default_factory=list)
    exchange_labels: Dict[str, LabelRecord] = field(default_factory=dict)

    @property
    def exchange_balance(self) -> float:
        return sum(h.balance for h in self.exchange_holders)

    @property
    def non_exchange_holders(self) -> List[HolderRecord]:
        return [h for h in self.holders if h.address not in self.exchange_labels]

    def mark_exchange_holders(self, labels: Dict[str, LabelRecord]) -> None:
        """Record which circulating holders are exchange wallets, keeping rank order"""
        self.exchange_labels = {
            normalize_address(address): label for address, label in labels.items()
        }
        self.exchange_holders = [
            h for h in self.holders if h.address in self.exchange_labels
        ]

    def to_dict(self) -> Dict[str, Any]:
        label_sources = {kind.value: 0 for kind in LabelSourceKind}
        for holder in self.exchange_holders:
            label_sources[self.exchange_labels[holder.address].source.value] += 1

        return {
            "total_supply": float(self.total_supply),
            "burned": float(self.burned),
            "locked": float(self.locked),
            "adjusted_supply": float(self.adjusted_supply),
            "holders": len(self.holders),
            "burn_holders": len(self.burn_holders),
            "locked_holders": len(self.locked_holders),
            "zero_balance_count": self.zero_balance_count,
            "exchange_holders": len(self.exchange_holders),
            "exchange_balance": self.exchange_balance,
            "exchange_percentage": sum(h.percentage for h in self.exchange_holders),
            "exchange_label_sources": label_sources,
        }


def _raw_balance(row: Dict[str, Any]) -> Any:
    for key in BALANCE_KEYS:
        if row.get(key) is not None:
            return row[key]
    raise DataUnavailable(f"Holder record has no balance: {row!r}")


def build_holder_set(
    snapshot: Sequence[Dict[str, Any]],
    total_supply_raw: Optional[Any] = None,
    decimals: int = 18,
    burn_addresses: Iterable[str] = (),
    locked_addresses: Iterable[str] = ()
) -> HolderSet:
    """
    Build ranked holder records from a raw snapshot

    Args:
        snapshot: Ordered rows of {address, balance_raw | balance, ...}
        total_supply_raw: Declared total supply in minor units; the sum of
            snapshot balances when None
        decimals: Token decimals
        burn_addresses: Extra burn addresses on top of the zero/dead patterns
        locked_addresses: Protocol addresses whose balance is not circulating

    Returns:
        HolderSet with ranks (stable on snapshot order) and percentages of
        the adjusted supply

    Raises:
        DataUnavailable: On malformed rows, a non-positive adjusted supply or
            circulating balances above the adjusted supply
    """
    if snapshot is None or isinstance(snapshot, (str, bytes, dict)):
        raise DataUnavailable("Holder snapshot must be a list of records")

    burn_set = {normalize_address(a) for a in burn_addresses}
    locked_set = {normalize_address(a) for a in locked_addresses}

    circulating = []
    burn_rows = []
    locked_rows = []
    zero_balance = 0
    snapshot_total = Decimal(0)

    for row in snapshot:
        if not isinstance(row, dict):
            raise DataUnavailable(f"Holder record is not a mapping: {row!r}")

        address = normalize_address(row.get("address") or "")
        if not address:
            raise DataUnavailable(f"Holder record has no address: {row!r}")

        raw = _raw_balance(row)
        balance = to_token_units(raw, decimals)
        snapshot_total += balance

        entry = (address, balance, str(raw))
        if is_burn_address(address, burn_set):
            burn_rows.append(entry)
        elif address in locked_set:
            locked_rows.append(entry)
        elif balance == 0:
            zero_balance += 1
        else:
            circulating.append(entry)

    total_supply = (
        to_token_units(total_supply_raw, decimals)
        if total_supply_raw is not None else snapshot_total
    )
    burned = sum((b for _, b, _ in burn_rows), Decimal(0))
    locked = sum((b for _, b, _ in locked_rows), Decimal(0))
    adjusted = total_supply - burned - locked

    if adjusted <= 0:
        raise DataUnavailable(
            f"Adjusted circulating supply is not positive: total={total_supply} "
            f"burned={burned} locked={locked}"
        )

    circulating_total = sum((b for _, b, _ in circulating), Decimal(0))
    if circulating_total > adjusted:
        raise DataUnavailable(
            f"Circulating balances ({circulating_total}) exceed the adjusted "
            f"supply ({adjusted}); declared total supply is too small"
        )

    ordered = sorted(circulating, key=lambda e: e[1], reverse=True)
    holders = [
        HolderRecord(
            address=address,
            balance=float(balance),
            rank=rank,
            percentage=float(balance / adjusted * 100),
            balance_raw=raw
        )
        for rank, (address, balance, raw) in enumerate(ordered, start=1)
    ]

    def _side(rows):
        return [
            HolderRecord(
                address=address,
                balance=float(balance),
                percentage=float(balance / total_supply * 100) if total_supply > 0 else 0.0,
                balance_raw=raw
            )
            for address, balance, raw in rows
        ]

    holder_set = HolderSet(
        holders=holders,
        total_supply=total_supply,
        burned=burned,
        locked=locked,
        adjusted_supply=adjusted,
        burn_holders=_side(burn_rows),
        locked_holders=_side(locked_rows),
        zero_balance_count=zero_balance
    )

    logger.info(
        "holder_set_built",
        holders=len(holders),
        burn_holders=len(burn_rows),
        locked_holders=len(locked_rows),
        zero_balance=zero_balance,
        adjusted_supply=float(adjusted)
    )
    return holder_set
