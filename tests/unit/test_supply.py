"""
Unit tests for supply normalization (core/supply.py)
"""

from decimal import Decimal

import pytest

from holder_risk.core.exceptions import DataUnavailable
from holder_risk.core.supply import build_holder_set, is_burn_address, to_token_units
from holder_risk.core.types import LabelRecord, LabelSourceKind


TOKEN = 10 ** 18
UNISWAP_V2_FACTORY = "0x5c69bee701ef814a2b6a3edd4b1652cb9cc5aa6f"


def _row(address, tokens):
    return {"address": address, "balance": str(tokens * TOKEN)}


class TestBurnAddresses:
    """Test burn address detection"""

    @pytest.mark.parametrize("address", [
        "0x0000000000000000000000000000000000000000",
        "0x000000000000000000000000000000000000dEaD",
        "0x0000000000000000000000000000000000000001",
        "0x000000000000000000000000000000000000000f",
    ])
    def test_patterns(self, address):
        assert is_burn_address(address) is True

    def test_regular_address(self):
        assert is_burn_address("0x3f5ce5fbfe3e9af3971dd833d26ba9b5c936f0be") is False

    def test_explicit_list(self):
        assert is_burn_address("0xABC", ["0xabc"]) is True


class TestTokenUnits:
    def test_conversion(self):
        assert to_token_units("1500000000000000000", 18) == Decimal("1.5")
        assert to_token_units(42, 0) == Decimal(42)

    @pytest.mark.parametrize("raw", ["abc", "-5", "1.5", ""])
    def test_malformed(self, raw):
        with pytest.raises(DataUnavailable):
            to_token_units(raw, 18)


class TestBuildHolderSet:
    """Test adjusted-supply holder sets"""

    def test_adjusted_supply_excludes_burn_and_locked(self):
        snapshot = [
            _row("0xaaa", 300),
            _row("0x000000000000000000000000000000000000dead", 200),
            _row(UNISWAP_V2_FACTORY, 100),
            _row("0xbbb", 150),
        ]

        holder_set = build_holder_set(
            snapshot,
            total_supply_raw=str(1000 * TOKEN),
            locked_addresses=[UNISWAP_V2_FACTORY],
        )

        assert holder_set.total_supply == Decimal(1000)
        assert holder_set.burned == Decimal(200)
        assert holder_set.locked == Decimal(100)
        assert holder_set.adjusted_supply == Decimal(700)
        assert [h.address for h in holder_set.holders] == ["0xaaa", "0xbbb"]
        assert holder_set.holders[0].percentage == pytest.approx(300 / 700 * 100)
        assert holder_set.holders[0].rank == 1
        assert holder_set.holders[0].balance_raw == str(300 * TOKEN)
        assert len(holder_set.burn_holders) == 1
        assert len(holder_set.locked_holders) == 1

    def test_snapshot_sum_when_no_total(self):
        holder_set = build_holder_set([_row("0xaaa", 60), _row("0xbbb", 40)])

        assert holder_set.adjusted_supply == Decimal(100)
        assert holder_set.holders[1].percentage == pytest.approx(40)

    def test_stable_rank_on_ties(self):
        snapshot = [_row("0xccc", 10), _row("0xaaa", 10), _row("0xbbb", 20)]

        holder_set = build_holder_set(snapshot)

        assert [h.address for h in holder_set.holders] == ["0xbbb", "0xccc", "0xaaa"]
        assert [h.rank for h in holder_set.holders] == [1, 2, 3]

    def test_zero_balances_counted_not_ranked(self):
        holder_set = build_holder_set([_row("0xaaa", 10), _row("0xbbb", 0)])

        assert len(holder_set.holders) == 1
        assert holder_set.zero_balance_count == 1

    def test_alternate_balance_keys(self):
        snapshot = [
            {"address": "0xaaa", "balanceRaw": "5"},
            {"address": "0xbbb", "balance_raw": "5"},
        ]

        holder_set = build_holder_set(snapshot, decimals=0)

        assert holder_set.adjusted_supply == Decimal(10)

    def test_non_positive_adjusted_supply(self):
        snapshot = [_row("0x0000000000000000000000000000000000000000", 100)]

        with pytest.raises(DataUnavailable):
            build_holder_set(snapshot, total_supply_raw=str(100 * TOKEN))

    def test_declared_supply_below_circulating(self):
        """Test that a total supply smaller than the holdings is rejected"""
        snapshot = [{"address": "0xaaa", "balance": "900"}, {"address": "0xbbb", "balance": "100"}]

        with pytest.raises(DataUnavailable, match="exceed"):
            build_holder_set(snapshot, total_supply_raw="500", decimals=0)

    def test_declared_supply_equal_to_circulating(self):
        snapshot = [{"address": "0xaaa", "balance": "900"}, {"address": "0xbbb", "balance": "100"}]

        holder_set = build_holder_set(snapshot, total_supply_raw="1000", decimals=0)

        assert sum(h.percentage for h in holder_set.holders) == pytest.approx(100)

    @pytest.mark.parametrize("snapshot", [
        [{"address": "0xaaa"}],
        [{"balance": "10"}],
        [{"address": "0xaaa", "balance": "ten"}],
        ["0xaaa"],
        {"address": "0xaaa", "balance": "10"},
    ])
    def test_malformed_snapshot(self, snapshot):
        with pytest.raises(DataUnavailable):
            build_holder_set(snapshot)


class TestExchangeHolders:
    """Test the exchange bucket on a holder set"""

    def test_mark_exchange_holders(self):
        holder_set = build_holder_set(
            [_row("0xaaa", 50), _row("0xbbb", 30), _row("0xccc", 20)]
        )
        label = LabelRecord(
            owner_key="binance", custody_owner="Binance", blockchain="bnb", source=LabelSourceKind.LOCAL
        )

        holder_set.mark_exchange_holders({"0xBBB": label})
        data = holder_set.to_dict()

        assert [h.address for h in holder_set.exchange_holders] == ["0xbbb"]
        assert [h.address for h in holder_set.non_exchange_holders] == ["0xaaa", "0xccc"]
        assert holder_set.exchange_balance == pytest.approx(30)
        assert data["exchange_holders"] == 1
        assert data["exchange_percentage"] == pytest.approx(30)
        assert data["exchange_label_sources"]["local"] == 1

    def test_unmarked_set(self):
        holder_set = build_holder_set([_row("0xaaa", 50)])

        assert holder_set.non_exchange_holders == holder_set.holders
        assert holder_set.to_dict()["exchange_balance"] == 0
