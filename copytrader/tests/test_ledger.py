"""Tests for the paper position ledger.

Covers fills (weighted average entry, balance checks, partial and full
sells), settlement arithmetic, statistics, persistence and CSV export.
"""

import math

import pytest

from copytrader.execution.ledger import (
    LEDGER_KEY,
    InsufficientBalanceError,
    NoOpenPositionError,
    PositionLedger,
    PositionState,
    TradeActivity,
)
from copytrader.execution.signals import TradeSignal
from copytrader.store import JsonDocumentStore, MemoryDocumentStore

TOKEN = "1" * 40


def _signal(**kwargs) -> TradeSignal:
    defaults = dict(
        target_wallet="0xtarget",
        trade_id="tx-1",
        token_id=TOKEN,
        condition_id="0xcond",
        market_slug="btc-up-or-down",
        outcome="YES",
        price=0.40,
    )
    defaults.update(kwargs)
    return TradeSignal(**defaults)


class _FailingStore:
    def load(self, key):
        return None

    def save(self, key, document):
        raise OSError("disk full")


# ============================================================
# Buys
# ============================================================

class TestBuy:
    def setup_method(self):
        self.ledger = PositionLedger(starting_balance=1000.0, fee_rate=0.001)

    def test_buy_scenario(self):
        """$1,000, BUY 100 @ 0.40 with 0.1% fee -> balance $959.96."""
        trade = self.ledger.buy(_signal(), TOKEN, 0.40, 100)

        assert self.ledger.balance == pytest.approx(959.96)
        pos = self.ledger.get_position(TOKEN)
        assert pos.shares == pytest.approx(100)
        assert pos.avg_entry_price == pytest.approx(0.40)
        assert pos.total_cost == pytest.approx(40.0)
        assert pos.state == PositionState.OPEN
        assert trade.fees == pytest.approx(0.04)
        assert self.ledger.state.stats.total_fees == pytest.approx(0.04)

    def test_weighted_average_entry(self):
        fills = [(0.40, 100), (0.60, 50), (0.25, 200)]
        for price, size in fills:
            self.ledger.buy(_signal(), TOKEN, price, size)
            pos = self.ledger.get_position(TOKEN)
            assert pos.total_cost == pytest.approx(pos.avg_entry_price * pos.shares)

        total_shares = sum(s for _, s in fills)
        expected = sum(p * s for p, s in fills) / total_shares
        pos = self.ledger.get_position(TOKEN)
        assert pos.shares == pytest.approx(total_shares)
        assert pos.avg_entry_price == pytest.approx(expected)

    def test_fees_not_in_cost_basis(self):
        self.ledger.buy(_signal(), TOKEN, 0.50, 10)
        pos = self.ledger.get_position(TOKEN)
        assert pos.total_cost == pytest.approx(5.0)
        assert pos.fees_paid == pytest.approx(0.005)

    def test_insufficient_balance_rejected_before_mutation(self):
        ledger = PositionLedger(starting_balance=10.0, fee_rate=0.001)
        with pytest.raises(InsufficientBalanceError):
            ledger.buy(_signal(), TOKEN, 0.50, 20)  # $10 + fee
        assert ledger.balance == pytest.approx(10.0)
        assert ledger.get_position(TOKEN) is None
        assert ledger.state.trades == []


# ============================================================
# Sells
# ============================================================

class TestSell:
    def setup_method(self):
        self.ledger = PositionLedger(starting_balance=1000.0, fee_rate=0.001)
        self.ledger.buy(_signal(), TOKEN, 0.40, 100)

    def test_partial_sell_realizes_pnl(self):
        trade = self.ledger.sell(_signal(side="SELL"), TOKEN, 0.60, 40)

        # (0.60 * 40 - 0.024) - 0.40 * 40
        assert trade.pnl == pytest.approx(7.976)
        pos = self.ledger.get_position(TOKEN)
        assert pos.shares == pytest.approx(60)
        assert pos.total_cost == pytest.approx(24.0)
        assert self.ledger.state.stats.winning_trades == 1

    def test_full_sell_removes_position(self):
        self.ledger.sell(_signal(side="SELL"), TOKEN, 0.30, 100)
        assert self.ledger.get_position(TOKEN) is None
        assert self.ledger.state.stats.losing_trades == 1

    def test_oversell_is_capped_at_position(self):
        trade = self.ledger.sell(_signal(side="SELL"), TOKEN, 0.50, 500)
        assert trade.shares == pytest.approx(100)
        assert self.ledger.get_position(TOKEN) is None

    def test_sell_without_position_rejected(self):
        """No short positions are ever opened."""
        balance = self.ledger.balance
        with pytest.raises(NoOpenPositionError):
            self.ledger.sell(_signal(side="SELL"), "2" * 40, 0.50, 10)
        assert self.ledger.balance == pytest.approx(balance)
        assert all(p.shares >= 0 for p in self.ledger.get_positions(include_settled=True))


# ============================================================
# Settlement arithmetic
# ============================================================

class TestSettlePosition:
    def setup_method(self):
        self.ledger = PositionLedger(starting_balance=1000.0, fee_rate=0.001)
        self.ledger.buy(_signal(), TOKEN, 0.40, 100)
        self.pos = self.ledger.get_position(TOKEN)

    def test_settle_win(self):
        pnl = self.ledger.settle_position(self.pos, 1.0, TradeActivity.REDEEM)
        assert pnl == pytest.approx(60.0)
        assert self.ledger.balance == pytest.approx(1059.96)
        assert self.ledger.state.stats.winning_trades == 1
        assert self.pos.settled and self.pos.resolved
        assert self.pos.shares == 0
        assert self.pos.total_cost == 0
        assert self.pos.state == PositionState.SETTLED

    def test_settle_loss(self):
        pnl = self.ledger.settle_position(self.pos, 0.0, TradeActivity.REDEEM)
        assert pnl == pytest.approx(-40.0)
        assert self.ledger.balance == pytest.approx(959.96)
        stats = self.ledger.state.stats
        assert stats.losing_trades == 1
        assert stats.largest_loss == pytest.approx(-40.0)

    def test_settlement_is_fee_free(self):
        fees_before = self.ledger.state.stats.total_fees
        self.ledger.settle_position(self.pos, 1.0, TradeActivity.RESOLUTION)
        assert self.ledger.state.stats.total_fees == pytest.approx(fees_before)
        assert self.ledger.state.trades[-1].settlement
        assert self.ledger.state.trades[-1].fees == 0

    def test_resettle_is_noop(self):
        self.ledger.settle_position(self.pos, 1.0, TradeActivity.REDEEM)
        snapshot = self.ledger.state.model_dump()
        assert self.ledger.settle_position(self.pos, 0.0, TradeActivity.REDEEM) == 0.0
        assert self.ledger.state.model_dump() == snapshot

    def test_settled_residual_kept_until_pruned(self):
        self.ledger.settle_position(self.pos, 1.0, TradeActivity.REDEEM)
        assert self.ledger.get_positions() == []
        assert len(self.ledger.get_positions(include_settled=True)) == 1
        assert self.ledger.prune_settled() == 1
        assert self.ledger.get_positions(include_settled=True) == []


# ============================================================
# Statistics
# ============================================================

class TestStats:
    def setup_method(self):
        self.ledger = PositionLedger(starting_balance=1000.0, fee_rate=0.0)

    def test_empty_stats(self):
        stats = self.ledger.get_stats()
        assert stats["win_rate"] == 0.0
        assert stats["profit_factor"] == 0.0
        assert stats["total_return"] == 0.0

    def test_profit_factor_infinite_without_losses(self):
        self.ledger.buy(_signal(), TOKEN, 0.40, 10)
        self.ledger.sell(_signal(side="SELL"), TOKEN, 0.50, 10)
        assert math.isinf(self.ledger.get_stats()["profit_factor"])

    def test_win_rate_and_profit_factor(self):
        a, b = "a" * 40, "b" * 40
        self.ledger.buy(_signal(), a, 0.50, 100)
        self.ledger.buy(_signal(), b, 0.50, 100)
        self.ledger.sell(_signal(side="SELL"), a, 0.80, 100)   # +30
        self.ledger.sell(_signal(side="SELL"), b, 0.40, 100)   # -10

        stats = self.ledger.get_stats()
        assert stats["win_rate"] == pytest.approx(50.0)
        assert stats["profit_factor"] == pytest.approx(3.0)
        assert stats["largest_win"] == pytest.approx(30.0)
        assert stats["largest_loss"] == pytest.approx(-10.0)
        assert stats["total_realized_pnl"] == pytest.approx(20.0)
        assert stats["total_return"] == pytest.approx(2.0)

    def test_zero_pnl_is_neither_win_nor_loss(self):
        self.ledger.buy(_signal(), TOKEN, 0.50, 10)
        self.ledger.sell(_signal(side="SELL"), TOKEN, 0.50, 10)
        stats = self.ledger.state.stats
        assert stats.winning_trades == 0
        assert stats.losing_trades == 0

    def test_avg_trade_size_ignores_settlements(self):
        self.ledger.buy(_signal(), TOKEN, 0.50, 10)     # $5
        self.ledger.buy(_signal(), "c" * 40, 0.50, 30)  # $15
        self.ledger.settle_position(self.ledger.get_position(TOKEN), 1.0, TradeActivity.EXPIRY)
        assert self.ledger.state.stats.avg_trade_size == pytest.approx(10.0)


# ============================================================
# Persistence and export
# ============================================================

class TestPersistence:
    def test_round_trip_through_json_store(self, tmp_path):
        store = JsonDocumentStore(tmp_path)
        ledger = PositionLedger(store=store, starting_balance=1000.0, fee_rate=0.001)
        ledger.buy(_signal(), TOKEN, 0.40, 100)
        ledger.sell(_signal(side="SELL"), TOKEN, 0.50, 50)

        assert store.path_for(LEDGER_KEY).exists()

        reloaded = PositionLedger(store=store, starting_balance=5.0)
        assert reloaded.balance == pytest.approx(ledger.balance)
        assert reloaded.state.starting_balance == pytest.approx(1000.0)
        assert reloaded.get_position(TOKEN).shares == pytest.approx(50)
        assert len(reloaded.state.trades) == 2
        assert reloaded.state.stats.winning_trades == 1

    def test_save_failure_is_not_fatal(self):
        ledger = PositionLedger(store=_FailingStore(), starting_balance=100.0)
        ledger.buy(_signal(), TOKEN, 0.50, 10)
        assert ledger.get_position(TOKEN) is not None

    def test_reset(self):
        store = MemoryDocumentStore()
        ledger = PositionLedger(store=store, starting_balance=100.0)
        ledger.buy(_signal(), TOKEN, 0.50, 10)
        ledger.reset(250.0)
        assert ledger.balance == pytest.approx(250.0)
        assert ledger.get_positions() == []
        assert store.documents[LEDGER_KEY]["current_balance"] == pytest.approx(250.0)

    def test_export_trades_csv(self):
        ledger = PositionLedger(starting_balance=1000.0, fee_rate=0.001)
        ledger.buy(_signal(), TOKEN, 0.40, 100)
        ledger.sell(_signal(side="SELL"), TOKEN, 0.50, 100)

        lines = ledger.export_trades().strip().split("\n")
        assert lines[0] == "Timestamp,Market,Side,Shares,Price,USD Value,Fees,PnL,Target Wallet"
        assert len(lines) == 3

        buy = lines[1].split(",")
        assert buy[1:4] == ["btc-up-or-down", "BUY", "100.0000"]
        assert buy[7] == ""
        assert buy[8] == "0xtarget"

        sell = lines[2].split(",")
        assert sell[2] == "SELL"
        assert sell[7] == "9.95"
