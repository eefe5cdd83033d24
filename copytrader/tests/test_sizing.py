"""Tests for signal classification, order sizing and limit prices."""

import pytest
from pydantic import ValidationError

from copytrader.execution.signals import Branch, TradeSignal, classify
from copytrader.execution.sizing import (
    SizingMode,
    SizingPolicy,
    compute_size,
    limit_price,
)


def _signal(**kwargs) -> TradeSignal:
    defaults = dict(target_wallet="0xabc", trade_id="t1", token_id="tok", price=0.30)
    defaults.update(kwargs)
    return TradeSignal(**defaults)


# ============================================================
# Activity classification
# ============================================================

class TestClassify:
    @pytest.mark.parametrize(
        "activity, branch",
        [
            ("TRADE", Branch.TRADE),
            ("BUY", Branch.TRADE),
            ("SELL", Branch.TRADE),
            ("REDEEM", Branch.REDEEM),
            ("merge", Branch.MERGE),
            ("SPLIT", Branch.SPLIT),
            ("REWARD", Branch.TRADE),
            ("SOMETHING_NEW", Branch.TRADE),
            ("", Branch.TRADE),
        ],
    )
    def test_branches(self, activity, branch):
        assert classify(_signal(activity_type=activity)) == branch

    def test_market_key_fallback(self):
        assert _signal(condition_id="0xc", market_slug="s").market_key == "0xc"
        assert _signal(market_slug="s").market_key == "s"
        assert _signal().market_key == "tok"

    def test_signal_is_immutable(self):
        s = _signal()
        with pytest.raises(ValidationError):
            s.price = 0.5


# ============================================================
# Sizing policies
# ============================================================

class TestComputeSize:
    def setup_method(self):
        self.policy = SizingPolicy(
            mode=SizingMode.PROPORTIONAL,
            fixed_usd=10.0,
            fixed_shares=10.0,
            multiplier=0.5,
            min_order_usd=0.0,
            min_order_shares=0.0,
        )

    def test_proportional_scenario(self):
        """200 shares @ 0.30 with multiplier 0.5 mirrors 100 shares, $30."""
        result = compute_size(_signal(size_shares=200), self.policy)
        assert result.size == pytest.approx(100.0)
        assert result.usd_value == pytest.approx(30.0)

    def test_proportional_from_notional(self):
        result = compute_size(_signal(notional_usd=60.0), self.policy)
        assert result.size == pytest.approx(100.0)
        assert result.usd_value == pytest.approx(30.0)

    def test_proportional_falls_back_to_fixed_usd(self):
        result = compute_size(_signal(price=0.5), self.policy)
        assert result.size == pytest.approx(20.0)
        assert result.usd_value == pytest.approx(10.0)

    def test_fixed_usd(self):
        policy = self.policy.model_copy(update={"mode": SizingMode.FIXED_USD})
        result = compute_size(_signal(price=0.25, size_shares=1000), policy)
        assert result.size == pytest.approx(40.0)
        assert result.usd_value == pytest.approx(10.0)

    def test_fixed_shares(self):
        policy = self.policy.model_copy(update={"mode": SizingMode.FIXED_SHARES})
        result = compute_size(_signal(price=0.40), policy)
        assert result.size == pytest.approx(10.0)
        assert result.usd_value == pytest.approx(4.0)

    def test_rounds_to_two_decimals(self):
        result = compute_size(_signal(size_shares=3.337), self.policy)
        assert result.size == pytest.approx(1.67)

    def test_scaled_up_to_min_usd(self):
        policy = self.policy.model_copy(update={"min_order_usd": 1.0})
        result = compute_size(_signal(price=0.30, size_shares=2), policy)
        # 1 share * 0.30 = $0.30 < $1 -> ceil(1 / 0.30, 2dp) = 3.34 shares
        assert result.size == pytest.approx(3.34)
        assert result.usd_value >= 1.0

    def test_below_min_shares_is_skip(self):
        policy = self.policy.model_copy(update={"min_order_shares": 5.0})
        result = compute_size(_signal(size_shares=4), policy)
        assert result.size == 0
        assert result.usd_value == 0
        assert result.is_skip

    @pytest.mark.parametrize("mode", list(SizingMode))
    def test_zero_price_is_skip(self, mode):
        policy = self.policy.model_copy(update={"mode": mode})
        result = compute_size(_signal(price=0.0, size_shares=100), policy)
        assert result.is_skip
        assert result.size == 0


# ============================================================
# Limit prices
# ============================================================

class TestLimitPrice:
    def test_buy_adds_slippage(self):
        assert limit_price(0.50, "BUY", 0.02) == pytest.approx(0.51)

    def test_sell_subtracts_slippage(self):
        assert limit_price(0.50, "SELL", 0.02) == pytest.approx(0.49)

    def test_clamped_to_tick_range(self):
        assert limit_price(0.98, "BUY", 0.05) == pytest.approx(0.99)
        assert limit_price(0.01, "SELL", 0.5) == pytest.approx(0.01)
        assert limit_price(0.0, "BUY", 0.01) == pytest.approx(0.01)
