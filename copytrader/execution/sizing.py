"""Sizing engine: maps a trade signal and a sizing policy to an order size.

Three policies are supported:

- fixed_usd     -- constant notional, size = notional / price
- fixed_shares  -- constant share count
- proportional  -- target's own size scaled by a multiplier

After the policy the size is rounded to 2 decimals, scaled up to the
minimum order notional and finally zeroed when still below the minimum
share count. A zero size is the "too small" skip, never a zero-value order.
"""

from __future__ import annotations

import math
from enum import Enum

from pydantic import BaseModel, Field

from copytrader.config import (
    DEFAULT_SHARES_SIZE,
    DEFAULT_USD_SIZE,
    MIN_ORDER_SHARES,
    MIN_ORDER_SIZE,
    PROPORTIONAL_MULTIPLIER,
    SIZING_MODE,
    SLIPPAGE,
)
from copytrader.execution.signals import TradeSignal


class SizingMode(str, Enum):
    FIXED_USD = "fixed_usd"
    FIXED_SHARES = "fixed_shares"
    PROPORTIONAL = "proportional"


class SizingPolicy(BaseModel):
    """Configured sizing policy."""

    mode: SizingMode = Field(default=SizingMode(SIZING_MODE))
    fixed_usd: float = Field(default=DEFAULT_USD_SIZE, ge=0.0)
    fixed_shares: float = Field(default=DEFAULT_SHARES_SIZE, ge=0.0)
    multiplier: float = Field(default=PROPORTIONAL_MULTIPLIER, ge=0.0)
    min_order_usd: float = Field(default=MIN_ORDER_SIZE, ge=0.0)
    min_order_shares: float = Field(default=MIN_ORDER_SHARES, ge=0.0)
    slippage: float = Field(default=SLIPPAGE, ge=0.0, lt=1.0)


class SizeResult(BaseModel):
    """Computed order size in shares and its USD notional."""

    size: float = 0.0
    usd_value: float = 0.0

    @property
    def is_skip(self) -> bool:
        return self.size <= 0


def _shares_for_usd(usd: float, price: float) -> float:
    return usd / price if price > 0 else 0.0


def compute_size(signal: TradeSignal, policy: SizingPolicy) -> SizeResult:
    """Compute the mirrored order size for a signal.

    Args:
        signal: The observed trade.
        policy: Sizing policy to apply.

    Returns:
        SizeResult; size and usd_value are both 0 when the order is too small.
    """
    price = signal.price
    if price <= 0:
        return SizeResult(size=0.0, usd_value=0.0)

    if policy.mode == SizingMode.FIXED_SHARES:
        size = policy.fixed_shares
    elif policy.mode == SizingMode.PROPORTIONAL:
        if signal.size_shares and signal.size_shares > 0:
            size = signal.size_shares * policy.multiplier
        elif signal.notional_usd and signal.notional_usd > 0:
            size = _shares_for_usd(signal.notional_usd * policy.multiplier, price)
        else:
            size = _shares_for_usd(policy.fixed_usd, price)
    else:
        size = _shares_for_usd(policy.fixed_usd, price)

    size = round(size, 2)
    usd_value = size * price

    if policy.min_order_usd > 0 and price > 0 and usd_value < policy.min_order_usd:
        size = math.ceil((policy.min_order_usd / price) * 100) / 100
        usd_value = size * price

    if size <= 0 or (policy.min_order_shares > 0 and size < policy.min_order_shares):
        return SizeResult(size=0.0, usd_value=0.0)

    return SizeResult(size=size, usd_value=usd_value)


def limit_price(price: float, side: str, slippage: float) -> float:
    """Slippage-adjusted limit price on the 0.01 tick, clamped to [0.01, 0.99]."""
    if side.upper() == "BUY":
        raw = price * (1 + slippage)
    else:
        raw = price * (1 - slippage)
    return round(max(0.01, min(0.99, raw)), 2)
