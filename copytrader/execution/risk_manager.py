"""Risk manager: pre-trade checks for copied orders.

Every sized trade passes through the risk manager before a token is
resolved or an order is dispatched. The risk manager enforces:

1. Market denylist
2. Market allowlist (when configured)
3. Maximum USD per trade
4. Maximum USD per market per day
5. Maximum USD per day across all markets

The check is a pure decision over the signal, the proposed notional and
the day's accumulated volume. Volume is only read here; it is recorded by
the router once an order has actually been placed.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from copytrader.config import (
    EXECUTION_DRY_RUN,
    RISK_MARKET_ALLOWLIST,
    RISK_MARKET_DENYLIST,
    RISK_MAX_DAILY_USD_VOLUME,
    RISK_MAX_USD_PER_MARKET,
    RISK_MAX_USD_PER_TRADE,
)
from copytrader.execution.signals import TradeSignal
from copytrader.execution.volume import VolumeTracker

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class RiskViolation(str, Enum):
    """Type of risk limit violated."""

    DENYLIST = "denylist"
    NOT_ALLOWLISTED = "not_allowlisted"
    TRADE_LIMIT = "trade_limit"
    MARKET_LIMIT = "market_limit"
    DAILY_LIMIT = "daily_limit"


class RiskConfig(BaseModel):
    """Read-only risk inputs."""

    max_usd_per_trade: float = Field(default=RISK_MAX_USD_PER_TRADE, ge=0.0)
    max_usd_per_market: float = Field(default=RISK_MAX_USD_PER_MARKET, ge=0.0)
    max_daily_usd_volume: float = Field(default=RISK_MAX_DAILY_USD_VOLUME, ge=0.0)
    market_allowlist: list[str] = Field(default_factory=lambda: list(RISK_MARKET_ALLOWLIST))
    market_denylist: list[str] = Field(default_factory=lambda: list(RISK_MARKET_DENYLIST))
    dry_run: bool = EXECUTION_DRY_RUN


class RiskCheck(BaseModel):
    """Result of a pre-trade risk check."""

    approved: bool = False
    violation: Optional[RiskViolation] = None
    message: str = ""


def matches_any_pattern(value: str, patterns: list[str]) -> bool:
    """Case-insensitive containment in either direction."""
    lowered = value.lower()
    for pattern in patterns:
        p = pattern.lower()
        if p and (p in lowered or lowered in p):
            return True
    return False


# ---------------------------------------------------------------------------
# Risk Manager
# ---------------------------------------------------------------------------


class RiskManager:
    """Pre-trade risk controls.

    Attributes:
        config: Caps and market lists.
        volume: Daily volume accumulator (read only here).
    """

    def __init__(self, config: RiskConfig, volume: VolumeTracker) -> None:
        self.config = config
        self.volume = volume

    def check_trade(self, signal: TradeSignal, usd_value: float) -> RiskCheck:
        """Run pre-trade risk checks on a sized trade.

        Args:
            signal: The copied trade.
            usd_value: Proposed order notional.

        Returns:
            RiskCheck indicating approval or the first violated limit.
        """
        cfg = self.config
        identifiers = [
            i for i in (signal.condition_id, signal.market_slug, signal.token_id) if i
        ]

        # 1. Denylist
        if cfg.market_denylist:
            for ident in identifiers:
                if matches_any_pattern(ident, cfg.market_denylist):
                    return RiskCheck(
                        violation=RiskViolation.DENYLIST,
                        message=f"Market is on denylist: {ident}",
                    )

        # 2. Allowlist
        if cfg.market_allowlist and not any(
            matches_any_pattern(ident, cfg.market_allowlist) for ident in identifiers
        ):
            return RiskCheck(
                violation=RiskViolation.NOT_ALLOWLISTED,
                message="Market is not on allowlist",
            )

        # 3. Per-trade cap
        if usd_value > cfg.max_usd_per_trade:
            return RiskCheck(
                violation=RiskViolation.TRADE_LIMIT,
                message=(
                    f"Trade value ${usd_value:.2f} exceeds max per trade "
                    f"limit of ${cfg.max_usd_per_trade:.2f}"
                ),
            )

        # 4. Per-market cap
        market_volume = self.volume.for_market(signal.market_key)
        if market_volume + usd_value > cfg.max_usd_per_market:
            return RiskCheck(
                violation=RiskViolation.MARKET_LIMIT,
                message=(
                    f"Market exposure limit reached. Current: ${market_volume:.2f}, "
                    f"Limit: ${cfg.max_usd_per_market:.2f}"
                ),
            )

        # 5. Daily cap
        daily_volume = self.volume.total()
        if daily_volume + usd_value > cfg.max_daily_usd_volume:
            return RiskCheck(
                violation=RiskViolation.DAILY_LIMIT,
                message=(
                    f"Daily volume limit reached. Current: ${daily_volume:.2f}, "
                    f"Limit: ${cfg.max_daily_usd_volume:.2f}"
                ),
            )

        return RiskCheck(approved=True, message="Trade approved.")

    def status(self) -> dict:
        """Return current risk status summary."""
        daily = self.volume.total()
        return {
            "daily_volume_used": daily,
            "daily_volume_remaining": max(0.0, self.config.max_daily_usd_volume - daily),
            "daily_volume_limit": self.config.max_daily_usd_volume,
            "max_per_trade": self.config.max_usd_per_trade,
            "max_per_market": self.config.max_usd_per_market,
            "dry_run": self.config.dry_run,
        }
