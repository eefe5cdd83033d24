"""Settlement engine: turns resolution and exit events into realized P&L.

Sources of settlement, all converging on PositionLedger.settle_position:

- REDEEM signals from a target wallet (complementary-outcome inference)
- Operator-forced settlement of expired markets (assumed outcome)
- Periodic reconciliation against the Gamma API resolution status

MERGE signals are mirrored by selling matching positions at their mark.
Every path is idempotent: settled positions are filtered out, never
re-settled.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Optional, Protocol

from pydantic import BaseModel

from copytrader.api.gamma_client import MarketInfo, MarketResolution
from copytrader.execution.ledger import (
    NoOpenPositionError,
    Position,
    PositionLedger,
    TradeActivity,
)
from copytrader.execution.signals import TradeSignal

logger = logging.getLogger(__name__)

_SLUG_TIMESTAMP = re.compile(r"(\d{10})$")
EXPIRY_GRACE_SECONDS = 5 * 60
REDEEM_WIN_THRESHOLD = 0.5


class MarketDirectory(Protocol):
    async def get_market_by_slug(self, slug: str) -> Optional[MarketInfo]: ...

    async def get_resolution(self, slug: str) -> MarketResolution: ...

    async def get_resolution_by_token_id(self, token_id: str) -> MarketResolution: ...


class SettlementSummary(BaseModel):
    """Outcome of one settlement call."""

    settled_count: int = 0
    total_pnl: float = 0.0
    wins: int = 0
    losses: int = 0

    def add(self, pnl: float) -> None:
        self.settled_count += 1
        self.total_pnl += pnl
        if pnl > 0:
            self.wins += 1
        elif pnl < 0:
            self.losses += 1


def is_expired(slug: str, now: Optional[float] = None) -> bool:
    """True when the slug ends in a Unix timestamp more than 5 minutes ago."""
    match = _SLUG_TIMESTAMP.search(slug or "")
    if not match:
        return False
    now = time.time() if now is None else now
    return now > int(match.group(1)) + EXPIRY_GRACE_SECONDS


def settlement_price_for(position: Position, resolution: MarketResolution) -> Optional[float]:
    """1.0 / 0.0 for a resolved market, None when it cannot be determined."""
    if resolution.winning_token_id:
        return 1.0 if resolution.winning_token_id == position.token_id else 0.0

    outcome = (position.outcome or "").upper()
    index = {"YES": 0, "NO": 1}.get(outcome)
    if index is None or index >= len(resolution.outcome_prices):
        return None
    return resolution.outcome_prices[index]


class SettlementEngine:
    """Mutates the ledger in response to resolution and exit events.

    Attributes:
        ledger: The position ledger.
        directory: Market metadata / resolution lookups.
    """

    def __init__(self, ledger: PositionLedger, directory: MarketDirectory) -> None:
        self.ledger = ledger
        self.directory = directory

    # ------------------------------------------------------------------
    # Signal-driven settlement
    # ------------------------------------------------------------------

    def redeem(self, signal: TradeSignal) -> SettlementSummary:
        """Settle every open position in the redeemed market.

        The redemption price tells whether the redeemed token won; positions
        on the complementary token get the opposite result.
        """
        summary = SettlementSummary()
        redeemed_won = signal.price >= REDEEM_WIN_THRESHOLD

        positions: list[Position] = []
        if signal.market_slug or signal.condition_id:
            positions = self.ledger.open_positions(
                market_slug=signal.market_slug, condition_id=signal.condition_id
            )
        # An unfiltered lookup would span every market; fall back to the token alone
        if not positions and signal.token_id:
            pos = self.ledger.get_position(signal.token_id)
            if pos is not None and pos.is_open:
                positions = [pos]

        for pos in positions:
            if pos.token_id == signal.token_id:
                won = redeemed_won
            else:
                won = not redeemed_won
            pnl = self.ledger.settle_position(
                pos,
                1.0 if won else 0.0,
                TradeActivity.REDEEM,
                target_wallet=signal.target_wallet,
                trade_id=signal.trade_id,
            )
            summary.add(pnl)

        logger.info(
            "redeem_settled",
            extra={
                "trade_id": signal.trade_id,
                "market": signal.market_slug,
                "redeemed_won": redeemed_won,
                "settled": summary.settled_count,
                "pnl": round(summary.total_pnl, 2),
            },
        )
        return summary

    def merge(self, signal: TradeSignal) -> SettlementSummary:
        """Mirror a MERGE by liquidating matching positions at their mark."""
        summary = SettlementSummary()
        if not (signal.market_slug or signal.condition_id):
            logger.info("merge_without_market", extra={"trade_id": signal.trade_id})
            return summary
        positions = self.ledger.open_positions(
            market_slug=signal.market_slug, condition_id=signal.condition_id
        )
        for pos in positions:
            try:
                trade = self.ledger.sell(
                    signal,
                    pos.token_id,
                    pos.mark_price,
                    pos.shares,
                    activity=TradeActivity.MERGE,
                )
            except NoOpenPositionError:
                continue
            summary.add(trade.pnl or 0.0)

        logger.info(
            "merge_liquidated",
            extra={
                "trade_id": signal.trade_id,
                "market": signal.market_slug,
                "closed": summary.settled_count,
                "pnl": round(summary.total_pnl, 2),
            },
        )
        return summary

    # ------------------------------------------------------------------
    # Operator / expiry settlement
    # ------------------------------------------------------------------

    def expired_positions(self, market_filter: Optional[str] = None) -> list[Position]:
        return [
            p for p in self.ledger.open_positions()
            if is_expired(p.market_slug)
            and (not market_filter or market_filter in p.market_slug)
        ]

    def settle_expired(
        self, assume_win: bool = False, market_filter: Optional[str] = None
    ) -> SettlementSummary:
        """Force-settle expired positions at an assumed outcome.

        Args:
            assume_win: Settle at 1.0 instead of the conservative 0.0.
            market_filter: Only settle slugs containing this string.
        """
        summary = SettlementSummary()
        price = 1.0 if assume_win else 0.0
        for pos in self.expired_positions(market_filter):
            summary.add(self.ledger.settle_position(pos, price, TradeActivity.EXPIRY))

        logger.info(
            "expired_settled",
            extra={
                "assume_win": assume_win,
                "market_filter": market_filter,
                "settled": summary.settled_count,
                "pnl": round(summary.total_pnl, 2),
            },
        )
        return summary

    # ------------------------------------------------------------------
    # Reconciliation against the market directory
    # ------------------------------------------------------------------

    async def settle_resolved(self, force: bool = False) -> SettlementSummary:
        """Settle positions whose markets the directory reports as resolved.

        Args:
            force: Settle expired but unresolved markets as a total loss.
        """
        summary = SettlementSummary()

        for pos in self.ledger.open_positions():
            try:
                if pos.market_slug and pos.market_slug != "unknown":
                    resolution = await self.directory.get_resolution(pos.market_slug)
                else:
                    resolution = await self.directory.get_resolution_by_token_id(pos.token_id)
            except Exception:
                logger.debug(
                    "resolution_lookup_failed",
                    extra={"market": pos.market_slug},
                    exc_info=True,
                )
                continue

            # Another call may have settled it while we were waiting
            if not pos.is_open:
                continue

            if resolution.resolved:
                price = settlement_price_for(pos, resolution)
                if price is None:
                    logger.warning(
                        "settlement_price_unknown",
                        extra={"market": pos.market_slug, "outcome": pos.outcome},
                    )
                    continue
                summary.add(
                    self.ledger.settle_position(pos, price, TradeActivity.RESOLUTION)
                )
            elif force and is_expired(pos.market_slug):
                summary.add(self.ledger.settle_position(pos, 0.0, TradeActivity.EXPIRY))

        if summary.settled_count:
            logger.info(
                "resolved_positions_settled",
                extra={
                    "count": summary.settled_count,
                    "pnl": round(summary.total_pnl, 2),
                    "wins": summary.wins,
                    "losses": summary.losses,
                },
            )
        return summary

    async def mark_to_market(self) -> float:
        """Refresh mark prices and unrealized P&L of open positions.

        Closed or unreachable markets are flagged resolved and keep their
        previous price data; the next settlement pass handles them.

        Returns:
            Total unrealized P&L across open positions.
        """
        for pos in self.ledger.open_positions():
            try:
                market = await self.directory.get_market_by_slug(pos.market_slug)
            except Exception:
                logger.debug("mark_lookup_failed", extra={"market": pos.market_slug}, exc_info=True)
                pos.resolved = True
                continue

            if market is None or market.closed:
                pos.resolved = True
                continue

            price = market.price_for(pos.outcome)
            pos.current_price = price if price is not None else pos.mark_price
            pos.unrealized_pnl = pos.shares * pos.current_price - pos.total_cost

        total = self.ledger.recompute_unrealized()
        self.ledger.save()
        return total

    def check_stop_losses(self, percent: float) -> SettlementSummary:
        """Sell positions whose unrealized loss exceeds ``percent`` of cost."""
        summary = SettlementSummary()
        if percent <= 0:
            return summary

        for pos in self.ledger.open_positions():
            if pos.total_cost <= 0 or pos.unrealized_pnl is None:
                continue
            loss_pct = -pos.unrealized_pnl / pos.total_cost * 100
            if loss_pct < percent:
                continue
            signal = TradeSignal(
                target_wallet="",
                trade_id=f"stop-loss-{pos.token_id[:16]}",
                token_id=pos.token_id,
                market_slug=pos.market_slug,
                outcome=pos.outcome,
                side="SELL",
                price=pos.mark_price,
            )
            trade = self.ledger.sell(
                signal, pos.token_id, pos.mark_price, pos.shares,
                activity=TradeActivity.STOP_LOSS,
            )
            summary.add(trade.pnl or 0.0)
            logger.info(
                "stop_loss_triggered",
                extra={
                    "market": pos.market_slug,
                    "loss_pct": round(loss_pct, 1),
                    "pnl": round(trade.pnl or 0.0, 2),
                },
            )
        return summary

    async def reconcile(
        self, force: bool = False, stop_loss_percent: float = 0.0
    ) -> SettlementSummary:
        """Settlement pass, then mark-to-market, then stop-loss checks."""
        summary = await self.settle_resolved(force=force)
        await self.mark_to_market()
        stopped = self.check_stop_losses(stop_loss_percent)
        summary.settled_count += stopped.settled_count
        summary.total_pnl += stopped.total_pnl
        summary.wins += stopped.wins
        summary.losses += stopped.losses
        return summary
