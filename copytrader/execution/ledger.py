"""Position ledger: virtual balance, positions, fills and P&L statistics.

The ledger is the persistence unit of the copy trader. It owns every
locally tracked position (keyed by token id), the append-only trade log and
the aggregate statistics, and writes itself through to the document store
after every mutating call.

Position lifecycle:
    OPEN     -- shares != 0, not settled
    SETTLED  -- shares == 0, settled, settlement price and P&L recorded

SETTLED is terminal. A voluntary full sell removes the position; only
settlement leaves a zeroed, flagged residual behind.
"""

from __future__ import annotations

import csv
import io
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from copytrader.config import PAPER_FEE_RATE, PAPER_STARTING_BALANCE
from copytrader.execution.signals import TradeSignal
from copytrader.store import DocumentStore

logger = logging.getLogger(__name__)

LEDGER_KEY = "paper-state"
_EPS = 1e-9


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class LedgerError(Exception):
    """A ledger operation was rejected before any state changed."""


class InsufficientBalanceError(LedgerError):
    pass


class NoOpenPositionError(LedgerError):
    pass


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PositionState(str, Enum):
    OPEN = "open"
    SETTLED = "settled"


class TradeActivity(str, Enum):
    """What produced a fill."""

    TRADE = "TRADE"
    MERGE = "MERGE"
    REDEEM = "REDEEM"
    EXPIRY = "EXPIRY"
    RESOLUTION = "RESOLUTION"
    STOP_LOSS = "STOP_LOSS"


class Position(BaseModel):
    """A locally tracked position in one outcome token."""

    token_id: str = Field(..., description="Outcome token id (unique key).")
    condition_id: Optional[str] = Field(default=None, description="Market condition id.")
    market_slug: str = Field(default="unknown")
    outcome: str = Field(default="YES")
    shares: float = Field(default=0.0, description="Signed share count, positive = long.")
    avg_entry_price: float = Field(default=0.0, description="Volume-weighted average entry.")
    total_cost: float = Field(default=0.0, description="avg_entry_price * shares.")
    current_price: Optional[float] = Field(default=None, description="Last mark price.")
    unrealized_pnl: Optional[float] = None
    fees_paid: float = 0.0
    opened_at: datetime = Field(default_factory=_now)
    resolved: bool = False
    settled: bool = False
    settlement_price: Optional[float] = None
    settlement_pnl: Optional[float] = None

    @property
    def state(self) -> PositionState:
        return PositionState.SETTLED if self.settled else PositionState.OPEN

    @property
    def is_open(self) -> bool:
        return not self.settled and self.shares > _EPS

    @property
    def mark_price(self) -> float:
        """Last observed price, falling back to the entry price."""
        if self.current_price is not None:
            return self.current_price
        return self.avg_entry_price

    @property
    def market_value(self) -> float:
        return self.shares * self.mark_price


class Trade(BaseModel):
    """Immutable record of one fill, settlement fills included."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"paper-{uuid.uuid4().hex[:12]}")
    timestamp: datetime = Field(default_factory=_now)
    token_id: str
    market_slug: str = "unknown"
    outcome: str = "YES"
    side: str
    price: float
    shares: float
    usd_value: float
    fees: float = 0.0
    pnl: Optional[float] = None
    target_wallet: str = ""
    trade_id: str = ""
    activity: TradeActivity = TradeActivity.TRADE
    settlement: bool = False


class LedgerStats(BaseModel):
    """Aggregate statistics, updated on every fill and realization."""

    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    total_realized_pnl: float = 0.0
    total_unrealized_pnl: float = 0.0
    total_fees: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    avg_trade_size: float = 0.0

    @property
    def win_rate(self) -> float:
        closed = self.winning_trades + self.losing_trades
        return self.winning_trades / closed * 100 if closed > 0 else 0.0

    @property
    def profit_factor(self) -> float:
        if self.gross_loss > 0:
            return self.gross_profit / self.gross_loss
        return float("inf") if self.gross_profit > 0 else 0.0


class LedgerState(BaseModel):
    """Aggregate root persisted as one document."""

    starting_balance: float
    current_balance: float
    positions: dict[str, Position] = Field(default_factory=dict)
    trades: list[Trade] = Field(default_factory=list)
    stats: LedgerStats = Field(default_factory=LedgerStats)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


# ---------------------------------------------------------------------------
# Position Ledger
# ---------------------------------------------------------------------------


class PositionLedger:
    """Virtual-funds ledger for paper trading.

    Attributes:
        state: The full ledger state.
        fee_rate: Simulated fee as a fraction of fill notional.
    """

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        starting_balance: float = PAPER_STARTING_BALANCE,
        fee_rate: float = PAPER_FEE_RATE,
    ) -> None:
        self._store = store
        self.fee_rate = fee_rate
        self.state = self._load(starting_balance)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self, starting_balance: float) -> LedgerState:
        if self._store is not None:
            doc = self._store.load(LEDGER_KEY)
            if doc:
                try:
                    state = LedgerState.model_validate(doc)
                    logger.info(
                        "ledger_loaded",
                        extra={
                            "balance": round(state.current_balance, 2),
                            "positions": len(state.positions),
                            "trades": len(state.trades),
                        },
                    )
                    return state
                except ValueError:
                    logger.warning("ledger_load_failed", exc_info=True)
        return LedgerState(
            starting_balance=starting_balance,
            current_balance=starting_balance,
        )

    def save(self) -> None:
        """Write the ledger through to the store. Failures are non-fatal."""
        self.state.updated_at = _now()
        if self._store is None:
            return
        try:
            self._store.save(LEDGER_KEY, self.state.model_dump(mode="json"))
        except Exception:
            logger.error("ledger_save_failed", exc_info=True)

    def reset(self, starting_balance: Optional[float] = None) -> None:
        """Start over with a fresh account."""
        balance = starting_balance or self.state.starting_balance
        self.state = LedgerState(starting_balance=balance, current_balance=balance)
        self.save()
        logger.info("ledger_reset", extra={"starting_balance": balance})

    # ------------------------------------------------------------------
    # Fills
    # ------------------------------------------------------------------

    @property
    def balance(self) -> float:
        return self.state.current_balance

    def buy(self, signal: TradeSignal, token_id: str, price: float, size: float) -> Trade:
        """Open or add to a long position.

        Raises:
            InsufficientBalanceError: if cost plus fee exceeds the cash balance.
        """
        cost = price * size
        fee = cost * self.fee_rate
        if cost + fee > self.state.current_balance + _EPS:
            raise InsufficientBalanceError(
                f"Insufficient paper balance: need ${cost + fee:.2f}, "
                f"have ${self.state.current_balance:.2f}"
            )

        self.state.current_balance -= cost + fee

        pos = self.state.positions.get(token_id)
        if pos is not None and pos.shares > 0 and not pos.settled:
            new_cost = pos.total_cost + cost
            pos.shares += size
            pos.total_cost = new_cost
            pos.avg_entry_price = new_cost / pos.shares
            pos.fees_paid += fee
        else:
            pos = Position(
                token_id=token_id,
                condition_id=signal.condition_id,
                market_slug=signal.market_slug or "unknown",
                outcome=signal.outcome or "YES",
                shares=size,
                avg_entry_price=price,
                total_cost=cost,
                current_price=price,
                fees_paid=fee,
            )
            self.state.positions[token_id] = pos

        trade = Trade(
            token_id=token_id,
            market_slug=pos.market_slug,
            outcome=pos.outcome,
            side="BUY",
            price=price,
            shares=size,
            usd_value=cost,
            fees=fee,
            target_wallet=signal.target_wallet,
            trade_id=signal.trade_id,
        )
        self._record_fill(trade)
        self.save()

        logger.info(
            "paper_buy",
            extra={
                "token_id": token_id[:16],
                "market": pos.market_slug,
                "price": price,
                "shares": size,
                "fees": round(fee, 4),
                "balance": round(self.state.current_balance, 2),
            },
        )
        return trade

    def sell(
        self,
        signal: TradeSignal,
        token_id: str,
        price: float,
        size: float,
        activity: TradeActivity = TradeActivity.TRADE,
    ) -> Trade:
        """Close up to ``size`` shares of an open long position.

        Raises:
            NoOpenPositionError: if there is no open long position to sell.
        """
        pos = self.state.positions.get(token_id)
        if pos is None or not pos.is_open:
            raise NoOpenPositionError(f"No open position to sell for token {token_id[:16]}")

        closed = min(size, pos.shares)
        proceeds = price * closed
        fee = proceeds * self.fee_rate
        cost_basis = pos.avg_entry_price * closed
        pnl = (proceeds - fee) - cost_basis

        self.state.current_balance += proceeds - fee
        pos.shares -= closed
        pos.total_cost = pos.avg_entry_price * pos.shares
        pos.fees_paid += fee

        if pos.shares <= _EPS:
            del self.state.positions[token_id]

        trade = Trade(
            token_id=token_id,
            market_slug=pos.market_slug,
            outcome=pos.outcome,
            side="SELL",
            price=price,
            shares=closed,
            usd_value=proceeds,
            fees=fee,
            pnl=pnl,
            target_wallet=signal.target_wallet,
            trade_id=signal.trade_id,
            activity=activity,
        )
        self._record_realization(pnl)
        self._record_fill(trade)
        self.save()

        logger.info(
            "paper_sell",
            extra={
                "token_id": token_id[:16],
                "market": pos.market_slug,
                "price": price,
                "shares": closed,
                "pnl": round(pnl, 2),
                "activity": activity.value,
                "balance": round(self.state.current_balance, 2),
            },
        )
        return trade

    def settle_position(
        self,
        position: Position,
        settlement_price: float,
        activity: TradeActivity,
        target_wallet: str = "",
        trade_id: str = "",
    ) -> float:
        """Settle a position at 1.0 (won) or 0.0 (lost). Fee-free.

        Already settled or empty positions are left untouched.

        Returns:
            Realized P&L, 0.0 for a no-op.
        """
        if position.settled or position.shares == 0:
            return 0.0

        shares = position.shares
        value = shares * settlement_price
        pnl = value - position.total_cost

        self.state.current_balance += value
        position.resolved = True
        position.settled = True
        position.settlement_price = settlement_price
        position.settlement_pnl = pnl
        position.current_price = settlement_price
        position.unrealized_pnl = 0.0
        position.shares = 0.0
        position.total_cost = 0.0

        self.state.trades.append(
            Trade(
                token_id=position.token_id,
                market_slug=position.market_slug,
                outcome=position.outcome,
                side="SELL",
                price=settlement_price,
                shares=shares,
                usd_value=value,
                pnl=pnl,
                target_wallet=target_wallet,
                trade_id=trade_id,
                activity=activity,
                settlement=True,
            )
        )
        self._record_realization(pnl)
        self.save()

        logger.info(
            "position_settled",
            extra={
                "market": position.market_slug,
                "outcome": position.outcome,
                "won": settlement_price >= 0.99,
                "activity": activity.value,
                "settlement_value": round(value, 2),
                "pnl": round(pnl, 2),
            },
        )
        return pnl

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def _record_fill(self, trade: Trade) -> None:
        stats = self.state.stats
        self.state.trades.append(trade)
        stats.total_trades += 1
        stats.total_fees += trade.fees

        fills = [t for t in self.state.trades if not t.settlement]
        stats.avg_trade_size = sum(t.usd_value for t in fills) / len(fills)

    def _record_realization(self, pnl: float) -> None:
        stats = self.state.stats
        stats.total_realized_pnl += pnl
        if pnl > 0:
            stats.winning_trades += 1
            stats.gross_profit += pnl
            stats.largest_win = max(stats.largest_win, pnl)
        elif pnl < 0:
            stats.losing_trades += 1
            stats.gross_loss += -pnl
            stats.largest_loss = min(stats.largest_loss, pnl)

    def recompute_unrealized(self) -> float:
        """Sum unrealized P&L over open positions into the stats."""
        total = sum(
            p.unrealized_pnl or 0.0 for p in self.state.positions.values() if p.is_open
        )
        self.state.stats.total_unrealized_pnl = total
        return total

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_position(self, token_id: str) -> Optional[Position]:
        return self.state.positions.get(token_id)

    def get_positions(self, include_settled: bool = False) -> list[Position]:
        return [
            p for p in self.state.positions.values()
            if include_settled or p.is_open
        ]

    def open_positions(
        self,
        market_slug: Optional[str] = None,
        condition_id: Optional[str] = None,
    ) -> list[Position]:
        """Open, unsettled positions, optionally restricted to one market.

        A position matches the market when its slug equals ``market_slug``
        or its condition id equals ``condition_id``.
        """
        positions = [p for p in self.state.positions.values() if p.is_open]
        if market_slug is None and condition_id is None:
            return positions
        return [
            p for p in positions
            if (market_slug and p.market_slug == market_slug)
            or (condition_id and p.condition_id == condition_id)
        ]

    def prune_settled(self) -> int:
        """Drop settled residual positions. Returns how many were removed."""
        settled = [tid for tid, p in self.state.positions.items() if p.settled]
        for tid in settled:
            del self.state.positions[tid]
        if settled:
            self.save()
        return len(settled)

    def get_stats(self) -> dict:
        """Statistics plus account figures for reporting."""
        s = self.state
        position_value = sum(abs(p.shares) * p.avg_entry_price for p in s.positions.values())
        total_return = 0.0
        if s.starting_balance > 0:
            total_return = (
                (s.current_balance - s.starting_balance + s.stats.total_unrealized_pnl)
                / s.starting_balance * 100
            )
        return {
            **s.stats.model_dump(),
            "win_rate": s.stats.win_rate,
            "profit_factor": s.stats.profit_factor,
            "current_balance": s.current_balance,
            "starting_balance": s.starting_balance,
            "position_value": position_value,
            "position_count": len(self.get_positions()),
            "total_return": total_return,
        }

    def export_trades(self) -> str:
        """Trade history as CSV text."""
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow([
            "Timestamp", "Market", "Side", "Shares", "Price",
            "USD Value", "Fees", "PnL", "Target Wallet",
        ])
        for t in self.state.trades:
            writer.writerow([
                t.timestamp.isoformat(),
                t.market_slug,
                t.side,
                f"{t.shares:.4f}",
                f"{t.price:.4f}",
                f"{t.usd_value:.2f}",
                f"{t.fees:.4f}",
                f"{t.pnl:.2f}" if t.pnl is not None else "",
                t.target_wallet,
            ])
        return buf.getvalue()
