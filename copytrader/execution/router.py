"""Order router: the single entry point that turns a signal into an outcome.

Per signal:

1. Classify the activity into a handling branch
2. TRADE: size -> risk gate -> token resolution -> limit price -> dispatch
3. REDEEM / MERGE: settle or liquidate ledger positions (paper mode)
4. SPLIT: skip

Every outcome, skipped or executed, comes back as an ExecutionResult and is
logged with the trade id, side, price and size. Skips are values, never
exceptions. Transport failures become failed results and never touch the
ledger.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Protocol

from pydantic import BaseModel, Field

from copytrader.api.token_resolver import is_qualified_token_id
from copytrader.config import EXECUTION_DRY_RUN, EXECUTION_MODE
from copytrader.execution.ledger import (
    InsufficientBalanceError,
    NoOpenPositionError,
    PositionLedger,
)
from copytrader.execution.orders import OrderRequest, OrderResult, OrderStatus
from copytrader.execution.risk_manager import RiskManager
from copytrader.execution.settlement import SettlementEngine, SettlementSummary
from copytrader.execution.signals import Branch, TradeSignal, classify
from copytrader.execution.sizing import SizingPolicy, compute_size, limit_price
from copytrader.execution.volume import VolumeTracker

logger = logging.getLogger(__name__)


class ExecutionMode(str, Enum):
    DRY_RUN = "dry_run"   # simulate, no state mutation
    PAPER = "paper"       # fill against the virtual ledger
    LIVE = "live"         # submit to the CLOB

    @classmethod
    def from_config(cls) -> ExecutionMode:
        if EXECUTION_DRY_RUN:
            return cls.DRY_RUN
        return cls.LIVE if EXECUTION_MODE == "live" else cls.PAPER


class TokenResolverLike(Protocol):
    async def resolve(
        self,
        token_id: Optional[str] = None,
        condition_id: Optional[str] = None,
        market_slug: Optional[str] = None,
        outcome: Optional[str] = None,
    ) -> Optional[str]: ...


class OrderService(Protocol):
    async def place_limit_order(
        self, token_id: str, side: str, price: float, size: float, slippage: float = 0.01
    ) -> OrderResult: ...


class ExecutionResult(BaseModel):
    """Uniform outcome of routing one signal."""

    signal: TradeSignal
    branch: Branch
    mode: ExecutionMode
    skipped: bool = False
    skip_reason: str = ""
    dry_run: bool = False
    order: Optional[OrderRequest] = None
    result: Optional[OrderResult] = None
    settlement: Optional[SettlementSummary] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def success(self) -> bool:
        if self.skipped:
            return False
        if self.result is not None:
            return self.result.success
        return self.settlement is not None


class OrderRouter:
    """Routes trade signals to simulation, the paper ledger or the CLOB.

    Attributes:
        mode: Dispatch target for TRADE signals.
        sizing: Sizing policy.
        risk: Pre-trade risk gate.
    """

    def __init__(
        self,
        sizing: SizingPolicy,
        risk: RiskManager,
        resolver: TokenResolverLike,
        ledger: PositionLedger,
        settlement: SettlementEngine,
        volume: VolumeTracker,
        order_service: Optional[OrderService] = None,
        mode: ExecutionMode = ExecutionMode.PAPER,
    ) -> None:
        if mode == ExecutionMode.LIVE and order_service is None:
            raise ValueError("live mode requires an order service")
        self.sizing = sizing
        self.risk = risk
        self.resolver = resolver
        self.ledger = ledger
        self.settlement = settlement
        self.volume = volume
        self.order_service = order_service
        self.mode = mode

    async def execute(self, signal: TradeSignal) -> ExecutionResult:
        """Route one signal through its branch.

        Args:
            signal: The observed target-wallet activity.

        Returns:
            ExecutionResult describing the skip, simulation or execution.
        """
        branch = classify(signal)

        if branch == Branch.SPLIT:
            return self._skip(signal, branch, "SPLIT activity is inventory provisioning, not a trade")
        elif branch == Branch.REDEEM:
            return self._settle(signal, branch, self.settlement.redeem)
        elif branch == Branch.MERGE:
            return self._settle(signal, branch, self.settlement.merge)
        else:
            return await self._execute_trade(signal)

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    def _settle(self, signal: TradeSignal, branch: Branch, action) -> ExecutionResult:
        if self.mode != ExecutionMode.PAPER:
            return self._skip(
                signal, branch, f"{branch.value.upper()} is only applied to the paper ledger"
            )

        summary = action(signal)
        if summary.settled_count == 0:
            return self._skip(signal, branch, "No matching open positions")

        return ExecutionResult(
            signal=signal,
            branch=branch,
            mode=self.mode,
            settlement=summary,
        )

    async def _execute_trade(self, signal: TradeSignal) -> ExecutionResult:
        branch = Branch.TRADE
        side = signal.side.upper()

        sized = compute_size(signal, self.sizing)
        if sized.is_skip:
            return self._skip(signal, branch, "Order size below minimum")

        check = self.risk.check_trade(signal, sized.usd_value)
        if not check.approved:
            return self._skip(signal, branch, f"Risk check failed: {check.message}")

        token_id = await self._resolve_token(signal)
        if not token_id:
            return self._skip(signal, branch, "Could not resolve token id")

        order = OrderRequest(
            token_id=token_id,
            side=side,
            price=limit_price(signal.price, side, self.sizing.slippage),
            size=sized.size,
            usd_value=sized.usd_value,
            condition_id=signal.condition_id,
            market_slug=signal.market_slug,
        )

        if self.mode == ExecutionMode.DRY_RUN:
            result = OrderResult(
                success=True,
                status=OrderStatus.DRY_RUN,
                order_id=f"DRY_RUN_{int(time.time() * 1000)}",
                executed_price=order.price,
                executed_size=order.size,
            )
        elif self.mode == ExecutionMode.PAPER:
            try:
                result = self._fill_paper(signal, order)
            except NoOpenPositionError as e:
                return self._skip(signal, branch, str(e), order=order)
        else:
            result = await self._submit_live(signal, order)

        # dry runs leave no state behind, volume included
        if result.success and self.mode != ExecutionMode.DRY_RUN:
            self.volume.add(self._filled_notional(order, result), signal.market_key)

        logger.info(
            "order_placed" if result.success else "order_failed",
            extra={
                "trade_id": signal.trade_id,
                "mode": self.mode.value,
                "side": order.side,
                "price": order.price,
                "size": order.size,
                "usd_value": round(order.usd_value, 2),
                "order_id": result.order_id,
                "error": result.error,
            },
        )
        return ExecutionResult(
            signal=signal,
            branch=branch,
            mode=self.mode,
            dry_run=self.mode == ExecutionMode.DRY_RUN,
            order=order,
            result=result,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _resolve_token(self, signal: TradeSignal) -> Optional[str]:
        if is_qualified_token_id(signal.token_id):
            return signal.token_id
        try:
            return await self.resolver.resolve(
                token_id=signal.token_id or None,
                condition_id=signal.condition_id,
                market_slug=signal.market_slug,
                outcome=signal.outcome,
            )
        except Exception:
            logger.warning("token_resolve_error", extra={"trade_id": signal.trade_id}, exc_info=True)
            return None

    def _fill_paper(self, signal: TradeSignal, order: OrderRequest) -> OrderResult:
        try:
            if order.side == "BUY":
                trade = self.ledger.buy(signal, order.token_id, order.price, order.size)
            else:
                trade = self.ledger.sell(signal, order.token_id, order.price, order.size)
        except InsufficientBalanceError as e:
            return OrderResult(error=str(e))

        return OrderResult(
            success=True,
            status=OrderStatus.PAPER,
            order_id=trade.id,
            executed_price=trade.price,
            executed_size=trade.shares,
        )

    @staticmethod
    def _filled_notional(order: OrderRequest, result: OrderResult) -> float:
        """USD actually traded; a paper sell may be capped below the request."""
        if result.executed_size is not None and result.executed_price is not None:
            return result.executed_size * result.executed_price
        return order.usd_value

    async def _submit_live(self, signal: TradeSignal, order: OrderRequest) -> OrderResult:
        try:
            return await self.order_service.place_limit_order(
                order.token_id, order.side, signal.price, order.size, self.sizing.slippage
            )
        except Exception as e:
            logger.error("live_order_error", extra={"trade_id": signal.trade_id}, exc_info=True)
            return OrderResult(error=str(e))

    def _skip(
        self,
        signal: TradeSignal,
        branch: Branch,
        reason: str,
        order: Optional[OrderRequest] = None,
    ) -> ExecutionResult:
        logger.info(
            "order_skipped",
            extra={
                "trade_id": signal.trade_id,
                "branch": branch.value,
                "side": signal.side,
                "price": signal.price,
                "size": signal.size_shares,
                "reason": reason,
            },
        )
        return ExecutionResult(
            signal=signal,
            branch=branch,
            mode=self.mode,
            skipped=True,
            skip_reason=reason,
            dry_run=self.mode == ExecutionMode.DRY_RUN,
            order=order,
        )
