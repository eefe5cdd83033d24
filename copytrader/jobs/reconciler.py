"""Job: periodic settlement and mark-to-market of the paper ledger."""

from __future__ import annotations

import logging

from copytrader.config import FORCE_SETTLE_EXPIRED, STOP_LOSS_PERCENT
from copytrader.context import AppContext
from copytrader.execution.router import ExecutionMode
from copytrader.execution.settlement import SettlementSummary

logger = logging.getLogger(__name__)


async def run_reconcile(
    ctx: AppContext,
    force: bool = FORCE_SETTLE_EXPIRED,
    stop_loss_percent: float = STOP_LOSS_PERCENT,
) -> SettlementSummary:
    """Settle resolved markets, refresh marks and apply stop-losses.

    Only the paper ledger is reconciled; live positions settle on chain.
    """
    if ctx.mode != ExecutionMode.PAPER:
        return SettlementSummary()

    async with ctx.lock:
        summary = await ctx.settlement.reconcile(force=force, stop_loss_percent=stop_loss_percent)

    stats = ctx.ledger.get_stats()
    logger.info(
        "reconcile_complete",
        extra={
            "settled": summary.settled_count,
            "pnl": round(summary.total_pnl, 2),
            "open_positions": stats["position_count"],
            "balance": round(stats["current_balance"], 2),
            "unrealized_pnl": round(stats["total_unrealized_pnl"], 2),
        },
    )
    return summary
