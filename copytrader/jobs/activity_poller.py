"""Job: poll target wallets for new activity and route it.

For each target wallet:

1. Fetch recent activity and normalize it into signals, oldest first
2. Drop trade ids already seen (persisted per wallet, bounded)
3. Mark signals older than MAX_SIGNAL_AGE as seen without executing them
4. Execute the rest one by one under the context lock

A signal is marked seen before it is executed, so a crash mid-order never
replays it on restart.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from copytrader.config import ACTIVITY_LIMIT, MAX_SIGNAL_AGE, SEEN_TRADES_MAX
from copytrader.context import AppContext
from copytrader.execution.router import ExecutionResult
from copytrader.store import DocumentStore

logger = logging.getLogger(__name__)

SEEN_TRADES_KEY = "seen-trades"


class SeenTrades:
    """Per-wallet record of processed trade ids, oldest evicted first."""

    def __init__(self, store: Optional[DocumentStore] = None, max_per_wallet: int = SEEN_TRADES_MAX) -> None:
        self._store = store
        self._max = max_per_wallet
        self._seen: dict[str, list[str]] = {}
        self._index: dict[str, set[str]] = {}
        if store is not None:
            doc = store.load(SEEN_TRADES_KEY) or {}
            for wallet, ids in doc.items():
                if isinstance(ids, list):
                    self._seen[wallet] = [str(i) for i in ids][-self._max:]
                    self._index[wallet] = set(self._seen[wallet])

    def has_seen(self, wallet: str, trade_id: str) -> bool:
        return trade_id in self._index.get(wallet, ())

    def mark(self, wallet: str, trade_id: str) -> None:
        if self.has_seen(wallet, trade_id):
            return
        ids = self._seen.setdefault(wallet, [])
        index = self._index.setdefault(wallet, set())
        ids.append(trade_id)
        index.add(trade_id)
        while len(ids) > self._max:
            index.discard(ids.pop(0))

    def count(self, wallet: str) -> int:
        return len(self._seen.get(wallet, ()))

    def save(self) -> None:
        if self._store is None:
            return
        try:
            self._store.save(SEEN_TRADES_KEY, self._seen)
        except Exception:
            logger.error("seen_trades_save_failed", exc_info=True)


async def poll_wallet(
    ctx: AppContext,
    seen: SeenTrades,
    wallet: str,
    now: Optional[datetime] = None,
) -> list[ExecutionResult]:
    """Process new activity of one wallet. Returns the routed results."""
    now = now or datetime.now(timezone.utc)
    signals = await ctx.data.fetch_signals(wallet, limit=ACTIVITY_LIMIT)

    results: list[ExecutionResult] = []
    stale = 0
    for signal in signals:
        if seen.has_seen(wallet, signal.trade_id):
            continue
        seen.mark(wallet, signal.trade_id)

        age = (now - signal.timestamp).total_seconds()
        if age > MAX_SIGNAL_AGE:
            stale += 1
            continue

        logger.info(
            "signal_received",
            extra={
                "wallet": wallet,
                "trade_id": signal.trade_id,
                "activity": signal.activity_type,
                "side": signal.side,
                "price": signal.price,
                "size": signal.size_shares,
                "market": signal.market_slug,
            },
        )
        async with ctx.lock:
            results.append(await ctx.router.execute(signal))

    seen.save()
    if stale:
        logger.debug("stale_signals_skipped", extra={"wallet": wallet, "count": stale})
    return results


async def run_activity_poll(ctx: AppContext, seen: SeenTrades) -> list[ExecutionResult]:
    """Poll every target wallet once, in order."""
    results: list[ExecutionResult] = []
    for wallet in ctx.targets:
        try:
            results.extend(await poll_wallet(ctx, seen, wallet))
        except Exception:
            logger.error("poll_wallet_error", extra={"wallet": wallet}, exc_info=True)

    if results:
        logger.info(
            "activity_poll_complete",
            extra={
                "processed": len(results),
                "executed": sum(1 for r in results if r.success),
                "skipped": sum(1 for r in results if r.skipped),
            },
        )
    return results
