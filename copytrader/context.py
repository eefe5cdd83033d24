"""Application context: owns every collaborator of a running copy trader.

Jobs and the health endpoint receive the context explicitly instead of
reaching for module-level singletons, so tests can build isolated instances.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Optional

from copytrader.api.clob_client import ClobOrderService
from copytrader.api.data_client import DataClient
from copytrader.api.gamma_client import GammaClient
from copytrader.api.rate_limiter import TokenBucket
from copytrader.api.token_resolver import TokenResolver
from copytrader.config import COPY_TARGETS, DATA_DIR
from copytrader.execution.ledger import PositionLedger
from copytrader.execution.risk_manager import RiskConfig, RiskManager
from copytrader.execution.router import ExecutionMode, OrderRouter
from copytrader.execution.settlement import SettlementEngine
from copytrader.execution.sizing import SizingPolicy
from copytrader.execution.volume import VolumeTracker
from copytrader.store import DocumentStore, JsonDocumentStore

logger = logging.getLogger(__name__)


class AppContext:
    """Wired-up collaborators plus the lock serializing ledger mutation.

    Attributes:
        lock: Held by any job that may mutate the ledger.
        targets: Lower-cased wallet addresses being copied.
    """

    def __init__(
        self,
        store: DocumentStore,
        gamma: GammaClient,
        data: DataClient,
        resolver: TokenResolver,
        ledger: PositionLedger,
        volume: VolumeTracker,
        risk: RiskManager,
        settlement: SettlementEngine,
        router: OrderRouter,
        targets: list[str],
    ) -> None:
        self.store = store
        self.gamma = gamma
        self.data = data
        self.resolver = resolver
        self.ledger = ledger
        self.volume = volume
        self.risk = risk
        self.settlement = settlement
        self.router = router
        self.targets = targets
        self.lock = asyncio.Lock()

    @property
    def mode(self) -> ExecutionMode:
        return self.router.mode

    def status(self) -> dict:
        """JSON-safe snapshot for the health endpoint."""
        stats = self.ledger.get_stats()
        if math.isinf(stats["profit_factor"]):
            stats["profit_factor"] = None
        return {
            "mode": self.mode.value,
            "targets": len(self.targets),
            "risk": self.risk.status(),
            "ledger": stats,
            "token_cache": self.resolver.cache_stats(),
        }

    async def aclose(self) -> None:
        await self.gamma.close()
        await self.data.close()
        self.ledger.save()
        logger.info("context_closed")


def build_context(
    store: Optional[DocumentStore] = None,
    mode: Optional[ExecutionMode] = None,
    targets: Optional[list[str]] = None,
    gamma: Optional[GammaClient] = None,
    data: Optional[DataClient] = None,
    order_service: Optional[ClobOrderService] = None,
) -> AppContext:
    """Construct the context from configuration, with optional overrides."""
    store = store or JsonDocumentStore(DATA_DIR)
    mode = mode or ExecutionMode.from_config()

    limiter = TokenBucket()
    gamma = gamma or GammaClient(limiter=limiter)
    data = data or DataClient(limiter=limiter)
    resolver = TokenResolver(gamma, store=store)

    ledger = PositionLedger(store=store)
    volume = VolumeTracker(store=store)
    risk = RiskManager(RiskConfig(dry_run=mode == ExecutionMode.DRY_RUN), volume)
    settlement = SettlementEngine(ledger, gamma)

    if mode == ExecutionMode.LIVE and order_service is None:
        order_service = ClobOrderService()

    router = OrderRouter(
        sizing=SizingPolicy(),
        risk=risk,
        resolver=resolver,
        ledger=ledger,
        settlement=settlement,
        volume=volume,
        order_service=order_service,
        mode=mode,
    )

    ctx = AppContext(
        store=store,
        gamma=gamma,
        data=data,
        resolver=resolver,
        ledger=ledger,
        volume=volume,
        risk=risk,
        settlement=settlement,
        router=router,
        targets=[t.lower() for t in (targets if targets is not None else COPY_TARGETS)],
    )
    logger.info(
        "context_built",
        extra={"mode": mode.value, "targets": len(ctx.targets), "balance": ledger.balance},
    )
    return ctx
