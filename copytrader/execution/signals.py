"""Trade signals and activity classification.

A TradeSignal is one observed activity of a target wallet. Upstream activity
types are open-ended strings; the router only ever sees one of four closed
branches, so nothing can fall through unhandled.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ActivityType(str, Enum):
    """Activity types reported by the Data API."""

    TRADE = "TRADE"
    BUY = "BUY"
    SELL = "SELL"
    REDEEM = "REDEEM"
    MERGE = "MERGE"
    SPLIT = "SPLIT"
    REWARD = "REWARD"
    CONVERSION = "CONVERSION"
    MAKER_REBATE = "MAKER_REBATE"


class Branch(str, Enum):
    """Handling branch chosen for a signal."""

    TRADE = "trade"     # size -> risk -> order
    REDEEM = "redeem"   # market resolved, settle positions
    MERGE = "merge"     # target exiting, liquidate positions
    SPLIT = "split"     # inventory provisioning, skip


class TradeSignal(BaseModel):
    """An observed activity event of a target wallet. Immutable."""

    model_config = ConfigDict(frozen=True)

    target_wallet: str
    trade_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    activity_type: str = ActivityType.TRADE.value
    token_id: str = ""
    condition_id: Optional[str] = None
    market_slug: Optional[str] = None
    outcome: Optional[str] = None
    side: str = "BUY"
    price: float = Field(default=0.0, ge=0.0)
    size_shares: Optional[float] = None
    notional_usd: Optional[float] = None

    @property
    def market_key(self) -> str:
        """Identifier used for per-market volume accounting."""
        return self.condition_id or self.market_slug or self.token_id


_BRANCHES = {
    ActivityType.REDEEM.value: Branch.REDEEM,
    ActivityType.MERGE.value: Branch.MERGE,
    ActivityType.SPLIT.value: Branch.SPLIT,
}


def classify(signal: TradeSignal) -> Branch:
    """Map a signal to exactly one handling branch.

    Unknown and plain trade activity types take the TRADE branch.
    """
    activity = (signal.activity_type or "").upper()
    return _BRANCHES.get(activity, Branch.TRADE)
