"""Order request / result models shared by the router and the order service."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class OrderStatus(str, Enum):
    """Where a dispatched order ended up."""

    SUBMITTED = "submitted"   # accepted, match state unknown
    LIVE = "live"             # resting on the book
    MATCHED = "matched"
    REJECTED = "rejected"     # exchange answered without an order id
    FAILED = "failed"         # transport or SDK error
    DRY_RUN = "dry_run"
    PAPER = "paper"


class OrderRequest(BaseModel):
    """Marketable limit order built from a sized signal."""

    token_id: str = Field(..., description="CLOB outcome token.")
    side: str = Field(..., description="BUY or SELL, upper case.")
    price: float = Field(..., ge=0.01, le=0.99, description="Slippage-adjusted limit price.")
    size: float = Field(..., gt=0, description="Outcome tokens to trade.")
    usd_value: float = Field(default=0.0, description="Notional at the signal price.")
    condition_id: Optional[str] = Field(default=None, description="Market condition id.")
    market_slug: Optional[str] = None


class OrderResult(BaseModel):
    """Outcome of dispatching an OrderRequest in any mode."""

    success: bool = False
    status: OrderStatus = OrderStatus.FAILED
    order_id: str = ""
    executed_price: Optional[float] = None
    executed_size: Optional[float] = None
    error: str = ""
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    latency_ms: float = 0.0
