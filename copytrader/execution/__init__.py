"""Execution layer for the copy trader.

This package turns observed target-wallet activity into orders and ledger
mutations. It classifies each signal, sizes the mirrored order, gates it
through risk limits, and dispatches it to a dry-run simulation, the paper
ledger, or the live CLOB. Resolution and exit events settle positions.

Modules:
    signals     -- Trade signals and activity classification
    sizing      -- Order sizing policies and limit prices
    risk_manager -- Market lists, per-trade / per-market / daily caps
    volume      -- Daily traded-volume accounting
    ledger      -- Paper balance, positions, trade log and statistics
    settlement  -- REDEEM / MERGE / expiry / resolution settlement
    orders      -- Order request / result models
    router      -- Order router tying the above together
"""

from copytrader.execution.ledger import (
    InsufficientBalanceError,
    LedgerError,
    NoOpenPositionError,
    Position,
    PositionLedger,
    Trade,
)
from copytrader.execution.orders import OrderRequest, OrderResult, OrderStatus
from copytrader.execution.risk_manager import RiskCheck, RiskConfig, RiskManager, RiskViolation
from copytrader.execution.router import ExecutionMode, ExecutionResult, OrderRouter
from copytrader.execution.settlement import SettlementEngine, SettlementSummary
from copytrader.execution.signals import Branch, TradeSignal, classify
from copytrader.execution.sizing import SizeResult, SizingMode, SizingPolicy, compute_size
from copytrader.execution.volume import DailyVolume, VolumeTracker

__all__ = [
    "Branch",
    "DailyVolume",
    "ExecutionMode",
    "ExecutionResult",
    "InsufficientBalanceError",
    "LedgerError",
    "NoOpenPositionError",
    "OrderRequest",
    "OrderResult",
    "OrderStatus",
    "OrderRouter",
    "Position",
    "PositionLedger",
    "RiskCheck",
    "RiskConfig",
    "RiskManager",
    "RiskViolation",
    "SettlementEngine",
    "SettlementSummary",
    "SizeResult",
    "SizingMode",
    "SizingPolicy",
    "Trade",
    "TradeSignal",
    "VolumeTracker",
    "classify",
    "compute_size",
]
