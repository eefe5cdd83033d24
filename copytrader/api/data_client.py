"""Client for the Polymarket Data API (wallet activity)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx

from copytrader.api.rate_limiter import TokenBucket
from copytrader.config import DATA_API_URL, HTTP_TIMEOUT
from copytrader.execution.signals import ActivityType, TradeSignal

logger = logging.getLogger(__name__)

COPYABLE_ACTIVITY_TYPES = {
    ActivityType.TRADE.value,
    ActivityType.SPLIT.value,
    ActivityType.MERGE.value,
    ActivityType.REDEEM.value,
}
SKIPPED_ACTIVITY_TYPES = {
    ActivityType.REWARD.value,
    ActivityType.CONVERSION.value,
    ActivityType.MAKER_REBATE.value,
}

# SPLIT/MERGE rows report the collateral ratio, not a market price
_SET_PRICE_FALLBACK = 0.5


class DataClient:
    """Fetch public wallet activity from the Data API."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        limiter: Optional[TokenBucket] = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=DATA_API_URL,
            timeout=HTTP_TIMEOUT,
        )
        self._limiter = limiter or TokenBucket()

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_activity(self, wallet: str, limit: int = 50) -> list[dict]:
        """GET /activity -- newest-first activity rows for a wallet.

        Rows whose type is not copyable are dropped here. Transport errors
        are logged and yield an empty list.
        """
        params = {
            "user": wallet,
            "limit": limit,
            "sortBy": "TIMESTAMP",
            "sortDirection": "DESC",
        }
        await self._limiter.acquire()
        try:
            resp = await self._client.get("/activity", params=params)
            resp.raise_for_status()
            rows = resp.json()
        except Exception:
            logger.warning("fetch_activity_error", extra={"wallet": wallet}, exc_info=True)
            return []

        if not isinstance(rows, list):
            return []

        activities = []
        for row in rows:
            act_type = str(row.get("type") or "TRADE").upper()
            if act_type in COPYABLE_ACTIVITY_TYPES:
                activities.append(row)
            elif act_type not in SKIPPED_ACTIVITY_TYPES:
                logger.warning("unknown_activity_type", extra={"type": act_type, "wallet": wallet})
        return activities

    async def fetch_signals(self, wallet: str, limit: int = 50) -> list[TradeSignal]:
        """Activity rows normalized into signals, oldest first."""
        rows = await self.fetch_activity(wallet, limit=limit)
        signals = [s for s in (parse_activity(r, wallet) for r in rows) if s is not None]
        signals.sort(key=lambda s: s.timestamp)
        return signals


def _parse_timestamp(raw) -> datetime:
    if isinstance(raw, (int, float)):
        # Seconds on /activity, milliseconds on some older payloads
        seconds = raw / 1000 if raw > 1e12 else raw
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return datetime.now(timezone.utc)


def _to_float(raw) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return 0.0


def parse_activity(raw: dict, wallet: str) -> Optional[TradeSignal]:
    """Normalize one Data API activity row into a TradeSignal.

    Expected raw keys: type, side, asset, conditionId, slug, outcome,
    price, size, usdcSize, timestamp, transactionHash.

    Returns:
        The signal, or None when the row carries no usable market identifier.
    """
    activity_type = str(raw.get("type") or "TRADE").upper()

    if activity_type == ActivityType.SPLIT.value:
        side = "BUY"
    elif activity_type in (ActivityType.MERGE.value, ActivityType.REDEEM.value):
        side = "SELL"
    else:
        side = str(raw.get("side") or "BUY").upper()

    token_id = str(raw.get("asset") or raw.get("tokenId") or "")
    condition_id = raw.get("conditionId") or None
    market_slug = raw.get("slug") or raw.get("market") or None
    if not (token_id or condition_id or market_slug):
        return None

    price = _to_float(raw.get("price"))
    if activity_type in (ActivityType.SPLIT.value, ActivityType.MERGE.value) and price <= 0:
        price = _SET_PRICE_FALLBACK
    size = _to_float(raw.get("size"))
    usdc_size = _to_float(raw.get("usdcSize"))
    notional = usdc_size if usdc_size > 0 else price * size

    trade_id = raw.get("transactionHash") or raw.get("id") or ":".join(
        str(part) for part in (
            wallet.lower(), raw.get("timestamp"), token_id,
            raw.get("side"), raw.get("price"), raw.get("size"),
        )
    )

    outcome = raw.get("outcome")
    return TradeSignal(
        target_wallet=wallet.lower(),
        trade_id=str(trade_id),
        timestamp=_parse_timestamp(raw.get("timestamp")),
        activity_type=activity_type,
        token_id=token_id,
        condition_id=condition_id,
        market_slug=market_slug,
        outcome=str(outcome).upper() if outcome else None,
        side=side,
        price=max(price, 0.0),
        size_shares=size or None,
        notional_usd=notional or None,
    )
