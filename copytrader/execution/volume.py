"""Daily traded-volume accounting consulted by the risk manager.

Totals are kept per UTC calendar day and reset at the day boundary. The
risk manager only reads them; the router adds to them after an order has
actually been placed so denied trades are never counted.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import BaseModel, Field

from copytrader.store import DocumentStore

logger = logging.getLogger(__name__)

VOLUME_KEY = "daily-volume"


def _utc_today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


class DailyVolume(BaseModel):
    """USD notional traded on one UTC day."""

    date: str = Field(default_factory=_utc_today)
    total_usd: float = 0.0
    by_market: dict[str, float] = Field(default_factory=dict)


class VolumeTracker:
    """Owns the current DailyVolume and persists it write-through."""

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        today: Callable[[], str] = _utc_today,
    ) -> None:
        self._store = store
        self._today = today
        self._volume = DailyVolume(date=today())
        if store is not None:
            doc = store.load(VOLUME_KEY)
            if doc:
                try:
                    self._volume = DailyVolume.model_validate(doc)
                except ValueError:
                    logger.warning("daily_volume_invalid", exc_info=True)

    def _maybe_reset(self) -> None:
        today = self._today()
        if self._volume.date != today:
            logger.info(
                "daily_volume_reset",
                extra={
                    "previous_day": self._volume.date,
                    "final_volume_usd": round(self._volume.total_usd, 2),
                },
            )
            self._volume = DailyVolume(date=today)

    def total(self) -> float:
        self._maybe_reset()
        return self._volume.total_usd

    def for_market(self, market_key: str) -> float:
        self._maybe_reset()
        return self._volume.by_market.get(market_key, 0.0)

    def add(self, usd_value: float, market_key: str = "") -> None:
        """Record volume from a placed order."""
        if usd_value <= 0:
            return
        self._maybe_reset()
        self._volume.total_usd += usd_value
        if market_key:
            self._volume.by_market[market_key] = (
                self._volume.by_market.get(market_key, 0.0) + usd_value
            )
        self._save()

    def snapshot(self) -> DailyVolume:
        self._maybe_reset()
        return self._volume.model_copy(deep=True)

    def _save(self) -> None:
        if self._store is None:
            return
        try:
            self._store.save(VOLUME_KEY, self._volume.model_dump(mode="json"))
        except Exception:
            logger.error("daily_volume_save_failed", exc_info=True)
