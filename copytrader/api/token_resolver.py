"""Token resolver: maps partial market identifiers to a CLOB token id.

Market metadata is cached in memory by condition id, with a reverse index
from token id to condition id, and persisted through the document store so
restarts do not have to hit the Gamma API again.
"""

from __future__ import annotations

import logging
from typing import Optional

from copytrader.api.gamma_client import GammaClient, MarketInfo
from copytrader.store import DocumentStore

logger = logging.getLogger(__name__)

TOKEN_CACHE_KEY = "token-cache"

# Token ids shorter than this are treated as unverified placeholders.
MIN_TOKEN_ID_LENGTH = 20


def is_qualified_token_id(token_id: Optional[str]) -> bool:
    return bool(token_id) and len(token_id) > MIN_TOKEN_ID_LENGTH


class TokenResolver:
    """Resolve token ids with a persisted metadata cache."""

    def __init__(self, gamma: GammaClient, store: Optional[DocumentStore] = None) -> None:
        self._gamma = gamma
        self._store = store
        self._markets: dict[str, MarketInfo] = {}
        self._token_to_condition: dict[str, str] = {}
        self._load_cache()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_by_condition_id(self, condition_id: str) -> Optional[MarketInfo]:
        cached = self._markets.get(condition_id)
        if cached is not None:
            return cached
        market = await self._gamma.get_market_by_condition_id(condition_id)
        if market is not None:
            self._cache(market)
        return market

    async def get_by_slug(self, slug: str) -> Optional[MarketInfo]:
        for market in self._markets.values():
            if market.slug == slug:
                return market
        market = await self._gamma.get_market_by_slug(slug)
        if market is not None:
            self._cache(market)
        return market

    async def get_by_token_id(self, token_id: str) -> Optional[MarketInfo]:
        condition_id = self._token_to_condition.get(token_id)
        if condition_id and condition_id in self._markets:
            return self._markets[condition_id]
        market = await self._gamma.get_market_by_token_id(token_id)
        if market is not None:
            self._cache(market)
        return market

    async def resolve(
        self,
        token_id: Optional[str] = None,
        condition_id: Optional[str] = None,
        market_slug: Optional[str] = None,
        outcome: Optional[str] = None,
    ) -> Optional[str]:
        """Return the CLOB token id for the given identifiers, or None."""
        if token_id:
            market = await self.get_by_token_id(token_id)
            if market is not None and token_id in market.token_ids:
                return token_id
            if is_qualified_token_id(token_id):
                return token_id

        if condition_id:
            market = await self.get_by_condition_id(condition_id)
            if market is not None:
                return self._select_token(market, outcome)

        if market_slug:
            market = await self.get_by_slug(market_slug)
            if market is not None:
                return self._select_token(market, outcome)

        logger.debug(
            "token_unresolved",
            extra={"condition_id": condition_id, "market_slug": market_slug},
        )
        return None

    @staticmethod
    def _select_token(market: MarketInfo, outcome: Optional[str]) -> Optional[str]:
        idx = market.outcome_index(outcome)
        if idx is None:
            idx = 0  # default to the first (YES) outcome
        if idx < len(market.token_ids) and market.token_ids[idx]:
            return market.token_ids[idx]
        return None

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _cache(self, market: MarketInfo) -> None:
        key = market.condition_id or market.slug
        if not key:
            return
        self._markets[key] = market
        for tid in market.token_ids:
            if tid:
                self._token_to_condition[tid] = key
        self._save_cache()

    def _load_cache(self) -> None:
        if self._store is None:
            return
        doc = self._store.load(TOKEN_CACHE_KEY) or {}
        for key, raw in (doc.get("markets") or {}).items():
            try:
                market = MarketInfo.model_validate(raw)
            except ValueError:
                continue
            self._markets[key] = market
            for tid in market.token_ids:
                self._token_to_condition[tid] = key
        logger.debug("token_cache_loaded", extra={"markets": len(self._markets)})

    def _save_cache(self) -> None:
        if self._store is None:
            return
        try:
            self._store.save(
                TOKEN_CACHE_KEY,
                {"markets": {k: m.model_dump(mode="json") for k, m in self._markets.items()}},
            )
        except Exception:
            logger.warning("token_cache_save_failed", exc_info=True)

    def cache_stats(self) -> dict:
        return {"markets": len(self._markets), "tokens": len(self._token_to_condition)}
