"""Client for the Polymarket Gamma API (market metadata and resolution)."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field

from copytrader.api.rate_limiter import TokenBucket
from copytrader.config import GAMMA_API_URL, HTTP_TIMEOUT

logger = logging.getLogger(__name__)

# An outcome price at or above this marks the definitive winner.
_WINNER_THRESHOLD = 0.99


class MarketInfo(BaseModel):
    """Normalized market metadata."""

    condition_id: str = ""
    slug: str = ""
    question: str = ""
    active: bool = False
    closed: bool = False
    outcomes: list[str] = Field(default_factory=list)
    outcome_prices: list[float] = Field(default_factory=list)
    token_ids: list[str] = Field(default_factory=list)
    end_date: Optional[datetime] = None

    @property
    def yes_token_id(self) -> str:
        return self._token_for("YES", 0)

    @property
    def no_token_id(self) -> str:
        return self._token_for("NO", 1)

    def _token_for(self, label: str, default_index: int) -> str:
        idx = self.outcome_index(label)
        if idx is None:
            idx = default_index
        return self.token_ids[idx] if idx < len(self.token_ids) else ""

    def outcome_index(self, outcome: Optional[str]) -> Optional[int]:
        """Index of an outcome label, case-insensitive, YES/NO defaulting to 0/1."""
        if not outcome:
            return None
        wanted = outcome.strip().upper()
        for i, label in enumerate(self.outcomes):
            if str(label).strip().upper() == wanted:
                return i
        if wanted == "YES":
            return 0
        if wanted == "NO":
            return 1
        return None

    def price_for(self, outcome: Optional[str]) -> Optional[float]:
        idx = self.outcome_index(outcome)
        if idx is None or idx >= len(self.outcome_prices):
            return None
        return self.outcome_prices[idx]


class MarketResolution(BaseModel):
    """Resolution status of a market."""

    resolved: bool = False
    winning_token_id: Optional[str] = None
    winning_outcome: Optional[str] = None
    outcome_prices: list[float] = Field(default_factory=list)


class GammaClient:
    """Fetch market metadata from the Gamma API.

    Lookups never raise: transport errors are logged and reported as
    "not found" (None) or as an unresolved market.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        limiter: Optional[TokenBucket] = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=GAMMA_API_URL,
            timeout=HTTP_TIMEOUT,
        )
        self._limiter = limiter or TokenBucket()

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Market lookups
    # ------------------------------------------------------------------

    async def get_market_by_slug(self, slug: str) -> Optional[MarketInfo]:
        return await self._fetch_one({"slug": slug}, "slug", slug)

    async def get_market_by_token_id(self, token_id: str) -> Optional[MarketInfo]:
        # clob_token_ids matches exactly; token_id returns several markets
        return await self._fetch_one({"clob_token_ids": token_id}, "token_id", token_id)

    async def get_market_by_condition_id(self, condition_id: str) -> Optional[MarketInfo]:
        return await self._fetch_one({"condition_id": condition_id}, "condition_id", condition_id)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def get_resolution(self, slug: str) -> MarketResolution:
        """Resolution status by market slug.

        A market counts as resolved only when it is closed and one outcome
        price has reached the winner threshold.
        """
        return self.resolution_from_market(await self.get_market_by_slug(slug))

    async def get_resolution_by_token_id(self, token_id: str) -> MarketResolution:
        return self.resolution_from_market(await self.get_market_by_token_id(token_id))

    @staticmethod
    def resolution_from_market(market: Optional[MarketInfo]) -> MarketResolution:
        if market is None or not market.closed:
            return MarketResolution()

        prices = market.outcome_prices
        winning_index = next(
            (i for i, p in enumerate(prices) if p >= _WINNER_THRESHOLD), -1
        )
        if winning_index < 0:
            logger.debug(
                "market_closed_without_winner",
                extra={"slug": market.slug, "outcome_prices": prices},
            )
            return MarketResolution(outcome_prices=prices)

        if winning_index < len(market.outcomes):
            winning_outcome = str(market.outcomes[winning_index]).upper()
        else:
            winning_outcome = "YES" if winning_index == 0 else "NO"
        winning_token = (
            market.token_ids[winning_index]
            if winning_index < len(market.token_ids)
            else None
        )
        return MarketResolution(
            resolved=True,
            winning_token_id=winning_token,
            winning_outcome=winning_outcome,
            outcome_prices=prices,
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _fetch_one(
        self, params: dict[str, Any], field: str, value: str
    ) -> Optional[MarketInfo]:
        await self._limiter.acquire()
        try:
            resp = await self._client.get("/markets", params=params)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            # 404 / 422 mean the market is unknown or expired
            if exc.response.status_code not in (404, 422):
                logger.warning("gamma_market_error", extra={field: value}, exc_info=True)
            return None
        except Exception:
            logger.warning("gamma_market_error", extra={field: value}, exc_info=True)
            return None

        if isinstance(data, list):
            data = data[0] if data else None
        if not isinstance(data, dict):
            return None
        return self.parse_market(data)

    @classmethod
    def parse_market(cls, m: dict) -> MarketInfo:
        outcomes = [str(o) for o in cls._parse_json_field(m.get("outcomes", "[]"))]
        prices_raw = cls._parse_json_field(m.get("outcomePrices", "[]"))
        token_ids = [str(t) for t in cls._parse_json_field(m.get("clobTokenIds", "[]"))]

        # Older markets carry a tokens array instead of the flat fields
        tokens = m.get("tokens") or []
        if not token_ids and tokens:
            token_ids = [str(t.get("token_id", "")) for t in tokens if isinstance(t, dict)]
        if not outcomes and tokens:
            outcomes = [str(t.get("outcome", "")) for t in tokens if isinstance(t, dict)]
        if not prices_raw and tokens:
            prices_raw = [t.get("price") or 0 for t in tokens if isinstance(t, dict)]

        prices: list[float] = []
        for p in prices_raw:
            try:
                prices.append(float(p))
            except (TypeError, ValueError):
                prices.append(0.0)

        return MarketInfo(
            condition_id=m.get("conditionId") or m.get("condition_id") or "",
            slug=m.get("slug", ""),
            question=m.get("question", ""),
            active=bool(m.get("active")),
            closed=bool(m.get("closed")),
            outcomes=outcomes,
            outcome_prices=prices,
            token_ids=token_ids,
            end_date=cls._parse_dt(m.get("endDate")),
        )

    @staticmethod
    def _parse_json_field(raw: str | list | None) -> list:
        """Handle double-encoded JSON fields (outcomes, outcomePrices, clobTokenIds)."""
        if isinstance(raw, list):
            return raw
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, list):
                return parsed
        except (json.JSONDecodeError, TypeError):
            # Some payloads use "1,0" instead of a JSON array
            if isinstance(raw, str) and "," in raw:
                return [part.strip() for part in raw.split(",")]
        return []

    @staticmethod
    def _parse_dt(raw: str | None) -> Optional[datetime]:
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except (ValueError, TypeError):
            return None
