"""Live order submission against the Polymarket CLOB via py-clob-client.

The SDK is synchronous, so every call is pushed onto a worker thread with
asyncio.to_thread. The SDK is imported lazily in initialize() so paper and
dry-run installs never need credentials.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from copytrader.config import (
    CLOB_API_URL,
    EXECUTION_CHAIN_ID,
    EXECUTION_FUNDER_ADDRESS,
    EXECUTION_PRIVATE_KEY,
    EXECUTION_SIGNATURE_TYPE,
)
from copytrader.execution.orders import OrderResult, OrderStatus
from copytrader.execution.sizing import limit_price

logger = logging.getLogger(__name__)

DEFAULT_TICK_SIZE = "0.01"


# ---------------------------------------------------------------------------
# Order service
# ---------------------------------------------------------------------------


class ClobOrderService:
    """Narrow, typed wrapper around the py-clob-client SDK.

    Attributes:
        _client: SDK client, created on first use unless injected.
        _market_params: Cached (tick_size, neg_risk) per token id.
    """

    def __init__(
        self,
        private_key: str = EXECUTION_PRIVATE_KEY,
        funder_address: str = EXECUTION_FUNDER_ADDRESS,
        client: Any = None,
    ) -> None:
        self._private_key = private_key
        self._funder_address = funder_address
        self._client = client
        self._market_params: dict[str, tuple[str, bool]] = {}
        self._initialized = client is not None

    async def initialize(self) -> None:
        """Create the SDK client and derive API credentials."""
        if self._initialized:
            return

        if not self._private_key:
            raise RuntimeError("EXECUTION_PRIVATE_KEY is required for live trading")

        try:
            from py_clob_client.client import ClobClient

            self._client = ClobClient(
                host=CLOB_API_URL,
                key=self._private_key,
                chain_id=EXECUTION_CHAIN_ID,
                signature_type=EXECUTION_SIGNATURE_TYPE,
                funder=self._funder_address or None,
            )
            creds = await asyncio.to_thread(self._client.create_or_derive_api_creds)
            self._client.set_api_creds(creds)
        except Exception:
            logger.error("clob_client_init_failed", exc_info=True)
            raise

        self._initialized = True
        logger.info("clob_client_init", extra={"host": CLOB_API_URL})

    async def _get_market_params(self, token_id: str) -> tuple[str, bool]:
        cached = self._market_params.get(token_id)
        if cached is not None:
            return cached
        try:
            tick_size = await asyncio.to_thread(self._client.get_tick_size, token_id)
            neg_risk = await asyncio.to_thread(self._client.get_neg_risk, token_id)
            params = (str(tick_size), bool(neg_risk))
        except Exception:
            logger.debug("market_params_default", extra={"token_id": token_id[:16]}, exc_info=True)
            return DEFAULT_TICK_SIZE, False
        self._market_params[token_id] = params
        return params

    async def place_limit_order(
        self,
        token_id: str,
        side: str,
        price: float,
        size: float,
        slippage: float = 0.01,
    ) -> OrderResult:
        """Place a marketable GTC limit order.

        Args:
            token_id: Outcome token to trade.
            side: BUY or SELL.
            price: Target price; slippage is applied on top of it.
            size: Size in outcome tokens.
            slippage: Fractional price tolerance.

        Returns:
            OrderResult; SDK and transport errors are reported, not raised.
        """
        price = limit_price(price, side, slippage)
        start = time.monotonic()

        try:
            await self.initialize()

            from py_clob_client.clob_types import (
                OrderArgs,
                OrderType,
                PartialCreateOrderOptions,
            )

            tick_size, neg_risk = await self._get_market_params(token_id)
            order_args = OrderArgs(
                token_id=token_id,
                price=price,
                size=size,
                side=side.upper(),
            )
            signed_order = await asyncio.to_thread(
                self._client.create_order,
                order_args,
                PartialCreateOrderOptions(tick_size=tick_size, neg_risk=neg_risk),
            )
            resp = await asyncio.to_thread(self._client.post_order, signed_order, OrderType.GTC)
        except Exception as e:
            logger.error(
                "order_failed",
                extra={"token_id": token_id[:16], "side": side, "error": str(e)},
                exc_info=True,
            )
            return OrderResult(error=str(e), latency_ms=(time.monotonic() - start) * 1000)

        result = OrderResult(latency_ms=(time.monotonic() - start) * 1000)
        if isinstance(resp, dict) and resp.get("orderID"):
            result.success = True
            result.order_id = resp["orderID"]
            result.status = self._map_status(resp.get("status", ""))
            result.executed_price = price
            result.executed_size = size
        elif isinstance(resp, dict):
            result.status = OrderStatus.REJECTED
            result.error = str(resp.get("errorMsg") or resp.get("error") or "No order ID returned")
        else:
            result.error = f"Unexpected response type: {type(resp)}"

        logger.info(
            "clob_order_submitted",
            extra={
                "order_id": result.order_id,
                "status": result.status.value,
                "token_id": token_id[:16],
                "side": side,
                "price": price,
                "size": size,
                "error": result.error,
                "latency_ms": round(result.latency_ms, 1),
            },
        )
        return result

    @staticmethod
    def _map_status(status_str: str) -> OrderStatus:
        """Unknown CLOB statuses count as submitted."""
        mapping = {
            "live": OrderStatus.LIVE,
            "matched": OrderStatus.MATCHED,
            "delayed": OrderStatus.SUBMITTED,
            "unmatched": OrderStatus.SUBMITTED,
        }
        return mapping.get(status_str, OrderStatus.SUBMITTED)

    @property
    def is_live(self) -> bool:
        return self._initialized
