"""Tests for the CLOB order service with a stand-in SDK client."""

import pytest

from copytrader.api.clob_client import DEFAULT_TICK_SIZE, ClobOrderService
from copytrader.execution.orders import OrderStatus

TOKEN = "8" * 40


class FakeSdkClient:
    """Records calls the way py-clob-client's ClobClient receives them."""

    def __init__(self, response=None, fail_post=False, fail_params=False):
        self.response = response if response is not None else {"orderID": "0xabc", "status": "live"}
        self.fail_post = fail_post
        self.fail_params = fail_params
        self.created = []
        self.param_lookups = 0

    def get_tick_size(self, token_id):
        self.param_lookups += 1
        if self.fail_params:
            raise RuntimeError("no book")
        return "0.001"

    def get_neg_risk(self, token_id):
        return True

    def create_order(self, order_args, options):
        self.created.append((order_args, options))
        return {"signed": order_args.token_id}

    def post_order(self, signed, order_type):
        if self.fail_post:
            raise ConnectionError("timeout")
        return self.response


class TestClobOrderService:
    @pytest.mark.asyncio
    async def test_successful_order(self):
        sdk = FakeSdkClient()
        service = ClobOrderService(client=sdk)

        result = await service.place_limit_order(TOKEN, "buy", 0.50, 20, slippage=0.02)

        assert result.success
        assert result.order_id == "0xabc"
        assert result.status == OrderStatus.LIVE
        assert result.executed_price == pytest.approx(0.51)
        order_args, options = sdk.created[0]
        assert order_args.side == "BUY"
        assert order_args.price == pytest.approx(0.51)
        assert order_args.size == 20
        assert options.tick_size == "0.001"
        assert options.neg_risk is True

    @pytest.mark.asyncio
    async def test_market_params_cached(self):
        sdk = FakeSdkClient()
        service = ClobOrderService(client=sdk)
        await service.place_limit_order(TOKEN, "BUY", 0.5, 10)
        await service.place_limit_order(TOKEN, "SELL", 0.5, 10)
        assert sdk.param_lookups == 1

    @pytest.mark.asyncio
    async def test_market_params_default_on_error(self):
        sdk = FakeSdkClient(fail_params=True)
        service = ClobOrderService(client=sdk)
        await service.place_limit_order(TOKEN, "BUY", 0.5, 10)
        assert sdk.created[0][1].tick_size == DEFAULT_TICK_SIZE

    @pytest.mark.asyncio
    async def test_rejected_without_order_id(self):
        service = ClobOrderService(client=FakeSdkClient(response={"errorMsg": "not enough balance"}))
        result = await service.place_limit_order(TOKEN, "BUY", 0.5, 10)
        assert not result.success
        assert result.status == OrderStatus.REJECTED
        assert result.error == "not enough balance"

    @pytest.mark.asyncio
    async def test_transport_error_reported(self):
        service = ClobOrderService(client=FakeSdkClient(fail_post=True))
        result = await service.place_limit_order(TOKEN, "BUY", 0.5, 10)
        assert not result.success
        assert result.status == OrderStatus.FAILED
        assert "timeout" in result.error

    @pytest.mark.asyncio
    async def test_initialize_requires_private_key(self):
        service = ClobOrderService(private_key="")
        assert not service.is_live
        with pytest.raises(RuntimeError):
            await service.initialize()

    @pytest.mark.parametrize("raw, status", [
        ("live", OrderStatus.LIVE),
        ("matched", OrderStatus.MATCHED),
        ("delayed", OrderStatus.SUBMITTED),
        ("", OrderStatus.SUBMITTED),
    ])
    def test_status_mapping(self, raw, status):
        assert ClobOrderService._map_status(raw) == status
