"""Tests for context wiring, the reconcile job and the ledger commands."""

import json
import time

import pytest

from copytrader.api.gamma_client import GammaClient, MarketInfo
from copytrader.context import build_context
from copytrader.execution.ledger import LEDGER_KEY
from copytrader.execution.router import ExecutionMode
from copytrader.execution.signals import TradeSignal
from copytrader.jobs.reconciler import run_reconcile
from copytrader.main import _build_parser, _run_command
from copytrader.store import MemoryDocumentStore

YES = "1" * 40
NO = "2" * 40


class FakeGamma:
    def __init__(self, markets=None):
        self.markets = markets or {}
        self.closed = False

    async def get_market_by_slug(self, slug):
        return self.markets.get(slug)

    async def get_resolution(self, slug):
        return GammaClient.resolution_from_market(self.markets.get(slug))

    async def get_resolution_by_token_id(self, token_id):
        return GammaClient.resolution_from_market(None)

    async def close(self):
        self.closed = True


def _ctx(mode=ExecutionMode.PAPER, markets=None, store=None):
    return build_context(
        store=store or MemoryDocumentStore(),
        mode=mode,
        targets=["0xTARGET"],
        gamma=FakeGamma(markets),
    )


def _buy(ctx, slug="will-it-rain", token=YES, price=0.40, size=10):
    signal = TradeSignal(
        target_wallet="0xtarget", trade_id=f"tx-{token[:4]}-{slug}", token_id=token,
        condition_id="0xcond", market_slug=slug, outcome="YES", price=price,
    )
    ctx.ledger.buy(signal, token, price, size)


def _run(ctx, *argv):
    args = _build_parser().parse_args(list(argv))
    return _run_command(args, ctx)


# ============================================================
# Context
# ============================================================

class TestContext:
    def test_targets_lower_cased(self):
        ctx = _ctx()
        assert ctx.targets == ["0xtarget"]
        assert ctx.mode == ExecutionMode.PAPER

    def test_status_is_json_safe(self):
        ctx = _ctx()
        _buy(ctx)
        ctx.ledger.sell(
            TradeSignal(target_wallet="0xtarget", trade_id="s", token_id=YES, side="SELL"),
            YES, 0.60, 10,
        )
        status = ctx.status()
        assert status["ledger"]["profit_factor"] is None
        json.dumps(status)

    @pytest.mark.asyncio
    async def test_aclose_saves_ledger(self):
        store = MemoryDocumentStore()
        ctx = _ctx(store=store)
        await ctx.aclose()
        assert ctx.gamma.closed
        assert LEDGER_KEY in store.documents


# ============================================================
# Reconcile job
# ============================================================

class TestReconcileJob:
    @pytest.mark.asyncio
    async def test_settles_resolved_markets(self):
        market = MarketInfo(
            condition_id="0xcond", slug="will-it-rain", closed=True,
            outcomes=["Yes", "No"], outcome_prices=[1.0, 0.0], token_ids=[YES, NO],
        )
        ctx = _ctx(markets={"will-it-rain": market})
        _buy(ctx)

        summary = await run_reconcile(ctx, force=False, stop_loss_percent=0.0)

        assert summary.settled_count == 1
        assert ctx.ledger.get_position(YES).settled

    @pytest.mark.asyncio
    async def test_non_paper_modes_do_nothing(self):
        ctx = _ctx(mode=ExecutionMode.DRY_RUN)
        _buy(ctx)
        summary = await run_reconcile(ctx, force=True)
        assert summary.settled_count == 0
        assert ctx.ledger.get_position(YES).is_open


# ============================================================
# Ledger commands
# ============================================================

class TestCommands:
    @pytest.mark.asyncio
    async def test_stats(self, capsys):
        ctx = _ctx()
        await _run(ctx, "stats")
        out = json.loads(capsys.readouterr().out)
        assert out["current_balance"] == pytest.approx(ctx.ledger.balance)

    @pytest.mark.asyncio
    async def test_export_to_file(self, tmp_path):
        ctx = _ctx()
        _buy(ctx)
        path = tmp_path / "trades.csv"
        await _run(ctx, "export", "-o", str(path))
        lines = path.read_text().strip().split("\n")
        assert len(lines) == 2
        assert lines[0].startswith("Timestamp,Market")

    @pytest.mark.asyncio
    async def test_settle_expired_then_prune(self, capsys):
        ctx = _ctx()
        old = int(time.time()) - 3600
        _buy(ctx, slug=f"btc-updown-15m-{old}")

        await _run(ctx, "settle-expired", "--win")
        settled = json.loads(capsys.readouterr().out)
        assert settled["settled_count"] == 1
        assert settled["total_pnl"] == pytest.approx(6.0)

        await _run(ctx, "prune")
        assert json.loads(capsys.readouterr().out) == {"pruned": 1}
        assert ctx.ledger.get_positions(include_settled=True) == []

    @pytest.mark.asyncio
    async def test_reset(self):
        ctx = _ctx()
        _buy(ctx)
        await _run(ctx, "reset", "--balance", "250")
        assert ctx.ledger.balance == pytest.approx(250.0)
        assert ctx.ledger.get_positions() == []
