"""APScheduler-based job scheduler for the copy trader."""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Optional

from aiohttp import web
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from copytrader.config import HEALTH_CHECK_PORT, POLL_INTERVAL, RECONCILE_INTERVAL
from copytrader.context import AppContext
from copytrader.jobs.activity_poller import SeenTrades, run_activity_poll
from copytrader.jobs.reconciler import run_reconcile

logger = logging.getLogger(__name__)


class CopyTraderScheduler:
    """Runs the activity poller and the reconciler on fixed intervals.

    Both jobs run with max_instances=1, so a slow poll is never overlapped
    by the next tick; the context lock keeps them from interleaving.
    """

    def __init__(self, ctx: AppContext) -> None:
        self._ctx = ctx
        self._seen = SeenTrades(ctx.store)
        self._jobs = AsyncIOScheduler()
        self._stopped = asyncio.Event()
        self._web_runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        """Start both jobs and the status endpoint, then wait for a stop signal."""
        for func, seconds, job_id in (
            (self._poll_tick, POLL_INTERVAL, "activity_poll"),
            (self._reconcile_tick, RECONCILE_INTERVAL, "reconcile"),
        ):
            self._jobs.add_job(
                func, "interval", seconds=seconds, id=job_id,
                max_instances=1, coalesce=True,
            )
        self._jobs.start()
        logger.info(
            "copytrader_scheduler_started",
            extra={
                "mode": self._ctx.mode.value,
                "targets": len(self._ctx.targets),
                "poll_interval": POLL_INTERVAL,
                "reconcile_interval": RECONCILE_INTERVAL,
            },
        )

        await self._serve_status()

        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGTERM, self._request_stop, "SIGTERM")
        loop.add_signal_handler(signal.SIGINT, self._request_stop, "SIGINT")

        await self._stopped.wait()
        await self._shutdown()

    def _request_stop(self, name: str) -> None:
        logger.info("stop_requested", extra={"signal": name})
        self._stopped.set()

    async def _shutdown(self) -> None:
        self._jobs.shutdown(wait=False)
        # Seen ids go first so a restart never replays a copied trade
        self._seen.save()
        if self._web_runner is not None:
            await self._web_runner.cleanup()
        await self._ctx.aclose()
        logger.info("copytrader_scheduler_stopped")

    # ------------------------------------------------------------------
    # Jobs; failures are logged and the next tick runs as usual
    # ------------------------------------------------------------------

    async def _poll_tick(self) -> None:
        try:
            await run_activity_poll(self._ctx, self._seen)
        except Exception:
            logger.error("activity_poll_error", exc_info=True)

    async def _reconcile_tick(self) -> None:
        try:
            await run_reconcile(self._ctx)
        except Exception:
            logger.error("reconcile_error", exc_info=True)

    # ------------------------------------------------------------------
    # Status endpoint
    # ------------------------------------------------------------------

    async def _serve_status(self) -> None:
        app = web.Application()
        app.router.add_get("/health", self._status)
        self._web_runner = web.AppRunner(app)
        await self._web_runner.setup()
        await web.TCPSite(self._web_runner, "0.0.0.0", HEALTH_CHECK_PORT).start()
        logger.info("status_endpoint_started", extra={"port": HEALTH_CHECK_PORT})

    async def _status(self, request: web.Request) -> web.Response:
        body = {"status": "ok", "jobs_running": self._jobs.running}
        body.update(self._ctx.status())
        return web.json_response(body)
