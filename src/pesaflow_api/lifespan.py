"""Application lifespan: store setup, the callback-timeout sweeper, shutdown."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional

from fastapi import FastAPI

from pesaflow_checkout.orchestrator import CheckoutOrchestrator

logger = logging.getLogger("pesaflow.api")


class IntervalJob:
    """Runs an async callable every `seconds` until stopped.

    A failing run is logged and the job keeps its schedule.
    """

    def __init__(self, name: str, func: Callable[[], Awaitable[object]], seconds: float):
        self.name = name
        self.func = func
        self.seconds = seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._runner(), name=self.name)
        logger.info("Registered interval job: %s (every %ss)", self.name, self.seconds)

    async def _runner(self) -> None:
        while True:
            await asyncio.sleep(self.seconds)
            try:
                await self.func()
            except Exception as e:
                logger.error("Interval job failed: %s - %s: %s", self.name, type(e).__name__, e)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Interval job stopped: %s", self.name)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    orchestrator: CheckoutOrchestrator = app.state.orchestrator
    settings = app.state.settings

    logger.info(
        "Starting pesaflow API...",
        extra={
            "environment": settings.environment,
            "gateway_base_url": settings.gateway_base_url,
            "store_backend": "postgres" if settings.use_postgres else "memory",
        },
    )

    await orchestrator.start()

    sweeper: Optional[IntervalJob] = None
    if settings.enable_expiry_sweep:
        sweeper = IntervalJob(
            "order_callback_timeout",
            orchestrator.expire_stale,
            settings.expiry_sweep_interval_seconds,
        )
        sweeper.start()
    app.state.expiry_sweeper = sweeper

    yield

    logger.info("Shutting down pesaflow API...")
    if sweeper is not None:
        await sweeper.stop()
    await orchestrator.close()
