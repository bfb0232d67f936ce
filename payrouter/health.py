"""Periodic polling of processor health endpoints."""

from __future__ import annotations

import asyncio

import aiohttp

from .config import Settings
from .payments import ServiceHealthPayload
from .routing import AdaptiveRouter

UNHEALTHY = ServiceHealthPayload(failing=True, min_response_time=99999)


class HealthUpdater:
    """Polls both processors' health endpoints and feeds the results to a router."""

    def __init__(
        self,
        router: AdaptiveRouter,
        settings: Settings | None = None,
        session: aiohttp.ClientSession | None = None,
        interval: float = 7.0,
    ) -> None:
        self.router = router
        self.settings = settings or Settings()
        self.interval = interval
        self._session = session
        self._owns_session = session is None
        self._task: asyncio.Task[None] | None = None

    async def get_health_status(self, health_url: str) -> ServiceHealthPayload:
        """Fetch one health report; any failure yields a failing, very slow report."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
        try:
            async with self._session.get(health_url) as response:
                if response.status != 200:
                    return UNHEALTHY
                data = await response.json(content_type=None)
            return ServiceHealthPayload() if data is None else ServiceHealthPayload.from_dict(data)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, OSError):
            return UNHEALTHY

    async def update_metrics(self) -> None:
        """Poll both processors and update the router's latencies and circuit."""
        default_state, fallback_state = await asyncio.gather(
            self.get_health_status(self.settings.health_processor_url_default),
            self.get_health_status(self.settings.health_processor_url_fallback),
        )
        self.router.update_health_metrics(
            default_state.min_response_time / 1000.0,
            fallback_state.min_response_time / 1000.0,
            default_state.failing,
        )

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.update_metrics()

    async def start(self) -> None:
        """Poll once now, then keep polling in the background."""
        await self.update_metrics()
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        """Stop polling and close the HTTP session if this updater created it."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None