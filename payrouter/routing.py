"""Routing of payments between the default and fallback processors."""

from __future__ import annotations

import asyncio
import enum
import time
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp

from .config import Settings
from .payments import DEFAULT_PROCESSOR, FALLBACK_PROCESSOR, PaymentsPayload

FAILURE_THRESHOLD = 15
OPEN_STATE_TIMEOUT = 5.0
QUEUE_CAPACITY = 11264

Sender = Callable[[PaymentsPayload], Awaitable[bool]]


class CircuitState(enum.IntEnum):
    """State of the circuit breaker guarding the default processor."""

    CLOSED = 0
    OPEN = 1
    HALF_OPEN = 2


class AdaptiveRouter:
    """Queues payments and sends them to the processor that looks healthiest.

    A circuit breaker guards the default processor: enough consecutive failures
    (or a failing health report) open it, sending traffic to the fallback until
    a timeout passes and a single trial request decides whether to close it.
    """

    def __init__(
        self,
        workers: int,
        aggregator: Any,
        settings: Settings | None = None,
        session: aiohttp.ClientSession | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.workers = workers
        self.aggregator = aggregator
        self.settings = settings if settings is not None else Settings()
        self.queue: asyncio.Queue[PaymentsPayload] = asyncio.Queue(maxsize=QUEUE_CAPACITY)
        self._session = session
        self._owns_session = session is None
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_open = 0.0
        self._default_latency = 0.0
        self._fallback_latency = 0.0
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def state(self) -> CircuitState:
        """Current circuit breaker state."""
        return self._state

    def submit(self, payload: PaymentsPayload) -> bool:
        """Queue a payment; return False when the queue is full."""
        try:
            self.queue.put_nowait(payload)
        except asyncio.QueueFull:
            return False
        return True

    def update_health_metrics(
        self, default_latency: float, fallback_latency: float, is_default_failing: bool
    ) -> None:
        """Record processor latencies (seconds) and open the circuit if default is failing."""
        self._default_latency = default_latency
        self._fallback_latency = fallback_latency
        if is_default_failing and self._state != CircuitState.OPEN:
            self._open_circuit()

    def choose_processor(self) -> tuple[Sender, str]:
        """Return the sender to use next and the name of its processor."""
        if self._state == CircuitState.OPEN:
            if self._clock() - self._last_open > OPEN_STATE_TIMEOUT:
                self._state = CircuitState.HALF_OPEN
            else:
                return self.send_to_fallback, FALLBACK_PROCESSOR

        if self._state == CircuitState.HALF_OPEN:
            return self.send_to_default, DEFAULT_PROCESSOR

        if self._fallback_latency > 0 and self._default_latency > 3 * self._fallback_latency:
            return self.send_to_fallback, FALLBACK_PROCESSOR

        return self.send_to_default, DEFAULT_PROCESSOR

    def update_circuit_state(self, processor_name: str, success: bool) -> None:
        """Feed the outcome of a request to the circuit breaker."""
        if processor_name == FALLBACK_PROCESSOR:
            return

        if self._state == CircuitState.HALF_OPEN:
            if success:
                self._reset_circuit()
            else:
                self._open_circuit()
            return

        if success:
            self._reset_circuit()
            return

        self._failures += 1
        if self._failures >= FAILURE_THRESHOLD:
            self._open_circuit()

    def _reset_circuit(self) -> None:
        self._state = CircuitState.CLOSED
        self._failures = 0

    def _open_circuit(self) -> None:
        self._state = CircuitState.OPEN
        self._last_open = self._clock()

    async def send_to_default(self, payload: PaymentsPayload) -> bool:
        """Send a payment to the default processor."""
        return await self._send_request(
            self.settings.payments_processor_url_default, DEFAULT_PROCESSOR, payload
        )

    async def send_to_fallback(self, payload: PaymentsPayload) -> bool:
        """Send a payment to the fallback processor."""
        return await self._send_request(
            self.settings.payments_processor_url_fallback, FALLBACK_PROCESSOR, payload
        )

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def _send_request(self, url: str, processor_name: str, payload: PaymentsPayload) -> bool:
        session = self._get_session()
        try:
            async with session.post(url, json=payload.to_dict()) as response:
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, OSError):
            return False

        if 200 <= status < 300:
            await self.aggregator.update(processor_name, payload)
            return True
        return False

    async def _work(self) -> None:
        while True:
            payload = await self.queue.get()
            target, processor_name = self.choose_processor()
            success = await target(payload)
            self.update_circuit_state(processor_name, success)
            if not success:
                await self.queue.put(payload)

    def start(self) -> None:
        """Start the worker tasks on the running event loop."""
        if self._tasks:
            return
        loop = asyncio.get_running_loop()
        self._tasks = [loop.create_task(self._work()) for _ in range(self.workers)]

    async def stop(self) -> None:
        """Stop the workers and close the HTTP session if this router created it."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None