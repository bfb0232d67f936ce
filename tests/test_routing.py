import asyncio
from datetime import datetime, timezone

import aiohttp
import pytest

from payrouter.config import Settings
from payrouter.payments import DEFAULT_PROCESSOR, FALLBACK_PROCESSOR, PaymentsPayload
from payrouter.routing import (
    FAILURE_THRESHOLD,
    OPEN_STATE_TIMEOUT,
    QUEUE_CAPACITY,
    AdaptiveRouter,
    CircuitState,
)

SETTINGS = Settings(
    payments_processor_url_default="http://default.example.com/payments",
    payments_processor_url_fallback="http://fallback.example.com/payments",
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class FakeResponse:
    def __init__(self, status):
        self.status = status

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.posts = []

    def post(self, url, **kwargs):
        self.posts.append((url, kwargs))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return FakeResponse(outcome)


class FakeAggregator:
    def __init__(self, event=None):
        self.updates = []
        self.event = event

    async def update(self, processor, payload):
        self.updates.append((processor, payload))
        if self.event is not None:
            self.event.set()


def make_payload():
    return PaymentsPayload(
        correlation_id="4a7901b8-7d26-4d9d-aa19-4dc1c7cf60b3",
        amount=19.9,
        requested_at=datetime(2025, 7, 15, 12, 34, 56, tzinfo=timezone.utc),
    )


def make_router(session=None, aggregator=None, clock=None):
    return AdaptiveRouter(
        2,
        aggregator if aggregator is not None else FakeAggregator(),
        SETTINGS,
        session if session is not None else FakeSession([200]),
        clock if clock is not None else FakeClock(),
    )


def test_closed_circuit_without_latencies_picks_default():
    router = make_router()
    target, name = router.choose_processor()
    assert name == DEFAULT_PROCESSOR
    assert target == router.send_to_default
    assert router.state is CircuitState.CLOSED


def test_slow_default_routes_to_fallback():
    router = make_router()
    router.update_health_metrics(4.0, 1.0, False)
    target, name = router.choose_processor()
    assert name == FALLBACK_PROCESSOR
    assert target == router.send_to_fallback


def test_default_exactly_three_times_slower_stays_default():
    router = make_router()
    router.update_health_metrics(3.0, 1.0, False)
    assert router.choose_processor()[1] == DEFAULT_PROCESSOR


def test_zero_fallback_latency_keeps_default():
    router = make_router()
    router.update_health_metrics(10.0, 0.0, False)
    assert router.choose_processor()[1] == DEFAULT_PROCESSOR


def test_failing_health_report_opens_circuit():
    router = make_router()
    router.update_health_metrics(0.1, 0.1, True)
    assert router.state is CircuitState.OPEN
    assert router.choose_processor()[1] == FALLBACK_PROCESSOR


def test_open_circuit_becomes_half_open_after_timeout():
    clock = FakeClock()
    router = make_router(clock=clock)
    router.update_health_metrics(0.1, 0.1, True)

    clock.now += OPEN_STATE_TIMEOUT
    assert router.choose_processor()[1] == FALLBACK_PROCESSOR
    assert router.state is CircuitState.OPEN

    clock.now += 0.001
    assert router.choose_processor()[1] == DEFAULT_PROCESSOR
    assert router.state is CircuitState.HALF_OPEN


def test_half_open_failure_reopens_and_success_closes():
    clock = FakeClock()
    router = make_router(clock=clock)
    router.update_health_metrics(0.1, 0.1, True)
    clock.now += OPEN_STATE_TIMEOUT + 1
    router.choose_processor()

    router.update_circuit_state(DEFAULT_PROCESSOR, False)
    assert router.state is CircuitState.OPEN
    assert router.choose_processor()[1] == FALLBACK_PROCESSOR

    clock.now += OPEN_STATE_TIMEOUT + 1
    router.choose_processor()
    router.update_circuit_state(DEFAULT_PROCESSOR, True)
    assert router.state is CircuitState.CLOSED


def test_failure_threshold_opens_circuit():
    router = make_router()
    for _ in range(FAILURE_THRESHOLD - 1):
        router.update_circuit_state(DEFAULT_PROCESSOR, False)
    assert router.state is CircuitState.CLOSED
    router.update_circuit_state(DEFAULT_PROCESSOR, False)
    assert router.state is CircuitState.OPEN


def test_success_resets_failure_count():
    router = make_router()
    for _ in range(FAILURE_THRESHOLD - 1):
        router.update_circuit_state(DEFAULT_PROCESSOR, False)
    router.update_circuit_state(DEFAULT_PROCESSOR, True)
    for _ in range(FAILURE_THRESHOLD - 1):
        router.update_circuit_state(DEFAULT_PROCESSOR, False)
    assert router.state is CircuitState.CLOSED


def test_fallback_outcomes_do_not_touch_circuit():
    router = make_router()
    for _ in range(FAILURE_THRESHOLD * 2):
        router.update_circuit_state(FALLBACK_PROCESSOR, False)
    assert router.state is CircuitState.CLOSED


def test_submit_rejects_when_queue_full():
    router = make_router()
    payload = make_payload()
    accepted = [router.submit(payload) for _ in range(QUEUE_CAPACITY)]
    assert all(accepted)
    assert router.submit(payload) is False
    assert router.queue.qsize() == QUEUE_CAPACITY


@pytest.mark.asyncio
async def test_send_to_default_posts_and_records():
    session = FakeSession([200])
    aggregator = FakeAggregator()
    router = make_router(session=session, aggregator=aggregator)
    payload = make_payload()

    assert await router.send_to_default(payload) is True
    assert session.posts == [(SETTINGS.payments_processor_url_default, {"json": payload.to_dict()})]
    assert aggregator.updates == [(DEFAULT_PROCESSOR, payload)]


@pytest.mark.asyncio
async def test_send_to_fallback_uses_fallback_url():
    session = FakeSession([204])
    aggregator = FakeAggregator()
    router = make_router(session=session, aggregator=aggregator)
    payload = make_payload()

    assert await router.send_to_fallback(payload) is True
    assert session.posts[0][0] == SETTINGS.payments_processor_url_fallback
    assert aggregator.updates == [(FALLBACK_PROCESSOR, payload)]


@pytest.mark.asyncio
async def test_non_2xx_status_is_failure():
    aggregator = FakeAggregator()
    router = make_router(session=FakeSession([500]), aggregator=aggregator)
    assert await router.send_to_default(make_payload()) is False
    assert aggregator.updates == []


@pytest.mark.asyncio
async def test_connection_error_is_failure():
    aggregator = FakeAggregator()
    session = FakeSession([aiohttp.ClientConnectionError("refused")])
    router = make_router(session=session, aggregator=aggregator)
    assert await router.send_to_default(make_payload()) is False
    assert aggregator.updates == []


@pytest.mark.asyncio
async def test_workers_process_queued_payment():
    event = asyncio.Event()
    aggregator = FakeAggregator(event)
    router = make_router(session=FakeSession([200]), aggregator=aggregator)
    payload = make_payload()

    router.start()
    try:
        assert router.submit(payload) is True
        await asyncio.wait_for(event.wait(), timeout=2)
    finally:
        await router.stop()

    assert aggregator.updates == [(DEFAULT_PROCESSOR, payload)]


@pytest.mark.asyncio
async def test_failed_payment_is_retried():
    event = asyncio.Event()
    aggregator = FakeAggregator(event)
    session = FakeSession([500, 200])
    router = make_router(session=session, aggregator=aggregator)
    payload = make_payload()

    router.start()
    try:
        router.submit(payload)
        await asyncio.wait_for(event.wait(), timeout=2)
    finally:
        await router.stop()

    assert len(session.posts) == 2
    assert aggregator.updates == [(DEFAULT_PROCESSOR, payload)]
    assert router.state is CircuitState.CLOSED