"""HTTP front end: accepts payments, reports totals and purges them."""

from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import replace
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from aiohttp import web
from redis.exceptions import RedisError

from .config import load_env
from .health import HealthUpdater
from .payments import PaymentsPayload, PaymentsSummary, SummaryData, _parse_time
from .routing import AdaptiveRouter
from .storage import RedisAggregator

SUMMARY_KEY = "payments-summary"
WORKERS = 6

ROUTER_KEY = web.AppKey("router", AdaptiveRouter)
AGGREGATOR_KEY = web.AppKey("aggregator", object)

_log = logging.getLogger(__name__)


def _error(message: str, status: int) -> web.Response:
    return web.Response(text=message, status=status)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp, returning None when empty or invalid."""
    if not value:
        return None
    try:
        return _parse_time(value)
    except ValueError:
        return None


def _round_tenth(value: float) -> float:
    scaled = Decimal(value * 10).to_integral_value(rounding=ROUND_HALF_UP)
    return float(scaled) / 10


def _json_number(value: float) -> int | float:
    return int(value) if value.is_integer() else value


def _summary_json(summary: PaymentsSummary) -> str:
    data = summary.to_dict()
    for part in data.values():
        part["totalAmount"] = _json_number(part["totalAmount"])
    return json.dumps(data, separators=(",", ":"))


async def handle_create_payment(request: web.Request) -> web.Response:
    """Queue a payment for processing."""
    router = request.app[ROUTER_KEY]
    try:
        data: Any = json.loads(await request.read())
        payload = PaymentsPayload.from_dict({} if data is None else data)
    except ValueError as exc:
        _log.error("invalid request body: %s", exc)
        return _error("invalid request body", 400)

    if payload.amount == 0.0:
        return _error("missing field 'amount'", 400)
    payload.requested_at = datetime.now(timezone.utc)

    if router.submit(payload):
        return web.Response(status=202)
    return _error("Service Unavailable", 503)


async def handle_payments_summary(request: web.Request) -> web.Response:
    """Report totals per processor, optionally limited to a time range."""
    aggregator = request.app[AGGREGATOR_KEY]
    start = parse_timestamp(request.query.get("from"))
    end = parse_timestamp(request.query.get("to"))
    try:
        default, fallback = await aggregator.get_summary(start, end)
    except (RedisError, OSError) as exc:
        _log.error("Failed to get summary from Redis: %s", exc)
        return _error("Internal Server Error", 500)

    summary = PaymentsSummary(
        default=replace(default, total=_round_tenth(default.total)),
        fallback=replace(fallback, total=_round_tenth(fallback.total)),
    )
    return web.Response(
        text=_summary_json(summary), status=200, content_type="application/json"
    )


async def handle_purge_payments(request: web.Request) -> web.Response:
    """Delete all recorded totals."""
    aggregator = request.app[AGGREGATOR_KEY]
    try:
        await aggregator.purge_summary()
    except (RedisError, OSError) as exc:
        _log.error("Failed to purge payments table: %s", exc)
        return _error("Internal Server Error", 500)
    return web.Response(status=204)


def _only(method: str, handler):
    async def dispatch(request: web.Request) -> web.Response:
        if request.method != method:
            return _error("Method Not Allowed", 405)
        return await handler(request)

    return dispatch


async def _not_found(request: web.Request) -> web.Response:
    return _error("Not Found", 404)


def create_app(router: AdaptiveRouter, aggregator: Any) -> web.Application:
    """Build the web application serving the payment endpoints."""
    app = web.Application()
    app[ROUTER_KEY] = router
    app[AGGREGATOR_KEY] = aggregator
    app.router.add_route("*", "/payments", _only("POST", handle_create_payment))
    app.router.add_route("*", "/payments-summary", _only("GET", handle_payments_summary))
    app.router.add_route("*", "/purge-payments", _only("POST", handle_purge_payments))
    app.router.add_route("*", "/{tail:.*}", _not_found)
    return app


def main(argv: list[str] | None = None) -> None:
    """Run the payment service until interrupted."""
    parser = argparse.ArgumentParser(
        prog="payrouter", description="Route payments to the healthiest processor."
    )
    parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = load_env()

    try:
        aggregator = RedisAggregator.connect(
            os.environ.get("REDIS_URL", ""),
            os.environ.get("REDIS_SOCKET", ""),
            SUMMARY_KEY,
        )
    except ValueError as exc:
        _log.critical("unable to connect to Redis: %s", exc)
        raise SystemExit(1) from exc
    _log.info("numCPU=%s", os.cpu_count())

    router = AdaptiveRouter(WORKERS, aggregator, settings)
    health = HealthUpdater(router, settings)
    app = create_app(router, aggregator)

    async def on_startup(_: web.Application) -> None:
        router.start()
        await health.start()
        _log.info("Server starting on port %s", settings.port)

    async def on_cleanup(_: web.Application) -> None:
        _log.info("Shutdown signal received. Gracefully stopping server...")
        await health.stop()
        await router.stop()
        await aggregator.close()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    web.run_app(app, port=int(settings.port), keepalive_timeout=10.0, print=None)
    _log.info("Server stopped gracefully")