"""Redis-backed totals of processed payments."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .payments import DEFAULT_PROCESSOR, PaymentsPayload, SummaryData

DEFAULT_TIME_SERIES_KEY = "ts:default"
FALLBACK_TIME_SERIES_KEY = "ts:fallback"

_log = logging.getLogger(__name__)
_INTEGER = re.compile(r"[+-]?\d+")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MILLISECOND = timedelta(milliseconds=1)


def _text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def _parse_int(value: Any) -> int:
    if value is None:
        return 0
    text = _text(value)
    return int(text) if _INTEGER.fullmatch(text) else 0


def _unix_millis(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // _MILLISECOND


def _to_cents(amount: float) -> int:
    return int(Decimal(amount * 100).to_integral_value(rounding=ROUND_HALF_UP))


def parse_zrange_cents(results: Iterable[Any]) -> int:
    """Sum the cents stored in ``<correlation id>:<cents>`` members."""
    total = 0
    for member in results:
        parts = _text(member).split(":")
        if len(parts) == 2:
            total += _parse_int(parts[1])
    return total


class RedisAggregator:
    """Keeps per-processor totals and time series of payments in Redis."""

    def __init__(self, client: Any, key: str) -> None:
        self.client = client
        self.key = key

    @classmethod
    def connect(cls, redis_url: str, redis_socket: str, key: str) -> "RedisAggregator":
        """Create an aggregator on a Unix socket if given, else on a Redis URL."""
        if redis_socket:
            client = aioredis.Redis(unix_socket_path=redis_socket)
        elif not redis_url:
            raise ValueError("REDIS_SOCKET or REDIS_URL must be set")
        else:
            client = aioredis.from_url(redis_url)
        return cls(client, key)

    @staticmethod
    def _series_key(processor: str) -> str:
        return DEFAULT_TIME_SERIES_KEY if processor == DEFAULT_PROCESSOR else FALLBACK_TIME_SERIES_KEY

    async def update(self, processor: str, payload: PaymentsPayload) -> None:
        """Record a processed payment; Redis failures are logged, not raised."""
        cents = _to_cents(payload.amount)
        member = f"{payload.correlation_id}:{cents}"
        score = float(_unix_millis(payload.requested_at))

        pipe = self.client.pipeline(transaction=False)
        pipe.hincrby(self.key, f"{processor}_total_cents", cents)
        pipe.zadd(self._series_key(processor), {member: score})
        try:
            await pipe.execute()
        except RedisError as exc:
            _log.error("failed to update redis aggregator: %s", exc)

    async def get_summary(
        self, start: datetime | None, end: datetime | None
    ) -> tuple[SummaryData, SummaryData]:
        """Return (default, fallback) totals, limited to [start, end] when both are given."""
        if start is None or end is None:
            raw = await self.client.hgetall(self.key)
            data = {_text(k): v for k, v in raw.items()}
            default = SummaryData(
                count=_parse_int(data.get("default_count")),
                total=_parse_int(data.get("default_total_cents")) / 100.0,
            )
            fallback = SummaryData(
                count=_parse_int(data.get("fallback_count")),
                total=_parse_int(data.get("fallback_total_cents")) / 100.0,
            )
            return default, fallback

        low = str(_unix_millis(start))
        high = str(_unix_millis(end))
        pipe = self.client.pipeline(transaction=False)
        pipe.zrangebyscore(DEFAULT_TIME_SERIES_KEY, low, high)
        pipe.zrangebyscore(FALLBACK_TIME_SERIES_KEY, low, high)
        default_members, fallback_members = await pipe.execute()

        default = SummaryData(
            count=len(default_members),
            total=parse_zrange_cents(default_members) / 100.0,
        )
        fallback = SummaryData(
            count=len(fallback_members),
            total=parse_zrange_cents(fallback_members) / 100.0,
        )
        return default, fallback

    async def purge_summary(self) -> None:
        """Delete all totals and time series."""
        await self.client.delete(self.key, DEFAULT_TIME_SERIES_KEY, FALLBACK_TIME_SERIES_KEY)

    async def close(self) -> None:
        """Close the Redis connection."""
        await self.client.aclose()