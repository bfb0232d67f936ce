"""Payment payloads, summaries and processor health reports."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

DEFAULT_PROCESSOR = "default"
FALLBACK_PROCESSOR = "fallback"
ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


def _parse_time(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        parsed = None
    if parsed is None or parsed.tzinfo is None:
        raise ValueError(f"invalid RFC 3339 timestamp: {value!r}")
    return parsed


def _format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.isoformat()
    if text.endswith("+00:00"):
        text = text[:-6] + "Z"
    return re.sub(r"(\.\d*?)0+(?=[Z+-])", r"\1", text)


def _get(data: dict[str, Any], key: str, kind: Any, default: Any) -> Any:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool) != (kind is bool) or not isinstance(value, kind):
        raise ValueError(f"{key!r} has the wrong type")
    return value


def _require_object(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError("payload must be a JSON object")
    return data


@dataclass
class PaymentsPayload:
    """A payment request as received from a client and sent to a processor."""

    correlation_id: str = ""
    amount: float = 0.0
    requested_at: datetime = field(default=ZERO_TIME)

    @classmethod
    def from_dict(cls, data: Any) -> "PaymentsPayload":
        """Build a payload from decoded JSON, raising ValueError on bad types."""
        data = _require_object(data)
        requested_at = _get(data, "requestedAt", str, None)
        return cls(
            correlation_id=_get(data, "correlationId", str, ""),
            amount=float(_get(data, "amount", (int, float), 0.0)),
            requested_at=ZERO_TIME if requested_at is None else _parse_time(requested_at),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "requestedAt": _format_time(self.requested_at),
            "correlationId": self.correlation_id,
            "amount": self.amount,
        }


@dataclass
class SummaryData:
    """Request count and total amount handled by one processor."""

    count: int = 0
    total: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"totalRequests": self.count, "totalAmount": self.total}


@dataclass
class PaymentsSummary:
    """Totals for both processors."""

    default: SummaryData = field(default_factory=SummaryData)
    fallback: SummaryData = field(default_factory=SummaryData)

    def to_dict(self) -> dict[str, Any]:
        return {"default": self.default.to_dict(), "fallback": self.fallback.to_dict()}


@dataclass
class ServiceHealthPayload:
    """Health report returned by a payment processor."""

    failing: bool = False
    min_response_time: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> "ServiceHealthPayload":
        """Build a report from decoded JSON, raising ValueError on bad types."""
        data = _require_object(data)
        return cls(
            failing=_get(data, "failing", bool, False),
            min_response_time=_get(data, "minResponseTime", int, 0),
        )