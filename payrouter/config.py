"""Settings read from the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    port: str = "9999"
    payments_processor_url_default: str = ""
    payments_processor_url_fallback: str = ""
    health_processor_url_default: str = ""
    health_processor_url_fallback: str = ""
    payment_processor_tax_default: float = 0.05
    payment_processor_tax_fallback: float = 0.15


def load_env(environ: Mapping[str, str] | None = None) -> Settings:
    """Read settings from ``environ``, the process environment by default."""
    env = os.environ if environ is None else environ
    return Settings(
        port=env.get("PORT") or "9999",
        payments_processor_url_default=env.get("PAYMENTS_PROCESSOR_URL_DEFAULT", ""),
        payments_processor_url_fallback=env.get("PAYMENTS_PROCESSOR_URL_FALLBACK", ""),
        health_processor_url_default=env.get("HEALTH_PROCESSOR_URL_DEFAULT", ""),
        health_processor_url_fallback=env.get("HEALTH_PROCESSOR_URL_FALLBACK", ""),
    )