"""Payment intake service that routes payments between two processors behind a circuit breaker, with Redis-backed totals."""

__version__ = "0.1.0"
__all__ = ["__version__"]