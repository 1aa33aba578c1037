"""
Circuit breaker implementation using pybreaker library.
Guards the live-update publisher so a Redis outage does not slow down approvals.
State is kept per process: the breaker protects Redis itself, so it cannot live there.
"""
import logging

import pybreaker

from lawnet.core.config import settings
from lawnet.utils.metrics import circuit_breaker_state

logger = logging.getLogger("circuit_breaker")


def _state_name(state) -> str:
    return getattr(state, "name", None) or str(state)


class CircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """Listener for circuit breaker events (logging/metrics)."""

    def __init__(self, name: str) -> None:
        self.name = name

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        new_name = _state_name(new_state)
        circuit_breaker_state.labels(name=self.name).set(1 if new_name == pybreaker.STATE_OPEN else 0)
        logger.warning(
            "circuit_breaker_state_change",
            extra={
                "breaker_name": self.name,
                "old_state": _state_name(old_state),
                "new_state": new_name,
            },
        )

    def failure(self, cb: pybreaker.CircuitBreaker, exc: BaseException) -> None:
        logger.warning(
            "circuit_breaker_failure",
            extra={
                "breaker_name": self.name,
                "error": type(exc).__name__,
            },
        )


_breakers: dict[str, pybreaker.CircuitBreaker] = {}


def get_circuit_breaker(name: str) -> pybreaker.CircuitBreaker:
    """Get or create a circuit breaker by name."""
    if name not in _breakers:
        _breakers[name] = pybreaker.CircuitBreaker(
            fail_max=settings.cb_failure_threshold,
            reset_timeout=settings.cb_open_seconds,
            listeners=[CircuitBreakerListener(name)],
            name=name,
        )
        circuit_breaker_state.labels(name=name).set(0)
    return _breakers[name]


def reset_breakers() -> None:
    """Drop all breakers (tests)."""
    _breakers.clear()
