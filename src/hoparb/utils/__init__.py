"""Utility modules for hoparb."""

from hoparb.utils.circuit_breaker import CircuitBreaker, CircuitBreakerError, CircuitState
from hoparb.utils.locks import FileLock, LockTimeoutError

__all__ = ["CircuitBreaker", "CircuitBreakerError", "CircuitState", "FileLock", "LockTimeoutError"]
