"""Shared error types for shared_breaker."""


class TransientError(RuntimeError):
    """Generic retry-safe transient dependency failure."""
