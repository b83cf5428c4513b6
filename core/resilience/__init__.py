"""
Library Core Resilience: fault tolerance primitives.

- RetryPolicy: bounded exponential backoff for transient failures
"""
from core.resilience.retry import RetryPolicy

__all__ = [
    "RetryPolicy",
]
