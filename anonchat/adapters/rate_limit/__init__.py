"""Rate limiting adapters.

Sliding-window limiting over the shared store, so every worker of a
horizontally scaled deployment observes the same windows.
"""

from anonchat.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimitResult,
    WindowPolicy,
)
from anonchat.adapters.rate_limit.sliding_window import SlidingWindowLimiter

__all__ = [
    "AbstractRateLimiter",
    "RateLimitResult",
    "SlidingWindowLimiter",
    "WindowPolicy",
]
