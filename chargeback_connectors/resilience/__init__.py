"""
Resilience primitives for outbound vendor calls
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerStats, CircuitState
from .http_client import HttpClientConfig, ResilientHttpClient
from .rate_limiter import RateLimitConfig, RateLimiterStats, TokenBucketRateLimiter
from .retry import RetryConfig, call_with_retry, is_retryable

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerStats",
    "CircuitState",
    "HttpClientConfig",
    "ResilientHttpClient",
    "RateLimitConfig",
    "RateLimiterStats",
    "TokenBucketRateLimiter",
    "RetryConfig",
    "call_with_retry",
    "is_retryable",
]
