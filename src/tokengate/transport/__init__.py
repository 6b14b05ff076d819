"""HTTP transport for tokengate: the FastAPI app and its rate limiters."""

from tokengate.transport.rate_limit import OAuthRateLimiter, RateLimitExceeded
from tokengate.transport.server import create_app

__all__ = ["OAuthRateLimiter", "RateLimitExceeded", "create_app"]
