"""
Rate limit handlers for surface-specific backoff strategies.

The resolver waits between failed strategy attempts. How long depends on how aggressively the surface
that just failed fingerprints request rates: heavily protected pages get a larger base delay and a
wider jitter window than lightweight endpoints.
"""

import logging
import random
from typing import Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class RateLimitHandler:
    """
    Base class for rate limit handlers.

    Subclasses should override properties to customize backoff behavior.
    """

    @property
    def backoff_multiplier(self) -> float:
        """
        Factor applied to the configured base delay.
        Default: 1.0
        """
        return 1.0

    @property
    def jitter_multiplier(self) -> float:
        """
        Factor applied to the configured jitter window.
        Default: 1.0
        """
        return 1.0

    def compute_delay(
        self, failures: int, base: float, cap: float, jitter: float, rng: Optional[random.Random] = None
    ) -> float:
        """
        Exponential backoff with random jitter.

        Args:
            failures: Number of failed attempts so far (1 for the first failure).
            base: Configured base delay in seconds.
            cap: Upper bound of the exponential part in seconds.
            jitter: Configured jitter window in seconds.
            rng: Random source, for reproducible delays in tests.

        Returns:
            Delay in seconds.
        """
        rng = rng or random
        exponential = min(cap, base * self.backoff_multiplier * (2 ** max(0, failures - 1)))
        return exponential + rng.uniform(0, jitter * self.jitter_multiplier)


class ProtectedSurfaceRateLimitHandler(RateLimitHandler):
    """
    Handler for the upstream's most protected surfaces (full watch page, player API).

    These pages escalate to captcha interstitials quickly when consecutive requests arrive at a
    regular cadence, so both the base delay and the jitter window are doubled.
    """

    @property
    def backoff_multiplier(self) -> float:
        return 2.0

    @property
    def jitter_multiplier(self) -> float:
        return 2.0


class AggressiveRateLimitHandler(RateLimitHandler):
    """
    Generic handler for hosts with strict rate limiting (429 after a handful of requests).
    """

    @property
    def backoff_multiplier(self) -> float:
        return 3.0

    @property
    def jitter_multiplier(self) -> float:
        return 3.0


# Registry of available rate limit handlers by ID
RATE_LIMIT_HANDLER_REGISTRY: dict[str, type[RateLimitHandler]] = {
    "standard": RateLimitHandler,
    "protected": ProtectedSurfaceRateLimitHandler,
    "aggressive": AggressiveRateLimitHandler,
}

# Auto-detection: hostname patterns to handler IDs
HOST_PATTERN_TO_HANDLER: dict[str, str] = {
    "www.youtube.com": "protected",
    "googlevideo.com": "aggressive",
}


def get_rate_limit_handler(
    handler_id: Optional[str] = None,
    surface_url: Optional[str] = None,
) -> RateLimitHandler:
    """
    Get a rate limit handler instance.

    Priority:
    1. Explicit handler_id if provided
    2. Auto-detect from surface_url hostname
    3. Default (standard backoff)

    Args:
        handler_id: Explicit handler identifier (e.g., "protected", "aggressive")
        surface_url: URL of the surface that failed, for auto-detection based on hostname

    Returns:
        A rate limit handler instance.
    """
    if handler_id:
        handler_class = RATE_LIMIT_HANDLER_REGISTRY.get(handler_id)
        if handler_class:
            return handler_class()
        logger.warning(f"Unknown rate limit handler ID: {handler_id}")

    if surface_url:
        hostname = urlparse(surface_url).hostname or ""
        for pattern, detected_handler_id in HOST_PATTERN_TO_HANDLER.items():
            if pattern in hostname:
                logger.debug(f"[RateLimit] Auto-detected handler '{detected_handler_id}' for host: {hostname}")
                return RATE_LIMIT_HANDLER_REGISTRY[detected_handler_id]()

    return RateLimitHandler()
