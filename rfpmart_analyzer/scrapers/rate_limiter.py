"""
Rate limiting for site navigations.

Keeps a per-domain minimum spacing between requests so a run never hammers
the listing site.
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Dict
from urllib.parse import urlparse


class RateLimiter:
    """Per-domain minimum delay between requests."""

    def __init__(self, request_delay: float):
        self.request_delay = request_delay
        self.delays: Dict[str, float] = {}
        self.last_request_time: Dict[str, float] = {}

    async def respect_rate_limit(self, url: str) -> float:
        """
        Wait until the domain's delay has elapsed, then record the request.

        Args:
            url: URL about to be requested

        Returns:
            Delay applied in seconds
        """
        domain = urlparse(url).netloc
        delay_needed = 0.0

        if domain in self.last_request_time:
            time_since_last = time.monotonic() - self.last_request_time[domain]
            required_delay = self.get_domain_delay(domain)

            if time_since_last < required_delay:
                delay_needed = required_delay - time_since_last
                await asyncio.sleep(delay_needed)

        self.last_request_time[domain] = time.monotonic()
        return delay_needed

    def set_domain_delay(self, domain: str, delay: float):
        """Set a custom delay for a specific domain."""
        self.delays[domain] = delay

    def get_domain_delay(self, domain: str) -> float:
        """Get the current delay for a domain."""
        return self.delays.get(domain, self.request_delay)

    def get_stats(self) -> Dict[str, Any]:
        """Get rate limiting statistics."""
        now_wall = time.time()
        now_mono = time.monotonic()
        return {
            "domain_delays": dict(self.delays),
            "default_delay": self.request_delay,
            "last_request_times": {
                domain: datetime.fromtimestamp(now_wall - (now_mono - stamp)).isoformat()
                for domain, stamp in self.last_request_time.items()
            },
        }
