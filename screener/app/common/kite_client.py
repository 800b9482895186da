"""
Kite Connect client construction and request pacing.

Kite allows roughly three historical-data requests per second per token.
Jobs stay under that with a simple per-process pacer.
"""

import logging
import time
from typing import Callable, Optional

from kiteconnect import KiteConnect

from screener.app.common.config import get_config

logger = logging.getLogger(__name__)


def get_kite(access_token: Optional[str] = None) -> KiteConnect:
    """Build an authenticated KiteConnect client from configuration."""
    config = get_config()
    token = access_token or config.kite_access_token

    if not config.kite_api_key or not token:
        raise RuntimeError("KITE_API_KEY and KITE_ACCESS_TOKEN must be set")

    kite = KiteConnect(api_key=config.kite_api_key)
    kite.set_access_token(token)
    return kite


def is_rate_limited(exc: Exception) -> bool:
    """True if a Kite error looks like an HTTP 429 / throttling response."""
    if getattr(exc, "code", None) == 429:
        return True
    message = str(exc).lower()
    return "rate limit" in message or "too many requests" in message or "429" in message


class RequestPacer:
    """Caps requests per one-second window and spaces consecutive calls."""

    def __init__(
        self,
        max_per_second: int = 2,
        min_delay: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_per_second = max_per_second
        self.min_delay = min_delay
        self._clock = clock
        self._sleep = sleep
        self._count = 0
        self._window_start = clock()

    def wait(self) -> None:
        """Block until another request may be issued."""
        now = self._clock()
        elapsed = now - self._window_start

        if elapsed >= 1.0:
            self._count = 0
            self._window_start = now
            elapsed = 0.0

        if self._count >= self.max_per_second:
            remaining = 1.0 - elapsed
            if remaining > 0:
                logger.debug(f"Request budget spent, sleeping {remaining:.3f}s")
                self._sleep(remaining)
            self._count = 0
            self._window_start = self._clock()

        self._count += 1

        if self.min_delay > 0:
            self._sleep(self.min_delay)
