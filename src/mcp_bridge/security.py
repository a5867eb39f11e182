"""Security gate for MCP Bridge.

Runs before a request body is even parsed:
- Origin allow-list (prefix match)
- Client address allow-list (exact or CIDR)
- Sliding-window rate limiting per client
"""

import ipaddress
import math
import re
import threading
import time
from typing import Callable, Iterable, Optional

from shared.config import SecuritySettings
from shared.logging import get_logger
from mcp_bridge.errors import IpRejected, OriginRejected, RateLimited

logger = get_logger(__name__)

DEFAULT_ORIGINS = (
    "http://localhost",
    "https://localhost",
    "http://127.0.0.1",
    "https://127.0.0.1",
)


class RateLimiter:
    """Thread-safe in-memory sliding-window limiter."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._windows: dict[str, list[float]] = {}
        self._lock = threading.Lock()
        self._next_sweep = 0.0

    def check(self, identifier: str, limit: int, window_seconds: float) -> bool:
        """
        Record a request for ``identifier`` if it fits in the window.

        Returns:
            True if admitted, False if the limit is already reached
        """
        now = self._clock()
        window_start = now - window_seconds

        with self._lock:
            if now >= self._next_sweep:
                self._sweep(window_start)
                self._next_sweep = now + window_seconds

            timestamps = [t for t in self._windows.get(identifier, ()) if t > window_start]
            if len(timestamps) >= limit:
                self._windows[identifier] = timestamps
                return False
            timestamps.append(now)
            self._windows[identifier] = timestamps
            return True

    def _sweep(self, window_start: float) -> None:
        """Forget identifiers whose whole window has expired. Caller holds the lock."""
        idle = [
            key for key, timestamps in self._windows.items()
            if not timestamps or timestamps[-1] <= window_start
        ]
        for key in idle:
            del self._windows[key]

    def tracked(self) -> int:
        """Number of identifiers currently holding a window."""
        with self._lock:
            return len(self._windows)

    def retry_after(self, identifier: str, window_seconds: float) -> int:
        """Seconds until the oldest request in the window expires."""
        with self._lock:
            timestamps = self._windows.get(identifier)
            if not timestamps:
                return 0
            oldest = timestamps[0]
        return max(1, math.ceil(oldest + window_seconds - self._clock()))

    def count(self, identifier: str) -> int:
        with self._lock:
            return len(self._windows.get(identifier, ()))

    def reset(self, identifier: Optional[str] = None) -> None:
        """Clear one identifier's window, or all of them."""
        with self._lock:
            if identifier is None:
                self._windows.clear()
            else:
                self._windows.pop(identifier, None)


class SecurityGate:
    """Transport-level checks applied to every request to the MCP routes."""

    def __init__(
        self,
        allowed_origins: Iterable[str] = (),
        allowed_ips: Iterable[str] = (),
        rate_limit_enabled: bool = True,
        rate_limit_requests: int = 100,
        rate_limit_window: int = 3600,
        limiter: Optional[RateLimiter] = None
    ) -> None:
        self.allowed_origins = [o.rstrip("/") for o in allowed_origins if o] + list(DEFAULT_ORIGINS)
        self.allowed_ips = [ip.strip() for ip in allowed_ips if ip and ip.strip()]
        self.rate_limit_enabled = rate_limit_enabled
        self.rate_limit_requests = rate_limit_requests
        self.rate_limit_window = rate_limit_window
        self.limiter = limiter or RateLimiter()

    @classmethod
    def from_settings(cls, settings: SecuritySettings, limiter: Optional[RateLimiter] = None) -> "SecurityGate":
        return cls(
            allowed_origins=settings.allowed_origins,
            allowed_ips=settings.allowed_ips,
            rate_limit_enabled=settings.rate_limit_enabled,
            rate_limit_requests=settings.rate_limit_requests,
            rate_limit_window=settings.rate_limit_window,
            limiter=limiter,
        )

    @property
    def origin_regex(self) -> str:
        """The prefix allow-list as a full-match pattern, for the CORS middleware."""
        return "(?:" + "|".join(re.escape(allowed) for allowed in self.allowed_origins) + ").*"

    def is_origin_allowed(self, origin: Optional[str]) -> bool:
        # No Origin header means this is not a browser cross-origin request
        if not origin:
            return True
        return any(origin.startswith(allowed) for allowed in self.allowed_origins)

    def is_ip_allowed(self, ip: Optional[str]) -> bool:
        if not self.allowed_ips:
            return True
        if not ip:
            return False

        try:
            address = ipaddress.ip_address(ip)
        except ValueError:
            logger.warning("Invalid client address", ip=ip)
            return False

        for entry in self.allowed_ips:
            try:
                if "/" in entry:
                    if address in ipaddress.ip_network(entry, strict=False):
                        return True
                elif address == ipaddress.ip_address(entry):
                    return True
            except ValueError:
                logger.warning("Invalid allow-list entry", entry=entry)
        return False

    def check(self, origin: Optional[str], client_ip: Optional[str]) -> None:
        """
        Run origin, address and rate checks in that order.

        Raises:
            OriginRejected: Origin not on the allow-list
            IpRejected: Client address not on the allow-list
            RateLimited: Client exceeded its request allowance
        """
        if not self.is_origin_allowed(origin):
            logger.warning("Origin rejected", origin=origin)
            raise OriginRejected(origin or "")

        if not self.is_ip_allowed(client_ip):
            logger.warning("Client address rejected", ip=client_ip)
            raise IpRejected(client_ip or "")

        if self.rate_limit_enabled:
            identifier = client_ip or "unknown"
            if not self.limiter.check(identifier, self.rate_limit_requests, self.rate_limit_window):
                retry_after = self.limiter.retry_after(identifier, self.rate_limit_window)
                logger.warning("Rate limit exceeded", ip=identifier, retry_after=retry_after)
                raise RateLimited(identifier, retry_after)
