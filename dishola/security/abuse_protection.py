"""
Abuse protection for the search endpoints.

Every search costs an LLM call, so clients are throttled with two sliding
windows (per minute and a short burst window) and search text is screened
before it reaches a prompt.
"""
import time
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from dishola.utils.config import get_settings
from dishola.utils.logger import app_logger

Verdict = Tuple[bool, Optional[str]]

ALLOWED_WHITESPACE = {"\t", "\n", "\r"}
SWEEP_INTERVAL_SECONDS = 60


@dataclass
class RateLimitConfig:
    """Search throttling limits."""
    max_requests_per_minute: int = 30
    burst_limit: int = 10
    burst_window: int = 5  # seconds; also how long a bursting client stays blocked


@dataclass
class SecurityConfig:
    max_query_length: int = 200
    max_tastes: int = 20
    enable_rate_limiting: bool = True
    enable_input_validation: bool = True


class SlidingWindow:
    """Timestamps of recent hits inside a fixed-length window."""

    def __init__(self, seconds: float):
        self.seconds = seconds
        self.hits: Deque[float] = deque()

    def prune(self, now: float):
        while self.hits and now - self.hits[0] > self.seconds:
            self.hits.popleft()

    def __len__(self) -> int:
        return len(self.hits)

    def add(self, now: float):
        self.hits.append(now)


class RateLimiter:
    """Per-client throttle for search requests."""

    def __init__(self, config: RateLimitConfig, clock: Callable[[], float] = time.time):
        self.config = config
        self.clock = clock
        self.windows: Dict[str, Tuple[SlidingWindow, SlidingWindow]] = {}
        self.blocked_clients: Dict[str, float] = {}  # client -> blocked until
        self._last_sweep = clock()

    def _windows_for(self, client_id: str) -> Tuple[SlidingWindow, SlidingWindow]:
        if client_id not in self.windows:
            self.windows[client_id] = (SlidingWindow(60), SlidingWindow(self.config.burst_window))
        return self.windows[client_id]

    def is_allowed(self, client_id: str) -> Verdict:
        """Record the request if the client is under both limits."""
        now = self.clock()
        self._sweep(now)

        blocked_until = self.blocked_clients.get(client_id)
        if blocked_until is not None:
            if now < blocked_until:
                wait = int(blocked_until - now) + 1
                return False, f"Rate limit exceeded: too many searches in a row. Try again in {wait} seconds"
            del self.blocked_clients[client_id]

        minute, burst = self._windows_for(client_id)
        minute.prune(now)
        burst.prune(now)

        if len(burst) >= self.config.burst_limit:
            self.blocked_clients[client_id] = now + self.config.burst_window
            return False, f"Rate limit exceeded: too many searches in a row. Try again in {self.config.burst_window} seconds"
        if len(minute) >= self.config.max_requests_per_minute:
            return False, "Rate limit exceeded (per minute)"

        minute.add(now)
        burst.add(now)
        return True, None

    def _sweep(self, now: float):
        """Forget clients with no recent requests and expired blocks, at most once a minute."""
        if now - self._last_sweep < SWEEP_INTERVAL_SECONDS:
            return
        self._last_sweep = now
        for client_id in list(self.windows):
            minute, burst = self.windows[client_id]
            minute.prune(now)
            burst.prune(now)
            if not minute and not burst:
                del self.windows[client_id]
        for client_id, blocked_until in list(self.blocked_clients.items()):
            if now >= blocked_until:
                del self.blocked_clients[client_id]

    @property
    def tracked_clients(self) -> int:
        return len(self.windows)


class InputValidator:
    """Screen search text before it is used in a prompt or a database filter."""

    def __init__(self, config: SecurityConfig):
        self.config = config

    def validate_query(self, query: str) -> Verdict:
        if not isinstance(query, str) or not query.strip():
            return False, "Query must be a non-empty string"
        if len(query) > self.config.max_query_length:
            return False, f"Query too long (max {self.config.max_query_length} characters)"
        if "\x00" in query:
            return False, "Query contains null bytes"
        if any(ord(ch) < 32 and ch not in ALLOWED_WHITESPACE for ch in query):
            return False, "Query contains invalid control characters"
        return True, None

    def validate_tastes(self, tastes: List[str]) -> Verdict:
        if len(tastes) > self.config.max_tastes:
            return False, f"Too many tastes (max {self.config.max_tastes})"
        for taste in tastes:
            ok, error = self.validate_query(taste)
            if not ok:
                return False, f"Invalid taste: {error}"
        return True, None


class AbuseProtection:
    """Rate limiting plus input screening for one search request."""

    def __init__(self, rate_limit_config: Optional[RateLimitConfig] = None,
                 security_config: Optional[SecurityConfig] = None):
        settings = get_settings()
        self.security_config = security_config or SecurityConfig(max_query_length=settings.max_query_length)
        self.rate_limiter = RateLimiter(rate_limit_config or RateLimitConfig(
            max_requests_per_minute=settings.max_requests_per_minute,
            burst_limit=settings.burst_limit,
            burst_window=settings.burst_window,
        ))
        self.input_validator = InputValidator(self.security_config)
        self.security_events: Deque[Dict[str, Any]] = deque(maxlen=1000)

    def check_request(self, client_id: str, query: Optional[str] = None,
                      tastes: Optional[List[str]] = None) -> Verdict:
        """Rate limit first, then validate whichever input the search uses."""
        summary = query or ",".join(tastes or [])

        if self.security_config.enable_rate_limiting:
            allowed, error = self.rate_limiter.is_allowed(client_id)
            if not allowed:
                self._log_security_event(client_id, "RATE_LIMIT_EXCEEDED", summary)
                return False, error

        if self.security_config.enable_input_validation and (query or tastes):
            if query:
                ok, error = self.input_validator.validate_query(query)
            else:
                ok, error = self.input_validator.validate_tastes(tastes)
            if not ok:
                self._log_security_event(client_id, "INVALID_INPUT", summary)
                return False, error

        return True, None

    def _log_security_event(self, client_id: str, event_type: str, details: str):
        self.security_events.append({
            "timestamp": datetime.now().isoformat(),
            "client_id": client_id,
            "event_type": event_type,
            "details": details[:200],
        })
        app_logger.warning(f"🚫 {event_type} from {client_id}: {details[:100]!r}")

    def get_security_stats(self) -> Dict[str, Any]:
        return {
            "total_events": len(self.security_events),
            "event_counts": dict(Counter(e["event_type"] for e in self.security_events)),
            "blocked_clients": len(self.rate_limiter.blocked_clients),
            "tracked_clients": self.rate_limiter.tracked_clients,
        }
