import pytest

from dishola.security.abuse_protection import (
    AbuseProtection,
    InputValidator,
    RateLimitConfig,
    RateLimiter,
    SecurityConfig,
)


class FakeClock:
    def __init__(self):
        self.now = 1_000.0

    def __call__(self):
        return self.now


def test_burst_limit_blocks_client_for_window():
    clock = FakeClock()
    limiter = RateLimiter(RateLimitConfig(max_requests_per_minute=30, burst_limit=3, burst_window=5), clock=clock)

    assert [limiter.is_allowed("a")[0] for _ in range(3)] == [True, True, True]
    allowed, message = limiter.is_allowed("a")
    assert not allowed
    assert "Rate limit exceeded" in message

    assert limiter.is_allowed("b")[0] is True

    clock.now += 6
    assert limiter.is_allowed("a")[0] is True


def test_minute_limit():
    clock = FakeClock()
    limiter = RateLimiter(RateLimitConfig(max_requests_per_minute=4, burst_limit=10, burst_window=1), clock=clock)

    for _ in range(4):
        assert limiter.is_allowed("a")[0]
        clock.now += 2
    assert limiter.is_allowed("a") == (False, "Rate limit exceeded (per minute)")

    clock.now += 60
    assert limiter.is_allowed("a")[0]


def test_idle_clients_are_forgotten():
    clock = FakeClock()
    limiter = RateLimiter(RateLimitConfig(max_requests_per_minute=30, burst_limit=10, burst_window=5), clock=clock)

    for client in ("a", "b", "c"):
        assert limiter.is_allowed(client)[0]
    assert limiter.tracked_clients == 3

    clock.now += 61
    assert limiter.is_allowed("d")[0]
    assert limiter.tracked_clients == 1


def test_expired_blocks_are_forgotten():
    clock = FakeClock()
    limiter = RateLimiter(RateLimitConfig(max_requests_per_minute=30, burst_limit=1, burst_window=5), clock=clock)

    limiter.is_allowed("a")
    assert not limiter.is_allowed("a")[0]
    assert "a" in limiter.blocked_clients

    clock.now += 120
    limiter.is_allowed("b")
    assert "a" not in limiter.blocked_clients
    assert limiter.tracked_clients == 1


@pytest.mark.parametrize("query, ok", [
    ("spicy ramen", True),
    ("", False),
    ("   ", False),
    ("x" * 201, False),
    ("pizza\x00", False),
    ("pizza\x07", False),
    ("tab\tseparated", True),
])
def test_query_validation(query, ok):
    assert InputValidator(SecurityConfig()).validate_query(query)[0] is ok


def test_taste_validation():
    validator = InputValidator(SecurityConfig(max_tastes=2))
    assert validator.validate_tastes(["spicy", "sour"]) == (True, None)
    assert validator.validate_tastes(["a", "b", "c"])[0] is False
    allowed, error = validator.validate_tastes(["spicy", "bad\x01"])
    assert not allowed
    assert error.startswith("Invalid taste")


def test_check_request_records_security_events():
    protection = AbuseProtection(RateLimitConfig(max_requests_per_minute=30, burst_limit=1, burst_window=5))

    assert protection.check_request("client", query="pho") == (True, None)
    allowed, error = protection.check_request("client", query="pho")
    assert not allowed
    assert "rate limit" in error.lower()

    allowed, error = protection.check_request("other", tastes=["ok", "\x00"])
    assert not allowed

    stats = protection.get_security_stats()
    assert stats["event_counts"] == {"RATE_LIMIT_EXCEEDED": 1, "INVALID_INPUT": 1}
    assert stats["blocked_clients"] == 1
