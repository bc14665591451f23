from glowbot_paapi.web.rate_limit import FixedWindowRateLimiter


def test_allows_thirty_per_minute_then_blocks(clock):
    limiter = FixedWindowRateLimiter(clock_ms=clock)
    decisions = [limiter.hit("1.2.3.4") for _ in range(30)]
    assert all(d.allowed for d in decisions)
    assert decisions[-1].remaining == 0

    blocked = limiter.hit("1.2.3.4")
    assert not blocked.allowed
    assert blocked.retry_after_s == 60


def test_window_resets(clock):
    limiter = FixedWindowRateLimiter(window_ms=1000, max_requests=1, clock_ms=clock)
    assert limiter.hit("a").allowed
    clock.advance(400)
    blocked = limiter.hit("a")
    assert not blocked.allowed
    assert blocked.retry_after_s == 1
    clock.advance(600)
    assert limiter.hit("a").allowed


def test_clients_are_independent(clock):
    limiter = FixedWindowRateLimiter(max_requests=1, clock_ms=clock)
    assert limiter.hit("a").allowed
    assert not limiter.hit("a").allowed
    assert limiter.hit("b").allowed


def test_describe():
    assert FixedWindowRateLimiter().describe() == {"windowMs": 60000, "maxRequests": 30}


def test_ended_windows_are_pruned_on_every_hit(clock):
    limiter = FixedWindowRateLimiter(window_ms=1000, clock_ms=clock)
    for i in range(40):
        limiter.hit(f"10.0.0.{i}")
    assert len(limiter._windows) == 40
    clock.advance(1000)
    limiter.hit("10.0.0.99")
    assert list(limiter._windows) == ["10.0.0.99"]
