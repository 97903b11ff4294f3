import logging
import threading

import pytest

from ride_anomaly.analyzer_client import CircuitBreaker, SubjectRateLimiter


def test_first_call_allowed_then_limited(fake_clock):
    limiter = SubjectRateLimiter(60.0, clock=fake_clock)

    assert limiter.try_acquire("rider-a").allowed
    limiter.commit("rider-a")

    denied = limiter.try_acquire("rider-a")
    assert not denied.allowed
    assert denied.remaining_seconds == pytest.approx(60.0)

    fake_clock.advance(30)
    assert limiter.remaining_seconds("rider-a") == pytest.approx(30.0)
    assert not limiter.can_make_call("rider-a")

    fake_clock.advance(31)
    assert limiter.can_make_call("rider-a")
    assert limiter.try_acquire("rider-a").allowed


def test_limits_are_per_subject(fake_clock):
    limiter = SubjectRateLimiter(60.0, clock=fake_clock)
    assert limiter.try_acquire("rider-a").allowed
    limiter.commit("rider-a")
    assert limiter.try_acquire("rider-b").allowed


def test_reserved_subject_cannot_be_acquired_twice(fake_clock):
    limiter = SubjectRateLimiter(60.0, clock=fake_clock)
    assert limiter.try_acquire("rider-a").allowed
    again = limiter.try_acquire("rider-a")
    assert not again.allowed
    assert not limiter.check("rider-a").allowed


def test_release_does_not_consume_interval(fake_clock):
    limiter = SubjectRateLimiter(60.0, clock=fake_clock)
    assert limiter.try_acquire("rider-a").allowed
    limiter.release("rider-a")
    assert limiter.last_call_time("rider-a") is None
    assert limiter.try_acquire("rider-a").allowed


def test_clear_and_snapshot(fake_clock):
    limiter = SubjectRateLimiter(60.0, clock=fake_clock)
    limiter.record_call("rider-a")
    limiter.record_call("rider-b")
    assert limiter.last_call_time("rider-a") == pytest.approx(fake_clock.now)
    assert limiter.snapshot() == {"interval_s": 60.0, "tracked_subjects": 2, "reserved": 0}

    limiter.clear("rider-a")
    assert limiter.can_make_call("rider-a")
    assert not limiter.can_make_call("rider-b")

    limiter.clear()
    assert limiter.snapshot()["tracked_subjects"] == 0


def test_expired_entries_are_purged(fake_clock):
    limiter = SubjectRateLimiter(60.0, clock=fake_clock)
    limiter.record_call("rider-a")
    fake_clock.advance(120)
    limiter.purge_expired()
    assert limiter.snapshot()["tracked_subjects"] == 0


def test_concurrent_triggers_admit_only_one():
    limiter = SubjectRateLimiter(60.0)
    barrier = threading.Barrier(16)
    admitted = []
    lock = threading.Lock()

    def trigger():
        barrier.wait()
        decision = limiter.try_acquire("rider-a")
        with lock:
            admitted.append(decision.allowed)

    threads = [threading.Thread(target=trigger) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=2.0)

    assert len(admitted) == 16
    assert admitted.count(True) == 1


def test_capacity_overflow_forgets_oldest_rider_with_warning(fake_clock, caplog):
    caplog.set_level(logging.WARNING)
    limiter = SubjectRateLimiter(60.0, max_subjects=2, clock=fake_clock)
    for rider in ("rider-a", "rider-b", "rider-c"):
        assert limiter.try_acquire(rider).allowed
        limiter.commit(rider)

    assert "Rate limiter full (2 riders" in caplog.text
    assert limiter.can_make_call("rider-a")
    assert not limiter.can_make_call("rider-c")

    caplog.clear()
    fake_clock.advance(61)
    limiter.commit("rider-d")
    assert "Rate limiter full" not in caplog.text


def test_negative_interval_rejected():
    with pytest.raises(ValueError):
        SubjectRateLimiter(-1.0)


def test_breaker_trip_and_cooldown(fake_clock):
    breaker = CircuitBreaker(1800.0, clock=fake_clock)
    assert breaker.check("ollama").allowed

    reset_at = breaker.trip("ollama")
    assert reset_at == pytest.approx(fake_clock.now + 1800.0)
    gate = breaker.check("ollama")
    assert not gate.allowed
    assert gate.remaining_seconds == pytest.approx(1800.0)
    assert breaker.is_tripped("ollama")

    fake_clock.advance(1799)
    assert breaker.check("ollama").remaining_seconds == pytest.approx(1.0)

    fake_clock.advance(2)
    assert breaker.check("ollama").allowed
    assert not breaker.state("ollama").tripped


def test_breaker_is_per_backend(fake_clock):
    breaker = CircuitBreaker(1800.0, clock=fake_clock)
    breaker.trip("azure_openai")
    assert breaker.is_tripped("azure_openai")
    assert not breaker.is_tripped("ollama")


def test_breaker_custom_cooldown_reset_and_purge(fake_clock):
    breaker = CircuitBreaker(1800.0, clock=fake_clock)
    breaker.trip("ollama", cooldown_s=10)
    assert breaker.state("ollama").tripped

    breaker.reset("ollama")
    assert breaker.check("ollama").allowed

    breaker.trip("ollama", cooldown_s=10)
    fake_clock.advance(11)
    breaker.purge_expired()
    assert breaker.state("ollama").reset_at == 0.0
