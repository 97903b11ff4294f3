"""Call gating for the external analyzer: per-rider limiter and per-backend breaker."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

from cachetools import TTLCache

from ..config import (
    LLM_BREAKER_COOLDOWN_S,
    LLM_RATE_LIMIT_INTERVAL_S,
    LLM_RATE_LIMIT_MAX_SUBJECTS,
)

__all__ = ["BreakerState", "CircuitBreaker", "GateDecision", "SubjectRateLimiter"]

Clock = Callable[[], float]


@dataclass(frozen=True, slots=True)
class GateDecision:
    allowed: bool
    remaining_seconds: float = 0.0


@dataclass(frozen=True, slots=True)
class BreakerState:
    tripped: bool
    reset_at: float


class SubjectRateLimiter:
    """Minimum interval between completed analyses, tracked per rider.

    ``try_acquire`` checks the interval and reserves the rider in one locked
    step so two concurrent triggers cannot both pass. The reservation becomes
    a recorded call with ``commit`` or is dropped with ``release``; only
    committed calls start a new interval.

    At most ``max_subjects`` riders are tracked. When more riders than that
    complete a call inside one interval, the least recently used one is
    forgotten early and may be analysed again; a warning is logged when
    that happens. Size ``LLM_RATE_LIMIT_MAX_SUBJECTS`` above the number of
    riders active at once.
    """

    def __init__(
        self,
        interval_s: float = LLM_RATE_LIMIT_INTERVAL_S,
        *,
        max_subjects: int = LLM_RATE_LIMIT_MAX_SUBJECTS,
        clock: Clock = time.time,
    ) -> None:
        if interval_s < 0:
            raise ValueError("interval_s must be >= 0")
        self._lock = threading.Lock()
        self._interval = float(interval_s)
        self._clock = clock
        # Entries outlive the interval, then drop out on their own.
        self._last_calls: TTLCache[str, float] = TTLCache(
            maxsize=max(1, max_subjects), ttl=max(self._interval, 1.0), timer=clock
        )
        self._reserved: set[str] = set()

    @property
    def interval_s(self) -> float:
        return self._interval

    def _remaining_locked(self, subject_id: str, now: float) -> float:
        last = self._last_calls.get(subject_id)
        if last is None:
            return 0.0
        return max(0.0, self._interval - (now - last))

    def check(self, subject_id: str) -> GateDecision:
        """Report whether a call would be allowed, without reserving it."""

        with self._lock:
            now = self._clock()
            if subject_id in self._reserved:
                return GateDecision(False, self._interval)
            remaining = self._remaining_locked(subject_id, now)
        return GateDecision(remaining <= 0.0, remaining)

    def can_make_call(self, subject_id: str) -> bool:
        return self.check(subject_id).allowed

    def try_acquire(self, subject_id: str) -> GateDecision:
        with self._lock:
            now = self._clock()
            if subject_id in self._reserved:
                logging.debug("Analysis already in flight for subject=%s", subject_id)
                return GateDecision(False, self._interval)
            remaining = self._remaining_locked(subject_id, now)
            if remaining > 0.0:
                logging.debug(
                    "Analysis rate limited for subject=%s (%.1fs remaining)",
                    subject_id,
                    remaining,
                )
                return GateDecision(False, remaining)
            self._reserved.add(subject_id)
        return GateDecision(True, 0.0)

    def commit(self, subject_id: str) -> None:
        """Record a completed call and drop the reservation."""

        with self._lock:
            self._reserved.discard(subject_id)
            cache = self._last_calls
            if subject_id not in cache and cache.currsize >= cache.maxsize:
                cache.expire()
                if cache.currsize >= cache.maxsize:
                    logging.warning(
                        "Rate limiter full (%d riders inside the interval); "
                        "the least recently used rider loses its limit",
                        cache.maxsize,
                    )
            cache[subject_id] = self._clock()
        logging.debug("Recorded analysis call for subject=%s", subject_id)

    def release(self, subject_id: str) -> None:
        """Drop a reservation without consuming the interval."""

        with self._lock:
            self._reserved.discard(subject_id)

    def record_call(self, subject_id: str) -> None:
        self.commit(subject_id)

    def remaining_seconds(self, subject_id: str) -> float:
        with self._lock:
            return self._remaining_locked(subject_id, self._clock())

    def last_call_time(self, subject_id: str) -> float | None:
        with self._lock:
            return self._last_calls.get(subject_id)

    def clear(self, subject_id: str | None = None) -> None:
        """Forget recorded calls for one rider, or for everyone (test isolation)."""

        with self._lock:
            if subject_id is None:
                self._last_calls.clear()
                self._reserved.clear()
            else:
                self._last_calls.pop(subject_id, None)
                self._reserved.discard(subject_id)

    def purge_expired(self) -> None:
        with self._lock:
            self._last_calls.expire()

    def snapshot(self) -> Dict[str, float | int]:
        """Return current limiter stats (used by tests and diagnostics)."""

        with self._lock:
            return {
                "interval_s": self._interval,
                "tracked_subjects": len(self._last_calls),
                "reserved": len(self._reserved),
            }


class CircuitBreaker:
    """Trip/cooldown switch per analyzer backend.

    A tripped backend stays closed to calls until its deadline; the next
    ``check`` after the deadline clears the trip.
    """

    def __init__(
        self,
        cooldown_s: float = LLM_BREAKER_COOLDOWN_S,
        *,
        clock: Clock = time.time,
    ) -> None:
        if cooldown_s <= 0:
            raise ValueError("cooldown_s must be > 0")
        self._lock = threading.Lock()
        self._cooldown = float(cooldown_s)
        self._clock = clock
        self._reset_at: Dict[str, float] = {}

    @property
    def cooldown_s(self) -> float:
        return self._cooldown

    def check(self, backend: str) -> GateDecision:
        with self._lock:
            reset_at = self._reset_at.get(backend)
            if reset_at is None:
                return GateDecision(True, 0.0)
            now = self._clock()
            if now < reset_at:
                return GateDecision(False, reset_at - now)
            del self._reset_at[backend]
        logging.info("Circuit breaker cooldown expired for backend=%s; resetting", backend)
        return GateDecision(True, 0.0)

    def is_tripped(self, backend: str) -> bool:
        return not self.check(backend).allowed

    def trip(self, backend: str, cooldown_s: float | None = None) -> float:
        """Open the breaker for ``backend``; return the reset deadline."""

        cooldown = self._cooldown if cooldown_s is None else float(cooldown_s)
        with self._lock:
            reset_at = self._clock() + cooldown
            self._reset_at[backend] = reset_at
        logging.warning(
            "Circuit breaker tripped for backend=%s; pausing analyses for %.0fs",
            backend,
            cooldown,
        )
        return reset_at

    def reset(self, backend: str | None = None) -> None:
        with self._lock:
            if backend is None:
                self._reset_at.clear()
            else:
                self._reset_at.pop(backend, None)

    def state(self, backend: str) -> BreakerState:
        with self._lock:
            reset_at = self._reset_at.get(backend)
            if reset_at is None:
                return BreakerState(tripped=False, reset_at=0.0)
            return BreakerState(tripped=self._clock() < reset_at, reset_at=reset_at)

    def purge_expired(self) -> None:
        with self._lock:
            now = self._clock()
            for backend in [b for b, deadline in self._reset_at.items() if deadline <= now]:
                del self._reset_at[backend]
