"""Global pytest fixtures & helpers.

Adds project root to path and provides sample factories, in-memory stores
and a scriptable analyzer backend shared across the test modules.
"""
from __future__ import annotations

import os
import sys
import threading
from datetime import datetime, timedelta, timezone

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from ride_anomaly.models import PositionSample, RideContext, RideStatus
from ride_anomaly.storage import InMemoryAlertStore, InMemorySampleStore

BASE_TIME = datetime(2025, 9, 15, 8, 0, tzinfo=timezone.utc)


# --- Factory helpers -------------------------------------------------
def make_sample(
    subject_id="rider-a",
    lat=0.0,
    lon=0.0,
    seconds=0,
    ride_id="ride-1",
    **extra,
):
    return PositionSample(
        subject_id=subject_id,
        ride_id=ride_id,
        latitude=lat,
        longitude=lon,
        captured_at=BASE_TIME + timedelta(seconds=seconds),
        **extra,
    )


def make_trail(*points, subject_id="rider-a", step_s=10):
    """Build a newest-first trail from oldest-first ``(lat, lon)`` points."""

    samples = [
        make_sample(subject_id, lat, lon, seconds=index * step_s)
        for index, (lat, lon) in enumerate(points)
    ]
    return list(reversed(samples))


def make_ride(ride_id="ride-1", **overrides):
    values = dict(
        ride_id=ride_id,
        name="Sunday Loop",
        status=RideStatus.ACTIVE,
        started_at=BASE_TIME,
        expected_route_description="Coastal road, 40 km",
        member_count=3,
    )
    values.update(overrides)
    return RideContext(**values)


class FakeClock:
    """Manually advanced clock for limiter and breaker tests."""

    def __init__(self, start=1_000.0):
        self.now = float(start)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeBackend:
    """Analyzer backend returning scripted answers (or raising them)."""

    def __init__(self, *answers, name="fake", configured=True, gate=None):
        self.name = name
        self.configured = configured
        self.answers = list(answers)
        self.prompts = []
        self.gate = gate
        self._lock = threading.Lock()

    def is_configured(self):
        return self.configured

    def analyze(self, prompt):
        if self.gate is not None:
            self.gate.wait(2.0)
        with self._lock:
            self.prompts.append(prompt)
            answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, BaseException):
            raise answer
        return answer

    @property
    def calls(self):
        return len(self.prompts)


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def ride():
    return make_ride()


@pytest.fixture
def sample_store(ride):
    store = InMemorySampleStore()
    store.add_ride(ride)
    store.set_subject_name("rider-a", "Alice")
    store.set_subject_name("rider-b", "Ben")
    store.add_samples(
        [
            make_sample("rider-a", 0.0, 0.0, seconds=0),
            make_sample("rider-a", 0.0, 0.001, seconds=30),
            make_sample("rider-a", 0.0, 0.002, seconds=60),
            make_sample("rider-b", 0.0005, 0.0015, seconds=55),
        ]
    )
    return store


@pytest.fixture
def alert_store():
    return InMemoryAlertStore()
