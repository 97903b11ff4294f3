"""Collaborator interfaces for storage and broadcast, plus in-memory versions.

The detection core only reads samples/rides and hands findings to an alert
store; real deployments plug their own persistence in behind these
protocols. The in-memory implementations back the tests and the replay CLI.
"""

from __future__ import annotations

import itertools
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from .models import Finding, PositionSample, RideContext


class SampleStore(Protocol):
    def fetch_recent_samples_by_subject(
        self, subject_id: str, limit: int
    ) -> Sequence[PositionSample]:
        """Newest-first samples for a rider, at most ``limit``."""
        ...

    def fetch_recent_samples_by_ride(self, ride_id: str) -> Sequence[PositionSample]:
        """Newest-first samples recorded for a ride."""
        ...

    def fetch_ride_by_id(self, ride_id: str) -> Optional[RideContext]:
        ...

    def fetch_subject_name(self, subject_id: str) -> Optional[str]:
        ...


@dataclass(slots=True)
class StoredAlert:
    alert_id: int
    finding: Finding
    created_at: datetime
    is_read: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


class AlertStore(Protocol):
    def persist(self, finding: Finding) -> StoredAlert:
        ...


class AlertBroadcaster(Protocol):
    def publish(self, topic: str, payload: Mapping[str, Any]) -> None:
        ...


def _newest_first(samples: Iterable[PositionSample]) -> List[PositionSample]:
    return sorted(samples, key=lambda s: s.captured_at, reverse=True)


class InMemorySampleStore:
    """Thread-safe sample/ride store keeping everything in process memory."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._by_subject: Dict[str, List[PositionSample]] = defaultdict(list)
        self._by_ride: Dict[str, List[PositionSample]] = defaultdict(list)
        self._rides: Dict[str, RideContext] = {}
        self._names: Dict[str, str] = {}

    def add_ride(self, ride: RideContext) -> None:
        with self._lock:
            self._rides[ride.ride_id] = ride

    def set_subject_name(self, subject_id: str, name: str) -> None:
        with self._lock:
            self._names[subject_id] = name

    def add_sample(self, sample: PositionSample) -> None:
        with self._lock:
            self._by_subject[sample.subject_id].append(sample)
            self._by_ride[sample.ride_id].append(sample)

    def add_samples(self, samples: Iterable[PositionSample]) -> None:
        for sample in samples:
            self.add_sample(sample)

    def fetch_recent_samples_by_subject(
        self, subject_id: str, limit: int
    ) -> List[PositionSample]:
        with self._lock:
            samples = list(self._by_subject.get(subject_id, ()))
        return _newest_first(samples)[: max(0, limit)]

    def fetch_recent_samples_by_ride(self, ride_id: str) -> List[PositionSample]:
        with self._lock:
            samples = list(self._by_ride.get(ride_id, ()))
        return _newest_first(samples)

    def fetch_ride_by_id(self, ride_id: str) -> Optional[RideContext]:
        with self._lock:
            return self._rides.get(ride_id)

    def fetch_subject_name(self, subject_id: str) -> Optional[str]:
        with self._lock:
            return self._names.get(subject_id)


class InMemoryAlertStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._alerts: List[StoredAlert] = []

    def persist(self, finding: Finding) -> StoredAlert:
        with self._lock:
            alert = StoredAlert(
                alert_id=next(self._ids),
                finding=finding,
                created_at=datetime.now(timezone.utc),
            )
            self._alerts.append(alert)
        return alert

    def alerts(self) -> List[StoredAlert]:
        with self._lock:
            return list(self._alerts)


class RecordingBroadcaster:
    """Broadcaster that keeps published payloads (tests, replay summaries)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.messages: List[tuple[str, Dict[str, Any]]] = []

    def publish(self, topic: str, payload: Mapping[str, Any]) -> None:
        with self._lock:
            self.messages.append((topic, dict(payload)))


__all__ = [
    "AlertBroadcaster",
    "AlertStore",
    "InMemoryAlertStore",
    "InMemorySampleStore",
    "RecordingBroadcaster",
    "SampleStore",
    "StoredAlert",
]
