"""Collect the ride snapshot sent to the external analyzer.

The ride itself must resolve; every other lookup degrades to an empty value
because partial context is still useful to the model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence, TypeVar

from .config import CONTEXT_HISTORY_LIMIT
from .errors import RideNotFoundError
from .models import PositionSample, RideContext
from .storage import SampleStore

T = TypeVar("T")

__all__ = ["AnalysisContext", "ContextCollector", "MemberLocation", "format_sample"]


def format_sample(sample: PositionSample) -> Dict[str, Any]:
    return {
        "latitude": sample.latitude,
        "longitude": sample.longitude,
        "speed": sample.speed,
        "heading": sample.heading,
        "accuracy": sample.accuracy_m,
        "altitude": sample.altitude,
        "timestamp": sample.captured_at.isoformat(),
    }


@dataclass(slots=True)
class MemberLocation:
    subject_id: str
    name: str
    latest: Optional[PositionSample] = None


@dataclass(slots=True)
class AnalysisContext:
    ride: RideContext
    subject_id: str
    history: List[PositionSample] = field(default_factory=list)
    members: List[MemberLocation] = field(default_factory=list)
    history_limit: int = CONTEXT_HISTORY_LIMIT
    collected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def current_location(self) -> Optional[PositionSample]:
        return self.history[0] if self.history else None

    @property
    def known_subjects(self) -> FrozenSet[str]:
        return frozenset([self.subject_id, *(m.subject_id for m in self.members)])

    def to_payload(self) -> Dict[str, Any]:
        current = self.current_location
        ride = self.ride
        return {
            "currentUser": {
                "id": self.subject_id,
                "currentLocation": format_sample(current) if current else None,
                "recentHistory": [format_sample(s) for s in self.history],
            },
            "groupMembers": [
                {
                    "userId": member.subject_id,
                    "userName": member.name,
                    "currentLocation": (
                        format_sample(member.latest) if member.latest else None
                    ),
                }
                for member in self.members
            ],
            "rideContext": {
                "rideId": ride.ride_id,
                "name": ride.name,
                "status": ride.status.value,
                "startedAt": ride.started_at.isoformat() if ride.started_at else None,
                "expectedRouteDescription": ride.expected_route_description,
                "memberCount": ride.member_count,
                "activeMemberCount": len(self.members),
            },
            "metadata": {
                "analysisTimestamp": self.collected_at.isoformat(),
                "historyLimit": self.history_limit,
            },
        }


class ContextCollector:
    def __init__(
        self,
        store: SampleStore,
        *,
        history_limit: int = CONTEXT_HISTORY_LIMIT,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if history_limit < 1:
            raise ValueError("history_limit must be >= 1")
        self._store = store
        self.history_limit = history_limit
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._log = logging.getLogger(self.__class__.__name__)

    def collect(self, ride_id: str, subject_id: str) -> AnalysisContext:
        self._log.info("Collecting context for ride=%s subject=%s", ride_id, subject_id)
        ride = self._store.fetch_ride_by_id(ride_id)
        if ride is None:
            raise RideNotFoundError(f"Ride not found: {ride_id}")

        history = self._lookup(
            lambda: list(
                self._store.fetch_recent_samples_by_subject(subject_id, self.history_limit)
            ),
            [],
            f"history for subject {subject_id}",
        )[: self.history_limit]
        ride_samples: Sequence[PositionSample] = self._lookup(
            lambda: list(self._store.fetch_recent_samples_by_ride(ride_id)),
            [],
            f"samples for ride {ride_id}",
        )
        members = [
            MemberLocation(
                subject_id=member_id,
                name=self._display_name(member_id),
                latest=self._latest_for(member_id),
            )
            for member_id in _distinct_subjects(ride_samples)
        ]
        context = AnalysisContext(
            ride=ride,
            subject_id=subject_id,
            history=history,
            members=members,
            history_limit=self.history_limit,
            collected_at=self._clock(),
        )
        self._log.info(
            "Collected context for ride=%s: %d members, %d history samples",
            ride_id,
            len(members),
            len(history),
        )
        return context

    def _latest_for(self, subject_id: str) -> Optional[PositionSample]:
        samples = self._lookup(
            lambda: list(self._store.fetch_recent_samples_by_subject(subject_id, 1)),
            [],
            f"latest sample for subject {subject_id}",
        )
        return samples[0] if samples else None

    def _display_name(self, subject_id: str) -> str:
        # Name lookup is optional for stores.
        fetch_name = getattr(self._store, "fetch_subject_name", None)
        if fetch_name is None:
            return subject_id
        name = self._lookup(
            lambda: fetch_name(subject_id),
            None,
            f"name for subject {subject_id}",
        )
        return name or subject_id

    def _lookup(self, fetch: Callable[[], T], default: T, what: str) -> T:
        try:
            return fetch()
        except Exception as exc:
            self._log.warning("Lookup of %s failed: %s", what, exc, exc_info=True)
            return default


def _distinct_subjects(samples: Sequence[PositionSample]) -> List[str]:
    seen: Dict[str, None] = {}
    for sample in samples:
        seen.setdefault(sample.subject_id, None)
    return list(seen)
