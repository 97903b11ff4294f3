from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .errors import InvalidSampleError
from .utils import parse_iso_datetime, to_utc_aware


class RideStatus(str, Enum):
    PLANNED = "PLANNED"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @classmethod
    def parse(cls, value: Any, default: "Severity | None" = None) -> "Severity":
        """Lenient lookup for model-provided severities (``"high"`` -> HIGH)."""

        fallback = default or cls.MEDIUM
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return fallback
        try:
            return cls(value.strip().upper())
        except ValueError:
            return fallback


class FindingKind(str, Enum):
    STATIONARY = "STATIONARY"
    DIRECTION_DRIFT = "DIRECTION_DRIFT"
    GROUP_SEPARATION = "GROUP_SEPARATION"
    SPEED_ANOMALY = "SPEED_ANOMALY"
    LOCATION_ANOMALY = "LOCATION_ANOMALY"
    EMERGENCY = "EMERGENCY"


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True, slots=True)
class PositionSample:
    subject_id: str
    ride_id: str
    latitude: float
    longitude: float
    captured_at: datetime
    altitude: float | None = None
    speed: float | None = None
    heading: float | None = None
    accuracy_m: float | None = None
    device_id: str | None = None
    device_type: str | None = None

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise InvalidSampleError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise InvalidSampleError(f"longitude out of range: {self.longitude}")
        if self.accuracy_m is not None and self.accuracy_m < 0:
            raise InvalidSampleError(f"accuracy must be >= 0: {self.accuracy_m}")
        object.__setattr__(self, "captured_at", to_utc_aware(self.captured_at))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PositionSample":
        """Build a sample from a JSON object using camelCase or snake_case keys."""

        def pick(*keys: str) -> Any:
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return None

        subject_id = pick("subjectId", "subject_id", "userId", "user_id")
        ride_id = pick("rideId", "ride_id")
        if subject_id is None or ride_id is None:
            raise InvalidSampleError("sample is missing subject or ride reference")
        latitude = _optional_float(pick("latitude", "lat"))
        longitude = _optional_float(pick("longitude", "lon", "lng"))
        if latitude is None or longitude is None:
            raise InvalidSampleError("sample is missing coordinates")
        captured_at = parse_iso_datetime(
            pick("capturedAt", "captured_at", "timestamp")
        )
        if captured_at is None:
            raise InvalidSampleError("sample is missing a capture timestamp")
        device_id = pick("deviceId", "device_id")
        device_type = pick("deviceType", "device_type")
        return cls(
            subject_id=str(subject_id),
            ride_id=str(ride_id),
            latitude=latitude,
            longitude=longitude,
            captured_at=captured_at,
            altitude=_optional_float(pick("altitude")),
            speed=_optional_float(pick("speed")),
            heading=_optional_float(pick("heading")),
            accuracy_m=_optional_float(pick("accuracyMeters", "accuracy_m", "accuracy")),
            device_id=str(device_id) if device_id is not None else None,
            device_type=str(device_type) if device_type is not None else None,
        )


@dataclass(slots=True)
class RideContext:
    ride_id: str
    name: str
    status: RideStatus = RideStatus.PLANNED
    started_at: datetime | None = None
    expected_route_description: str | None = None
    member_count: int = 0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RideContext":
        ride_id = data.get("rideId", data.get("ride_id", data.get("id")))
        if ride_id is None:
            raise ValueError("ride is missing an id")
        raw_status = str(data.get("status") or RideStatus.PLANNED.value).upper()
        try:
            status = RideStatus(raw_status)
        except ValueError:
            status = RideStatus.PLANNED
        member_count = data.get("memberCount", data.get("member_count", 0))
        return cls(
            ride_id=str(ride_id),
            name=str(data.get("name") or ride_id),
            status=status,
            started_at=parse_iso_datetime(data.get("startedAt", data.get("started_at"))),
            expected_route_description=data.get(
                "expectedRouteDescription", data.get("expected_route_description")
            ),
            member_count=int(member_count or 0),
        )


@dataclass(frozen=True, slots=True)
class Centroid:
    latitude: float
    longitude: float


@dataclass(frozen=True, slots=True)
class GroupSnapshot:
    """Latest sample per active member, most recently active member first."""

    members: Tuple[PositionSample, ...] = ()
    names: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_samples(
        cls,
        samples: Iterable[PositionSample],
        names: Optional[Mapping[str, str]] = None,
    ) -> "GroupSnapshot":
        latest: Dict[str, PositionSample] = {}
        for sample in samples:
            current = latest.get(sample.subject_id)
            if current is None or sample.captured_at > current.captured_at:
                latest[sample.subject_id] = sample
        ordered = sorted(
            latest.values(), key=lambda s: (s.captured_at, s.subject_id), reverse=True
        )
        return cls(members=tuple(ordered), names=dict(names or {}))

    def __len__(self) -> int:
        return len(self.members)

    @property
    def subject_ids(self) -> Tuple[str, ...]:
        return tuple(member.subject_id for member in self.members)

    def display_name(self, subject_id: str) -> str:
        return self.names.get(subject_id) or subject_id


@dataclass(slots=True)
class Finding:
    subject_id: str
    ride_id: str
    kind: FindingKind
    severity: Severity
    message: str
    source_detector: str
    confidence: float | None = None
    recommendations: Tuple[str, ...] = ()
    latitude: float | None = None
    longitude: float | None = None
    subject_name: str | None = None
    device_id: str | None = None
    device_type: str | None = None
    diagnostics: Dict[str, Any] = field(default_factory=dict)


class DetectionStatus(str, Enum):
    SUCCESS = "success"
    DISABLED = "disabled"
    INSUFFICIENT_DATA = "insufficient_data"
    ERROR = "error"


@dataclass(slots=True)
class DetectionResult:
    detector: str
    status: DetectionStatus
    findings: list[Finding] = field(default_factory=list)
    message: str | None = None
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status is DetectionStatus.SUCCESS


class AnalysisStatus(str, Enum):
    SUCCESS = "success"
    DISABLED = "disabled"
    NO_API_KEY = "no_api_key"
    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMITED = "rate_limited"
    INVALID_RESPONSE = "invalid_response"
    NOT_FOUND = "not_found"
    TRANSPORT_ERROR = "transport_error"
    ERROR = "error"


@dataclass(slots=True)
class AnalysisResult:
    status: AnalysisStatus
    findings: list[Finding] = field(default_factory=list)
    message: str | None = None
    remaining_seconds: float | None = None
    overall_assessment: str | None = None
    risk_level: str | None = None
    raw_response: str | None = None
    diagnostics: Dict[str, Any] = field(default_factory=dict)
