"""Radius-based group separation detection.

Each active member's latest fix is compared with the group centroid (plain
mean of latitudes/longitudes). Members beyond the warning or critical radius
produce one finding each. The detector never raises: failures come back as
an ``error`` result so sibling detectors keep running.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from ..config import (
    RADIUS_ALERTS_ENABLED,
    RADIUS_CRITICAL_DISTANCE_M,
    RADIUS_MAX_SAMPLE_AGE_S,
    RADIUS_MIN_GROUP_SIZE,
    RADIUS_WARNING_DISTANCE_M,
)
from ..geometry import centroid, distance_meters, format_distance
from ..models import (
    DetectionResult,
    DetectionStatus,
    Finding,
    FindingKind,
    GroupSnapshot,
    PositionSample,
    Severity,
)

__all__ = ["GroupSeparationDetector", "SeparationLevel"]


class SeparationLevel:
    NORMAL = "NORMAL"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class GroupSeparationDetector:
    name = "group_separation"

    def __init__(
        self,
        *,
        enabled: bool = RADIUS_ALERTS_ENABLED,
        warning_distance_m: float = RADIUS_WARNING_DISTANCE_M,
        critical_distance_m: float = RADIUS_CRITICAL_DISTANCE_M,
        min_group_size: int = RADIUS_MIN_GROUP_SIZE,
        max_sample_age_s: float = RADIUS_MAX_SAMPLE_AGE_S,
    ) -> None:
        if warning_distance_m > critical_distance_m:
            raise ValueError("warning distance must not exceed critical distance")
        self.enabled = enabled
        self.warning_distance_m = warning_distance_m
        self.critical_distance_m = critical_distance_m
        # A centroid of nothing is undefined, so never go below one member.
        self.min_group_size = max(1, min_group_size)
        self.max_sample_age_s = max_sample_age_s
        self._log = logging.getLogger(self.__class__.__name__)

    def classify(self, distance_m: float) -> str:
        if distance_m >= self.critical_distance_m:
            return SeparationLevel.CRITICAL
        if distance_m >= self.warning_distance_m:
            return SeparationLevel.WARNING
        return SeparationLevel.NORMAL

    def detect(self, snapshot: GroupSnapshot) -> DetectionResult:
        if not self.enabled:
            return DetectionResult(
                detector=self.name,
                status=DetectionStatus.DISABLED,
                message="Radius-based alerts are disabled",
            )
        try:
            return self._detect(snapshot)
        except Exception as exc:
            self._log.error("Group separation detection failed: %s", exc, exc_info=True)
            return DetectionResult(
                detector=self.name,
                status=DetectionStatus.ERROR,
                message=str(exc) or exc.__class__.__name__,
            )

    def _detect(self, snapshot: GroupSnapshot) -> DetectionResult:
        members = self._fresh_members(snapshot)
        if len(members) < self.min_group_size:
            return DetectionResult(
                detector=self.name,
                status=DetectionStatus.INSUFFICIENT_DATA,
                message="Not enough group members with recent location data",
                diagnostics={
                    "member_count": len(members),
                    "min_required": self.min_group_size,
                },
            )

        center = centroid(members)
        assert center is not None  # members is non-empty here
        analysis: List[Dict[str, Any]] = []
        findings: List[Finding] = []
        for member in members:
            distance = distance_meters(member, center)
            level = self.classify(distance)
            name = snapshot.display_name(member.subject_id)
            analysis.append(
                {
                    "subject_id": member.subject_id,
                    "name": name,
                    "distance_m": distance,
                    "level": level,
                }
            )
            if level == SeparationLevel.NORMAL:
                continue
            findings.append(self._finding(member, name, distance, level))

        self._log.debug(
            "Group separation members=%d centroid=(%.6f, %.6f) findings=%d",
            len(members),
            center.latitude,
            center.longitude,
            len(findings),
        )
        return DetectionResult(
            detector=self.name,
            status=DetectionStatus.SUCCESS,
            findings=findings,
            diagnostics={
                "centroid": {"latitude": center.latitude, "longitude": center.longitude},
                "total_members": len(members),
                "members": analysis,
            },
        )

    def _fresh_members(self, snapshot: GroupSnapshot) -> List[PositionSample]:
        members = list(snapshot.members)
        if self.max_sample_age_s <= 0 or not members:
            return members
        newest = max(m.captured_at for m in members)
        return [
            m
            for m in members
            if (newest - m.captured_at).total_seconds() <= self.max_sample_age_s
        ]

    def _finding(
        self, member: PositionSample, name: str, distance: float, level: str
    ) -> Finding:
        formatted = format_distance(distance)
        if level == SeparationLevel.CRITICAL:
            severity = Severity.HIGH
            threshold = self.critical_distance_m
            message = (
                f"CRITICAL: {name} is {formatted} away from the group! "
                "Immediate attention required."
            )
        else:
            severity = Severity.MEDIUM
            threshold = self.warning_distance_m
            message = f"WARNING: {name} is {formatted} away from the group. Please check on them."
        return Finding(
            subject_id=member.subject_id,
            ride_id=member.ride_id,
            kind=FindingKind.GROUP_SEPARATION,
            severity=severity,
            message=message,
            source_detector=self.name,
            latitude=member.latitude,
            longitude=member.longitude,
            diagnostics={
                "distance_m": distance,
                "distance_formatted": formatted,
                "level": level,
                "threshold_m": threshold,
            },
        )
