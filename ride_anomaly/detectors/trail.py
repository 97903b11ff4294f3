"""Single-rider trail checks: stationary riders and heading drift."""

from __future__ import annotations

import logging
from typing import Sequence

from ..config import (
    DIRECTION_DRIFT_SHORTEST_ARC,
    DIRECTION_DRIFT_THRESHOLD_DEG,
    STATIONARY_ACCURACY_AWARE,
    STATIONARY_DURATION_THRESHOLD_S,
    STATIONARY_MAX_ACCURACY_M,
    STATIONARY_MOVEMENT_THRESHOLD_M,
)
from ..errors import InvalidSampleError
from ..geometry import angular_difference, bearing_degrees, distance_meters
from ..models import (
    DetectionResult,
    DetectionStatus,
    Finding,
    FindingKind,
    PositionSample,
    Severity,
)

__all__ = ["DirectionDriftDetector", "StationaryDetector", "validate_trail"]


def validate_trail(samples: Sequence[PositionSample]) -> None:
    """Ensure ``samples`` belong to one rider and ride and are newest first."""

    if not samples:
        return
    head = samples[0]
    for previous, current in zip(samples, samples[1:]):
        if current.subject_id != head.subject_id or current.ride_id != head.ride_id:
            raise InvalidSampleError(
                f"trail mixes riders or rides: {head.subject_id}/{head.ride_id} "
                f"and {current.subject_id}/{current.ride_id}"
            )
        if current.captured_at > previous.captured_at:
            raise InvalidSampleError(
                f"trail for {head.subject_id} is not ordered newest first "
                f"({previous.captured_at.isoformat()} before {current.captured_at.isoformat()})"
            )


class StationaryDetector:
    """Flag riders whose two newest fixes are close together but far apart in time."""

    name = "stationary"

    def __init__(
        self,
        *,
        movement_threshold_m: float = STATIONARY_MOVEMENT_THRESHOLD_M,
        duration_threshold_s: float = STATIONARY_DURATION_THRESHOLD_S,
        accuracy_aware: bool = STATIONARY_ACCURACY_AWARE,
        max_accuracy_m: float = STATIONARY_MAX_ACCURACY_M,
    ) -> None:
        if movement_threshold_m < 0 or duration_threshold_s < 0:
            raise ValueError("stationary thresholds must be >= 0")
        self.movement_threshold_m = movement_threshold_m
        self.duration_threshold_s = duration_threshold_s
        self.accuracy_aware = accuracy_aware
        self.max_accuracy_m = max_accuracy_m
        self._log = logging.getLogger(self.__class__.__name__)

    def detect(self, samples: Sequence[PositionSample]) -> DetectionResult:
        validate_trail(samples)
        if len(samples) < 2:
            return DetectionResult(
                detector=self.name,
                status=DetectionStatus.INSUFFICIENT_DATA,
                message="At least two samples are required",
            )
        latest, previous = samples[0], samples[1]
        distance = distance_meters(latest, previous)
        elapsed = (latest.captured_at - previous.captured_at).total_seconds()
        diagnostics = {"distance_m": distance, "elapsed_s": elapsed}

        if self.accuracy_aware and self._unreliable(latest, previous):
            self._log.debug(
                "Skipping stationary check for subject=%s: accuracy %s/%s > %.1fm",
                latest.subject_id,
                latest.accuracy_m,
                previous.accuracy_m,
                self.max_accuracy_m,
            )
            diagnostics["skipped"] = "low_accuracy"
            return DetectionResult(
                detector=self.name,
                status=DetectionStatus.SUCCESS,
                diagnostics=diagnostics,
            )

        findings: list[Finding] = []
        if distance < self.movement_threshold_m and elapsed > self.duration_threshold_s:
            self._log.info(
                "Stationary anomaly subject=%s distance=%.1fm elapsed=%.0fs",
                latest.subject_id,
                distance,
                elapsed,
            )
            findings.append(
                Finding(
                    subject_id=latest.subject_id,
                    ride_id=latest.ride_id,
                    kind=FindingKind.STATIONARY,
                    severity=Severity.MEDIUM,
                    message=(
                        f"Rider {latest.subject_id} has been stationary for "
                        f"{elapsed:.0f} seconds"
                    ),
                    source_detector=self.name,
                    latitude=latest.latitude,
                    longitude=latest.longitude,
                    diagnostics=dict(diagnostics),
                )
            )
        return DetectionResult(
            detector=self.name,
            status=DetectionStatus.SUCCESS,
            findings=findings,
            diagnostics=diagnostics,
        )

    def _unreliable(self, *samples: PositionSample) -> bool:
        return any(
            s.accuracy_m is not None and s.accuracy_m > self.max_accuracy_m
            for s in samples
        )


class DirectionDriftDetector:
    """Compare the newest leg's bearing with the leg before it."""

    name = "direction_drift"

    def __init__(
        self,
        *,
        drift_threshold_deg: float = DIRECTION_DRIFT_THRESHOLD_DEG,
        shortest_arc: bool = DIRECTION_DRIFT_SHORTEST_ARC,
    ) -> None:
        self.drift_threshold_deg = drift_threshold_deg
        self.shortest_arc = shortest_arc
        self._log = logging.getLogger(self.__class__.__name__)

    def detect(self, samples: Sequence[PositionSample]) -> DetectionResult:
        validate_trail(samples)
        if len(samples) < 3:
            return DetectionResult(
                detector=self.name,
                status=DetectionStatus.INSUFFICIENT_DATA,
                message="At least three samples are required",
            )
        latest, middle, oldest = samples[0], samples[1], samples[2]
        baseline = bearing_degrees(oldest, middle)
        current = bearing_degrees(middle, latest)
        drift = angular_difference(current, baseline, shortest_arc=self.shortest_arc)
        diagnostics = {
            "baseline_bearing": baseline,
            "current_bearing": current,
            "drift_deg": drift,
        }
        findings: list[Finding] = []
        if drift > self.drift_threshold_deg:
            self._log.info(
                "Direction drift subject=%s drift=%.1f baseline=%.1f current=%.1f",
                latest.subject_id,
                drift,
                baseline,
                current,
            )
            findings.append(
                Finding(
                    subject_id=latest.subject_id,
                    ride_id=latest.ride_id,
                    kind=FindingKind.DIRECTION_DRIFT,
                    severity=Severity.LOW,
                    message=(
                        f"Rider {latest.subject_id} has significant direction drift: "
                        f"{drift:.1f} degrees"
                    ),
                    source_detector=self.name,
                    latitude=latest.latitude,
                    longitude=latest.longitude,
                    diagnostics=dict(diagnostics),
                )
            )
        return DetectionResult(
            detector=self.name,
            status=DetectionStatus.SUCCESS,
            findings=findings,
            diagnostics=diagnostics,
        )
