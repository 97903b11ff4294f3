"""Ride group anomaly detection package."""

from .main import main
from .models import (
    AnalysisResult,
    AnalysisStatus,
    DetectionResult,
    DetectionStatus,
    Finding,
    FindingKind,
    GroupSnapshot,
    PositionSample,
    RideContext,
    Severity,
)
from .errors import InvalidSampleError, RideAnomalyError, RideNotFoundError

__all__ = [
    "main",
    "AnalysisResult",
    "AnalysisStatus",
    "DetectionResult",
    "DetectionStatus",
    "Finding",
    "FindingKind",
    "GroupSnapshot",
    "PositionSample",
    "RideContext",
    "Severity",
    "InvalidSampleError",
    "RideAnomalyError",
    "RideNotFoundError",
]
