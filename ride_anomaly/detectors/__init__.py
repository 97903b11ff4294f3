"""Deterministic rule detectors (stationary, direction drift, separation)."""

from .engine import RuleEngine, collect_findings
from .separation import GroupSeparationDetector, SeparationLevel
from .trail import DirectionDriftDetector, StationaryDetector, validate_trail

__all__ = [
    "DirectionDriftDetector",
    "GroupSeparationDetector",
    "RuleEngine",
    "SeparationLevel",
    "StationaryDetector",
    "collect_findings",
    "validate_trail",
]
