"""Run every rule detector for one trigger, isolating their failures."""

from __future__ import annotations

import logging
from typing import Callable, List, Sequence

from ..errors import InvalidSampleError
from ..models import DetectionResult, DetectionStatus, Finding, GroupSnapshot, PositionSample
from .separation import GroupSeparationDetector
from .trail import DirectionDriftDetector, StationaryDetector


class RuleEngine:
    def __init__(
        self,
        *,
        stationary: StationaryDetector | None = None,
        direction: DirectionDriftDetector | None = None,
        separation: GroupSeparationDetector | None = None,
    ) -> None:
        self.stationary = stationary or StationaryDetector()
        self.direction = direction or DirectionDriftDetector()
        self.separation = separation or GroupSeparationDetector()
        self._log = logging.getLogger(self.__class__.__name__)

    def run(
        self, trail: Sequence[PositionSample], snapshot: GroupSnapshot
    ) -> List[DetectionResult]:
        """Return one result per detector, in a fixed order.

        ``InvalidSampleError`` propagates since it means the caller broke the
        ordering contract; anything else is folded into an ``error`` result.
        """

        checks: list[tuple[str, Callable[[], DetectionResult]]] = [
            (self.stationary.name, lambda: self.stationary.detect(trail)),
            (self.direction.name, lambda: self.direction.detect(trail)),
            (self.separation.name, lambda: self.separation.detect(snapshot)),
        ]
        results: List[DetectionResult] = []
        for name, check in checks:
            try:
                results.append(check())
            except InvalidSampleError:
                raise
            except Exception as exc:
                self._log.error("Detector %s failed: %s", name, exc, exc_info=True)
                results.append(
                    DetectionResult(
                        detector=name,
                        status=DetectionStatus.ERROR,
                        message=str(exc) or exc.__class__.__name__,
                    )
                )
        return results


def collect_findings(results: Sequence[DetectionResult]) -> List[Finding]:
    findings: List[Finding] = []
    for result in results:
        if result.ok:
            findings.extend(result.findings)
    return findings


__all__ = ["RuleEngine", "collect_findings"]
