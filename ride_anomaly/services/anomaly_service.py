"""Per-position orchestration of rule detectors and background analysis."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
import logging
import threading
from typing import Dict, List, Optional, Sequence

from ..config import ANALYSIS_MAX_PENDING, ANALYSIS_MAX_WORKERS, LLM_ENABLED
from ..detectors import RuleEngine, collect_findings
from ..emitter import AlertEmitter
from ..models import (
    AnalysisResult,
    DetectionResult,
    Finding,
    GroupSnapshot,
    PositionSample,
)
from ..storage import SampleStore
from .analysis_service import AnalysisService

TRAIL_LENGTH = 3


class AnomalyService:
    """Entry point for each ingested position.

    Rule detectors run inline and their findings are emitted before
    ``on_position`` returns. External analysis is submitted to a worker pool
    and never waited on; at most ``max_pending`` analyses are queued or
    running, later triggers are dropped.
    """

    def __init__(
        self,
        store: SampleStore,
        emitter: AlertEmitter,
        *,
        rule_engine: RuleEngine | None = None,
        analysis: AnalysisService | None = None,
        analysis_enabled: bool = LLM_ENABLED,
        max_workers: int = ANALYSIS_MAX_WORKERS,
        max_pending: int = ANALYSIS_MAX_PENDING,
    ) -> None:
        self._store = store
        self._emitter = emitter
        self._engine = rule_engine or RuleEngine()
        self._log = logging.getLogger(self.__class__.__name__)
        self._analysis: AnalysisService | None = None
        self._executor: ThreadPoolExecutor | None = None
        if analysis_enabled:
            self._analysis = analysis or AnalysisService(store)
            self._executor = ThreadPoolExecutor(
                max_workers=max(1, max_workers), thread_name_prefix="ride-analysis"
            )
        self._pending = threading.BoundedSemaphore(max(1, max_pending))
        self._futures: set[Future[AnalysisResult]] = set()
        self._futures_lock = threading.Lock()

    @property
    def analysis(self) -> AnalysisService | None:
        return self._analysis

    def on_position(self, sample: PositionSample) -> List[DetectionResult]:
        ride_samples = list(self._store.fetch_recent_samples_by_ride(sample.ride_id))
        if sample not in ride_samples:
            ride_samples.append(sample)
        ride_samples.sort(key=lambda s: s.captured_at, reverse=True)

        trail = [s for s in ride_samples if s.subject_id == sample.subject_id][
            :TRAIL_LENGTH
        ]
        snapshot = GroupSnapshot.from_samples(
            ride_samples, names=self._names_for(ride_samples)
        )
        results = self._engine.run(trail, snapshot)
        findings = collect_findings(results)
        if findings:
            self._log.info(
                "Rule detectors raised %d findings for subject=%s ride=%s",
                len(findings),
                sample.subject_id,
                sample.ride_id,
            )
            self._emitter.emit_all(_annotate(findings, snapshot))
        self.submit_analysis(sample.ride_id, sample.subject_id)
        return results

    def submit_analysis(
        self, ride_id: str, subject_id: str
    ) -> Optional[Future[AnalysisResult]]:
        if self._analysis is None or self._executor is None:
            return None
        if not self._pending.acquire(blocking=False):
            self._log.warning(
                "Dropping analysis for subject=%s ride=%s: too many pending analyses",
                subject_id,
                ride_id,
            )
            return None
        try:
            future = self._executor.submit(self._run_analysis, ride_id, subject_id)
        except RuntimeError as exc:
            self._pending.release()
            self._log.warning("Analysis pool unavailable: %s", exc)
            return None
        with self._futures_lock:
            self._futures.add(future)
        future.add_done_callback(self._on_analysis_done)
        return future

    def wait_for_pending(self, timeout: float | None = None) -> bool:
        """Block until submitted analyses finish; False if ``timeout`` expired."""

        with self._futures_lock:
            futures = list(self._futures)
        if not futures:
            return True
        _, not_done = wait_futures(futures, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)

    def __enter__(self) -> "AnomalyService":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown(wait=True)

    def _run_analysis(self, ride_id: str, subject_id: str) -> AnalysisResult:
        assert self._analysis is not None
        result = self._analysis.analyze(ride_id, subject_id)
        self._log.debug(
            "Analysis for subject=%s ride=%s finished with status=%s",
            subject_id,
            ride_id,
            result.status.value,
        )
        if result.findings:
            self._emitter.emit_all(_annotate(result.findings, self._snapshot(ride_id)))
        return result

    def _snapshot(self, ride_id: str) -> GroupSnapshot:
        try:
            samples = list(self._store.fetch_recent_samples_by_ride(ride_id))
        except Exception as exc:
            self._log.warning("Sample lookup for ride=%s failed: %s", ride_id, exc)
            return GroupSnapshot()
        return GroupSnapshot.from_samples(samples, names=self._names_for(samples))

    def _on_analysis_done(self, future: Future[AnalysisResult]) -> None:
        self._pending.release()
        with self._futures_lock:
            self._futures.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self._log.error("Background analysis failed: %s", exc, exc_info=exc)

    def _names_for(self, samples: Sequence[PositionSample]) -> Dict[str, str]:
        fetch_name = getattr(self._store, "fetch_subject_name", None)
        if fetch_name is None:
            return {}
        names: Dict[str, str] = {}
        for subject_id in {s.subject_id for s in samples}:
            try:
                name = fetch_name(subject_id)
            except Exception as exc:
                self._log.warning("Name lookup for subject=%s failed: %s", subject_id, exc)
                continue
            if name:
                names[subject_id] = name
        return names


def _annotate(findings: List[Finding], snapshot: GroupSnapshot) -> List[Finding]:
    """Fill display name and device fields from the member's latest sample."""

    latest = {member.subject_id: member for member in snapshot.members}
    for finding in findings:
        if finding.subject_name is None:
            finding.subject_name = snapshot.names.get(finding.subject_id)
        member = latest.get(finding.subject_id)
        if member is None:
            continue
        if finding.device_id is None:
            finding.device_id = member.device_id
        if finding.device_type is None:
            finding.device_type = member.device_type
    return findings


__all__ = ["AnomalyService", "TRAIL_LENGTH"]
