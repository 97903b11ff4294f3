"""External model analysis of one rider's ride context.

The service owns the gating order (enabled, configured, breaker, per-rider
limiter), collects context, calls the backend once and salvages the answer.
It reports every outcome as an ``AnalysisResult``; nothing is raised to the
caller.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import List

from ..analyzer_client import (
    AnalyzerBackend,
    CircuitBreaker,
    SubjectRateLimiter,
    build_backend,
)
from ..config import LLM_ENABLED, LLM_FOLD_DETAILS_INTO_MESSAGE
from ..context import AnalysisContext, ContextCollector
from ..errors import (
    AnalyzerError,
    AnalyzerQuotaError,
    AnalyzerResponseError,
    AnalyzerTransportError,
    RideNotFoundError,
)
from ..models import AnalysisResult, AnalysisStatus
from ..prompting import build_prompt
from ..salvage import (
    SUPPORTED_ANOMALY_TYPES,
    findings_from_response,
    parse_response,
    validate_payload,
)
from ..storage import SampleStore


@dataclass(slots=True)
class AnalysisServiceConfig:
    enabled: bool = LLM_ENABLED
    fold_details: bool = LLM_FOLD_DETAILS_INTO_MESSAGE
    logger: logging.Logger | None = None


class AnalysisService:
    def __init__(
        self,
        store: SampleStore,
        *,
        backend: AnalyzerBackend | None = None,
        limiter: SubjectRateLimiter | None = None,
        breaker: CircuitBreaker | None = None,
        collector: ContextCollector | None = None,
        config: AnalysisServiceConfig | None = None,
    ) -> None:
        self.config = config or AnalysisServiceConfig()
        self._log = self.config.logger or logging.getLogger(self.__class__.__name__)
        self.backend = backend or build_backend()
        self.limiter = limiter or SubjectRateLimiter()
        self.breaker = breaker or CircuitBreaker()
        self.collector = collector or ContextCollector(store)

    @property
    def source_name(self) -> str:
        return f"external:{self.backend.name}"

    def supported_anomaly_types(self) -> List[str]:
        return list(SUPPORTED_ANOMALY_TYPES)

    def can_analyze(self, subject_id: str) -> bool:
        if not self.config.enabled or not self.backend.is_configured():
            return False
        if not self.breaker.check(self.backend.name).allowed:
            return False
        return self.limiter.check(subject_id).allowed

    def last_analysis_time(self, subject_id: str) -> float | None:
        return self.limiter.last_call_time(subject_id)

    def analyze(self, ride_id: str, subject_id: str) -> AnalysisResult:
        try:
            return self._analyze(ride_id, subject_id)
        except Exception as exc:
            self._log.error(
                "Analysis failed for ride=%s subject=%s: %s",
                ride_id,
                subject_id,
                exc,
                exc_info=True,
            )
            return AnalysisResult(AnalysisStatus.ERROR, message=str(exc))

    def _analyze(self, ride_id: str, subject_id: str) -> AnalysisResult:
        if not self.config.enabled:
            return AnalysisResult(
                AnalysisStatus.DISABLED, message="External analysis is disabled"
            )
        backend_name = self.backend.name
        if not self.backend.is_configured():
            self._log.warning(
                "Analyzer backend %s is not configured; skipping analysis", backend_name
            )
            return AnalysisResult(
                AnalysisStatus.NO_API_KEY,
                message=f"Analyzer backend {backend_name} is not configured",
            )

        gate = self.breaker.check(backend_name)
        if not gate.allowed:
            self._log.info(
                "Analyzer %s paused after quota errors; %.0fs remaining",
                backend_name,
                gate.remaining_seconds,
            )
            return AnalysisResult(
                AnalysisStatus.QUOTA_EXCEEDED,
                message=f"Analyzer quota exceeded; retry in {gate.remaining_seconds:.0f}s",
                remaining_seconds=gate.remaining_seconds,
            )

        decision = self.limiter.try_acquire(subject_id)
        if not decision.allowed:
            return AnalysisResult(
                AnalysisStatus.RATE_LIMITED,
                message=(
                    f"Rate limited for subject {subject_id}; "
                    f"retry in {decision.remaining_seconds:.0f}s"
                ),
                remaining_seconds=decision.remaining_seconds,
            )

        committed = False
        try:
            result = self._call(ride_id, subject_id)
            committed = result.status is AnalysisStatus.SUCCESS
            return result
        finally:
            # Only a usable answer consumes the rider's interval.
            if committed:
                self.limiter.commit(subject_id)
            else:
                self.limiter.release(subject_id)

    def _call(self, ride_id: str, subject_id: str) -> AnalysisResult:
        try:
            context = self.collector.collect(ride_id, subject_id)
        except RideNotFoundError as exc:
            self._log.warning("Skipping analysis: %s", exc)
            return AnalysisResult(AnalysisStatus.NOT_FOUND, message=str(exc))

        prompt = build_prompt(context.to_payload())
        backend_name = self.backend.name
        try:
            raw = self.backend.analyze(prompt)
        except AnalyzerQuotaError as exc:
            self.breaker.trip(backend_name)
            self._log.error("Analyzer %s quota exceeded: %s", backend_name, exc)
            return AnalysisResult(
                AnalysisStatus.ERROR,
                message=str(exc),
                remaining_seconds=self.breaker.cooldown_s,
                diagnostics={"quota_exceeded": True},
            )
        except AnalyzerTransportError as exc:
            self._log.warning("Analyzer %s call failed: %s", backend_name, exc)
            return AnalysisResult(AnalysisStatus.TRANSPORT_ERROR, message=str(exc))
        except AnalyzerResponseError as exc:
            self._log.warning("Analyzer %s returned an unusable body: %s", backend_name, exc)
            return AnalysisResult(AnalysisStatus.INVALID_RESPONSE, message=str(exc))
        except AnalyzerError as exc:
            self._log.error("Analyzer %s error: %s", backend_name, exc)
            return AnalysisResult(AnalysisStatus.ERROR, message=str(exc))

        return self._interpret(raw, context, ride_id, subject_id)

    def _interpret(
        self, raw: str, context: AnalysisContext, ride_id: str, subject_id: str
    ) -> AnalysisResult:
        payload = parse_response(raw)
        if not validate_payload(payload):
            self._log.warning(
                "Invalid analyzer response for ride=%s subject=%s", ride_id, subject_id
            )
            return AnalysisResult(
                AnalysisStatus.INVALID_RESPONSE,
                message="Analyzer response could not be parsed",
                raw_response=raw,
            )

        findings = findings_from_response(
            payload,
            ride_id=ride_id,
            subject_id=subject_id,
            known_subjects=context.known_subjects,
            source=self.source_name,
            fold_details=self.config.fold_details,
        )
        overall = payload.get("overallAssessment")
        risk = payload.get("riskLevel")
        if overall:
            self._log.info("Overall assessment for ride=%s: %s", ride_id, overall)
        if risk:
            self._log.info("Risk level for ride=%s: %s", ride_id, risk)
        self._log.info(
            "Analysis produced %d findings for ride=%s subject=%s",
            len(findings),
            ride_id,
            subject_id,
        )
        return AnalysisResult(
            AnalysisStatus.SUCCESS,
            findings=findings,
            overall_assessment=str(overall) if overall is not None else None,
            risk_level=str(risk) if risk is not None else None,
            raw_response=raw,
        )
