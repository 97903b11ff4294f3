"""Salvage, validation and mapping of untrusted model output.

Model text is frequently wrapped in prose, truncated mid-array, or returned
as a bare list. ``clean_response`` trims it down to the most plausible JSON
fragment; ``parse_response`` never raises and yields ``{}`` for anything it
cannot read. Validation is a separate step so callers can tell "nothing
found" apart from "unusable answer".
"""

from __future__ import annotations

import json
import logging
from typing import Any, Collection, Dict, List, Mapping, Optional, Tuple

from .models import Finding, FindingKind, Severity

LOGGER = logging.getLogger(__name__)

_BOILERPLATE_PREFIXES = ("Response:", "Here's", "Here is")

DEFAULT_ASSESSMENT = "Analysis completed"
DEFAULT_RISK_LEVEL = "LOW"

# Types advertised to the model; anything else maps to LOCATION_ANOMALY.
SUPPORTED_ANOMALY_TYPES = (
    "STATIONARY_ANOMALY",
    "SPEED_ANOMALY",
    "DIRECTION_DRIFT",
    "ROUTE_DEVIATION",
    "LOCATION_ANOMALY",
    "GROUP_COORDINATION",
    "GPS_ANOMALY",
    "EMERGENCY",
)

ANOMALY_TYPE_MAP: Dict[str, FindingKind] = {
    "STATIONARY_ANOMALY": FindingKind.STATIONARY,
    "STATIONARY": FindingKind.STATIONARY,
    "SPEED_ANOMALY": FindingKind.SPEED_ANOMALY,
    "SPEED": FindingKind.SPEED_ANOMALY,
    "DIRECTION_DRIFT": FindingKind.DIRECTION_DRIFT,
    "ROUTE_DEVIATION": FindingKind.DIRECTION_DRIFT,
    "LOCATION_ANOMALY": FindingKind.LOCATION_ANOMALY,
    "GPS_ANOMALY": FindingKind.LOCATION_ANOMALY,
    "GROUP_COORDINATION": FindingKind.LOCATION_ANOMALY,
    "GROUP_ANOMALY": FindingKind.LOCATION_ANOMALY,
    "EMERGENCY": FindingKind.EMERGENCY,
}

__all__ = [
    "ANOMALY_TYPE_MAP",
    "SUPPORTED_ANOMALY_TYPES",
    "clean_response",
    "findings_from_response",
    "map_anomaly_type",
    "parse_response",
    "validate_payload",
    "validate_response",
]


def clean_response(text: Optional[str]) -> str:
    """Cut ``text`` down to its JSON fragment; ``"{}"`` when there is none."""

    if text is None or not text.strip():
        return "{}"
    cleaned = text.strip()
    for prefix in _BOILERPLATE_PREFIXES:
        if cleaned.startswith(prefix):
            cleaned = cleaned[len(prefix) :].strip()

    starts = [index for index in (cleaned.find("["), cleaned.find("{")) if index >= 0]
    if not starts:
        return "{}"
    cleaned = cleaned[min(starts) :]

    end = max(cleaned.rfind("]"), cleaned.rfind("}"))
    if end < 0:
        return "{}"
    cleaned = cleaned[: end + 1]

    # Truncated array: keep the complete objects and close it.
    if cleaned.startswith("[") and not cleaned.endswith("]"):
        last_object = cleaned.rfind("}")
        if last_object > 0:
            cleaned = cleaned[: last_object + 1] + "]"

    LOGGER.debug("Cleaned model response: %s", cleaned)
    return cleaned


def parse_response(text: Optional[str]) -> Dict[str, Any]:
    cleaned = clean_response(text)
    try:
        data = json.loads(cleaned)
    except ValueError as exc:
        LOGGER.debug("Model response is not valid JSON after cleaning: %s", exc)
        return {}
    if isinstance(data, list):
        return {
            "anomalies": data,
            "overallAssessment": DEFAULT_ASSESSMENT,
            "riskLevel": DEFAULT_RISK_LEVEL,
        }
    if isinstance(data, dict):
        return data
    return {}


def validate_payload(payload: Mapping[str, Any]) -> bool:
    anomalies = payload.get("anomalies")
    if not isinstance(anomalies, list):
        LOGGER.warning("Model response missing or invalid 'anomalies' field")
        return False
    for item in anomalies:
        if not isinstance(item, dict) or "type" not in item or "description" not in item:
            LOGGER.warning("Model anomaly missing required fields: %r", item)
            return False
    return True


def validate_response(text: Optional[str]) -> bool:
    return validate_payload(parse_response(text))


def map_anomaly_type(value: Any) -> FindingKind:
    if isinstance(value, str):
        kind = ANOMALY_TYPE_MAP.get(value.strip().upper())
        if kind is not None:
            return kind
    LOGGER.warning("Unknown model anomaly type %r; using LOCATION_ANOMALY", value)
    return FindingKind.LOCATION_ANOMALY


def _coerce_confidence(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return None
    if not 0.0 <= confidence <= 1.0:
        LOGGER.debug("Discarding out-of-range confidence %r", value)
        return None
    return confidence


def _coerce_recommendations(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return ()
    return tuple(str(item).strip() for item in value if item is not None and str(item).strip())


def _fold_message(
    description: str, confidence: Optional[float], recommendations: Tuple[str, ...]
) -> str:
    message = description
    if confidence is not None and confidence > 0:
        message = f"{message} (Confidence: {confidence:.2f})"
    if recommendations:
        message = f"{message} | Recommendations: {'; '.join(recommendations)}"
    return message


def findings_from_response(
    payload: Mapping[str, Any],
    *,
    ride_id: str,
    subject_id: str,
    known_subjects: Collection[str] = (),
    source: str = "external",
    fold_details: bool = False,
) -> List[Finding]:
    """Map a validated payload to findings for the triggering ride.

    Anomalies naming a rider outside ``known_subjects`` are attributed to
    ``subject_id``; the reported id is kept in the diagnostics.
    """

    anomalies = payload.get("anomalies")
    if not isinstance(anomalies, list):
        return []
    known = set(known_subjects) | {subject_id}
    findings: List[Finding] = []
    for item in anomalies:
        if not isinstance(item, dict):
            continue
        description = str(item.get("description") or "").strip()
        if not description:
            LOGGER.warning("Skipping model anomaly without description: %r", item)
            continue
        reported_type = item.get("type")
        confidence = _coerce_confidence(item.get("confidence"))
        recommendations = _coerce_recommendations(item.get("recommendations"))
        diagnostics: Dict[str, Any] = {"reported_type": reported_type}

        reported_subject = item.get("userId")
        target = subject_id
        if reported_subject is not None:
            if str(reported_subject) in known:
                target = str(reported_subject)
            else:
                diagnostics["reported_subject"] = reported_subject
        if item.get("timestamp"):
            diagnostics["reported_timestamp"] = item.get("timestamp")

        message = (
            _fold_message(description, confidence, recommendations)
            if fold_details
            else description
        )
        findings.append(
            Finding(
                subject_id=target,
                ride_id=ride_id,
                kind=map_anomaly_type(reported_type),
                severity=Severity.parse(item.get("severity")),
                message=message,
                source_detector=source,
                confidence=confidence,
                recommendations=recommendations,
                diagnostics=diagnostics,
            )
        )
    return findings
