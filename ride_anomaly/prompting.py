"""Prompt construction for ride anomaly analysis."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from .utils import json_dumps

LOGGER = logging.getLogger(__name__)

ANOMALY_CATEGORIES = (
    "Stationary anomalies (unexpected stops or lack of movement)",
    "Speed anomalies (too fast/slow for conditions or group)",
    "Route deviations (off expected path or group direction)",
    "Group coordination issues (members too far apart or moving independently)",
    "Safety concerns (dangerous speeds, erratic behavior)",
    "Technical issues (GPS accuracy problems, data inconsistencies)",
)

RESPONSE_SHAPE = """{
  "anomalies": [
    {
      "type": "ANOMALY_TYPE",
      "severity": "LOW|MEDIUM|HIGH|CRITICAL",
      "description": "Detailed description of the anomaly",
      "userId": "user-id",
      "timestamp": "2025-09-15T08:15:00",
      "confidence": 0.85,
      "recommendations": ["Action item 1", "Action item 2"]
    }
  ],
  "overallAssessment": "Summary of the ride situation",
  "riskLevel": "LOW|MEDIUM|HIGH|CRITICAL"
}"""

FOCUS_AREAS = (
    "Group coordination and member proximity",
    "Speed consistency within the group",
    "Route adherence and direction",
    "Safety concerns and emergency situations",
    "Data quality and GPS accuracy issues",
)

EMPTY_RESULT = (
    '{"anomalies": [], "overallAssessment": "No anomalies detected", "riskLevel": "LOW"}'
)


def build_prompt(context_payload: Mapping[str, Any]) -> str:
    """Return the analysis prompt embedding ``context_payload`` as JSON."""

    try:
        serialized = json_dumps(context_payload, indent=2)
    except (TypeError, ValueError) as exc:
        LOGGER.error("Failed to serialise ride context: %s", exc)
        serialized = "{}"

    lines = [
        "You are an expert in analyzing group ride and transportation data. "
        "Analyze the following ride data and identify any anomalies or "
        "concerning patterns.",
        "",
        "Ride Context Data:",
        "```json",
        serialized,
        "```",
        "",
        "Please identify anomalies in the following categories:",
    ]
    lines.extend(f"{index}. {text}" for index, text in enumerate(ANOMALY_CATEGORIES, 1))
    lines += ["", "Provide your analysis in this exact JSON format:", RESPONSE_SHAPE, ""]
    lines.append("Focus on:")
    lines.extend(f"- {area}" for area in FOCUS_AREAS)
    lines += [
        "",
        "CRITICAL: Your response must be complete JSON. If no anomalies are "
        f"found, return: {EMPTY_RESULT}",
        "Do not truncate your response. Complete the entire JSON structure.",
    ]
    return "\n".join(lines)


__all__ = ["ANOMALY_CATEGORIES", "RESPONSE_SHAPE", "build_prompt"]
