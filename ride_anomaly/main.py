"""Replay recorded position samples through the anomaly pipeline.

Samples are read from a JSON-lines file (one sample object per line) and the
ride from a JSON document. Both land in the in-memory stores, then every
sample is fed to ``AnomalyService.on_position`` in capture order.
"""

from __future__ import annotations

import argparse
from collections import Counter
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Tuple

from .analyzer_client import build_backend
from .config import LLM_ENABLED
from .emitter import AlertEmitter
from .errors import InvalidSampleError
from .models import PositionSample, RideContext
from .services import AnalysisService, AnomalyService
from .storage import InMemoryAlertStore, InMemorySampleStore, RecordingBroadcaster, StoredAlert

LOGGER = logging.getLogger(__name__)


def _setup_logging(level: int = logging.INFO) -> None:
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=level,
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )


def load_ride(path: str | Path) -> Tuple[RideContext, Dict[str, str]]:
    """Return the ride and a subject -> display name map from ``members``."""

    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: ride file must contain a JSON object")
    names: Dict[str, str] = {}
    for member in data.get("members") or []:
        if not isinstance(member, dict):
            continue
        subject_id = member.get("id", member.get("userId"))
        name = member.get("name", member.get("userName"))
        if subject_id is not None and name:
            names[str(subject_id)] = str(name)
    return RideContext.from_mapping(data), names


def load_samples(path: str | Path) -> List[PositionSample]:
    """Parse a JSON-lines file, skipping blank and malformed lines."""

    samples: List[PositionSample] = []
    with open(path, "r", encoding="utf-8") as handle:
        for line_no, line in enumerate(handle, 1):
            line = line.strip()
            if not line:
                continue
            try:
                raw: Any = json.loads(line)
                if not isinstance(raw, dict):
                    raise InvalidSampleError("line is not a JSON object")
                samples.append(PositionSample.from_mapping(raw))
            except (ValueError, InvalidSampleError) as exc:
                LOGGER.warning("Skipping %s line %d: %s", path, line_no, exc)
    samples.sort(key=lambda s: (s.captured_at, s.subject_id))
    return samples


def replay(
    ride: RideContext,
    samples: List[PositionSample],
    *,
    names: Dict[str, str] | None = None,
    llm_enabled: bool = LLM_ENABLED,
    provider: str | None = None,
    wait_timeout: float | None = None,
) -> List[StoredAlert]:
    store = InMemorySampleStore()
    store.add_ride(ride)
    for subject_id, name in (names or {}).items():
        store.set_subject_name(subject_id, name)
    alerts = InMemoryAlertStore()
    emitter = AlertEmitter(alerts, RecordingBroadcaster())
    analysis = None
    if llm_enabled:
        analysis = AnalysisService(store, backend=build_backend(provider))

    with AnomalyService(
        store, emitter, analysis=analysis, analysis_enabled=llm_enabled
    ) as service:
        for sample in samples:
            if sample.ride_id != ride.ride_id:
                LOGGER.warning(
                    "Skipping sample for ride=%s (replaying ride=%s)",
                    sample.ride_id,
                    ride.ride_id,
                )
                continue
            store.add_sample(sample)
            service.on_position(sample)
        if not service.wait_for_pending(wait_timeout):
            LOGGER.warning("Timed out waiting for background analyses")
    return alerts.alerts()


def _log_summary(stored: List[StoredAlert]) -> None:
    for alert in stored:
        finding = alert.finding
        LOGGER.info(
            "Alert #%d %s/%s subject=%s: %s",
            alert.alert_id,
            finding.kind.value,
            finding.severity.value,
            finding.subject_id,
            finding.message,
        )
    by_kind = Counter(alert.finding.kind.value for alert in stored)
    if not by_kind:
        LOGGER.info("Replay complete: no alerts raised")
        return
    summary = ", ".join(f"{kind}={count}" for kind, count in sorted(by_kind.items()))
    LOGGER.info("Replay complete: %d alerts (%s)", len(stored), summary)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Replay recorded ride positions through the anomaly detectors"
    )
    parser.add_argument(
        "--samples", required=True, help="JSON-lines file with one position sample per line"
    )
    parser.add_argument("--ride", required=True, help="JSON file describing the ride")
    parser.add_argument(
        "--no-llm",
        action="store_true",
        help="Run rule detectors only (skip external model analysis)",
    )
    parser.add_argument(
        "--provider",
        help="Analyzer backend to use (ollama or azure_openai; defaults to LLM_PROVIDER)",
    )
    parser.add_argument(
        "--wait-timeout",
        type=float,
        default=None,
        help="Seconds to wait for background analyses before exiting",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    _setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    try:
        ride, names = load_ride(args.ride)
        samples = load_samples(args.samples)
    except (OSError, ValueError) as exc:
        LOGGER.error("Failed to load replay inputs: %s", exc)
        raise SystemExit(2) from exc
    LOGGER.info(
        "Replaying %d samples for ride=%s (%s)", len(samples), ride.ride_id, ride.name
    )
    try:
        stored = replay(
            ride,
            samples,
            names=names,
            llm_enabled=LLM_ENABLED and not args.no_llm,
            provider=args.provider,
            wait_timeout=args.wait_timeout,
        )
    except ValueError as exc:
        LOGGER.error("Replay aborted: %s", exc)
        raise SystemExit(2) from exc
    _log_summary(stored)


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
