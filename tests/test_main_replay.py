import json
import logging

import pytest

from ride_anomaly.main import load_ride, load_samples, main, replay
from ride_anomaly.models import FindingKind, RideStatus


def _write_inputs(tmp_path):
    ride_path = tmp_path / "ride.json"
    ride_path.write_text(
        json.dumps(
            {
                "id": "ride-1",
                "name": "Harbour Loop",
                "status": "active",
                "startedAt": "2025-09-15T08:00:00Z",
                "members": [
                    {"id": "rider-a", "name": "Alice"},
                    {"id": "rider-b", "name": "Ben"},
                ],
            }
        ),
        encoding="utf-8",
    )
    lines = [
        {"userId": "rider-a", "rideId": "ride-1", "latitude": 0.0, "longitude": 0.0,
         "timestamp": "2025-09-15T08:00:00Z"},
        {"userId": "rider-b", "rideId": "ride-1", "latitude": 0.0, "longitude": 0.0005,
         "timestamp": "2025-09-15T08:00:05Z"},
        {"userId": "rider-a", "rideId": "ride-1", "latitude": 0.0, "longitude": 0.0,
         "timestamp": "2025-09-15T08:05:00Z"},
        {"userId": "rider-z", "rideId": "ride-2", "latitude": 1.0, "longitude": 1.0,
         "timestamp": "2025-09-15T08:01:00Z"},
    ]
    samples_path = tmp_path / "samples.jsonl"
    body = "\n".join(json.dumps(line) for line in lines)
    body += '\nnot json\n{"userId": "rider-a", "rideId": "ride-1", "latitude": 95, "longitude": 0, "timestamp": 0}\n\n'
    samples_path.write_text(body, encoding="utf-8")
    return ride_path, samples_path


def test_load_ride_and_names(tmp_path):
    ride_path, _ = _write_inputs(tmp_path)
    ride, names = load_ride(ride_path)
    assert ride.ride_id == "ride-1"
    assert ride.status is RideStatus.ACTIVE
    assert names == {"rider-a": "Alice", "rider-b": "Ben"}


def test_load_samples_skips_bad_lines(tmp_path, caplog):
    _, samples_path = _write_inputs(tmp_path)
    with caplog.at_level(logging.WARNING):
        samples = load_samples(samples_path)

    assert len(samples) == 4
    assert [s.captured_at for s in samples] == sorted(s.captured_at for s in samples)
    assert "line 5" in caplog.text
    assert "line 6" in caplog.text


def test_replay_without_llm(tmp_path):
    ride_path, samples_path = _write_inputs(tmp_path)
    ride, names = load_ride(ride_path)
    samples = load_samples(samples_path)

    alerts = replay(ride, samples, names=names, llm_enabled=False)

    assert [a.finding.kind for a in alerts] == [FindingKind.STATIONARY]
    assert alerts[0].finding.subject_id == "rider-a"


def test_main_cli_logs_summary(tmp_path, caplog):
    ride_path, samples_path = _write_inputs(tmp_path)
    with caplog.at_level(logging.INFO, logger="ride_anomaly.main"):
        main(["--samples", str(samples_path), "--ride", str(ride_path), "--no-llm"])
    assert "Replay complete: 1 alerts (STATIONARY=1)" in caplog.text


def test_main_missing_file_exits(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        main(
            ["--samples", str(tmp_path / "none.jsonl"), "--ride", str(tmp_path / "none.json")]
        )
    assert excinfo.value.code == 2
