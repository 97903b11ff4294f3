import pytest

from ride_anomaly.detectors import DirectionDriftDetector, StationaryDetector, validate_trail
from ride_anomaly.errors import InvalidSampleError
from ride_anomaly.models import DetectionStatus, FindingKind, Severity
from conftest import make_sample, make_trail

# Roughly one metre of latitude, in degrees.
ONE_METRE = 1.0 / 111_195.0


def _stationary(**kwargs):
    kwargs.setdefault("movement_threshold_m", 5.0)
    kwargs.setdefault("duration_threshold_s", 180.0)
    return StationaryDetector(**kwargs)


def test_stationary_needs_two_samples():
    result = _stationary().detect([make_sample()])
    assert result.status is DetectionStatus.INSUFFICIENT_DATA
    assert result.findings == []


def test_stationary_short_pause_not_reported():
    trail = [
        make_sample(lat=ONE_METRE, seconds=10),
        make_sample(lat=0.0, seconds=0),
    ]
    result = _stationary().detect(trail)
    assert result.ok
    assert result.findings == []


def test_stationary_long_pause_reported():
    trail = [
        make_sample(lat=2 * ONE_METRE, seconds=200),
        make_sample(lat=0.0, seconds=0),
    ]
    result = _stationary().detect(trail)
    assert result.ok
    assert len(result.findings) == 1
    finding = result.findings[0]
    assert finding.kind is FindingKind.STATIONARY
    assert finding.severity is Severity.MEDIUM
    assert finding.subject_id == "rider-a"
    assert finding.message == "Rider rider-a has been stationary for 200 seconds"
    assert finding.diagnostics["distance_m"] == pytest.approx(2.0, abs=0.05)


def test_stationary_moving_rider_not_reported():
    trail = [
        make_sample(lat=50 * ONE_METRE, seconds=600),
        make_sample(lat=0.0, seconds=0),
    ]
    assert _stationary().detect(trail).findings == []


def test_stationary_skips_low_accuracy_fixes():
    trail = [
        make_sample(lat=2 * ONE_METRE, seconds=200, accuracy_m=60.0),
        make_sample(lat=0.0, seconds=0, accuracy_m=5.0),
    ]
    result = _stationary(accuracy_aware=True, max_accuracy_m=25.0).detect(trail)
    assert result.ok
    assert result.findings == []
    assert result.diagnostics["skipped"] == "low_accuracy"


def test_stationary_naive_mode_ignores_accuracy():
    trail = [
        make_sample(lat=2 * ONE_METRE, seconds=200, accuracy_m=60.0),
        make_sample(lat=0.0, seconds=0, accuracy_m=60.0),
    ]
    result = _stationary(accuracy_aware=False).detect(trail)
    assert len(result.findings) == 1


def test_direction_drift_needs_three_samples():
    trail = make_trail((0.0, 0.0), (0.0, 0.001))
    result = DirectionDriftDetector().detect(trail)
    assert result.status is DetectionStatus.INSUFFICIENT_DATA


def test_direction_drift_right_angle_turn():
    # East, then north: a 90 degree turn.
    trail = make_trail((0.0, 0.0), (0.0, 0.001), (0.001, 0.001))
    result = DirectionDriftDetector(drift_threshold_deg=45.0).detect(trail)
    assert len(result.findings) == 1
    finding = result.findings[0]
    assert finding.kind is FindingKind.DIRECTION_DRIFT
    assert finding.severity is Severity.LOW
    assert result.diagnostics["baseline_bearing"] == pytest.approx(90.0, abs=0.01)
    assert result.diagnostics["current_bearing"] == pytest.approx(0.0, abs=0.01)
    assert "90.0 degrees" in finding.message


def test_direction_drift_straight_line_quiet():
    trail = make_trail((0.0, 0.0), (0.0, 0.001), (0.0, 0.002))
    result = DirectionDriftDetector().detect(trail)
    assert result.ok
    assert result.findings == []


def test_direction_drift_across_north_uses_shorter_arc():
    # Heading about 350 degrees, then about 10 degrees.
    trail = make_trail((0.0, 0.0), (0.000985, -0.000174), (0.00197, 0.0))
    shortest = DirectionDriftDetector(drift_threshold_deg=45.0, shortest_arc=True)
    raw = DirectionDriftDetector(drift_threshold_deg=45.0, shortest_arc=False)

    quiet = shortest.detect(trail)
    assert quiet.findings == []
    assert quiet.diagnostics["drift_deg"] == pytest.approx(20.0, abs=0.5)

    noisy = raw.detect(trail)
    assert len(noisy.findings) == 1
    assert noisy.diagnostics["drift_deg"] == pytest.approx(340.0, abs=0.5)


def test_validate_trail_rejects_oldest_first():
    oldest_first = list(reversed(make_trail((0.0, 0.0), (0.0, 0.001))))
    with pytest.raises(InvalidSampleError):
        validate_trail(oldest_first)


def test_validate_trail_rejects_mixed_riders():
    trail = [make_sample("rider-a", seconds=10), make_sample("rider-b", seconds=0)]
    with pytest.raises(InvalidSampleError):
        StationaryDetector().detect(trail)
