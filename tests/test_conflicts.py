from immich_dupes.analysis.conflicts import detect_conflicts, detect_group_conflicts
from immich_dupes.models import (
    CameraConflict,
    CaptureTimeConflict,
    GpsConflict,
    TimezoneConflict,
)


def test_gps_within_threshold_is_not_a_conflict(make_asset):
    w = make_asset("w", lat=0.0, lon=0.0)
    l = make_asset("l", lat=0.00005, lon=0.0)
    assert detect_conflicts(w, l) == []


def test_gps_far_apart_is_a_conflict(make_asset):
    w = make_asset("w", lat=0.0, lon=0.0)
    l = make_asset("l", lat=1.0, lon=0.0)
    conflicts = detect_conflicts(w, l)
    assert len(conflicts) == 1
    assert isinstance(conflicts[0], GpsConflict)
    assert conflicts[0].winner_value == (0.0, 0.0)
    assert conflicts[0].loser_value == (1.0, 0.0)


def test_missing_side_is_never_a_conflict(make_asset):
    w = make_asset("w")
    l = make_asset("l", lat=1.0, lon=2.0, time_zone="UTC", make="Canon",
                   date_time_original="2024-01-01T00:00:00Z")
    assert detect_conflicts(w, l) == []


def test_timezone_comparison_ignores_case_and_whitespace(make_asset):
    w = make_asset("w", time_zone="Europe/Paris")
    assert detect_conflicts(w, make_asset("l", time_zone=" europe/paris ")) == []
    conflicts = detect_conflicts(w, make_asset("l2", time_zone="America/New_York"))
    assert [type(c) for c in conflicts] == [TimezoneConflict]


def test_camera_compares_only_shared_components(make_asset):
    w = make_asset("w", make="Apple", model="iPhone 15")
    assert detect_conflicts(w, make_asset("l", make="APPLE")) == []
    conflicts = detect_conflicts(w, make_asset("l2", make="Apple", model="iPhone 12"))
    assert [type(c) for c in conflicts] == [CameraConflict]
    assert conflicts[0].loser_value == ("Apple", "iPhone 12")


def test_capture_time_tolerance(make_asset):
    w = make_asset("w", date_time_original="2024-06-01T12:00:00Z")
    near = make_asset("l", date_time_original="2024-06-01T12:00:03+00:00")
    far = make_asset("l2", date_time_original="2024-06-01T13:00:00Z")
    assert detect_conflicts(w, near) == []
    assert [type(c) for c in detect_conflicts(w, far)] == [CaptureTimeConflict]
    # A wider tolerance absorbs the hour
    assert detect_conflicts(w, far, capture_time_tolerance=3600) == []


def test_naive_capture_time_is_treated_as_utc(make_asset):
    w = make_asset("w", date_time_original="2024-06-01T12:00:00")
    l = make_asset("l", date_time_original="2024-06-01T12:00:00Z")
    assert detect_conflicts(w, l) == []


def test_unparseable_capture_time_falls_back_to_text(make_asset):
    w = make_asset("w", date_time_original="sometime in june")
    assert detect_conflicts(w, make_asset("l", date_time_original="Sometime in June")) == []
    assert len(detect_conflicts(w, make_asset("l2", date_time_original="july"))) == 1


def test_group_conflicts_follow_loser_order(make_asset):
    w = make_asset("w", lat=0.0, lon=0.0)
    l1 = make_asset("l1", lat=5.0, lon=5.0)
    l2 = make_asset("l2", lat=0.0, lon=0.0)
    l3 = make_asset("l3", lat=9.0, lon=9.0)
    conflicts = detect_group_conflicts(w, [l1, l2, l3])
    assert [c.loser_id for c in conflicts] == ["l1", "l3"]
