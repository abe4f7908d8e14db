"""
Pairwise conflict detection between a winner and each loser.

A conflict needs a value on BOTH sides. A field missing on one side is a
consolidation opportunity, never a conflict.
"""
from typing import List, Optional, Sequence

from ..models import (
    Asset,
    CameraConflict,
    CaptureTimeConflict,
    GpsConflict,
    MetadataConflict,
    TimezoneConflict,
    is_present,
    parse_timestamp,
)
from .. import config


def _normalize(value: Optional[str]) -> str:
    return value.strip().casefold() if value else ''


def gps_differs(a: tuple, b: tuple, threshold: float = config.GPS_THRESHOLD) -> bool:
    """Per-axis delta check, a cheap stand-in for great-circle distance."""
    return abs(a[0] - b[0]) > threshold or abs(a[1] - b[1]) > threshold


def capture_times_differ(a: str, b: str, tolerance_seconds: float) -> bool:
    dt_a = parse_timestamp(a)
    dt_b = parse_timestamp(b)
    if dt_a is None or dt_b is None:
        # Unparseable on either side: fall back to string comparison
        return _normalize(a) != _normalize(b)
    return abs((dt_a - dt_b).total_seconds()) > tolerance_seconds


def detect_conflicts(winner: Asset,
                     loser: Asset,
                     capture_time_tolerance: float = config.CAPTURE_TIME_TOLERANCE_SECONDS
                     ) -> List[MetadataConflict]:
    """Compares one winner/loser pair field by field."""
    w = winner.exif_info
    l = loser.exif_info
    if w is None or l is None:
        return []

    conflicts: List[MetadataConflict] = []

    # GPS
    if w.has_gps() and l.has_gps():
        w_gps = (w.latitude, w.longitude)
        l_gps = (l.latitude, l.longitude)
        if gps_differs(w_gps, l_gps):
            conflicts.append(GpsConflict(winner.id, loser.id, w_gps, l_gps))

    # Timezone
    if w.has_timezone() and l.has_timezone():
        if _normalize(w.time_zone) != _normalize(l.time_zone):
            conflicts.append(TimezoneConflict(
                winner.id, loser.id, w.time_zone.strip(), l.time_zone.strip()))

    # Camera: compare make and model only where both sides have them
    if w.has_camera_info() and l.has_camera_info():
        differs = False
        if is_present(w.make) and is_present(l.make):
            differs = _normalize(w.make) != _normalize(l.make)
        if not differs and is_present(w.model) and is_present(l.model):
            differs = _normalize(w.model) != _normalize(l.model)
        if differs:
            conflicts.append(CameraConflict(
                winner.id, loser.id, (w.make, w.model), (l.make, l.model)))

    # Capture time
    if w.has_capture_time() and l.has_capture_time():
        if capture_times_differ(w.date_time_original, l.date_time_original, capture_time_tolerance):
            conflicts.append(CaptureTimeConflict(
                winner.id, loser.id, w.date_time_original, l.date_time_original))

    return conflicts


def detect_group_conflicts(winner: Asset,
                           losers: Sequence[Asset],
                           capture_time_tolerance: float = config.CAPTURE_TIME_TOLERANCE_SECONDS
                           ) -> List[MetadataConflict]:
    conflicts: List[MetadataConflict] = []
    for loser in losers:
        conflicts.extend(detect_conflicts(winner, loser, capture_time_tolerance))
    return conflicts
