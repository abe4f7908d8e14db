"""
Metadata consolidation planning.

Copies fields the winner lacks from the losers, limited to what the server
lets us write (ConsolidationField). Camera, lens and exposure data cannot
be written through the API, so they are not part of the field set.
"""
from typing import Any, Optional, Sequence, Tuple

from ..models import (
    Asset,
    ConsolidatedValue,
    ConsolidationField,
    ConsolidationResult,
)
from .conflicts import capture_times_differ, gps_differs


def _field_value(asset: Asset, fld: ConsolidationField) -> Optional[Any]:
    exif = asset.exif_info
    if exif is None:
        return None

    if fld is ConsolidationField.GPS:
        return (exif.latitude, exif.longitude) if exif.has_gps() else None
    if fld is ConsolidationField.CAPTURE_TIME:
        return exif.date_time_original if exif.has_capture_time() else None
    if fld is ConsolidationField.DESCRIPTION:
        return exif.description if exif.has_description() else None
    raise TypeError(f"Unhandled consolidation field: {fld!r}")


def plan_consolidation(winner: Asset, losers: Sequence[Asset]) -> ConsolidationResult:
    """
    For each writable field the winner lacks, takes the first loser (in
    the given order) that has it. Never touches a field the winner already
    has; an empty result means there is nothing to copy.
    """
    result = ConsolidationResult()

    for fld in ConsolidationField:
        if _field_value(winner, fld) is not None:
            continue

        for loser in losers:
            value = _field_value(loser, fld)
            if value is not None:
                result.values.append(ConsolidatedValue(field=fld, value=value, source_id=loser.id))
                break

    return result


def field_holds(asset: Asset, expected: ConsolidatedValue,
                gps_tolerance: float, time_tolerance: float) -> Tuple[bool, Optional[Any]]:
    """
    Checks whether `asset` now carries the consolidated value.
    Returns (matches, actual_value).
    """
    actual = _field_value(asset, expected.field)
    if actual is None:
        return False, None

    if expected.field is ConsolidationField.GPS:
        return not gps_differs(actual, expected.value, gps_tolerance), actual
    if expected.field is ConsolidationField.CAPTURE_TIME:
        return not capture_times_differ(actual, expected.value, time_tolerance), actual
    if expected.field is ConsolidationField.DESCRIPTION:
        return actual.strip() == str(expected.value).strip(), actual
    raise TypeError(f"Unhandled consolidation field: {expected.field!r}")
