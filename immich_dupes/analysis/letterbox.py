"""
Letterbox pair detection.

iPhones can save a 16:9 crop next to the full-sensor 4:3 capture. Immich's
own duplicate detection misses these because the pixels differ, so we pair
them on capture second, camera and location instead.
"""
import logging
from collections import defaultdict
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from ..models import Asset, LetterboxAnalysis, LetterboxPair, is_present
from .. import config
from .scoring import to_scored


class AspectRatio(Enum):
    FOUR_THREE = '4:3'
    SIXTEEN_NINE = '16:9'


PairingKey = Tuple[str, str, str, Optional[str]]


def detect_aspect_ratio(width: Optional[int], height: Optional[int]) -> Optional[AspectRatio]:
    """Orientation-independent: uses long side / short side."""
    if not width or not height or width <= 0 or height <= 0:
        return None

    ratio = max(width, height) / min(width, height)
    if abs(ratio - config.RATIO_4_3) < config.RATIO_TOLERANCE:
        return AspectRatio.FOUR_THREE
    if abs(ratio - config.RATIO_16_9) < config.RATIO_TOLERANCE:
        return AspectRatio.SIXTEEN_NINE
    return None


def _truncate_to_second(timestamp: str) -> str:
    ts = timestamp.strip()
    for marker in ('.', 'Z'):
        pos = ts.find(marker)
        if pos != -1:
            return ts[:pos]
    return ts


def _gps_key(asset: Asset) -> Optional[str]:
    exif = asset.exif_info
    if exif is None or not exif.has_gps():
        return None
    p = config.GPS_KEY_PRECISION
    return f"{exif.latitude:.{p}f},{exif.longitude:.{p}f}"


def pairing_key(asset: Asset) -> Optional[PairingKey]:
    """(second, make, model, gps) or None when a required field is missing."""
    exif = asset.exif_info
    if exif is None:
        return None
    if not (exif.has_capture_time() and is_present(exif.make) and is_present(exif.model)):
        return None
    return (
        _truncate_to_second(exif.date_time_original),
        exif.make.strip(),
        exif.model.strip(),
        _gps_key(asset),
    )


def is_target_camera(asset: Asset) -> bool:
    exif = asset.exif_info
    if exif is None:
        return False
    make = (exif.make or '').lower()
    model = (exif.model or '').lower()
    return config.LETTERBOX_CAMERA_MAKE in make and config.LETTERBOX_MODEL_FAMILY in model


def _format_key(key: PairingKey) -> str:
    second, make, model, gps = key
    return f"{second}|{make}|{model}|{gps or '-'}"


def find_letterbox_pairs(assets: Iterable[Asset]) -> LetterboxAnalysis:
    """
    Groups candidate assets by pairing key and emits one pair per group that
    holds exactly one 4:3 and one 16:9 asset.
    """
    result = LetterboxAnalysis()
    groups: Dict[PairingKey, List[Tuple[Asset, AspectRatio]]] = defaultdict(list)

    for asset in assets:
        result.total_assets_scanned += 1

        if asset.is_trashed:
            continue

        if not is_target_camera(asset):
            result.skipped_non_matching_camera += 1
            continue

        ratio = detect_aspect_ratio(asset.width, asset.height)
        key = pairing_key(asset)
        if ratio is None or key is None:
            logging.debug(f"Skipping {asset.id}: missing dimensions, timestamp or camera fields.")
            result.skipped_missing_fields += 1
            continue

        groups[key].append((asset, ratio))

    for key, members in groups.items():
        four_three = [a for a, r in members if r is AspectRatio.FOUR_THREE]
        sixteen_nine = [a for a, r in members if r is AspectRatio.SIXTEEN_NINE]

        if len(four_three) > 1 or len(sixteen_nine) > 1:
            logging.debug(f"Ambiguous letterbox group {_format_key(key)} "
                          f"({len(four_three)} x 4:3, {len(sixteen_nine)} x 16:9)")
            result.skipped_ambiguous += len(members)
            continue

        if not four_three or not sixteen_nine:
            result.unpaired += 1
            continue

        second, make, model, _ = key
        result.pairs.append(LetterboxPair(
            keeper=to_scored(four_three[0]),
            delete=to_scored(sixteen_nine[0]),
            timestamp=second,
            camera=f"{make} {model}",
            pairing_key=_format_key(key),
        ))

    result.pairs.sort(key=lambda p: (p.timestamp, p.keeper.asset_id))
    logging.info(f"Letterbox scan: {result.total_assets_scanned} assets, {result.pairs_found} pairs, "
                 f"{result.skipped_ambiguous} ambiguous, {result.unpaired} unpaired.")
    return result
