import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from ..models import Asset, DuplicateAnalysis, DuplicateGroup
from .. import config
from .conflicts import detect_conflicts, detect_group_conflicts
from .scoring import to_scored


def _rank_key(asset: Asset) -> Tuple[int, int]:
    return (asset.pixel_count, asset.file_size or 0)


def rank_assets(assets: Sequence[Asset]) -> List[Asset]:
    """
    Orders assets best-first: pixel count, then file size.

    Missing dimensions count as zero pixels, so an asset with unknown
    dimensions never outranks one with known dimensions. sorted() is stable,
    so full ties keep input order.
    """
    return sorted(assets, key=_rank_key, reverse=True)


def _check_asset(asset: Asset) -> None:
    """
    Runs every field-level computation analysis needs on one asset.
    Comparing an asset with itself exercises the conflict math without
    involving the rest of the group.
    """
    _rank_key(asset)
    to_scored(asset)
    detect_conflicts(asset, asset)


def usable_assets(group: DuplicateGroup) -> List[Asset]:
    """Drops (and logs) assets whose metadata cannot be analyzed."""
    usable = []
    for asset in group.assets:
        try:
            _check_asset(asset)
        except (TypeError, ValueError) as e:
            logging.warning(f"Excluding malformed asset {asset.id} from group {group.duplicate_id}: {e}")
            continue
        usable.append(asset)
    return usable


def analyze_group(group: DuplicateGroup,
                  capture_time_tolerance: float = config.CAPTURE_TIME_TOLERANCE_SECONDS
                  ) -> Optional[DuplicateAnalysis]:
    """
    Picks the winner of one duplicate group and collects conflicts.
    Malformed assets are left out; returns None when fewer than two
    assets remain.
    """
    assets = usable_assets(group)
    if len(assets) < 2:
        logging.debug(f"Group {group.duplicate_id} has {len(assets)} usable asset(s); nothing to resolve.")
        return None

    ranked = rank_assets(assets)
    winner, losers = ranked[0], ranked[1:]

    return DuplicateAnalysis(
        duplicate_id=group.duplicate_id,
        winner=to_scored(winner),
        losers=[to_scored(a) for a in losers],
        conflicts=detect_group_conflicts(winner, losers, capture_time_tolerance),
    )


def analyze_groups(groups: Iterable[DuplicateGroup],
                   capture_time_tolerance: float = config.CAPTURE_TIME_TOLERANCE_SECONDS
                   ) -> Tuple[List[DuplicateAnalysis], int]:
    """
    Analyzes every group in input order.

    Returns:
        (analyses, skipped_count)
    """
    analyses = []
    skipped = 0
    for group in groups:
        try:
            analysis = analyze_group(group, capture_time_tolerance)
        except (TypeError, ValueError) as e:
            logging.warning(f"Skipping malformed group {group.duplicate_id}: {e}")
            skipped += 1
            continue

        if analysis is None:
            skipped += 1
            continue
        analyses.append(analysis)

    logging.info(f"Analyzed {len(analyses)} groups ({skipped} skipped).")
    return analyses, skipped
