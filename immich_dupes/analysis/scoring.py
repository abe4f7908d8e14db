"""
Metadata completeness scoring.

The score is a completeness measure only. It says nothing about image
quality and plays no part in picking the winner; it is reported so a
reviewer can see what each duplicate carries.
"""
from ..models import Asset, MetadataScore, ScoredAsset
from .. import config


def score_asset(asset: Asset) -> MetadataScore:
    """Scores an asset by which metadata categories it has. Never raises."""
    exif = asset.exif_info
    if exif is None:
        return MetadataScore()

    w = config.SCORE_WEIGHTS
    return MetadataScore(
        gps=w['gps'] if exif.has_gps() else 0,
        timezone=w['timezone'] if exif.has_timezone() else 0,
        camera_info=w['camera_info'] if exif.has_camera_info() else 0,
        capture_time=w['capture_time'] if exif.has_capture_time() else 0,
        lens_info=w['lens_info'] if exif.has_lens_info() else 0,
        location=w['location'] if exif.has_location() else 0,
    )


def to_scored(asset: Asset) -> ScoredAsset:
    return ScoredAsset(
        asset_id=asset.id,
        filename=asset.original_file_name,
        score=score_asset(asset),
        width=asset.width,
        height=asset.height,
        file_size=asset.file_size,
        checksum=asset.checksum,
        date_time_original=asset.date_time_original,
    )
