import pytest

from immich_dupes.analysis.letterbox import AspectRatio, detect_aspect_ratio, find_letterbox_pairs

TS = "2024-12-23T10:30:45.123Z"


def iphone(make_asset, asset_id, width, height, ts=TS, lat=51.5074, lon=-0.1278, **kwargs):
    kwargs.setdefault("make", "Apple")
    kwargs.setdefault("model", "iPhone 15 Pro Max")
    return make_asset(asset_id, width=width, height=height, date_time_original=ts,
                      lat=lat, lon=lon, **kwargs)


@pytest.mark.parametrize("w,h,expected", [
    (5712, 4284, AspectRatio.FOUR_THREE),
    (4284, 5712, AspectRatio.FOUR_THREE),
    (5712, 3213, AspectRatio.SIXTEEN_NINE),
    (1920, 1080, AspectRatio.SIXTEEN_NINE),
    (1000, 745, AspectRatio.FOUR_THREE),
    (1000, 1000, None),
    (3000, 2000, None),
    (0, 100, None),
    (None, 100, None),
])
def test_detect_aspect_ratio(w, h, expected):
    assert detect_aspect_ratio(w, h) is expected


def test_basic_pair_keeps_the_4_3_asset(make_asset):
    full = iphone(make_asset, "full", 5712, 4284, file_size=4_000_000)
    crop = iphone(make_asset, "crop", 5712, 3213, ts="2024-12-23T10:30:45.456Z", file_size=3_000_000)
    result = find_letterbox_pairs([crop, full])

    assert result.pairs_found == 1
    pair = result.pairs[0]
    assert pair.keeper.asset_id == "full"
    assert pair.delete.asset_id == "crop"
    assert pair.timestamp == "2024-12-23T10:30:45"
    assert pair.camera == "Apple iPhone 15 Pro Max"
    assert result.space_recoverable_bytes == 3_000_000


def test_three_way_group_is_ambiguous(make_asset):
    assets = [
        iphone(make_asset, "a", 5712, 4284),
        iphone(make_asset, "b", 5712, 3213),
        iphone(make_asset, "c", 3213, 5712),
    ]
    result = find_letterbox_pairs(assets)
    assert result.pairs_found == 0
    assert result.skipped_ambiguous == 3


def test_two_full_sensor_shots_at_same_key_do_not_pair(make_asset):
    a = iphone(make_asset, "a", 5712, 4284)
    b = iphone(make_asset, "b", 4284, 5712)
    result = find_letterbox_pairs([a, b])
    assert result.pairs_found == 0
    assert result.pairs == []
    assert result.skipped_ambiguous == 2
    assert result.space_recoverable_bytes == 0


def test_different_second_or_location_does_not_pair(make_asset):
    a = iphone(make_asset, "a", 5712, 4284)
    b = iphone(make_asset, "b", 5712, 3213, ts="2024-12-23T10:30:46.000Z")
    c = iphone(make_asset, "c", 5712, 3213, lat=48.8566, lon=2.3522)
    result = find_letterbox_pairs([a, b, c])
    assert result.pairs_found == 0
    assert result.unpaired == 3


def test_missing_gps_on_both_sides_still_pairs(make_asset):
    a = iphone(make_asset, "a", 5712, 4284, lat=None, lon=None)
    b = iphone(make_asset, "b", 5712, 3213, lat=None, lon=None)
    assert find_letterbox_pairs([a, b]).pairs_found == 1


def test_filters_and_counters(make_asset):
    assets = [
        iphone(make_asset, "pixel", 4000, 3000, make="Google", model="Pixel 8"),
        iphone(make_asset, "ipad", 4000, 3000, model="iPad Pro"),
        iphone(make_asset, "trashed", 4000, 3000, is_trashed=True),
        iphone(make_asset, "square", 3000, 3000),
        iphone(make_asset, "undated", 4000, 3000, ts=None),
    ]
    result = find_letterbox_pairs(assets)
    assert result.total_assets_scanned == 5
    assert result.skipped_non_matching_camera == 2
    assert result.skipped_missing_fields == 2
    assert result.pairs_found == 0


def test_pairs_are_sorted_by_timestamp_then_keeper(make_asset):
    late = [iphone(make_asset, "late-43", 4000, 3000, ts="2024-12-24T08:00:00Z"),
            iphone(make_asset, "late-169", 1920, 1080, ts="2024-12-24T08:00:00Z")]
    early = [iphone(make_asset, "early-43", 4000, 3000, ts="2024-01-01T08:00:00Z"),
             iphone(make_asset, "early-169", 1920, 1080, ts="2024-01-01T08:00:00Z")]
    result = find_letterbox_pairs(late + early)
    assert [p.keeper.asset_id for p in result.pairs] == ["early-43", "late-43"]


def test_pair_becomes_conflict_free_analysis(make_asset):
    result = find_letterbox_pairs([
        iphone(make_asset, "full", 4000, 3000),
        iphone(make_asset, "crop", 1920, 1080),
    ])
    analysis = result.analyses()[0]
    assert analysis.winner.asset_id == "full"
    assert [l.asset_id for l in analysis.losers] == ["crop"]
    assert not analysis.needs_review
