import logging
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from .exceptions import AnalysisFormatError


def is_present(value: Any) -> bool:
    """None and blank strings count as missing."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parses the timestamp formats Immich hands back (ISO 8601 with or without
    offset, 'Z' suffix, EXIF-style "YYYY:MM:DD HH:MM:SS").
    Naive values are treated as UTC. Returns None when nothing parses.
    """
    if not is_present(value):
        return None

    clean = value.strip()
    if clean.endswith('Z'):
        clean = clean[:-1] + '+00:00'

    try:
        dt = datetime.fromisoformat(clean)
    except ValueError:
        try:
            dt = datetime.strptime(clean.replace(':', '-', 2)[:19], "%Y-%m-%d %H:%M:%S")
        except ValueError:
            return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


# camelCase API key -> attribute name
_EXIF_FIELDS = {
    'latitude': 'latitude',
    'longitude': 'longitude',
    'city': 'city',
    'state': 'state',
    'country': 'country',
    'timeZone': 'time_zone',
    'dateTimeOriginal': 'date_time_original',
    'make': 'make',
    'model': 'model',
    'lensModel': 'lens_model',
    'exposureTime': 'exposure_time',
    'fNumber': 'f_number',
    'focalLength': 'focal_length',
    'iso': 'iso',
    'exifImageWidth': 'exif_image_width',
    'exifImageHeight': 'exif_image_height',
    'fileSizeInByte': 'file_size_in_byte',
    'description': 'description',
    'rating': 'rating',
    'orientation': 'orientation',
}


@dataclass
class ExifInfo:
    """
    EXIF block of an asset as reported by the server.
    Most fields are optional; EXIF data is frequently incomplete.
    """
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    time_zone: Optional[str] = None
    date_time_original: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    lens_model: Optional[str] = None
    exposure_time: Optional[str] = None
    f_number: Optional[float] = None
    focal_length: Optional[float] = None
    iso: Optional[int] = None
    exif_image_width: Optional[int] = None
    exif_image_height: Optional[int] = None
    file_size_in_byte: Optional[int] = None
    description: Optional[str] = None
    rating: Optional[int] = None
    orientation: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'ExifInfo':
        return cls(**{attr: data.get(key) for key, attr in _EXIF_FIELDS.items()})

    def has_gps(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def has_camera_info(self) -> bool:
        return is_present(self.make) or is_present(self.model)

    def has_timezone(self) -> bool:
        return is_present(self.time_zone)

    def has_capture_time(self) -> bool:
        return is_present(self.date_time_original)

    def has_lens_info(self) -> bool:
        return is_present(self.lens_model)

    def has_location(self) -> bool:
        return is_present(self.city) or is_present(self.country)

    def has_description(self) -> bool:
        return is_present(self.description)


@dataclass
class Asset:
    """
    Represents an asset fetched from the server. Read-only in this tool.
    """
    id: str
    original_file_name: str
    file_created_at: Optional[str] = None
    local_date_time: Optional[str] = None
    type: str = 'IMAGE'
    checksum: Optional[str] = None
    is_trashed: bool = False
    is_favorite: bool = False
    is_archived: bool = False
    exif_info: Optional[ExifInfo] = None

    # Top-level dimensions some server versions report alongside EXIF
    fallback_width: Optional[int] = None
    fallback_height: Optional[int] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'Asset':
        if not isinstance(data, dict) or not data.get('id'):
            raise ValueError(f"Asset payload without id: {data!r}")

        exif = data.get('exifInfo')
        return cls(
            id=data['id'],
            original_file_name=data.get('originalFileName') or data['id'],
            file_created_at=data.get('fileCreatedAt'),
            local_date_time=data.get('localDateTime'),
            type=data.get('type') or 'IMAGE',
            checksum=data.get('checksum'),
            is_trashed=bool(data.get('isTrashed', False)),
            is_favorite=bool(data.get('isFavorite', False)),
            is_archived=bool(data.get('isArchived', False)),
            exif_info=ExifInfo.from_api(exif) if isinstance(exif, dict) else None,
            fallback_width=data.get('width'),
            fallback_height=data.get('height'),
        )

    @property
    def width(self) -> Optional[int]:
        if self.exif_info and self.exif_info.exif_image_width:
            return self.exif_info.exif_image_width
        return self.fallback_width or None

    @property
    def height(self) -> Optional[int]:
        if self.exif_info and self.exif_info.exif_image_height:
            return self.exif_info.exif_image_height
        return self.fallback_height or None

    @property
    def file_size(self) -> Optional[int]:
        return self.exif_info.file_size_in_byte if self.exif_info else None

    @property
    def pixel_count(self) -> int:
        """width * height, zero when either dimension is unknown."""
        return (self.width or 0) * (self.height or 0)

    @property
    def date_time_original(self) -> Optional[str]:
        return self.exif_info.date_time_original if self.exif_info else None


@dataclass
class DuplicateGroup:
    duplicate_id: str
    assets: List[Asset]

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'DuplicateGroup':
        duplicate_id = data['duplicateId']
        assets = []
        for item in data.get('assets') or []:
            try:
                assets.append(Asset.from_api(item))
            except (TypeError, ValueError) as e:
                logging.warning(f"Skipping malformed asset in group {duplicate_id}: {e}")
        return cls(duplicate_id=duplicate_id, assets=assets)


@dataclass
class MetadataScore:
    """
    Weighted metadata completeness. Each category is either 0 or its weight.
    """
    gps: int = 0
    timezone: int = 0
    camera_info: int = 0
    capture_time: int = 0
    lens_info: int = 0
    location: int = 0

    @property
    def total(self) -> int:
        return (self.gps + self.timezone + self.camera_info
                + self.capture_time + self.lens_info + self.location)

    def to_dict(self) -> Dict[str, int]:
        return {
            'gps': self.gps,
            'timezone': self.timezone,
            'camera_info': self.camera_info,
            'capture_time': self.capture_time,
            'lens_info': self.lens_info,
            'location': self.location,
            'total': self.total,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MetadataScore':
        return cls(
            gps=int(data.get('gps', 0)),
            timezone=int(data.get('timezone', 0)),
            camera_info=int(data.get('camera_info', 0)),
            capture_time=int(data.get('capture_time', 0)),
            lens_info=int(data.get('lens_info', 0)),
            location=int(data.get('location', 0)),
        )


@dataclass
class ScoredAsset:
    asset_id: str
    filename: str
    score: MetadataScore = field(default_factory=MetadataScore)
    width: Optional[int] = None
    height: Optional[int] = None
    file_size: Optional[int] = None
    checksum: Optional[str] = None
    date_time_original: Optional[str] = None

    @property
    def pixel_count(self) -> int:
        return (self.width or 0) * (self.height or 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'asset_id': self.asset_id,
            'filename': self.filename,
            'score': self.score.to_dict(),
            'width': self.width,
            'height': self.height,
            'pixel_count': self.pixel_count,
            'file_size': self.file_size,
            'checksum': self.checksum,
            'date_time_original': self.date_time_original,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScoredAsset':
        return cls(
            asset_id=data['asset_id'],
            filename=data['filename'],
            score=MetadataScore.from_dict(data.get('score') or {}),
            width=data.get('width'),
            height=data.get('height'),
            file_size=data.get('file_size'),
            checksum=data.get('checksum'),
            date_time_original=data.get('date_time_original'),
        )


# --- Conflicts (closed set of variants, tagged by `type`) ---

@dataclass(frozen=True)
class MetadataConflict:
    type: ClassVar[str] = ''
    winner_id: str
    loser_id: str
    winner_value: Any
    loser_value: Any

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'winner_id': self.winner_id,
            'loser_id': self.loser_id,
            'winner_value': self._encode(self.winner_value),
            'loser_value': self._encode(self.loser_value),
        }

    @staticmethod
    def _encode(value):
        return value

    @staticmethod
    def _decode(value):
        return value

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'MetadataConflict':
        cls = CONFLICT_TYPES.get(data.get('type'))
        if cls is None:
            raise AnalysisFormatError(f"Unknown conflict type: {data.get('type')!r}")
        return cls(
            winner_id=data['winner_id'],
            loser_id=data['loser_id'],
            winner_value=cls._decode(data['winner_value']),
            loser_value=cls._decode(data['loser_value']),
        )


class GpsConflict(MetadataConflict):
    """Coordinates further apart than GPS_THRESHOLD on either axis."""
    type = 'gps'

    @staticmethod
    def _encode(value):
        return list(value)

    @staticmethod
    def _decode(value):
        return (float(value[0]), float(value[1]))


class TimezoneConflict(MetadataConflict):
    type = 'timezone'


class CameraConflict(MetadataConflict):
    """Values are [make, model] pairs as reported."""
    type = 'camera'

    @staticmethod
    def _encode(value):
        return list(value)

    @staticmethod
    def _decode(value):
        return (value[0], value[1])


class CaptureTimeConflict(MetadataConflict):
    type = 'capture_time'


CONFLICT_TYPES = {
    cls.type: cls
    for cls in (GpsConflict, TimezoneConflict, CameraConflict, CaptureTimeConflict)
}


@dataclass
class DuplicateAnalysis:
    """
    Outcome of analyzing one duplicate group: who stays, who goes, and
    what disagreements a human should look at first.
    """
    duplicate_id: str
    winner: ScoredAsset
    losers: List[ScoredAsset]
    conflicts: List[MetadataConflict] = field(default_factory=list)

    @property
    def needs_review(self) -> bool:
        return bool(self.conflicts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'duplicate_id': self.duplicate_id,
            'winner': self.winner.to_dict(),
            'losers': [l.to_dict() for l in self.losers],
            'conflicts': [c.to_dict() for c in self.conflicts],
            'needs_review': self.needs_review,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DuplicateAnalysis':
        return cls(
            duplicate_id=data['duplicate_id'],
            winner=ScoredAsset.from_dict(data['winner']),
            losers=[ScoredAsset.from_dict(l) for l in data.get('losers', [])],
            conflicts=[MetadataConflict.from_dict(c) for c in data.get('conflicts', [])],
        )


@dataclass
class AnalysisReport:
    groups: List[DuplicateAnalysis]
    generated_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    server_url: Optional[str] = None
    skipped_groups: int = 0

    @property
    def total_groups(self) -> int:
        return len(self.groups)

    @property
    def total_assets(self) -> int:
        return sum(1 + len(g.losers) for g in self.groups)

    @property
    def needs_review_count(self) -> int:
        return sum(1 for g in self.groups if g.needs_review)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'generated_at': self.generated_at,
            'server_url': self.server_url,
            'total_groups': self.total_groups,
            'total_assets': self.total_assets,
            'needs_review_count': self.needs_review_count,
            'skipped_groups': self.skipped_groups,
            'groups': [g.to_dict() for g in self.groups],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AnalysisReport':
        return cls(
            groups=[DuplicateAnalysis.from_dict(g) for g in data.get('groups', [])],
            generated_at=data.get('generated_at', ''),
            server_url=data.get('server_url'),
            skipped_groups=int(data.get('skipped_groups', 0)),
        )


# --- Consolidation ---

class ConsolidationField(str, Enum):
    """
    The only fields the server accepts writes for.
    Camera and lens fields are read-only on the server side.
    """
    GPS = 'gps'
    CAPTURE_TIME = 'capture_time'
    DESCRIPTION = 'description'


@dataclass(frozen=True)
class ConsolidatedValue:
    field: ConsolidationField
    value: Any              # (lat, lon) for GPS, str otherwise
    source_id: str

    def to_dict(self) -> Dict[str, Any]:
        value = list(self.value) if self.field is ConsolidationField.GPS else self.value
        return {'field': self.field.value, 'value': value, 'source_id': self.source_id}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConsolidatedValue':
        fld = ConsolidationField(data['field'])
        value = data['value']
        if fld is ConsolidationField.GPS:
            value = (float(value[0]), float(value[1]))
        return cls(field=fld, value=value, source_id=data['source_id'])


@dataclass
class ConsolidationResult:
    values: List[ConsolidatedValue] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.values

    def get(self, fld: ConsolidationField) -> Optional[ConsolidatedValue]:
        for v in self.values:
            if v.field is fld:
                return v
        return None

    def to_update(self) -> Dict[str, Any]:
        """Keyword arguments for ImmichClient.update_asset_metadata."""
        update: Dict[str, Any] = {}
        for v in self.values:
            if v.field is ConsolidationField.GPS:
                update['latitude'], update['longitude'] = v.value
            elif v.field is ConsolidationField.CAPTURE_TIME:
                update['date_time_original'] = v.value
            elif v.field is ConsolidationField.DESCRIPTION:
                update['description'] = v.value
            else:
                raise TypeError(f"Unhandled consolidation field: {v.field!r}")
        return update

    def to_list(self) -> List[Dict[str, Any]]:
        return [v.to_dict() for v in self.values]

    @classmethod
    def from_list(cls, data: List[Dict[str, Any]]) -> 'ConsolidationResult':
        return cls(values=[ConsolidatedValue.from_dict(v) for v in data])


# --- Letterbox ---

def _ref_to_dict(asset: ScoredAsset) -> Dict[str, Any]:
    data = asset.to_dict()
    data['id'] = data.pop('asset_id')
    return data


def _ref_from_dict(data: Dict[str, Any]) -> ScoredAsset:
    return ScoredAsset.from_dict({**data, 'asset_id': data['id']})


@dataclass
class LetterboxPair:
    """A full-sensor 4:3 capture (keeper) and its 16:9 crop (delete)."""
    keeper: ScoredAsset
    delete: ScoredAsset
    timestamp: str
    camera: str
    pairing_key: str

    def as_analysis(self) -> DuplicateAnalysis:
        return DuplicateAnalysis(
            duplicate_id=self.pairing_key,
            winner=self.keeper,
            losers=[self.delete],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'keeper': _ref_to_dict(self.keeper),
            'delete': _ref_to_dict(self.delete),
            'timestamp': self.timestamp,
            'camera': self.camera,
            'pairing_key': self.pairing_key,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LetterboxPair':
        return cls(
            keeper=_ref_from_dict(data['keeper']),
            delete=_ref_from_dict(data['delete']),
            timestamp=data['timestamp'],
            camera=data['camera'],
            pairing_key=data['pairing_key'],
        )


@dataclass
class LetterboxAnalysis:
    pairs: List[LetterboxPair] = field(default_factory=list)
    generated_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    server_url: Optional[str] = None
    total_assets_scanned: int = 0
    skipped_non_matching_camera: int = 0
    skipped_missing_fields: int = 0
    skipped_ambiguous: int = 0
    unpaired: int = 0

    @property
    def pairs_found(self) -> int:
        return len(self.pairs)

    @property
    def space_recoverable_bytes(self) -> int:
        return sum(p.delete.file_size or 0 for p in self.pairs)

    def analyses(self) -> List[DuplicateAnalysis]:
        return [p.as_analysis() for p in self.pairs]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'generated_at': self.generated_at,
            'server_url': self.server_url,
            'summary': {
                'total_assets_scanned': self.total_assets_scanned,
                'pairs_found': self.pairs_found,
                'space_recoverable_bytes': self.space_recoverable_bytes,
                'skipped_non_matching_camera': self.skipped_non_matching_camera,
                'skipped_missing_fields': self.skipped_missing_fields,
                'skipped_ambiguous': self.skipped_ambiguous,
                'unpaired': self.unpaired,
            },
            'pairs': [p.to_dict() for p in self.pairs],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LetterboxAnalysis':
        summary = data.get('summary') or {}
        return cls(
            pairs=[LetterboxPair.from_dict(p) for p in data.get('pairs', [])],
            generated_at=data.get('generated_at', ''),
            server_url=data.get('server_url'),
            total_assets_scanned=int(summary.get('total_assets_scanned', 0)),
            skipped_non_matching_camera=int(summary.get('skipped_non_matching_camera', 0)),
            skipped_missing_fields=int(summary.get('skipped_missing_fields', 0)),
            skipped_ambiguous=int(summary.get('skipped_ambiguous', 0)),
            unpaired=int(summary.get('unpaired', 0)),
        )
