"""
Configuration constants for immich-dupes.
"""
from pathlib import Path

# --- Metadata Scoring ---
# Higher weights mark metadata that is harder to recover once lost.
SCORE_WEIGHTS = {
    'gps': 30,            # irreplaceable location data
    'timezone': 20,
    'camera_info': 15,
    'capture_time': 15,
    'lens_info': 10,
    'location': 10,       # reverse-geocoded, derivable from GPS
}

# --- Conflict Detection ---
# ~11 metres at the equator, applied per axis
GPS_THRESHOLD = 0.0001
CAPTURE_TIME_TOLERANCE_SECONDS = 5.0

# --- Verification ---
VERIFY_CAPTURE_TIME_TOLERANCE_SECONDS = 1.0

# --- Letterbox Pairing ---
LETTERBOX_CAMERA_MAKE = 'apple'
LETTERBOX_MODEL_FAMILY = 'iphone'
RATIO_4_3 = 4.0 / 3.0
RATIO_16_9 = 16.0 / 9.0
RATIO_TOLERANCE = 0.01
GPS_KEY_PRECISION = 4  # decimals, ~11 m

# --- Remote API ---
REQUEST_TIMEOUT = 30.0  # seconds, per request
SEARCH_PAGE_SIZE = 1000
DOWNLOAD_CHUNK_SIZE = 64 * 1024
UPLOAD_DEVICE_ID = 'immich-dupes-restore'

# --- Execution ---
DEFAULT_REQUESTS_PER_SEC = 10
DEFAULT_MAX_CONCURRENT = 5
DEFAULT_BACKUP_DIR = Path('./backups')
PARTIAL_SUFFIX = '.part'

# Album transfer retry: 250ms doubling, bounded by a total budget
ALBUM_RETRY_INITIAL_DELAY = 0.25
ALBUM_RETRY_MAX_DURATION = 60.0

# --- Reports ---
ANALYSIS_FILE = 'analysis.json'
LETTERBOX_ANALYSIS_FILE = 'letterbox-analysis.json'
EXECUTION_REPORT_FILE = 'execution-report.json'
VERIFICATION_REPORT_FILE = 'verification-report.json'
LOG_FILE = 'immich-dupes.log'

# --- Restore ---
# Backup names are "{asset uuid}_{original name}"
UUID_PREFIX_LENGTH = 36
MIME_TYPES = {
    '.jpg': 'image/jpeg', '.jpeg': 'image/jpeg',
    '.png': 'image/png', '.gif': 'image/gif', '.webp': 'image/webp',
    '.heic': 'image/heic', '.heif': 'image/heic',
    '.mp4': 'video/mp4', '.mov': 'video/quicktime',
    '.avi': 'video/x-msvideo', '.webm': 'video/webm',
}

# EXIF tags tried in order when dating a backup file
DATE_TAGS = [
    'EXIF DateTimeOriginal',
    'EXIF DateTimeDigitized',
    'Image DateTime',
]

VIDEO_EXTENSIONS = {'.mp4', '.mov', '.avi', '.webm', '.m4v', '.mkv', '.3gp'}

# MediaInfo general-track fields, most to least trustworthy
VIDEO_DATE_FIELDS = [
    'recorded_date',
    'encoded_date',
    'tagged_date',
]
