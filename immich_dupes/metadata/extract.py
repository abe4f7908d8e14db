import logging
from datetime import datetime, UTC
from pathlib import Path
from typing import Optional

import exifread
from pymediainfo import MediaInfo

from .. import config


class MetadataExtractor:
    """
    Reads capture dates from local backup files.

    Strategies:
      - Images: 'exifread' (fast, Python-native).
      - Video: 'pymediainfo' general-track dates.
    Anything without a usable date falls back to the file's modification time.
    """

    def get_capture_date(self, path: Path) -> Optional[datetime]:
        """Capture date as a UTC datetime, or None."""
        if path.suffix.lower() in config.VIDEO_EXTENSIONS:
            return self.get_video_capture_date(path)
        return self.get_image_capture_date(path)

    def get_created_at(self, path: Path) -> datetime:
        """Capture date if the file carries one, otherwise its mtime."""
        dt = self.get_capture_date(path)
        if dt is not None:
            return dt

        logging.debug(f"No capture date in {path.name}; using file modification time")
        return datetime.fromtimestamp(path.stat().st_mtime, tz=UTC)

    def get_image_capture_date(self, path: Path) -> Optional[datetime]:
        try:
            with path.open('rb') as f:
                # details=False skips maker notes and thumbnails
                tags = exifread.process_file(f, details=False)
        except Exception as e:
            logging.warning(f"ExifRead failed for {path}: {e}")
            return None

        return self._parse_exif_date(tags)

    def get_video_capture_date(self, path: Path) -> Optional[datetime]:
        try:
            mi = MediaInfo.parse(str(path))
        except Exception as e:
            logging.debug(f"MediaInfo failed for {path}: {e}")
            return None

        for track in mi.tracks:
            if track.track_type != "General":
                continue
            # Different cameras write different tags
            for fld in config.VIDEO_DATE_FIELDS:
                val = getattr(track, fld, None)
                if val:
                    dt = self._parse_flexible_date(str(val))
                    if dt:
                        return dt
        return None

    def _parse_exif_date(self, tags) -> Optional[datetime]:
        for tag in config.DATE_TAGS:
            if tag in tags:
                try:
                    # EXIF format is "YYYY:MM:DD HH:MM:SS"
                    dt_str = str(tags[tag]).strip().replace(':', '-', 2)
                    dt = datetime.strptime(dt_str[:19], "%Y-%m-%d %H:%M:%S")
                except ValueError:
                    continue
                return dt.replace(tzinfo=UTC)
        return None

    def _parse_flexible_date(self, dt_str: str) -> Optional[datetime]:
        """
        Handles MediaInfo's date styles ("UTC 2020-01-01 12:00:00",
        "2020-01-01 12:00:00 UTC", ISO). Naive results are taken as UTC.
        """
        clean = dt_str.replace("UTC", "").strip()

        try:
            dt = datetime.fromisoformat(clean)
        except ValueError:
            try:
                clean_exif = clean.replace(":", "-", 2).split(".")[0]
                dt = datetime.strptime(clean_exif, "%Y-%m-%d %H:%M:%S")
            except ValueError:
                return None

        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        return dt
