"""
Re-uploads backed-up losers to the server.

Backups are named "{asset_id}_{original name}"; the prefix is stripped so
the restored asset gets its original filename back.
"""
import logging
import string
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .. import config
from ..api.client import ImmichClient
from ..exceptions import AuthenticationError, BackupError
from ..metadata.extract import MetadataExtractor
from .executor import TRANSIENT_ERRORS, ExecutionConfig
from .limits import Throttle, gather_in_order

_UUID_CHARS = set(string.hexdigits + '-')


def original_filename(backup_name: str) -> str:
    n = config.UUID_PREFIX_LENGTH
    if len(backup_name) > n + 1 and backup_name[n] == '_' and set(backup_name[:n]) <= _UUID_CHARS:
        return backup_name[n + 1:]
    return backup_name


def list_backups(backup_dir: Path) -> List[Path]:
    """Finished backup files, sorted by name. Partial downloads are ignored."""
    if not backup_dir.is_dir():
        raise BackupError(f"Backup directory not found: {backup_dir}")
    return sorted(
        p for p in backup_dir.iterdir()
        if p.is_file() and not p.name.endswith(config.PARTIAL_SUFFIX) and not p.name.startswith('.')
    )


class UploadOutcome(str, Enum):
    UPLOADED = "uploaded"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass
class RestoreReport:
    uploaded: List[str] = field(default_factory=list)
    duplicates: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def total(self) -> int:
        return len(self.uploaded) + len(self.duplicates) + len(self.failed)

    def record(self, name: str, outcome: UploadOutcome) -> None:
        if outcome is UploadOutcome.UPLOADED:
            self.uploaded.append(name)
        elif outcome is UploadOutcome.DUPLICATE:
            self.duplicates.append(name)
        elif outcome is UploadOutcome.FAILED:
            self.failed.append(name)
        else:
            raise TypeError(f"Unhandled upload outcome: {outcome!r}")


class Restorer:
    def __init__(self, client: ImmichClient, exec_config: ExecutionConfig,
                 throttle: Optional[Throttle] = None,
                 extractor: Optional[MetadataExtractor] = None):
        self.client = client
        self.config = exec_config
        self.throttle = throttle or Throttle(exec_config.requests_per_sec, exec_config.max_concurrent)
        self.extractor = extractor or MetadataExtractor()

    async def restore(self, backup_dir: Path) -> RestoreReport:
        files = list_backups(Path(backup_dir))
        report = RestoreReport(dry_run=self.config.dry_run)
        logging.info(f"Found {len(files)} backup file(s) in {backup_dir}")

        if self.config.dry_run:
            for path in files:
                logging.info(f"[DRY RUN] Would upload {path.name} as {original_filename(path.name)}")
            return report

        outcomes = await gather_in_order(
            [self._upload(p) for p in files],
            desc="Restoring", show_progress=self.config.show_progress)

        for path, outcome in zip(files, outcomes):
            report.record(path.name, outcome)

        logging.info(f"Restore complete: {len(report.uploaded)} uploaded, "
                     f"{len(report.duplicates)} already present, {len(report.failed)} failed")
        return report

    async def _upload(self, path: Path) -> UploadOutcome:
        name = original_filename(path.name)
        try:
            created_at = self.extractor.get_created_at(path)
            response = await self.throttle.run(self.client.upload_asset, path, name, created_at)
        except AuthenticationError:
            raise
        except TRANSIENT_ERRORS as e:
            logging.error(f"Upload of {path.name} failed: {e}")
            return UploadOutcome.FAILED

        if response.get('duplicate') or response.get('status') == 'duplicate':
            logging.info(f"{name} already on server ({response.get('id')})")
            return UploadOutcome.DUPLICATE
        logging.debug(f"Uploaded {name} as {response.get('id')}")
        return UploadOutcome.UPLOADED
