import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

import httpx

from .. import config
from ..analysis.consolidation import plan_consolidation
from ..api.client import ImmichClient
from ..exceptions import ApiError, AuthenticationError, BackupError
from ..models import DuplicateAnalysis, ScoredAsset
from .limits import Throttle, gather_in_order
from .results import (
    ExecutionReport,
    Failed,
    GroupResult,
    GroupState,
    Operation,
    OperationResult,
    Skipped,
    Success,
)

# Per-asset failures: recorded, never fatal. AuthenticationError is caught
# ahead of these everywhere they are used.
TRANSIENT_ERRORS = (httpx.HTTPError, ApiError, OSError)


@dataclass
class ExecutionConfig:
    requests_per_sec: float = config.DEFAULT_REQUESTS_PER_SEC
    max_concurrent: int = config.DEFAULT_MAX_CONCURRENT
    backup_dir: Path = config.DEFAULT_BACKUP_DIR
    force_delete: bool = False
    skip_conflicts: bool = False
    preserve_albums: bool = False
    dry_run: bool = False
    show_progress: bool = True


def backup_path(backup_dir: Path, asset: ScoredAsset) -> Path:
    """backup_dir/{asset_id}_{basename}; the id prefix keeps names unique."""
    return Path(backup_dir) / f"{asset.asset_id}_{Path(asset.filename).name}"


def backup_ok(path: Path) -> bool:
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def _skip_all(result: GroupResult, losers: Sequence[ScoredAsset], reason: str) -> None:
    result.downloads = [Skipped(l.asset_id, Operation.DOWNLOAD, reason) for l in losers]
    result.deletes = [Skipped(l.asset_id, Operation.DELETE, reason) for l in losers]


class Executor:
    """
    Resolves analyzed duplicate groups against the server.

    Per group: consolidate metadata onto the winner, optionally move album
    memberships, back up every loser, then delete only the losers whose
    backup is on disk. Groups run concurrently; every remote call goes
    through one shared Throttle.
    """

    def __init__(self, client: ImmichClient, exec_config: ExecutionConfig,
                 throttle: Optional[Throttle] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.client = client
        self.config = exec_config
        self.throttle = throttle or Throttle(exec_config.requests_per_sec, exec_config.max_concurrent)
        self._sleep = sleep

    async def execute(self, analyses: Sequence[DuplicateAnalysis]) -> ExecutionReport:
        report = ExecutionReport(dry_run=self.config.dry_run, force_delete=self.config.force_delete)
        if not analyses:
            logging.info("No groups to execute.")
            return report

        if not self.config.dry_run:
            Path(self.config.backup_dir).mkdir(parents=True, exist_ok=True)

        mode = "DRY RUN" if self.config.dry_run else ("permanent delete" if self.config.force_delete else "trash")
        logging.info(f"Executing {len(analyses)} groups ({mode}), backups in {self.config.backup_dir}")

        report.groups = await gather_in_order(
            [self._guarded(a) for a in analyses],
            desc="Resolving", show_progress=self.config.show_progress)
        return report

    async def _guarded(self, analysis: DuplicateAnalysis) -> GroupResult:
        try:
            return await self.process_group(analysis)
        except AuthenticationError:
            raise
        except Exception as e:
            logging.exception(f"Unexpected error in group {analysis.duplicate_id}")
            return GroupResult(analysis.duplicate_id, analysis.winner.asset_id,
                               state=GroupState.PARTIAL_FAILURE,
                               skip_reason=f"unexpected error: {e}")

    async def process_group(self, analysis: DuplicateAnalysis) -> GroupResult:
        result = GroupResult(analysis.duplicate_id, analysis.winner.asset_id)
        losers = analysis.losers

        if self.config.skip_conflicts and analysis.needs_review:
            logging.info(f"Skipping group {analysis.duplicate_id}: {len(analysis.conflicts)} conflict(s) need review")
            result.state = GroupState.SKIPPED
            result.skip_reason = "metadata conflicts need review"
            _skip_all(result, losers, result.skip_reason)
            return result

        # 1. Consolidate
        result.state = GroupState.CONSOLIDATING
        if not await self._consolidate(analysis, result):
            _skip_all(result, losers, f"consolidation failed: {result.consolidation_error}")
            result.state = GroupState.PARTIAL_FAILURE
            return result

        if self.config.dry_run:
            result.state = GroupState.SKIPPED
            result.skip_reason = "dry run"
            _skip_all(result, losers, "dry run")
            for loser in losers:
                logging.info(f"[DRY RUN] Would back up and delete {loser.filename} ({loser.asset_id})")
            return result

        # 2. Album transfer
        if self.config.preserve_albums:
            result.state = GroupState.TRANSFERRING_ALBUMS
            result.album_transfer = await self._transfer_albums(analysis)
            if isinstance(result.album_transfer, Failed):
                _skip_all(result, losers, "album transfer failed; keeping losers")
                result.state = GroupState.PARTIAL_FAILURE
                return result

        # 3. Back up every loser; the gather is the barrier before any delete.
        # A fatal error cancels the sibling downloads before it propagates.
        result.state = GroupState.DOWNLOADING
        result.downloads = await gather_in_order([self._download(l) for l in losers],
                                                 desc="Downloading", show_progress=False)

        # 4. Delete only what is safely on disk
        result.state = GroupState.DELETING
        result.deletes = await self._delete(losers, result.downloads)

        deleted = len(result.deleted_ids())
        result.state = GroupState.DONE if deleted == len(losers) else GroupState.PARTIAL_FAILURE
        logging.debug(f"Group {analysis.duplicate_id}: {deleted}/{len(losers)} losers deleted ({result.state.value})")
        return result

    # --- steps ---

    async def _consolidate(self, analysis: DuplicateAnalysis, result: GroupResult) -> bool:
        """
        Copies missing metadata onto the winner. Returns False when the
        group must not proceed to deletion.
        """
        winner_id = analysis.winner.asset_id
        try:
            winner = await self.throttle.run(self.client.get_asset, winner_id)
        except AuthenticationError:
            raise
        except TRANSIENT_ERRORS as e:
            result.consolidation_error = f"could not fetch winner {winner_id}: {e}"
            logging.error(result.consolidation_error)
            return False

        live_losers = []
        for loser in analysis.losers:
            try:
                live_losers.append(await self.throttle.run(self.client.get_asset, loser.asset_id))
            except AuthenticationError:
                raise
            except TRANSIENT_ERRORS as e:
                logging.warning(f"Could not fetch loser {loser.asset_id}, leaving it out of consolidation: {e}")

        plan = plan_consolidation(winner, live_losers)
        if plan.is_empty:
            result.consolidation = plan
            return True

        fields = ', '.join(v.field.value for v in plan.values)
        if self.config.dry_run:
            logging.info(f"[DRY RUN] Would copy {fields} onto {winner_id}")
            return True

        try:
            await self.throttle.run(self.client.update_asset_metadata, winner_id, **plan.to_update())
        except AuthenticationError:
            raise
        except TRANSIENT_ERRORS as e:
            result.consolidation_error = f"metadata update of {winner_id} failed: {e}"
            logging.error(result.consolidation_error)
            return False

        logging.info(f"Consolidated {fields} onto {winner_id}")
        result.consolidation = plan
        return True

    async def _transfer_albums(self, analysis: DuplicateAnalysis) -> OperationResult:
        winner_id = analysis.winner.asset_id
        loser_ids = [l.asset_id for l in analysis.losers]

        albums: Dict[str, str] = {}
        for loser_id in loser_ids:
            try:
                found = await self.throttle.run(self.client.get_albums_for_asset, loser_id)
            except AuthenticationError:
                raise
            except TRANSIENT_ERRORS as e:
                return Failed(winner_id, Operation.ALBUM_TRANSFER, f"album lookup for {loser_id} failed: {e}")
            for album in found:
                albums.setdefault(album['id'], album.get('albumName') or album['id'])

        failed = []
        for album_id, name in albums.items():
            if not await self._transfer_album(album_id, winner_id, loser_ids):
                logging.error(f"Album transfer to '{name}' failed after retries")
                failed.append(name)

        if failed:
            return Failed(winner_id, Operation.ALBUM_TRANSFER, f"failed albums: {', '.join(failed)}")
        if albums:
            logging.info(f"Moved {winner_id} into {len(albums)} album(s)")
        return Success(winner_id, Operation.ALBUM_TRANSFER)

    async def _transfer_album(self, album_id: str, winner_id: str, loser_ids: List[str]) -> bool:
        """Retries with doubling backoff until the retry budget is spent."""
        delay = config.ALBUM_RETRY_INITIAL_DELAY
        waited = 0.0
        while True:
            try:
                await self._try_transfer_album(album_id, winner_id, loser_ids)
                return True
            except AuthenticationError:
                raise
            except TRANSIENT_ERRORS as e:
                remaining = config.ALBUM_RETRY_MAX_DURATION - waited
                if remaining <= 0:
                    return False
                pause = min(delay, remaining)
                logging.warning(f"Album {album_id} transfer failed ({e}); retrying in {pause:.2f}s")
                await self._sleep(pause)
                waited += pause
                delay *= 2

    async def _try_transfer_album(self, album_id: str, winner_id: str, loser_ids: List[str]) -> None:
        try:
            await self.throttle.run(self.client.add_assets_to_album, album_id, [winner_id])
        except AuthenticationError:
            raise
        except ApiError as e:
            # Winner already in the album is fine
            text = e.message.lower()
            if e.status != 400 or not ('duplicate' in text or 'already' in text):
                raise
        await self.throttle.run(self.client.remove_assets_from_album, album_id, loser_ids)

    async def _download(self, loser: ScoredAsset) -> OperationResult:
        dest = backup_path(self.config.backup_dir, loser)
        part = dest.with_name(dest.name + config.PARTIAL_SUFFIX)
        try:
            written = await self.throttle.run(self.client.download_asset, loser.asset_id, part)
            if written <= 0:
                raise BackupError(f"empty download for {loser.asset_id}")
            part.replace(dest)
        except (AuthenticationError, asyncio.CancelledError):
            part.unlink(missing_ok=True)
            raise
        except TRANSIENT_ERRORS + (BackupError,) as e:
            part.unlink(missing_ok=True)
            logging.error(f"Backup of {loser.filename} ({loser.asset_id}) failed: {e}")
            return Failed(loser.asset_id, Operation.DOWNLOAD, str(e))

        return Success(loser.asset_id, Operation.DOWNLOAD, path=str(dest), bytes=written)

    async def _delete(self, losers: Sequence[ScoredAsset],
                      downloads: Sequence[OperationResult]) -> List[OperationResult]:
        outcome: Dict[str, OperationResult] = {}
        deletable = []

        for loser, download in zip(losers, downloads):
            if not isinstance(download, Success):
                outcome[loser.asset_id] = Skipped(loser.asset_id, Operation.DELETE, "backup failed")
            elif not backup_ok(Path(download.path)):
                outcome[loser.asset_id] = Skipped(loser.asset_id, Operation.DELETE, "backup missing or empty")
            else:
                deletable.append(loser.asset_id)

        if deletable:
            try:
                await self.throttle.run(self.client.delete_assets, deletable, self.config.force_delete)
            except AuthenticationError:
                raise
            except TRANSIENT_ERRORS as e:
                logging.error(f"Delete of {len(deletable)} asset(s) failed: {e}")
                for asset_id in deletable:
                    outcome[asset_id] = Failed(asset_id, Operation.DELETE, str(e))
            else:
                for asset_id in deletable:
                    outcome[asset_id] = Success(asset_id, Operation.DELETE)

        return [outcome[l.asset_id] for l in losers]
