"""
Execution and verification records.

OperationResult is a closed set of variants tagged by `status`. Anything
reading a report dispatches on the tag; unknown tags are an error.
"""
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from ..exceptions import AnalysisFormatError
from ..models import ConsolidationResult


class Operation(str, Enum):
    CONSOLIDATE = 'consolidate'
    ALBUM_TRANSFER = 'album_transfer'
    DOWNLOAD = 'download'
    DELETE = 'delete'


class GroupState(str, Enum):
    PENDING = 'pending'
    CONSOLIDATING = 'consolidating'
    TRANSFERRING_ALBUMS = 'transferring_albums'
    DOWNLOADING = 'downloading'
    DELETING = 'deleting'
    DONE = 'done'
    PARTIAL_FAILURE = 'partial_failure'
    SKIPPED = 'skipped'


# --- Operation results ---

@dataclass
class OperationResult:
    status: ClassVar[str] = ''
    asset_id: str
    operation: Operation

    def to_dict(self) -> Dict[str, Any]:
        return {'status': self.status, 'asset_id': self.asset_id, 'operation': self.operation.value}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'OperationResult':
        status = data.get('status')
        try:
            op = Operation(data['operation'])
        except (KeyError, ValueError) as e:
            raise AnalysisFormatError(f"Bad operation in result: {data!r}") from e

        if status == Success.status:
            return Success(data['asset_id'], op, path=data.get('path'), bytes=data.get('bytes'))
        if status == Failed.status:
            return Failed(data['asset_id'], op, reason=data.get('reason', ''))
        if status == Skipped.status:
            return Skipped(data['asset_id'], op, reason=data.get('reason', ''))
        raise AnalysisFormatError(f"Unknown result status: {status!r}")


@dataclass
class Success(OperationResult):
    status: ClassVar[str] = 'success'
    path: Optional[str] = None
    bytes: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['path'] = self.path
        data['bytes'] = self.bytes
        return data


@dataclass
class Failed(OperationResult):
    status: ClassVar[str] = 'failed'
    reason: str = ''

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['reason'] = self.reason
        return data


@dataclass
class Skipped(OperationResult):
    status: ClassVar[str] = 'skipped'
    reason: str = ''

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['reason'] = self.reason
        return data


# --- Execution ---

@dataclass
class GroupResult:
    duplicate_id: str
    winner_id: str
    state: GroupState = GroupState.PENDING
    consolidation: Optional[ConsolidationResult] = None
    consolidation_error: Optional[str] = None
    album_transfer: Optional[OperationResult] = None
    downloads: List[OperationResult] = field(default_factory=list)
    deletes: List[OperationResult] = field(default_factory=list)
    skip_reason: Optional[str] = None

    def deleted_ids(self) -> List[str]:
        return [r.asset_id for r in self.deletes if isinstance(r, Success)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'duplicate_id': self.duplicate_id,
            'winner_id': self.winner_id,
            'state': self.state.value,
            'consolidation': self.consolidation.to_list() if self.consolidation else None,
            'consolidation_error': self.consolidation_error,
            'album_transfer': self.album_transfer.to_dict() if self.album_transfer else None,
            'downloads': [r.to_dict() for r in self.downloads],
            'deletes': [r.to_dict() for r in self.deletes],
            'skip_reason': self.skip_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GroupResult':
        consolidation = data.get('consolidation')
        album = data.get('album_transfer')
        return cls(
            duplicate_id=data['duplicate_id'],
            winner_id=data['winner_id'],
            state=GroupState(data.get('state', GroupState.PENDING.value)),
            consolidation=ConsolidationResult.from_list(consolidation) if consolidation is not None else None,
            consolidation_error=data.get('consolidation_error'),
            album_transfer=OperationResult.from_dict(album) if album else None,
            downloads=[OperationResult.from_dict(r) for r in data.get('downloads', [])],
            deletes=[OperationResult.from_dict(r) for r in data.get('deletes', [])],
            skip_reason=data.get('skip_reason'),
        )


@dataclass
class ExecutionReport:
    groups: List[GroupResult] = field(default_factory=list)
    dry_run: bool = False
    force_delete: bool = False
    generated_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def totals(self) -> Dict[str, int]:
        downloaded = deleted = failed = skipped = consolidated = backed_up = 0
        for g in self.groups:
            if g.consolidation:
                consolidated += len(g.consolidation.values)
            for r in g.downloads:
                if isinstance(r, Success):
                    downloaded += 1
                    backed_up += r.bytes or 0
            deleted += len(g.deleted_ids())
            results = g.downloads + g.deletes
            if g.album_transfer:
                results = results + [g.album_transfer]
            failed += sum(1 for r in results if isinstance(r, Failed))
            skipped += sum(1 for r in results if isinstance(r, Skipped))
        return {
            'groups': len(self.groups),
            'downloaded': downloaded,
            'deleted': deleted,
            'failed': failed,
            'skipped': skipped,
            'consolidated_fields': consolidated,
            'bytes_backed_up': backed_up,
        }

    def by_group(self) -> Dict[str, GroupResult]:
        return {g.duplicate_id: g for g in self.groups}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'generated_at': self.generated_at,
            'dry_run': self.dry_run,
            'force_delete': self.force_delete,
            'totals': self.totals(),
            'groups': [g.to_dict() for g in self.groups],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExecutionReport':
        return cls(
            groups=[GroupResult.from_dict(g) for g in data.get('groups', [])],
            dry_run=bool(data.get('dry_run', False)),
            force_delete=bool(data.get('force_delete', False)),
            generated_at=data.get('generated_at', ''),
        )


# --- Verification ---

@dataclass
class GroupVerification:
    duplicate_id: str
    winner_id: str
    passed: bool = True
    skipped: bool = False
    anomalies: List[str] = field(default_factory=list)

    def fail(self, anomaly: str) -> None:
        self.passed = False
        self.anomalies.append(anomaly)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'duplicate_id': self.duplicate_id,
            'winner_id': self.winner_id,
            'passed': self.passed,
            'skipped': self.skipped,
            'anomalies': list(self.anomalies),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GroupVerification':
        return cls(
            duplicate_id=data['duplicate_id'],
            winner_id=data['winner_id'],
            passed=bool(data.get('passed', False)),
            skipped=bool(data.get('skipped', False)),
            anomalies=list(data.get('anomalies', [])),
        )


@dataclass
class VerificationReport:
    groups: List[GroupVerification] = field(default_factory=list)
    generated_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    @property
    def passed(self) -> int:
        return sum(1 for g in self.groups if g.passed and not g.skipped)

    @property
    def failed(self) -> int:
        return sum(1 for g in self.groups if not g.passed)

    @property
    def skipped(self) -> int:
        return sum(1 for g in self.groups if g.skipped)

    @property
    def anomaly_count(self) -> int:
        return sum(len(g.anomalies) for g in self.groups)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'generated_at': self.generated_at,
            'totals': {
                'groups': len(self.groups),
                'passed': self.passed,
                'failed': self.failed,
                'skipped': self.skipped,
                'anomalies': self.anomaly_count,
            },
            'groups': [g.to_dict() for g in self.groups],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VerificationReport':
        return cls(
            groups=[GroupVerification.from_dict(g) for g in data.get('groups', [])],
            generated_at=data.get('generated_at', ''),
        )
