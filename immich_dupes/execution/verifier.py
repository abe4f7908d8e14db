import logging
from typing import Optional, Sequence

from .. import config
from ..analysis.consolidation import field_holds
from ..api.client import ImmichClient
from ..exceptions import AssetNotFoundError, AuthenticationError
from ..models import DuplicateAnalysis
from .executor import TRANSIENT_ERRORS
from .limits import Throttle, gather_in_order
from .results import (
    ExecutionReport,
    GroupResult,
    GroupState,
    GroupVerification,
    VerificationReport,
)


class Verifier:
    """
    Re-queries the server after a run and reports anything that does not
    look resolved. Read-only: it never repairs what it finds.
    """

    def __init__(self, client: ImmichClient, throttle: Optional[Throttle] = None,
                 requests_per_sec: float = config.DEFAULT_REQUESTS_PER_SEC,
                 max_concurrent: int = config.DEFAULT_MAX_CONCURRENT,
                 show_progress: bool = True):
        self.client = client
        self.throttle = throttle or Throttle(requests_per_sec, max_concurrent)
        self.show_progress = show_progress

    async def verify(self, analyses: Sequence[DuplicateAnalysis],
                     execution_report: Optional[ExecutionReport] = None) -> VerificationReport:
        executed = execution_report.by_group() if execution_report else {}
        groups = await gather_in_order(
            [self.verify_group(a, executed.get(a.duplicate_id)) for a in analyses],
            desc="Verifying", show_progress=self.show_progress)

        report = VerificationReport(groups=groups)
        logging.info(f"Verified {len(groups)} groups: {report.passed} passed, "
                     f"{report.failed} failed, {report.skipped} skipped")
        return report

    async def verify_group(self, analysis: DuplicateAnalysis,
                           executed: Optional[GroupResult] = None) -> GroupVerification:
        outcome = GroupVerification(analysis.duplicate_id, analysis.winner.asset_id)

        if executed is not None and executed.state is GroupState.SKIPPED:
            outcome.skipped = True
            return outcome

        # Winner must still be live
        winner = None
        try:
            winner = await self.throttle.run(self.client.get_asset, analysis.winner.asset_id)
        except AuthenticationError:
            raise
        except AssetNotFoundError:
            outcome.fail(f"winner {analysis.winner.asset_id} no longer exists")
        except TRANSIENT_ERRORS as e:
            outcome.fail(f"winner {analysis.winner.asset_id} could not be fetched: {e}")
        else:
            if winner.is_trashed:
                outcome.fail(f"winner {winner.id} is in the trash")

        # Losers must be gone
        for loser in analysis.losers:
            try:
                asset = await self.throttle.run(self.client.get_asset, loser.asset_id)
            except AuthenticationError:
                raise
            except AssetNotFoundError:
                continue
            except TRANSIENT_ERRORS as e:
                outcome.fail(f"loser {loser.asset_id} could not be fetched: {e}")
                continue
            if not asset.is_trashed:
                outcome.fail(f"loser {loser.asset_id} ({loser.filename}) still exists")

        # Consolidated values must have landed
        if winner is not None and executed is not None and executed.consolidation:
            for expected in executed.consolidation.values:
                ok, actual = field_holds(winner, expected,
                                         gps_tolerance=config.GPS_THRESHOLD,
                                         time_tolerance=config.VERIFY_CAPTURE_TIME_TOLERANCE_SECONDS)
                if not ok:
                    outcome.fail(f"{expected.field.value} on winner is {actual!r}, "
                                 f"expected {expected.value!r} from {expected.source_id}")

        if not outcome.passed:
            logging.warning(f"Group {analysis.duplicate_id}: {'; '.join(outcome.anomalies)}")
        return outcome
