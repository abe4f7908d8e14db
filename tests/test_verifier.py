import asyncio

import pytest

from immich_dupes.api.client import ImmichClient
from immich_dupes.exceptions import AuthenticationError
from immich_dupes.execution.results import ExecutionReport, GroupResult, GroupState
from immich_dupes.execution.verifier import Verifier
from immich_dupes.models import (
    ConsolidatedValue,
    ConsolidationField,
    ConsolidationResult,
    DuplicateAnalysis,
    ScoredAsset,
)

from conftest import API_KEY, BASE_URL


def group(duplicate_id, winner_id, *loser_ids):
    return DuplicateAnalysis(
        duplicate_id=duplicate_id,
        winner=ScoredAsset(winner_id, f"{winner_id}.jpg"),
        losers=[ScoredAsset(l, f"{l}.jpg") for l in loser_ids],
    )


@pytest.fixture
def verify(fake):
    def run(analyses, execution_report=None):
        async def main():
            async with ImmichClient(BASE_URL, API_KEY, transport=fake.transport()) as client:
                verifier = Verifier(client, requests_per_sec=1000, show_progress=False)
                return await verifier.verify(analyses, execution_report)
        return asyncio.run(main())
    return run


def test_resolved_group_passes(fake, payload, verify):
    fake.add(payload("w"))
    fake.add(payload("trashed", is_trashed=True))
    # "purged" was force-deleted and answers 404

    report = verify([group("dup-1", "w", "trashed", "purged")])

    assert report.passed == 1
    assert report.groups[0].anomalies == []


def test_surviving_loser_is_an_anomaly(fake, payload, verify):
    fake.add(payload("w"))
    fake.add(payload("l"))

    report = verify([group("dup-1", "w", "l")])

    assert report.failed == 1
    assert "still exists" in report.groups[0].anomalies[0]


def test_missing_or_trashed_winner_is_an_anomaly(fake, payload, verify):
    fake.add(payload("w2", is_trashed=True))

    report = verify([group("dup-1", "w1"), group("dup-2", "w2")])

    assert "no longer exists" in report.groups[0].anomalies[0]
    assert "in the trash" in report.groups[1].anomalies[0]


def test_consolidated_values_are_checked(fake, payload, verify):
    fake.add(payload("w", lat=10.00004, lon=20.0, date_time_original="2024-01-01T00:00:00.400Z",
                     description="other"))
    executed = ExecutionReport(groups=[GroupResult(
        duplicate_id="dup-1",
        winner_id="w",
        state=GroupState.DONE,
        consolidation=ConsolidationResult([
            ConsolidatedValue(ConsolidationField.GPS, (10.0, 20.0), "l"),
            ConsolidatedValue(ConsolidationField.CAPTURE_TIME, "2024-01-01T00:00:00Z", "l"),
            ConsolidatedValue(ConsolidationField.DESCRIPTION, "expected", "l"),
        ]),
    )])

    report = verify([group("dup-1", "w")], executed)

    anomalies = report.groups[0].anomalies
    assert len(anomalies) == 1
    assert anomalies[0].startswith("description")


def test_executor_skipped_groups_are_reported_as_skipped(fake, payload, verify):
    fake.add(payload("w"))
    fake.add(payload("l"))
    executed = ExecutionReport(groups=[GroupResult("dup-1", "w", state=GroupState.SKIPPED)])

    report = verify([group("dup-1", "w", "l")], executed)

    assert report.skipped == 1
    assert report.failed == 0
    assert fake.calls == []


def test_auth_failure_aborts(fake, payload, verify):
    fake.add(payload("w"))
    fake.fail("GET", "/api/assets/w", 403)

    with pytest.raises(AuthenticationError):
        verify([group("dup-1", "w")])
