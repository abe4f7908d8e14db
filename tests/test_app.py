import json

import pytest

from immich_dupes import main as cli
from immich_dupes.core import ImmichDupesApp
from immich_dupes.execution.executor import ExecutionConfig
from immich_dupes.execution.results import GroupState

from conftest import API_KEY, BASE_URL


@pytest.fixture
def app(fake):
    return ImmichDupesApp(BASE_URL, API_KEY, transport=fake.transport())


def test_analyze_execute_verify_pipeline(fake, payload, app, tmp_path):
    # Scenario: the biggest copy has no GPS, a smaller one does
    fake.add_group("dup-1",
                   payload("big", width=6000, height=4000, file_size=9_000_000),
                   payload("small", width=3000, height=2000, lat=35.0, lon=139.0,
                           date_time_original="2024-04-01T09:00:00Z"))
    # Scenario: two copies disagree on location
    fake.add_group("dup-2",
                   payload("a", width=4000, height=3000, lat=1.0, lon=1.0),
                   payload("b", width=2000, height=1500, lat=50.0, lon=50.0))

    analysis = app.analyze(tmp_path / "analysis.json")
    assert [g.winner.asset_id for g in analysis.groups] == ["big", "a"]
    assert analysis.needs_review_count == 1

    config = ExecutionConfig(requests_per_sec=1000, backup_dir=tmp_path / "backups",
                             skip_conflicts=True, show_progress=False)
    executed = app.execute(tmp_path / "analysis.json", config, tmp_path / "exec.json")
    assert [g.state for g in executed.groups] == [GroupState.DONE, GroupState.SKIPPED]
    assert fake.exif("big")["latitude"] == 35.0
    assert fake.exif("big")["dateTimeOriginal"] == "2024-04-01T09:00:00Z"

    verified = app.verify(tmp_path / "analysis.json", tmp_path / "exec.json",
                          tmp_path / "verify.json", config)
    assert verified.passed == 1
    assert verified.skipped == 1
    assert verified.failed == 0

    saved = json.loads((tmp_path / "verify.json").read_text())
    assert saved["totals"]["anomalies"] == 0


def test_letterbox_pipeline(fake, payload, app, tmp_path):
    common = dict(make="Apple", model="iPhone 14 Pro", date_time_original="2024-08-08T08:08:08.000Z",
                  lat=40.0, lon=-74.0)
    fake.add(payload("full", width=4032, height=3024, **common))
    fake.add(payload("crop", width=4032, height=2268, file_size=2_000, **common))
    fake.add(payload("other", width=4000, height=3000, make="Canon", model="R6"))

    result = app.letterbox_analyze(tmp_path / "lb.json")
    assert result.pairs_found == 1
    assert result.space_recoverable_bytes == 2_000

    config = ExecutionConfig(requests_per_sec=1000, backup_dir=tmp_path / "backups", show_progress=False)
    executed = app.letterbox_execute(tmp_path / "lb.json", config, tmp_path / "exec.json")
    assert executed.groups[0].deletes[0].asset_id == "crop"
    assert fake.assets["crop"]["isTrashed"] is True
    assert fake.assets["full"]["isTrashed"] is False

    verified = app.letterbox_verify(tmp_path / "lb.json", tmp_path / "exec.json", tmp_path / "v.json", config)
    assert verified.passed == 1


def test_parse_args_reads_environment(monkeypatch):
    monkeypatch.setenv("IMMICH_URL", "http://from-env")
    monkeypatch.setenv("IMMICH_API_KEY", "env-key")

    args = cli.parse_args(["execute", "--analysis", "a.json", "--force", "--rate", "2.5", "--dry-run"])
    config = cli.build_execution_config(args)

    assert args.url == "http://from-env"
    assert args.api_key == "env-key"
    assert config.force_delete and config.dry_run
    assert config.requests_per_sec == 2.5


def test_letterbox_subcommands_parse():
    args = cli.parse_args(["--url", "u", "--api-key", "k", "letterbox", "verify", "--execution-report", "e.json"])
    assert args.command == "letterbox"
    assert args.letterbox_command == "verify"
    assert str(args.execution_report) == "e.json"


def test_missing_api_key_exits_with_1(monkeypatch, tmp_path):
    monkeypatch.delenv("IMMICH_API_KEY", raising=False)
    with pytest.raises(SystemExit) as exc:
        cli.main(["--url", BASE_URL, "--log-dir", str(tmp_path), "analyze"])
    assert exc.value.code == 1


def test_authentication_error_exits_with_1(monkeypatch, tmp_path, fake):
    class FailingApp(ImmichDupesApp):
        def __init__(self, url, key):
            super().__init__(url, key, transport=fake.transport())

    monkeypatch.setattr(cli, "ImmichDupesApp", FailingApp)
    with pytest.raises(SystemExit) as exc:
        cli.main(["--url", BASE_URL, "--api-key", "wrong", "--log-dir", str(tmp_path),
                  "analyze", "--output", str(tmp_path / "a.json")])
    assert exc.value.code == 1
