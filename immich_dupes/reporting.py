import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, TypeVar, Union

from .exceptions import AnalysisFormatError
from .execution.restore import RestoreReport
from .execution.results import ExecutionReport, VerificationReport
from .models import AnalysisReport, LetterboxAnalysis

T = TypeVar('T')
PathLike = Union[str, Path]


def write_json(path: PathLike, data: Dict[str, Any]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.write("\n")
    logging.info(f"Wrote {path}")
    return path


def _load(path: PathLike, parse: Callable[[Dict[str, Any]], T], kind: str) -> T:
    """Reads a JSON report; any shape problem becomes AnalysisFormatError."""
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise AnalysisFormatError(f"{kind} file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise AnalysisFormatError(f"{kind} file {path} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise AnalysisFormatError(f"{kind} file {path} must contain a JSON object")

    try:
        return parse(data)
    except AnalysisFormatError:
        raise
    except (KeyError, TypeError, ValueError, IndexError) as e:
        raise AnalysisFormatError(f"{kind} file {path} is malformed: {e!r}") from e


# --- Save / load ---

def save_analysis(report: AnalysisReport, path: PathLike) -> Path:
    return write_json(path, report.to_dict())


def load_analysis(path: PathLike) -> AnalysisReport:
    return _load(path, AnalysisReport.from_dict, "Analysis")


def save_letterbox_analysis(analysis: LetterboxAnalysis, path: PathLike) -> Path:
    return write_json(path, analysis.to_dict())


def load_letterbox_analysis(path: PathLike) -> LetterboxAnalysis:
    return _load(path, LetterboxAnalysis.from_dict, "Letterbox analysis")


def save_execution_report(report: ExecutionReport, path: PathLike) -> Path:
    return write_json(path, report.to_dict())


def load_execution_report(path: PathLike) -> ExecutionReport:
    return _load(path, ExecutionReport.from_dict, "Execution report")


def save_verification_report(report: VerificationReport, path: PathLike) -> Path:
    return write_json(path, report.to_dict())


def load_verification_report(path: PathLike) -> VerificationReport:
    return _load(path, VerificationReport.from_dict, "Verification report")


# --- Console summaries ---

def _size(num_bytes: int) -> str:
    size = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def log_analysis_summary(report: AnalysisReport) -> None:
    logging.info("--- Analysis Summary ---")
    logging.info(f"Groups:         {report.total_groups}")
    logging.info(f"Assets:         {report.total_assets}")
    logging.info(f"Needs review:   {report.needs_review_count}")
    logging.info(f"Skipped groups: {report.skipped_groups}")


def log_letterbox_summary(analysis: LetterboxAnalysis) -> None:
    logging.info("--- Letterbox Summary ---")
    logging.info(f"Assets scanned:       {analysis.total_assets_scanned}")
    logging.info(f"Pairs found:          {analysis.pairs_found}")
    logging.info(f"Space recoverable:    {_size(analysis.space_recoverable_bytes)}")
    logging.info(f"Other cameras:        {analysis.skipped_non_matching_camera}")
    logging.info(f"Missing fields:       {analysis.skipped_missing_fields}")
    logging.info(f"Ambiguous (assets):   {analysis.skipped_ambiguous}")
    logging.info(f"Unpaired groups:      {analysis.unpaired}")


def log_execution_summary(report: ExecutionReport) -> None:
    totals = report.totals()
    header = "--- Execution Summary (DRY RUN) ---" if report.dry_run else "--- Execution Summary ---"
    logging.info(header)
    logging.info(f"Groups:              {totals['groups']}")
    logging.info(f"Fields consolidated: {totals['consolidated_fields']}")
    logging.info(f"Backed up:           {totals['downloaded']} ({_size(totals['bytes_backed_up'])})")
    logging.info(f"Deleted:             {totals['deleted']}")
    logging.info(f"Skipped:             {totals['skipped']}")
    if totals['failed']:
        logging.warning(f"Failed:              {totals['failed']}")


def log_verification_summary(report: VerificationReport) -> None:
    logging.info("--- Verification Summary ---")
    logging.info(f"Passed:    {report.passed}")
    logging.info(f"Skipped:   {report.skipped}")
    if report.failed:
        logging.warning(f"Failed:    {report.failed} ({report.anomaly_count} anomalies)")
    else:
        logging.info("Failed:    0")


def log_restore_summary(report: RestoreReport) -> None:
    logging.info("--- Restore Summary (DRY RUN) ---" if report.dry_run else "--- Restore Summary ---")
    logging.info(f"Uploaded:        {len(report.uploaded)}")
    logging.info(f"Already present: {len(report.duplicates)}")
    if report.failed:
        logging.warning(f"Failed:          {len(report.failed)}")
