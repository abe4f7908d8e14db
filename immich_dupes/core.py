import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import httpx

from . import config
from . import reporting
from .analysis.letterbox import find_letterbox_pairs
from .analysis.selection import analyze_groups
from .api.client import ImmichClient
from .execution.executor import ExecutionConfig, Executor
from .execution.restore import RestoreReport, Restorer
from .execution.results import ExecutionReport, VerificationReport
from .execution.verifier import Verifier
from .models import AnalysisReport, DuplicateAnalysis, LetterboxAnalysis


class ImmichDupesApp:
    """
    Runs each pipeline stage against one server: analyze -> execute -> verify,
    the letterbox variant of each, and restore.
    Every stage reads and writes its JSON artifact so stages can run apart.
    """

    def __init__(self, server_url: str, api_key: str,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.server_url = server_url
        self.api_key = api_key
        self.transport = transport

    def _client(self) -> ImmichClient:
        return ImmichClient(self.server_url, self.api_key, transport=self.transport)

    # --- Duplicates ---

    def analyze(self, output: Path,
                capture_time_tolerance: float = config.CAPTURE_TIME_TOLERANCE_SECONDS) -> AnalysisReport:
        report = asyncio.run(self._analyze(capture_time_tolerance))
        reporting.save_analysis(report, output)
        reporting.log_analysis_summary(report)
        return report

    async def _analyze(self, capture_time_tolerance: float) -> AnalysisReport:
        async with self._client() as client:
            logging.info(f"Fetching duplicate groups from {self.server_url}...")
            groups = await client.get_duplicates()

        logging.info(f"Server reported {len(groups)} duplicate groups")
        analyses, skipped = analyze_groups(groups, capture_time_tolerance)
        return AnalysisReport(groups=analyses, server_url=self.server_url, skipped_groups=skipped)

    def execute(self, analysis_path: Path, exec_config: ExecutionConfig,
                report_path: Path) -> ExecutionReport:
        analysis = reporting.load_analysis(analysis_path)
        return self._execute(analysis.groups, exec_config, report_path)

    def verify(self, analysis_path: Path, execution_report_path: Optional[Path],
               report_path: Path, exec_config: ExecutionConfig) -> VerificationReport:
        analysis = reporting.load_analysis(analysis_path)
        return self._verify(analysis.groups, execution_report_path, report_path, exec_config)

    # --- Letterbox ---

    def letterbox_analyze(self, output: Path) -> LetterboxAnalysis:
        result = asyncio.run(self._letterbox_analyze())
        reporting.save_letterbox_analysis(result, output)
        reporting.log_letterbox_summary(result)
        return result

    async def _letterbox_analyze(self) -> LetterboxAnalysis:
        async with self._client() as client:
            logging.info(f"Fetching asset inventory from {self.server_url}...")
            assets = [a async for a in client.iter_assets()]

        result = find_letterbox_pairs(assets)
        result.server_url = self.server_url
        return result

    def letterbox_execute(self, analysis_path: Path, exec_config: ExecutionConfig,
                          report_path: Path) -> ExecutionReport:
        pairs = reporting.load_letterbox_analysis(analysis_path)
        return self._execute(pairs.analyses(), exec_config, report_path)

    def letterbox_verify(self, analysis_path: Path, execution_report_path: Optional[Path],
                         report_path: Path, exec_config: ExecutionConfig) -> VerificationReport:
        pairs = reporting.load_letterbox_analysis(analysis_path)
        return self._verify(pairs.analyses(), execution_report_path, report_path, exec_config)

    # --- Restore ---

    def restore(self, backup_dir: Path, exec_config: ExecutionConfig) -> RestoreReport:
        result = asyncio.run(self._restore(backup_dir, exec_config))
        reporting.log_restore_summary(result)
        return result

    async def _restore(self, backup_dir: Path, exec_config: ExecutionConfig) -> RestoreReport:
        async with self._client() as client:
            return await Restorer(client, exec_config).restore(backup_dir)

    # --- Shared stages ---

    def _execute(self, analyses: List[DuplicateAnalysis], exec_config: ExecutionConfig,
                 report_path: Path) -> ExecutionReport:
        report = asyncio.run(self._run_executor(analyses, exec_config))
        reporting.save_execution_report(report, report_path)
        reporting.log_execution_summary(report)
        return report

    async def _run_executor(self, analyses: List[DuplicateAnalysis],
                            exec_config: ExecutionConfig) -> ExecutionReport:
        async with self._client() as client:
            return await Executor(client, exec_config).execute(analyses)

    def _verify(self, analyses: List[DuplicateAnalysis], execution_report_path: Optional[Path],
                report_path: Path, exec_config: ExecutionConfig) -> VerificationReport:
        executed = reporting.load_execution_report(execution_report_path) if execution_report_path else None
        report = asyncio.run(self._run_verifier(analyses, executed, exec_config))
        reporting.save_verification_report(report, report_path)
        reporting.log_verification_summary(report)
        return report

    async def _run_verifier(self, analyses: List[DuplicateAnalysis], executed: Optional[ExecutionReport],
                            exec_config: ExecutionConfig) -> VerificationReport:
        async with self._client() as client:
            verifier = Verifier(client,
                                requests_per_sec=exec_config.requests_per_sec,
                                max_concurrent=exec_config.max_concurrent,
                                show_progress=exec_config.show_progress)
            return await verifier.verify(analyses, executed)
