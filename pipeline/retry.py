"""
Retry coordinator - re-drives FAILED downloads that are under the retry ceiling.
"""

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from ingestion.config import PipelineSettings
from pipeline.download_dag import DownloadOrchestrator
from storage.download_history import HistoryStatus, find_retryable


logger = logging.getLogger(__name__)


@dataclass
class RetrySummary:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False
    outcomes: Dict[str, HistoryStatus] = field(default_factory=dict)


class RetryCoordinator:

    def __init__(
        self,
        conn: sqlite3.Connection,
        settings: PipelineSettings,
        orchestrator: DownloadOrchestrator
    ):
        self.conn = conn
        self.settings = settings
        self.orchestrator = orchestrator

    def retry_failed_downloads(
        self,
        max_retries: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> RetrySummary:
        """
        Retry every FAILED record whose retry_count is below max_retries.

        Each retry that fails again bumps retry_count, so a record is tried
        at most max_retries more times. One record's error never stops the
        rest of the batch.

        Args:
            max_retries: Retry ceiling (defaults to settings.max_retries)
            cancel_event: Checked between records

        Returns:
            RetrySummary with per-accession outcomes
        """
        if max_retries is None:
            max_retries = self.settings.max_retries

        records = find_retryable(self.conn, max_retries)
        summary = RetrySummary()

        if not records:
            logger.info("No failed downloads to retry")
            return summary

        logger.info(f"Retrying {len(records)} failed downloads (max retries {max_retries})")

        for i, record in enumerate(records):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Retry run cancelled")
                summary.cancelled = True
                break

            if i > 0 and self.settings.retry_delay_seconds > 0:
                time.sleep(self.settings.retry_delay_seconds)

            accession_number = record['accession_number']
            try:
                status = self.orchestrator.retry_record(record, max_retries, cancel_event)
            except sqlite3.Error:
                raise
            except Exception as e:
                logger.error(f"Retry failed for {accession_number}: {e}")
                status = HistoryStatus.FAILED

            summary.outcomes[accession_number] = status
            if status == HistoryStatus.SKIPPED:
                summary.skipped += 1
                continue

            summary.attempted += 1
            if status == HistoryStatus.COMPLETED:
                summary.succeeded += 1
            else:
                summary.failed += 1

        logger.info(
            f"Retry finished: {summary.succeeded} succeeded, {summary.failed} failed, "
            f"{summary.skipped} skipped"
        )
        return summary
