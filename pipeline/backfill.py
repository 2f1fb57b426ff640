"""
Backfill engine - finds weekdays with no recorded intake and re-drives
the download orchestrator for them.
"""

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from ingestion.config import ConfigurationError, PipelineSettings
from pipeline.download_dag import DownloadOrchestrator, DownloadSummary
from storage.download_history import count_by_filing_date


logger = logging.getLogger(__name__)


@dataclass
class BackfillSummary:
    """Result of one backfill run."""
    dates_processed: List[date] = field(default_factory=list)
    dates_failed: Dict[date, str] = field(default_factory=dict)
    downloads: DownloadSummary = field(default_factory=DownloadSummary)
    cancelled: bool = False

    @property
    def total_downloaded(self) -> int:
        return self.downloads.downloaded


def weekdays_between(start_date: date, end_date: date) -> List[date]:
    days = []
    current = start_date
    while current <= end_date:
        if current.weekday() < 5:
            days.append(current)
        current += timedelta(days=1)
    return days


class BackfillEngine:

    def __init__(
        self,
        conn: sqlite3.Connection,
        settings: PipelineSettings,
        orchestrator: DownloadOrchestrator,
        today: Callable[[], date] = date.today
    ):
        self.conn = conn
        self.settings = settings
        self.orchestrator = orchestrator
        self.today = today

    def find_missing_dates(self, start_date: date, end_date: date) -> List[date]:
        """
        Weekdays in [start_date, end_date] with zero history records.

        Raises:
            ConfigurationError: If the range is invalid
        """
        self._validate_range(start_date, end_date)
        missing = [d for d in weekdays_between(start_date, end_date)
                   if count_by_filing_date(self.conn, d) == 0]
        logger.info(f"Found {len(missing)} missing dates between {start_date} and {end_date}")
        return missing

    def backfill_date_range(
        self,
        start_date: date,
        end_date: date,
        form_types: Optional[Iterable[str]] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> BackfillSummary:
        """
        Download every weekday in the range, in order.

        Raises:
            ConfigurationError: If the range is invalid
        """
        self._validate_range(start_date, end_date)
        logger.info(f"Backfilling {start_date} to {end_date}")
        return self._run(weekdays_between(start_date, end_date), form_types, cancel_event)

    def backfill_recent_days(
        self,
        days: int,
        form_types: Optional[Iterable[str]] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> BackfillSummary:
        """Backfill the last `days` days, ending today."""
        if days <= 0:
            raise ConfigurationError(f"days must be positive, got {days}")

        end_date = self.today()
        start_date = end_date - timedelta(days=days - 1)
        return self.backfill_date_range(start_date, end_date, form_types, cancel_event)

    def auto_backfill(
        self,
        form_types: Optional[Iterable[str]] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> BackfillSummary:
        """
        Fill missing dates over the configured lookback window.
        Does nothing when auto backfill is disabled.
        """
        if not self.settings.auto_backfill:
            logger.debug("Auto backfill is disabled")
            return BackfillSummary()

        end_date = self.today()
        start_date = end_date - timedelta(days=self.settings.max_backfill_days)

        missing = self.find_missing_dates(start_date, end_date)
        if not missing:
            logger.info("No missing dates found")
            return BackfillSummary()

        return self._run(missing, form_types, cancel_event)

    def _run(
        self,
        dates: List[date],
        form_types: Optional[Iterable[str]],
        cancel_event: Optional[threading.Event]
    ) -> BackfillSummary:
        summary = BackfillSummary()
        form_types = list(form_types) if form_types else None

        for i, target_date in enumerate(dates):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Backfill cancelled before {target_date}")
                summary.cancelled = True
                break

            if i > 0 and self.settings.batch_delay_seconds > 0:
                time.sleep(self.settings.batch_delay_seconds)

            try:
                day = self.orchestrator.download_for_date(target_date, form_types, cancel_event)
            except (ConfigurationError, sqlite3.Error):
                raise
            except Exception as e:
                logger.error(f"Backfill failed for {target_date}: {e}")
                summary.dates_failed[target_date] = str(e)
                continue

            summary.downloads.merge(day)
            summary.dates_processed.append(target_date)
            if day.cancelled:
                summary.cancelled = True
                break

        logger.info(
            f"Backfill finished: {len(summary.dates_processed)} dates, "
            f"{summary.total_downloaded} filings downloaded, "
            f"{len(summary.dates_failed)} dates failed"
        )
        return summary

    def _validate_range(self, start_date: date, end_date: date) -> None:
        if start_date > end_date:
            raise ConfigurationError(f"Start date {start_date} must be before or equal to end date {end_date}")
        if end_date > self.today():
            raise ConfigurationError(f"End date {end_date} cannot be in the future")
