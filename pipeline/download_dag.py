"""
Download DAG - drives fetch → parse → persist for each filing.
Composes: Feed → Ledger (dedup) → Document fetch → Parser → Store → Ledger.

Every filing is independent and idempotent by accession number. Per-filing
failures are recorded in the download history and never abort a batch;
only configuration errors and database errors escape.
"""

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Callable, Dict, Any, Iterable, List, Optional

from ingestion.config import ConfigurationError, PipelineSettings
from ingestion.models import FilingReference
from ingestion.parsers import FormParser, get_parser, normalize_form_type
from ingestion.providers.document_fetcher import (
    DocumentFetchError,
    DocumentFetcher,
    build_document_url,
    parse_accession_number,
)
from ingestion.providers.feed_fetcher import FeedFetcher
from ingestion.rate_limiter import RateLimiterError
from storage import download_history as history
from storage.download_history import HistoryStatus
from storage.loaders import upsert_filing


logger = logging.getLogger(__name__)

EMPTY_RESPONSE = "empty response"
PARSE_FAILED = "parse returned null/invalid"


@dataclass
class DownloadSummary:
    """Counts for one batch call plus the outcome per accession number."""
    attempted: int = 0
    downloaded: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: bool = False
    outcomes: Dict[str, HistoryStatus] = field(default_factory=dict)

    def record(self, accession_number: str, status: HistoryStatus) -> None:
        self.attempted += 1
        if status == HistoryStatus.COMPLETED:
            self.downloaded += 1
        elif status == HistoryStatus.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
        self.outcomes[accession_number] = status

    def merge(self, other: 'DownloadSummary') -> None:
        self.attempted += other.attempted
        self.downloaded += other.downloaded
        self.skipped += other.skipped
        self.failed += other.failed
        self.cancelled = self.cancelled or other.cancelled
        self.outcomes.update(other.outcomes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'attempted': self.attempted,
            'downloaded': self.downloaded,
            'skipped': self.skipped,
            'failed': self.failed,
            'cancelled': self.cancelled,
        }


class DownloadOrchestrator:
    """
    Runs the per-filing state machine against one database connection.

    Not shared between threads: each job builds its own orchestrator on
    its own connection, while the SEC client and its rate limiter are shared.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        settings: PipelineSettings,
        feed_fetcher: FeedFetcher,
        document_fetcher: DocumentFetcher,
        parser_lookup: Callable[[str], FormParser] = get_parser
    ):
        self.conn = conn
        self.settings = settings
        self.feed_fetcher = feed_fetcher
        self.document_fetcher = document_fetcher
        self.parser_lookup = parser_lookup

    def process_reference(
        self,
        reference: FilingReference,
        cancel_event: Optional[threading.Event] = None
    ) -> HistoryStatus:
        """
        Run one filing through the state machine.

        Returns:
            SKIPPED if the accession number already had a history record,
            otherwise the terminal status of this attempt

        Raises:
            ConfigurationError: If no parser handles the form type
        """
        parser = self.parser_lookup(reference.form_type)
        url = self.document_fetcher.resolve(reference, parser.family)

        if not history.create_if_absent(self.conn, reference, source_url=url):
            logger.debug(f"Skipping {reference.accession_number}: already in download history")
            return HistoryStatus.SKIPPED

        return self._attempt(
            accession_number=reference.accession_number,
            form_type=reference.form_type,
            url=url,
            parser=parser,
            filing_date=reference.filing_date,
            increment_retry=False,
            cancel_event=cancel_event,
        )

    def retry_record(
        self,
        record: Dict[str, Any],
        max_retries: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> HistoryStatus:
        """
        Re-run a FAILED history record.

        The record is claimed atomically; if another job already claimed it,
        or it reached the retry ceiling, SKIPPED is returned.
        """
        if max_retries is None:
            max_retries = self.settings.max_retries

        accession_number = record['accession_number']
        parser = self.parser_lookup(record['form_type'])

        if not history.claim_for_retry(self.conn, accession_number, max_retries):
            logger.debug(f"{accession_number} is not retryable any more")
            return HistoryStatus.SKIPPED

        url = record.get('source_url') or build_document_url(
            accession_number, family=parser.family, base_url=self.settings.archives_base_url
        )

        return self._attempt(
            accession_number=accession_number,
            form_type=record['form_type'],
            url=url,
            parser=parser,
            filing_date=record.get('filing_date'),
            increment_retry=True,
            cancel_event=cancel_event,
        )

    def download_for_date(
        self,
        target_date: date,
        form_types: Optional[Iterable[str]] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> DownloadSummary:
        """Download every filing of the given form types filed on target_date."""
        form_types = self._form_types(form_types)
        logger.info(f"Downloading forms {', '.join(form_types)} filed on {target_date}")

        summary = DownloadSummary()
        for form_type in form_types:
            if summary.cancelled:
                break
            pages = self.feed_fetcher.iter_pages(form_type, target_date=target_date, cancel_event=cancel_event)
            for references in pages:
                self._process_batch(references, summary, cancel_event)
                if summary.cancelled:
                    break

        logger.info(f"Finished {target_date}: {summary.to_dict()}")
        return summary

    def download_for_date_range(
        self,
        start_date: date,
        end_date: date,
        form_types: Optional[Iterable[str]] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> DownloadSummary:
        """
        Download filings for every weekday in [start_date, end_date].

        Raises:
            ConfigurationError: If start_date is after end_date
        """
        if start_date > end_date:
            raise ConfigurationError(f"Start date {start_date} must be before or equal to end date {end_date}")

        form_types = self._form_types(form_types)
        summary = DownloadSummary()
        current = start_date
        first = True

        while current <= end_date:
            if current.weekday() < 5:
                if _is_cancelled(cancel_event):
                    summary.cancelled = True
                    break
                if not first:
                    self._pause(self.settings.batch_delay_seconds)
                first = False
                summary.merge(self.download_for_date(current, form_types, cancel_event))
            current += timedelta(days=1)

        logger.info(f"Finished {start_date} to {end_date}: {summary.to_dict()}")
        return summary

    def download_latest(
        self,
        max_count: int,
        form_types: Optional[Iterable[str]] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> DownloadSummary:
        """Download up to max_count of the most recent filings per form type."""
        if max_count <= 0:
            raise ConfigurationError(f"max_count must be positive, got {max_count}")

        form_types = self._form_types(form_types)
        logger.info(f"Downloading latest {max_count} filings for forms {', '.join(form_types)}")

        summary = DownloadSummary()
        for form_type in form_types:
            if summary.cancelled:
                break
            for references in self.feed_fetcher.iter_pages(form_type, count=max_count, cancel_event=cancel_event):
                self._process_batch(references, summary, cancel_event)
                if summary.cancelled:
                    break

        logger.info(f"Finished latest download: {summary.to_dict()}")
        return summary

    def download_by_accession_number(
        self,
        accession_number: str,
        form_type: str,
        cik: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> HistoryStatus:
        """
        Download one filing named directly by accession number.

        Raises:
            ConfigurationError: If the accession number or form type is invalid
        """
        try:
            accession_number = parse_accession_number(accession_number)
        except DocumentFetchError as e:
            raise ConfigurationError(str(e)) from e

        reference = FilingReference(
            accession_number=accession_number,
            form_type=normalize_form_type(form_type),
            filing_date=None,
            cik=cik,
        )
        status = self.process_reference(reference, cancel_event)
        logger.info(f"Accession {accession_number}: {status.value}")
        return status

    def _process_batch(
        self,
        references: List[FilingReference],
        summary: DownloadSummary,
        cancel_event: Optional[threading.Event]
    ) -> None:
        for reference in references:
            if _is_cancelled(cancel_event):
                logger.info("Download cancelled between filings")
                summary.cancelled = True
                return

            try:
                status = self.process_reference(reference, cancel_event)
            except sqlite3.Error:
                raise
            except Exception as e:
                logger.error(f"Error processing {reference.accession_number}: {e}")
                status = HistoryStatus.FAILED

            summary.record(reference.accession_number, status)

    def _attempt(
        self,
        accession_number: str,
        form_type: str,
        url: str,
        parser: FormParser,
        filing_date: Optional[date],
        increment_retry: bool,
        cancel_event: Optional[threading.Event]
    ) -> HistoryStatus:
        started = time.monotonic()
        history.mark_status(self.conn, accession_number, HistoryStatus.DOWNLOADING)

        try:
            return self._fetch_parse_store(
                accession_number, form_type, url, parser, filing_date, increment_retry, cancel_event, started
            )
        except Exception as e:
            # Only FAILED records are picked up by retry
            logger.error(f"Unexpected error for {accession_number}: {e}")
            self.conn.rollback()
            history.mark_failed(self.conn, accession_number, str(e) or type(e).__name__,
                                increment_retry=increment_retry)
            if isinstance(e, sqlite3.Error):
                raise
            return HistoryStatus.FAILED

    def _fetch_parse_store(
        self,
        accession_number: str,
        form_type: str,
        url: str,
        parser: FormParser,
        filing_date: Optional[date],
        increment_retry: bool,
        cancel_event: Optional[threading.Event],
        started: float
    ) -> HistoryStatus:
        try:
            raw = self.document_fetcher.fetch(url, cancel_event)
        except (DocumentFetchError, RateLimiterError) as e:
            logger.warning(f"Download failed for {accession_number}: {e}")
            history.mark_failed(self.conn, accession_number, str(e), increment_retry=increment_retry)
            return HistoryStatus.FAILED

        if not raw or not raw.strip():
            logger.warning(f"Empty response for {accession_number}")
            history.mark_failed(self.conn, accession_number, EMPTY_RESPONSE, increment_retry=increment_retry)
            return HistoryStatus.FAILED

        history.mark_status(self.conn, accession_number, HistoryStatus.PARSING)
        filing = parser.parse(raw, accession_number)

        if filing is None:
            history.mark_failed(self.conn, accession_number, PARSE_FAILED, increment_retry=increment_retry)
            return HistoryStatus.FAILED

        if not filing.form_type:
            filing.form_type = form_type

        upsert_filing(self.conn, filing, filing_date=filing_date, source_url=url)

        duration_ms = int((time.monotonic() - started) * 1000)
        history.mark_completed(self.conn, accession_number, duration_ms)
        logger.debug(f"Completed {accession_number} in {duration_ms}ms")
        return HistoryStatus.COMPLETED

    def _form_types(self, form_types: Optional[Iterable[str]]) -> List[str]:
        """Normalize and validate requested form types before any I/O."""
        selected = [normalize_form_type(f) for f in (form_types or self.settings.form_types)]
        for form_type in selected:
            self.parser_lookup(form_type)
        return selected

    def _pause(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


def _is_cancelled(cancel_event: Optional[threading.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()
