"""
EDGAR "current filings" Atom feed - paging and entry decoding.

Turns feed pages into FilingReference tuples:
(accession_number, document_url, filing_date, form_type).
"""

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterator, List, Optional
from urllib.parse import quote

from bs4 import BeautifulSoup

from ingestion.config import PipelineSettings
from ingestion.models import FilingReference
from ingestion.providers.sec_client import SecClient, SecClientError
from ingestion.rate_limiter import RateLimiterError


logger = logging.getLogger(__name__)

ACCESSION_PATTERN = re.compile(r'(\d{10}-\d{2}-\d{6})')
ACC_NO_PATTERN = re.compile(r'AccNo:\s*(\d{10}-\d{2}-\d{6})', re.IGNORECASE)
FILED_PATTERN = re.compile(r'Filed:\s*(\d{4}-\d{2}-\d{2})', re.IGNORECASE)
CIK_IN_URL_PATTERN = re.compile(r'/data/(\d+)/')
TAG_PATTERN = re.compile(r'<[^>]+>')


@dataclass
class FeedPage:
    """
    Decoded feed page.

    entry_count and earliest_date cover every raw entry, before any
    date filtering or deduplication.
    """
    references: List[FilingReference] = field(default_factory=list)
    entry_count: int = 0
    earliest_date: Optional[date] = None


def feed_form_type(form_type: str) -> str:
    """EDGAR lists schedules with a space: 'SC13D/A' -> 'SC 13D/A'."""
    return re.sub(r'^(?:SC|SCHEDULE)\s*(13[DG])', r'SC \1', form_type)


def build_feed_url(
    template: str,
    form_type: str,
    start: int,
    count: int,
    target_date: Optional[date] = None
) -> str:
    """Fill the feed URL template; a date bound is appended as dateb=YYYYMMDD."""
    url = (
        template
        .replace('{type}', quote(feed_form_type(form_type)))
        .replace('{start}', str(start))
        .replace('{count}', str(count))
    )
    if target_date is not None:
        url += f"&dateb={target_date.strftime('%Y%m%d')}"
    return url


def parse_feed_page(
    xml: str,
    default_form_type: Optional[str] = None,
    target_date: Optional[date] = None
) -> FeedPage:
    """
    Decode one Atom feed page.

    Entries without an accession number are dropped. When target_date is
    given, entries filed on another date are dropped too (one page can span
    several days). The same accession number listed twice (issuer and
    reporting-owner views of one filing) is kept once.

    Args:
        xml: Raw feed document
        default_form_type: Form type to use when an entry carries none
        target_date: Optional filing date filter

    Returns:
        FeedPage with references in feed order
    """
    soup = BeautifulSoup(xml, 'xml')
    entries = soup.find_all('entry')

    page = FeedPage(entry_count=len(entries))
    seen = set()

    for entry in entries:
        summary_text = _summary_text(entry)

        accession_number = _extract_accession_number(entry, summary_text)
        if accession_number is None:
            logger.debug("Dropping feed entry without accession number")
            continue

        filing_date = _extract_filing_date(entry, summary_text)
        if filing_date is not None and (page.earliest_date is None or filing_date < page.earliest_date):
            page.earliest_date = filing_date

        if target_date is not None and filing_date != target_date:
            continue

        if accession_number in seen:
            continue
        seen.add(accession_number)

        link = entry.find('link')
        document_url = link.get('href') if link is not None else None
        if document_url is None:
            filing_href = entry.find('filing-href')
            document_url = filing_href.get_text(strip=True) if filing_href else None

        cik = None
        if document_url:
            match = CIK_IN_URL_PATTERN.search(document_url)
            if match:
                cik = match.group(1)

        page.references.append(FilingReference(
            accession_number=accession_number,
            form_type=_extract_form_type(entry) or default_form_type or '',
            filing_date=filing_date,
            document_url=document_url,
            cik=cik,
            company_name=_extract_company_name(entry),
        ))

    return page


def parse_feed_entries(
    xml: str,
    default_form_type: Optional[str] = None,
    target_date: Optional[date] = None
) -> List[FilingReference]:
    """Decode a feed page and return only its references."""
    return parse_feed_page(xml, default_form_type, target_date).references


class FeedFetcher:
    """Pages through the current-filings feed for one form type at a time."""

    def __init__(self, client: SecClient, settings: PipelineSettings):
        self.client = client
        self.settings = settings

    def iter_pages(
        self,
        form_type: str,
        target_date: Optional[date] = None,
        start: int = 0,
        count: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> Iterator[List[FilingReference]]:
        """
        Yield one list of references per feed page.

        Paging stops when a page holds zero entries or fewer than requested,
        when `count` entries have been read (None reads to the end), when a
        date-bounded page reaches filings older than target_date, or when a
        page fails to load. A failed page never raises; whatever was already
        yielded stands.
        """
        remaining = count
        current_start = start

        while remaining is None or remaining > 0:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Feed paging for form {form_type} cancelled")
                return

            page_size = self.settings.batch_size if remaining is None else min(remaining, self.settings.batch_size)
            url = build_feed_url(self.settings.feed_url, form_type, current_start, page_size, target_date)

            logger.debug(f"Fetching form {form_type} feed: start={current_start}, count={page_size}")

            try:
                xml = self.client.get_text(url, cancel_event)
            except SecClientError as e:
                logger.error(f"Feed page failed for form {form_type} at start={current_start}: {e}")
                return
            except RateLimiterError as e:
                logger.info(f"Feed paging for form {form_type} stopped: {e}")
                return

            if not xml or not xml.strip():
                logger.warning(f"Empty feed response for form {form_type}")
                return

            page = parse_feed_page(xml, default_form_type=form_type, target_date=target_date)

            if page.entry_count == 0:
                logger.debug(f"No more form {form_type} entries in feed")
                return

            logger.debug(
                f"Feed page for form {form_type}: {page.entry_count} entries, "
                f"{len(page.references)} kept"
            )
            yield page.references

            if page.entry_count < page_size:
                return

            if target_date is not None and page.earliest_date is not None and page.earliest_date < target_date:
                logger.debug(f"Form {form_type} feed is past {target_date}, stopping")
                return

            current_start += page_size
            if remaining is not None:
                remaining -= page.entry_count
                if remaining <= 0:
                    return

            if self.settings.batch_delay_seconds > 0:
                time.sleep(self.settings.batch_delay_seconds)

    def fetch_references(
        self,
        form_type: str,
        target_date: Optional[date] = None,
        start: int = 0,
        count: Optional[int] = None
    ) -> List[FilingReference]:
        """Collect every page into one list (count=None reads one full page)."""
        if count is None:
            count = self.settings.batch_size
        references = []
        for page in self.iter_pages(form_type, target_date, start, count):
            references.extend(page)
        return references


def _summary_text(entry) -> str:
    summary = entry.find('summary')
    if summary is None:
        return ''
    return TAG_PATTERN.sub(' ', summary.get_text(' '))


def _extract_accession_number(entry, summary_text: str) -> Optional[str]:
    tag = entry.find('accession-number')
    if tag is not None:
        match = ACCESSION_PATTERN.search(tag.get_text(strip=True))
        if match:
            return match.group(1)

    entry_id = entry.find('id')
    if entry_id is not None:
        text = entry_id.get_text(strip=True)
        if 'accession-number=' in text:
            match = ACCESSION_PATTERN.search(text)
            if match:
                return match.group(1)

    match = ACC_NO_PATTERN.search(summary_text)
    if match:
        return match.group(1)

    return None


def _extract_filing_date(entry, summary_text: str) -> Optional[date]:
    tag = entry.find('filing-date')
    if tag is not None:
        parsed = _parse_iso_date(tag.get_text(strip=True))
        if parsed is not None:
            return parsed

    match = FILED_PATTERN.search(summary_text)
    if match:
        return _parse_iso_date(match.group(1))

    updated = entry.find('updated')
    if updated is not None:
        return _parse_iso_date(updated.get_text(strip=True)[:10])

    return None


def _extract_form_type(entry) -> Optional[str]:
    tag = entry.find('filing-type')
    if tag is not None and tag.get_text(strip=True):
        return tag.get_text(strip=True)

    category = entry.find('category')
    if category is not None and category.get('term'):
        return category.get('term').strip()

    return None


def _extract_company_name(entry) -> Optional[str]:
    title = entry.find('title')
    if title is None:
        return None
    # "4 - Doe John (0001234567) (Reporting)"
    text = title.get_text(strip=True)
    if ' - ' in text:
        text = text.split(' - ', 1)[1]
    text = re.sub(r'\s*\(\d{10}\).*$', '', text)
    return text or None


def _parse_iso_date(value: str) -> Optional[date]:
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except (ValueError, TypeError):
        return None
