"""
Document fetcher - resolves one filing's archive URL and downloads its raw text.
"""

import logging
import re
import threading
from typing import Optional

from ingestion.config import DEFAULT_ARCHIVES_BASE_URL
from ingestion.models import FilingReference
from ingestion.providers.sec_client import SecClient, SecClientError


logger = logging.getLogger(__name__)

ACCESSION_DIGITS = re.compile(r'^(\d{10})-?(\d{2})-?(\d{6})$')
INDEX_PAGE_PATTERN = re.compile(r'-index\.html?$', re.IGNORECASE)
DOCUMENT_SUFFIXES = ('.xml', '.txt', '.htm', '.html')

# Archive file to fetch per parser family. The complete submission text file
# exists for every filing and embeds the primary document and attachments.
FILENAME_CONVENTIONS = {
    'ownership': '{accession}.txt',
    'information_table': '{accession}.txt',
    'current_report': '{accession}.txt',
    'beneficial_ownership': '{accession}.txt',
}
DEFAULT_FILENAME = '{accession}.txt'


class DocumentFetchError(SecClientError):
    """Raised when a filing document cannot be resolved or retrieved."""
    pass


def parse_accession_number(value: str) -> str:
    """
    Normalize an accession number to NNNNNNNNNN-NN-NNNNNN.

    Raises:
        DocumentFetchError: If the value is not an accession number
    """
    match = ACCESSION_DIGITS.match((value or '').strip())
    if not match:
        raise DocumentFetchError(f"Invalid accession number format: {value}")
    return '-'.join(match.groups())


def build_document_url(
    accession_number: str,
    cik: Optional[str] = None,
    family: Optional[str] = None,
    base_url: str = DEFAULT_ARCHIVES_BASE_URL
) -> str:
    """
    Build the canonical archive URL for a filing.

    The path is {base}{cik}/{accession without dashes}/{filename}. When no
    filer CIK is known, the accession number's 10-digit prefix is used.
    """
    accession = parse_accession_number(accession_number)
    filer = cik if cik else accession.split('-')[0]
    try:
        filer = str(int(filer))
    except ValueError:
        raise DocumentFetchError(f"Invalid filer identifier: {cik}")

    filename = FILENAME_CONVENTIONS.get(family, DEFAULT_FILENAME).format(accession=accession)

    if not base_url.endswith('/'):
        base_url += '/'
    return f"{base_url}{filer}/{accession.replace('-', '')}/{filename}"


def resolve_document_url(
    reference: FilingReference,
    family: Optional[str] = None,
    base_url: str = DEFAULT_ARCHIVES_BASE_URL
) -> str:
    """
    Pick the URL to download for a feed reference.

    Index pages are swapped for the complete submission file, direct document
    links are kept, anything else is rebuilt from the accession number.
    """
    url = reference.document_url
    if url:
        if INDEX_PAGE_PATTERN.search(url):
            return INDEX_PAGE_PATTERN.sub('.txt', url)
        if url.lower().endswith(DOCUMENT_SUFFIXES):
            return url

    return build_document_url(reference.accession_number, reference.cik, family, base_url)


class DocumentFetcher:
    """Downloads one filing document per call. Never retries."""

    def __init__(self, client: SecClient, base_url: str = DEFAULT_ARCHIVES_BASE_URL):
        self.client = client
        self.base_url = base_url

    def resolve(self, reference: FilingReference, family: Optional[str] = None) -> str:
        return resolve_document_url(reference, family, self.base_url)

    def fetch(self, url: str, cancel_event: Optional[threading.Event] = None) -> str:
        """
        Fetch raw document text.

        Raises:
            DocumentFetchError: On any retrieval failure
        """
        try:
            return self.client.get_text(url, cancel_event)
        except DocumentFetchError:
            raise
        except SecClientError as e:
            raise DocumentFetchError(str(e)) from e
