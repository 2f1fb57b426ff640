"""
Form parser contract and shared value helpers.

Every parser turns raw document text into a ParsedFiling or returns None.
Malformed input never raises out of parse().
"""

import logging
import re
import unicodedata
from datetime import date, datetime
from typing import Optional, Tuple

from ingestion.models import ParsedFiling


logger = logging.getLogger(__name__)

NUMBER_CLEANUP = re.compile(r'[^0-9.\-]')
DATE_FORMATS = ('%Y-%m-%d', '%m/%d/%Y', '%m/%d/%y', '%m-%d-%Y', '%Y%m%d', '%B %d, %Y')


class FormParser:
    """
    Base class for one parser family.

    Subclasses set `family` and `form_types` and implement `_parse`.
    """
    family: str = ''
    form_types: Tuple[str, ...] = ()

    def parse(self, raw: Optional[str], accession_number: str) -> Optional[ParsedFiling]:
        """
        Parse raw document text.

        Args:
            raw: Document text as downloaded
            accession_number: Filing the document belongs to

        Returns:
            ParsedFiling, or None when the document is empty or malformed
        """
        if raw is None or not raw.strip():
            logger.warning(f"Empty document for accession {accession_number}")
            return None

        try:
            return self._parse(raw, accession_number)
        except Exception as e:
            logger.warning(f"{self.__class__.__name__} failed for {accession_number}: {e}")
            return None

    def _parse(self, raw: str, accession_number: str) -> Optional[ParsedFiling]:
        raise NotImplementedError


def parse_number(value: Optional[str]) -> Optional[float]:
    """Parse '1,234.50', '$12', '1,000(1)' style cells. Non-numeric gives None."""
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    # footnote markers like "1,000(1)"
    text = re.sub(r'\(\d+\)$', '', text)
    cleaned = NUMBER_CLEANUP.sub('', text)
    if cleaned in ('', '-', '.', '-.'):
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_int(value: Optional[str]) -> Optional[int]:
    number = parse_number(value)
    return int(number) if number is not None else None


def parse_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    # XML dates sometimes carry a timezone suffix: 2024-01-16-05:00
    text = text[:10] if re.match(r'^\d{4}-\d{2}-\d{2}', text) else text
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def is_true(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in ('1', 'true', 'x', 'y', 'yes')


def normalize_text(value: Optional[str]) -> Optional[str]:
    """NFKC-normalize, turn nbsp into spaces, collapse runs of whitespace."""
    if value is None:
        return None
    text = unicodedata.normalize('NFKC', value).replace('\u00a0', ' ')
    text = re.sub(r'[ \t\f\r]+', ' ', text)
    text = text.strip()
    return text or None


def extract_block(raw: str, tag: str) -> Optional[str]:
    """
    Cut the first <tag>...</tag> block out of a complete submission file.

    Tag matching is case-insensitive and tolerates namespace prefixes.
    """
    start = re.search(rf'<(?:\w+:)?{tag}[\s>]', raw, re.IGNORECASE)
    if not start:
        return None
    end = None
    for end in re.finditer(rf'</(?:\w+:)?{tag}\s*>', raw[start.start():], re.IGNORECASE):
        pass
    if end is None:
        return raw[start.start():]
    return raw[start.start():start.start() + end.end()]
