"""
Legacy ownership form parser for the rendered HTML encoding.

Older Forms 3/4/5 (and the human-readable rendering of newer ones) carry the
two transaction tables as plain HTML. Cells are read by position.
"""

import logging
import re
from typing import Dict, List, Optional, Tuple

from bs4 import BeautifulSoup

from ingestion.models import (
    DERIVATIVE,
    NON_DERIVATIVE,
    Issuer,
    OwnershipFiling,
    ReportingOwner,
    Transaction,
)
from ingestion.parsers.base import FormParser, normalize_text, parse_date, parse_number


logger = logging.getLogger(__name__)

NON_DERIVATIVE_COLUMNS = 11
DERIVATIVE_COLUMNS = 16

BROWSE_LINK_PATTERN = re.compile(r'browse-edgar', re.IGNORECASE)
CIK_PARAM_PATTERN = re.compile(r'CIK=(\d+)', re.IGNORECASE)
TICKER_PATTERN = re.compile(r'\[\s*([A-Za-z0-9.\-]+)\s*\]')
DATE_PATTERN = re.compile(r'(\d{1,2}/\d{1,2}/\d{2,4}|\d{4}-\d{2}-\d{2})')
FORM_TYPE_PATTERN = re.compile(r'\bFORM\s+([345])\b', re.IGNORECASE)
FOOTNOTE_REF_PATTERN = re.compile(r'\(\s*(\d+)\s*\)')
FOOTNOTE_TEXT_PATTERN = re.compile(r'^\(?(\d+)\)?\.?\s*(.*)$', re.DOTALL)


def looks_like_html_ownership(raw: str) -> bool:
    """True when the text carries a rendered Table I or Table II."""
    return bool(re.search(r'Table\s+II?\s*-\s*(Non-)?Derivative', raw, re.IGNORECASE))


class OwnershipHtmlParser(FormParser):
    family = 'ownership_html'
    form_types = ()

    def _parse(self, raw: str, accession_number: str) -> Optional[OwnershipFiling]:
        soup = BeautifulSoup(raw, 'lxml')

        non_derivative_table, derivative_table = _find_tables(soup)
        if non_derivative_table is None and derivative_table is None:
            logger.warning(f"No Table I/Table II found in HTML ownership form {accession_number}")
            return None

        issuer, owner = _parse_parties(soup)
        page_text = soup.get_text(' ')
        form_match = FORM_TYPE_PATTERN.search(page_text)

        filing = OwnershipFiling(
            accession_number=accession_number,
            form_type=form_match.group(1) if form_match else '',
            family='ownership',
            issuer=issuer,
            period_of_report=_earliest_transaction_date(page_text),
            reporting_owners=[owner] if owner is not None else [],
            source_encoding='html',
        )

        if non_derivative_table is not None:
            filing.transactions.extend(_parse_non_derivative(non_derivative_table, accession_number))
        if derivative_table is not None:
            filing.transactions.extend(_parse_derivative(derivative_table, accession_number))

        filing.footnotes = _parse_footnotes(soup)
        return filing


def _find_tables(soup) -> Tuple[Optional[object], Optional[object]]:
    non_derivative = None
    derivative = None

    for table in soup.find_all('table'):
        # layout tables wrap the real ones; only look at leaf tables
        if table.find('table') is not None:
            continue
        text = normalize_text(table.get_text(' ')) or ''
        if derivative is None and 'Table II' in text and 'Derivative' in text:
            derivative = table
        elif non_derivative is None and 'Table I' in text and 'Non-Derivative' in text:
            non_derivative = table

    return non_derivative, derivative


def _body_rows(table) -> List[List[object]]:
    body = table.find('tbody')
    rows = (body or table).find_all('tr')
    return [row.find_all('td') for row in rows if row.find('th') is None]


def _cell(cells, index: int) -> Optional[str]:
    """Cell text without footnote markers."""
    if index >= len(cells):
        return None
    text = normalize_text(cells[index].get_text(' '))
    if text is None:
        return None
    return normalize_text(FOOTNOTE_REF_PATTERN.sub('', text))


def _row_footnote_ids(cells) -> List[str]:
    ids = []
    for sup in (s for c in cells for s in c.find_all('sup')):
        for number in FOOTNOTE_REF_PATTERN.findall(sup.get_text()):
            footnote_id = f"F{number}"
            if footnote_id not in ids:
                ids.append(footnote_id)
    return ids


def _parse_non_derivative(table, accession_number: str) -> List[Transaction]:
    transactions = []

    for cells in _body_rows(table):
        if len(cells) < NON_DERIVATIVE_COLUMNS:
            continue

        shares = parse_number(_cell(cells, 5))
        if shares is None or shares <= 0:
            logger.debug(f"Skipping Table I row without share amount in {accession_number}")
            continue

        transactions.append(Transaction(
            table=NON_DERIVATIVE,
            security_title=_cell(cells, 0),
            transaction_date=parse_date(_cell(cells, 1)),
            deemed_execution_date=parse_date(_cell(cells, 2)),
            transaction_code=_cell(cells, 3),
            equity_swap_involved=bool(_cell(cells, 4)),
            shares=shares,
            acquired_disposed_code=_cell(cells, 6),
            price_per_share=parse_number(_cell(cells, 7)),
            shares_owned_following=parse_number(_cell(cells, 8)),
            direct_or_indirect=_cell(cells, 9),
            nature_of_ownership=_cell(cells, 10),
            footnote_ids=_row_footnote_ids(cells),
        ))

    return transactions


def _parse_derivative(table, accession_number: str) -> List[Transaction]:
    transactions = []

    for cells in _body_rows(table):
        if len(cells) < DERIVATIVE_COLUMNS:
            continue

        acquired = parse_number(_cell(cells, 6))
        disposed = parse_number(_cell(cells, 7))
        if acquired is not None and acquired > 0:
            shares, code = acquired, 'A'
        elif disposed is not None and disposed > 0:
            shares, code = disposed, 'D'
        else:
            logger.debug(f"Skipping Table II row without share amount in {accession_number}")
            continue

        transactions.append(Transaction(
            table=DERIVATIVE,
            security_title=_cell(cells, 0),
            conversion_or_exercise_price=parse_number(_cell(cells, 1)),
            transaction_date=parse_date(_cell(cells, 2)),
            deemed_execution_date=parse_date(_cell(cells, 3)),
            transaction_code=_cell(cells, 4),
            equity_swap_involved=bool(_cell(cells, 5)),
            shares=shares,
            acquired_disposed_code=code,
            exercise_date=parse_date(_cell(cells, 8)),
            expiration_date=parse_date(_cell(cells, 9)),
            underlying_security_title=_cell(cells, 10),
            underlying_security_shares=parse_number(_cell(cells, 11)),
            price_per_share=parse_number(_cell(cells, 12)),
            shares_owned_following=parse_number(_cell(cells, 13)),
            direct_or_indirect=_cell(cells, 14),
            nature_of_ownership=_cell(cells, 15),
            footnote_ids=_row_footnote_ids(cells),
        ))

    return transactions


def _parse_parties(soup) -> Tuple[Issuer, Optional[ReportingOwner]]:
    """
    The issuer link is the browse-edgar link followed by "[TICKER]"; the first
    other browse-edgar link names the reporting person.
    """
    issuer = Issuer()
    owner = None

    for link in soup.find_all('a', href=BROWSE_LINK_PATTERN):
        name = normalize_text(link.get_text(' '))
        cik_match = CIK_PARAM_PATTERN.search(link['href'])
        cik = cik_match.group(1) if cik_match else None

        trailing = link.next_sibling
        trailing_text = trailing if isinstance(trailing, str) else ''
        ticker = TICKER_PATTERN.search(trailing_text or '')

        if ticker and issuer.name is None:
            issuer = Issuer(cik=cik, name=name, trading_symbol=ticker.group(1).upper())
        elif owner is None and cik:
            owner = ReportingOwner(cik=cik, name=name)

    return issuer, owner


def _earliest_transaction_date(page_text: str):
    text = normalize_text(page_text) or ''
    index = text.find('Date of Earliest Transaction')
    if index < 0:
        return None
    match = DATE_PATTERN.search(text, index)
    return parse_date(match.group(1)) if match else None


def _parse_footnotes(soup) -> Dict[str, str]:
    footnotes = {}
    for cell in soup.find_all('td', class_='FootnoteData'):
        text = normalize_text(cell.get_text(' '))
        if not text:
            continue
        match = FOOTNOTE_TEXT_PATTERN.match(text)
        if match:
            footnotes[f"F{match.group(1)}"] = match.group(2).strip()
    return footnotes
