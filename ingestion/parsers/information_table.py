"""
13F-HR information table parser.

The complete submission carries two XML documents: the cover page
(<edgarSubmission>) and the information table (<informationTable>).
"""

import logging
from typing import Optional

from bs4 import BeautifulSoup

from ingestion.models import Holding, HoldingsFiling, Issuer
from ingestion.parsers.base import FormParser, extract_block, parse_date, parse_int, parse_number


logger = logging.getLogger(__name__)


class InformationTableParser(FormParser):
    family = 'information_table'
    form_types = ('13F-HR', '13F-HR/A')

    def _parse(self, raw: str, accession_number: str) -> Optional[HoldingsFiling]:
        block = extract_block(raw, 'informationTable')
        if block is None:
            logger.warning(f"No informationTable found for accession {accession_number}")
            return None

        soup = BeautifulSoup(block, 'xml')
        holdings = [_parse_holding(entry) for entry in soup.find_all('infoTable')]

        if not holdings:
            logger.warning(f"Information table for {accession_number} has no holdings")
            return None

        filing = HoldingsFiling(
            accession_number=accession_number,
            form_type='13F-HR',
            family=self.family,
            holdings=holdings,
        )
        _apply_cover_page(filing, raw)

        logger.debug(
            f"Parsed 13F {accession_number}: {len(holdings)} holdings, "
            f"total value {filing.total_value:,}"
        )
        return filing


def _parse_holding(entry) -> Holding:
    holding = Holding(
        name_of_issuer=_text(entry, 'nameOfIssuer'),
        title_of_class=_text(entry, 'titleOfClass'),
        cusip=_text(entry, 'cusip'),
        value=parse_int(_text(entry, 'value')),
        put_call=_text(entry, 'putCall'),
        investment_discretion=_text(entry, 'investmentDiscretion'),
    )

    amount = entry.find('shrsOrPrnAmt')
    if amount is not None:
        holding.shares = parse_number(_text(amount, 'sshPrnamt'))
        holding.share_type = _text(amount, 'sshPrnamtType')

    voting = entry.find('votingAuthority')
    if voting is not None:
        holding.voting_sole = parse_int(_text(voting, 'Sole'))
        holding.voting_shared = parse_int(_text(voting, 'Shared'))
        holding.voting_none = parse_int(_text(voting, 'None'))

    return holding


def _apply_cover_page(filing: HoldingsFiling, raw: str) -> None:
    block = extract_block(raw, 'edgarSubmission')
    if block is None:
        return

    soup = BeautifulSoup(block, 'xml')

    submission_type = soup.find('submissionType')
    if submission_type is not None and submission_type.get_text(strip=True):
        filing.form_type = submission_type.get_text(strip=True)

    credentials = soup.find('credentials')
    if credentials is not None:
        filing.filer_cik = _text(credentials, 'cik')

    cover = soup.find('coverPage')
    if cover is not None:
        filing.report_period = parse_date(_text(cover, 'reportCalendarOrQuarter'))
        manager = cover.find('filingManager')
        if manager is not None:
            filing.filer_name = _text(manager, 'name')

    filing.period_of_report = filing.report_period
    filing.issuer = Issuer(cik=filing.filer_cik, name=filing.filer_name)


def _text(parent, tag: str) -> Optional[str]:
    el = parent.find(tag)
    if el is None:
        return None
    text = el.get_text(strip=True)
    return text or None
