"""
Ownership form parser (Forms 3, 4, 5) for the structured XML encoding.

Reads the <ownershipDocument> block out of the complete submission text:
issuer, reporting owner(s) with relationship flags, Table I (non-derivative)
and Table II (derivative) rows, footnotes and remarks.
"""

import logging
from typing import List, Optional

from bs4 import BeautifulSoup

from ingestion.models import (
    DERIVATIVE,
    NON_DERIVATIVE,
    Issuer,
    OwnershipFiling,
    ReportingOwner,
    Transaction,
)
from ingestion.parsers.base import FormParser, extract_block, is_true, parse_date, parse_number
from ingestion.parsers.ownership_html import OwnershipHtmlParser, looks_like_html_ownership


logger = logging.getLogger(__name__)

OWNERSHIP_FORM_TYPES = ('3', '3/A', '4', '4/A', '5', '5/A')


class OwnershipXmlParser(FormParser):
    """Structured-markup ownership forms, with a legacy HTML fallback."""
    family = 'ownership'
    form_types = OWNERSHIP_FORM_TYPES

    def __init__(self, html_parser: Optional[OwnershipHtmlParser] = None):
        self.html_parser = html_parser or OwnershipHtmlParser()

    def _parse(self, raw: str, accession_number: str) -> Optional[OwnershipFiling]:
        block = extract_block(raw, 'ownershipDocument')
        if block is None:
            if looks_like_html_ownership(raw):
                logger.debug(f"No XML ownership block in {accession_number}, using HTML tables")
                return self.html_parser.parse(raw, accession_number)
            logger.warning(f"No ownershipDocument found for accession {accession_number}")
            return None

        soup = BeautifulSoup(block, 'xml')
        root = soup.find('ownershipDocument')
        if root is None:
            return None

        issuer_el = root.find('issuer')
        owner_els = root.find_all('reportingOwner')
        if issuer_el is None or not owner_els:
            logger.warning(f"Ownership document {accession_number} is missing issuer or reportingOwner")
            return None

        filing = OwnershipFiling(
            accession_number=accession_number,
            form_type=_text(root, 'documentType') or '',
            family=self.family,
            issuer=Issuer(
                cik=_text(issuer_el, 'issuerCik'),
                name=_text(issuer_el, 'issuerName'),
                trading_symbol=_text(issuer_el, 'issuerTradingSymbol'),
            ),
            period_of_report=parse_date(_text(root, 'periodOfReport')),
            reporting_owners=[_parse_owner(el) for el in owner_els],
            remarks=_text(root, 'remarks'),
            source_encoding='xml',
        )

        filing.transactions.extend(_parse_table(root, 'nonDerivativeTable', NON_DERIVATIVE, accession_number))
        filing.transactions.extend(_parse_table(root, 'derivativeTable', DERIVATIVE, accession_number))

        footnotes = root.find('footnotes')
        if footnotes is not None:
            for note in footnotes.find_all('footnote'):
                if note.get('id'):
                    filing.footnotes[note['id']] = note.get_text(' ', strip=True)

        logger.debug(
            f"Parsed form {filing.form_type} {accession_number}: "
            f"{len(filing.non_derivative_transactions)} non-derivative, "
            f"{len(filing.derivative_transactions)} derivative rows"
        )
        return filing


def _parse_owner(el) -> ReportingOwner:
    owner = ReportingOwner()

    owner_id = el.find('reportingOwnerId')
    if owner_id is not None:
        owner.cik = _text(owner_id, 'rptOwnerCik')
        owner.name = _text(owner_id, 'rptOwnerName')

    relationship = el.find('reportingOwnerRelationship')
    if relationship is not None:
        owner.is_director = is_true(_text(relationship, 'isDirector'))
        owner.is_officer = is_true(_text(relationship, 'isOfficer'))
        owner.is_ten_percent_owner = is_true(_text(relationship, 'isTenPercentOwner'))
        owner.is_other = is_true(_text(relationship, 'isOther'))
        owner.officer_title = _text(relationship, 'officerTitle')
        owner.other_text = _text(relationship, 'otherText')

    return owner


def _parse_table(root, table_tag: str, table: str, accession_number: str) -> List[Transaction]:
    table_el = root.find(table_tag)
    if table_el is None:
        return []

    prefix = 'nonDerivative' if table == NON_DERIVATIVE else 'derivative'
    rows = []

    for row_el in table_el.find_all([f'{prefix}Transaction', f'{prefix}Holding']):
        is_holding = row_el.name.endswith('Holding')
        transaction = _parse_row(row_el, table, is_holding)

        if not is_holding and transaction.shares is None:
            logger.warning(
                f"Dropping {table} row in {accession_number}: missing or non-numeric share amount"
            )
            continue

        rows.append(transaction)

    return rows


def _parse_row(row_el, table: str, is_holding: bool) -> Transaction:
    transaction = Transaction(
        table=table,
        security_title=_value(row_el, 'securityTitle'),
        transaction_date=parse_date(_value(row_el, 'transactionDate')),
        deemed_execution_date=parse_date(_value(row_el, 'deemedExecutionDate')),
        is_holding=is_holding,
    )

    coding = row_el.find('transactionCoding')
    if coding is not None:
        transaction.transaction_code = _text(coding, 'transactionCode')
        transaction.equity_swap_involved = is_true(_text(coding, 'equitySwapInvolved'))

    amounts = row_el.find('transactionAmounts')
    if amounts is not None:
        transaction.shares = parse_number(_value(amounts, 'transactionShares'))
        transaction.price_per_share = parse_number(_value(amounts, 'transactionPricePerShare'))
        transaction.acquired_disposed_code = _value(amounts, 'transactionAcquiredDisposedCode')

    post = row_el.find('postTransactionAmounts')
    if post is not None:
        transaction.shares_owned_following = parse_number(_value(post, 'sharesOwnedFollowingTransaction'))

    nature = row_el.find('ownershipNature')
    if nature is not None:
        transaction.direct_or_indirect = _value(nature, 'directOrIndirectOwnership')
        transaction.nature_of_ownership = _value(nature, 'natureOfOwnership')
        transaction.footnote_ids = [f['id'] for f in nature.find_all('footnoteId') if f.get('id')]

    if table == DERIVATIVE:
        transaction.conversion_or_exercise_price = parse_number(_value(row_el, 'conversionOrExercisePrice'))
        transaction.exercise_date = parse_date(_value(row_el, 'exerciseDate'))
        transaction.expiration_date = parse_date(_value(row_el, 'expirationDate'))
        underlying = row_el.find('underlyingSecurity')
        if underlying is not None:
            transaction.underlying_security_title = _value(underlying, 'underlyingSecurityTitle')
            transaction.underlying_security_shares = parse_number(
                _value(underlying, 'underlyingSecurityShares')
            )

    return transaction


def _text(parent, tag: str) -> Optional[str]:
    el = parent.find(tag)
    if el is None:
        return None
    text = el.get_text(' ', strip=True)
    return text or None


def _value(parent, tag: str) -> Optional[str]:
    """Read <tag><value>x</value></tag>, falling back to the tag's own text."""
    el = parent.find(tag)
    if el is None:
        return None
    value_el = el.find('value')
    text = (value_el if value_el is not None else el).get_text(' ', strip=True)
    return text or None
