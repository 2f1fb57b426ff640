"""
Tests for ownership form parsers (Forms 3/4/5) - XML and legacy HTML encodings.
"""

import pytest
from datetime import date

from ingestion.models import DERIVATIVE, NON_DERIVATIVE, OwnershipFiling
from ingestion.parsers import OwnershipHtmlParser, OwnershipXmlParser


ACCESSION = '0001127602-24-008765'

FORM4_SUBMISSION = """<SEC-DOCUMENT>0001127602-24-008765.txt : 20240315
<SEC-HEADER>0001127602-24-008765.hdr.sgml : 20240315
ACCESSION NUMBER:		0001127602-24-008765
CONFORMED SUBMISSION TYPE:	4
</SEC-HEADER>
<DOCUMENT>
<TYPE>4
<SEQUENCE>1
<FILENAME>wf-form4_171053.xml
<TEXT>
<XML>
<?xml version="1.0"?>
<ownershipDocument>
    <schemaVersion>X0508</schemaVersion>
    <documentType>4</documentType>
    <periodOfReport>2024-03-13</periodOfReport>
    <issuer>
        <issuerCik>0000320193</issuerCik>
        <issuerName>Apple Inc.</issuerName>
        <issuerTradingSymbol>AAPL</issuerTradingSymbol>
    </issuer>
    <reportingOwner>
        <reportingOwnerId>
            <rptOwnerCik>0001214156</rptOwnerCik>
            <rptOwnerName>COOK TIMOTHY D</rptOwnerName>
        </reportingOwnerId>
        <reportingOwnerRelationship>
            <isDirector>1</isDirector>
            <isOfficer>1</isOfficer>
            <isTenPercentOwner>0</isTenPercentOwner>
            <isOther>0</isOther>
            <officerTitle>Chief Executive Officer</officerTitle>
        </reportingOwnerRelationship>
    </reportingOwner>
    <reportingOwner>
        <reportingOwnerId>
            <rptOwnerCik>0001999999</rptOwnerCik>
            <rptOwnerName>COOK FAMILY TRUST</rptOwnerName>
        </reportingOwnerId>
        <reportingOwnerRelationship>
            <isTenPercentOwner>true</isTenPercentOwner>
        </reportingOwnerRelationship>
    </reportingOwner>
    <nonDerivativeTable>
        <nonDerivativeTransaction>
            <securityTitle><value>Common Stock</value></securityTitle>
            <transactionDate><value>2024-03-13</value></transactionDate>
            <transactionCoding>
                <transactionFormType>4</transactionFormType>
                <transactionCode>S</transactionCode>
                <equitySwapInvolved>0</equitySwapInvolved>
            </transactionCoding>
            <transactionAmounts>
                <transactionShares><value>1000</value></transactionShares>
                <transactionPricePerShare><value>171.25</value><footnoteId id="F1"/></transactionPricePerShare>
                <transactionAcquiredDisposedCode><value>D</value></transactionAcquiredDisposedCode>
            </transactionAmounts>
            <postTransactionAmounts>
                <sharesOwnedFollowingTransaction><value>3280180</value></sharesOwnedFollowingTransaction>
            </postTransactionAmounts>
            <ownershipNature>
                <directOrIndirectOwnership><value>D</value></directOrIndirectOwnership>
            </ownershipNature>
        </nonDerivativeTransaction>
        <nonDerivativeTransaction>
            <securityTitle><value>Common Stock</value></securityTitle>
            <transactionDate><value>2024-03-13</value></transactionDate>
            <transactionCoding><transactionCode>S</transactionCode></transactionCoding>
            <transactionAmounts>
                <transactionShares><value>see remarks</value></transactionShares>
                <transactionAcquiredDisposedCode><value>D</value></transactionAcquiredDisposedCode>
            </transactionAmounts>
        </nonDerivativeTransaction>
        <nonDerivativeTransaction>
            <securityTitle><value>Common Stock</value></securityTitle>
            <transactionDate><value>2024-03-13-05:00</value></transactionDate>
            <transactionCoding><transactionCode>G</transactionCode></transactionCoding>
            <transactionAmounts>
                <transactionShares><value>2,500</value></transactionShares>
                <transactionPricePerShare><value>0</value></transactionPricePerShare>
                <transactionAcquiredDisposedCode><value>D</value></transactionAcquiredDisposedCode>
            </transactionAmounts>
            <postTransactionAmounts>
                <sharesOwnedFollowingTransaction><value>3277680</value></sharesOwnedFollowingTransaction>
            </postTransactionAmounts>
            <ownershipNature>
                <directOrIndirectOwnership><value>I</value></directOrIndirectOwnership>
                <natureOfOwnership><value>By Trust</value><footnoteId id="F2"/></natureOfOwnership>
            </ownershipNature>
        </nonDerivativeTransaction>
        <nonDerivativeHolding>
            <securityTitle><value>Common Stock</value></securityTitle>
            <postTransactionAmounts>
                <sharesOwnedFollowingTransaction><value>5000</value></sharesOwnedFollowingTransaction>
            </postTransactionAmounts>
            <ownershipNature>
                <directOrIndirectOwnership><value>I</value></directOrIndirectOwnership>
                <natureOfOwnership><value>By Spouse</value></natureOfOwnership>
            </ownershipNature>
        </nonDerivativeHolding>
    </nonDerivativeTable>
    <derivativeTable>
        <derivativeTransaction>
            <securityTitle><value>Restricted Stock Unit</value></securityTitle>
            <conversionOrExercisePrice><footnoteId id="F3"/></conversionOrExercisePrice>
            <transactionDate><value>2024-03-13</value></transactionDate>
            <transactionCoding><transactionCode>M</transactionCode></transactionCoding>
            <transactionAmounts>
                <transactionShares><value>4000</value></transactionShares>
                <transactionPricePerShare><value>0</value></transactionPricePerShare>
                <transactionAcquiredDisposedCode><value>D</value></transactionAcquiredDisposedCode>
            </transactionAmounts>
            <exerciseDate><footnoteId id="F4"/></exerciseDate>
            <expirationDate><value>2026-10-01</value></expirationDate>
            <underlyingSecurity>
                <underlyingSecurityTitle><value>Common Stock</value></underlyingSecurityTitle>
                <underlyingSecurityShares><value>4000</value></underlyingSecurityShares>
            </underlyingSecurity>
            <postTransactionAmounts>
                <sharesOwnedFollowingTransaction><value>12000</value></sharesOwnedFollowingTransaction>
            </postTransactionAmounts>
            <ownershipNature>
                <directOrIndirectOwnership><value>D</value></directOrIndirectOwnership>
            </ownershipNature>
        </derivativeTransaction>
    </derivativeTable>
    <footnotes>
        <footnote id="F1">Weighted average price.</footnote>
        <footnote id="F2">Shares held by a family trust.</footnote>
    </footnotes>
    <remarks>Sale under a 10b5-1 plan.</remarks>
</ownershipDocument>
</XML>
</TEXT>
</DOCUMENT>
</SEC-DOCUMENT>
"""

TABLE_I = """
<table>
  <thead>
    <tr><th colspan="11">Table I - Non-Derivative Securities Acquired, Disposed of, or Beneficially Owned</th></tr>
  </thead>
  <tbody>
    <tr><td>Common Stock</td><td>03/13/2024</td><td></td><td>S</td><td></td>
        <td>1,000</td><td>D</td><td>$171.25<sup>(1)</sup></td><td>3,280,180</td><td>D</td><td></td></tr>
    <tr><td>Common Stock</td><td>03/13/2024</td><td></td><td>S</td><td></td>
        <td>N/A</td><td>D</td><td>$171.00</td><td>3,280,180</td><td>D</td><td></td></tr>
    <tr><td>Common Stock</td><td>03/13/2024</td><td></td><td>S</td><td></td>
        <td>0</td><td>D</td><td>$171.00</td><td>3,280,180</td><td>D</td><td></td></tr>
    <tr><td>Short row</td><td>03/13/2024</td></tr>
    <tr><td>Common Stock</td><td>03/14/2024</td><td></td><td>G</td><td></td>
        <td>2,500</td><td>D</td><td>$0</td><td>3,277,680</td><td>I</td><td>By Trust<sup>(2)</sup></td></tr>
  </tbody>
</table>
"""

TABLE_II = """
<table>
  <thead>
    <tr><th colspan="16">Table II - Derivative Securities Acquired, Disposed of, or Beneficially Owned</th></tr>
  </thead>
  <tbody>
    <tr><td>Restricted Stock Unit</td><td>(3)</td><td>03/13/2024</td><td></td><td>M</td><td></td>
        <td></td><td>4,000</td><td>(4)</td><td>10/01/2026</td><td>Common Stock</td><td>4,000</td>
        <td>$0</td><td>12,000</td><td>D</td><td></td></tr>
    <tr><td>Stock Option</td><td>$50.00</td><td>03/13/2024</td><td></td><td>A</td><td></td>
        <td></td><td></td><td>03/13/2025</td><td>03/13/2034</td><td>Common Stock</td><td>1,000</td>
        <td>$0</td><td>1,000</td><td>D</td><td></td></tr>
  </tbody>
</table>
"""

LEGACY_HTML_FORM4 = f"""<html><body>
<span>FORM 4</span>
<table><tr><td>
  1. Name and Address of Reporting Person
  <a href="/cgi-bin/browse-edgar?action=getcompany&amp;CIK=0001214156">COOK TIMOTHY D</a>
</td><td>
  2. Issuer Name and Ticker or Trading Symbol
  <a href="/cgi-bin/browse-edgar?action=getcompany&amp;CIK=0000320193">Apple Inc.</a> [ AAPL ]
</td><td>
  3. Date of Earliest Transaction (Month/Day/Year) <span>03/13/2024</span>
</td></tr></table>
{TABLE_I}
{TABLE_II}
<table>
  <tr><td class="FootnoteData">1. Weighted average price.</td></tr>
  <tr><td class="FootnoteData">2. Shares held by a family trust.</td></tr>
</table>
</body></html>
"""


@pytest.fixture
def xml_parser():
    return OwnershipXmlParser()


class TestOwnershipXmlParser:
    """Tests for structured XML ownership documents."""

    def test_parses_issuer_and_period(self, xml_parser):
        filing = xml_parser.parse(FORM4_SUBMISSION, ACCESSION)

        assert isinstance(filing, OwnershipFiling)
        assert filing.accession_number == ACCESSION
        assert filing.form_type == '4'
        assert filing.family == 'ownership'
        assert filing.source_encoding == 'xml'
        assert filing.issuer.cik == '0000320193'
        assert filing.issuer.name == 'Apple Inc.'
        assert filing.issuer.trading_symbol == 'AAPL'
        assert filing.period_of_report == date(2024, 3, 13)

    def test_keeps_every_reporting_owner(self, xml_parser):
        filing = xml_parser.parse(FORM4_SUBMISSION, ACCESSION)

        assert len(filing.reporting_owners) == 2
        owner = filing.primary_owner
        assert owner.name == 'COOK TIMOTHY D'
        assert owner.cik == '0001214156'
        assert owner.is_director is True
        assert owner.is_officer is True
        assert owner.is_ten_percent_owner is False
        assert owner.officer_title == 'Chief Executive Officer'
        assert owner.owner_type == 'Director'
        assert filing.reporting_owners[1].is_ten_percent_owner is True

    def test_non_numeric_share_row_dropped_later_rows_kept(self, xml_parser):
        filing = xml_parser.parse(FORM4_SUBMISSION, ACCESSION)

        rows = filing.non_derivative_transactions
        # two trades survive plus the holding row; the "see remarks" row is gone
        assert len(rows) == 3
        assert [r.shares for r in rows if not r.is_holding] == [1000.0, 2500.0]

    def test_non_derivative_columns(self, xml_parser):
        filing = xml_parser.parse(FORM4_SUBMISSION, ACCESSION)

        sale = filing.non_derivative_transactions[0]
        assert sale.table == NON_DERIVATIVE
        assert sale.security_title == 'Common Stock'
        assert sale.transaction_date == date(2024, 3, 13)
        assert sale.transaction_code == 'S'
        assert sale.equity_swap_involved is False
        assert sale.acquired_disposed_code == 'D'
        assert sale.price_per_share == 171.25
        assert sale.shares_owned_following == 3280180.0
        assert sale.direct_or_indirect == 'D'
        assert sale.value == pytest.approx(171250.0)

        gift = filing.non_derivative_transactions[1]
        assert gift.transaction_date == date(2024, 3, 13)
        assert gift.nature_of_ownership == 'By Trust'
        assert gift.footnote_ids == ['F2']

    def test_holding_rows_are_flagged(self, xml_parser):
        filing = xml_parser.parse(FORM4_SUBMISSION, ACCESSION)

        holdings = [r for r in filing.transactions if r.is_holding]
        assert len(holdings) == 1
        assert holdings[0].shares is None
        assert holdings[0].shares_owned_following == 5000.0
        assert holdings[0].nature_of_ownership == 'By Spouse'

    def test_derivative_columns(self, xml_parser):
        filing = xml_parser.parse(FORM4_SUBMISSION, ACCESSION)

        assert len(filing.derivative_transactions) == 1
        rsu = filing.derivative_transactions[0]
        assert rsu.table == DERIVATIVE
        assert rsu.is_derivative is True
        assert rsu.security_title == 'Restricted Stock Unit'
        assert rsu.conversion_or_exercise_price is None
        assert rsu.exercise_date is None
        assert rsu.expiration_date == date(2026, 10, 1)
        assert rsu.underlying_security_title == 'Common Stock'
        assert rsu.underlying_security_shares == 4000.0
        assert rsu.shares == 4000.0

    def test_footnotes_and_remarks(self, xml_parser):
        filing = xml_parser.parse(FORM4_SUBMISSION, ACCESSION)

        assert filing.footnotes == {
            'F1': 'Weighted average price.',
            'F2': 'Shares held by a family trust.',
        }
        assert filing.remarks == 'Sale under a 10b5-1 plan.'

    def test_missing_issuer_returns_none(self, xml_parser):
        raw = """<ownershipDocument>
            <documentType>4</documentType>
            <reportingOwner><reportingOwnerId><rptOwnerCik>1</rptOwnerCik></reportingOwnerId></reportingOwner>
        </ownershipDocument>"""

        assert xml_parser.parse(raw, ACCESSION) is None

    def test_missing_reporting_owner_returns_none(self, xml_parser):
        raw = """<ownershipDocument>
            <issuer><issuerCik>0000320193</issuerCik></issuer>
        </ownershipDocument>"""

        assert xml_parser.parse(raw, ACCESSION) is None

    @pytest.mark.parametrize('raw', [None, '', '   ', 'not a filing at all', '<html><body>404</body></html>'])
    def test_malformed_input_returns_none(self, xml_parser, raw):
        assert xml_parser.parse(raw, ACCESSION) is None

    def test_truncated_document_does_not_raise(self, xml_parser):
        truncated = FORM4_SUBMISSION[:FORM4_SUBMISSION.index('<nonDerivativeTable>') + 200]

        # either a partial filing or None, never an exception
        result = xml_parser.parse(truncated, ACCESSION)
        assert result is None or isinstance(result, OwnershipFiling)

    def test_delegates_to_html_when_no_xml(self, xml_parser):
        filing = xml_parser.parse(LEGACY_HTML_FORM4, ACCESSION)

        assert isinstance(filing, OwnershipFiling)
        assert filing.source_encoding == 'html'
        assert filing.issuer.trading_symbol == 'AAPL'


class TestOwnershipHtmlParser:
    """Tests for legacy HTML ownership forms."""

    def test_parties_and_period(self):
        filing = OwnershipHtmlParser().parse(LEGACY_HTML_FORM4, ACCESSION)

        assert filing.form_type == '4'
        assert filing.family == 'ownership'
        assert filing.issuer.name == 'Apple Inc.'
        assert filing.issuer.cik == '0000320193'
        assert filing.issuer.trading_symbol == 'AAPL'
        assert filing.primary_owner.name == 'COOK TIMOTHY D'
        assert filing.primary_owner.cik == '0001214156'
        assert filing.period_of_report == date(2024, 3, 13)

    def test_invalid_rows_dropped_later_rows_kept(self):
        """Non-numeric, zero and short rows are skipped; the last row still parses."""
        filing = OwnershipHtmlParser().parse(LEGACY_HTML_FORM4, ACCESSION)

        rows = filing.non_derivative_transactions
        assert len(rows) == 2
        assert rows[0].shares == 1000.0
        assert rows[0].price_per_share == 171.25
        assert rows[0].footnote_ids == ['F1']
        assert rows[1].shares == 2500.0
        assert rows[1].transaction_date == date(2024, 3, 14)
        assert rows[1].transaction_code == 'G'
        assert rows[1].direct_or_indirect == 'I'
        assert rows[1].nature_of_ownership == 'By Trust'

    def test_same_fields_as_xml_encoding(self):
        """Both encodings fill the same columns for the same trade."""
        from_html = OwnershipHtmlParser().parse(LEGACY_HTML_FORM4, ACCESSION).non_derivative_transactions[0]
        from_xml = OwnershipXmlParser().parse(FORM4_SUBMISSION, ACCESSION).non_derivative_transactions[0]

        for column in ('table', 'security_title', 'transaction_date', 'transaction_code', 'shares',
                       'acquired_disposed_code', 'price_per_share', 'shares_owned_following',
                       'direct_or_indirect'):
            assert getattr(from_html, column) == getattr(from_xml, column), column

    def test_derivative_rows(self):
        filing = OwnershipHtmlParser().parse(LEGACY_HTML_FORM4, ACCESSION)

        rows = filing.derivative_transactions
        # the option row has neither acquired nor disposed shares
        assert len(rows) == 1
        rsu = rows[0]
        assert rsu.security_title == 'Restricted Stock Unit'
        assert rsu.shares == 4000.0
        assert rsu.acquired_disposed_code == 'D'
        assert rsu.conversion_or_exercise_price is None
        assert rsu.expiration_date == date(2026, 10, 1)
        assert rsu.underlying_security_title == 'Common Stock'
        assert rsu.underlying_security_shares == 4000.0
        assert rsu.shares_owned_following == 12000.0

    def test_footnotes(self):
        filing = OwnershipHtmlParser().parse(LEGACY_HTML_FORM4, ACCESSION)

        assert filing.footnotes['F1'] == 'Weighted average price.'
        assert filing.footnotes['F2'] == 'Shares held by a family trust.'

    def test_document_without_tables_returns_none(self):
        assert OwnershipHtmlParser().parse('<html><body><p>FORM 4</p></body></html>', ACCESSION) is None
