"""
Shared fixtures for pipeline tests: in-memory storage, a fake SEC client
serving documents by URL, and an orchestrator wired to both.
"""

import pytest
import sqlite3
from unittest.mock import Mock

from ingestion.config import PipelineSettings
from ingestion.providers.document_fetcher import DocumentFetcher
from ingestion.providers.sec_client import SecClientError
from pipeline.download_dag import DownloadOrchestrator
from storage.loaders import init_database


BASE = 'https://www.sec.gov/Archives/edgar/data/'

FORM4_XML = """<?xml version="1.0"?>
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
      <isOfficer>1</isOfficer>
      <officerTitle>Chief Executive Officer</officerTitle>
    </reportingOwnerRelationship>
  </reportingOwner>
  <nonDerivativeTable>
    <nonDerivativeTransaction>
      <securityTitle><value>Common Stock</value></securityTitle>
      <transactionDate><value>2024-03-13</value></transactionDate>
      <transactionCoding><transactionCode>S</transactionCode></transactionCoding>
      <transactionAmounts>
        <transactionShares><value>50000</value></transactionShares>
        <transactionPricePerShare><value>172.50</value></transactionPricePerShare>
        <transactionAcquiredDisposedCode><value>D</value></transactionAcquiredDisposedCode>
      </transactionAmounts>
      <postTransactionAmounts>
        <sharesOwnedFollowingTransaction><value>3280180</value></sharesOwnedFollowingTransaction>
      </postTransactionAmounts>
      <ownershipNature>
        <directOrIndirectOwnership><value>D</value></directOrIndirectOwnership>
      </ownershipNature>
    </nonDerivativeTransaction>
  </nonDerivativeTable>
</ownershipDocument>
"""


@pytest.fixture
def in_memory_db():
    """Create in-memory SQLite database for testing."""
    conn = sqlite3.connect(':memory:')
    init_database(conn)
    return conn


@pytest.fixture
def settings():
    return PipelineSettings(
        user_agent='Test User test@example.com',
        batch_delay_ms=0,
        retry_delay_ms=0,
        form_types=('4',),
    )


@pytest.fixture
def form4_xml():
    return FORM4_XML


@pytest.fixture
def document_url():
    """Submission URL the orchestrator builds for a feed reference with a CIK."""
    def build(accession_number, cik='320193'):
        return f"{BASE}{cik}/{accession_number.replace('-', '')}/{accession_number}.txt"
    return build


@pytest.fixture
def documents():
    """URL -> body (or exception) served by the fake SEC client; other URLs answer HTTP 404."""
    return {}


@pytest.fixture
def sec_client(documents):
    def get_text(url, cancel_event=None):
        body = documents.get(url)
        if body is None:
            raise SecClientError(f"HTTP 404 for {url}")
        if isinstance(body, Exception):
            raise body
        return body

    client = Mock()
    client.get_text.side_effect = get_text
    return client


@pytest.fixture
def feed_fetcher():
    return Mock()


@pytest.fixture
def orchestrator(in_memory_db, settings, feed_fetcher, sec_client):
    return DownloadOrchestrator(
        in_memory_db, settings, feed_fetcher,
        DocumentFetcher(sec_client, settings.archives_base_url)
    )
