"""
Tests for the current-filings feed - entry decoding and paging.
Uses a mocked SEC client; no network.
"""

import pytest
from datetime import date
from unittest.mock import Mock, patch

from ingestion.config import PipelineSettings
from ingestion.providers.feed_fetcher import (
    FeedFetcher,
    build_feed_url,
    parse_feed_entries,
    parse_feed_page,
)
from ingestion.providers.sec_client import SecClientError
from ingestion.rate_limiter import RateLimiterCancelled


def make_entry(accession, filed='2024-03-15', form='4', cik='1234567', name='Doe John'):
    acc_nodash = accession.replace('-', '')
    return f"""
<entry>
<title>{form} - {name} ({cik.zfill(10)}) (Reporting)</title>
<link rel="alternate" type="text/html" href="https://www.sec.gov/Archives/edgar/data/{cik}/{acc_nodash}/{accession}-index.htm"/>
<summary type="html"> &lt;b&gt;Filed:&lt;/b&gt; {filed} &lt;b&gt;AccNo:&lt;/b&gt; {accession} &lt;b&gt;Size:&lt;/b&gt; 5 KB</summary>
<updated>{filed}T17:29:44-04:00</updated>
<category scheme="https://www.sec.gov/" label="form type" term="{form}"/>
<id>urn:tag:sec.gov,2008:accession-number={accession}</id>
</entry>"""


def make_feed(*entries):
    return f"""<?xml version="1.0" encoding="ISO-8859-1" ?>
<feed xmlns="http://www.w3.org/2005/Atom">
<title>Latest Filings</title>
{''.join(entries)}
</feed>"""


@pytest.fixture
def settings():
    return PipelineSettings(user_agent='Test User test@example.com', batch_size=2, batch_delay_ms=0)


class TestParseFeed:
    """Tests for feed entry decoding."""

    def test_parses_entry_fields(self):
        xml = make_feed(make_entry('0001127602-24-008765', cik='320193', name='Apple Inc.'))

        refs = parse_feed_entries(xml, default_form_type='4')

        assert len(refs) == 1
        ref = refs[0]
        assert ref.accession_number == '0001127602-24-008765'
        assert ref.form_type == '4'
        assert ref.filing_date == date(2024, 3, 15)
        assert ref.cik == '320193'
        assert ref.company_name == 'Apple Inc.'
        assert ref.document_url.endswith('0001127602-24-008765-index.htm')

    def test_accession_from_summary_when_id_missing(self):
        xml = make_feed("""
<entry>
<title>8-K - Acme Corp (0000111111) (Filer)</title>
<link href="https://www.sec.gov/Archives/edgar/data/111111/000011111124000001/0000111111-24-000001-index.htm"/>
<summary type="html">Filed: 2024-03-14 AccNo: 0000111111-24-000001</summary>
</entry>""")

        refs = parse_feed_entries(xml, default_form_type='8-K')

        assert refs[0].accession_number == '0000111111-24-000001'
        assert refs[0].filing_date == date(2024, 3, 14)
        assert refs[0].form_type == '8-K'

    def test_entry_without_accession_is_dropped(self):
        xml = make_feed(
            "<entry><title>4 - Broken</title><summary>no identifiers here</summary></entry>",
            make_entry('0001127602-24-008765'),
        )

        page = parse_feed_page(xml)

        assert page.entry_count == 2
        assert [r.accession_number for r in page.references] == ['0001127602-24-008765']

    def test_date_filter_keeps_raw_entry_count(self):
        xml = make_feed(
            make_entry('0001127602-24-008765', filed='2024-03-15'),
            make_entry('0001127602-24-008700', filed='2024-03-14'),
        )

        page = parse_feed_page(xml, target_date=date(2024, 3, 15))

        assert page.entry_count == 2
        assert len(page.references) == 1
        assert page.earliest_date == date(2024, 3, 14)

    def test_issuer_and_owner_entries_are_deduplicated(self):
        """One filing appears once per party in the feed."""
        xml = make_feed(
            make_entry('0001127602-24-008765', cik='1214156', name='Cook Timothy D'),
            make_entry('0001127602-24-008765', cik='320193', name='Apple Inc.'),
        )

        refs = parse_feed_entries(xml)

        assert len(refs) == 1
        assert refs[0].cik == '1214156'

    def test_build_feed_url(self):
        template = 'https://example.com/feed?type={type}&start={start}&count={count}'

        url = build_feed_url(template, '4', 40, 20, date(2024, 3, 15))

        assert url == 'https://example.com/feed?type=4&start=40&count=20&dateb=20240315'

    def test_build_feed_url_spells_schedules_with_a_space(self):
        template = 'https://example.com/feed?type={type}&start={start}&count={count}'

        url = build_feed_url(template, 'SC13D/A', 0, 40)

        assert url == 'https://example.com/feed?type=SC%2013D/A&start=0&count=40'


class TestFeedFetcherPaging:
    """Tests for FeedFetcher.iter_pages()."""

    def test_stops_on_short_page(self, settings):
        client = Mock()
        client.get_text.side_effect = [
            make_feed(make_entry('0000000001-24-000001'), make_entry('0000000001-24-000002')),
            make_feed(make_entry('0000000001-24-000003')),
        ]
        fetcher = FeedFetcher(client, settings)

        pages = list(fetcher.iter_pages('4', count=10))

        assert [len(p) for p in pages] == [2, 1]
        assert client.get_text.call_count == 2
        first_url = client.get_text.call_args_list[0][0][0]
        second_url = client.get_text.call_args_list[1][0][0]
        assert 'start=0' in first_url and 'count=2' in first_url
        assert 'start=2' in second_url

    def test_stops_on_empty_page(self, settings):
        client = Mock()
        client.get_text.side_effect = [
            make_feed(make_entry('0000000001-24-000001'), make_entry('0000000001-24-000002')),
            make_feed(),
        ]
        fetcher = FeedFetcher(client, settings)

        pages = list(fetcher.iter_pages('4', count=10))

        assert len(pages) == 1
        assert client.get_text.call_count == 2

    def test_count_limits_requests(self, settings):
        client = Mock()
        client.get_text.return_value = make_feed(
            make_entry('0000000001-24-000001'), make_entry('0000000001-24-000002')
        )
        fetcher = FeedFetcher(client, settings)

        refs = fetcher.fetch_references('4', count=2)

        assert len(refs) == 2
        assert client.get_text.call_count == 1

    def test_client_error_stops_paging_without_raising(self, settings):
        client = Mock()
        client.get_text.side_effect = [
            make_feed(make_entry('0000000001-24-000001'), make_entry('0000000001-24-000002')),
            SecClientError("HTTP 503"),
        ]
        fetcher = FeedFetcher(client, settings)

        pages = list(fetcher.iter_pages('4', count=10))

        assert len(pages) == 1

    def test_cancelled_permit_wait_stops_paging(self, settings):
        client = Mock()
        client.get_text.side_effect = RateLimiterCancelled("Cancelled while waiting for a request permit")
        fetcher = FeedFetcher(client, settings)

        assert list(fetcher.iter_pages('4', count=10)) == []

    def test_date_bound_stops_when_feed_passes_target(self, settings):
        client = Mock()
        client.get_text.side_effect = [
            make_feed(
                make_entry('0000000001-24-000001', filed='2024-03-15'),
                make_entry('0000000001-24-000002', filed='2024-03-14'),
            ),
        ]
        fetcher = FeedFetcher(client, settings)

        refs = [r for page in fetcher.iter_pages('4', target_date=date(2024, 3, 15)) for r in page]

        assert [r.accession_number for r in refs] == ['0000000001-24-000001']
        assert client.get_text.call_count == 1

    @patch('ingestion.providers.feed_fetcher.time.sleep')
    def test_sleeps_between_pages(self, mock_sleep):
        settings = PipelineSettings(user_agent='Test User test@example.com', batch_size=1, batch_delay_ms=500)
        client = Mock()
        client.get_text.side_effect = [
            make_feed(make_entry('0000000001-24-000001')),
            make_feed(),
        ]
        fetcher = FeedFetcher(client, settings)

        list(fetcher.iter_pages('4', count=5))

        mock_sleep.assert_called_once_with(0.5)
