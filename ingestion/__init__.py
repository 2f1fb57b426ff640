"""
Filing Ingestion Module

Discovers and fetches SEC EDGAR filings and parses them into records:
- current-filings Atom feed for discovery
- Forms 3/4/5 (XML and legacy HTML), 13F-HR, 8-K/6-K/20-F parsers
- shared rate limiter for outbound requests
"""

__version__ = "0.1.0"
