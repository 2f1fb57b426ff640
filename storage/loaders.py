"""
Database loaders - schema and idempotent filing upserts for SQLite.
Thin IO layer with focus on data integrity and idempotence.
"""

import json
import logging
import os
import sqlite3
from datetime import date, datetime
from typing import Dict, Any, Optional, Tuple

from ingestion.models import (
    BeneficialOwnershipFiling,
    CurrentReportFiling,
    HoldingsFiling,
    OwnershipFiling,
    ParsedFiling,
)


logger = logging.getLogger(__name__)

CHILD_TABLES = ('filing_transactions', 'filing_holdings', 'filing_items', 'filing_persons')


def init_database(conn: sqlite3.Connection) -> None:
    """
    Initialize database with required tables.
    Idempotent - safe to call multiple times.

    Args:
        conn: SQLite connection
    """
    conn.execute("PRAGMA foreign_keys = ON")

    # One row per accession number ever seen; the dedup key and audit trail
    conn.execute("""
        CREATE TABLE IF NOT EXISTS download_history (
            history_id INTEGER PRIMARY KEY AUTOINCREMENT,
            accession_number TEXT NOT NULL UNIQUE,
            form_type TEXT,
            source_url TEXT,
            filing_date DATE,
            status TEXT NOT NULL CHECK(status IN (
                'pending', 'downloading', 'parsing', 'completed', 'failed', 'skipped'
            )),
            created_at DATETIME NOT NULL,
            downloaded_at DATETIME,
            last_attempt_at DATETIME,
            processed_at DATETIME,
            retry_count INTEGER NOT NULL DEFAULT 0,
            error_message TEXT,
            processing_duration_ms INTEGER
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS filings (
            filing_id INTEGER PRIMARY KEY AUTOINCREMENT,
            accession_number TEXT NOT NULL UNIQUE,
            form_type TEXT NOT NULL,
            family TEXT NOT NULL,
            issuer_cik TEXT,
            issuer_name TEXT,
            trading_symbol TEXT,
            period_of_report DATE,
            filing_date DATE,
            source_url TEXT,
            payload TEXT NOT NULL,
            parsed_at DATETIME NOT NULL,
            ingested_at DATETIME NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS filing_transactions (
            filing_id INTEGER NOT NULL REFERENCES filings(filing_id) ON DELETE CASCADE,
            row_index INTEGER NOT NULL,
            table_type TEXT NOT NULL CHECK(table_type IN ('non_derivative', 'derivative')),
            is_holding INTEGER NOT NULL DEFAULT 0,
            owner_cik TEXT,
            owner_name TEXT,
            security_title TEXT,
            transaction_date DATE,
            transaction_code TEXT,
            shares REAL,
            acquired_disposed_code TEXT,
            price_per_share REAL,
            shares_owned_following REAL,
            direct_or_indirect TEXT,
            PRIMARY KEY (filing_id, row_index)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS filing_holdings (
            filing_id INTEGER NOT NULL REFERENCES filings(filing_id) ON DELETE CASCADE,
            row_index INTEGER NOT NULL,
            name_of_issuer TEXT,
            title_of_class TEXT,
            cusip TEXT,
            value INTEGER,
            shares REAL,
            share_type TEXT,
            put_call TEXT,
            investment_discretion TEXT,
            PRIMARY KEY (filing_id, row_index)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS filing_items (
            filing_id INTEGER NOT NULL REFERENCES filings(filing_id) ON DELETE CASCADE,
            item_number TEXT NOT NULL,
            title TEXT,
            content TEXT,
            PRIMARY KEY (filing_id, item_number)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS filing_persons (
            filing_id INTEGER NOT NULL REFERENCES filings(filing_id) ON DELETE CASCADE,
            row_index INTEGER NOT NULL,
            name TEXT,
            cik TEXT,
            citizenship_or_organization TEXT,
            sole_voting_power INTEGER,
            shared_voting_power INTEGER,
            sole_dispositive_power INTEGER,
            shared_dispositive_power INTEGER,
            shares_beneficially_owned INTEGER,
            percent_of_class REAL,
            PRIMARY KEY (filing_id, row_index)
        )
    """)

    conn.execute("CREATE INDEX IF NOT EXISTS idx_history_status ON download_history(status)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_history_filing_date ON download_history(filing_date)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_filings_form_type ON filings(form_type)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_filings_issuer_cik ON filings(issuer_cik)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_filings_symbol ON filings(trading_symbol)")

    conn.commit()


def get_connection(db_path: str = './data/filings.db') -> sqlite3.Connection:
    """
    Get SQLite connection with proper configuration.

    The connection may be handed to a worker thread; each job still gets
    its own connection.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Configured SQLite connection
    """
    directory = os.path.dirname(db_path)
    if db_path != ':memory:' and directory:
        os.makedirs(directory, exist_ok=True)

    conn = sqlite3.connect(db_path, timeout=30.0, check_same_thread=False)
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")  # Better concurrency
    return conn


def upsert_filing(
    conn: sqlite3.Connection,
    filing: ParsedFiling,
    filing_date: Optional[date] = None,
    source_url: Optional[str] = None
) -> Tuple[int, bool]:
    """
    Insert or update one parsed filing, keyed by accession number.
    Idempotent - re-running with the same filing leaves one row.

    On update the existing filing_id is kept and the child rows
    (transactions, holdings, items) are replaced.

    Args:
        conn: SQLite connection
        filing: Parsed filing record
        filing_date: Filing date from the feed, if known
        source_url: URL the document was fetched from

    Returns:
        Tuple of (filing_id, inserted)
    """
    now = datetime.now().isoformat()
    payload = json.dumps(filing.to_dict())
    values = (
        filing.form_type,
        filing.family,
        filing.issuer.cik,
        filing.issuer.name,
        filing.issuer.trading_symbol,
        _iso(filing.period_of_report),
        _iso(filing_date),
        source_url,
        payload,
        filing.parsed_at.isoformat(),
        now,
    )

    # A failure part way rolls back the UPDATE and child deletes together
    with conn:
        cursor = conn.execute(
            "SELECT filing_id FROM filings WHERE accession_number = ?",
            (filing.accession_number,)
        )
        row = cursor.fetchone()

        if row is not None:
            filing_id = row[0]
            conn.execute("""
                UPDATE filings SET
                    form_type = ?, family = ?, issuer_cik = ?, issuer_name = ?,
                    trading_symbol = ?, period_of_report = ?,
                    filing_date = COALESCE(?, filing_date),
                    source_url = COALESCE(?, source_url),
                    payload = ?, parsed_at = ?, ingested_at = ?
                WHERE filing_id = ?
            """, values + (filing_id,))
            for table in CHILD_TABLES:
                conn.execute(f"DELETE FROM {table} WHERE filing_id = ?", (filing_id,))
            inserted = False
        else:
            cursor = conn.execute("""
                INSERT INTO filings (
                    form_type, family, issuer_cik, issuer_name, trading_symbol,
                    period_of_report, filing_date, source_url, payload, parsed_at,
                    ingested_at, accession_number
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, values + (filing.accession_number,))
            filing_id = cursor.lastrowid
            inserted = True

        _insert_children(conn, filing_id, filing)

    logger.debug(
        f"{'Inserted' if inserted else 'Updated'} filing {filing.accession_number} "
        f"(form {filing.form_type}, id {filing_id})"
    )
    return filing_id, inserted


def _insert_children(conn: sqlite3.Connection, filing_id: int, filing: ParsedFiling) -> None:
    if isinstance(filing, OwnershipFiling):
        owner = filing.primary_owner
        conn.executemany("""
            INSERT INTO filing_transactions (
                filing_id, row_index, table_type, is_holding, owner_cik, owner_name,
                security_title, transaction_date, transaction_code, shares,
                acquired_disposed_code, price_per_share, shares_owned_following,
                direct_or_indirect
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            (
                filing_id, i, t.table, int(t.is_holding),
                owner.cik if owner else None, owner.name if owner else None,
                t.security_title, _iso(t.transaction_date), t.transaction_code, t.shares,
                t.acquired_disposed_code, t.price_per_share, t.shares_owned_following,
                t.direct_or_indirect,
            )
            for i, t in enumerate(filing.transactions)
        ])

    elif isinstance(filing, HoldingsFiling):
        conn.executemany("""
            INSERT INTO filing_holdings (
                filing_id, row_index, name_of_issuer, title_of_class, cusip, value,
                shares, share_type, put_call, investment_discretion
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            (
                filing_id, i, h.name_of_issuer, h.title_of_class, h.cusip, h.value,
                h.shares, h.share_type, h.put_call, h.investment_discretion,
            )
            for i, h in enumerate(filing.holdings)
        ])

    elif isinstance(filing, CurrentReportFiling):
        conn.executemany("""
            INSERT OR REPLACE INTO filing_items (filing_id, item_number, title, content)
            VALUES (?, ?, ?, ?)
        """, [(filing_id, item.item_number, item.title, item.content) for item in filing.items])

    elif isinstance(filing, BeneficialOwnershipFiling):
        conn.executemany("""
            INSERT INTO filing_persons (
                filing_id, row_index, name, cik, citizenship_or_organization,
                sole_voting_power, shared_voting_power, sole_dispositive_power,
                shared_dispositive_power, shares_beneficially_owned, percent_of_class
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            (
                filing_id, i, p.name, p.cik, p.citizenship_or_organization,
                p.sole_voting_power, p.shared_voting_power, p.sole_dispositive_power,
                p.shared_dispositive_power, p.shares_beneficially_owned, p.percent_of_class,
            )
            for i, p in enumerate(filing.filing_persons)
        ])


def find_filing_by_accession_number(
    conn: sqlite3.Connection,
    accession_number: str
) -> Optional[Dict[str, Any]]:
    """
    Load one stored filing.

    Returns:
        Dictionary of filing columns with the decoded payload, or None
    """
    cursor = conn.execute("""
        SELECT filing_id, accession_number, form_type, family, issuer_cik,
               issuer_name, trading_symbol, period_of_report, filing_date,
               source_url, payload, parsed_at, ingested_at
        FROM filings
        WHERE accession_number = ?
    """, (accession_number,))

    row = cursor.fetchone()
    if row is None:
        return None

    return {
        'filing_id': row[0],
        'accession_number': row[1],
        'form_type': row[2],
        'family': row[3],
        'issuer_cik': row[4],
        'issuer_name': row[5],
        'trading_symbol': row[6],
        'period_of_report': date.fromisoformat(row[7]) if row[7] else None,
        'filing_date': date.fromisoformat(row[8]) if row[8] else None,
        'source_url': row[9],
        'payload': json.loads(row[10]),
        'parsed_at': datetime.fromisoformat(row[11]) if row[11] else None,
        'ingested_at': datetime.fromisoformat(row[12]) if row[12] else None,
    }


def exists_filing(conn: sqlite3.Connection, accession_number: str) -> bool:
    cursor = conn.execute(
        "SELECT COUNT(*) FROM filings WHERE accession_number = ?",
        (accession_number,)
    )
    return cursor.fetchone()[0] > 0


def count_filings_by_form_type(conn: sqlite3.Connection) -> Dict[str, int]:
    cursor = conn.execute("""
        SELECT form_type, COUNT(*) FROM filings
        GROUP BY form_type
        ORDER BY form_type
    """)
    return {row[0]: row[1] for row in cursor.fetchall()}


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None
