"""
Download history ledger - one durable record per accession number.
Thin IO layer for the download state machine and its audit trail.

States: pending -> downloading -> parsing -> completed | failed.
Records are never deleted.
"""

import sqlite3
from datetime import date, datetime
from enum import Enum
from typing import Dict, Any, List, Optional

import pandas as pd

from ingestion.models import FilingReference


class HistoryStatus(str, Enum):
    """Enumeration of download statuses."""
    PENDING = 'pending'
    DOWNLOADING = 'downloading'
    PARSING = 'parsing'
    COMPLETED = 'completed'
    FAILED = 'failed'
    SKIPPED = 'skipped'


class HistoryRecordNotFoundError(Exception):
    """Raised when an accession number has no history record."""
    pass


HISTORY_COLUMNS = (
    'accession_number', 'form_type', 'source_url', 'filing_date', 'status',
    'created_at', 'downloaded_at', 'last_attempt_at', 'processed_at',
    'retry_count', 'error_message', 'processing_duration_ms'
)
_SELECT = f"SELECT {', '.join(HISTORY_COLUMNS)} FROM download_history"


def create_if_absent(
    conn: sqlite3.Connection,
    reference: FilingReference,
    source_url: Optional[str] = None,
    created_at: Optional[datetime] = None
) -> bool:
    """
    Create a PENDING record for an accession number unless one exists.

    Atomic: relies on the UNIQUE accession_number constraint, so two jobs
    racing on the same filing cannot both create it.

    Args:
        conn: SQLite connection
        reference: Filing to record
        source_url: Resolved document URL (defaults to the reference's link)
        created_at: Creation timestamp (defaults to now)

    Returns:
        True if this call created the record, False if it already existed
    """
    if created_at is None:
        created_at = datetime.now()

    cursor = conn.execute("""
        INSERT OR IGNORE INTO download_history (
            accession_number, form_type, source_url, filing_date, status,
            created_at, retry_count
        ) VALUES (?, ?, ?, ?, ?, ?, 0)
    """, (
        reference.accession_number,
        reference.form_type,
        source_url or reference.document_url,
        _iso(reference.filing_date),
        HistoryStatus.PENDING.value,
        created_at.isoformat(),
    ))

    conn.commit()
    return cursor.rowcount == 1


def mark_status(
    conn: sqlite3.Connection,
    accession_number: str,
    status: HistoryStatus,
    at: Optional[datetime] = None
) -> None:
    """
    Move a record to an in-flight status.

    DOWNLOADING stamps last_attempt_at; PARSING stamps downloaded_at.

    Raises:
        HistoryRecordNotFoundError: If the accession number is unknown
    """
    stamp = (at or datetime.now()).isoformat()

    if status == HistoryStatus.DOWNLOADING:
        cursor = conn.execute(
            "UPDATE download_history SET status = ?, last_attempt_at = ? WHERE accession_number = ?",
            (status.value, stamp, accession_number)
        )
    elif status == HistoryStatus.PARSING:
        cursor = conn.execute(
            "UPDATE download_history SET status = ?, downloaded_at = ? WHERE accession_number = ?",
            (status.value, stamp, accession_number)
        )
    else:
        cursor = conn.execute(
            "UPDATE download_history SET status = ? WHERE accession_number = ?",
            (status.value, accession_number)
        )

    _require_updated(cursor, accession_number)
    conn.commit()


def mark_completed(
    conn: sqlite3.Connection,
    accession_number: str,
    duration_ms: int,
    processed_at: Optional[datetime] = None
) -> None:
    """
    Mark a record COMPLETED and clear any earlier error.

    Raises:
        HistoryRecordNotFoundError: If the accession number is unknown
    """
    processed_at = processed_at or datetime.now()

    cursor = conn.execute("""
        UPDATE download_history SET
            status = ?,
            processed_at = ?,
            processing_duration_ms = ?,
            error_message = NULL
        WHERE accession_number = ?
    """, (HistoryStatus.COMPLETED.value, processed_at.isoformat(), duration_ms, accession_number))

    _require_updated(cursor, accession_number)
    conn.commit()


def mark_failed(
    conn: sqlite3.Connection,
    accession_number: str,
    error_message: str,
    increment_retry: bool = False,
    at: Optional[datetime] = None
) -> None:
    """
    Mark a record FAILED.

    Args:
        conn: SQLite connection
        accession_number: Filing to update
        error_message: Why the attempt failed
        increment_retry: True when the failed attempt was itself a retry
        at: Attempt timestamp (defaults to now)

    Raises:
        HistoryRecordNotFoundError: If the accession number is unknown
    """
    stamp = (at or datetime.now()).isoformat()

    cursor = conn.execute("""
        UPDATE download_history SET
            status = ?,
            error_message = ?,
            last_attempt_at = ?,
            retry_count = retry_count + ?
        WHERE accession_number = ?
    """, (HistoryStatus.FAILED.value, error_message, stamp, 1 if increment_retry else 0, accession_number))

    _require_updated(cursor, accession_number)
    conn.commit()


def claim_for_retry(conn: sqlite3.Connection, accession_number: str, max_retries: int) -> bool:
    """
    Atomically move a FAILED record under the retry ceiling back to PENDING.

    Returns:
        True if this call claimed the record
    """
    cursor = conn.execute("""
        UPDATE download_history SET status = ?
        WHERE accession_number = ? AND status = ? AND retry_count < ?
    """, (HistoryStatus.PENDING.value, accession_number, HistoryStatus.FAILED.value, max_retries))

    conn.commit()
    return cursor.rowcount == 1


def get_record(conn: sqlite3.Connection, accession_number: str) -> Dict[str, Any]:
    """
    Get the history record for one accession number.

    Raises:
        HistoryRecordNotFoundError: If the accession number is unknown
    """
    cursor = conn.execute(f"{_SELECT} WHERE accession_number = ?", (accession_number,))
    row = cursor.fetchone()
    if row is None:
        raise HistoryRecordNotFoundError(f"No download history for {accession_number}")
    return _row_to_record(row)


def exists(conn: sqlite3.Connection, accession_number: str) -> bool:
    cursor = conn.execute(
        "SELECT COUNT(*) FROM download_history WHERE accession_number = ?",
        (accession_number,)
    )
    return cursor.fetchone()[0] > 0


def find_retryable(conn: sqlite3.Connection, max_retries: int) -> List[Dict[str, Any]]:
    """FAILED records whose retry_count is still below max_retries, oldest first."""
    cursor = conn.execute(f"""
        {_SELECT}
        WHERE status = ? AND retry_count < ?
        ORDER BY created_at, accession_number
    """, (HistoryStatus.FAILED.value, max_retries))
    return [_row_to_record(row) for row in cursor.fetchall()]


def count_by_status(conn: sqlite3.Connection, status: HistoryStatus) -> int:
    cursor = conn.execute(
        "SELECT COUNT(*) FROM download_history WHERE status = ?",
        (HistoryStatus(status).value,)
    )
    return cursor.fetchone()[0]


def count_by_filing_date(conn: sqlite3.Connection, filing_date: date) -> int:
    cursor = conn.execute(
        "SELECT COUNT(*) FROM download_history WHERE filing_date = ?",
        (filing_date.isoformat(),)
    )
    return cursor.fetchone()[0]


def list_history(
    conn: sqlite3.Connection,
    status: Optional[HistoryStatus] = None,
    form_type: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = 100
) -> List[Dict[str, Any]]:
    """
    List history records, most recent first.

    Args:
        conn: SQLite connection
        status: Filter by status (optional)
        form_type: Filter by form type (optional)
        start_date: Earliest filing date, inclusive (optional)
        end_date: Latest filing date, inclusive (optional)
        limit: Maximum number of records to return

    Returns:
        List of history record dictionaries
    """
    clauses = []
    params: List[Any] = []

    if status is not None:
        clauses.append("status = ?")
        params.append(HistoryStatus(status).value)
    if form_type:
        clauses.append("form_type = ?")
        params.append(form_type)
    if start_date is not None:
        clauses.append("filing_date >= ?")
        params.append(start_date.isoformat())
    if end_date is not None:
        clauses.append("filing_date <= ?")
        params.append(end_date.isoformat())

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    params.append(limit)

    cursor = conn.execute(f"""
        {_SELECT}
        {where}
        ORDER BY created_at DESC, history_id DESC
        LIMIT ?
    """, params)
    return [_row_to_record(row) for row in cursor.fetchall()]


def get_download_statistics(conn: sqlite3.Connection) -> Dict[str, Any]:
    """
    Aggregate counts over the whole ledger.

    Returns:
        Dictionary with totals per status, per form type, and rates
    """
    cursor = conn.execute("""
        SELECT
            COUNT(*) as total,
            SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END) as completed,
            SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END) as failed,
            SUM(CASE WHEN status IN ('pending', 'downloading', 'parsing') THEN 1 ELSE 0 END) as in_flight,
            SUM(CASE WHEN status = 'skipped' THEN 1 ELSE 0 END) as skipped,
            AVG(processing_duration_ms) as avg_duration_ms,
            SUM(retry_count) as total_retries
        FROM download_history
    """)
    row = cursor.fetchone()

    stats = {
        'total': row[0] or 0,
        'completed': row[1] or 0,
        'failed': row[2] or 0,
        'pending': row[3] or 0,
        'skipped': row[4] or 0,
        'avg_duration_ms': row[5],
        'total_retries': row[6] or 0,
    }

    cursor = conn.execute("""
        SELECT form_type, COUNT(*) FROM download_history
        GROUP BY form_type
        ORDER BY form_type
    """)
    stats['by_form_type'] = {r[0]: r[1] for r in cursor.fetchall()}

    if stats['total'] > 0:
        stats['success_rate'] = stats['completed'] / stats['total']
        stats['failure_rate'] = stats['failed'] / stats['total']
    else:
        stats['success_rate'] = None
        stats['failure_rate'] = None

    return stats


def history_frame(conn: sqlite3.Connection, **filters) -> pd.DataFrame:
    """
    History records as a DataFrame (same filters as list_history).
    Status is rendered as its plain string value.
    """
    records = list_history(conn, **filters)
    df = pd.DataFrame(records, columns=list(HISTORY_COLUMNS))
    if not df.empty:
        df['status'] = df['status'].map(lambda s: s.value)
    return df


def _row_to_record(row) -> Dict[str, Any]:
    record = dict(zip(HISTORY_COLUMNS, row))
    record['status'] = HistoryStatus(record['status'])
    record['filing_date'] = date.fromisoformat(record['filing_date']) if record['filing_date'] else None
    for key in ('created_at', 'downloaded_at', 'last_attempt_at', 'processed_at'):
        record[key] = datetime.fromisoformat(record[key]) if record[key] else None
    return record


def _require_updated(cursor: sqlite3.Cursor, accession_number: str) -> None:
    if cursor.rowcount == 0:
        raise HistoryRecordNotFoundError(f"No download history for {accession_number}")


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None
