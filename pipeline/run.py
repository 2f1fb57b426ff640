"""
Pipeline runner CLI - makes filing intake human-visible.
Usage: python pipeline/run.py COMMAND [ARGS] [--forms 4,8-K]
"""

import logging
import os
import sqlite3
import sys
from datetime import date
from pathlib import Path
from typing import Callable, List, Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from ingestion.config import ConfigurationError, PipelineSettings
from ingestion.providers.document_fetcher import DocumentFetcher
from ingestion.providers.feed_fetcher import FeedFetcher
from ingestion.providers.sec_client import SecClient
from ingestion.rate_limiter import RateLimiter
from pipeline.backfill import BackfillEngine, BackfillSummary
from pipeline.download_dag import DownloadOrchestrator, DownloadSummary
from pipeline.jobs import JobRunner
from pipeline.retry import RetryCoordinator, RetrySummary
from storage.download_history import HistoryStatus, get_download_statistics, history_frame
from storage.loaders import count_filings_by_form_type, get_connection, init_database


logger = logging.getLogger(__name__)

USAGE = """Usage:
  python pipeline/run.py date YYYY-MM-DD [--forms 3,4,5]
  python pipeline/run.py range START END [--forms ...]
  python pipeline/run.py latest N [--forms ...]
  python pipeline/run.py accession ACCESSION_NUMBER FORM_TYPE
  python pipeline/run.py retry [MAX_RETRIES]
  python pipeline/run.py backfill-range START END [--forms ...]
  python pipeline/run.py backfill-recent DAYS [--forms ...]
  python pipeline/run.py backfill-auto [--forms ...]
  python pipeline/run.py missing START END
  python pipeline/run.py history [STATUS] [--csv PATH]
  python pipeline/run.py stats

Examples:
  python pipeline/run.py date 2024-03-15 --forms 4
  python pipeline/run.py accession 0001127602-24-008765 4
  python pipeline/run.py history failed --csv failed.csv"""

NETWORK_COMMANDS = {
    'date', 'range', 'latest', 'accession', 'retry',
    'backfill-range', 'backfill-recent', 'backfill-auto',
}
LOCAL_COMMANDS = {'missing', 'history', 'stats'}


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = list(sys.argv[1:] if argv is None else argv)

    logging.basicConfig(
        level=os.getenv('PIPELINE_LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    forms = _pop_option(args, '--forms')
    csv_path = _pop_option(args, '--csv')
    form_types = [f.strip() for f in forms.split(',') if f.strip()] if forms else None

    if not args or args[0] not in NETWORK_COMMANDS | LOCAL_COMMANDS:
        if args:
            print(f"Unknown command: {args[0]}")
        print(USAGE)
        return 1

    command, params = args[0], args[1:]

    try:
        if command in LOCAL_COMMANDS:
            return _run_local(command, params, csv_path)
        return _run_network(command, params, form_types)
    except ConfigurationError as e:
        print(f"❌ {e}")
        return 1


def _run_local(command: str, params: List[str], csv_path: Optional[str]) -> int:
    db_path = os.getenv('PIPELINE_DB_PATH', './data/filings.db')
    conn = get_connection(db_path)
    init_database(conn)

    try:
        if command == 'history':
            status = HistoryStatus(params[0].lower()) if params else None
            _print_history(conn, status, csv_path)
        elif command == 'stats':
            _print_stats(conn)
        elif command == 'missing':
            start_date, end_date = _dates(params, 2)
            settings = _settings_for_local()
            engine = BackfillEngine(conn, settings, orchestrator=None)
            missing = engine.find_missing_dates(start_date, end_date)
            print(f"📅 Missing dates between {start_date} and {end_date}: {len(missing)}")
            for d in missing:
                print(f"   {d.isoformat()} ({d.strftime('%A')})")
    except ValueError as e:
        if isinstance(e, ConfigurationError):
            raise
        print(f"❌ {e}")
        return 1
    finally:
        conn.close()

    return 0


def _run_network(command: str, params: List[str], form_types: Optional[List[str]]) -> int:
    settings = PipelineSettings.from_env()
    job = _build_job(command, params, form_types, settings)

    init_conn = get_connection(settings.db_path)
    init_database(init_conn)
    init_conn.close()

    with RateLimiter(settings.requests_per_second) as limiter:
        client = SecClient(settings.user_agent, limiter, timeout=settings.request_timeout)

        def run_job(conn: sqlite3.Connection, cancel_event):
            orchestrator = DownloadOrchestrator(
                conn, settings,
                FeedFetcher(client, settings),
                DocumentFetcher(client, settings.archives_base_url),
            )
            return job(conn, orchestrator, cancel_event)

        print(f"🚀 Running {command} {' '.join(params)}")
        print()

        with JobRunner(lambda: get_connection(settings.db_path), settings.max_concurrent_jobs) as runner:
            handle = runner.submit(command, run_job)
            try:
                result = handle.result()
            except KeyboardInterrupt:
                print("⏹  Cancelling after the current filing...")
                handle.cancel()
                result = handle.result()

        client.close()

    _print_result(result)
    print(f"💾 Data stored in: {settings.db_path}")
    return 0


def _build_job(
    command: str,
    params: List[str],
    form_types: Optional[List[str]],
    settings: PipelineSettings
) -> Callable:
    """Validate arguments up front and return the job body."""
    if command == 'date':
        (target_date,) = _dates(params, 1)
        return lambda conn, o, cancel: o.download_for_date(target_date, form_types, cancel)

    if command == 'range':
        start_date, end_date = _dates(params, 2)
        return lambda conn, o, cancel: o.download_for_date_range(start_date, end_date, form_types, cancel)

    if command == 'latest':
        count = _int_param(params, 'N')
        return lambda conn, o, cancel: o.download_latest(count, form_types, cancel)

    if command == 'accession':
        if len(params) < 2:
            raise ConfigurationError("accession requires ACCESSION_NUMBER and FORM_TYPE")
        accession_number, form_type = params[0], params[1]
        return lambda conn, o, cancel: o.download_by_accession_number(
            accession_number, form_type, cancel_event=cancel
        )

    if command == 'retry':
        max_retries = _int_param(params, 'MAX_RETRIES') if params else settings.max_retries
        return lambda conn, o, cancel: RetryCoordinator(conn, settings, o).retry_failed_downloads(
            max_retries, cancel
        )

    if command == 'backfill-range':
        start_date, end_date = _dates(params, 2)
        return lambda conn, o, cancel: BackfillEngine(conn, settings, o).backfill_date_range(
            start_date, end_date, form_types, cancel
        )

    if command == 'backfill-recent':
        days = _int_param(params, 'DAYS')
        return lambda conn, o, cancel: BackfillEngine(conn, settings, o).backfill_recent_days(
            days, form_types, cancel
        )

    if command == 'backfill-auto':
        if not settings.auto_backfill:
            raise ConfigurationError("Auto backfill is disabled (set PIPELINE_AUTO_BACKFILL=true)")
        return lambda conn, o, cancel: BackfillEngine(conn, settings, o).auto_backfill(form_types, cancel)

    raise ConfigurationError(f"Unknown command: {command}")


def _print_result(result) -> None:
    print("📊 Pipeline Results:")

    if isinstance(result, HistoryStatus):
        print(f"   Status: {result.value.upper()}")
    elif isinstance(result, DownloadSummary):
        _print_download_summary(result)
    elif isinstance(result, BackfillSummary):
        print(f"   Dates processed: {len(result.dates_processed)}")
        for failed_date, error in result.dates_failed.items():
            print(f"   ❌ {failed_date}: {error}")
        _print_download_summary(result.downloads)
    elif isinstance(result, RetrySummary):
        print(f"   Retried: {result.attempted}")
        print(f"   Succeeded: {result.succeeded}")
        print(f"   Failed again: {result.failed}")
        print(f"   Skipped: {result.skipped}")

    if getattr(result, 'cancelled', False):
        print("   ⏹  Cancelled before finishing")
    print()


def _print_download_summary(summary: DownloadSummary) -> None:
    print(f"   Attempted: {summary.attempted}")
    print(f"   Downloaded: {summary.downloaded}")
    print(f"   Skipped: {summary.skipped}")
    print(f"   Failed: {summary.failed}")


def _print_history(conn: sqlite3.Connection, status: Optional[HistoryStatus], csv_path: Optional[str]) -> None:
    df = history_frame(conn, status=status, limit=1000 if csv_path else 50)

    if csv_path:
        df.to_csv(csv_path, index=False)
        print(f"Saved: {csv_path} ({len(df)} records)")
        return

    if df.empty:
        print("No download history")
        return

    columns = ['accession_number', 'form_type', 'filing_date', 'status', 'retry_count', 'error_message']
    print(df[columns].to_string(index=False))


def _print_stats(conn: sqlite3.Connection) -> None:
    stats = get_download_statistics(conn)

    print("📊 Download Statistics:")
    print(f"   Total: {stats['total']}")
    print(f"   Completed: {stats['completed']}")
    print(f"   Failed: {stats['failed']}")
    print(f"   Pending: {stats['pending']}")
    print(f"   Skipped: {stats['skipped']}")
    if stats['success_rate'] is not None:
        print(f"   Success rate: {stats['success_rate']:.1%}")
    if stats['avg_duration_ms'] is not None:
        print(f"   Avg processing time: {stats['avg_duration_ms']:.0f}ms")
    print()

    if stats['by_form_type']:
        print("📄 By form type (history / stored):")
        stored = count_filings_by_form_type(conn)
        for form_type, count in stats['by_form_type'].items():
            print(f"   {form_type}: {count} / {stored.get(form_type, 0)}")


def _settings_for_local() -> PipelineSettings:
    """Gap detection only needs dates, so a missing user agent is tolerated."""
    try:
        return PipelineSettings.from_env()
    except ConfigurationError:
        return PipelineSettings(user_agent='filing-intake local@localhost')


def _pop_option(args: List[str], name: str) -> Optional[str]:
    if name not in args:
        return None
    index = args.index(name)
    if index + 1 >= len(args):
        raise SystemExit(f"{name} needs a value")
    value = args[index + 1]
    del args[index:index + 2]
    return value


def _dates(params: List[str], count: int) -> List[date]:
    if len(params) < count:
        raise ConfigurationError(f"Expected {count} date(s) in YYYY-MM-DD format")
    dates = []
    for value in params[:count]:
        try:
            dates.append(date.fromisoformat(value))
        except ValueError:
            raise ConfigurationError(f"Invalid date format: {value}. Use YYYY-MM-DD")
    return dates


def _int_param(params: List[str], name: str) -> int:
    if not params:
        raise ConfigurationError(f"Missing {name}")
    try:
        return int(params[0])
    except ValueError:
        raise ConfigurationError(f"Invalid {name}: {params[0]}. Must be integer.")


if __name__ == '__main__':
    sys.exit(main())
