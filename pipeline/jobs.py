"""
Job runner - bounded worker pool for download, backfill and retry jobs.

Each submitted job gets its own database connection and its own cancel
event; the returned JobHandle exposes the result and cancellation.
"""

import logging
import sqlite3
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, List, Optional


logger = logging.getLogger(__name__)

JobFunction = Callable[[sqlite3.Connection, threading.Event], Any]


class JobHandle:
    """Handle on one submitted job."""

    def __init__(self, name: str, future: Future, cancel_event: threading.Event):
        self.name = name
        self.future = future
        self.cancel_event = cancel_event

    def cancel(self) -> None:
        """
        Request cancellation. A queued job is dropped; a running job stops
        at its next between-filings check.
        """
        self.cancel_event.set()
        self.future.cancel()

    def done(self) -> bool:
        return self.future.done()

    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def result(self, timeout: Optional[float] = None) -> Any:
        return self.future.result(timeout)

    def __repr__(self) -> str:
        state = 'done' if self.done() else 'running'
        return f"JobHandle({self.name!r}, {state})"


class JobRunner:
    """
    Runs jobs on a ThreadPoolExecutor of max_workers threads.

    Usage:
        with JobRunner(lambda: get_connection(db_path), max_workers=5) as runner:
            handle = runner.submit('backfill', lambda conn, cancel: ...)
            summary = handle.result()
    """

    def __init__(self, connection_factory: Callable[[], sqlite3.Connection], max_workers: int = 5):
        self.connection_factory = connection_factory
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='filing-job')
        self._handles: List[JobHandle] = []
        self._lock = threading.Lock()

    def __enter__(self) -> 'JobRunner':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(wait=True)

    def submit(self, name: str, fn: JobFunction) -> JobHandle:
        """
        Queue a job.

        Args:
            name: Label used in logs
            fn: Callable taking (conn, cancel_event)

        Returns:
            JobHandle for the queued job
        """
        cancel_event = threading.Event()
        future = self._executor.submit(self._run, name, fn, cancel_event)
        handle = JobHandle(name, future, cancel_event)

        with self._lock:
            self._handles.append(handle)

        logger.info(f"Submitted job {name}")
        return handle

    def active_jobs(self) -> List[JobHandle]:
        with self._lock:
            self._handles = [h for h in self._handles if not h.done()]
            return list(self._handles)

    def cancel_all(self) -> None:
        for handle in self.active_jobs():
            handle.cancel()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _run(self, name: str, fn: JobFunction, cancel_event: threading.Event) -> Any:
        logger.info(f"Job {name} started")
        conn = self.connection_factory()
        try:
            result = fn(conn, cancel_event)
            logger.info(f"Job {name} finished")
            return result
        except Exception as e:
            logger.error(f"Job {name} failed: {e}")
            raise
        finally:
            conn.close()
