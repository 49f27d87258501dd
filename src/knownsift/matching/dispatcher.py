"""
Parallel Dispatcher - classify the record stream chunk by chunk on a thread pool.

Each worker thread opens its own read-only connection to the reference
database (a sqlite3 connection is not shared between concurrent queries).
Workers only run the reference lookups. Finished chunks are buffered on the
calling thread and resolved (duplicate detection, sink, counters) strictly in
chunk order, so the first record of the input carrying a known hash is the
one classified known whatever the worker count.

Thread safety:
- Each worker has its own sqlite3 connection (no sharing)
- The SeenHashSet is only consulted from the calling thread
- Summary counters are only touched by the calling thread
- Cancellation via threading.Event for clean shutdown
"""

from __future__ import annotations

import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from itertools import islice
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from ..core.enums import Classification, RunStatus
from ..core.exceptions import DatabaseQueryFailedError
from ..core.logging import get_logger
from ..file_list.parser import CandidateRecord
from ..reference.connection import connect_reference
from .classifier import ChunkMatches, ClassificationEngine
from .summary import RunSummary

__all__ = ["ParallelDispatcher", "DEFAULT_CHUNK_SIZE", "iter_chunks"]

LOGGER = get_logger("matching.dispatcher")

DEFAULT_CHUNK_SIZE = 10000
CPU_COUNT = os.cpu_count() or 4

Sink = Callable[[CandidateRecord, Classification], None]


def iter_chunks(records: Iterable[CandidateRecord], size: int) -> Iterator[List[CandidateRecord]]:
    """Split a record stream into lists of at most ``size`` records."""
    iterator = iter(records)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


class ParallelDispatcher:
    """
    Fan chunks of records out to classification workers and merge the results.

    ``max_workers == 1`` runs sequentially on the calling thread; both paths
    produce the same counts.
    """

    def __init__(
        self,
        db_path: Path,
        engine: ClassificationEngine,
        *,
        max_workers: int = 0,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        timeout: float = 30.0,
        pragmas: Optional[Mapping[str, Any]] = None,
    ):
        """
        Args:
            db_path: Reference database (opened read-only per worker)
            engine: Classification engine shared by all workers
            max_workers: Worker threads (0 = one per CPU)
            chunk_size: Records per chunk / membership query
            timeout: Busy timeout of worker connections
            pragmas: Performance pragmas for worker connections
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.db_path = Path(db_path)
        self.engine = engine
        self.chunk_size = chunk_size
        self.max_workers = CPU_COUNT if max_workers <= 0 else max_workers
        self.timeout = timeout
        self.pragmas = dict(pragmas or {})

        self._local = threading.local()
        self._conn_lock = threading.Lock()
        self._connections: List[Any] = []
        self._cancel_event = threading.Event()

        LOGGER.debug(
            "ParallelDispatcher initialized: workers=%d, chunk_size=%d",
            self.max_workers, self.chunk_size,
        )

    def request_cancellation(self) -> None:
        """Request cancellation of the run - thread-safe."""
        self._cancel_event.set()
        LOGGER.info("Cancellation requested")

    def is_cancelled(self) -> bool:
        """Check if cancellation was requested - thread-safe."""
        return self._cancel_event.is_set()

    # -------------------------------------------------------------------------
    # Worker side
    # -------------------------------------------------------------------------

    def _get_connection(self):
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = connect_reference(
                self.db_path, read_only=True, timeout=self.timeout, pragmas=self.pragmas
            )
            self._local.conn = conn
            with self._conn_lock:
                self._connections.append(conn)
        return conn

    def _close_connections(self) -> None:
        with self._conn_lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            try:
                conn.close()
            except Exception as e:
                LOGGER.debug("Error closing worker connection: %s", e)
        self._local = threading.local()

    def _match(self, index: int, chunk: List[CandidateRecord]) -> ChunkMatches:
        return self.engine.match_chunk(self._get_connection(), chunk, index)

    # -------------------------------------------------------------------------
    # Calling side
    # -------------------------------------------------------------------------

    def _consume(self, matches: ChunkMatches, summary: RunSummary, sink: Sink) -> None:
        result = self.engine.resolve(matches)
        for record, classification in result.items:
            sink(record, classification)
            summary.record(classification, record.hash_key)

    def _chunk_failed(self, index: int, size: int, error: Exception, summary: RunSummary) -> None:
        LOGGER.error("Chunk %d (%d records) failed: %s", index, size, error)
        summary.errored += size
        summary.failed_chunks.append(index)
        summary.status = RunStatus.PARTIAL

    def run(
        self,
        records: Iterable[CandidateRecord],
        sink: Sink,
        progress_callback: Optional[Callable[[int], None]] = None,
        cancel_check: Optional[Callable[[], bool]] = None,
    ) -> RunSummary:
        """
        Classify every record and feed it to ``sink``.

        Args:
            records: Record stream (consumed once)
            sink: Called with (record, classification) on the calling thread
            progress_callback: Called with the number of records handled so far
            cancel_check: Callable returning True if the run should stop

        Returns:
            RunSummary with counts, status and timing

        Raises:
            Anything raised by the record stream or the sink; pending chunks
            are cancelled first.
        """
        self._cancel_event.clear()
        summary = RunSummary(workers=self.max_workers)
        started = time.monotonic()

        try:
            if self.max_workers == 1:
                LOGGER.info("Classifying sequentially (chunk size %d)", self.chunk_size)
                self._run_sequential(records, sink, summary, progress_callback, cancel_check)
            else:
                LOGGER.info(
                    "Classifying with %d workers (chunk size %d)",
                    self.max_workers, self.chunk_size,
                )
                self._run_parallel(records, sink, summary, progress_callback, cancel_check)
        except BaseException:
            self._cancel_event.set()
            raise
        finally:
            self._close_connections()
            summary.elapsed_seconds = time.monotonic() - started

        if self._cancel_event.is_set():
            summary.status = RunStatus.CANCELLED

        LOGGER.info(
            "Classification %s: %d records, %d known, %d unknown, %d duplicates, "
            "%d empty, %d errored, workers=%d",
            summary.status, summary.total, summary.known, summary.unknown,
            summary.duplicates, summary.empty, summary.errored, self.max_workers,
        )
        return summary

    def _should_stop(self, cancel_check: Optional[Callable[[], bool]]) -> bool:
        if cancel_check and cancel_check() and not self._cancel_event.is_set():
            LOGGER.info("Cancellation requested via callback")
            self._cancel_event.set()
        return self._cancel_event.is_set()

    def _run_sequential(
        self,
        records: Iterable[CandidateRecord],
        sink: Sink,
        summary: RunSummary,
        progress_callback: Optional[Callable[[int], None]],
        cancel_check: Optional[Callable[[], bool]],
    ) -> None:
        handled = 0
        for index, chunk in enumerate(iter_chunks(records, self.chunk_size)):
            if self._should_stop(cancel_check):
                break
            try:
                matches = self._match(index, chunk)
            except DatabaseQueryFailedError as e:
                self._chunk_failed(index, len(chunk), e, summary)
            else:
                self._consume(matches, summary, sink)
            handled += len(chunk)
            if progress_callback:
                progress_callback(handled)

    def _run_parallel(
        self,
        records: Iterable[CandidateRecord],
        sink: Sink,
        summary: RunSummary,
        progress_callback: Optional[Callable[[int], None]],
        cancel_check: Optional[Callable[[], bool]],
    ) -> None:
        # Bound memory: never hold more than two chunks per worker, counting
        # finished chunks still waiting for their turn
        max_in_flight = self.max_workers * 2
        chunks = enumerate(iter_chunks(records, self.chunk_size))
        pending: Dict[Future, Tuple[int, int]] = {}
        # Finished chunks keyed by index: (size, matches or lookup error)
        ready: Dict[int, Tuple[int, Union[ChunkMatches, DatabaseQueryFailedError]]] = {}
        next_index = 0
        exhausted = False
        handled = 0

        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="knownsift-worker"
        ) as executor:
            try:
                while True:
                    while (
                        not exhausted
                        and len(pending) + len(ready) < max_in_flight
                        and not self._cancel_event.is_set()
                    ):
                        try:
                            index, chunk = next(chunks)
                        except StopIteration:
                            exhausted = True
                            break
                        future = executor.submit(self._match, index, chunk)
                        pending[future] = (index, len(chunk))

                    if not pending:
                        break

                    # Poll for cancellation even while workers are busy
                    done, _ = wait(pending, timeout=0.2, return_when=FIRST_COMPLETED)
                    if self._should_stop(cancel_check):
                        LOGGER.info(
                            "Stopping dispatch; %d chunk(s) abandoned", len(pending) + len(ready)
                        )
                        break

                    for future in done:
                        index, size = pending.pop(future)
                        try:
                            ready[index] = (size, future.result())
                        except DatabaseQueryFailedError as e:
                            ready[index] = (size, e)

                    # Resolve in input order
                    while next_index in ready:
                        size, outcome = ready.pop(next_index)
                        if isinstance(outcome, DatabaseQueryFailedError):
                            self._chunk_failed(next_index, size, outcome, summary)
                        else:
                            self._consume(outcome, summary, sink)
                        next_index += 1
                        handled += size
                        if progress_callback:
                            progress_callback(handled)
                        if self._cancel_event.is_set():
                            break
            finally:
                for future in pending:
                    future.cancel()
