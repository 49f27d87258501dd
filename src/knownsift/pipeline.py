"""
Classification pipeline orchestration.

Schema probe -> one-time index build -> streamed ingestion -> parallel
classification -> known/unknown outputs and summary.
"""
from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple

from .core.config import AppConfig
from .core.enums import RunStatus
from .core.exceptions import SchemaNotFoundError
from .core.logging import get_logger
from .file_list.parser import FileListReader
from .file_list.writer import ResultWriter, default_output_paths
from .matching.classifier import ClassificationEngine
from .matching.dispatcher import ParallelDispatcher
from .matching.lookup import HashLookup
from .matching.seen import SeenHashSet
from .matching.summary import RunSummary
from .reference.connection import reference_connection
from .reference.indexes import IndexReport, ensure_indexes
from .reference.schema import ReferenceSchema, probe_schema

__all__ = ["RunResult", "prepare_reference", "run_classification"]

LOGGER = get_logger("pipeline")


@dataclass
class RunResult:
    """Everything a caller needs to report on a finished run."""

    summary: RunSummary
    schema: ReferenceSchema
    index_report: IndexReport
    known_path: Path
    unknown_path: Path
    committed: bool

    @property
    def complete(self) -> bool:
        return self.committed and self.summary.status is RunStatus.COMPLETE


def prepare_reference(db_path: Path, config: AppConfig) -> Tuple[ReferenceSchema, IndexReport]:
    """
    Resolve the reference schema and make sure its hash columns are indexed.

    Raises:
        SchemaNotFoundError: If the database is missing, unreadable or has no
            usable hash table
        IndexCreationFailedError: If a missing index cannot be built
    """
    LOGGER.info("Opening database: %s", db_path)
    try:
        with reference_connection(
            db_path, read_only=True, timeout=config.database.timeout
        ) as conn:
            schema = probe_schema(conn, config.database.tables)
    except FileNotFoundError as e:
        raise SchemaNotFoundError(str(e)) from e
    except sqlite3.Error as e:
        raise SchemaNotFoundError(f"Cannot read reference database {db_path}: {e}") from e

    report = ensure_indexes(
        db_path, schema, timeout=config.database.timeout, pragmas=config.database.pragmas
    )
    return schema, report


def run_classification(
    db_path: Path,
    input_path: Path,
    config: Optional[AppConfig] = None,
    *,
    known_path: Optional[Path] = None,
    unknown_path: Optional[Path] = None,
    total_callback: Optional[Callable[[int], None]] = None,
    progress_callback: Optional[Callable[[int], None]] = None,
    cancel_check: Optional[Callable[[], bool]] = None,
) -> RunResult:
    """
    Classify every record of ``input_path`` against the reference database.

    Args:
        db_path: Reference (NSRL-style) SQLite database
        input_path: Candidate file list
        config: Application configuration (defaults when None)
        known_path: Override for the known output file
        unknown_path: Override for the unknown output file
        total_callback: Called once with the number of data rows (enables a
            counting pass over the input)
        progress_callback: Called with the number of records handled so far
        cancel_check: Callable returning True to stop early

    Returns:
        RunResult. Outputs are only moved to their final names when the run
        completed; otherwise they keep a ``.partial`` suffix.
    """
    config = config or AppConfig()
    db_path = Path(db_path)
    input_path = Path(input_path)

    schema, index_report = prepare_reference(db_path, config)

    LOGGER.info("Opening file list: %s", input_path)
    reader = FileListReader(
        input_path,
        config.input.layout,
        delimiter=config.input.delimiter,
        encoding=config.input.encoding,
        extensions=config.input.extensions or None,
    )
    if reader.extensions:
        LOGGER.info("Filtering for extensions: %s", ", ".join(sorted(reader.extensions)))

    default_known, default_unknown = default_output_paths(input_path, config.output)
    known_path = Path(known_path) if known_path else default_known
    unknown_path = Path(unknown_path) if unknown_path else default_unknown

    if total_callback:
        total_callback(reader.count_rows())

    engine = ClassificationEngine(
        schema,
        SeenHashSet(),
        HashLookup(schema, retries=config.database.query_retries),
    )
    dispatcher = ParallelDispatcher(
        db_path,
        engine,
        max_workers=config.parallel.effective_workers,
        chunk_size=config.parallel.chunk_size,
        timeout=config.database.timeout,
        pragmas=config.database.pragmas,
    )

    writer = ResultWriter(
        known_path,
        unknown_path,
        reader.header,
        delimiter=config.input.delimiter,
        encoding=reader.encoding,
        duplicates_to_known=config.output.duplicates_to_known,
    )
    try:
        summary = dispatcher.run(
            reader,
            writer.write,
            progress_callback=progress_callback,
            cancel_check=cancel_check,
        )
    except BaseException:
        writer.abort()
        raise

    summary.malformed = reader.malformed_count
    summary.filtered = reader.filtered_count

    if summary.status is RunStatus.COMPLETE:
        writer.commit()
        committed = True
    else:
        writer.abort()
        committed = False
        known_path = writer.partial_path(known_path)
        unknown_path = writer.partial_path(unknown_path)

    if not summary.is_consistent:
        LOGGER.error("Summary counts do not add up: %s", summary.as_dict())

    return RunResult(
        summary=summary,
        schema=schema,
        index_report=index_report,
        known_path=known_path,
        unknown_path=unknown_path,
        committed=committed,
    )
