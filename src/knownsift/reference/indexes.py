"""
Hash index management for the reference database.

Presence of an index is detected by schema introspection (``PRAGMA
index_list``/``index_info``) so the database stays self-describing: an index
built by an earlier run, or by whoever prepared the database, is reused
whatever its name.
"""
from __future__ import annotations

import sqlite3
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ..core.exceptions import IndexCreationFailedError
from ..core.logging import get_logger
from .connection import connect_reference
from .schema import ReferenceSchema

__all__ = ["IndexReport", "find_hash_indexes", "ensure_indexes", "index_name_for"]

LOGGER = get_logger("reference.indexes")


@dataclass
class IndexReport:
    """Outcome of :func:`ensure_indexes`."""

    existing: Dict[str, str] = field(default_factory=dict)  # column -> index name
    created: Dict[str, str] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)  # columns on views
    build_seconds: float = 0.0

    @property
    def changed(self) -> bool:
        return bool(self.created)


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def index_name_for(table: str, column: str) -> str:
    """Name used for indexes created by KnownSift."""
    return f"{table}_{column}_idx".replace("-", "_").replace(" ", "_")


def find_hash_indexes(
    conn: sqlite3.Connection,
    schema: ReferenceSchema,
) -> Dict[str, Optional[str]]:
    """
    Map each present hash column to an index that can serve lookups on it.

    An index qualifies when the hash column is its leading column.

    Returns:
        Dict of column name -> index name (None when unindexed)
    """
    wanted = {column.lower(): column for column in schema.hash_columns.values()}
    found: Dict[str, Optional[str]] = {column: None for column in wanted.values()}
    if schema.is_view:
        return found

    for index_row in conn.execute(f"PRAGMA index_list({_quote(schema.table)})").fetchall():
        index_name = index_row[1]
        info = conn.execute(f"PRAGMA index_info({_quote(index_name)})").fetchall()
        # index_info rows: (seqno, cid, name); expressions have name NULL
        leading = [row[2] for row in info if row[0] == 0]
        if not leading or leading[0] is None:
            continue
        column = wanted.get(leading[0].lower())
        if column and found[column] is None:
            found[column] = index_name
    return found


def ensure_indexes(
    db_path: Path,
    schema: ReferenceSchema,
    *,
    timeout: float = 30.0,
    pragmas: Optional[Mapping[str, Any]] = None,
) -> IndexReport:
    """
    Make sure every hash column of the reference table is indexed.

    The check runs on a read-only connection; a writable connection is only
    opened when something is missing, so re-running against an indexed
    database never writes to it.

    Args:
        db_path: Path to the reference database
        schema: Resolved schema from :func:`probe_schema`
        timeout: Busy timeout for the connections
        pragmas: Pragmas applied to the writable connection

    Returns:
        IndexReport describing what existed and what was built

    Raises:
        IndexCreationFailedError: If a missing index cannot be built. Any
            partially built index is rolled back.
    """
    report = IndexReport()

    if schema.is_view:
        report.skipped = list(schema.hash_columns.values())
        LOGGER.warning(
            "'%s' is a view; indexes cannot be created on it, lookups may be slow",
            schema.table,
        )
        return report

    conn = connect_reference(db_path, read_only=True, timeout=timeout)
    try:
        present = find_hash_indexes(conn, schema)
    finally:
        conn.close()

    missing = [column for column, index in present.items() if index is None]
    report.existing = {column: index for column, index in present.items() if index}
    for column, index in report.existing.items():
        LOGGER.debug("Index %s already covers %s.%s", index, schema.table, column)

    if not missing:
        LOGGER.info("Indexes verified on %s (%s)", schema.table, ", ".join(report.existing))
        return report

    started = time.monotonic()
    try:
        conn = connect_reference(db_path, read_only=False, timeout=timeout, pragmas=pragmas)
    except (sqlite3.Error, OSError) as e:
        raise IndexCreationFailedError(
            f"Cannot open {db_path} for writing to build indexes on "
            f"{', '.join(missing)}: {e}"
        ) from e

    try:
        # Single transaction: either every missing index appears or none does
        conn.isolation_level = None
        conn.execute("BEGIN IMMEDIATE")
        for column in missing:
            name = index_name_for(schema.table, column)
            LOGGER.info("Creating index %s on %s.%s...", name, schema.table, column)
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS {_quote(name)} "
                f"ON {_quote(schema.table)} ({_quote(column)})"
            )
            report.created[column] = name
        conn.execute("COMMIT")
    except sqlite3.Error as e:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        report.created.clear()
        raise IndexCreationFailedError(
            f"Failed to build hash indexes on {schema.table}: {e}"
        ) from e
    finally:
        conn.close()

    report.build_seconds = time.monotonic() - started
    LOGGER.info(
        "Built %d index(es) on %s in %.1f s",
        len(report.created), schema.table, report.build_seconds,
    )
    return report
