"""
Reference schema detection.

NSRL-style databases ship the hash corpus under different names depending on
the release: RDSv3 exposes a ``METADATA`` table and a ``FILE`` view, older
conversions a ``FILE`` table. Column spelling varies as well (``sha1``,
``SHA-1``, ``SHA1``...). This module locates the table and its hash columns
by introspection instead of assuming a fixed layout.
"""
from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..core.enums import HashColumn
from ..core.exceptions import SchemaNotFoundError
from ..core.logging import get_logger

__all__ = [
    "ReferenceSchema",
    "DEFAULT_TABLES",
    "probe_schema",
    "normalize_column_name",
]

LOGGER = get_logger("reference.schema")

# Preference order when several candidates exist
DEFAULT_TABLES = ("METADATA", "FILE")

_NAME_NOISE = re.compile(r"[\s_\-]+")


@dataclass(frozen=True)
class ReferenceSchema:
    """Resolved location of the hash columns in the reference store."""

    table: str
    object_type: str  # "table" or "view"
    sha1_column: Optional[str] = None
    md5_column: Optional[str] = None

    @property
    def is_view(self) -> bool:
        return self.object_type == "view"

    @property
    def hash_columns(self) -> Dict[HashColumn, str]:
        """Present hash columns keyed by hash kind."""
        columns: Dict[HashColumn, str] = {}
        if self.sha1_column:
            columns[HashColumn.SHA1] = self.sha1_column
        if self.md5_column:
            columns[HashColumn.MD5] = self.md5_column
        return columns


def normalize_column_name(name: str) -> str:
    """Fold a column name for comparison ('SHA-1' -> 'sha1')."""
    return _NAME_NOISE.sub("", name).lower()


def _find_object(conn: sqlite3.Connection, name: str) -> Optional[sqlite3.Row | tuple]:
    return conn.execute(
        """
        SELECT name, type FROM sqlite_master
        WHERE type IN ('table', 'view') AND name = ? COLLATE NOCASE
        ORDER BY type = 'view'
        """,
        (name,),
    ).fetchone()


def _fetch_column_names(conn: sqlite3.Connection, table: str) -> List[str]:
    quoted = table.replace('"', '""')
    return [row[1] for row in conn.execute(f'PRAGMA table_info("{quoted}")')]


def probe_schema(
    conn: sqlite3.Connection,
    candidates: Sequence[str] = DEFAULT_TABLES,
) -> ReferenceSchema:
    """
    Locate the reference hash table and its SHA-1/MD5 columns.

    Args:
        conn: Connection to the reference database
        candidates: Table or view names to try, in preference order

    Returns:
        ReferenceSchema for the first candidate carrying a hash column

    Raises:
        SchemaNotFoundError: If no candidate exists or none has a hash column
    """
    tried: List[str] = []
    for candidate in candidates:
        found = _find_object(conn, candidate)
        if found is None:
            continue
        table, object_type = found[0], found[1]
        tried.append(table)

        sha1_column = md5_column = None
        for column in _fetch_column_names(conn, table):
            folded = normalize_column_name(column)
            if folded == HashColumn.SHA1 and sha1_column is None:
                sha1_column = column
            elif folded == HashColumn.MD5 and md5_column is None:
                md5_column = column

        if sha1_column is None and md5_column is None:
            LOGGER.warning("%s '%s' has no sha1/md5 column, skipping", object_type, table)
            continue

        schema = ReferenceSchema(
            table=table,
            object_type=object_type,
            sha1_column=sha1_column,
            md5_column=md5_column,
        )
        LOGGER.info(
            "Using %s '%s' (sha1=%s, md5=%s)",
            object_type, table, sha1_column or "-", md5_column or "-",
        )
        return schema

    if tried:
        raise SchemaNotFoundError(
            f"None of {', '.join(tried)} has a sha1 or md5 column"
        )
    raise SchemaNotFoundError(
        "Database must contain a "
        + " or ".join(candidates)
        + " table or view with a sha1/md5 column"
    )
