"""
Batched set-membership queries against the reference table.

One query per chunk and hash column replaces one round trip per record. The
IN list is split to stay below SQLite's bound-parameter limit (999 on older
builds).
"""
from __future__ import annotations

import sqlite3
import time
from typing import Collection, Iterator, List, Set

from ..core.exceptions import DatabaseQueryFailedError
from ..core.logging import get_logger
from ..reference.schema import ReferenceSchema

__all__ = ["HashLookup", "MAX_VALUES_PER_QUERY"]

LOGGER = get_logger("matching.lookup")

# Each value is bound twice (lower and upper case)
MAX_VALUES_PER_QUERY = 450

RETRY_DELAY_SECONDS = 0.5


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _batched(values: List[str], size: int) -> Iterator[List[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


class HashLookup:
    """Find which of a set of hashes exist in one column of the reference table."""

    def __init__(self, schema: ReferenceSchema, *, retries: int = 1, retry_delay: float = RETRY_DELAY_SECONDS):
        self.schema = schema
        self.retries = max(0, retries)
        self.retry_delay = retry_delay

    def _query(self, conn: sqlite3.Connection, column: str, values: List[str]) -> Set[str]:
        found: Set[str] = set()
        table = _quote(self.schema.table)
        quoted_column = _quote(column)
        for batch in _batched(values, MAX_VALUES_PER_QUERY):
            # Stored hashes are uniformly cased in practice (NSRL uses upper
            # case); probing both forms keeps the column's binary index usable.
            params = list({variant for value in batch for variant in (value, value.upper())})
            placeholders = ",".join("?" * len(params))
            rows = conn.execute(
                f"SELECT DISTINCT {quoted_column} FROM {table} "
                f"WHERE {quoted_column} IN ({placeholders})",
                params,
            ).fetchall()
            found.update(str(row[0]).lower() for row in rows if row[0] is not None)
        return found

    def find_existing(
        self,
        conn: sqlite3.Connection,
        column: str,
        values: Collection[str],
    ) -> Set[str]:
        """
        Return the subset of ``values`` present in ``column``.

        Values must already be normalized to lower case. A failing query is
        retried ``retries`` times before giving up.

        Raises:
            DatabaseQueryFailedError: If every attempt fails
        """
        wanted = sorted({value for value in values if value})
        if not wanted:
            return set()

        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self._query(conn, column, wanted) & set(wanted)
            except sqlite3.Error as e:
                if attempt >= attempts:
                    raise DatabaseQueryFailedError(
                        f"Lookup of {len(wanted)} hashes in {self.schema.table}.{column} "
                        f"failed after {attempts} attempt(s): {e}",
                        attempts=attempts,
                    ) from e
                LOGGER.warning(
                    "Lookup in %s.%s failed (attempt %d/%d): %s; retrying",
                    self.schema.table, column, attempt, attempts, e,
                )
                time.sleep(self.retry_delay)
        return set()
