"""
SQLite connection helpers for the reference hash database.

The reference database is evidence-grade input and must never be modified
apart from the one-time index build:
- Lookups and schema probing use read-only URI connections
- Only the index manager opens a read-write connection
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional, Union

from ..core.logging import get_logger

LOGGER = get_logger("reference.connection")

_PRAGMA_NAMES = {"cache_size", "temp_store", "mmap_size", "query_only", "threads"}


class ReferenceOpenError(sqlite3.Error):
    """Raised when the reference database cannot be opened."""
    pass


def _apply_pragmas(conn: sqlite3.Connection, pragmas: Optional[Mapping[str, Any]]) -> None:
    for name, value in (pragmas or {}).items():
        if name not in _PRAGMA_NAMES:
            LOGGER.warning("Ignoring unsupported pragma: %s", name)
            continue
        try:
            conn.execute(f"PRAGMA {name} = {value}")
        except sqlite3.Error as e:
            LOGGER.debug("Pragma %s=%s rejected: %s", name, value, e)


def connect_reference(
    db_path: Union[str, Path],
    *,
    read_only: bool = True,
    timeout: float = 30.0,
    pragmas: Optional[Mapping[str, Any]] = None,
) -> sqlite3.Connection:
    """
    Open a connection to the reference database.

    Args:
        db_path: Path to the SQLite database file
        read_only: Open with ``mode=ro`` (default) or ``mode=rw``
        timeout: Busy timeout in seconds
        pragmas: Performance pragmas applied after opening

    Returns:
        Open sqlite3.Connection. The caller owns it.

    Raises:
        FileNotFoundError: If the database file doesn't exist
        ReferenceOpenError: If SQLite refuses to open it
    """
    db_path = Path(db_path)
    if not db_path.exists():
        raise FileNotFoundError(f"Database not found: {db_path}")

    mode = "ro" if read_only else "rw"
    uri = f"{db_path.resolve().as_uri()}?mode={mode}"
    try:
        # Worker threads own their connection; the dispatcher closes it from
        # the calling thread once the pool has shut down.
        conn = sqlite3.connect(uri, uri=True, timeout=timeout, check_same_thread=False)
        # Force SQLite to read the header so corrupt files fail here
        conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
    except sqlite3.Error as e:
        raise ReferenceOpenError(f"Failed to open database {db_path}: {e}") from e

    _apply_pragmas(conn, pragmas)
    LOGGER.debug("Opened reference database %s (mode=%s)", db_path, mode)
    return conn


@contextmanager
def reference_connection(
    db_path: Union[str, Path],
    *,
    read_only: bool = True,
    timeout: float = 30.0,
    pragmas: Optional[Mapping[str, Any]] = None,
) -> Iterator[sqlite3.Connection]:
    """
    Context-managed variant of :func:`connect_reference`.

    Example:
        with reference_connection("nsrl.db") as conn:
            schema = probe_schema(conn)
    """
    conn = connect_reference(db_path, read_only=read_only, timeout=timeout, pragmas=pragmas)
    try:
        yield conn
    finally:
        conn.close()
