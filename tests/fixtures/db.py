"""Reference database and file list fixtures for tests."""
from __future__ import annotations

import csv
import sqlite3
from itertools import count
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

import pytest

# Forensic export layout: Extension at 2, MD5 at 6, SHA-1 at 7
FILE_LIST_HEADER = (
    "Filename",
    "Full Path",
    "Extension",
    "Size",
    "Created",
    "Modified",
    "MD5",
    "SHA1",
)


def file_row(
    name: str,
    md5: str = "",
    sha1: str = "",
    *,
    size: str = "100",
    path: Optional[str] = None,
) -> list[str]:
    """Build one file list row in the standard layout."""
    extension = name.rsplit(".", 1)[-1] if "." in name else ""
    return [
        name,
        path or f"C:\\evidence\\{name}",
        extension,
        size,
        "2024-01-01 10:00:00",
        "2024-01-02 11:30:00",
        md5,
        sha1,
    ]


def write_file_list(
    path: Path,
    rows: Iterable[Sequence[str]],
    header: Sequence[str] = FILE_LIST_HEADER,
    *,
    encoding: str = "utf-8",
    delimiter: str = ",",
) -> Path:
    with open(path, "w", encoding=encoding, newline="") as f:
        writer = csv.writer(f, delimiter=delimiter)
        writer.writerow(header)
        writer.writerows(rows)
    return path


def read_csv(path: Path, encoding: str = "utf-8") -> list[list[str]]:
    with open(path, "r", encoding=encoding, newline="") as f:
        return list(csv.reader(f))


def create_reference_db(
    path: Path,
    rows: Iterable[tuple] = (),
    *,
    table: str = "METADATA",
    columns: Sequence[str] = ("sha1", "md5", "file_name", "file_size", "package_id"),
) -> Path:
    """Create a small NSRL-style database with the given hash rows."""
    conn = sqlite3.connect(path)
    try:
        column_sql = ", ".join(f'"{c}" TEXT' for c in columns)
        conn.execute(f'CREATE TABLE "{table}" ({column_sql})')
        placeholders = ", ".join("?" * len(columns))
        padded = [tuple(row) + (None,) * (len(columns) - len(row)) for row in rows]
        conn.executemany(f'INSERT INTO "{table}" VALUES ({placeholders})', padded)
        conn.commit()
    finally:
        conn.close()
    return path


def list_indexes(path: Path) -> list[tuple[str, str]]:
    conn = sqlite3.connect(path)
    try:
        return conn.execute(
            "SELECT name, sql FROM sqlite_master WHERE type='index' ORDER BY name"
        ).fetchall()
    finally:
        conn.close()


@pytest.fixture
def reference_db_factory(tmp_path: Path) -> Callable[..., Path]:
    """Create reference databases under tmp_path."""
    counter = count(1)

    def _create(rows: Iterable[tuple] = (), **kwargs) -> Path:
        return create_reference_db(tmp_path / f"reference_{next(counter)}.db", rows, **kwargs)

    return _create


@pytest.fixture
def reference_db(reference_db_factory) -> Path:
    """Reference DB with two known files (upper-case hashes, as NSRL ships them)."""
    return reference_db_factory(
        [
            ("AAAA1111AAAA1111AAAA1111AAAA1111AAAA1111", "AAAA1111AAAA1111AAAA1111AAAA1111", "kernel32.dll", "1024", "1"),
            ("BBBB2222BBBB2222BBBB2222BBBB2222BBBB2222", "BBBB2222BBBB2222BBBB2222BBBB2222", "notepad.exe", "2048", "1"),
            (None, "CCCC3333CCCC3333CCCC3333CCCC3333", "md5only.sys", "4096", "2"),
        ]
    )


@pytest.fixture
def file_list_factory(tmp_path: Path) -> Callable[..., Path]:
    """Write file lists under tmp_path/input."""
    input_dir = tmp_path / "input"
    input_dir.mkdir(exist_ok=True)

    def _create(rows: Iterable[Sequence[str]], name: str = "filelist.csv", **kwargs) -> Path:
        return write_file_list(input_dir / name, rows, **kwargs)

    return _create
