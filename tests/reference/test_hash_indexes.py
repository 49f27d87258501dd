"""
Tests for the one-time hash index build.
"""
import sqlite3

import pytest

from knownsift.core.exceptions import IndexCreationFailedError
from knownsift.reference import (
    ensure_indexes,
    find_hash_indexes,
    index_name_for,
    probe_schema,
    reference_connection,
)
from knownsift.reference import indexes as indexes_module
from tests.fixtures.db import list_indexes


def _schema(path):
    with reference_connection(path) as conn:
        return probe_schema(conn)


def test_creates_missing_indexes(reference_db):
    schema = _schema(reference_db)

    report = ensure_indexes(reference_db, schema)

    assert report.created == {"sha1": "METADATA_sha1_idx", "md5": "METADATA_md5_idx"}
    assert report.existing == {}
    assert [name for name, _ in list_indexes(reference_db)] == ["METADATA_md5_idx", "METADATA_sha1_idx"]


def test_second_run_reuses_indexes(reference_db):
    """Re-running is a no-op: nothing rebuilt, same index state."""
    schema = _schema(reference_db)
    ensure_indexes(reference_db, schema)
    state_after_first = list_indexes(reference_db)

    report = ensure_indexes(reference_db, schema)

    assert report.created == {}
    assert report.existing == {"sha1": "METADATA_sha1_idx", "md5": "METADATA_md5_idx"}
    assert not report.changed
    assert list_indexes(reference_db) == state_after_first


def test_second_run_never_opens_writable_connection(reference_db, monkeypatch):
    schema = _schema(reference_db)
    ensure_indexes(reference_db, schema)

    original = indexes_module.connect_reference
    modes = []

    def _tracking(path, *, read_only=True, **kwargs):
        modes.append(read_only)
        return original(path, read_only=read_only, **kwargs)

    monkeypatch.setattr(indexes_module, "connect_reference", _tracking)
    ensure_indexes(reference_db, schema)

    assert modes == [True]


def test_existing_index_with_other_name_is_reused(reference_db):
    conn = sqlite3.connect(reference_db)
    conn.execute('CREATE INDEX nsrl_sha1 ON METADATA (sha1)')
    conn.execute('CREATE INDEX nsrl_md5_pkg ON METADATA (md5, package_id)')
    conn.commit()
    conn.close()

    report = ensure_indexes(reference_db, _schema(reference_db))

    assert report.created == {}
    assert report.existing == {"sha1": "nsrl_sha1", "md5": "nsrl_md5_pkg"}


def test_index_with_hash_as_second_column_does_not_count(reference_db):
    conn = sqlite3.connect(reference_db)
    conn.execute('CREATE INDEX pkg_sha1 ON METADATA (package_id, sha1)')
    conn.commit()

    schema = probe_schema(conn)
    assert find_hash_indexes(conn, schema) == {"sha1": None, "md5": None}
    conn.close()


def test_view_is_skipped(tmp_path):
    path = tmp_path / "view.db"
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE hashes (sha1 TEXT, md5 TEXT)")
    conn.execute("CREATE VIEW FILE AS SELECT sha1, md5 FROM hashes")
    conn.commit()
    conn.close()

    report = ensure_indexes(path, _schema(path))

    assert report.skipped == ["sha1", "md5"]
    assert report.created == {}
    assert list_indexes(path) == []


def test_unwritable_database_raises(reference_db, monkeypatch):
    original = indexes_module.connect_reference

    def _read_only_filesystem(path, *, read_only=True, **kwargs):
        if not read_only:
            raise sqlite3.OperationalError("attempt to write a readonly database")
        return original(path, read_only=read_only, **kwargs)

    monkeypatch.setattr(indexes_module, "connect_reference", _read_only_filesystem)

    with pytest.raises(IndexCreationFailedError, match="for writing"):
        ensure_indexes(reference_db, _schema(reference_db))
    assert list_indexes(reference_db) == []


def test_failed_build_rolls_back(reference_db):
    """A failure on the second index leaves no partial index behind."""
    conn = sqlite3.connect(reference_db)
    # Occupies the name the md5 index would get
    conn.execute(f'CREATE TABLE "{index_name_for("METADATA", "md5")}" (x TEXT)')
    conn.commit()
    conn.close()

    with pytest.raises(IndexCreationFailedError):
        ensure_indexes(reference_db, _schema(reference_db))

    assert list_indexes(reference_db) == []


def test_index_name_for_sanitizes():
    assert index_name_for("FILE", "SHA-1") == "FILE_SHA_1_idx"
