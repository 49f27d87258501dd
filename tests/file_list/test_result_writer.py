"""
Tests for the known/unknown result writer.
"""
import os
from pathlib import Path

import pytest

from knownsift.core.config import OutputConfig
from knownsift.core.enums import Classification
from knownsift.core.exceptions import OutputFileUnwritableError
from knownsift.file_list import CandidateRecord, ResultWriter, default_output_paths
from tests.fixtures.db import FILE_LIST_HEADER, file_row, read_csv


def _record(name: str, row_number: int = 2) -> CandidateRecord:
    return CandidateRecord(row_number=row_number, fields=tuple(file_row(name, sha1="aa")), sha1="aa")


@pytest.fixture
def writer(tmp_path):
    w = ResultWriter(tmp_path / "list_known.csv", tmp_path / "list_unknown.csv", FILE_LIST_HEADER)
    yield w
    if not w.closed:
        w.abort()


def test_default_output_paths(tmp_path):
    known, unknown = default_output_paths(tmp_path / "export.csv")

    assert known == tmp_path / "export_known.csv"
    assert unknown == tmp_path / "export_unknown.csv"


def test_configured_output_names(tmp_path):
    config = OutputConfig(known_file="known_software.csv", unknown_file="unknown_software.csv")

    known, unknown = default_output_paths(tmp_path / "export.txt", config)

    assert known == tmp_path / "known_software.csv"
    assert unknown == tmp_path / "unknown_software.csv"


def test_custom_suffixes_keep_input_extension(tmp_path):
    config = OutputConfig(known_suffix="-nsrl", unknown_suffix="-review")

    known, unknown = default_output_paths(tmp_path / "export.tsv", config)

    assert known.name == "export-nsrl.tsv"
    assert unknown.name == "export-review.tsv"


def test_output_clashing_with_input_rejected(tmp_path):
    config = OutputConfig(known_file="export.csv")

    with pytest.raises(OutputFileUnwritableError, match="overwrite the input"):
        default_output_paths(tmp_path / "export.csv", config)


def test_routing(writer, tmp_path):
    writer.write(_record("known.dll"), Classification.KNOWN)
    writer.write(_record("dup.dll"), Classification.DUPLICATE_KNOWN)
    writer.write(_record("unknown.exe"), Classification.UNKNOWN)
    writer.write(_record("empty.bin"), Classification.EMPTY_HASH)
    writer.commit()

    known_rows = read_csv(tmp_path / "list_known.csv")
    unknown_rows = read_csv(tmp_path / "list_unknown.csv")

    assert known_rows[0] == list(FILE_LIST_HEADER)
    assert [row[0] for row in known_rows[1:]] == ["known.dll", "dup.dll"]
    assert [row[0] for row in unknown_rows[1:]] == ["unknown.exe", "empty.bin"]


def test_duplicates_can_be_dropped(tmp_path):
    writer = ResultWriter(
        tmp_path / "k.csv", tmp_path / "u.csv", FILE_LIST_HEADER, duplicates_to_known=False
    )
    writer.write(_record("known.dll"), Classification.KNOWN)
    writer.write(_record("dup.dll"), Classification.DUPLICATE_KNOWN)
    writer.commit()

    assert writer.target_for(Classification.DUPLICATE_KNOWN) is None
    assert len(read_csv(tmp_path / "k.csv")) == 2
    assert len(read_csv(tmp_path / "u.csv")) == 1


def test_outputs_partial_until_commit(writer, tmp_path):
    writer.write(_record("a.dll"), Classification.KNOWN)

    assert (tmp_path / "list_known.csv.partial").exists()
    assert not (tmp_path / "list_known.csv").exists()

    writer.commit()

    assert (tmp_path / "list_known.csv").exists()
    assert not (tmp_path / "list_known.csv.partial").exists()


def test_commit_overwrites_previous_outputs(tmp_path):
    (tmp_path / "k.csv").write_text("stale\n", encoding="utf-8")
    writer = ResultWriter(tmp_path / "k.csv", tmp_path / "u.csv", FILE_LIST_HEADER)
    writer.commit()

    assert read_csv(tmp_path / "k.csv") == [list(FILE_LIST_HEADER)]


def test_abort_leaves_partial_files(writer, tmp_path):
    writer.write(_record("a.dll"), Classification.KNOWN)

    partials = writer.abort()

    assert partials == (tmp_path / "list_known.csv.partial", tmp_path / "list_unknown.csv.partial")
    assert all(p.exists() for p in partials)
    assert not (tmp_path / "list_known.csv").exists()
    assert read_csv(partials[0])[1][0] == "a.dll"


def test_unwritable_directory(tmp_path):
    missing_dir = tmp_path / "does" / "not" / "exist"

    with pytest.raises(OutputFileUnwritableError, match="Cannot create output file"):
        ResultWriter(missing_dir / "k.csv", missing_dir / "u.csv", FILE_LIST_HEADER)


def test_context_manager_aborts_on_error(tmp_path):
    with pytest.raises(RuntimeError):
        with ResultWriter(tmp_path / "k.csv", tmp_path / "u.csv", FILE_LIST_HEADER):
            raise RuntimeError("boom")

    assert (tmp_path / "k.csv.partial").exists()
    assert not Path(tmp_path / "k.csv").exists()


def test_failed_commit_leaves_both_outputs_partial(tmp_path, monkeypatch):
    writer = ResultWriter(tmp_path / "k.csv", tmp_path / "u.csv", FILE_LIST_HEADER)
    writer.write(_record("a.dll"), Classification.KNOWN)
    real_replace = os.replace

    def _replace(src, dst):
        if Path(dst) == tmp_path / "u.csv":
            raise PermissionError("locked by another process")
        return real_replace(src, dst)

    monkeypatch.setattr(os, "replace", _replace)

    with pytest.raises(OutputFileUnwritableError, match="Cannot finalize"):
        writer.commit()

    assert not writer.committed
    assert not (tmp_path / "k.csv").exists()
    assert not (tmp_path / "u.csv").exists()
    assert read_csv(tmp_path / "k.csv.partial")[1][0] == "a.dll"
    assert (tmp_path / "u.csv.partial").exists()


def test_outputs_use_given_encoding(tmp_path):
    writer = ResultWriter(tmp_path / "k.csv", tmp_path / "u.csv", FILE_LIST_HEADER, encoding="utf-16")
    writer.write(_record("résumé.exe"), Classification.KNOWN)
    writer.commit()

    assert (tmp_path / "k.csv").read_bytes()[:2] in (b"\xff\xfe", b"\xfe\xff")
    assert read_csv(tmp_path / "k.csv", encoding="utf-16")[1][0] == "résumé.exe"
