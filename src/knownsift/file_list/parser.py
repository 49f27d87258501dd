"""
Candidate file list reader for forensic tool exports.

The exports this tool targets carry the MD5 and SHA-1 of each file at fixed,
consecutive positions (see :class:`FieldLayout`); hash extraction relies on
those positions rather than on header names.

Handles encoding detection (UTF-8, UTF-16, Latin-1) and malformed rows
gracefully: a bad row is logged and skipped, never fatal.
"""
from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple

import chardet

from ..core.config import FieldLayout
from ..core.exceptions import InputFileUnreadableError, MalformedRecordError
from ..core.logging import get_logger

__all__ = [
    "CandidateRecord",
    "FileListReader",
    "detect_encoding",
    "normalize_hash",
    "normalize_extension",
]

logger = get_logger("file_list.parser")

# Number of malformed rows reported individually before summarising
MALFORMED_LOG_LIMIT = 5

# csv module default (128 KB) is too small for some exports with long paths
csv.field_size_limit(16 * 1024 * 1024)


def normalize_hash(value: str) -> str:
    """Normalize a hash field for lookup ('' when absent)."""
    return value.strip().lower() if value else ""


def normalize_extension(value: str) -> str:
    """Normalize an extension for comparison ('.DLL' -> 'dll')."""
    return value.strip().lstrip(".").lower() if value else ""


@dataclass(frozen=True, slots=True)
class CandidateRecord:
    """One parsed row of the candidate file list."""

    row_number: int
    fields: Tuple[str, ...]  # original fields, in source order
    md5: str = ""
    sha1: str = ""
    extension: str = ""

    @property
    def hash_key(self) -> str:
        """Preferred identity of the file: SHA-1 when present, else MD5."""
        return self.sha1 or self.md5

    @property
    def has_hash(self) -> bool:
        return bool(self.sha1 or self.md5)


def detect_encoding(file_path: Path) -> str:
    """
    Auto-detect file encoding using chardet.

    Args:
        file_path: Path to CSV file

    Returns:
        Detected encoding (e.g., 'utf-8', 'utf-16-le', 'latin-1')
    """
    with open(file_path, "rb") as f:
        raw_data = f.read(100000)  # Read first 100KB for detection

    # BOMs are authoritative; chardet is only consulted without one
    if raw_data[:3] == b"\xef\xbb\xbf":
        return "utf-8-sig"
    if raw_data[:2] == b"\xff\xfe":
        return "utf-16"
    if raw_data[:2] == b"\xfe\xff":
        return "utf-16"

    result = chardet.detect(raw_data)
    encoding = result["encoding"]
    confidence = result["confidence"] or 0.0

    logger.info("Detected encoding: %s (confidence: %.2f)", encoding, confidence)

    if not encoding or encoding.lower() == "ascii":
        # ASCII is a subset of UTF-8; later rows may not be ASCII
        return "utf-8"
    return encoding


class FileListReader:
    """
    Lazy, restartable reader of a delimited file list with a header row.

    Each iteration reopens the file, so the record sequence can be consumed
    more than once (e.g. a counting pass before classification).
    """

    def __init__(
        self,
        path: Path,
        layout: Optional[FieldLayout] = None,
        *,
        delimiter: str = ",",
        encoding: Optional[str] = None,
        extensions: Optional[Iterable[str]] = None,
    ):
        """
        Initialize reader and validate the header.

        Args:
            path: Path to the file list
            layout: Fixed hash field positions (default: MD5 at 6, SHA-1 at 7)
            delimiter: Field delimiter
            encoding: Text encoding (None = detect with chardet)
            extensions: Optional extension filter (case-insensitive, dot optional)

        Raises:
            InputFileUnreadableError: If the file cannot be read or its header
                is too short to reach the hash fields
        """
        self.path = Path(path)
        self.layout = layout or FieldLayout()
        self.delimiter = delimiter
        self.extensions = (
            frozenset(normalize_extension(ext) for ext in extensions if normalize_extension(ext))
            if extensions
            else None
        )
        self.malformed_count = 0
        self.filtered_count = 0

        if not self.path.is_file():
            raise InputFileUnreadableError(f"Input file not found: {self.path}")
        try:
            self.encoding = encoding or detect_encoding(self.path)
        except OSError as e:
            raise InputFileUnreadableError(f"Cannot read input file {self.path}: {e}") from e

        self.header = self._read_header()
        self._extension_column = self._resolve_extension_column()
        self._check_hash_headers()

    # -------------------------------------------------------------------------
    # Header handling
    # -------------------------------------------------------------------------

    def _open(self):
        try:
            return open(self.path, "r", encoding=self.encoding, errors="strict", newline="")
        except (OSError, LookupError) as e:
            raise InputFileUnreadableError(f"Cannot open input file {self.path}: {e}") from e

    def _read_header(self) -> Tuple[str, ...]:
        with self._open() as f:
            try:
                header = next(csv.reader(f, delimiter=self.delimiter), None)
            except (csv.Error, UnicodeDecodeError) as e:
                raise InputFileUnreadableError(
                    f"Cannot parse header of {self.path}: {e}"
                ) from e

        if not header:
            raise InputFileUnreadableError(f"Input file has no header row: {self.path}")
        if len(header) < self.layout.min_fields:
            raise InputFileUnreadableError(
                f"Header of {self.path} has {len(header)} columns; at least "
                f"{self.layout.min_fields} are needed to reach the MD5/SHA-1 fields "
                f"(columns {self.layout.md5_index + 1} and {self.layout.sha1_index + 1})"
            )
        logger.info("File list headers: %s", header)
        return tuple(header)

    def _resolve_extension_column(self) -> int:
        for idx, name in enumerate(self.header):
            if name.strip().lower() == "extension":
                return idx
        return self.layout.extension_index

    def _check_hash_headers(self) -> None:
        md5_name = self.header[self.layout.md5_index].lower()
        sha1_name = self.header[self.layout.sha1_index].lower().replace("-", "")
        if "md5" not in md5_name or "sha1" not in sha1_name:
            logger.warning(
                "Nonstandard header layout (column %d='%s', column %d='%s'); "
                "using fixed positions for MD5/SHA-1",
                self.layout.md5_index + 1, self.header[self.layout.md5_index],
                self.layout.sha1_index + 1, self.header[self.layout.sha1_index],
            )

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    def parse_row(self, row_number: int, row: List[str]) -> CandidateRecord:
        """
        Build a CandidateRecord from one data row.

        Raises:
            MalformedRecordError: If the row width differs from the header's
        """
        if len(row) != len(self.header):
            raise MalformedRecordError(row_number, len(row), len(self.header))

        extension = ""
        if self._extension_column < len(row):
            extension = normalize_extension(row[self._extension_column])

        return CandidateRecord(
            row_number=row_number,
            fields=tuple(row),
            md5=normalize_hash(row[self.layout.md5_index]),
            sha1=normalize_hash(row[self.layout.sha1_index]),
            extension=extension,
        )

    def _note_malformed(self, message: str) -> None:
        self.malformed_count += 1
        if self.malformed_count <= MALFORMED_LOG_LIMIT:
            logger.warning("Skipping malformed row: %s", message)
        elif self.malformed_count == MALFORMED_LOG_LIMIT + 1:
            logger.warning("Further malformed rows are skipped without logging")

    def __iter__(self) -> Iterator[CandidateRecord]:
        self.malformed_count = 0
        self.filtered_count = 0

        with self._open() as f:
            reader = csv.reader(f, delimiter=self.delimiter)
            try:
                next(reader)  # header
            except (csv.Error, UnicodeDecodeError) as e:
                raise InputFileUnreadableError(f"Cannot parse header of {self.path}: {e}") from e

            while True:
                try:
                    row = next(reader)
                except StopIteration:
                    break
                except csv.Error as e:
                    self._note_malformed(f"line {reader.line_num}: {e}")
                    continue
                except UnicodeDecodeError as e:
                    raise InputFileUnreadableError(
                        f"Input file {self.path} is not valid {self.encoding} "
                        f"near line {reader.line_num}: {e}"
                    ) from e

                if not row:
                    continue

                try:
                    record = self.parse_row(reader.line_num, row)
                except MalformedRecordError as e:
                    self._note_malformed(str(e))
                    continue

                if self.extensions is not None and record.extension not in self.extensions:
                    self.filtered_count += 1
                    continue

                yield record

        if self.malformed_count:
            logger.info("Skipped %d malformed rows in %s", self.malformed_count, self.path.name)

    def count_rows(self) -> int:
        """Count data rows (excluding header) for progress reporting."""
        count = 0
        with self._open() as f:
            reader = csv.reader(f, delimiter=self.delimiter)
            try:
                next(reader, None)
                while True:
                    try:
                        row = next(reader)
                    except StopIteration:
                        break
                    except csv.Error:
                        count += 1
                        continue
                    if row:
                        count += 1
            except UnicodeDecodeError as e:
                raise InputFileUnreadableError(
                    f"Input file {self.path} is not valid {self.encoding}: {e}"
                ) from e
        return count
