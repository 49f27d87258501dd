"""
Known/unknown result files.

Both outputs are written to ``<name>.partial`` and only renamed to their
final names by :meth:`ResultWriter.commit`, so an interrupted run never
leaves files that look complete.
"""
from __future__ import annotations

import csv
import os
from pathlib import Path
from typing import IO, Optional, Sequence, Tuple

from ..core.config import OutputConfig
from ..core.enums import Classification
from ..core.exceptions import OutputFileUnwritableError
from ..core.logging import get_logger
from .parser import CandidateRecord

__all__ = ["ResultWriter", "PARTIAL_SUFFIX", "default_output_paths"]

logger = get_logger("file_list.writer")

PARTIAL_SUFFIX = ".partial"

# 64 KB write buffer per output file
WRITE_BUFFER_SIZE = 65536


def default_output_paths(input_path: Path, config: Optional[OutputConfig] = None) -> Tuple[Path, Path]:
    """
    Resolve the known/unknown output paths for an input file.

    Configured file names are taken relative to the input's directory;
    otherwise the names are ``<stem>_known<suffix>`` and
    ``<stem>_unknown<suffix>`` next to the input.
    """
    config = config or OutputConfig()
    directory = input_path.parent
    suffix = input_path.suffix or ".csv"

    if config.known_file:
        known = directory / config.known_file
    else:
        known = directory / f"{input_path.stem}{config.known_suffix}{suffix}"
    if config.unknown_file:
        unknown = directory / config.unknown_file
    else:
        unknown = directory / f"{input_path.stem}{config.unknown_suffix}{suffix}"

    if known.resolve() == unknown.resolve():
        raise OutputFileUnwritableError(f"Known and unknown outputs resolve to the same file: {known}")
    if input_path.resolve() in (known.resolve(), unknown.resolve()):
        raise OutputFileUnwritableError(f"Output would overwrite the input file: {input_path}")
    return known, unknown


class ResultWriter:
    """Single logical writer for the known and unknown outputs.

    Outputs use the encoding of the input list so exports round-trip (a
    UTF-16 export yields UTF-16 results).
    """

    def __init__(
        self,
        known_path: Path,
        unknown_path: Path,
        header: Sequence[str],
        *,
        delimiter: str = ",",
        encoding: str = "utf-8",
        duplicates_to_known: bool = True,
    ):
        self.known_path = Path(known_path)
        self.unknown_path = Path(unknown_path)
        self.header = tuple(header)
        self.delimiter = delimiter
        self.encoding = encoding
        self.duplicates_to_known = duplicates_to_known
        self.rows_written = {self.known_path: 0, self.unknown_path: 0}
        self.closed = False
        self.committed = False

        self._files: list[IO[str]] = []
        self._known = self._open(self.known_path)
        self._unknown = self._open(self.unknown_path)

    @staticmethod
    def partial_path(path: Path) -> Path:
        return path.with_name(path.name + PARTIAL_SUFFIX)

    def _open(self, path: Path):
        partial = self.partial_path(path)
        try:
            handle = open(partial, "w", encoding=self.encoding, newline="", buffering=WRITE_BUFFER_SIZE)
        except OSError as e:
            self._close_files()
            raise OutputFileUnwritableError(f"Cannot create output file {partial}: {e}") from e
        self._files.append(handle)
        writer = csv.writer(handle, delimiter=self.delimiter)
        try:
            writer.writerow(self.header)
        except OSError as e:
            self._close_files()
            raise OutputFileUnwritableError(f"Cannot write output file {partial}: {e}") from e
        return writer

    def target_for(self, classification: Classification) -> Optional[Path]:
        """Output file a classification is routed to (None = not written)."""
        if classification is Classification.KNOWN:
            return self.known_path
        if classification is Classification.DUPLICATE_KNOWN:
            return self.known_path if self.duplicates_to_known else None
        return self.unknown_path

    def write(self, record: CandidateRecord, classification: Classification) -> None:
        """Append a record's original fields to the output it belongs to."""
        target = self.target_for(classification)
        if target is None:
            return
        writer = self._known if target == self.known_path else self._unknown
        try:
            writer.writerow(record.fields)
        except OSError as e:
            raise OutputFileUnwritableError(f"Cannot write to {self.partial_path(target)}: {e}") from e
        self.rows_written[target] += 1

    def flush(self) -> None:
        try:
            for handle in self._files:
                handle.flush()
        except OSError as e:
            raise OutputFileUnwritableError(f"Cannot flush output files: {e}") from e

    def _close_files(self) -> None:
        errors = []
        for handle in self._files:
            try:
                handle.close()
            except OSError as e:
                errors.append(e)
        self._files.clear()
        self.closed = True
        if errors:
            raise OutputFileUnwritableError(f"Cannot close output files: {errors[0]}") from errors[0]

    def commit(self) -> Tuple[Path, Path]:
        """
        Close both outputs and move them to their final names.

        Either both files get their final names or both stay ``.partial``:
        if the second rename fails, the first is moved back.

        Raises:
            OutputFileUnwritableError: If the outputs cannot be renamed
        """
        self._close_files()
        renamed = []
        try:
            for final in (self.known_path, self.unknown_path):
                os.replace(self.partial_path(final), final)
                renamed.append(final)
        except OSError as e:
            for final in renamed:
                try:
                    os.replace(final, self.partial_path(final))
                except OSError as rollback_error:
                    logger.error("Cannot move %s back to .partial: %s", final, rollback_error)
            self.abort()
            raise OutputFileUnwritableError(f"Cannot finalize output files: {e}") from e
        self.committed = True
        logger.info(
            "Wrote %d known rows to %s and %d unknown rows to %s",
            self.rows_written[self.known_path], self.known_path,
            self.rows_written[self.unknown_path], self.unknown_path,
        )
        return self.known_path, self.unknown_path

    def abort(self) -> Tuple[Path, Path]:
        """Close both outputs and leave them under their ``.partial`` names."""
        if not self.closed:
            try:
                self._close_files()
            except OutputFileUnwritableError as e:
                logger.error("%s", e)
        partials = (self.partial_path(self.known_path), self.partial_path(self.unknown_path))
        logger.warning(
            "Run did not complete; partial results left in %s and %s",
            partials[0], partials[1],
        )
        return partials

    def __enter__(self) -> ResultWriter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self.committed and not self.closed:
            self.abort()
