"""
File list module - candidate list input and known/unknown output.

Usage:
    from knownsift.file_list import FileListReader, ResultWriter
"""
from __future__ import annotations

from .parser import (
    CandidateRecord,
    FileListReader,
    detect_encoding,
    normalize_extension,
    normalize_hash,
)
from .writer import PARTIAL_SUFFIX, ResultWriter, default_output_paths

__all__ = [
    "CandidateRecord",
    "FileListReader",
    "detect_encoding",
    "normalize_extension",
    "normalize_hash",
    "PARTIAL_SUFFIX",
    "ResultWriter",
    "default_output_paths",
]
