"""
Reference module - NSRL-style hash database access.

This module provides:
- connect_reference/reference_connection: read-only and index-build connections
- probe_schema: locate the hash table and its sha1/md5 columns
- ensure_indexes: one-time, idempotent hash index build
"""
from __future__ import annotations

from .connection import ReferenceOpenError, connect_reference, reference_connection
from .indexes import IndexReport, ensure_indexes, find_hash_indexes, index_name_for
from .schema import DEFAULT_TABLES, ReferenceSchema, normalize_column_name, probe_schema

__all__ = [
    # Connections
    "ReferenceOpenError",
    "connect_reference",
    "reference_connection",
    # Schema
    "DEFAULT_TABLES",
    "ReferenceSchema",
    "normalize_column_name",
    "probe_schema",
    # Indexes
    "IndexReport",
    "ensure_indexes",
    "find_hash_indexes",
    "index_name_for",
]
