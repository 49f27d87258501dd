"""
Core Enumerations

Centralized enum definitions for consistent typing across the codebase.
Using StrEnum (Python 3.11+) for string-based enums that serialize naturally.
"""

from enum import StrEnum


class Classification(StrEnum):
    """Outcome assigned to every candidate record."""

    KNOWN = "known"
    UNKNOWN = "unknown"
    DUPLICATE_KNOWN = "duplicate_known"  # Known hash already counted in this run
    EMPTY_HASH = "empty_hash"            # Neither MD5 nor SHA-1 present


class RunStatus(StrEnum):
    """Completion state of a classification run."""

    COMPLETE = "complete"
    PARTIAL = "partial"      # Some chunks failed their lookups
    CANCELLED = "cancelled"


class HashColumn(StrEnum):
    """Hash kinds the reference store may carry."""

    SHA1 = "sha1"
    MD5 = "md5"
