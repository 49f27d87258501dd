"""
Exceptions for the hash match engine.
"""


class KnownSiftError(Exception):
    """Base exception for KnownSift errors."""
    pass


class ConfigurationError(KnownSiftError):
    """Raised when the configuration file is invalid."""
    pass


class SchemaNotFoundError(KnownSiftError):
    """Raised when the reference database has no usable hash table."""
    pass


class IndexCreationFailedError(KnownSiftError):
    """Raised when a missing hash index cannot be built."""
    pass


class InputFileUnreadableError(KnownSiftError):
    """Raised when the candidate file list cannot be opened or has a bad header."""
    pass


class OutputFileUnwritableError(KnownSiftError):
    """Raised when a result file cannot be created or written."""
    pass


class DatabaseQueryFailedError(KnownSiftError):
    """Raised when a chunk lookup keeps failing after its retries."""

    def __init__(self, message: str, attempts: int = 1):
        self.attempts = attempts
        super().__init__(message)


class MalformedRecordError(KnownSiftError):
    """Raised for an input row that does not match the header shape."""

    def __init__(self, row_number: int, field_count: int, expected: int):
        self.row_number = row_number
        self.field_count = field_count
        self.expected = expected
        super().__init__(
            f"Row {row_number} has {field_count} fields, expected {expected}"
        )
