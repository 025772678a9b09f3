"""Importer exception hierarchy.

Shape and infrastructure failures are raised; per-row validation and
resolution findings are collected as ValidationError values instead.
"""


class ImporterError(Exception):
    """Base exception for all importer failures."""


class ConfigError(ImporterError):
    """Raised for invalid runtime configuration."""


class FileFormatError(ImporterError):
    """Raised when a source file cannot be read as a scripts or claims file."""


class EmptyFileError(FileFormatError):
    """Raised when a source file contains no data rows to import."""


class StorageError(ImporterError):
    """Raised by a store when a single operation fails."""


class DuplicateRecordError(StorageError):
    """Raised when a write violates a natural-key or record uniqueness constraint."""


class StorageUnavailableError(StorageError):
    """Raised when the store cannot be reached at all. Fatal to the run."""


class ImportLogClosedError(ImporterError):
    """Raised when a finalized import log entry is updated again."""
