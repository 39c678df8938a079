"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class LibraryDlError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(LibraryDlError):
    """Raised for issues related to configuration loading or validation."""


class DataSourceError(LibraryDlError):
    """Raised when the document store cannot be reached or queried."""


class RunSetupError(LibraryDlError):
    """Raised when a download run cannot be prepared (e.g. no run directory)."""


class ReconstructionError(LibraryDlError):
    """Raised when a document's payload cannot be rebuilt from its source."""


class ChunkMissingError(ReconstructionError):
    """Raised when a chunk row is absent for a logical chunk position."""


class EmptyPayloadError(ReconstructionError):
    """Raised when a single-blob file has no payload or an empty one."""


class ChunkLayoutError(ReconstructionError):
    """
    Raised when a filesystem chunk directory does not follow the numeric
    chunk naming layout.
    """
