"""
Error Types

Exceptions raised by the storage and archival core.
"""


class VenotesError(Exception):
    """Base class for all venotes errors."""
    pass


class ConfigError(VenotesError):
    """Raised when configuration is missing or invalid."""
    pass


class StorageError(VenotesError):
    """Base class for content store failures."""
    pass


class BackendError(StorageError):
    """Raised on transport, permission or I/O failure in a storage backend."""
    pass


class NotFound(StorageError, FileNotFoundError):
    """Raised when a storage key or file record does not exist."""
    pass


class NotTextFileError(VenotesError):
    """Raised when text content is requested for a binary attachment."""
    pass


class AuthenticationError(VenotesError):
    """
    Raised when an encrypted archive cannot be opened.

    The message never says whether the passphrase was wrong or the data was
    damaged.
    """

    MESSAGE = "invalid password or corrupted file"

    def __init__(self, message: str = MESSAGE):
        super().__init__(message)


class ArchiveFormatError(VenotesError):
    """Raised when an archive or one of its entries is malformed."""
    pass
