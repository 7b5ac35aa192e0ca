"""
Storage Interface

Abstract interface for content store backends.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, BinaryIO, Dict


class StorageBackend(Enum):
    """Supported storage backend types."""
    LOCAL = "local"
    S3 = "s3"


class ContentStore(ABC):
    """
    Abstract interface for content store backends.

    Objects are opaque byte payloads addressed by a string key. No metadata
    is kept with the object; the database tracks which keys are referenced.
    """

    @abstractmethod
    def exists(self, key: str) -> bool:
        """
        Check if object exists.

        Args:
            key: Object key

        Returns:
            True if exists, False if not found

        Raises:
            BackendError: Transport or permission failure
        """
        pass

    @abstractmethod
    def put(self, key: str, stream: BinaryIO) -> str:
        """
        Store an object, replacing any existing object under the same key.

        Args:
            key: Object key
            stream: Readable binary stream with the object data

        Returns:
            The key the object was stored under

        Raises:
            BackendError: I/O or transport failure
        """
        pass

    @abstractmethod
    def get(self, key: str) -> BinaryIO:
        """
        Open an object for reading.

        The caller owns the returned stream and must close it.

        Args:
            key: Object key

        Returns:
            Readable binary stream

        Raises:
            NotFound: Object not found
            BackendError: I/O or transport failure
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """
        Delete an object. Deleting a missing key is not an error.

        Args:
            key: Object key

        Raises:
            BackendError: I/O or transport failure
        """
        pass

    @abstractmethod
    def get_storage_info(self) -> Dict[str, Any]:
        """
        Get storage backend information.

        Returns:
            Dict with backend type and location
        """
        pass
