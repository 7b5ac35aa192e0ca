"""
Local Storage Manager

File-system based content store.
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, BinaryIO, Dict
import logging

from ..errors import BackendError, NotFound
from .storage_interface import ContentStore, StorageBackend


class LocalStorageManager(ContentStore):
    """
    Local filesystem content store.

    Features:
    - Flat directory of objects named by key
    - Atomic writes (temporary file, fsync, rename)
    - Idempotent deletes

    Directory Structure:
        base_path/
            {key}               # Object data
            .tmp-{key}-XXXX     # In-flight writes, never visible under {key}
    """

    CHUNK_SIZE = 1 << 20

    def __init__(self, base_path: str):
        """
        Initialize local storage manager.

        Args:
            base_path: Root directory for objects
        """
        self.base_path = Path(base_path)
        self.logger = logging.getLogger(__name__)

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackendError(f"Cannot create storage directory {self.base_path}: {e}")

        self.logger.info(f"Local storage initialized: {self.base_path}")

    def _get_object_path(self, key: str) -> Path:
        """Get path for object file."""
        if not key or key in (".", "..") or "/" in key or "\\" in key or "\x00" in key:
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.base_path / key

    def exists(self, key: str) -> bool:
        """Check if object exists in local storage."""
        path = self._get_object_path(key)
        try:
            return path.is_file()
        except OSError as e:
            raise BackendError(f"Failed to stat {key}: {e}")

    def put(self, key: str, stream: BinaryIO) -> str:
        """Store an object atomically in local storage."""
        object_path = self._get_object_path(key)

        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".tmp-{key}-", dir=str(self.base_path))
        except OSError as e:
            self.logger.error(f"Failed to put object {key}: {e}")
            raise BackendError(f"Failed to create temporary file for {key}: {e}")

        try:
            with os.fdopen(fd, "wb") as tmp:
                shutil.copyfileobj(stream, tmp, self.CHUNK_SIZE)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, object_path)
        except Exception as e:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            self.logger.error(f"Failed to put object {key}: {e}")
            raise BackendError(f"Failed to write {key}: {e}") from e

        return key

    def get(self, key: str) -> BinaryIO:
        """Open an object from local storage."""
        object_path = self._get_object_path(key)
        try:
            return open(object_path, "rb")
        except FileNotFoundError:
            raise NotFound(f"Object not found: {key}")
        except OSError as e:
            self.logger.error(f"Failed to get object {key}: {e}")
            raise BackendError(f"Failed to read {key}: {e}")

    def delete(self, key: str) -> None:
        """Delete an object from local storage."""
        object_path = self._get_object_path(key)
        try:
            object_path.unlink()
        except FileNotFoundError:
            self.logger.debug(f"Delete of missing object ignored: {key}")
        except OSError as e:
            self.logger.error(f"Failed to delete {key}: {e}")
            raise BackendError(f"Failed to delete {key}: {e}")

    def get_storage_info(self) -> Dict[str, Any]:
        """Get local storage information."""
        total_size = 0
        object_count = 0

        for object_path in self.base_path.iterdir():
            if object_path.is_file() and not object_path.name.startswith(".tmp-"):
                total_size += object_path.stat().st_size
                object_count += 1

        return {
            'backend': StorageBackend.LOCAL.value,
            'base_path': str(self.base_path),
            'object_count': object_count,
            'total_size': total_size
        }
