"""
venotes

File storage and archival core for a notes application:
- Content-addressed, deduplicated attachment storage (local or S3)
- ZIP export/import of the whole dataset
- Optional AES-256-GCM archive encryption
"""

__version__ = "0.1.0"

from .config import S3Settings, Settings
from .context import AppContext, build_context
from .database import NotesDatabase
from .errors import (
    ArchiveFormatError,
    AuthenticationError,
    BackendError,
    ConfigError,
    NotFound,
    NotTextFileError,
    StorageError,
    VenotesError,
)

__all__ = [
    'S3Settings',
    'Settings',
    'AppContext',
    'build_context',
    'NotesDatabase',
    'ArchiveFormatError',
    'AuthenticationError',
    'BackendError',
    'ConfigError',
    'NotFound',
    'NotTextFileError',
    'StorageError',
    'VenotesError',
]
