"""
Configuration

Process-wide settings read once from the environment at startup.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigError
from .storage.storage_interface import StorageBackend


@dataclass
class S3Settings:
    """Connection parameters for an S3-compatible bucket."""
    access_key: str
    secret_key: str
    bucket: str
    endpoint: Optional[str] = None
    region: str = "us-east-1"
    base_path: str = ""


@dataclass
class Settings:
    """
    Application settings.

    Attributes:
        storage_type: Selected content store backend
        local_path: Root directory of the local backend (also the import target)
        s3: S3 parameters, set only when storage_type is S3
        database_path: SQLite database file
        data_dir: Working directory for temporary export/import artifacts
        port: HTTP port
    """
    storage_type: StorageBackend = StorageBackend.LOCAL
    local_path: Path = Path("data/uploads")
    s3: Optional[S3Settings] = None
    database_path: Path = Path("data/notes.db")
    data_dir: Path = Path("data")
    port: int = 8087

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            Settings

        Raises:
            ConfigError: Unknown storage type or incomplete S3 configuration
        """
        env = os.environ if environ is None else environ

        raw_type = env.get("STORAGE_TYPE") or StorageBackend.LOCAL.value
        try:
            storage_type = StorageBackend(raw_type.lower())
        except ValueError:
            raise ConfigError(f"unsupported storage type: {raw_type}")

        s3 = None
        if storage_type is StorageBackend.S3:
            s3 = cls._s3_from_env(env)

        try:
            port = int(env.get("PORT") or 8087)
        except ValueError:
            raise ConfigError(f"PORT must be an integer, got {env.get('PORT')!r}")

        return cls(
            storage_type=storage_type,
            local_path=Path(env.get("STORAGE_LOCAL_PATH") or "data/uploads"),
            s3=s3,
            database_path=Path(env.get("DATABASE_PATH") or "data/notes.db"),
            data_dir=Path(env.get("DATA_DIR") or "data"),
            port=port,
        )

    @staticmethod
    def _s3_from_env(env: Mapping[str, str]) -> S3Settings:
        for name in ("S3_ACCESS_KEY", "S3_SECRET_KEY", "S3_BUCKET"):
            if not env.get(name):
                raise ConfigError(f"{name} environment variable is required")

        return S3Settings(
            access_key=env["S3_ACCESS_KEY"],
            secret_key=env["S3_SECRET_KEY"],
            bucket=env["S3_BUCKET"],
            endpoint=env.get("S3_ENDPOINT") or None,
            region=env.get("S3_REGION") or "us-east-1",
            base_path=(env.get("S3_BASE_PATH") or "").strip("/"),
        )
