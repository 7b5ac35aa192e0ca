"""
Record Models

Typed rows of the structured store with explicit mappings to database rows
and to the archive JSON representation.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional


TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
SQLITE_INT_MIN = -(2 ** 63)
SQLITE_INT_MAX = 2 ** 63 - 1


class RecordError(ValueError):
    """Raised when an archive row cannot be mapped to a record."""
    pass


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored or archived timestamp (SQLite text or ISO-8601)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        raise RecordError(f"invalid timestamp: {value!r}")


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format a timestamp for the archive."""
    return value.isoformat() if value else None


def db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format a timestamp the way SQLite's CURRENT_TIMESTAMP does."""
    return value.strftime(TIMESTAMP_FORMAT) if value else None


def _required_str(row: Mapping[str, Any], field: str) -> str:
    value = row.get(field)
    if not isinstance(value, str):
        raise RecordError(f"missing or non-string field: {field}")
    return value


def _optional_int(row: Mapping[str, Any], field: str) -> Optional[int]:
    value = row.get(field)
    if value is None:
        return None
    if isinstance(value, bool):
        raise RecordError(f"non-integer field: {field}")
    if isinstance(value, float):
        if not value.is_integer():
            raise RecordError(f"non-integer field: {field}")
        number = int(value)
    elif isinstance(value, int):
        number = value
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        number = int(value)
    else:
        raise RecordError(f"non-integer field: {field}")

    # SQLite INTEGER is a signed 64-bit value
    if not SQLITE_INT_MIN <= number <= SQLITE_INT_MAX:
        raise RecordError(f"integer out of range: {field}")
    return number


def _storage_key(row: Mapping[str, Any], field: str) -> str:
    value = _required_str(row, field)
    if value in ("", ".", "..") or any(sep in value for sep in ("/", "\\", "\x00")):
        raise RecordError(f"invalid storage key in field: {field}")
    return value


def _required_int(row: Mapping[str, Any], field: str) -> int:
    value = _optional_int(row, field)
    if value is None:
        raise RecordError(f"missing field: {field}")
    return value


@dataclass
class Guild:
    """Top-level workspace grouping channels."""
    name: str
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Guild":
        return cls(
            id=row["id"],
            name=row["name"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def to_archive(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_archive(cls, row: Mapping[str, Any]) -> "Guild":
        return cls(
            id=_optional_int(row, "id"),
            name=_required_str(row, "name"),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )


@dataclass
class Channel:
    """Named topic within a guild."""
    guild_id: int
    name: str
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Channel":
        return cls(
            id=row["id"],
            guild_id=row["guild_id"],
            name=row["name"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def to_archive(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "guild_id": self.guild_id,
            "name": self.name,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_archive(cls, row: Mapping[str, Any]) -> "Channel":
        return cls(
            id=_optional_int(row, "id"),
            guild_id=_required_int(row, "guild_id"),
            name=_required_str(row, "name"),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )


@dataclass
class LogEntry:
    """A single note within a channel."""
    channel_id: int
    content: str
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "LogEntry":
        return cls(
            id=row["id"],
            channel_id=row["channel_id"],
            content=row["content"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def to_archive(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "channel_id": self.channel_id,
            "content": self.content,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_archive(cls, row: Mapping[str, Any]) -> "LogEntry":
        return cls(
            id=_optional_int(row, "id"),
            channel_id=_required_int(row, "channel_id"),
            content=_required_str(row, "content"),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )


@dataclass
class FileRecord:
    """
    One logical attachment.

    Attributes:
        log_id: Owning log entry (None only on archive rows that lack it)
        filename: Record-unique name, used for display and ordering
        original_name: Name the file was uploaded under
        mime_type: Declared MIME type
        size: Size in bytes
        storage_key: Content store key (hash + extension), stored as ``path``
        hash: SHA-256 hex digest of the content
        channel_id: Archive-only hint used when log_id is missing
    """
    log_id: Optional[int]
    filename: str
    original_name: str
    mime_type: str
    size: int
    storage_key: str
    hash: Optional[str]
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    channel_id: Optional[int] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "FileRecord":
        return cls(
            id=row["id"],
            log_id=row["log_id"],
            filename=row["filename"],
            original_name=row["original_name"],
            mime_type=row["mime_type"],
            size=row["size"],
            storage_key=row["path"],
            hash=row["hash"],
            created_at=parse_timestamp(row["created_at"]),
        )

    def to_archive(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "log_id": self.log_id,
            "filename": self.filename,
            "original_name": self.original_name,
            "mime_type": self.mime_type,
            "size": self.size,
            "path": self.storage_key,
            "hash": self.hash,
            "created_at": format_timestamp(self.created_at),
        }

    @classmethod
    def from_archive(cls, row: Mapping[str, Any]) -> "FileRecord":
        digest = _required_str(row, "hash")
        original_name = _required_str(row, "original_name")
        return cls(
            id=_optional_int(row, "id"),
            log_id=_optional_int(row, "log_id"),
            filename=row.get("filename") or original_name,
            original_name=original_name,
            mime_type=row.get("mime_type") or "application/octet-stream",
            size=_optional_int(row, "size") or 0,
            storage_key=_storage_key(row, "path"),
            hash=digest,
            created_at=parse_timestamp(row.get("created_at")),
            channel_id=_optional_int(row, "channel_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """API representation."""
        data = self.to_archive()
        data["storage_key"] = data.pop("path")
        return data
