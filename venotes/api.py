"""
Notes API Layer

FastAPI routes that call into the storage and archival core: attachment
upload, serving and deletion, and whole-dataset export/import.
"""

from contextlib import ExitStack
from datetime import datetime
from typing import Dict, Iterator, List, Optional
from urllib.parse import quote
import logging

from fastapi import FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, StreamingResponse
from pydantic import BaseModel, Field
from starlette.background import BackgroundTask

from .context import AppContext, build_context
from .errors import ArchiveFormatError, AuthenticationError, NotFound, NotTextFileError
from .storage.ingest import ServedFile


CHUNK_SIZE = 64 * 1024


# Pydantic Models for Responses

class FileRecordResponse(BaseModel):
    """Response model for a file record."""
    id: int
    log_id: int
    filename: str
    original_name: str
    mime_type: str
    size: int
    storage_key: str
    hash: Optional[str] = None
    created_at: Optional[str] = None


class UploadResponse(BaseModel):
    """Response model for file upload."""
    files: List[FileRecordResponse]


class TableResultResponse(BaseModel):
    """Per-table import counts."""
    inserted: int
    skipped: int
    invalid: int


class ImportReportResponse(BaseModel):
    """Import outcome."""
    tables: Dict[str, TableResultResponse] = Field(default_factory=dict)
    failed_tables: Dict[str, str] = Field(default_factory=dict)
    files_stored: int = 0
    files_existing: int = 0
    files_failed: Dict[str, str] = Field(default_factory=dict)


class ImportResponse(BaseModel):
    """Response model for archive import."""
    message: str
    report: ImportReportResponse


def content_disposition(disposition: str, filename: str) -> str:
    """Content-Disposition header value that survives non-ASCII names."""
    quoted = quote(filename)
    if quoted != filename:
        return f"{disposition}; filename*=utf-8''{quoted}"
    return f'{disposition}; filename="{filename}"'


def _iter_served(served: ServedFile) -> Iterator[bytes]:
    try:
        for chunk in iter(lambda: served.stream.read(CHUNK_SIZE), b""):
            yield chunk
    finally:
        served.close()


class NotesAPI:
    """
    FastAPI application for the file and archive endpoints.

    Guild, channel and log CRUD routes are served elsewhere; these routes
    only need a log id to attach files to.
    """

    def __init__(self, context: Optional[AppContext] = None):
        """
        Initialize Notes API.

        Args:
            context: Application context (default: built from the environment)
        """
        self.logger = logging.getLogger(__name__)
        self.context = context or build_context()
        self.app = self._create_app()

    def _create_app(self) -> FastAPI:
        """Create and configure FastAPI application."""
        app = FastAPI(
            title="venotes",
            description="Note attachments with deduplicated storage and encrypted export/import",
            version="1.0.0"
        )

        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Origin", "Content-Type", "Accept", "Authorization"],
        )

        ingestor = self.context.files
        archives = self.context.archives

        @app.get("/health", tags=["Health"])
        def health_check():
            """Health check endpoint."""
            return {
                "status": "healthy",
                "timestamp": datetime.now().isoformat(),
                "storage": self.context.store.get_storage_info()
            }

        @app.post("/api/logs/{log_id}/files", status_code=201, response_model=UploadResponse, tags=["Files"])
        def upload_files(log_id: int, files: Optional[List[UploadFile]] = File(None)):
            """Upload one or more files to a log entry."""
            if not files:
                raise HTTPException(status_code=400, detail="No files provided")

            uploads = [
                (upload.filename or "file", upload.content_type or "", upload.file)
                for upload in files
            ]
            try:
                records = ingestor.ingest_many(log_id, uploads)
            except NotFound:
                raise HTTPException(status_code=404, detail="Log not found")
            except Exception as e:
                self.logger.error(f"Upload failed: {e}")
                raise HTTPException(status_code=500, detail="Failed to save file")

            return {"files": [record.to_dict() for record in records]}

        @app.get("/api/files/{file_id}", tags=["Files"])
        def serve_file(file_id: int):
            """Stream an attachment."""
            try:
                served = ingestor.open_file(file_id)
            except NotFound:
                raise HTTPException(status_code=404, detail="File not found")
            except Exception as e:
                self.logger.error(f"Failed to retrieve file {file_id}: {e}")
                raise HTTPException(status_code=500, detail="Failed to retrieve file")

            return StreamingResponse(
                _iter_served(served),
                media_type=served.mime_type,
                headers={
                    "Content-Disposition": content_disposition("inline", served.original_name),
                    "Content-Length": str(served.size)
                }
            )

        @app.get("/api/files/{file_id}/content", tags=["Files"])
        def file_content(file_id: int):
            """Return a text attachment as plain text."""
            try:
                text = ingestor.read_text(file_id)
            except NotFound:
                raise HTTPException(status_code=404, detail="File not found")
            except NotTextFileError:
                raise HTTPException(status_code=400, detail="File is not a text file")
            except Exception as e:
                self.logger.error(f"Failed to read file {file_id}: {e}")
                raise HTTPException(status_code=500, detail="Failed to read file")

            return PlainTextResponse(text)

        @app.delete("/api/files/{file_id}", tags=["Files"])
        def delete_file(file_id: int):
            """Delete an attachment."""
            try:
                ingestor.delete(file_id)
            except NotFound:
                raise HTTPException(status_code=404, detail="File not found")
            except Exception as e:
                self.logger.error(f"Failed to delete file {file_id}: {e}")
                raise HTTPException(status_code=500, detail="Failed to delete file record")

            return {"message": "File deleted successfully"}

        @app.get("/api/export", tags=["Archive"])
        def export_data(password: Optional[str] = Query(None, description="Encrypt with this passphrase")):
            """Download the whole dataset as a (optionally encrypted) archive."""
            stack = ExitStack()
            try:
                result = stack.enter_context(archives.export(password or ""))
            except Exception as e:
                stack.close()
                self.logger.error(f"Export failed: {e}")
                raise HTTPException(status_code=500, detail=f"Failed to export data: {e}")

            def body() -> Iterator[bytes]:
                try:
                    for chunk in iter(lambda: result.stream.read(CHUNK_SIZE), b""):
                        yield chunk
                finally:
                    stack.close()

            return StreamingResponse(
                body(),
                media_type=result.content_type,
                headers={
                    "Content-Disposition": content_disposition("attachment", result.filename),
                    "Content-Length": str(result.size)
                },
                background=BackgroundTask(stack.close)
            )

        @app.post("/api/import", response_model=ImportResponse, tags=["Archive"])
        def import_data(
            file: Optional[UploadFile] = File(None),
            password: str = Form("")
        ):
            """Merge an exported archive into the dataset."""
            if file is None:
                raise HTTPException(status_code=400, detail="No file provided")

            try:
                report = archives.import_archive(file.file, password or "")
            except AuthenticationError:
                raise HTTPException(status_code=400, detail="Invalid password or corrupted file")
            except ArchiveFormatError as e:
                raise HTTPException(status_code=400, detail=f"Invalid archive: {e}")
            except Exception as e:
                self.logger.error(f"Import failed: {e}")
                raise HTTPException(status_code=500, detail=f"Failed to import data: {e}")

            return {"message": "Data imported successfully", "report": report.to_dict()}

        return app

    def run(self, host: str = "0.0.0.0", port: Optional[int] = None):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port or self.context.settings.port)


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """
    Factory function to create the API app.

    Usage:
        uvicorn venotes.api:create_app --factory
    """
    return NotesAPI(context).app
