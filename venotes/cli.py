"""
venotes CLI

Command-line interface for serving the API and for attachment and archive
operations against the configured storage.
"""

import argparse
import logging
import mimetypes
import sys
from pathlib import Path

from .config import Settings
from .context import build_context


def cmd_serve(args):
    """Run the HTTP server."""
    import uvicorn
    from .api import create_app

    context = build_context()
    if context.db.seed_defaults():
        print("[OK] Seeded default guilds and channels")

    port = args.port or context.settings.port
    uvicorn.run(create_app(context), host=args.host, port=port)


def cmd_info(args):
    """Display configuration and storage backend information."""
    settings = Settings.from_env()
    context = build_context(settings)
    try:
        info = context.store.get_storage_info()

        print("\n=== Storage Information ===")
        for key, value in info.items():
            print(f"{key}: {value}")
        print(f"database: {settings.database_path}")
        print(f"files: {len(context.db.list_files())}")
        print()
    finally:
        context.close()


def cmd_upload(args):
    """Attach files to a log entry."""
    context = build_context()
    try:
        for name in args.files:
            path = Path(name)
            mime_type = args.content_type or mimetypes.guess_type(path.name)[0] or ""
            with open(path, "rb") as stream:
                record = context.files.ingest(args.log_id, path.name, mime_type, stream)
            print(f"[OK] Uploaded: {path.name}")
            print(f"  File ID: {record.id}")
            print(f"  Size: {record.size} bytes")
            print(f"  Key: {record.storage_key}")
    finally:
        context.close()


def cmd_export(args):
    """Export the dataset to an archive."""
    context = build_context()
    try:
        output = Path(args.output) if args.output else Path.cwd()
        written = context.archives.export_to(output, args.password or "")
        print(f"[OK] Exported to: {written}")
    finally:
        context.close()


def cmd_import(args):
    """Import an archive into the dataset."""
    context = build_context()
    try:
        report = context.archives.import_file(Path(args.file), args.password or "")
    finally:
        context.close()

    print("[OK] Import finished")
    for table, result in report.tables.items():
        print(f"  {table}: {result.inserted} inserted, {result.skipped} skipped, {result.invalid} invalid")
    for table, error in report.failed_tables.items():
        print(f"  {table}: FAILED ({error})")
    print(f"  files: {report.files_stored} stored, {report.files_existing} already present, "
          f"{len(report.files_failed)} failed")


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(description="venotes storage and archive CLI")
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # serve command
    serve_parser = subparsers.add_parser('serve', help='Run the HTTP API')
    serve_parser.add_argument('--host', default='0.0.0.0', help='Bind address')
    serve_parser.add_argument('--port', type=int, help='Port (default: PORT or 8087)')

    # info command
    subparsers.add_parser('info', help='Display storage information')

    # upload command
    upload_parser = subparsers.add_parser('upload', help='Attach files to a log entry')
    upload_parser.add_argument('log_id', type=int, help='Log entry id')
    upload_parser.add_argument('files', nargs='+', help='Files to upload')
    upload_parser.add_argument('--content-type', help='MIME type (guessed if not specified)')

    # export command
    export_parser = subparsers.add_parser('export', help='Export all data')
    export_parser.add_argument('--password', help='Encrypt the archive with this passphrase')
    export_parser.add_argument('--output', help='Output file or directory (cwd if not specified)')

    # import command
    import_parser = subparsers.add_parser('import', help='Import an exported archive')
    import_parser.add_argument('file', help='Archive file')
    import_parser.add_argument('--password', help='Passphrase for encrypted archives')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s %(message)s"
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    command_handlers = {
        'serve': cmd_serve,
        'info': cmd_info,
        'upload': cmd_upload,
        'export': cmd_export,
        'import': cmd_import,
    }

    handler = command_handlers[args.command]
    try:
        handler(args)
    except Exception as e:
        print(f"[ERROR] {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
