#!/usr/bin/env python
"""Command line entry point for the penvault note vault."""
import argparse
import getpass
import logging
import mimetypes
import os
import sys
from pathlib import Path
from typing import Iterable, List, Optional

from penvault import __version__
from penvault.backup import BackupManager
from penvault.config import config
from penvault.exceptions import (
    AttachmentNotFoundError,
    ConfigurationError,
    NoteNotFoundError,
    PenvaultError,
    StorageError,
    ValidationError,
)
from penvault.models.schema import Note
from penvault.observability import configure_logging, metrics
from penvault.services import envelope
from penvault.services.vault_service import VaultService
from penvault.storage.vault_store import VaultStore
from penvault.utils import parse_blob_reference, render_wiki_links

logger = logging.getLogger(__name__)

PASSWORD_ENV = "PENVAULT_PASSWORD"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(prog="penvault", description="Local-first note vault")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("PENVAULT_DATABASE_PATH"),
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("PENVAULT_LOG_LEVEL", "WARNING"),
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print operation timings to stderr when the command finishes",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("list", help="List notes, most recently updated first")

    new = commands.add_parser("new", help="Create a note")
    new.add_argument("--title", default="")
    _add_content_args(new)

    show = commands.add_parser("show", help="Print a note and its attachments")
    show.add_argument("note_id")
    show.add_argument(
        "--render", action="store_true", help="Turn [[Title]] links into markdown links"
    )

    edit = commands.add_parser("edit", help="Change a note's title or content")
    edit.add_argument("note_id")
    edit.add_argument("--title")
    _add_content_args(edit)

    delete = commands.add_parser("delete", help="Delete a note and its attachments")
    delete.add_argument("note_id")

    attach = commands.add_parser("attach", help="Attach an image or file to a note")
    attach.add_argument("note_id")
    attach.add_argument("path", type=Path)
    attach.add_argument("--image", action="store_true", help="Store as an image")
    attach.add_argument("--mime-type", help="MIME type of a file attachment")

    detach = commands.add_parser("detach", help="Remove an attachment, e.g. image:3")
    detach.add_argument("reference")

    export = commands.add_parser("export", help="Export the vault or one note")
    export.add_argument("path", nargs="?", type=Path, default=Path("."))
    export.add_argument("--note", dest="note_id", help="Export only this note")
    export.add_argument("--encrypt", action="store_true", help="Seal with a password")
    export.add_argument("--hint", help="Clear-text password hint")

    imp = commands.add_parser("import", help="Merge an export file into the vault")
    imp.add_argument("path", type=Path)

    backup = commands.add_parser("backup", help="Create, list or restore backups")
    backup_commands = backup.add_subparsers(dest="backup_command", required=True)
    create = backup_commands.add_parser("create", help="Write a backup")
    create.add_argument("--label")
    create.add_argument("--encrypt", action="store_true")
    create.add_argument("--hint")
    create.add_argument(
        "--database", action="store_true", help="Snapshot the SQLite file instead"
    )
    backup_commands.add_parser("list", help="List backups")
    restore = backup_commands.add_parser("restore", help="Merge an export backup")
    restore.add_argument("path", type=Path)

    commands.add_parser("tags", help="List every tag in the vault")

    search = commands.add_parser("search", help="Search titles and content, or #tag")
    search.add_argument("query")

    return parser.parse_args(argv)


def _add_content_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--content")
    group.add_argument("--content-file", type=Path, help="Read content from a file")


def update_config(args: argparse.Namespace) -> None:
    """Update the global config with command line arguments."""
    if args.database_path:
        database_path = Path(args.database_path)
        if database_path.is_dir():
            raise ConfigurationError(
                f"Database path is a directory: {database_path}", config_key="database_path"
            )
        config.database_path = database_path


def _read_content(args: argparse.Namespace) -> Optional[str]:
    if args.content_file is not None:
        try:
            return args.content_file.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(
                "Failed to read content file",
                operation="read_content",
                path=str(args.content_file),
                original_error=e,
            ) from e
    return args.content


def _read_password(confirm: bool = False) -> str:
    """Password from ``PENVAULT_PASSWORD`` or an interactive prompt."""
    password = os.environ.get(PASSWORD_ENV)
    if password:
        return password
    password = getpass.getpass("Password: ")
    if confirm and getpass.getpass("Repeat password: ") != password:
        raise ValidationError("Passwords do not match", field="password")
    return password


def _print_notes(notes: Iterable[Note]) -> None:
    for note in notes:
        title = note.title or "(untitled)"
        print(f"{note.id}\t{note.updated_at.isoformat(timespec='seconds')}\t{title}")


def _require_note(service: VaultService, note_id: str) -> Note:
    note = service.store.get_note(note_id)
    if note is None:
        raise NoteNotFoundError(note_id)
    return note


def cmd_list(service: VaultService, args: argparse.Namespace) -> None:
    _print_notes(service.store.list_notes())


def cmd_new(service: VaultService, args: argparse.Namespace) -> None:
    note = service.store.create_note(title=args.title, content=_read_content(args) or "")
    print(note.id)


def cmd_show(service: VaultService, args: argparse.Namespace) -> None:
    note = _require_note(service, args.note_id)
    print(f"# {note.title or '(untitled)'}")
    print(f"id: {note.id}")
    print(f"created: {note.created_at.isoformat(timespec='seconds')}")
    print(f"updated: {note.updated_at.isoformat(timespec='seconds')}")
    if note.tags:
        print("tags: " + ", ".join(note.tags))
    print()
    print(render_wiki_links(note.content) if args.render else note.content)

    attachments = service.store.list_images(note.id) + service.store.list_files(note.id)
    if attachments:
        print()
        for attachment in attachments:
            print(f"{attachment.reference}\t{attachment.name}\t{attachment.size} bytes")
    for reference in service.resolver.dangling_references(note.content, note.id):
        print(f"warning: {reference} does not resolve", file=sys.stderr)


def cmd_edit(service: VaultService, args: argparse.Namespace) -> None:
    content = _read_content(args)
    if args.title is None and content is None:
        raise ValidationError("Nothing to change: pass --title or --content")
    if service.store.update_note(args.note_id, title=args.title, content=content) is None:
        raise NoteNotFoundError(args.note_id)


def cmd_delete(service: VaultService, args: argparse.Namespace) -> None:
    if not service.store.remove_note(args.note_id):
        raise NoteNotFoundError(args.note_id)


def cmd_attach(service: VaultService, args: argparse.Namespace) -> None:
    try:
        data = args.path.read_bytes()
    except OSError as e:
        raise StorageError(
            "Failed to read attachment", operation="attach", path=str(args.path), original_error=e
        ) from e
    mime_type = args.mime_type or mimetypes.guess_type(args.path.name)[0]
    if args.image or (mime_type or "").startswith("image/"):
        attachment = service.store.add_image(args.note_id, args.path.name, data)
    else:
        attachment = service.store.add_file(
            args.note_id, args.path.name, data, mime_type=mime_type or "application/octet-stream"
        )
    print(attachment.reference)


def cmd_detach(service: VaultService, args: argparse.Namespace) -> None:
    try:
        ref = parse_blob_reference(args.reference)
    except ValueError as e:
        raise ValidationError(str(e), field="reference", value=args.reference) from e
    if ref.kind == "image":
        removed = service.store.remove_image(ref.attachment_id)
    else:
        removed = service.store.remove_file(ref.attachment_id)
    if not removed:
        raise AttachmentNotFoundError(ref.kind, ref.attachment_id)


def cmd_export(service: VaultService, args: argparse.Namespace) -> None:
    password = _read_password(confirm=True) if args.encrypt else None
    path = service.export_to_file(
        args.path, password=password, note_id=args.note_id, hint=args.hint
    )
    print(path)


def _is_envelope_file(path: Path) -> bool:
    try:
        return envelope.is_envelope(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError):
        # Unreadable files are reported by the import itself
        return False


def _print_merge_result(result) -> None:
    for key, value in result.to_dict().items():
        print(f"{key}: {value}")


def cmd_import(service: VaultService, args: argparse.Namespace) -> None:
    password = _read_password() if _is_envelope_file(args.path) else None
    _print_merge_result(service.import_file(args.path, password=password))


def cmd_backup(service: VaultService, args: argparse.Namespace) -> None:
    manager = BackupManager(service)
    if args.backup_command == "list":
        for backup in manager.list_backups():
            print(f"{backup['name']}\t{backup['type']}\t{backup['size_bytes']} bytes")
    elif args.backup_command == "restore":
        password = _read_password() if _is_envelope_file(args.path) else None
        _print_merge_result(manager.restore(args.path, password=password))
    else:
        if args.database:
            path = manager.backup_database(label=args.label)
        else:
            password = _read_password(confirm=True) if args.encrypt else None
            path = manager.create_backup(password=password, label=args.label, hint=args.hint)
        if path is None:
            raise StorageError("Backup failed", operation="backup")
        print(path)


def cmd_tags(service: VaultService, args: argparse.Namespace) -> None:
    for tag in service.all_tags():
        print(tag)


def cmd_search(service: VaultService, args: argparse.Namespace) -> None:
    _print_notes(service.search(args.query))


COMMANDS = {
    "list": cmd_list,
    "new": cmd_new,
    "show": cmd_show,
    "edit": cmd_edit,
    "delete": cmd_delete,
    "attach": cmd_attach,
    "detach": cmd_detach,
    "export": cmd_export,
    "import": cmd_import,
    "backup": cmd_backup,
    "tags": cmd_tags,
    "search": cmd_search,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Run one penvault command and return the exit status."""
    args = parse_args(argv)
    try:
        update_config(args)
    except ConfigurationError as e:
        print(f"error: {e.message}", file=sys.stderr)
        return 1

    # Configure logging (console + persistent file logging with rotation)
    log_level = getattr(logging, args.log_level.upper(), logging.WARNING)
    try:
        configure_logging(
            log_dir=config.get_absolute_path(config.log_dir), level=log_level, console=True
        )
    except OSError as e:
        # Fall back to console logging if the log directory is unusable
        configure_logging(level=log_level, console=True)
        logger.warning(f"Failed to configure file logging: {e}")

    store = None
    try:
        logger.info(f"Using SQLite database: {config.get_db_url()}")
        store = VaultStore()
        COMMANDS[args.command](VaultService(store), args)
    except PenvaultError as e:
        print(f"error: {e.message}", file=sys.stderr)
        logger.debug(f"Command {args.command} failed: {e}")
        return 1
    finally:
        if store is not None:
            store.close()
        logger.debug(f"Operation totals: {metrics.get_summary()}")
        if args.stats:
            for line in metrics.report():
                print(line, file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
