"""
CLI for writing, inspecting, verifying and moving signed personal feeds.
"""

import logging
import os
import sqlite3
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from kutyus.chain.feed import Feed
from kutyus.config import KutyusConfig, init_config, load_config
from kutyus.core.encoding import short_hex
from kutyus.core.errors import KutyusError
from kutyus.core.frame import iter_frames
from kutyus.core.message import ContentType
from kutyus.core.types import PublicKey
from kutyus.crypto.keys import FeedKeyPair, load_public_key, public_key_path
from kutyus.storage import SQLiteStorage
from kutyus.verify.verifier import ChainVerifier

app = typer.Typer(
    name="ku",
    help="Write, inspect, verify and move signed hash-linked feeds",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()

# Errors a command reports and exits on instead of dumping a traceback
HANDLED_ERRORS = (KutyusError, ValueError, OSError, sqlite3.Error)


def setup_logging(level: str) -> None:
    """Route the package's log records to stderr through rich."""
    handler = RichHandler(console=Console(stderr=True), show_path=False, log_time_format="[%X]")
    handler.setFormatter(logging.Formatter("%(message)s"))

    pkg_logger = logging.getLogger("kutyus")
    pkg_logger.handlers.clear()
    pkg_logger.addHandler(handler)
    pkg_logger.setLevel(getattr(logging, level.upper(), logging.WARNING))
    pkg_logger.propagate = False


def fail(message: str, code: int = 1) -> typer.Exit:
    console.print(f"[red]{escape(message)}[/]", soft_wrap=True)
    return typer.Exit(code)


def get_settings(ctx: typer.Context) -> KutyusConfig:
    obj = ctx.obj or {}
    try:
        settings = load_config(obj.get("config_path"))
    except KutyusError as e:
        raise fail(str(e))
    setup_logging("DEBUG" if obj.get("verbose") else settings.log_level)
    return settings


def get_db_path(settings: KutyusConfig, db_flag: Optional[Path] = None) -> Path:
    """Resolve DB path in this order:
    1. --db flag
    2. KUTYUS_DB_PATH environment variable
    3. <storage>/feeds.db from the config
    """
    if db_flag:
        return db_flag.resolve()
    env_path = os.environ.get("KUTYUS_DB_PATH")
    if env_path:
        return Path(env_path).resolve()
    return settings.db_path


def open_existing_storage(db_path: Path) -> SQLiteStorage:
    if not db_path.exists():
        console.print(f"[red]Database file not found: {escape(str(db_path))}[/]", soft_wrap=True)
        console.print("[yellow]To get started:[/]")
        console.print("  • Append a first message: echo hello | ku append")
        console.print("  • Or point at a database: ku feeds --db /path/to/feeds.db")
        raise typer.Exit(1)
    try:
        return SQLiteStorage(db_path)
    except sqlite3.Error as e:
        raise fail(f"Failed to open database: {e}")


def resolve_author(settings: KutyusConfig, author: Optional[str], key: Optional[Path] = None) -> PublicKey:
    """Explicit base64url key, else the public half of the local key."""
    try:
        if author:
            return PublicKey.from_b64url(author)
        pub_path = public_key_path(key or settings.key_path)
        if not pub_path.exists():
            raise fail(f"No author given and no local public key at {pub_path}")
        return load_public_key(pub_path)
    except HANDLED_ERRORS as e:
        raise fail(f"Invalid author key: {e}")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Override default config path (or set KUTYUS_CONFIG)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Manage signed, hash-linked personal feeds."""
    ctx.obj = {"config_path": config, "verbose": verbose}


@app.command()
def init(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing config file"),
):
    """Write the default config file."""
    obj = ctx.obj or {}
    try:
        path = init_config(obj.get("config_path"), force=force)
    except HANDLED_ERRORS as e:
        raise fail(str(e))
    console.print(f"[green]Created default config at {escape(str(path))}[/]", soft_wrap=True)


@app.command()
def keygen(
    ctx: typer.Context,
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Private key file (default: <storage>/keys/my.key)"),
    force: bool = typer.Option(False, "--force", "-f", help="Replace an existing key"),
):
    """Generate an Ed25519 keypair from system randomness."""
    settings = get_settings(ctx)
    key_path = output or settings.key_path

    if key_path.exists() and not force:
        raise fail(f"Key already exists at {key_path}; use --force to replace it")

    keys = FeedKeyPair.generate()
    try:
        pub_path = keys.save(key_path)
    except OSError as e:
        raise fail(f"Could not write key: {e}")

    console.print(f"[green]Generated keypair at {escape(str(key_path))}[/]", soft_wrap=True)
    console.print(f"  public key file: {escape(str(pub_path))}", soft_wrap=True)
    console.print(f"  public key: {keys.public_key_b64url()}", soft_wrap=True)


@app.command()
def append(
    ctx: typer.Context,
    text: Optional[str] = typer.Option(None, "--text", "-t", help="Message content (default: read stdin)"),
    content_type: Optional[str] = typer.Option(None, "--content-type", help="Custom content type tag (default: blob)"),
    key: Optional[Path] = typer.Option(None, "--key", help="Private key file"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite database"),
):
    """Add a new message to your feed."""
    settings = get_settings(ctx)
    key_path = key or settings.key_path

    try:
        if key_path.exists():
            signer = FeedKeyPair.load(key_path)
        else:
            signer = FeedKeyPair.generate()
            signer.save(key_path)
            console.print(f">> No key found, generated one at {escape(str(key_path))}", soft_wrap=True)

        content = text.encode("utf-8") if text is not None else typer.get_binary_stream("stdin").read()
        ctype = ContentType.custom(content_type.encode("utf-8")) if content_type else ContentType.BLOB

        with SQLiteStorage(get_db_path(settings, db)) as storage:
            feed = Feed.for_signer(signer, storage=storage)
            frame = feed.append(content, signer, ctype)
            sequence = feed.length - 1
    except HANDLED_ERRORS as e:
        raise fail(f"Append failed: {e}")

    console.print(f"[green]Appended frame {sequence}[/] to feed {signer.public_key_b64url()}", soft_wrap=True)
    console.print(f"  hash: {frame.digest().hex()}", soft_wrap=True)


@app.command()
def feeds(
    ctx: typer.Context,
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite database"),
):
    """List all stored feeds with frame counts and last activity."""
    settings = get_settings(ctx)
    storage = open_existing_storage(get_db_path(settings, db))

    with storage:
        authors = storage.list_feeds()
        if not authors:
            console.print("[yellow]No feeds found in database.[/]")
            return

        table = Table(title="Stored Feeds")
        table.add_column("Author", overflow="fold")
        table.add_column("Frames")
        table.add_column("Last Activity")

        for author in authors:
            count = storage.get_frame_count(author)
            last_ts = storage.get_latest_timestamp(author) or "—"
            table.add_row(author.b64url(), str(count), last_ts)

    console.print(table)


@app.command()
def show(
    ctx: typer.Context,
    author: Optional[str] = typer.Argument(None, help="Author public key (base64url); default: your key"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite database"),
    key: Optional[Path] = typer.Option(None, "--key", help="Private key file whose .pub names the author"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of recent messages to show"),
):
    """Show the most recent messages of a feed."""
    settings = get_settings(ctx)
    author_key = resolve_author(settings, author, key)
    storage = open_existing_storage(get_db_path(settings, db))

    with storage:
        try:
            rows = [(seq, ts, frame, frame.decode_message()) for seq, ts, frame in storage.query_frames(author_key, limit=limit)]
        except HANDLED_ERRORS as e:
            raise fail(f"Could not read feed: {e}")

    if not rows:
        console.print(f"[yellow]No frames found for feed '{author_key.b64url()}'[/]", soft_wrap=True)
        return

    for seq, ts, frame, message in rows:
        kind = "blob" if message.content_type.is_blob else message.content_type.tag.decode("utf-8", errors="replace")
        console.print(f"[bold cyan]{seq:4d} | {ts} | {escape(kind):10} | {short_hex(frame.digest().raw)}[/]")
        body = message.content.decode("utf-8", errors="replace")
        console.print(f"  {escape(body[:160])}{'...' if len(body) > 160 else ''}")
        console.print("  " + "─" * 70)


@app.command()
def verify(
    ctx: typer.Context,
    author: Optional[str] = typer.Argument(None, help="Author public key (base64url); default: your key"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite database"),
    key: Optional[Path] = typer.Option(None, "--key", help="Private key file whose .pub names the author"),
):
    """Verify the integrity of a feed (signatures + hash chain)."""
    settings = get_settings(ctx)
    author_key = resolve_author(settings, author, key)
    storage = open_existing_storage(get_db_path(settings, db))

    with storage:
        if storage.get_frame_count(author_key) == 0:
            console.print(f"[yellow]No frames found for feed '{author_key.b64url()}'[/]", soft_wrap=True)
            raise typer.Exit(1)
        result = ChainVerifier(author_key).verify_from_storage(storage)

    if result.is_valid:
        console.print(f"[green]✓ Feed '{author_key.b64url()}' is valid[/]", soft_wrap=True)
        console.print(f"  {result.message} ({result.valid_length} frames)")
    else:
        console.print(f"[red]✗ Verification failed for feed '{author_key.b64url()}'[/]", soft_wrap=True)
        for failure in result.failures:
            console.print(f"  • [{failure.index}] {failure.category}: {escape(failure.message)}")
        raise typer.Exit(1)


@app.command()
def export(
    ctx: typer.Context,
    author: Optional[str] = typer.Argument(None, help="Author public key (base64url); default: your key"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite database"),
    key: Optional[Path] = typer.Option(None, "--key", help="Private key file whose .pub names the author"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file (default: <author>.frames)"),
):
    """Export a feed as back-to-back encoded frames."""
    settings = get_settings(ctx)
    author_key = resolve_author(settings, author, key)
    storage = open_existing_storage(get_db_path(settings, db))

    with storage:
        try:
            frames = storage.load_frames(author_key)
        except HANDLED_ERRORS as e:
            raise fail(f"Failed to load feed '{author_key.b64url()}': {e}")

    if not frames:
        console.print(f"[yellow]No frames found for feed '{author_key.b64url()}'[/]", soft_wrap=True)
        raise typer.Exit(0)

    out_path = output or Path(f"{author_key.b64url()}.frames")
    try:
        with open(out_path, "wb") as f:
            for frame in frames:
                f.write(frame.encode())
    except HANDLED_ERRORS as e:
        raise fail(f"Export failed: {e}")

    console.print(f"[green]Exported {len(frames)} frames to {escape(str(out_path))}[/]", soft_wrap=True)
    console.print("Format: concatenated frames in wire format")


@app.command("import")
def import_frames(
    ctx: typer.Context,
    source: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="File written by 'ku export'"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite database"),
):
    """Verify an exported feed and store the frames that extend it."""
    settings = get_settings(ctx)

    try:
        frames = list(iter_frames(source.read_bytes()))
        if not frames:
            console.print("[yellow]No frames in file[/]")
            return
        author_key = frames[0].decode_message().author
    except HANDLED_ERRORS as e:
        raise fail(f"Cannot read {source}: {e}")

    result = ChainVerifier(author_key).verify(frames)
    if not result.is_valid:
        console.print(f"[red]✗ Refusing to import: chain of '{author_key.b64url()}' is invalid[/]", soft_wrap=True)
        for failure in result.failures:
            console.print(f"  • [{failure.index}] {failure.category}: {escape(failure.message)}")
        raise typer.Exit(1)

    try:
        with SQLiteStorage(get_db_path(settings, db)) as storage, storage.transaction():
            stored = storage.load_frames(author_key)
            for i, (ours, theirs) in enumerate(zip(stored, frames)):
                if ours != theirs:
                    raise fail(f"Feed diverges from the stored copy at frame {i}")
            new_frames = frames[len(stored):]
            for frame in new_frames:
                storage.append(frame)
    except HANDLED_ERRORS as e:
        raise fail(f"Import failed: {e}")

    console.print(
        f"[green]Imported {len(new_frames)} new frames ({len(stored)} already stored)[/] "
        f"for feed {author_key.b64url()}",
        soft_wrap=True,
    )


if __name__ == "__main__":
    app()
