"""
CLI interface for sanding pass data.

Usage:
    sandpass passes
    sandpass videos PASS_ID
    sandpass notes get PASS_ID
    sandpass notes set PASS_ID "text"
    sandpass watch
"""

import asyncio
import json
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .config import SandpassConfig, get_config_dir, load_or_create_config
from .errors import InvalidArgument, SandpassError, log_exception
from .logging_config import configure_quiet_mode, enable_debug_mode
from .notes import latest_note
from .session import DashboardSession
from .store_client import RecordStoreClient
from .types import Note, Record, format_utc_timestamp

# Trailing capture timestamp in video file names, e.g. cam1_2025-01-02T03_04_05Z.mp4
_FILE_TIMESTAMP_PATTERN = re.compile(r"[_-]\d{4}-?\d{2}-?\d{2}.*$")


if os.environ.get("SANDPASS_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def format_duration(delta: timedelta) -> str:
    """Human-readable duration: 850ms, 42s, 3m 5s, 1h 2m."""
    total_ms = int(delta.total_seconds() * 1000)
    if total_ms < 0:
        return "-" + format_duration(-delta)
    if total_ms < 1000:
        return f"{total_ms}ms"
    seconds = total_ms // 1000
    if seconds < 60:
        return f"{seconds}s"
    minutes, seconds = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {seconds}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"


def extract_camera_name(file_name: str) -> str:
    """Camera name from a video file name, dropping directories, timestamp and extension."""
    stem = Path(file_name).name
    if "." in stem:
        stem = stem.rsplit(".", 1)[0]
    return _FILE_TIMESTAMP_PATTERN.sub("", stem) or "unknown"


# Global state for CLI options
_json_output = False
_config_dir: Optional[Path] = None


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _config_callback(value: Optional[Path]):
    global _config_dir
    _config_dir = value


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"sandpass {version('sandpass')}")
        raise typer.Exit()


app = typer.Typer(
    name="sandpass",
    help="Sanding pass runs, their videos, and operator notes.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
notes_app = typer.Typer(help="Read and write pass notes.", no_args_is_help=True)
app.add_typer(notes_app, name="notes")


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    config_dir: Annotated[Optional[Path], typer.Option(
        "--config", "-c",
        envvar="SANDPASS_HOME",
        help="Config directory (default: ~/.sandpass/)",
        callback=_config_callback,
        is_eager=True,
    )] = None,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
):
    """Sanding pass runs, their videos, and operator notes."""


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _load_config() -> SandpassConfig:
    return load_or_create_config(_config_dir or get_config_dir())


def _make_client(config: SandpassConfig) -> RecordStoreClient:
    remote = config.remote
    if not (remote.api_key_id and remote.api_key):
        typer.echo(
            "Error: no API key configured (set SANDPASS_API_KEY_ID and SANDPASS_API_KEY)",
            err=True,
        )
        raise typer.Exit(1)
    return RecordStoreClient(remote.api_url, remote.api_key_id, remote.api_key)


def _run(command: str, coro_fn):
    """Run an async command body against a fresh session.

    Store, argument and configuration errors are shown cleanly, with the
    traceback going to the error log in the config directory.
    """
    async def runner(config: SandpassConfig):
        client = _make_client(config)
        try:
            session = DashboardSession(client, config)
        except InvalidArgument:
            await client.aclose()
            raise
        try:
            return await coro_fn(session)
        finally:
            await session.aclose()

    try:
        return asyncio.run(runner(_load_config()))
    except (SandpassError, ValueError) as e:
        log_path = log_exception(e, context=command, log_dir=_config_dir or get_config_dir())
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise typer.Exit(1)


def _note_to_dict(note: Note) -> dict:
    return {
        "pass_id": note.pass_id,
        "note_text": note.note_text,
        "created_at": format_utc_timestamp(note.created_at),
        "created_by": note.created_by,
    }


def _record_to_dict(record: Record) -> dict:
    return {
        "id": record.id,
        "file_name": record.file_name,
        "time_requested": (
            format_utc_timestamp(record.time_requested) if record.time_requested else None
        ),
        "uri": record.uri,
    }


def _format_record_line(record: Record) -> str:
    ts = format_utc_timestamp(record.time_requested) if record.time_requested else "unknown time"
    return f"{ts}  {record.file_name or 'unknown file'}"


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def passes(
    limit: Annotated[int, typer.Option(
        "--limit", "-n",
        help="Maximum passes to show"
    )] = 20,
):
    """List the most recent sanding passes."""
    async def body(session: DashboardSession):
        return (await session.load_passes())[:limit]

    found = _run("passes", body)
    if _json_output:
        typer.echo(json.dumps([
            {
                "pass_id": p.pass_id,
                "start": format_utc_timestamp(p.start),
                "end": format_utc_timestamp(p.end),
                "success": p.success,
                "err_string": p.err_string,
                "steps": len(p.steps),
            }
            for p in found
        ], indent=2))
        return
    if not found:
        typer.echo("No passes found.")
        return
    for p in found:
        status = "ok" if p.success else "FAILED"
        line = f"{p.pass_id}  {format_utc_timestamp(p.start)}  {format_duration(p.duration):>8}  {status}"
        if p.err_string:
            line += f"  {p.err_string}"
        typer.echo(line)


@app.command()
def videos(
    pass_id: Annotated[str, typer.Argument(help="Pass to show videos for")],
):
    """Show the videos captured during each step of a pass."""
    async def body(session: DashboardSession):
        await session.load()
        return session.step_videos(pass_id)

    try:
        per_step = _run("videos", body)
    except KeyError:
        typer.echo(f"Error: pass not found: {pass_id}", err=True)
        raise typer.Exit(1)

    if _json_output:
        typer.echo(json.dumps([
            {
                "step": sv.step.name,
                "start": format_utc_timestamp(sv.step.start),
                "end": format_utc_timestamp(sv.step.end),
                "videos": [_record_to_dict(r) for r in sv.videos],
            }
            for sv in per_step
        ], indent=2))
        return
    for sv in per_step:
        typer.echo(
            f"{sv.step.name}  ({format_duration(sv.step.duration)})  "
            f"{len(sv.videos)} videos"
        )
        for video in sv.videos:
            typer.echo(f"  {extract_camera_name(video.file_name)}  {_format_record_line(video)}")


@notes_app.command("get")
def notes_get(
    pass_id: Annotated[str, typer.Argument(help="Pass to read notes for")],
    show_all: Annotated[bool, typer.Option(
        "--all", "-a",
        help="Show every saved version, newest first"
    )] = False,
):
    """Show the effective note for a pass."""
    found = _run("notes get", lambda session: session.notes.fetch_one(pass_id))
    shown = found if show_all else [n for n in [latest_note(found)] if n is not None]
    if _json_output:
        typer.echo(json.dumps([_note_to_dict(n) for n in shown], indent=2))
        return
    if not shown:
        typer.echo("No note.")
        return
    for note in shown:
        if show_all:
            typer.echo(f"{format_utc_timestamp(note.created_at)}  {note.note_text}")
        else:
            typer.echo(note.note_text)


@notes_app.command("set")
def notes_set(
    pass_id: Annotated[str, typer.Argument(help="Pass to annotate")],
    text: Annotated[str, typer.Argument(help="Note text (empty string clears the note)")],
):
    """Save a note for a pass. The previous note is kept as history."""
    async def body(session: DashboardSession):
        if not session.part_id:
            # The routing part id comes from the pass summaries
            await session.load_passes()
        return await session.save_note(pass_id, text.strip())

    note = _run("notes set", body)
    if _json_output:
        typer.echo(json.dumps(_note_to_dict(note), indent=2))
    else:
        typer.echo("Note saved." if note.note_text else "Note cleared.")


@notes_app.command("many")
def notes_many(
    pass_ids: Annotated[list[str], typer.Argument(help="Passes to read notes for")],
):
    """Show the effective note for several passes."""
    found = _run("notes many", lambda session: session.notes.fetch_many(pass_ids))
    effective = {pid: latest_note(notes) for pid, notes in found.items()}
    if _json_output:
        typer.echo(json.dumps(
            {pid: (_note_to_dict(n) if n else None) for pid, n in effective.items()},
            indent=2,
        ))
        return
    for pid, note in effective.items():
        typer.echo(f"{pid}  {note.note_text if note else ''}")


@app.command()
def watch(
    interval: Annotated[Optional[float], typer.Option(
        "--interval", "-i",
        help="Seconds between polls (default from config)"
    )] = None,
):
    """Load the record window, then print new records as they arrive."""
    def print_new(added: list[Record]):
        for record in added:
            if _json_output:
                typer.echo(json.dumps(_record_to_dict(record)))
            else:
                typer.echo(_format_record_line(record))

    def print_error(exc: Exception):
        typer.echo(f"Poll failed: {exc} (retrying)", err=True)

    async def body(session: DashboardSession):
        result = await session.load()
        typer.echo(
            f"Loaded {len(session.records)} records for {len(session.passes)} passes "
            f"({result.pages} pages). Watching...",
            err=True,
        )
        await session.watch(interval, on_new=print_new, on_error=print_error)

    try:
        _run("watch", body)
    except KeyboardInterrupt:
        pass


def main():
    app()


if __name__ == "__main__":
    main()
