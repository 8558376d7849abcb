"""
CLI interface for an inkwell journal.

Usage:
    inkwell sync
    inkwell streak
    inkwell holds
    inkwell retry ENTRY_ID
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import Journal
from .config import default_data_dir, load_or_create_config
from .errors import (
    AnalysisUnavailableError,
    EntryNotFoundError,
    InkwellError,
    WeeklySummaryError,
)
from .logging_config import configure_quiet_mode, enable_debug_mode
from .streaks import REQUIRED_DAYS
from .types import EntrySummaryState, format_timestamp

# Configure quiet mode by default (suppress verbose library output)
# Set INKWELL_VERBOSE=1 to enable debug mode via environment
if os.environ.get("INKWELL_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"inkwell {version('inkwell')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_data_dir_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _data_dir_callback(value: Optional[Path]):
    global _data_dir_override
    _data_dir_override = value


app = typer.Typer(
    name="inkwell",
    help="Journal sync, streaks and AI insight.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


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
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    data_dir: Annotated[Optional[Path], typer.Option(
        "--data-dir", "-d",
        envvar="INKWELL_DATA_DIR",
        help="Journal data directory (default: ~/.inkwell/)",
        callback=_data_dir_callback,
        is_eager=True,
    )] = None,
):
    """Journal sync, streaks and AI insight."""


LimitOption = Annotated[
    Optional[int],
    typer.Option(
        "--limit", "-n",
        help="Maximum entries to summarize (default: [generation] pending_batch)",
    )
]


def _get_journal() -> Journal:
    """Open the journal, turning setup errors into a one-line message."""
    try:
        return Journal(_data_dir_override)
    except (ValueError, OSError, InkwellError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _echo_json(data) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


async def _loaded(journal: Journal, force: bool = False) -> Journal:
    await journal.load(wait=True, force=force)
    if journal.state.error is not None:
        typer.echo(f"Warning: {journal.state.error}", err=True)
    return journal


def _run(coro_fn, *, force: bool = False):
    """Open the journal, run ``coro_fn(journal)`` and close it."""
    journal = _get_journal()

    async def runner():
        try:
            await _loaded(journal, force)
            return await coro_fn(journal)
        finally:
            await journal.aclose()

    return asyncio.run(runner())


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def streak():
    """Show the current and longest writing streak."""
    async def run(journal: Journal):
        return journal.streaks()

    data = _run(run)
    if _get_json_output():
        _echo_json({
            "currentStreak": data.current_streak,
            "longestStreak": data.longest_streak,
            "lastEntryDate": format_timestamp(data.last_entry_date) if data.last_entry_date else None,
            "streakStartDate": data.streak_start_date.isoformat() if data.streak_start_date else None,
        })
        return
    typer.echo(f"Current streak: {data.current_streak} day(s)")
    typer.echo(f"Longest streak: {data.longest_streak} day(s)")
    if data.streak_start_date:
        typer.echo(f"Streak started: {data.streak_start_date.isoformat()}")
    if data.last_entry_date:
        typer.echo(f"Last entry: {format_timestamp(data.last_entry_date)}")


@app.command()
def eligibility():
    """Show progress toward the next weekly insight."""
    async def run(journal: Journal):
        return journal.eligibility()

    result = _run(run)
    if _get_json_output():
        _echo_json({
            "eligible": result.eligible,
            "daysInWindow": result.days_in_window,
            "entriesInWindow": len(result.entries_in_window),
        })
        return
    typer.echo(f"Days written since last insight: {result.days_in_window}/{REQUIRED_DAYS}")
    typer.echo(f"Entries in window: {len(result.entries_in_window)}")
    typer.echo("Weekly insight: " + ("ready" if result.eligible else "not yet"))


@app.command()
def sync():
    """Refresh every collection from the remote store."""
    async def run(journal: Journal):
        return journal.state

    state = _run(run, force=True)
    counts = {
        "entries": len(state.entries),
        "entrySummaries": len(state.entry_summaries),
        "holdStatuses": len(state.hold_statuses),
        "summaries": len(state.summaries),
    }
    if _get_json_output():
        _echo_json(counts)
        return
    for name, count in counts.items():
        typer.echo(f"{name}: {count}")


@app.command()
def holds():
    """List entries whose AI summary is on hold."""
    async def run(journal: Journal):
        return list(journal.state.hold_statuses)

    held = _run(run)
    if _get_json_output():
        _echo_json([h.to_dict() for h in held])
        return
    if not held:
        typer.echo("No entries on hold")
        return
    for hold in held:
        code = f" [{hold.error_code}]" if hold.error_code else ""
        typer.echo(
            f"{hold.entry_id}  {hold.reason.value}{code}  "
            f"attempts={hold.retry_count}  last={format_timestamp(hold.last_attempt)}"
        )
        typer.echo(f"  {hold.error_message}")


@app.command()
def retry(
    entry_id: Annotated[str, typer.Argument(help="Entry to summarize again")],
):
    """Retry AI summary generation for one entry."""
    async def run(journal: Journal):
        try:
            result = await journal.retry(entry_id)
        except (EntryNotFoundError, AnalysisUnavailableError) as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)
        return result, journal.state.hold_for(entry_id)

    result, hold = _run(run)
    if result is EntrySummaryState.HELD and hold is not None:
        typer.echo(
            f"{entry_id}: still on hold ({hold.reason.value}, attempt {hold.retry_count}): "
            f"{hold.error_message}"
        )
        raise typer.Exit(1)
    typer.echo(f"{entry_id}: {result.value}")


@app.command()
def pending(limit: LimitOption = None):
    """Summarize the newest entries that have no summary yet."""
    async def run(journal: Journal):
        try:
            return await journal.process_pending(limit)
        except AnalysisUnavailableError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)

    counts = _run(run)
    if _get_json_output():
        _echo_json(counts)
        return
    typer.echo(f"Summarized: {counts['summarized']}")
    typer.echo(f"On hold: {counts['held']}")


@app.command()
def weekly():
    """Generate the weekly insight if seven days have been written."""
    async def run(journal: Journal):
        try:
            return journal.eligibility(), await journal.maybe_generate_weekly()
        except (WeeklySummaryError, AnalysisUnavailableError) as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)

    status, summary = _run(run)
    if summary is None:
        if status.eligible:
            typer.echo("Weekly insight already exists for this window")
        else:
            typer.echo(f"Not yet: {status.days_in_window}/{REQUIRED_DAYS} days written")
        return
    if _get_json_output():
        _echo_json(summary.to_dict())
        return
    typer.echo(
        f"Weekly insight over {summary.entries_analyzed} entries "
        f"({summary.week_start.date()} to {summary.week_end.date()})"
    )
    if summary.themes:
        typer.echo("Themes: " + ", ".join(summary.themes))
    if summary.motivational_insight:
        typer.echo(summary.motivational_insight)
    for step in summary.action_steps:
        typer.echo(f"- {step}")


@app.command()
def config():
    """Show the journal configuration."""
    cfg = load_or_create_config(_data_dir_override or default_data_dir())
    data = {
        "path": str(cfg.config_path),
        "userId": cfg.user_id,
        "timezone": cfg.timezone or "(system local)",
        "remote": cfg.remote.api_url or "(not configured)",
        "analysis": cfg.analysis.name,
        "stalenessMinutes": cfg.staleness_minutes,
        "timeoutSeconds": cfg.timeout_seconds,
        "pendingBatch": cfg.pending_batch,
    }
    if _get_json_output():
        _echo_json(data)
        return
    for key, value in data.items():
        typer.echo(f"{key}: {value}")


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="inkwell CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
