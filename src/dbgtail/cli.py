import asyncio
import os
import signal
import sys
from contextlib import suppress
from pathlib import Path
from typing import Optional

import typer

from . import __version__
from .collector import Collector, find_collectors
from .config import Settings
from .errors import DbgtailError
from .filters import PROFILES
from .registry import RegistryStore
from .session import ExitReason, Session, WatchRequest, purge_residue
from .util import Console, is_privileged


app = typer.Typer(
    name="dbgtail",
    add_completion=False,
    no_args_is_help=False,
    help=(
        "DebugView + process-aware filtering: a live kernel debug feed for one process.\n\n"
        "Usage:\n"
        "  dbgtail [-p NAME]... [--profile IIS] [-f TEXT]   Watch (default command)\n"
        "  dbgtail clean                                    Remove collector leftovers\n"
        "  dbgtail profiles                                 List built-in profiles\n"
        "  dbgtail doctor                                   Check install and privileges\n\n"
        "Environment: DBGTAIL_COLLECTOR, DBGTAIL_LOG, DBGTAIL_REGISTRY_KEY,\n"
        "DBGTAIL_STARTUP_TIMEOUT, DBGTAIL_POLL."
    ),
    context_settings={"help_option_names": ["-h", "--help"]},
)


@app.callback()
def _root(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        help="Show version and exit",
        is_eager=True,
    )
):
    if version:
        typer.echo(__version__)
        raise typer.Exit()


def _load_settings(console: Console, collector: Optional[Path], log: Optional[Path]) -> Settings:
    try:
        settings = Settings.from_env()
    except ValueError as e:
        console.error(str(e))
        raise typer.Exit(code=2)
    return settings.with_overrides(collector=collector, log=log)


@app.command()
def version():
    """Show CLI version (semver)."""
    typer.echo(__version__)


@app.command()
def watch(
    filter: Optional[str] = typer.Option(None, "-f", "--filter", help="Only lines matching this regex (case-insensitive)"),
    process: list[str] = typer.Option([], "-p", "--process", help="Process name to follow (repeatable)", show_default=False),
    profile: Optional[str] = typer.Option(None, "--profile", help="Built-in profile, e.g. IIS"),
    collector: Optional[Path] = typer.Option(None, "--collector", help="Path to Dbgview.exe"),
    log: Optional[Path] = typer.Option(None, "--log", help="Log file the collector writes"),
    quiet: bool = typer.Option(False, "-q", "--quiet", help="Only print log lines and warnings"),
):
    """Start the collector and stream its filtered output until Ctrl+C."""
    console = Console(quiet=quiet)
    settings = _load_settings(console, collector, log)
    session = Session(
        settings,
        WatchRequest(pattern=filter, process_names=tuple(process), profile=profile),
        console=console,
    )

    async def _watch():
        task = asyncio.current_task()
        loop = asyncio.get_running_loop()
        # SIGTERM behaves like Ctrl+C; Windows event loops lack add_signal_handler
        with suppress(NotImplementedError, AttributeError):
            loop.add_signal_handler(signal.SIGTERM, task.cancel)
        return await session.run()

    try:
        reason = asyncio.run(_watch())
    except (KeyboardInterrupt, asyncio.CancelledError):
        # asyncio.run cancelled the session, which already cleaned up
        reason = ExitReason.CANCELLED
    except DbgtailError as e:
        console.error(str(e))
        raise typer.Exit(code=e.exit_code)

    if reason is ExitReason.PIPELINE_EXITED and console.closed:
        _detach_stdout()
    if reason is ExitReason.COLLECTOR_EXITED:
        raise typer.Exit(code=1)


def _detach_stdout() -> None:
    # Point fd 1 at devnull so the interpreter's final flush of the
    # closed pipe does not print a second BrokenPipeError
    with suppress(OSError, ValueError):
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())


@app.command()
def clean(
    collector: Optional[Path] = typer.Option(None, "--collector", help="Path to Dbgview.exe"),
    log: Optional[Path] = typer.Option(None, "--log", help="Log file the collector writes"),
):
    """Kill stray collectors and remove their log file and registry settings."""
    console = Console()
    settings = _load_settings(console, collector, log)
    failed = asyncio.run(
        purge_residue(
            console,
            Collector.from_settings(settings),
            settings.log_path,
            RegistryStore(settings.registry_key),
        )
    )
    if failed:
        raise typer.Exit(code=1)
    typer.echo("clean")


@app.command()
def profiles():
    """List built-in filter profiles. Prints: profile\tprocess names"""
    for key, names in PROFILES.items():
        typer.echo(f"{key}\t{','.join(names)}")


@app.command()
def doctor():
    """Diagnose collector install, privileges and leftovers."""
    console = Console()
    settings = _load_settings(console, None, None)

    installed = settings.collector_path.is_file()
    privileged = is_privileged()
    try:
        running = [p.pid for p in find_collectors(settings.collector_names)]
    except Exception:
        running = []

    typer.echo(f"collector: {'ok' if installed else 'MISSING'} ({settings.collector_path})")
    typer.echo(f"privileged: {'ok' if privileged else 'FAIL'}")
    typer.echo(f"log file: {settings.log_path}{' (stale, run dbgtail clean)' if settings.log_path.exists() else ''}")
    typer.echo(f"registry key: HKCU\\{settings.registry_key}")
    mode = {None: "auto", True: "polling", False: "native"}[settings.force_polling]
    typer.echo(f"file watching: {mode}")
    if running:
        typer.echo(f"running collectors: {', '.join(str(p) for p in running)}")
    else:
        typer.echo("running collectors: none")
    if not (installed and privileged):
        raise typer.Exit(code=1)
