import os
import sys

import typer


def is_tty() -> bool:
    try:
        return sys.stdout.isatty()
    except Exception:
        return False


def normalize_process_name(name: str) -> str:
    """Case-fold a process name and drop a trailing .exe (w3wp == W3WP.exe)."""
    n = name.strip().lower()
    if n.endswith(".exe"):
        n = n[: -len(".exe")]
    return n


def is_privileged() -> bool:
    if os.name == "nt":
        import ctypes

        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
        except Exception:
            return False
    return os.geteuid() == 0


class Console:
    """Operator-facing output sink.

    Filtered log lines and status lines go to stdout in arrival order;
    warnings and errors go to stderr.
    """

    def __init__(self, quiet: bool = False, color: bool | None = None) -> None:
        self.quiet = quiet
        self.color = is_tty() if color is None else color
        self.closed = False

    def _style(self, text: str, **kw) -> str:
        return typer.style(text, **kw) if self.color else text

    def line(self, text: str) -> None:
        try:
            typer.echo(text)
        except BrokenPipeError:
            # Reader went away (e.g. `dbgtail | head`); stdout stays unusable
            self.closed = True
            raise

    def status(self, text: str) -> None:
        if self.quiet or self.closed:
            return
        try:
            typer.echo(self._style(f"[dbgtail] {text}", fg=typer.colors.CYAN))
        except BrokenPipeError:
            self.closed = True

    def warn(self, text: str) -> None:
        typer.echo(self._style(f"[dbgtail] warning: {text}", fg=typer.colors.YELLOW), err=True)

    def error(self, text: str) -> None:
        typer.echo(self._style(f"[dbgtail] error: {text}", fg=typer.colors.RED, bold=True), err=True)
