import sys
from typing import List

from .cli import app


SUBCOMMANDS = {
    "watch",
    "clean",
    "profiles",
    "doctor",
    "version",
    "--version",
    "-h",
    "--help",
}


def main(argv: List[str] | None = None):
    if argv is None:
        argv = sys.argv[1:]

    # Handle version early to avoid Click group error
    if argv and argv[0] in {"--version", "-V"}:
        from . import __version__
        print(__version__)
        return

    # Default command: dbgtail [watch options]
    #   dbgtail
    #   dbgtail -p w3wp -f error
    #   dbgtail --profile IIS
    if not argv or argv[0] not in SUBCOMMANDS:
        return app(args=["watch", *argv], prog_name="dbgtail")

    return app(args=argv, prog_name="dbgtail")
