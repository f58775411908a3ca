"""Live DebugView kernel-debug feed, filtered down to the processes you care about."""

from importlib.metadata import PackageNotFoundError, version as _pkg_version


def _detect_version() -> str:
    try:
        return _pkg_version("dbgtail")
    except PackageNotFoundError:
        # Source tree on sys.path without an install
        return "0.0.0+dev"


__version__ = _detect_version()

from .config import Settings  # noqa: E402
from .errors import DbgtailError  # noqa: E402
from .session import ExitReason, Session, WatchRequest  # noqa: E402

__all__ = ["__version__", "DbgtailError", "ExitReason", "Session", "Settings", "WatchRequest"]
