"""Exception taxonomy shared by the session, collector and CLI."""


class DbgtailError(RuntimeError):
    """Base class for every condition dbgtail reports to the operator."""

    exit_code = 1


class PreflightError(DbgtailError):
    """Raised before any process is spawned."""


class CollectorNotInstalledError(PreflightError):
    def __init__(self, path):
        self.path = path
        super().__init__(
            f"Collector executable not found: {path}. "
            "Run the installer first or set DBGTAIL_COLLECTOR to its location."
        )


class NotPrivilegedError(PreflightError):
    def __init__(self):
        super().__init__(
            "Capturing kernel debug output requires elevated rights. "
            "Re-run from an administrator shell."
        )


class FilterConfigError(PreflightError):
    exit_code = 2


class CollectorStartError(DbgtailError):
    """The collector was launched but never produced its log file."""


class SessionStateError(DbgtailError):
    pass


class TailError(DbgtailError):
    """The collector's log could not be read while streaming."""
