import os
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional


DEFAULT_IMAGE_NAMES: tuple[str, ...] = ("Dbgview.exe", "dbgview64.exe")
DEFAULT_REGISTRY_KEY = r"Software\Sysinternals\DbgView"


def _default_collector_path() -> Path:
    base = os.getenv("LOCALAPPDATA") or str(Path.home() / "AppData" / "Local")
    return Path(base) / "dbgtail" / "DebugView" / "Dbgview.exe"


def _default_log_path() -> Path:
    return Path(tempfile.gettempdir()) / "dbgtail" / "dbgview.log"


def _env_path(name: str, fallback: Path) -> Path:
    raw = os.getenv(name, "").strip()
    return Path(raw).expanduser() if raw else fallback


def _env_float(name: str, fallback: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return fallback
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_flag(name: str) -> Optional[bool]:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return None
    return raw in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    collector_path: Path
    log_path: Path
    registry_key: str = DEFAULT_REGISTRY_KEY
    image_names: tuple[str, ...] = DEFAULT_IMAGE_NAMES
    startup_timeout: float = 5.0
    stop_timeout: float = 3.0
    force_polling: Optional[bool] = None  # None lets watchfiles decide
    poll_delay_ms: int = 300
    idle_timeout_ms: int = 500

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from DBGTAIL_* environment variables.

        DBGTAIL_COLLECTOR       path to Dbgview.exe (installed by the installer)
        DBGTAIL_LOG             log file the collector mirrors into
        DBGTAIL_REGISTRY_KEY    HKCU subkey the collector persists its settings under
        DBGTAIL_STARTUP_TIMEOUT seconds to wait for the log file to appear
        DBGTAIL_POLL            force polling instead of native file notifications
        """
        return cls(
            collector_path=_env_path("DBGTAIL_COLLECTOR", _default_collector_path()),
            log_path=_env_path("DBGTAIL_LOG", _default_log_path()),
            registry_key=os.getenv("DBGTAIL_REGISTRY_KEY", "").strip() or DEFAULT_REGISTRY_KEY,
            startup_timeout=_env_float("DBGTAIL_STARTUP_TIMEOUT", 5.0),
            force_polling=_env_flag("DBGTAIL_POLL"),
        )

    def with_overrides(self, collector: Optional[Path] = None, log: Optional[Path] = None) -> "Settings":
        changes = {}
        if collector is not None:
            changes["collector_path"] = collector
        if log is not None:
            changes["log_path"] = log
        return replace(self, **changes) if changes else self

    @property
    def collector_names(self) -> tuple[str, ...]:
        # de-dupe case-insensitively while preserving order
        seen = set()
        names = []
        for n in (*self.image_names, self.collector_path.name):
            key = n.lower()
            if key and key not in seen:
                seen.add(key)
                names.append(n)
        return tuple(names)
