from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional

import psutil

from .util import normalize_process_name


@dataclass(frozen=True)
class Resolution:
    requested: tuple[str, ...]
    pids: frozenset[int]
    unmatched: tuple[str, ...]

    @property
    def identifier_filter_disabled(self) -> bool:
        """Names were asked for but none resolved; callers fail open."""
        return bool(self.requested) and not self.pids


def _snapshot(process_iter: Optional[Callable[..., Iterator]]) -> list[tuple[int, str]]:
    rows = []
    for proc in (process_iter or psutil.process_iter)(["pid", "name"]):
        try:
            info = proc.info
            name = info.get("name") or ""
            pid = int(info.get("pid") or 0)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
        if pid > 0 and name:
            rows.append((pid, normalize_process_name(name)))
    return rows


def resolve_pids(
    names: Iterable[str],
    process_iter: Optional[Callable[..., Iterator]] = None,
) -> Resolution:
    """Map process names to the PIDs currently running under them.

    Point-in-time snapshot; a process that restarts later under a new PID is
    not picked up. Blank names are ignored, duplicates are harmless.
    """
    requested = tuple(n.strip() for n in names if n and n.strip())
    if not requested:
        return Resolution((), frozenset(), ())

    wanted: dict[str, str] = {}
    for n in requested:
        wanted.setdefault(normalize_process_name(n), n)

    by_name: dict[str, set[int]] = {key: set() for key in wanted}
    for pid, name in _snapshot(process_iter):
        if name in by_name:
            by_name[name].add(pid)

    pids: set[int] = set()
    unmatched = []
    for key, original in wanted.items():
        if by_name[key]:
            pids.update(by_name[key])
        else:
            unmatched.append(original)
    return Resolution(requested, frozenset(pids), tuple(unmatched))
