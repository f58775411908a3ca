"""Filter profiles and predicate compilation.

A session builds exactly one predicate before tailing starts and applies it
to every line; nothing here is re-evaluated per line except the precompiled
regexes themselves.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional

from .errors import FilterConfigError


Predicate = Callable[[str], bool]

PROFILES: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "IIS": ("w3wp",),
    }
)


def profile_targets(key: str, profiles: Mapping[str, tuple[str, ...]] = PROFILES) -> tuple[str, ...]:
    for name, targets in profiles.items():
        if name.lower() == key.strip().lower():
            return tuple(targets)
    known = ", ".join(sorted(profiles)) or "none"
    raise FilterConfigError(f"Unknown profile '{key}'. Known profiles: {known}")


def expand_targets(
    profile: Optional[str],
    names: Iterable[str] = (),
    profiles: Mapping[str, tuple[str, ...]] = PROFILES,
) -> list[str]:
    """Profile defaults first, then user-supplied names (duplicates kept)."""
    targets: list[str] = []
    if profile:
        targets.extend(profile_targets(profile, profiles))
    targets.extend(n for n in names if n and n.strip())
    return targets


def validate_pattern(pattern: Optional[str]) -> Optional[re.Pattern[str]]:
    if not pattern:
        return None
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        raise FilterConfigError(f"Invalid filter pattern {pattern!r}: {e}") from e


@dataclass(frozen=True)
class FilterSpec:
    pids: frozenset[int] = field(default_factory=frozenset)
    pattern: Optional[str] = None

    @property
    def is_passthrough(self) -> bool:
        return not self.pids and not self.pattern

    def describe(self) -> str:
        if self.is_passthrough:
            return "none (showing every line)"
        parts = []
        if self.pids:
            parts.append("PID in " + ", ".join(str(p) for p in sorted(self.pids)))
        if self.pattern:
            parts.append(f"text matches {self.pattern!r}")
        return " AND ".join(parts)


def pid_regex(pids: Iterable[int]) -> re.Pattern[str]:
    # The collector renders the owning PID as "[1234]"; require both brackets
    # so 1234 never matches inside 11234 or 12345.
    alternatives = "|".join(str(p) for p in sorted(set(pids)))
    return re.compile(rf"\[(?:{alternatives})\]")


def compile_filter(spec: FilterSpec) -> Predicate:
    text_re = validate_pattern(spec.pattern)
    id_re = pid_regex(spec.pids) if spec.pids else None

    if id_re is None and text_re is None:
        return lambda line: True
    if text_re is None:
        return lambda line: id_re.search(line) is not None
    if id_re is None:
        return lambda line: text_re.search(line) is not None

    def _both(line: str) -> bool:
        return id_re.search(line) is not None and text_re.search(line) is not None

    return _both
