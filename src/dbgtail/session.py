"""One supervised capture run.

A Session starts DebugView, resolves the processes to watch, compiles the
filter, and pumps the collector's log through it until the operator
cancels, the output is closed, or the collector dies. Cleanup always runs
exactly once on the way out and leaves no process, log or registry key
behind.
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack, suppress
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping, Optional

from .collector import Collector
from .config import Settings
from .errors import CollectorNotInstalledError, NotPrivilegedError, SessionStateError, TailError
from .filters import PROFILES, FilterSpec, compile_filter, expand_targets, validate_pattern
from .registry import RegistryStore
from .resolver import Resolution, resolve_pids
from .tailer import follow_lines
from .util import Console, is_privileged


SHUTDOWN_NOTICE = "Shutting down, cleaning up collector state..."


class SessionState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    TERMINATING = "terminating"
    CLOSED = "closed"


class ExitReason(str, Enum):
    CANCELLED = "cancelled"
    PIPELINE_EXITED = "pipeline-exited"
    COLLECTOR_EXITED = "collector-exited"


@dataclass(frozen=True)
class WatchRequest:
    pattern: Optional[str] = None
    process_names: tuple[str, ...] = ()
    profile: Optional[str] = None


async def purge_residue(
    console: Console,
    collector: Collector,
    log_path: Path,
    store: RegistryStore,
    pipeline: Optional[asyncio.Task] = None,
) -> list[str]:
    """Best-effort teardown. Every step runs even if an earlier one failed.

    Returns the names of the steps that failed. Safe to call when nothing is
    running.
    """
    failed = []

    async def _stop_pipeline():
        if pipeline is not None and not pipeline.done():
            pipeline.cancel()
            with suppress(asyncio.CancelledError):
                await pipeline

    async def _stop_collector():
        await collector.stop()
        await collector.kill_strays()

    async def _delete_log():
        log_path.unlink(missing_ok=True)

    async def _clear_store():
        store.clear()

    steps = [
        ("stop pipeline", _stop_pipeline),
        ("stop collector", _stop_collector),
        ("delete log file", _delete_log),
        ("clear collector settings", _clear_store),
    ]
    for label, step in steps:
        try:
            await step()
        except Exception as e:
            failed.append(label)
            notify(console.warn, f"cleanup step '{label}' failed: {e}")
    return failed


def notify(emit: Callable[[str], None], text: str) -> None:
    """Emit a status line; a consumer that already hung up must not abort teardown."""
    with suppress(BrokenPipeError):
        emit(text)


class Session:
    def __init__(
        self,
        settings: Settings,
        request: WatchRequest,
        *,
        console: Optional[Console] = None,
        collector: Optional[Collector] = None,
        store: Optional[RegistryStore] = None,
        resolver: Callable[..., Resolution] = resolve_pids,
        privileged: Callable[[], bool] = is_privileged,
        profiles: Mapping[str, tuple[str, ...]] = PROFILES,
    ) -> None:
        self.settings = settings
        self.request = request
        self.console = console or Console()
        self.collector = collector or Collector.from_settings(settings)
        self.store = store or RegistryStore(settings.registry_key)
        self._resolver = resolver
        self._privileged = privileged
        self._profiles = profiles
        self._state = SessionState.CREATED
        self._pipeline: Optional[asyncio.Task] = None
        self._closed = False
        self.filter_spec: Optional[FilterSpec] = None
        self.resolution: Optional[Resolution] = None

    @property
    def state(self) -> SessionState:
        return self._state

    def _preflight(self) -> list[str]:
        if not self.settings.collector_path.is_file():
            raise CollectorNotInstalledError(self.settings.collector_path)
        if not self._privileged():
            raise NotPrivilegedError()
        validate_pattern(self.request.pattern)
        return expand_targets(self.request.profile, self.request.process_names, self._profiles)

    async def run(self) -> ExitReason:
        """Run until cancelled, the output closes, or the collector dies.

        Fatal errors are re-raised after cleanup.
        """
        if self._state is not SessionState.CREATED:
            raise SessionStateError(f"session is {self._state.value}; create a new one")

        try:
            targets = self._preflight()
        except Exception:
            self._state = SessionState.CLOSED
            notify(self.console.status, SHUTDOWN_NOTICE)
            raise

        try:
            async with AsyncExitStack() as stack:
                stack.push_async_callback(self.close)
                # Residue from a crashed run: stray collector, stale log, old settings
                await purge_residue(self.console, self.collector, self.settings.log_path, self.store)
                await self._start(targets)
                return await self._wait()
        except asyncio.CancelledError:
            # Cancelled while starting up; the exit stack has already cleaned up
            return ExitReason.CANCELLED

    async def _start(self, targets: list[str]) -> None:
        self.console.status(f"Starting collector {self.settings.collector_path}")
        pid = await self.collector.start()
        self.console.status(f"Collector running (pid {pid}), logging to {self.settings.log_path}")

        self.resolution = self._resolver(targets)
        for name in self.resolution.unmatched:
            self.console.warn(f"no running process named '{name}'")
        pids = self.resolution.pids
        if self.resolution.identifier_filter_disabled:
            self.console.warn("no target process resolved; process filtering disabled for this session")
            pids = frozenset()

        self.filter_spec = FilterSpec(pids=pids, pattern=self.request.pattern or None)
        predicate = compile_filter(self.filter_spec)
        self.console.status(f"Active filter: {self.filter_spec.describe()}")

        self._pipeline = asyncio.create_task(self._pump(predicate), name="dbgtail-pipeline")
        self._state = SessionState.RUNNING
        self.console.status("Streaming (Ctrl+C to stop)")

    async def _pump(self, predicate) -> None:
        try:
            async for line in follow_lines(
                self.settings.log_path,
                from_start=True,
                force_polling=self.settings.force_polling,
                poll_delay_ms=self.settings.poll_delay_ms,
                idle_timeout_ms=self.settings.idle_timeout_ms,
            ):
                if predicate(line):
                    self.console.line(line)
        except BrokenPipeError:
            raise
        except OSError as e:
            raise TailError(f"Cannot follow {self.settings.log_path}: {e}") from e

    async def _wait(self) -> ExitReason:
        assert self._pipeline is not None
        watcher = asyncio.create_task(self.collector.wait(), name="dbgtail-collector")
        pending = {self._pipeline, watcher}
        try:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            notify(self.console.status, "Interrupted")
            return ExitReason.CANCELLED
        finally:
            # Whichever side is still alive goes down with the other
            for task in pending:
                task.cancel()
            for task in pending:
                with suppress(asyncio.CancelledError):
                    await task

        if self._pipeline in done:
            exc = self._pipeline.exception()
            if exc is None or isinstance(exc, BrokenPipeError):
                notify(self.console.status, "Output closed")
                return ExitReason.PIPELINE_EXITED
            raise exc

        code = watcher.result()
        notify(self.console.error, f"collector exited unexpectedly (code {code})")
        return ExitReason.COLLECTOR_EXITED

    async def close(self) -> None:
        """Tear everything down once; later calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        self._state = SessionState.TERMINATING
        notify(self.console.status, SHUTDOWN_NOTICE)
        try:
            await purge_residue(
                self.console,
                self.collector,
                self.settings.log_path,
                self.store,
                pipeline=self._pipeline,
            )
        finally:
            self._state = SessionState.CLOSED
