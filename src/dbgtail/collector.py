from __future__ import annotations

import asyncio
from asyncio.subprocess import DEVNULL
from contextlib import suppress
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

import psutil

from .errors import CollectorStartError
from .util import normalize_process_name


def collector_argv(log_path: Path) -> list[str]:
    """Arguments for DebugView.

    /accepteula  accept the Sysinternals licence without a dialog
    /t           start minimised to the tray
    /k           capture kernel debug output
    /l <file>    mirror captured output to <file>
    """
    return ["/accepteula", "/t", "/k", "/l", str(log_path)]


def find_collectors(
    image_names: Iterable[str],
    process_iter: Optional[Callable[..., Iterator]] = None,
) -> list[psutil.Process]:
    wanted = {normalize_process_name(n) for n in image_names}
    found = []
    for proc in (process_iter or psutil.process_iter)(["pid", "name"]):
        try:
            name = proc.info.get("name") or ""
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        if normalize_process_name(name) in wanted:
            found.append(proc)
    return found


class Collector:
    """Owns one DebugView process handle and the log file it writes."""

    def __init__(
        self,
        executable: Path,
        log_path: Path,
        image_names: Iterable[str] = (),
        startup_timeout: float = 5.0,
        stop_timeout: float = 3.0,
        process_iter: Optional[Callable[..., Iterator]] = None,
    ) -> None:
        self.executable = Path(executable)
        self.log_path = Path(log_path)
        self.image_names = tuple(image_names) or (self.executable.name,)
        self.startup_timeout = startup_timeout
        self.stop_timeout = stop_timeout
        self._process_iter = process_iter
        self._proc: Optional[asyncio.subprocess.Process] = None

    @classmethod
    def from_settings(cls, settings) -> "Collector":
        return cls(
            settings.collector_path,
            settings.log_path,
            image_names=settings.collector_names,
            startup_timeout=settings.startup_timeout,
            stop_timeout=settings.stop_timeout,
        )

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    @property
    def pid(self) -> int:
        return self._proc.pid if self._proc is not None else 0

    async def kill_strays(self) -> int:
        """Force-kill every collector instance on the box. Returns how many died."""
        procs = []
        for proc in find_collectors(self.image_names, self._process_iter):
            try:
                proc.kill()
                procs.append(proc)
            except psutil.NoSuchProcess:
                continue
        if procs:
            # wait_procs sleeps; keep the event loop (and the tail) moving
            await asyncio.to_thread(psutil.wait_procs, procs, timeout=self.stop_timeout)
        return len(procs)

    async def start(self) -> int:
        if self.running:
            raise CollectorStartError(f"Collector already running (pid {self.pid})")

        await self.kill_strays()
        try:
            # A stale log would be appended to instead of recreated
            self.log_path.unlink(missing_ok=True)
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CollectorStartError(f"Cannot prepare log file {self.log_path}: {e}") from e

        try:
            self._proc = await asyncio.create_subprocess_exec(
                str(self.executable),
                *collector_argv(self.log_path),
                stdin=DEVNULL,
                stdout=DEVNULL,
                stderr=DEVNULL,
            )
        except OSError as e:
            raise CollectorStartError(f"Failed to launch {self.executable}: {e}") from e

        if not await self._wait_for_log():
            code = self._proc.returncode
            await self.stop(force=True)
            detail = f"exited with code {code}" if code is not None else "was killed"
            raise CollectorStartError(
                f"Collector did not create {self.log_path} within "
                f"{self.startup_timeout:g}s; process {detail}"
            )
        return self._proc.pid

    async def _wait_for_log(self) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.startup_timeout
        while True:
            if self.log_path.exists():
                return True
            if self._proc is None or self._proc.returncode is not None:
                return False
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(0.1)

    async def stop(self, force: bool = False) -> bool:
        """Stop our collector. Safe on an exited or never-started handle."""
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return False
        with suppress(ProcessLookupError):
            if force:
                proc.kill()
            else:
                proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), self.stop_timeout)
        except asyncio.TimeoutError:
            with suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
        return True

    async def wait(self) -> int:
        if self._proc is None:
            raise RuntimeError("collector was never started")
        return await self._proc.wait()
