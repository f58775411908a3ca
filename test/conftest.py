import asyncio
from pathlib import Path

import pytest

from dbgtail.config import Settings
from dbgtail.util import Console


class RecordingConsole(Console):
    """Console that keeps everything in memory, in emission order."""

    def __init__(self) -> None:
        super().__init__(quiet=False, color=False)
        self.events: list[tuple[str, str]] = []

    @property
    def lines(self) -> list[str]:
        return [text for kind, text in self.events if kind == "line"]

    @property
    def warnings(self) -> list[str]:
        return [text for kind, text in self.events if kind == "warn"]

    @property
    def statuses(self) -> list[str]:
        return [text for kind, text in self.events if kind == "status"]

    def line(self, text: str) -> None:
        self.events.append(("line", text))

    def status(self, text: str) -> None:
        self.events.append(("status", text))

    def warn(self, text: str) -> None:
        self.events.append(("warn", text))

    def error(self, text: str) -> None:
        self.events.append(("error", text))


class FakeCollector:
    """Stands in for DebugView: creates the log on start and writes lines to it."""

    def __init__(
        self,
        log_path: Path,
        lines=(),
        fail_start: Exception | None = None,
        start_delay: float = 0.0,
        create_log: bool = True,
    ) -> None:
        self.log_path = log_path
        self.lines = list(lines)
        self.fail_start = fail_start
        self.start_delay = start_delay
        self.create_log = create_log
        self.calls: list[str] = []
        self.running = False
        self.pid = 0
        self._exited = asyncio.Event()
        self._code = 0
        self._writer: asyncio.Task | None = None

    async def kill_strays(self) -> int:
        self.calls.append("kill_strays")
        return 0

    async def start(self) -> int:
        self.calls.append("start")
        if self.start_delay:
            await asyncio.sleep(self.start_delay)
        if self.fail_start is not None:
            raise self.fail_start
        if not self.create_log:
            self.running = True
            self.pid = 4242
            return self.pid
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self.log_path.write_bytes(b"")
        self.running = True
        self.pid = 4242
        self._writer = asyncio.create_task(self._write_lines())
        return self.pid

    async def _write_lines(self) -> None:
        await asyncio.sleep(0.05)
        for line in self.lines:
            with open(self.log_path, "ab") as fh:
                fh.write(line.encode() + b"\r\n")
            await asyncio.sleep(0.02)

    def exit(self, code: int) -> None:
        self.running = False
        self._code = code
        self._exited.set()

    async def stop(self, force: bool = False) -> bool:
        self.calls.append("stop")
        if self._writer is not None and not self._writer.done():
            self._writer.cancel()
        was_running = self.running
        self.running = False
        return was_running

    async def wait(self) -> int:
        await self._exited.wait()
        return self._code


class FakeStore:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.cleared = 0

    def clear(self) -> bool:
        self.cleared += 1
        if self.fail:
            raise PermissionError("registry key is locked")
        return False


class FakeProc:
    def __init__(self, pid: int, name: str, gone: bool = False) -> None:
        self.pid = pid
        self._name = name
        self.gone = gone
        self.killed = False

    @property
    def info(self) -> dict:
        if self.gone:
            import psutil

            raise psutil.NoSuchProcess(self.pid)
        return {"pid": self.pid, "name": self._name}

    def kill(self) -> None:
        self.killed = True


def fake_process_iter(procs):
    def _iter(attrs=None):
        return iter(procs)

    return _iter


async def wait_until(predicate, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.02)


@pytest.fixture
def console():
    return RecordingConsole()


@pytest.fixture
def settings(tmp_path):
    exe = tmp_path / "bin" / "Dbgview.exe"
    exe.parent.mkdir()
    exe.write_bytes(b"")
    return Settings(
        collector_path=exe,
        log_path=tmp_path / "logs" / "dbgview.log",
        startup_timeout=1.0,
        force_polling=True,
        poll_delay_ms=50,
        idle_timeout_ms=100,
    )
