"""Follow a file another process is still writing to.

``follow_lines`` suspends on watchfiles between appends and yields each
complete line in the order it was written. The generator never finishes on
its own; stop it by closing it, cancelling the task that iterates it, or
setting ``stop_event``.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Optional

from watchfiles import awatch


def _same_file(a: str, b: str) -> bool:
    return os.path.normcase(os.path.abspath(a)) == os.path.normcase(os.path.abspath(b))


class _LineReader:
    def __init__(self, fh: BinaryIO, encoding: str) -> None:
        self._fh = fh
        self._encoding = encoding
        self._partial = b""

    def read_lines(self) -> list[str]:
        self._check_truncated()
        data = self._fh.read()
        if not data:
            return []
        data = self._partial + data
        chunks = data.split(b"\n")
        # Last chunk is either b"" (data ended on a newline) or an unfinished line
        self._partial = chunks.pop()
        return [c.rstrip(b"\r").decode(self._encoding, errors="replace") for c in chunks]

    def _check_truncated(self) -> None:
        size = os.fstat(self._fh.fileno()).st_size
        if size < self._fh.tell():
            self._fh.seek(0)
            self._partial = b""


async def follow_lines(
    path: os.PathLike | str,
    *,
    from_start: bool = False,
    stop_event: Optional[asyncio.Event] = None,
    force_polling: Optional[bool] = None,
    poll_delay_ms: int = 300,
    idle_timeout_ms: int = 500,
    encoding: str = "utf-8",
) -> AsyncIterator[str]:
    target = str(Path(path))
    directory = os.path.dirname(os.path.abspath(target))

    def _only_target(_change, changed: str) -> bool:
        return _same_file(changed, target)

    with open(target, "rb") as fh:
        if not from_start:
            fh.seek(0, os.SEEK_END)
        reader = _LineReader(fh, encoding)

        for line in reader.read_lines():
            yield line

        # yield_on_timeout: re-read after idle_timeout_ms even if a
        # notification was lost (e.g. writes through another handle on Windows)
        async for _changes in awatch(
            directory,
            watch_filter=_only_target,
            debounce=200,
            step=50,
            stop_event=stop_event,
            rust_timeout=idle_timeout_ms,
            yield_on_timeout=True,
            force_polling=force_polling,
            poll_delay_ms=poll_delay_ms,
            recursive=False,
        ):
            for line in reader.read_lines():
                yield line
