"""Log file views: the rolling tail and the since-start capture."""

import logging
from collections import deque
from collections.abc import Iterable, Iterator
from itertools import islice
from os import PathLike

from procdash.models import LogAnchor, LogPaths

log = logging.getLogger(__name__)

MAX_LOG_LINES = 500
MAX_INITIAL_LINES = 100


def _decode(raw: bytes) -> str | None:
    """Decode one raw line, without its line ending. None if it is not UTF-8."""
    if raw.endswith(b"\n"):
        raw = raw[:-1]
        if raw.endswith(b"\r"):
            raw = raw[:-1]
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return None


def _decoded(lines: Iterable[bytes]) -> Iterator[str]:
    for raw in lines:
        text = _decode(raw)
        if text is not None:
            yield text


def read_tail(path: str | PathLike[str], limit: int = MAX_LOG_LINES) -> list[str]:
    """
    Read the whole file and return its last `limit` lines.

    A file that cannot be opened or read gives an empty list; a process that
    has not written anything yet has no log file.
    """
    try:
        with open(path, "rb") as handle:
            return list(deque(_decoded(handle), maxlen=max(0, limit)))
    except OSError as exc:
        log.debug("cannot read log %s: %s", path, exc)
        return []


def read_from_offset(
    path: str | PathLike[str],
    offset: int,
    limit: int = MAX_INITIAL_LINES,
) -> list[str]:
    """Return at most the first `limit` lines found after byte `offset`."""
    try:
        with open(path, "rb") as handle:
            handle.seek(offset)
            raw_lines = list(islice(handle, max(0, limit)))
    except (OSError, ValueError) as exc:
        # ValueError: negative seek position
        log.debug("cannot read log %s from offset %s: %s", path, offset, exc)
        return []
    return list(_decoded(raw_lines))


def scroll_window(total: int, inner_height: int, scroll: int) -> tuple[int, int]:
    """
    Map a scroll offset to the visible slice [start, end) of `total` lines.

    Scroll 0 shows the newest lines; a larger scroll walks back toward the
    start of the buffer and is clamped so the window never runs past it.
    """
    inner_height = max(0, inner_height)
    max_scroll = max(0, total - inner_height)
    effective = min(max(0, scroll), max_scroll)
    start = 0 if total <= inner_height else max_scroll - effective
    return start, min(total, start + inner_height)


class LogTailBuffer:
    """The last N lines of one log stream, rebuilt from disk on every refresh."""

    def __init__(self, limit: int = MAX_LOG_LINES) -> None:
        self._limit = limit
        self.lines: list[str] = []

    def refresh(self, path: str | PathLike[str]) -> list[str]:
        self.lines = read_tail(path, self._limit)
        return self.lines

    def clear(self) -> None:
        self.lines = []


class InitialLogCapture:
    """
    The first N lines each stream produced since the process last started.

    Both streams are re-read from the same anchor offsets on every refresh, so
    the capture only grows until it reaches the limit.
    """

    def __init__(self, limit: int = MAX_INITIAL_LINES) -> None:
        self._limit = limit
        self.stdout: list[str] = []
        self.stderr: list[str] = []

    @property
    def is_empty(self) -> bool:
        return not self.stdout and not self.stderr

    def refresh(self, paths: LogPaths, anchor: LogAnchor) -> None:
        self.stdout = read_from_offset(paths.stdout, anchor.stdout_offset, self._limit)
        self.stderr = read_from_offset(paths.stderr, anchor.stderr_offset, self._limit)

    def clear(self) -> None:
        self.stdout = []
        self.stderr = []
