"""Polling file watcher for the commands directory.

Scans the tree every ``poll_interval`` seconds and compares file
signatures (mtime, size) against the previous scan. A file whose
signature changed since the last scan but is still changing is held back
until it settles, so an editor writing a file in several chunks yields a
single ``modified`` event.

Guarantees:
    - Only command source files are reported (see ``is_command_source``).
    - Events for one path are delivered in order, and the next scan does
      not start until every event of the current scan has been handled.
    - Events for different paths within one scan are handled concurrently.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import structlog

from .exceptions import WatcherError

logger = structlog.get_logger("switchboard.loader")

SOURCE_SUFFIX = ".py"

Signature = Tuple[int, int]  # (mtime_ns, size)


class WatchEventKind(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class WatchEvent:
    kind: WatchEventKind
    path: Path


EventCallback = Callable[[WatchEvent], Awaitable[None]]


def is_command_source(path: Path, root: Path) -> bool:
    """True for ``*.py`` files not hidden, private or in a cache directory."""
    if path.suffix != SOURCE_SUFFIX:
        return False
    try:
        parts = path.relative_to(root).parts
    except ValueError:
        parts = path.parts
    for part in parts:
        if part.startswith(".") or part == "__pycache__":
            return False
    return not path.name.startswith("_")


def scan_sources(root: Path) -> Dict[Path, Signature]:
    """Signatures of every command source file under ``root``."""
    found: Dict[Path, Signature] = {}
    for path in sorted(root.rglob(f"*{SOURCE_SUFFIX}")):
        if not is_command_source(path, root):
            continue
        try:
            st = path.stat()
        except OSError:
            # Removed between listing and stat
            continue
        if not path.is_file():
            continue
        found[path] = (st.st_mtime_ns, st.st_size)
    return found


def ensure_directory(root: Path) -> None:
    """Create the commands directory if needed; fail if it is unusable."""
    try:
        root.mkdir(parents=True, exist_ok=True)
        next(root.iterdir(), None)
    except OSError as e:
        raise WatcherError(
            f"Commands directory unusable: {e}", directory=str(root)
        ) from e
    if not root.is_dir():
        raise WatcherError("Commands path is not a directory", directory=str(root))


class CommandWatcher:
    """Reports created/modified/removed command files to a callback.

    Args:
        root: Directory to watch (recursively).
        callback: async (WatchEvent) -> None. Exceptions are logged.
        poll_interval: Seconds between scans.
    """

    def __init__(self, root: Path, callback: EventCallback, poll_interval: float = 1.0):
        self.root = root
        self._callback = callback
        self.poll_interval = poll_interval
        self._known: Dict[Path, Signature] = {}
        self._pending: Dict[Path, Signature] = {}
        self._task: Optional[asyncio.Task] = None

    def prime(self, known: Optional[Dict[Path, Signature]] = None) -> None:
        """Set the baseline so files already loaded are not re-reported."""
        self._known = dict(known) if known is not None else scan_sources(self.root)
        self._pending.clear()

    def diff(self, current: Dict[Path, Signature]) -> List[WatchEvent]:
        """Compare a fresh scan with the baseline and advance the baseline.

        New and changed files are only reported once their signature is
        identical on two consecutive scans.
        """
        events: List[WatchEvent] = []

        for path in sorted(set(self._known) - set(current)):
            del self._known[path]
            self._pending.pop(path, None)
            events.append(WatchEvent(WatchEventKind.REMOVED, path))

        for path, signature in current.items():
            if self._known.get(path) == signature:
                self._pending.pop(path, None)
                continue
            if self._pending.get(path) != signature:
                # First sighting of this signature: wait one more scan
                self._pending[path] = signature
                continue
            kind = WatchEventKind.MODIFIED if path in self._known else WatchEventKind.CREATED
            self._known[path] = signature
            del self._pending[path]
            events.append(WatchEvent(kind, path))

        for path in [p for p in self._pending if p not in current]:
            del self._pending[path]

        return events

    async def poll_once(self) -> List[WatchEvent]:
        """Scan, diff and deliver events. Returns the delivered events."""
        current = await asyncio.to_thread(scan_sources, self.root)
        events = self.diff(current)
        if events:
            await asyncio.gather(*(self._deliver(event) for event in events))
        return events

    async def _deliver(self, event: WatchEvent) -> None:
        logger.debug("watch_event", kind=event.kind.value, path=str(event.path))
        try:
            await self._callback(event)
        except Exception as e:
            logger.error(
                "watch_callback_failed",
                kind=event.kind.value,
                path=str(event.path),
                error=str(e),
                exc_type=type(e).__name__,
            )

    async def _watch_loop(self) -> None:
        logger.info("watcher_started", root=str(self.root), interval=self.poll_interval)
        while True:
            try:
                await asyncio.sleep(self.poll_interval)
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("watcher_loop_error", error=str(e))

    def start(self) -> None:
        ensure_directory(self.root)
        if self._task and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._watch_loop())

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("watcher_stopped", root=str(self.root))

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
