"""Crash reporting.

Uncaught exceptions (from the event loop or the main thread) are logged
and written to a timestamped dump file under ``<log_dir>/crashes/``.
Loop-level errors do not stop the bot.
"""

import asyncio
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog

logger = structlog.get_logger("switchboard.bot")


def log_task_exception(task: asyncio.Task):
    """Log exceptions from fire-and-forget tasks instead of silently swallowing them."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc:
        logger.error("background_task_failed", error=str(exc), exc_type=type(exc).__name__)


def write_crash_dump(
    crash_dir: Path,
    title: str,
    exc: Optional[BaseException] = None,
    details: str = "",
) -> Optional[Path]:
    """Write one crash dump file. Returns its path, or None if writing failed."""
    timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S-%f")
    path = crash_dir / f"crash-{timestamp}.log"
    lines = [f"Crash: {title}", f"Time: {datetime.now().isoformat()}"]
    if details:
        lines.append(f"Details: {details}")
    if exc is not None:
        lines.append(f"Exception: {type(exc).__name__}: {exc}")
        lines.append("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    try:
        crash_dir.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    except OSError as e:
        logger.error("crash_dump_write_failed", path=str(path), error=str(e))
        return None
    return path


def install_crash_handlers(loop: asyncio.AbstractEventLoop, crash_dir: Path) -> None:
    """Route unhandled loop and process exceptions to logs and dump files."""

    def _loop_handler(loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exc = context.get("exception")
        message = context.get("message", "unhandled exception in event loop")
        path = write_crash_dump(crash_dir, "event loop exception", exc, message)
        logger.error(
            "unhandled_loop_exception",
            message=message,
            error=str(exc) if exc else None,
            exc_type=type(exc).__name__ if exc else None,
            dump=str(path) if path else None,
        )

    def _excepthook(exc_type, exc, tb) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc, tb)
            return
        path = write_crash_dump(crash_dir, "uncaught exception", exc)
        logger.critical(
            "uncaught_exception",
            error=str(exc),
            exc_type=exc_type.__name__,
            dump=str(path) if path else None,
        )

    loop.set_exception_handler(_loop_handler)
    sys.excepthook = _excepthook
