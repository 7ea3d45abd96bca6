"""Structured logging for switchboard.

Every subsystem logs through ``structlog.get_logger("switchboard.<name>")``.
Events reach the console, the combined ``switchboard.log`` and the
subsystem's own rotating file (``loader.log``, ``store.log`` ...).
"""

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

SUBSYSTEMS = ("bot", "commands", "loader", "store", "gateway")
LOGGER_PREFIX = "switchboard"

_REDACTED = "***REDACTED***"
_SECRET_PATTERNS = (
    # Bot tokens: three dot-separated base64url segments
    re.compile(r"[A-Za-z0-9_-]{24,}\.[A-Za-z0-9_-]{6,}\.[A-Za-z0-9_-]{27,}"),
    re.compile(r"Bearer\s+[a-zA-Z0-9_./-]{20,}"),
)


def _scrub(value: Any) -> Any:
    if isinstance(value, str):
        for pattern in _SECRET_PATTERNS:
            value = pattern.sub(_REDACTED, value)
    return value


def sanitize_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor that redacts bot tokens and bearer values.

    Strings one level down in lists, tuples and dicts are scrubbed too.
    """
    for key, value in event_dict.items():
        if isinstance(value, (list, tuple)):
            event_dict[key] = type(value)(_scrub(v) for v in value)
        elif isinstance(value, dict):
            event_dict[key] = {k: _scrub(v) for k, v in value.items()}
        else:
            event_dict[key] = _scrub(value)
    return event_dict


def _level(name: Optional[str], default: int) -> int:
    if not name:
        return default
    return getattr(logging, str(name).upper(), default)


def _reset(name: str, level: int) -> logging.Logger:
    log = logging.getLogger(name)
    log.setLevel(level)
    log.handlers.clear()
    log.propagate = True
    return log


def setup_logging(config=None) -> None:
    """Configure structlog and the stdlib handler tree.

    Called twice at startup: once with no config (console plus files under
    ``./logs`` with logger caching off), then again once settings are
    loaded, which applies the configured directory, levels and rotation
    and turns caching on.
    """
    if config is not None:
        log_dir = config.log_dir
        root_level = _level(config.logging_level, logging.INFO)
        subsystem_levels = config.logging_subsystem_levels
        max_bytes = config.logging_max_file_size_mb * 1024 * 1024
        backup_count = config.logging_backup_count
    else:
        log_dir = Path(__file__).parent.parent / "logs"
        root_level = logging.INFO
        subsystem_levels = {}
        max_bytes = 10 * 1024 * 1024
        backup_count = 5

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        write_files = True
    except OSError as exc:
        write_files = False
        print(
            f"WARNING: Cannot create log directory {log_dir}: {exc}. "
            "Logging to console only.",
            file=sys.stderr,
        )

    file_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
    )

    def attach_file(log: logging.Logger, filename: str, level: int) -> None:
        if not write_files:
            return
        handler = logging.handlers.RotatingFileHandler(
            log_dir / filename,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        handler.setLevel(level)
        handler.setFormatter(file_formatter)
        log.addHandler(handler)

    # Handlers do the level filtering
    root = _reset("", logging.DEBUG)
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(root_level)
    console.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    root.addHandler(console)

    combined = _reset(LOGGER_PREFIX, logging.DEBUG)
    attach_file(combined, f"{LOGGER_PREFIX}.log", root_level)

    for subsystem in SUBSYSTEMS:
        level = _level(subsystem_levels.get(subsystem), root_level)
        attach_file(_reset(f"{LOGGER_PREFIX}.{subsystem}", level), f"{subsystem}.log", level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            sanitize_secrets,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=config is not None,
    )
