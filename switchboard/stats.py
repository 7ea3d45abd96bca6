"""Process-wide usage counters."""

import time
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class BotStats:
    """Counters observable by help/console surfaces. Never read by dispatch."""
    messages_received: int = 0
    commands_used: int = 0
    last_command_at: Optional[float] = None
    last_command: Optional[str] = None
    started_at: float = field(default_factory=time.time)

    def record_message(self) -> None:
        self.messages_received += 1

    def record_command(self, name: str, at: Optional[float] = None) -> None:
        self.commands_used += 1
        self.last_command = name
        self.last_command_at = at if at is not None else time.time()

    def uptime_seconds(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.started_at

    def uptime(self, now: Optional[float] = None) -> str:
        """Uptime formatted as ``Xd Xh Xm Xs``."""
        total = int(self.uptime_seconds(now))
        days, rest = divmod(total, 86400)
        hours, rest = divmod(rest, 3600)
        minutes, seconds = divmod(rest, 60)
        return f"{days}d {hours}h {minutes}m {seconds}s"
