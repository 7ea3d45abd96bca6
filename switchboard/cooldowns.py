"""Per-command, per-user cooldown tracking.

Each (command, user) pair maps to the time its cooldown expires. Expired
entries are treated as absent on read and are also removed by an
optional background sweep; the two paths cannot disagree because the
sweep only deletes entries whose expiry is already in the past.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import structlog

logger = structlog.get_logger("switchboard.commands")

Clock = Callable[[], float]


@dataclass(frozen=True)
class CooldownResult:
    """Outcome of a cooldown check."""
    allowed: bool
    remaining: float = 0.0  # Seconds left when throttled


class CooldownTracker:
    """Decides whether an invocation is currently throttled.

    Args:
        clock: Time source in seconds. Defaults to ``time.monotonic``.
        sweep_interval: Seconds between proactive sweeps once ``start()``
            is called. 0 disables the sweep; reads stay correct either way.
    """

    def __init__(self, clock: Optional[Clock] = None, sweep_interval: float = 60):
        self._clock: Clock = clock or time.monotonic
        self.sweep_interval = sweep_interval
        self._entries: Dict[Tuple[str, str], float] = {}
        self._sweep_task: Optional[asyncio.Task] = None

    def now(self) -> float:
        return self._clock()

    def check(
        self,
        command_name: str,
        user_id: str,
        cooldown_seconds: float,
        now: Optional[float] = None,
    ) -> CooldownResult:
        """Allow and record, or deny with the remaining time.

        A zero cooldown always allows and records nothing. Otherwise an
        absent or expired entry allows and (re)sets the expiry to
        ``now + cooldown_seconds``.
        """
        if cooldown_seconds <= 0:
            return CooldownResult(allowed=True)

        if now is None:
            now = self._clock()
        key = (command_name, user_id)
        expiry = self._entries.get(key)

        if expiry is not None and expiry > now:
            return CooldownResult(allowed=False, remaining=expiry - now)

        self._entries[key] = now + cooldown_seconds
        return CooldownResult(allowed=True)

    def remaining(self, command_name: str, user_id: str, now: Optional[float] = None) -> float:
        """Seconds until the pair may run again (0.0 if not throttled)."""
        if now is None:
            now = self._clock()
        expiry = self._entries.get((command_name, user_id))
        if expiry is None or expiry <= now:
            return 0.0
        return expiry - now

    def reset(self, command_name: Optional[str] = None, user_id: Optional[str] = None) -> int:
        """Drop entries matching the given command and/or user. Returns count."""
        keys = [
            key for key in self._entries
            if (command_name is None or key[0] == command_name)
            and (user_id is None or key[1] == user_id)
        ]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def prune(self, now: Optional[float] = None) -> int:
        """Remove every expired entry. Returns the number removed."""
        if now is None:
            now = self._clock()
        expired = [key for key, expiry in self._entries.items() if expiry <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    # --- Background sweep ---

    async def _sweep_loop(self) -> None:
        """Periodically prune expired entries."""
        while True:
            try:
                await asyncio.sleep(self.sweep_interval)
                removed = self.prune()
                if removed:
                    logger.debug("cooldown_sweep", removed=removed, remaining=len(self._entries))
            except asyncio.CancelledError:
                break

    def start(self) -> None:
        """Start the sweep loop (requires a running event loop)."""
        if self.sweep_interval <= 0:
            return
        if self._sweep_task and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to finish."""
        if self._sweep_task and not self._sweep_task.done():
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
        self._sweep_task = None
