"""Isolated execution of command handlers.

A handler failure is logged with its traceback, the caller gets a
generic apology, and control returns normally. Nothing here touches the
registry, so a failing command stays registered and servable.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional

import structlog

from .crash import log_task_exception
from .descriptor import CommandDescriptor
from .exceptions import HandlerFailure
from .policy import DispatchContext
from .stats import BotStats

logger = structlog.get_logger("switchboard.commands")

ReplyFn = Callable[[str, str], Awaitable[None]]


class Invoker:
    """Runs a resolved, admitted command exactly once.

    Args:
        client: Object passed as the first handler argument.
        reply: async (channel_id, content) used for the failure apology.
        stats: Process counters updated on success.
        store: Optional store whose usage counter is bumped in the background.
        error_message: Generic text shown to the user on failure.
    """

    def __init__(
        self,
        client: Any,
        reply: ReplyFn,
        stats: BotStats,
        store: Optional[Any] = None,
        error_message: str = "Something went wrong while running that command.",
    ):
        self.client = client
        self._reply = reply
        self.stats = stats
        self.store = store
        self.error_message = error_message

    async def invoke(self, descriptor: CommandDescriptor, ctx: DispatchContext) -> bool:
        """Call the handler with (client, message, args). Returns success."""
        args = list(ctx.args)
        try:
            result = descriptor.handler(self.client, ctx.message, args)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            failure = HandlerFailure(
                f"Handler raised {type(e).__name__}: {e}",
                command=descriptor.name,
                original=e,
            )
            logger.error(
                "command_failed",
                command=descriptor.name,
                author_id=ctx.author_id,
                error=str(failure),
                exc_info=e,
            )
            await self._apologize(ctx)
            return False

        self.stats.record_command(descriptor.name)
        logger.info(
            "command_used",
            command=descriptor.name,
            author_id=ctx.author_id,
            origin=ctx.origin_kind.value,
            origin_id=ctx.message.origin_id,
        )
        if self.store is not None:
            t = asyncio.create_task(self.store.increment_command_usage(descriptor.name))
            t.add_done_callback(log_task_exception)
        return True

    async def _apologize(self, ctx: DispatchContext) -> None:
        try:
            await self._reply(ctx.message.channel_id, self.error_message)
        except Exception as e:
            logger.error("apology_send_failed", command=ctx.command_name, error=str(e))
