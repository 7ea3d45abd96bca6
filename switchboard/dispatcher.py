"""Message-received pipeline.

Takes an InboundMessage through prefix/mention matching, resolution,
the policy chain and invocation. ``dispatch`` is the boundary past which
no error propagates: denials become replies, handler failures become an
apology, and anything unexpected is logged.
"""

from enum import Enum
from typing import Awaitable, Callable, Optional, Pattern, Tuple

import structlog

from .cooldowns import CooldownTracker
from .gateway import InboundMessage, mention_pattern
from .invoker import Invoker
from .policy import DispatchContext, PolicyEngine
from .registry import CommandRegistry
from .stats import BotStats
from .store import ConfigStore

logger = structlog.get_logger("switchboard.commands")

ReplyFn = Callable[[str, str], Awaitable[None]]


class DispatchOutcome(str, Enum):
    """Terminal state of one dispatch, for logging and tests."""
    IGNORED = "ignored"
    NOT_A_COMMAND = "not_a_command"
    QUICK_HELP = "quick_help"
    UNKNOWN_COMMAND = "unknown_command"
    DENIED = "denied"
    INVOKED = "invoked"
    FAILED = "failed"


def split_command(content: str, prefix_length: int) -> Tuple[str, Tuple[str, ...]]:
    """Strip the prefix and split into (lowercased command token, args)."""
    parts = content[prefix_length:].strip().split()
    if not parts:
        return "", ()
    return parts[0].lower(), tuple(parts[1:])


class CommandDispatcher:
    """Routes inbound messages to commands.

    Args:
        registry: Live command registry.
        store: Prefix and developer/owner/disabled lookups.
        policy: Admission chain.
        invoker: Runs admitted commands.
        reply: async (channel_id, content) used for denials and quick help.
        stats: Message counter.
        bot_user_id: Bot identity for mention matching; may be set later.
    """

    def __init__(
        self,
        registry: CommandRegistry,
        store: ConfigStore,
        policy: PolicyEngine,
        invoker: Invoker,
        reply: ReplyFn,
        stats: BotStats,
        bot_user_id: str = "",
    ):
        self.registry = registry
        self.store = store
        self.policy = policy
        self.invoker = invoker
        self._reply = reply
        self.stats = stats
        self._mention: Optional[Pattern[str]] = None
        self.bot_user_id = bot_user_id

    @property
    def bot_user_id(self) -> str:
        return self._bot_user_id

    @bot_user_id.setter
    def bot_user_id(self, value: str) -> None:
        self._bot_user_id = value
        self._mention = mention_pattern(value) if value else None

    @property
    def cooldowns(self) -> CooldownTracker:
        return self.policy.cooldowns

    async def dispatch(self, message: InboundMessage) -> DispatchOutcome:
        """Handle one inbound message. Never raises (except cancellation)."""
        try:
            return await self._dispatch(message)
        except Exception as e:
            logger.error(
                "dispatch_error",
                message_id=message.message_id,
                author_id=message.author_id,
                error=str(e),
                exc_type=type(e).__name__,
                exc_info=e,
            )
            return DispatchOutcome.FAILED

    async def _dispatch(self, message: InboundMessage) -> DispatchOutcome:
        if message.author_is_bot or message.is_webhook:
            return DispatchOutcome.IGNORED
        self.stats.record_message()

        content = message.content
        prefix = await self.store.get_prefix(message.origin_id if message.in_guild else None)

        used_prefix = ""
        if prefix and content.startswith(prefix):
            used_prefix = prefix
        elif self._mention is not None:
            match = self._mention.match(content)
            if match:
                used_prefix = match.group(0)
        if not used_prefix:
            return DispatchOutcome.NOT_A_COMMAND

        command_name, args = split_command(content, len(used_prefix))
        if not command_name:
            if used_prefix != prefix:
                await self._quick_help(message, prefix)
                return DispatchOutcome.QUICK_HELP
            return DispatchOutcome.NOT_A_COMMAND

        descriptor = self.registry.resolve(command_name)
        if descriptor is None:
            logger.debug("unknown_command", token=command_name, author_id=message.author_id)
            return DispatchOutcome.UNKNOWN_COMMAND

        ctx = DispatchContext(
            message=message,
            command_name=descriptor.name,
            args=args,
            used_prefix=used_prefix,
        )
        decision = self.policy.evaluate(descriptor, ctx)
        if not decision.allowed:
            logger.info(
                "command_denied",
                command=descriptor.name,
                author_id=message.author_id,
                reason=decision.reason.value,
                missing=list(decision.missing) or None,
                remaining=round(decision.remaining, 2) if decision.remaining else None,
            )
            await self._safe_reply(message.channel_id, decision.message)
            return DispatchOutcome.DENIED

        succeeded = await self.invoker.invoke(descriptor, ctx)
        return DispatchOutcome.INVOKED if succeeded else DispatchOutcome.FAILED

    async def _quick_help(self, message: InboundMessage, prefix: str) -> None:
        text = (
            f"My prefix here is `{prefix}`. "
            f"Use `{prefix}help` to see what I can do."
        )
        await self._safe_reply(message.channel_id, text)

    async def _safe_reply(self, channel_id: str, content: str) -> None:
        try:
            await self._reply(channel_id, content)
        except Exception as e:
            logger.error("reply_send_failed", channel_id=channel_id, error=str(e))
