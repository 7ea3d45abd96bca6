"""Admission policy for resolved commands.

Every resolved command passes through the same ordered chain before it
may run:

    disabled -> developer-only -> owner-only -> guild/DM origin
    -> caller permissions -> bot permissions -> cooldown

The first failing check ends evaluation. The engine never raises for a
denial; it returns a Decision carrying the reason and a reply text.
Evaluation is synchronous so it cannot interleave with registry updates.
"""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Protocol, Tuple

from .cooldowns import CooldownTracker
from .descriptor import CommandDescriptor, CommandFlag
from .gateway import InboundMessage, OriginKind

# Holding this permission implies holding every other one
ADMINISTRATOR = "administrator"


class DenialReason(str, Enum):
    """Why a command was refused."""
    COMMAND_DISABLED = "command_disabled"
    DEVELOPER_ONLY = "developer_only"
    OWNER_ONLY = "owner_only"
    GUILD_ONLY_COMMAND = "guild_only_command"
    DM_ONLY_COMMAND = "dm_only_command"
    MISSING_USER_PERMISSIONS = "missing_user_permissions"
    MISSING_BOT_PERMISSIONS = "missing_bot_permissions"
    ON_COOLDOWN = "on_cooldown"


@dataclass(frozen=True)
class DispatchContext:
    """Per-message dispatch state. Owned by exactly one dispatch."""
    message: InboundMessage
    command_name: str
    args: Tuple[str, ...] = ()
    used_prefix: str = ""

    @property
    def author_id(self) -> str:
        return self.message.author_id

    @property
    def origin_kind(self) -> OriginKind:
        return self.message.origin_kind

    @property
    def in_guild(self) -> bool:
        return self.message.in_guild

    @property
    def author_permissions(self) -> Optional[FrozenSet[str]]:
        return self.message.author_permissions

    @property
    def bot_permissions(self) -> Optional[FrozenSet[str]]:
        return self.message.bot_permissions


@dataclass(frozen=True)
class Decision:
    """Result of running the policy chain."""
    allowed: bool
    reason: Optional[DenialReason] = None
    command: str = ""
    missing: Tuple[str, ...] = ()
    remaining: float = 0.0

    @classmethod
    def allow(cls, command: str) -> "Decision":
        return cls(allowed=True, command=command)

    @classmethod
    def deny(cls, reason: DenialReason, command: str, **kwargs) -> "Decision":
        return cls(allowed=False, reason=reason, command=command, **kwargs)

    @property
    def message(self) -> str:
        """Stable, human-readable reply for a denial ("" when allowed)."""
        if self.allowed:
            return ""
        missing = ", ".join(self.missing)
        texts = {
            DenialReason.COMMAND_DISABLED: "This command is currently disabled.",
            DenialReason.DEVELOPER_ONLY: "This command is reserved for the bot developers.",
            DenialReason.OWNER_ONLY: "This command is reserved for the bot owners.",
            DenialReason.GUILD_ONLY_COMMAND: "This command can only be used in a server.",
            DenialReason.DM_ONLY_COMMAND: "This command can only be used in direct messages.",
            DenialReason.MISSING_USER_PERMISSIONS: (
                f"You need the following permissions to use this command: `{missing}`"
            ),
            DenialReason.MISSING_BOT_PERMISSIONS: (
                f"I need the following permissions to run this command: `{missing}`"
            ),
            DenialReason.ON_COOLDOWN: (
                f"Please wait `{self.remaining:.1f}` more second(s) "
                f"before reusing `{self.command}`."
            ),
        }
        return texts[self.reason]


class PolicyConfig(Protocol):
    """Read-only configuration the chain consults."""

    def is_developer(self, user_id: str) -> bool:
        ...

    def is_owner(self, user_id: str) -> bool:
        ...

    def get_disabled_commands(self) -> FrozenSet[str]:
        ...


def missing_permissions(
    required: Iterable[str], held: Optional[Iterable[str]]
) -> Tuple[str, ...]:
    """Required tokens not present in ``held`` (case-insensitive)."""
    held_lower = {p.lower() for p in (held or ())}
    if ADMINISTRATOR in held_lower:
        return ()
    return tuple(p for p in required if p.lower() not in held_lower)


class PolicyEngine:
    """Evaluates the admission chain for one resolved command.

    Args:
        config: Developer/owner/disabled lookups (normally the ConfigStore).
        cooldowns: Shared CooldownTracker; written only on admission.
    """

    def __init__(self, config: PolicyConfig, cooldowns: CooldownTracker):
        self.config = config
        self.cooldowns = cooldowns

    def evaluate(
        self,
        descriptor: CommandDescriptor,
        ctx: DispatchContext,
        now: Optional[float] = None,
    ) -> Decision:
        name = descriptor.name
        author = ctx.author_id
        is_developer = self.config.is_developer(author)
        is_owner = self.config.is_owner(author)

        if descriptor.has_flag(CommandFlag.DISABLED) or name in self.config.get_disabled_commands():
            return Decision.deny(DenialReason.COMMAND_DISABLED, name)

        if descriptor.has_flag(CommandFlag.DEVELOPER_ONLY) and not is_developer:
            return Decision.deny(DenialReason.DEVELOPER_ONLY, name)

        if descriptor.has_flag(CommandFlag.OWNER_ONLY) and not is_owner:
            return Decision.deny(DenialReason.OWNER_ONLY, name)

        if descriptor.has_flag(CommandFlag.GUILD_ONLY) and not ctx.in_guild:
            return Decision.deny(DenialReason.GUILD_ONLY_COMMAND, name)

        if descriptor.has_flag(CommandFlag.DM_ONLY) and ctx.in_guild:
            return Decision.deny(DenialReason.DM_ONLY_COMMAND, name)

        # Permission sets only exist inside a guild
        if ctx.in_guild:
            if descriptor.required_user_permissions and not (is_developer or is_owner):
                missing = missing_permissions(
                    descriptor.required_user_permissions, ctx.author_permissions
                )
                if missing:
                    return Decision.deny(
                        DenialReason.MISSING_USER_PERMISSIONS, name, missing=missing
                    )

            if descriptor.required_bot_permissions:
                missing = missing_permissions(
                    descriptor.required_bot_permissions, ctx.bot_permissions
                )
                if missing:
                    return Decision.deny(
                        DenialReason.MISSING_BOT_PERMISSIONS, name, missing=missing
                    )

        cooldown = self.cooldowns.check(name, author, descriptor.cooldown_seconds, now)
        if not cooldown.allowed:
            return Decision.deny(
                DenialReason.ON_COOLDOWN, name, remaining=cooldown.remaining
            )

        return Decision.allow(name)
