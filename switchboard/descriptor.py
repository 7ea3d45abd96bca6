"""Pydantic model for a loaded command.

A command source unit is validated once, at load time, into a
CommandDescriptor. Everything downstream (registry, policy engine,
invoker) reads the descriptor and never looks at the source module again.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, FrozenSet, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

DEFAULT_CATEGORY = "Misc"

# async (client, message, args) -> Any
CommandHandler = Callable[..., Awaitable[Any]]


class CommandFlag(str, Enum):
    """Admission flags a command can carry."""
    DEVELOPER_ONLY = "developer_only"
    OWNER_ONLY = "owner_only"
    GUILD_ONLY = "guild_only"
    DM_ONLY = "dm_only"
    DISABLED = "disabled"


class CommandDescriptor(BaseModel):
    """Everything needed to resolve, admit and run one command."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Primary key, stored lowercase")
    aliases: FrozenSet[str] = Field(default_factory=frozenset)
    category: str = DEFAULT_CATEGORY
    description: str = ""
    usage: str = ""
    cooldown_seconds: float = Field(default=0, ge=0)
    flags: FrozenSet[CommandFlag] = Field(default_factory=frozenset)
    required_user_permissions: Tuple[str, ...] = ()
    required_bot_permissions: Tuple[str, ...] = ()
    handler: CommandHandler

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("name must not be empty")
        if any(ch.isspace() for ch in value):
            raise ValueError("name must be a single token")
        return value

    @field_validator("aliases", mode="before")
    @classmethod
    def _normalize_aliases(cls, value: Any, info: ValidationInfo) -> FrozenSet[str]:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = [value]
        aliases = set()
        for alias in value:
            if not isinstance(alias, str):
                raise ValueError(f"alias must be a string, got {type(alias).__name__}")
            alias = alias.strip().lower()
            if not alias or any(ch.isspace() for ch in alias):
                raise ValueError(f"invalid alias {alias!r}")
            aliases.add(alias)
        # An alias equal to the command's own name is redundant
        aliases.discard(info.data.get("name"))
        return frozenset(aliases)

    @field_validator("required_user_permissions", "required_bot_permissions", mode="before")
    @classmethod
    def _normalize_permissions(cls, value: Any) -> Tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        return tuple(value)

    def has_flag(self, flag: CommandFlag) -> bool:
        return flag in self.flags

    @property
    def tokens(self) -> FrozenSet[str]:
        """Every token that resolves to this command."""
        return self.aliases | {self.name}

    @property
    def unreachable(self) -> bool:
        """guild_only + dm_only can never be satisfied."""
        return CommandFlag.GUILD_ONLY in self.flags and CommandFlag.DM_ONLY in self.flags


def derive_category(path: Path, root: Path) -> str:
    """Category from the containing directory name, capitalized.

    Files placed directly in the commands root fall back to ``"Misc"``.
    """
    try:
        relative_parent = path.parent.resolve().relative_to(root.resolve())
    except ValueError:
        return DEFAULT_CATEGORY
    if not relative_parent.parts:
        return DEFAULT_CATEGORY
    directory = relative_parent.parts[-1]
    return directory[:1].upper() + directory[1:]


def flags_from_source(
    developer_only: bool = False,
    owner_only: bool = False,
    guild_only: bool = False,
    dm_only: bool = False,
    disabled: bool = False,
) -> FrozenSet[CommandFlag]:
    """Collapse the boolean attributes of a source unit into a flag set."""
    pairs = (
        (developer_only, CommandFlag.DEVELOPER_ONLY),
        (owner_only, CommandFlag.OWNER_ONLY),
        (guild_only, CommandFlag.GUILD_ONLY),
        (dm_only, CommandFlag.DM_ONLY),
        (disabled, CommandFlag.DISABLED),
    )
    return frozenset(flag for enabled, flag in pairs if enabled)
