"""Live command registry.

Maps command names and aliases to CommandDescriptors. The two mappings
are held together in one immutable snapshot; every mutation builds a new
snapshot and publishes it with a single attribute assignment, so a
concurrent ``resolve`` sees either the old pair or the new pair and never
a mix of the two.

Ownership: every name is owned by the origin (source path) that
registered it. Only the owning origin may register over an existing name;
anything else is a NameConflict and leaves the registry untouched.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Optional

import structlog

from .descriptor import CommandDescriptor
from .exceptions import AliasConflict, NameConflict

logger = structlog.get_logger("switchboard.loader")


@dataclass(frozen=True)
class RegistrySnapshot:
    """Mutually consistent view of the registry at one point in time.

    Attributes:
        names: name -> descriptor.
        aliases: alias -> owning command name.
        origins: name -> origin that registered it.
        generation: Incremented on every published mutation.
    """
    names: Mapping[str, CommandDescriptor] = field(
        default_factory=lambda: MappingProxyType({})
    )
    aliases: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    origins: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    generation: int = 0

    def resolve(self, token: str) -> Optional[CommandDescriptor]:
        token = token.strip().lower()
        descriptor = self.names.get(token)
        if descriptor is not None:
            return descriptor
        name = self.aliases.get(token)
        if name is None:
            return None
        return self.names.get(name)


class CommandRegistry:
    """Single source of truth for which commands exist right now.

    All mutating methods are synchronous and never suspend, which keeps
    them atomic with respect to other tasks on the event loop.
    """

    def __init__(self):
        self._snapshot = RegistrySnapshot()

    # --- Reads ---

    @property
    def snapshot(self) -> RegistrySnapshot:
        return self._snapshot

    def resolve(self, token: str) -> Optional[CommandDescriptor]:
        """Case-insensitive lookup: names first, then aliases."""
        return self._snapshot.resolve(token)

    def get(self, name: str) -> Optional[CommandDescriptor]:
        return self._snapshot.names.get(name.strip().lower())

    def origin_of(self, name: str) -> Optional[str]:
        return self._snapshot.origins.get(name.strip().lower())

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __len__(self) -> int:
        return len(self._snapshot.names)

    @property
    def command_names(self) -> FrozenSet[str]:
        """All registered command names."""
        return frozenset(self._snapshot.names)

    def commands(self) -> List[CommandDescriptor]:
        """Descriptors sorted by name."""
        snap = self._snapshot
        return [snap.names[name] for name in sorted(snap.names)]

    def categories(self) -> Dict[str, List[CommandDescriptor]]:
        """Descriptors grouped by category, both levels sorted."""
        grouped: Dict[str, List[CommandDescriptor]] = {}
        for descriptor in self.commands():
            grouped.setdefault(descriptor.category, []).append(descriptor)
        return {category: grouped[category] for category in sorted(grouped)}

    # --- Writes ---

    def register(self, descriptor: CommandDescriptor, origin: str) -> None:
        """Add a command, or update it in place when ``origin`` already owns it.

        Raises:
            NameConflict: name owned by a different origin.
            AliasConflict: an alias collides with another command's
                name or alias, or the name is another command's alias.
        """
        snap = self._snapshot
        names = dict(snap.names)
        aliases = dict(snap.aliases)
        origins = dict(snap.origins)

        existing_origin = origins.get(descriptor.name)
        if existing_origin is not None:
            if existing_origin != origin:
                raise NameConflict(
                    f"Command name '{descriptor.name}' is already registered",
                    name=descriptor.name,
                    owner=existing_origin,
                    path=origin,
                )
            # Same origin re-registering: release its previous aliases first
            self._drop(descriptor.name, names, aliases, origins)

        self._claim(descriptor, origin, names, aliases, origins)
        self._publish(names, aliases, origins)

    def unregister(self, name: str) -> Optional[CommandDescriptor]:
        """Remove a name and all its aliases. No-op if absent."""
        name = name.strip().lower()
        snap = self._snapshot
        if name not in snap.names:
            return None
        names = dict(snap.names)
        aliases = dict(snap.aliases)
        origins = dict(snap.origins)
        removed = self._drop(name, names, aliases, origins)
        self._publish(names, aliases, origins)
        return removed

    def replace(self, old_name: str, descriptor: CommandDescriptor, origin: str) -> None:
        """Swap ``old_name`` for ``descriptor`` in one step.

        The old command's name and aliases are released before the new
        ones are claimed, so a reload may reuse its own tokens. If the
        new descriptor conflicts with anything else the old command stays
        registered and the conflict is raised.
        """
        old_name = old_name.strip().lower()
        snap = self._snapshot
        names = dict(snap.names)
        aliases = dict(snap.aliases)
        origins = dict(snap.origins)

        if old_name in names:
            owner = origins.get(old_name)
            if owner != origin:
                raise NameConflict(
                    f"Command '{old_name}' is owned by another source",
                    name=old_name,
                    owner=owner,
                    path=origin,
                )
            self._drop(old_name, names, aliases, origins)

        existing_origin = origins.get(descriptor.name)
        if existing_origin is not None and existing_origin != origin:
            raise NameConflict(
                f"Command name '{descriptor.name}' is already registered",
                name=descriptor.name,
                owner=existing_origin,
                path=origin,
            )
        if descriptor.name in names:
            # Same origin still holds the new name under another entry
            self._drop(descriptor.name, names, aliases, origins)

        self._claim(descriptor, origin, names, aliases, origins)
        self._publish(names, aliases, origins)

    def clear(self) -> None:
        self._publish({}, {}, {})

    # --- Internals (operate on private working copies only) ---

    @staticmethod
    def _claim(
        descriptor: CommandDescriptor,
        origin: str,
        names: Dict[str, CommandDescriptor],
        aliases: Dict[str, str],
        origins: Dict[str, str],
    ) -> None:
        if descriptor.name in aliases:
            raise AliasConflict(
                f"Command name '{descriptor.name}' is already an alias "
                f"of '{aliases[descriptor.name]}'",
                alias=descriptor.name,
                owner=aliases[descriptor.name],
                path=origin,
            )
        for alias in sorted(descriptor.aliases):
            if alias in names:
                raise AliasConflict(
                    f"Alias '{alias}' collides with command '{alias}'",
                    alias=alias,
                    owner=alias,
                    path=origin,
                )
            holder = aliases.get(alias)
            if holder is not None and holder != descriptor.name:
                raise AliasConflict(
                    f"Alias '{alias}' is already used by '{holder}'",
                    alias=alias,
                    owner=holder,
                    path=origin,
                )

        names[descriptor.name] = descriptor
        origins[descriptor.name] = origin
        for alias in descriptor.aliases:
            aliases[alias] = descriptor.name

    @staticmethod
    def _drop(
        name: str,
        names: Dict[str, CommandDescriptor],
        aliases: Dict[str, str],
        origins: Dict[str, str],
    ) -> Optional[CommandDescriptor]:
        removed = names.pop(name, None)
        origins.pop(name, None)
        for alias in [a for a, owner in aliases.items() if owner == name]:
            del aliases[alias]
        return removed

    def _publish(
        self,
        names: Dict[str, CommandDescriptor],
        aliases: Dict[str, str],
        origins: Dict[str, str],
    ) -> None:
        self._snapshot = RegistrySnapshot(
            names=MappingProxyType(names),
            aliases=MappingProxyType(aliases),
            origins=MappingProxyType(origins),
            generation=self._snapshot.generation + 1,
        )
        logger.debug(
            "registry_published",
            generation=self._snapshot.generation,
            commands=len(names),
            aliases=len(aliases),
        )
