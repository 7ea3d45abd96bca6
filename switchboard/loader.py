"""Command source loading and hot reload.

A command source unit is a Python file in the commands directory that
defines, at module level::

    name = "ping"                 # required
    async def run(client, message, args): ...   # required

    aliases = ["latency"]         # optional
    category = "Utilities"        # optional, else the directory name
    description = "..."           # optional
    usage = "ping"                # optional
    cooldown = 5                  # optional, seconds
    developer_only = owner_only = guild_only = dm_only = disabled = False
    user_permissions = ["Administrator"]
    bot_permissions = ["SendMessages"]

The loader turns a file into a CommandDescriptor and owns the
add/reload/unload transitions against the CommandRegistry. Work on a
single path is serialized; different paths proceed independently.

Conflict policy: when two files declare the same name, the file that
registered first keeps it and the second is rejected with NameConflict.
A file may freely change its own command's fields, aliases or name on
reload.
"""

import asyncio
import importlib.machinery
import importlib.util
import sys
import types
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import structlog
from pydantic import ValidationError

from .descriptor import CommandDescriptor, derive_category, flags_from_source
from .exceptions import CommandLoadError, InvalidDescriptor, NameConflict, AliasConflict
from .registry import CommandRegistry
from .watcher import WatchEvent, WatchEventKind, is_command_source

logger = structlog.get_logger("switchboard.loader")

MODULE_PREFIX = "switchboard_commands"


class CommandSourceLoader(importlib.machinery.SourceFileLoader):
    """Source loader that compiles bytes already read from disk.

    Bytecode caching is bypassed, so every load compiles the current
    source even when a same-size edit lands within one second.
    """

    def __init__(self, fullname: str, path: str, source: bytes):
        super().__init__(fullname, path)
        self._source = source

    def get_data(self, path):
        if path == self.path:
            return self._source
        return super().get_data(path)

    def get_code(self, fullname):
        return self.source_to_code(self._source, self.path)


class CommandLoader:
    """Loads command files into a CommandRegistry and keeps them current.

    Args:
        registry: Registry to mutate.
        root: Commands directory; used for category derivation and
            module naming.
    """

    def __init__(self, registry: CommandRegistry, root: Path):
        self.registry = registry
        self.root = root
        self._names: Dict[str, str] = {}          # path -> command name
        self._modules: Dict[str, str] = {}        # path -> sys.modules key
        self._locks: Dict[str, asyncio.Lock] = {}
        self.errors: Dict[str, CommandLoadError] = {}

    # --- Helpers ---

    def _key(self, path: Path) -> str:
        return str(Path(path).resolve())

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _module_name(self, path: Path) -> str:
        try:
            rel = path.resolve().relative_to(self.root.resolve()).with_suffix("")
            parts = rel.parts
        except ValueError:
            parts = (path.stem,)
        return ".".join((MODULE_PREFIX,) + parts)

    def name_for(self, path: Path) -> Optional[str]:
        """Command name last loaded successfully from ``path``."""
        return self._names.get(self._key(path))

    @property
    def loaded_paths(self) -> Dict[str, str]:
        return dict(self._names)

    # --- Reading and validation ---

    async def read_descriptor(self, path: Path) -> Tuple[CommandDescriptor, types.ModuleType]:
        """Execute a source file in a fresh module and validate it.

        Raises:
            InvalidDescriptor: unreadable file, module error, or missing /
                invalid fields.
        """
        key = self._key(path)
        try:
            source = await asyncio.to_thread(Path(path).read_bytes)
        except OSError as e:
            raise InvalidDescriptor(f"Cannot read command source: {e}", path=key) from e

        module_name = self._module_name(Path(path))
        loader = CommandSourceLoader(module_name, key, source)
        spec = importlib.util.spec_from_file_location(module_name, key, loader=loader)
        module = importlib.util.module_from_spec(spec)
        previous = sys.modules.get(module_name)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            self._restore_module(module_name, previous)
            raise InvalidDescriptor(
                f"Command source failed to execute: {type(e).__name__}: {e}", path=key
            ) from e

        try:
            descriptor = self._build_descriptor(module, Path(path))
        except InvalidDescriptor:
            self._restore_module(module_name, previous)
            raise
        return descriptor, module

    @staticmethod
    def _restore_module(module_name: str, previous: Optional[types.ModuleType]) -> None:
        if previous is None:
            sys.modules.pop(module_name, None)
        else:
            sys.modules[module_name] = previous

    def _build_descriptor(self, module: types.ModuleType, path: Path) -> CommandDescriptor:
        key = self._key(path)
        name = getattr(module, "name", None)
        run = getattr(module, "run", None)
        if not isinstance(name, str) or not name.strip():
            raise InvalidDescriptor("Command source has no 'name'", path=key)
        if run is None or not callable(run):
            raise InvalidDescriptor(
                "Command source has no callable 'run'", path=key, name=name
            )

        fields = {
            "name": name,
            "handler": run,
            "aliases": getattr(module, "aliases", None),
            "category": getattr(module, "category", None) or derive_category(path, self.root),
            "description": getattr(module, "description", "") or "",
            "usage": getattr(module, "usage", "") or "",
            "cooldown_seconds": getattr(module, "cooldown", 0) or 0,
            "flags": flags_from_source(
                developer_only=bool(getattr(module, "developer_only", False)),
                owner_only=bool(getattr(module, "owner_only", False)),
                guild_only=bool(getattr(module, "guild_only", False)),
                dm_only=bool(getattr(module, "dm_only", False)),
                disabled=bool(getattr(module, "disabled", False)),
            ),
            "required_user_permissions": getattr(module, "user_permissions", None),
            "required_bot_permissions": getattr(module, "bot_permissions", None),
        }
        try:
            descriptor = CommandDescriptor(**fields)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise InvalidDescriptor(
                f"Invalid command fields: {problems}", path=key, name=name
            ) from e

        if descriptor.unreachable:
            logger.warning(
                "command_unreachable",
                command=descriptor.name,
                path=key,
                msg="guild_only and dm_only are both set",
            )
        return descriptor

    # --- State transitions ---

    async def load(self, path: Path) -> CommandDescriptor:
        """Load ``path``, or reload it if it was loaded before.

        On failure the registry keeps whatever it held before the call.
        """
        key = self._key(path)
        async with self._lock_for(key):
            return await self._load_locked(Path(path), key)

    async def reload(self, path: Path) -> CommandDescriptor:
        """Replace the command previously loaded from ``path``.

        If the new version is invalid or conflicts, the previous
        descriptor stays registered and the error is raised.
        """
        return await self.load(path)

    async def _load_locked(self, path: Path, key: str) -> CommandDescriptor:
        module_name = self._module_name(path)
        previous = sys.modules.get(module_name)
        try:
            descriptor, module = await self.read_descriptor(path)
            old_name = self._names.get(key)
            if old_name is not None and self.registry.origin_of(old_name) == key:
                self.registry.replace(old_name, descriptor, key)
                action = "reloaded"
            else:
                self.registry.register(descriptor, key)
                action = "loaded"
        except CommandLoadError as e:
            self._restore_module(module_name, previous)
            self.errors[key] = e
            raise

        self._names[key] = descriptor.name
        self._modules[key] = module.__name__
        self.errors.pop(key, None)
        logger.info(
            f"command_{action}",
            command=descriptor.name,
            aliases=sorted(descriptor.aliases),
            category=descriptor.category,
            path=key,
        )
        return descriptor

    async def unload(self, path: Path) -> Optional[str]:
        """Remove the command loaded from ``path``. No-op if none was."""
        key = self._key(path)
        async with self._lock_for(key):
            self.errors.pop(key, None)
            name = self._names.pop(key, None)
            module_name = self._modules.pop(key, None)
            if module_name:
                sys.modules.pop(module_name, None)
            if name is None:
                return None
            if self.registry.origin_of(name) == key:
                self.registry.unregister(name)
            logger.info("command_unloaded", command=name, path=key)

        await self._retry_conflicts()
        return name

    async def _retry_conflicts(self) -> None:
        """Give files rejected for a conflict another chance after tokens were freed."""
        blocked = [
            key for key, err in self.errors.items()
            if isinstance(err, (NameConflict, AliasConflict))
        ]
        for key in blocked:
            try:
                await self.load(Path(key))
            except CommandLoadError:
                continue

    async def load_all(self) -> Tuple[List[CommandDescriptor], Dict[str, CommandLoadError]]:
        """Load every source file under the root, in sorted path order."""
        loaded: List[CommandDescriptor] = []
        failed: Dict[str, CommandLoadError] = {}
        paths = await asyncio.to_thread(
            lambda: sorted(p for p in self.root.rglob("*.py") if is_command_source(p, self.root))
        )
        for path in paths:
            try:
                loaded.append(await self.load(path))
            except CommandLoadError as e:
                failed[self._key(path)] = e
                self._report(e, path)

        logger.info("commands_loaded", loaded=len(loaded), failed=len(failed),
                    total=len(self.registry))
        return loaded, failed

    async def handle_event(self, event: WatchEvent) -> None:
        """Apply one watcher event. Load errors are reported, never raised."""
        try:
            if event.kind == WatchEventKind.CREATED:
                await self.load(event.path)
            elif event.kind == WatchEventKind.MODIFIED:
                await self.reload(event.path)
            elif event.kind == WatchEventKind.REMOVED:
                await self.unload(event.path)
        except CommandLoadError as e:
            self._report(e, event.path)

    @staticmethod
    def _report(error: CommandLoadError, path: Path) -> None:
        logger.error(
            "command_load_failed",
            path=str(path),
            error=str(error),
            error_type=type(error).__name__,
        )
