"""Bot core for switchboard.

Wires the registry, loader, watcher, policy chain, invoker and store
together behind one object, and runs the gateway receive loop. The bot
instance is also the ``client`` handed to every command handler, so
handlers reach the store, registry and reply channel through it.

Key classes:
    SwitchboardBot: Owns every subsystem and the message lifecycle.
"""

import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Set

import structlog

from .config import Config, get_config
from .cooldowns import CooldownTracker
from .crash import log_task_exception
from .descriptor import CommandDescriptor
from .dispatcher import CommandDispatcher, DispatchOutcome
from .gateway import BridgeGateway, Gateway, InboundMessage
from .invoker import Invoker
from .loader import CommandLoader
from .policy import PolicyEngine
from .registry import CommandRegistry
from .stats import BotStats
from .store import ConfigStore
from .watcher import CommandWatcher, ensure_directory, scan_sources

logger = structlog.get_logger("switchboard.bot")


class SwitchboardBot:
    """Chat bot with a hot-reloaded command registry.

    Subsystems are built in __init__; anything needing the event loop
    (store connection, command loading, watcher, sweep) happens in
    ``start()`` / ``initialize()``.

    Args:
        config: Settings. Defaults to the global ``get_config()``.
        gateway: Platform connection. Defaults to a BridgeGateway built
            from the configured bridge URL and token.
        store: Configuration store. Defaults to the sqlite store under
            the data directory.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        gateway: Optional[Gateway] = None,
        store: Optional[ConfigStore] = None,
    ):
        self.config = config or get_config()
        self.gateway = gateway if gateway is not None else BridgeGateway(
            self.config.bridge_url, self.config.bridge_token
        )
        self.store = store if store is not None else ConfigStore(
            self.config.store_path,
            default_prefix=self.config.default_prefix,
            developers=self.config.developers,
            seed_owners=self.config.owners,
        )

        self.registry = CommandRegistry()
        self.stats = BotStats()
        self.cooldowns = CooldownTracker(sweep_interval=self.config.cooldown_sweep_interval)
        self.policy = PolicyEngine(self.store, self.cooldowns)
        self.invoker = Invoker(
            client=self,
            reply=self.reply,
            stats=self.stats,
            store=self.store,
            error_message=self.config.error_message,
        )
        self.dispatcher = CommandDispatcher(
            registry=self.registry,
            store=self.store,
            policy=self.policy,
            invoker=self.invoker,
            reply=self.reply,
            stats=self.stats,
        )

        self.commands_dir: Optional[Path] = None
        self.loader: Optional[CommandLoader] = None
        self.watcher: Optional[CommandWatcher] = None
        self.running = False
        self._stopped = False
        self._message_tasks: Set[asyncio.Task] = set()

    # --- Identity ---

    @property
    def bot_user_id(self) -> str:
        return getattr(self.gateway, "bot_user_id", "")

    @property
    def bot_name(self) -> str:
        return getattr(self.gateway, "bot_name", "") or self.config.bot_name

    # --- Core interface ---

    async def initialize(self, command_directory: Optional[Path] = None) -> None:
        """Load every command and start watching the directory.

        Raises:
            WatcherError: the directory cannot be created or read. This is
                the only fatal startup condition.
        """
        root = Path(command_directory) if command_directory else self.config.commands_dir
        ensure_directory(root)
        self.commands_dir = root

        self.loader = CommandLoader(self.registry, root)
        # Baseline taken before loading so edits made during the load are re-seen
        baseline = await asyncio.to_thread(scan_sources, root)
        loaded, failed = await self.loader.load_all()

        self.watcher = CommandWatcher(
            root, self.loader.handle_event, poll_interval=self.config.watcher_poll_interval
        )
        self.watcher.prime(baseline)
        if self.config.watcher_enabled:
            self.watcher.start()
        self.cooldowns.start()

        logger.info(
            "bot_initialized",
            commands_dir=str(root),
            commands=len(self.registry),
            failed=len(failed),
            watching=self.watcher.running,
        )

    async def dispatch(self, message: InboundMessage) -> DispatchOutcome:
        """Message-received entry point. Never raises."""
        return await self.dispatcher.dispatch(message)

    def get_loaded_command_count(self) -> int:
        return len(self.registry)

    def get_categories(self) -> Dict[str, List[CommandDescriptor]]:
        """Commands grouped by category, for help surfaces."""
        return self.registry.categories()

    async def reply(self, channel_id: str, content: str) -> None:
        await self.gateway.reply(channel_id, content)

    # --- Lifecycle ---

    async def start(self) -> None:
        """Open the store, connect the gateway and load commands."""
        await self.store.initialize()
        await self.gateway.connect()
        self.dispatcher.bot_user_id = self.bot_user_id
        await self.initialize()
        self.running = True
        logger.info("bot_started", bot_user_id=self.bot_user_id, bot_name=self.bot_name)

    def _on_message(self, message: InboundMessage) -> None:
        """Dispatch each message in its own task so one never blocks another."""
        task = asyncio.create_task(self.dispatch(message))
        self._message_tasks.add(task)
        task.add_done_callback(self._message_tasks.discard)
        task.add_done_callback(log_task_exception)

    async def _receive(self, message: InboundMessage) -> None:
        self._on_message(message)

    async def run(self) -> None:
        """Main run loop: start, receive messages, stop on exit."""
        await self.start()
        try:
            await self.gateway.listen(self._receive)
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the watcher and sweep, drop in-flight work, close connections.

        Safe to call more than once and after a failed ``start()``.
        """
        if self._stopped:
            return
        self._stopped = True
        self.running = False

        if self.watcher is not None:
            await self.watcher.stop()
        await self.cooldowns.stop()

        pending = [t for t in self._message_tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        await self.gateway.close()
        await self.store.close()
        logger.info("bot_stopped", commands_used=self.stats.commands_used,
                    uptime=self.stats.uptime())
